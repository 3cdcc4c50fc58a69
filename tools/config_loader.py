import os
from typing import Any

import yaml

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG_FILE = "config/weather.yaml"


def load_config(section=None, file_path=None) -> Any:
    """
    加载 YAML 配置文件，并返回指定部分配置
    :param section: 配置块名称，例如 'server'；为空返回整个文件
    :param file_path: 配置文件路径（相对路径按项目根目录解析）
    文件不存在抛 FileNotFoundError；section 不存在抛 KeyError。
    """
    file_path = file_path or os.getenv("WEATHER_CONFIG_FILE", DEFAULT_CONFIG_FILE)
    config_file = file_path if os.path.isabs(file_path) else os.path.join(_PROJECT_ROOT, file_path)
    with open(config_file, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}
    if section:
        return config[section]
    return config


def env_override(cfg: dict, prefix: str, casts: dict) -> dict:
    """
    用环境变量覆盖配置项：键 port → 环境变量 <PREFIX>_PORT。
    casts 给出每个键的类型转换函数；转换失败直接抛 ValueError。
    """
    out = dict(cfg)
    for key, cast in casts.items():
        raw = os.getenv(f"{prefix}_{key.upper()}")
        if raw is None:
            continue
        out[key] = cast(raw)
    return out

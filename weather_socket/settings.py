# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：集中管理服务端 / 设备端的运行配置（YAML → 环境变量覆盖 → dataclass）
# 说明：
#   - 上层只依赖 WeatherConfig / ReporterConfig，不直接感知 YAML 结构和环境变量键名；
#   - 环境变量前缀：服务端 WEATHER_，设备端 REPORTER_。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from tools.config_loader import env_override, load_config


def _optional(cast):
    """'' / 'none' / 'null' → None，其余交给 cast"""
    def inner(raw: str):
        if raw.strip().lower() in ("", "none", "null"):
            return None
        return cast(raw)
    return inner


def _to_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


_SERVER_CASTS = {
    "host": str,
    "port": int,
    "location": str,
    "keepalive_sec": _optional(float),
    "retry_ms": _optional(int),
    "publish_timeout_sec": _optional(float),
    "static_dir": str,
    "log_level": str,
    "log_to_file": _to_bool,
}

_REPORTER_CASTS = {
    "server_url": str,
    "wttr_url": str,
    "interval_sec": float,
    "timeout": float,
    "max_retries": int,
}


@dataclass(frozen=True)
class WeatherConfig:
    """服务端运行配置（不可变 dataclass）"""
    host: str = "0.0.0.0"
    port: int = 1234
    location: str = "Santa+Cruz"           # GET /location 的返回值
    keepalive_sec: Optional[float] = 15.0  # 心跳间隔；None 不发
    retry_ms: Optional[int] = None         # SSE retry 提示；None 不带
    publish_timeout_sec: Optional[float] = None  # None 表示 POST 一直等槽空
    static_dir: str = "static"
    log_level: str = "INFO"
    log_to_file: bool = False
    templates: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def load(section: str = "server", file_path: str | None = None) -> "WeatherConfig":
        cfg = env_override(load_config(section, file_path) or {}, "WEATHER", _SERVER_CASTS)
        return WeatherConfig(
            host=str(cfg.get("host", "0.0.0.0")),
            port=int(cfg.get("port", 1234)),
            location=str(cfg.get("location", "Santa+Cruz")),
            keepalive_sec=_none_or(float, cfg.get("keepalive_sec")),
            retry_ms=_none_or(int, cfg.get("retry_ms")),
            publish_timeout_sec=_none_or(float, cfg.get("publish_timeout_sec")),
            static_dir=str(cfg.get("static_dir", "static")),
            log_level=str(cfg.get("log_level", "INFO")),
            log_to_file=bool(cfg.get("log_to_file", False)),
            templates=dict(cfg.get("templates") or {}),
        )


@dataclass(frozen=True)
class ReporterConfig:
    """设备端运行配置"""
    server_url: str = "http://127.0.0.1:1234"
    wttr_url: str = "https://wttr.in"
    interval_sec: float = 2.0
    timeout: float = 10.0
    max_retries: int = 3

    @staticmethod
    def load(section: str = "reporter", file_path: str | None = None) -> "ReporterConfig":
        cfg = env_override(load_config(section, file_path) or {}, "REPORTER", _REPORTER_CASTS)
        return ReporterConfig(
            server_url=str(cfg.get("server_url", "http://127.0.0.1:1234")),
            wttr_url=str(cfg.get("wttr_url", "https://wttr.in")),
            interval_sec=float(cfg.get("interval_sec", 2.0)),
            timeout=float(cfg.get("timeout", 10.0)),
            max_retries=int(cfg.get("max_retries", 3)),
        )


def _none_or(cast, v):
    return None if v is None else cast(v)

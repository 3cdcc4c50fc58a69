import logging
import os
from logging.handlers import TimedRotatingFileHandler

# 日志目录：默认项目根目录下 logs/，可用 WEATHER_LOG_DIR 覆盖
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)s | "
    "[%(filename)s:%(lineno)d %(funcName)s] | %(threadName)s | %(message)s"
)


def parse_level(level: int | str) -> int:
    """'INFO' / 'debug' / 20 → logging 级别整数；非法名称抛 ValueError"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level!r}")
    return value


class BaseLogger:
    """
    基础日志类：
    - 控制台 + 按天轮转文件输出
    - 同名 logger 只配置一次 handler（多处实例化不会重复输出）
    - 统一格式化输出（含时间、文件名、函数、线程）
    """

    def __init__(
        self,
        name: str,
        level: int | str = logging.INFO,
        to_file: bool = False,
        file_path: str | None = None,
        file_level: int | str = logging.ERROR,
    ):
        """
        :param name: logger 名称（一般取类名或模块名）
        :param level: 控制台日志级别，支持 'INFO' 这类字符串
        :param to_file: 是否启用文件日志
        :param file_path: 日志文件路径（默认 logs/<name>.log）
        :param file_level: 文件日志的最低级别（默认 ERROR，仅错误写入）
        """
        level = parse_level(level)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False  # 防止重复输出

        if not self.logger.handlers:
            formatter = logging.Formatter(_FORMAT)

            ch = logging.StreamHandler()
            ch.setLevel(level)
            ch.setFormatter(formatter)
            self.logger.addHandler(ch)

            if to_file:
                if file_path is None:
                    log_dir = os.getenv("WEATHER_LOG_DIR", os.path.join(_PROJECT_ROOT, "logs"))
                    os.makedirs(log_dir, exist_ok=True)
                    file_path = os.path.join(log_dir, f"{name}.log")

                fh = TimedRotatingFileHandler(
                    filename=file_path,
                    when="midnight",  # 每天轮转
                    interval=1,
                    backupCount=7,  # 保留 7 天
                    encoding="utf-8",
                )
                fh.setLevel(parse_level(file_level))
                fh.setFormatter(formatter)
                self.logger.addHandler(fh)

    # ------------------ 对外日志接口 ------------------

    def log_info(self, message: str, exc_info: bool = False):
        self.logger.info(message, exc_info=exc_info)

    def log_warning(self, message: str, exc_info: bool = False):
        self.logger.warning(message, exc_info=exc_info)

    def log_error(self, message: str, exc_info: bool = True):
        """记录 ERROR 日志（默认包含异常堆栈）"""
        self.logger.error(message, exc_info=exc_info)

    def log_debug(self, message: str, exc_info: bool = False):
        self.logger.debug(message, exc_info=exc_info)

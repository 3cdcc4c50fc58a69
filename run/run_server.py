# run_server.py
"""
=========================================
服务端入口
=========================================

  - 读 config/weather.yaml 的 server 段（WEATHER_* 环境变量可覆盖）
  - 构造唯一的 Broadcaster，交给 FastAPI 应用
  - 后台启动 uvicorn，Ctrl+C / SIGTERM 时让所有 SSE 连接收尾后退出
"""

from __future__ import annotations
import asyncio
import contextlib
import signal

from commons.base_logger import BaseLogger
from weather_socket.bus import Broadcaster
from weather_socket.settings import WeatherConfig
from weather_socket.sse_runner import build_sse_app, start_sse_background, stop_sse_background


async def main():
    config = WeatherConfig.load()
    logger = BaseLogger(name="WeatherSSE", level=config.log_level, to_file=config.log_to_file)

    # —— 用于通知“停止运行”的事件对象
    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _stop(*_):
        stop_evt.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # Windows 下可能不支持
            loop.add_signal_handler(sig, _stop)

    broadcaster = Broadcaster(logger=logger)
    app = build_sse_app(broadcaster, config)
    handle = await start_sse_background(app, host=config.host, port=config.port)

    try:
        # uvicorn 自己退出（如端口占用）时也结束
        stopper = asyncio.create_task(stop_evt.wait())
        await asyncio.wait([stopper, handle.task], return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
    finally:
        await stop_sse_background(handle)
        logger.log_info("bye")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

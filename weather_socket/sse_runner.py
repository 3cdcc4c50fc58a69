# ────────────────────────────────────────────────────────────────
# 模块用途：启动 FastAPI SSE 服务器，推送温湿度实时数据
# 说明：
#   - POST /weather 收表单，经 Broadcaster 放入单槽通道（槽满即阻塞）；
#   - GET /sse 每个连接跑一个 StreamHandler，逐条写出并 flush；
#   - 客户端断开（http.disconnect）或服务停止 → 连接的 cancel 事件被置位；
#   - 写失败只记一条 warning，连接随即结束（不再发送结束帧）。
# ────────────────────────────────────────────────────────────────

from __future__ import annotations
import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.staticfiles import StaticFiles
from starlette.types import Receive, Scope, Send

# —— 项目内导入 —— #
from commons.base_logger import BaseLogger
from weather_socket.bus import Broadcaster, SlotFullError
from weather_socket.channels import ReadingRenderer
from weather_socket.event import EventWriteError
from weather_socket.settings import WeatherConfig
from weather_socket.stream_handler import StreamHandler

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Content-Encoding": "identity",
}


def error_payload(message: str, code: str = "INTERNAL", **details: Any) -> Dict[str, Any]:
    return {
        "type": "error",
        "ts": int(time.time() * 1000),
        "error": {"code": code, "message": message, **details},
    }


# ────────────────────────────────────────────────────────────────
# ASGI 输出端：write 攒缓冲，flush 一次性作为 body 分片发出
# ────────────────────────────────────────────────────────────────
class AsgiEventSink:
    def __init__(self, send: Send):
        self._send = send
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        self._buf += data
        return len(data)

    async def flush(self) -> None:
        if not self._buf:
            return
        chunk = bytes(self._buf)
        self._buf.clear()
        try:
            await self._send({"type": "http.response.body", "body": chunk, "more_body": True})
        except (OSError, RuntimeError) as e:
            raise EventWriteError(f"send failed: {e}") from e


class EventStreamResponse(Response):
    """
    长连接 text/event-stream 响应：直接驱动 StreamHandler。
    shutdown 为服务级停止信号，置位后所有连接正常收尾。
    """
    media_type = "text/event-stream"

    def __init__(
        self,
        handler: StreamHandler,
        *,
        shutdown: Optional[asyncio.Event] = None,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self.handler = handler
        self.shutdown = shutdown
        self.status_code = status_code
        self.background = None
        self.logger = logger or BaseLogger(name="EventStreamResponse")
        self.init_headers(headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        cancel = asyncio.Event()
        watchers = [asyncio.create_task(self._listen_for_disconnect(receive, cancel))]
        if self.shutdown is not None:
            watchers.append(asyncio.create_task(self._listen_for_shutdown(cancel)))

        try:
            await send({"type": "http.response.start", "status": self.status_code, "headers": self.raw_headers})
            await self.handler.run(AsgiEventSink(send), cancel)
        except EventWriteError as e:
            self.logger.log_warning(f"[SSE] client gone: {e}")
            return
        finally:
            for w in watchers:
                w.cancel()
            for w in watchers:
                with suppress(asyncio.CancelledError, Exception):
                    await w

        with suppress(OSError, RuntimeError):
            await send({"type": "http.response.body", "body": b"", "more_body": False})

    @staticmethod
    async def _listen_for_disconnect(receive: Receive, cancel: asyncio.Event) -> None:
        # receive 出错同样视为连接已断
        try:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    return
        finally:
            cancel.set()

    async def _listen_for_shutdown(self, cancel: asyncio.Event) -> None:
        await self.shutdown.wait()
        cancel.set()


# ────────────────────────────────────────────────────────────────
# 构建 FastAPI 实例
# ────────────────────────────────────────────────────────────────
def build_sse_app(broadcaster: Optional[Broadcaster] = None, config: Optional[WeatherConfig] = None) -> FastAPI:
    config = config or WeatherConfig()
    logger = BaseLogger(name="WeatherSSE", level=config.log_level, to_file=config.log_to_file)
    broadcaster = broadcaster or Broadcaster(logger=logger)
    renderer = ReadingRenderer(config.templates)

    app = FastAPI(title="Weather SSE Server", version="1.0.0")
    app.state.broadcaster = broadcaster
    app.state.config = config
    app.state.shutdown = asyncio.Event()

    templates = Jinja2Templates(directory=str(_TEMPLATE_DIR))

    # ========== Static files mounting ==========
    static_dir = Path(config.static_dir)
    if static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")
        logger.log_info(f"[SSE] static files served at /static from {static_dir}")
    else:
        logger.log_debug(f"[SSE] static dir not found: {static_dir}")

    # 允许跨域（前端在不同端口时必须加）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=HTMLResponse)
    async def _index(request: Request):
        return templates.TemplateResponse(
            request, "index.html", {"kinds": [ch.kind.value for ch in broadcaster.channels]}
        )

    @app.get("/healthz")
    async def _h():
        """健康检查：附带每个槽是否有未读值"""
        return {"ok": True, "pending": broadcaster.pending()}

    @app.get("/location")
    async def _location():
        return PlainTextResponse(config.location)

    @app.post("/weather")
    async def _weather(request: Request):
        form = await request.form()
        try:
            await broadcaster.publish_form(form, timeout=config.publish_timeout_sec)
        except SlotFullError as e:
            payload = error_payload(
                "no reader drained the previous reading",
                "SLOT_FULL",
                accepted=[r.kind.value for r in e.accepted],
                rejected=[k.value for k in e.rejected],
            )
            return JSONResponse(payload, status_code=503)
        return Response(status_code=200)

    @app.get("/sse")
    async def _sse():
        handler = StreamHandler(
            broadcaster,
            renderer=renderer,
            keepalive_sec=config.keepalive_sec,
            retry_ms=config.retry_ms,
            logger=logger,
        )
        return EventStreamResponse(handler, shutdown=app.state.shutdown, headers=SSE_HEADERS, logger=logger)

    return app


# ────────────────────────────────────────────────────────────────
# 启动与停止：可供 run/run_server.py 调用
# ────────────────────────────────────────────────────────────────
@dataclass
class SseServerHandle:
    app: FastAPI
    server: uvicorn.Server
    task: asyncio.Task


async def start_sse_background(app: FastAPI, host: str = "0.0.0.0", port: int = 1234) -> SseServerHandle:
    """
    后台启动 SSE 服务。
    - 不阻塞调用方；
    - 端口占用等启动异常只记日志，由 handle.task 结束反映出来；
    - 返回句柄，供 stop_sse_background 使用。
    """
    logger = BaseLogger(name="WeatherSSE")
    config = uvicorn.Config(app=app, host=host, port=port, loop="asyncio", log_level="info")
    server = uvicorn.Server(config)

    async def _serve():
        try:
            await server.serve()
        except SystemExit:
            logger.log_error(f"[SSE] Port {port} already in use, please change or stop other process.", exc_info=False)
        except Exception as e:
            logger.log_error(f"[SSE] Exception: {e}")

    task = asyncio.create_task(_serve(), name=f"weather-sse:{port}")
    await asyncio.sleep(0.1)
    ip = "127.0.0.1" if host in ("0.0.0.0", "localhost") else host
    logger.log_info(f"[SSE] SSE server started: http://{ip}:{port}/sse")

    return SseServerHandle(app, server, task)


async def stop_sse_background(handle: Optional[SseServerHandle]) -> None:
    """先让所有 SSE 连接收尾，再关闭 uvicorn"""
    if not handle:
        return
    handle.app.state.shutdown.set()
    handle.server.should_exit = True
    with suppress(asyncio.CancelledError):
        await handle.task

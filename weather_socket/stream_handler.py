# ────────────────────────────────────────────────────────────────
# 模块用途：单个 SSE 连接的推送循环
# 说明：
#   - 同时等待取消信号和所有传感器槽，先就绪者胜出；
#   - 收到读数 → 渲染成 SseEvent → 写入 sink → flush → 继续等待；
#   - 取消信号（客户端断开 / 服务停止）不是错误，run() 正常返回；
#     同一轮已取走的读数放回空槽；
#   - 写失败抛 EventWriteError，连接视为已死，不重试；
#   - 可选心跳：空闲 keepalive_sec 秒后写一条 ": keep-alive" 注释。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from commons.base_logger import BaseLogger
from weather_socket.bus import Broadcaster
from weather_socket.channels import ReadingRenderer, SensorReading
from weather_socket.event import EventWriteError, SseEvent, keepalive_event


class EventSink(Protocol):
    """连接独占的输出端：write 同步写缓冲，flush 异步推给客户端"""
    def write(self, data: bytes) -> Any: ...
    async def flush(self) -> None: ...


class HandlerState(str, Enum):
    WAITING = "waiting"
    ENCODING = "encoding"
    TERMINATED = "terminated"


Renderer = Callable[[SensorReading], str]


class StreamHandler:
    """
    用法：
        handler = StreamHandler(broadcaster)
        written = await handler.run(sink, cancel)   # cancel: asyncio.Event
    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        *,
        renderer: Optional[Renderer] = None,
        keepalive_sec: Optional[float] = None,
        retry_ms: Optional[int] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self._broadcaster = broadcaster
        self._render = renderer or ReadingRenderer()
        self._keepalive_sec = keepalive_sec
        self._retry = b"" if retry_ms is None else str(int(retry_ms)).encode()
        self.logger = logger or BaseLogger(name="StreamHandler")
        self.state = HandlerState.WAITING

    def build_event(self, reading: SensorReading) -> SseEvent:
        return SseEvent(
            data=self._render(reading),
            event=reading.kind.label,
            retry=self._retry,
        )

    async def run(self, sink: EventSink, cancel: asyncio.Event) -> int:
        """
        主循环；返回本次连接写出的事件条数。
        取消 → 正常返回；写失败 → 抛 EventWriteError。
        """
        written = 0
        self.state = HandlerState.WAITING
        try:
            while True:
                readings = await self._next_readings(cancel)
                if readings is None:
                    self.logger.log_info(f"stream cancelled after {written} events")
                    return written

                events = [self.build_event(r) for r in readings] or [keepalive_event()]

                self.state = HandlerState.ENCODING
                for ev in events:
                    ev.marshal_to(sink)
                    await sink.flush()
                    written += 1
                self.state = HandlerState.WAITING
        except EventWriteError as e:
            self.logger.log_warning(f"stream write failed after {written} events: {e}")
            raise
        finally:
            self.state = HandlerState.TERMINATED

    async def _next_readings(self, cancel: asyncio.Event) -> Optional[list[SensorReading]]:
        """
        等待一轮：
          - None      → 取消信号已触发
          - []        → 心跳超时，没有新读数
          - [r, ...]  → 同一轮就绪的所有读数（避免某个槽被长期饿死）
        落选的 getter 被取消，未取走的值仍留在槽里。
        """
        if cancel.is_set():
            return None

        stopper = asyncio.create_task(cancel.wait())
        getters = [asyncio.create_task(ch.get()) for ch in self._broadcaster.channels]
        try:
            await asyncio.wait(
                [stopper, *getters],
                timeout=self._keepalive_sec,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            await _cancel_all([stopper, *getters])

        readings = [
            t.result() for t in getters
            if t.done() and not t.cancelled() and t.exception() is None
        ]
        if cancel.is_set():
            self._give_back(readings)
            return None
        return readings

    def _give_back(self, readings: list[SensorReading]) -> None:
        """取消时把本轮已取走但未写出的读数放回空槽，留给其他连接"""
        for r in readings:
            try:
                self._broadcaster.channel(r.kind).put_nowait(r.value)
            except asyncio.QueueFull:
                # 发布者已抢先填满槽，这个旧值只能丢弃
                self.logger.log_debug(f"dropped {r.describe()} on cancel")


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    pending: list[Awaitable[Any]] = []
    for t in tasks:
        if not t.done():
            t.cancel()
            pending.append(t)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

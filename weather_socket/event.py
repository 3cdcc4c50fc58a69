# ────────────────────────────────────────────────────────────────
# 模块用途：SSE（text/event-stream）事件编码
# 说明：
#   - SseEvent 是线路上的一条事件记录：id / data / event / retry / comment；
#   - marshal_to() 逐行写入 sink，任一写失败立即中止并抛 EventWriteError；
#   - data 与 comment 都为空时什么都不写（空事件被抑制）；
#   - 多行 data 按 "\n" 拆成多条 "data:" 行，客户端会用换行重新拼回。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Protocol


class EventWriteError(OSError):
    """写入客户端失败（客户端断开 / 网络错误），连接视为已死，不重试。"""


class ByteWriter(Protocol):
    def write(self, data: bytes) -> Any: ...


def _to_bytes(v: bytes | str | int | None) -> bytes:
    if v is None:
        return b""
    if isinstance(v, bytes):
        return v
    return str(v).encode("utf-8")


@dataclass
class SseEvent:
    """
    一条 SSE 事件记录。字段统一为 bytes；构造时传 str / int 会按 UTF-8 转换。
    """
    id: bytes = b""
    data: bytes = b""
    event: bytes = b""
    retry: bytes = b""
    comment: bytes = b""

    def __post_init__(self) -> None:
        self.id = _to_bytes(self.id)
        self.data = _to_bytes(self.data)
        self.event = _to_bytes(self.event)
        self.retry = _to_bytes(self.retry)
        self.comment = _to_bytes(self.comment)

    def is_empty(self) -> bool:
        return not self.data and not self.comment

    def marshal_to(self, w: ByteWriter) -> None:
        """
        按线路格式写入 w：
          id → data（每段一行）→ event → retry → comment → 空行结束符。
        已写出的前缀不做回滚（连接本来就要关闭）。
        """
        if self.is_empty():
            return

        try:
            if self.data:
                # id 行总是输出（即使为空，得到 "id: "）
                w.write(b"id: " + self.id + b"\n")
                for segment in self.data.split(b"\n"):
                    w.write(b"data: " + segment + b"\n")
                if self.event:
                    w.write(b"event: " + self.event + b"\n")
                if self.retry:
                    w.write(b"retry: " + self.retry + b"\n")

            if self.comment:
                w.write(b": " + self.comment + b"\n")

            w.write(b"\n")
        except EventWriteError:
            raise
        except OSError as e:
            raise EventWriteError(f"event write failed: {e}") from e

    def encode(self) -> bytes:
        """编码为完整字节串；空事件返回 b""。"""
        buf = io.BytesIO()
        self.marshal_to(buf)
        return buf.getvalue()


def keepalive_event(text: str = "keep-alive") -> SseEvent:
    """只含注释行的心跳事件，符合规范的客户端会忽略它。"""
    return SseEvent(comment=text)

# weather_socket/__init__.py
from .event import EventWriteError, SseEvent, keepalive_event
from .channels import ReadingRenderer, SensorKind, SensorReading, UpdateChannel
from .bus import Broadcaster, SlotFullError
from .stream_handler import StreamHandler

__all__ = [
    "EventWriteError", "SseEvent", "keepalive_event",
    "ReadingRenderer", "SensorKind", "SensorReading", "UpdateChannel",
    "Broadcaster", "SlotFullError", "StreamHandler",
]

# ────────────────────────────────────────────────────────────────
# 模块用途：传感器种类 + 单槽更新通道
# 说明：
#   - SensorKind 是封闭集合：本地温度 / 本地湿度 / 室外温度；
#     枚举值同时是表单字段名和 SSE 的 event 名；
#   - UpdateChannel 容量恰好为 1：槽满时 put 阻塞，直到有读者取走（背压）；
#   - 读者取走即消费，多个读者竞争同一个槽时只有一个能拿到。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional


class SensorKind(str, Enum):
    LOCAL_TEMP = "localtemp"
    LOCAL_HUMI = "localhumi"
    OUT_TEMP = "outtemp"

    @property
    def label(self) -> str:
        """SSE event 名（与表单字段名一致）"""
        return self.value

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def unit(self) -> str:
        return _UNITS[self]


_DISPLAY_NAMES = {
    SensorKind.LOCAL_TEMP: "local temp",
    SensorKind.LOCAL_HUMI: "local humi",
    SensorKind.OUT_TEMP: "outer temp",
}

# 室外温度由 wttr.in 返回，自带单位
_UNITS = {
    SensorKind.LOCAL_TEMP: "°C",
    SensorKind.LOCAL_HUMI: "%",
    SensorKind.OUT_TEMP: "",
}

# 页面渲染模板：{value} 为原始字符串
DEFAULT_TEMPLATES: dict[SensorKind, str] = {
    SensorKind.LOCAL_TEMP: "<h3>{value}°C</h3>",
    SensorKind.LOCAL_HUMI: "<h3>{value}%</h3>",
    SensorKind.OUT_TEMP: "<h3>{value}</h3>",
}


@dataclass(frozen=True)
class SensorReading:
    """一次上报的读数；value 不做数值校验"""
    kind: SensorKind
    value: str

    def describe(self) -> str:
        return f"{self.kind.display_name}: {self.value}{self.kind.unit}"


class ReadingRenderer:
    """
    把读数渲染成推给页面的 HTML 片段。
    templates 可来自配置（键为 SensorKind 的值），缺省项回落到 DEFAULT_TEMPLATES。
    """

    def __init__(self, templates: Optional[Mapping[str, str]] = None):
        merged = dict(DEFAULT_TEMPLATES)
        for key, tpl in (templates or {}).items():
            merged[SensorKind(key)] = tpl
        self._templates = merged

    def __call__(self, reading: SensorReading) -> str:
        return self._templates[reading.kind].format(value=reading.value)


class UpdateChannel:
    """
    asyncio.Queue(maxsize=1) 的轻量封装：
    - put()：槽空立即返回；槽满则挂起，直到被读者取走；
    - get()：槽空则挂起，直到有人 put；
    - 不做“最新值覆盖”，槽满时后来者等待。
    """

    def __init__(self, kind: SensorKind):
        self.kind = kind
        self._q: asyncio.Queue[str] = asyncio.Queue(maxsize=1)

    async def put(self, value: str) -> None:
        await self._q.put(value)

    def put_nowait(self, value: str) -> None:
        """槽满时抛 asyncio.QueueFull"""
        self._q.put_nowait(value)

    async def get(self) -> SensorReading:
        value = await self._q.get()
        return SensorReading(kind=self.kind, value=value)

    def get_nowait(self) -> SensorReading:
        """槽空时抛 asyncio.QueueEmpty"""
        return SensorReading(kind=self.kind, value=self._q.get_nowait())

    def pending(self) -> bool:
        """槽中是否有未读的值"""
        return self._q.full()

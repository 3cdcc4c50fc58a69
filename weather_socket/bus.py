# weather_socket/bus.py
from __future__ import annotations

import asyncio
from typing import Iterable, Mapping, Optional

from commons.base_logger import BaseLogger
from commons.normalizers import empty_to_none
from weather_socket.channels import SensorKind, SensorReading, UpdateChannel


class SlotFullError(TimeoutError):
    """表单中有字段因槽满超时被拒；accepted 里的读数已经入槽"""

    def __init__(self, accepted: list[SensorReading], rejected: list[SensorKind]):
        self.accepted = accepted
        self.rejected = rejected
        names = ", ".join(k.value for k in rejected)
        super().__init__(f"slot still full for: {names}")


class Broadcaster:
    """
    每种传感器一个单槽通道：
      - 启动时构造一次，显式传给 ingest 路由和每个 SSE 连接；
      - publish() 槽满时阻塞（背压），不会丢弃旧值也不会排队；
      - 多个连接同时读同一个槽时，一次发布只会被其中一个拿到。
    """

    def __init__(self, kinds: Iterable[SensorKind] = tuple(SensorKind), logger: Optional[BaseLogger] = None):
        self._channels: dict[SensorKind, UpdateChannel] = {k: UpdateChannel(k) for k in kinds}
        self.logger = logger or BaseLogger(name="Broadcaster")

    @property
    def channels(self) -> list[UpdateChannel]:
        return list(self._channels.values())

    def channel(self, kind: SensorKind | str) -> UpdateChannel:
        """未知种类抛 ValueError"""
        kind = SensorKind(kind)
        ch = self._channels.get(kind)
        if ch is None:
            raise ValueError(f"no channel for sensor kind {kind.value!r}")
        return ch

    def pending(self) -> dict[str, bool]:
        return {k.value: ch.pending() for k, ch in self._channels.items()}

    async def publish(self, kind: SensorKind | str, value: str, timeout: Optional[float] = None) -> SensorReading:
        """
        把 value 放进对应种类的槽：
        - 槽空立即返回；
        - 槽满则等待读者取走；给了 timeout 时超时抛 TimeoutError，值不入槽。
        """
        ch = self.channel(kind)
        if timeout is None:
            await ch.put(value)
        else:
            await asyncio.wait_for(ch.put(value), timeout=timeout)
        return SensorReading(kind=ch.kind, value=value)

    async def publish_form(self, form: Mapping[str, str], timeout: Optional[float] = None) -> list[SensorReading]:
        """
        表单入口：按 localtemp → localhumi → outtemp 的顺序发布；
        空值（含全空白）表示这次没有该字段的更新，直接跳过。
        给了 timeout 时每个字段单独计时：某个槽超时不影响后面的字段，
        全部尝试完后若有被拒的字段，抛 SlotFullError（带已接收 / 被拒的种类）。
        """
        published: list[SensorReading] = []
        rejected: list[SensorKind] = []
        for kind in self._channels:
            value = empty_to_none(form.get(kind.value))
            if value is None:
                continue
            try:
                reading = await self.publish(kind, value, timeout=timeout)
            except TimeoutError:
                self.logger.log_warning(f"{kind.display_name} slot still full, {value!r} rejected")
                rejected.append(kind)
                continue
            self.logger.log_info(f"POSTed {reading.describe()}")
            published.append(reading)
        if rejected:
            raise SlotFullError(published, rejected)
        return published

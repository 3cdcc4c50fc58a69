import asyncio

import pytest

from weather_socket.bus import Broadcaster
from weather_socket.channels import SensorKind
from weather_socket.event import EventWriteError
from weather_socket.stream_handler import HandlerState, StreamHandler


class RecordingSink:
    """
    记录每次 flush 时已写出的完整事件。
    fail_on：第 N 次 flush 时模拟断线；
    break_write_on：写第 N 条事件时 write 抛 BrokenPipeError。
    """

    def __init__(self, fail_on: int | None = None, break_write_on: int | None = None):
        self.fail_on = fail_on
        self.break_write_on = break_write_on
        self.buffer = bytearray()
        self.events: list[bytes] = []
        self.flushes = 0

    def write(self, data: bytes) -> int:
        if self.break_write_on is not None and self.flushes + 1 == self.break_write_on:
            raise BrokenPipeError("broken pipe")
        self.buffer += data
        return len(data)

    async def flush(self) -> None:
        self.flushes += 1
        if self.fail_on is not None and self.flushes == self.fail_on:
            raise EventWriteError("client disconnected")
        self.events.append(bytes(self.buffer))
        self.buffer.clear()


async def _wait_for_events(sink: RecordingSink, n: int, timeout: float = 1.0) -> None:
    async def _poll():
        while len(sink.events) < n:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_local_temp_reading_is_streamed():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    handler = StreamHandler(bc)
    task = asyncio.create_task(handler.run(sink, cancel))

    await bc.publish(SensorKind.LOCAL_TEMP, "21.5")
    await _wait_for_events(sink, 1)
    cancel.set()
    written = await task

    assert sink.events == ["id: \ndata: <h3>21.5°C</h3>\nevent: localtemp\n\n".encode("utf-8")]
    assert written == 1
    assert handler.state is HandlerState.TERMINATED


@pytest.mark.asyncio
async def test_each_kind_gets_its_label():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc).run(sink, cancel))
    await bc.publish_form({"localtemp": "21.50", "localhumi": "40.00", "outtemp": "+12°C"})
    await _wait_for_events(sink, 3)
    cancel.set()
    await task

    events = b"".join(sink.events).decode("utf-8")
    assert "data: <h3>21.50°C</h3>\nevent: localtemp\n" in events
    assert "data: <h3>40.00%</h3>\nevent: localhumi\n" in events
    assert "data: <h3>+12°C</h3>\nevent: outtemp\n" in events


@pytest.mark.asyncio
async def test_cancel_while_waiting_returns_cleanly():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc).run(sink, cancel))
    await asyncio.sleep(0.05)
    cancel.set()
    written = await asyncio.wait_for(task, timeout=1.0)

    # 取消后发布的值留在槽里，不再被这个连接写出
    await bc.publish(SensorKind.LOCAL_HUMI, "50.00")
    await asyncio.sleep(0.02)

    assert written == 0
    assert sink.flushes == 0
    assert bc.pending()["localhumi"] is True


@pytest.mark.asyncio
async def test_already_cancelled_never_reads():
    bc = Broadcaster()
    await bc.publish(SensorKind.OUT_TEMP, "+1°C")
    cancel = asyncio.Event()
    cancel.set()

    written = await StreamHandler(bc).run(RecordingSink(), cancel)

    assert written == 0
    assert bc.pending()["outtemp"] is True


@pytest.mark.asyncio
async def test_reading_taken_in_cancel_round_goes_back_to_slot():
    """取消与读数在同一轮就绪：值不写出，放回槽里"""
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc).run(sink, cancel))
    await asyncio.sleep(0.02)

    # 两件事之间不让出事件循环，保证落在同一轮
    cancel.set()
    await bc.publish(SensorKind.LOCAL_TEMP, "23.00")
    written = await asyncio.wait_for(task, timeout=1.0)

    assert written == 0
    assert sink.flushes == 0
    assert bc.pending()["localtemp"] is True
    assert (await bc.channel(SensorKind.LOCAL_TEMP).get()).value == "23.00"


@pytest.mark.asyncio
async def test_write_failure_on_second_event_stops_loop():
    bc = Broadcaster()
    sink = RecordingSink(fail_on=2)
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc).run(sink, cancel))

    await bc.publish(SensorKind.LOCAL_TEMP, "20.00")
    await _wait_for_events(sink, 1)
    await bc.publish(SensorKind.LOCAL_TEMP, "20.50")
    with pytest.raises(EventWriteError):
        await asyncio.wait_for(task, timeout=1.0)

    # 第三次发布不会被消费
    await bc.publish(SensorKind.LOCAL_TEMP, "21.00")
    await asyncio.sleep(0.02)

    assert sink.events == ["id: \ndata: <h3>20.00°C</h3>\nevent: localtemp\n\n".encode("utf-8")]
    assert sink.flushes == 2
    assert bc.pending()["localtemp"] is True


@pytest.mark.asyncio
async def test_broken_pipe_on_second_write_stops_loop():
    bc = Broadcaster()
    sink = RecordingSink(break_write_on=2)
    cancel = asyncio.Event()
    handler = StreamHandler(bc)
    task = asyncio.create_task(handler.run(sink, cancel))

    await bc.publish(SensorKind.OUT_TEMP, "+5°C")
    await _wait_for_events(sink, 1)
    await bc.publish(SensorKind.OUT_TEMP, "+6°C")
    with pytest.raises(EventWriteError) as exc:
        await asyncio.wait_for(task, timeout=1.0)
    assert isinstance(exc.value.__cause__, BrokenPipeError)
    assert handler.state is HandlerState.TERMINATED

    # 连接已死，第三次发布留在槽里
    await bc.publish(SensorKind.OUT_TEMP, "+7°C")
    await asyncio.sleep(0.02)

    assert sink.events == ["id: \ndata: <h3>+5°C</h3>\nevent: outtemp\n\n".encode("utf-8")]
    assert sink.flushes == 1
    assert bc.pending()["outtemp"] is True
    assert (await bc.channel(SensorKind.OUT_TEMP).get()).value == "+7°C"


@pytest.mark.asyncio
async def test_keepalive_comment_when_idle():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc, keepalive_sec=0.05).run(sink, cancel))
    await _wait_for_events(sink, 1)
    cancel.set()
    await task

    assert sink.events[0] == b": keep-alive\n\n"


@pytest.mark.asyncio
async def test_retry_hint_is_attached():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc, retry_ms=3000).run(sink, cancel))
    await bc.publish(SensorKind.OUT_TEMP, "+3°C")
    await _wait_for_events(sink, 1)
    cancel.set()
    await task

    assert sink.events == ["id: \ndata: <h3>+3°C</h3>\nevent: outtemp\nretry: 3000\n\n".encode("utf-8")]


@pytest.mark.asyncio
async def test_two_readers_share_one_slot():
    """同一次发布只会被一个连接拿到"""
    bc = Broadcaster()
    cancel = asyncio.Event()
    sinks = [RecordingSink(), RecordingSink()]
    tasks = [asyncio.create_task(StreamHandler(bc).run(s, cancel)) for s in sinks]
    await asyncio.sleep(0.02)
    await bc.publish(SensorKind.LOCAL_TEMP, "22.00")
    await asyncio.sleep(0.1)
    cancel.set()
    await asyncio.gather(*tasks)

    assert sorted(len(s.events) for s in sinks) == [0, 1]


@pytest.mark.asyncio
async def test_values_delivered_in_publish_order():
    bc = Broadcaster()
    sink = RecordingSink()
    cancel = asyncio.Event()
    task = asyncio.create_task(StreamHandler(bc).run(sink, cancel))
    for v in ("1", "2", "3"):
        await bc.publish(SensorKind.LOCAL_HUMI, v)
    await _wait_for_events(sink, 3)
    cancel.set()
    await task

    assert [e.split(b"\n")[1] for e in sink.events] == [b"data: <h3>1%</h3>", b"data: <h3>2%</h3>", b"data: <h3>3%</h3>"]

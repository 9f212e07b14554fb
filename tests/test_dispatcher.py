from __future__ import annotations

import asyncio

import pytest

from bluedeck.core.decode import DEVICE_IFACE
from bluedeck.core.dispatcher import SignalDispatcher
from bluedeck.core.errors import ConnectionLost
from bluedeck.core.events import DeviceChanged, RefreshTick, Unrecognized
from bluedeck.core.refresh import RefreshScheduler

from fakes import FakeTransport, device_path, properties_changed, settle

DEV_A = device_path("0A")


def test_next_event_decodes_one_signal() -> None:
    transport = FakeTransport()
    transport.push(properties_changed(DEV_A, DEVICE_IFACE, {"Connected": True}))
    dispatcher = SignalDispatcher(transport, asyncio.Queue())

    event = asyncio.run(dispatcher.next_event())

    assert event == DeviceChanged(DEV_A, {"Connected": True})


def test_run_drops_unrecognized_signals() -> None:
    async def scenario() -> list[object]:
        transport = FakeTransport()
        sink: asyncio.Queue[object] = asyncio.Queue()
        transport.push(properties_changed(DEV_A, "org.bluez.MediaPlayer1", {"Status": "paused"}))
        transport.push(properties_changed(DEV_A, DEVICE_IFACE, {"RSSI": -50}))
        task = asyncio.create_task(SignalDispatcher(transport, sink).run())
        await settle()
        task.cancel()
        received = []
        while not sink.empty():
            received.append(sink.get_nowait())
        return received

    received = asyncio.run(scenario())
    assert received == [DeviceChanged(DEV_A, {"RSSI": -50})]
    assert not any(isinstance(event, Unrecognized) for event in received)


def test_run_propagates_connection_loss() -> None:
    transport = FakeTransport()
    transport.push(ConnectionLost("bus gone"))

    with pytest.raises(ConnectionLost):
        asyncio.run(SignalDispatcher(transport, asyncio.Queue()).run())


def test_refresh_scheduler_posts_ticks() -> None:
    async def scenario() -> int:
        sink: asyncio.Queue[object] = asyncio.Queue()
        task = asyncio.create_task(RefreshScheduler(sink, interval_s=0.01).run())
        await asyncio.sleep(0.055)
        task.cancel()
        ticks = 0
        while not sink.empty():
            assert isinstance(sink.get_nowait(), RefreshTick)
            ticks += 1
        return ticks

    assert asyncio.run(scenario()) >= 2


@pytest.mark.parametrize("interval", [0, -5])
def test_refresh_interval_must_be_positive(interval: float) -> None:
    with pytest.raises(ValueError):
        RefreshScheduler(asyncio.Queue(), interval_s=interval)

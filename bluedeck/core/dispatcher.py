"""Signal dispatcher: one transport signal in, at most one event out."""

from __future__ import annotations

import asyncio
import logging

from bluedeck.core.decode import decode_signal
from bluedeck.core.events import SignalEvent, Unrecognized
from bluedeck.transports.base import Transport

LOGGER = logging.getLogger(__name__)


class SignalDispatcher:
    def __init__(self, transport: Transport, sink: asyncio.Queue[object]) -> None:
        self.transport = transport
        self.sink = sink

    async def next_event(self) -> SignalEvent:
        """Wait for one signal and decode it. `ConnectionLost` propagates."""
        signal = await self.transport.next_signal()
        return decode_signal(signal)

    async def run(self) -> None:
        while True:
            event = await self.next_event()
            if isinstance(event, Unrecognized):
                LOGGER.debug("Dropped signal: %s", event.reason)
                continue
            await self.sink.put(event)

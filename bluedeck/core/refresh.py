"""Periodic full resync trigger."""

from __future__ import annotations

import asyncio
import logging

from bluedeck.core.events import RefreshTick

LOGGER = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_S = 15.0


class RefreshScheduler:
    """Posts a `RefreshTick` every `interval_s` seconds.

    Signals can be missed (subscription races, bus congestion); the full
    resync that each tick triggers overwrites the snapshot to correct drift.
    """

    def __init__(self, sink: asyncio.Queue[object], interval_s: float = DEFAULT_REFRESH_INTERVAL_S) -> None:
        if interval_s <= 0:
            raise ValueError("refresh interval must be positive")
        self.sink = sink
        self.interval_s = interval_s

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            LOGGER.debug("Refresh tick")
            await self.sink.put(RefreshTick())

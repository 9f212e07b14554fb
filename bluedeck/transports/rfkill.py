"""Radio kill-switch control using the rfkill command."""

from __future__ import annotations

import asyncio
import logging
import subprocess

from bluedeck.core.errors import RadioSwitchError

LOGGER = logging.getLogger(__name__)


class RfkillSwitch:
    def __init__(self, binary: str = "rfkill") -> None:
        self.binary = binary

    async def set_blocked(self, blocked: bool) -> None:
        action = "block" if blocked else "unblock"
        cmd = [self.binary, action, "bluetooth"]
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                check=False,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise RadioSwitchError(f"Could not run '{self.binary}': not installed") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise RadioSwitchError(
                f"Failed to {action} bluetooth via rfkill: {stderr or f'exit code {result.returncode}'}"
            )
        LOGGER.info("rfkill %s bluetooth", action)

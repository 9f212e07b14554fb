"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

ManagedObjects = Mapping[str, Mapping[str, Mapping[str, Any]]]


@dataclass(frozen=True)
class RawSignal:
    """One undecoded bus signal with its arguments already unwrapped."""

    path: str
    interface: str
    member: str
    body: tuple[Any, ...] = field(default_factory=tuple)


class Transport(Protocol):
    async def get_managed_objects(self) -> ManagedObjects:
        """Return the full `path -> interface -> property map` state."""

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        """Read a single property."""

    async def set_property(self, path: str, interface: str, name: str, value: Any) -> None:
        """Write a single property."""

    async def call_method(self, path: str, interface: str, member: str, *args: Any) -> Any:
        """Invoke a method and return its (unwrapped) reply, if any."""

    async def next_signal(self) -> RawSignal:
        """Wait for the next subscribed signal; raise `ConnectionLost` on drop."""

    async def register_agent(self, agent: Any, *, path: str, capability: str) -> None:
        """Export the pairing agent and make it the default agent."""

    async def close(self) -> None:
        """Release the connection."""


class RadioSwitch(Protocol):
    async def set_blocked(self, blocked: bool) -> None:
        """Soft-block or unblock the Bluetooth radio."""

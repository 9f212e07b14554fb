"""Messages consumed by the session's event-processing stream."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from bluedeck.core.model import Adapter, DeviceRecord, PendingCredentialRequest

# --- Decoded transport signals ---


@dataclass(frozen=True)
class AdapterChanged:
    adapter_id: str
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class DeviceChanged:
    device_id: str
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class DeviceAdded:
    record: DeviceRecord


@dataclass(frozen=True)
class DeviceRemoved:
    device_id: str


@dataclass(frozen=True)
class Unrecognized:
    reason: str = ""


SignalEvent = Union[AdapterChanged, DeviceChanged, DeviceAdded, DeviceRemoved, Unrecognized]

# --- Resync ---


@dataclass(frozen=True)
class RefreshTick:
    pass


@dataclass(frozen=True)
class Resynced:
    adapters: tuple[Adapter, ...]
    records: tuple[DeviceRecord, ...]


# --- Command completion ---


@dataclass(frozen=True)
class CommandFailed:
    description: str
    error: str


# --- Pairing agent <-> UI ---


@dataclass(frozen=True)
class CredentialRequested:
    request: PendingCredentialRequest


@dataclass(frozen=True)
class SubmitPin:
    pin: str


@dataclass(frozen=True)
class SubmitConfirmation:
    confirmed: bool


# --- User input ---


@dataclass(frozen=True)
class UserCommand:
    action: str
    target: str | None = None
    args: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SelectDevice:
    device_id: str | None


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class StreamFailed:
    """A background source (dispatcher, ticker) died; fatal for the session."""

    error: BaseException

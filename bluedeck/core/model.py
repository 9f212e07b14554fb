"""Core data models used across the store, dispatcher, session, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

BATTERY_UNKNOWN = -1


@dataclass(frozen=True)
class Adapter:
    id: str
    name: str = ""
    address: str = ""
    powered: bool = False
    scanning: bool = False
    discoverable: bool = False
    modalias: str = ""

    @property
    def short_id(self) -> str:
        return self.id.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class Device:
    id: str
    name: str = ""
    address: str = ""
    address_type: str = ""
    icon: str = "Unknown"
    paired: bool = False
    trusted: bool = False
    connected: bool = False
    connectable: bool = False
    battery: int = BATTERY_UNKNOWN
    rssi: int | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.address or self.id


@dataclass(frozen=True)
class DeviceRecord:
    """A parsed device plus the raw attributes the usability filter needs."""

    device: Device
    advertised_name: str
    appearance: int
    uuids: tuple[str, ...]


class CredentialKind(str, Enum):
    PIN = "pin"
    PASSKEY = "passkey"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class PendingCredentialRequest:
    device_id: str
    kind: CredentialKind
    device_name: str = ""
    passkey: int | None = None


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the state store handed to renderers."""

    adapters: tuple[Adapter, ...] = ()
    paired: tuple[Device, ...] = ()
    unpaired: tuple[Device, ...] = ()
    selected_id: str | None = None
    pending_request: PendingCredentialRequest | None = None
    last_error: str | None = None

    @property
    def devices(self) -> tuple[Device, ...]:
        return self.paired + self.unpaired

    @property
    def selected(self) -> Device | None:
        for device in self.paired:
            if device.id == self.selected_id:
                return device
        return None

    def default_adapter(self) -> Adapter | None:
        return self.adapters[0] if self.adapters else None

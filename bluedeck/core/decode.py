"""Boundary decoding of BlueZ property maps and signals into typed values.

Everything that arrives from the transport is a loosely typed mapping. This
module turns it into the typed events and models the rest of the package
works with. Unknown keys are ignored and a malformed value only drops its own
key, never the whole event.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from bluedeck.core.errors import DecodeError
from bluedeck.core.events import (
    AdapterChanged,
    DeviceAdded,
    DeviceChanged,
    DeviceRemoved,
    SignalEvent,
    Unrecognized,
)
from bluedeck.core.model import Adapter, Device, DeviceRecord
from bluedeck.transports.base import RawSignal

LOGGER = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"
PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
ADAPTER_IFACE = "org.bluez.Adapter1"
DEVICE_IFACE = "org.bluez.Device1"
BATTERY_IFACE = "org.bluez.Battery1"

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(?:[-:][0-9A-Fa-f]{2}){5}$")
_PICTOGRAPHIC_CATEGORIES = {"So", "Sk", "Cs"}
_PICTOGRAPHIC_RANGES = ((0x2600, 0x27BF), (0x1F000, 0x1FAFF))

USABLE_UUIDS = frozenset(
    {
        "0000110a-0000-1000-8000-00805f9b34fb",  # A2DP Source
        "0000110b-0000-1000-8000-00805f9b34fb",  # A2DP Sink
        "00001108-0000-1000-8000-00805f9b34fb",  # HSP
        "0000111e-0000-1000-8000-00805f9b34fb",  # HFP
        "00001112-0000-1000-8000-00805f9b34fb",  # HID
        "00001124-0000-1000-8000-00805f9b34fb",  # AVRCP
        "0000180f-0000-1000-8000-00805f9b34fb",  # Battery Service
        "0000180a-0000-1000-8000-00805f9b34fb",  # Device Information
    }
)

USABLE_APPEARANCES = frozenset(
    {
        0x0040,  # Computer
        0x0140,  # Phone
        0x0440,  # Headphones
        0x0441,  # Headset
        0x0408,  # Car
        0x0540,  # Clock
        0x04C0,  # Wearable
    }
)

_ICON_CATEGORIES = {
    "audio-card": "Audio",
    "audio-headset": "Audio",
    "audio-headphones": "Audio",
    "audio-speaker": "Audio",
    "input-keyboard": "Keyboard",
    "input-mouse": "Mouse",
    "input-tablet": "Tablet",
    "input-gaming": "Controller",
    "phone": "Phone",
    "computer": "Computer",
    "computer-laptop": "Computer",
    "camera": "Camera",
    "printer": "Printer",
    "network-wireless": "Net Adapter",
}


# --- Per-key value decoders ---


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"expected string, got {type(value).__name__}")
    return value


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise DecodeError(f"expected boolean, got {type(value).__name__}")
    return value


def _as_int(value: Any, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"expected integer, got {type(value).__name__}")
    if not low <= value <= high:
        raise DecodeError(f"integer {value} outside [{low}, {high}]")
    return value


def _as_int16(value: Any) -> int:
    return _as_int(value, -32768, 32767)


def _as_uint16(value: Any) -> int:
    return _as_int(value, 0, 0xFFFF)


def _as_percentage(value: Any) -> int:
    return _as_int(value, 0, 100)


def _as_uuid_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise DecodeError(f"expected string list, got {type(value).__name__}")
    if not all(isinstance(item, str) for item in value):
        raise DecodeError("UUID list contains a non-string entry")
    return tuple(item.lower() for item in value)


Decoder = Callable[[Any], Any]

DEVICE_DECODERS: dict[str, Decoder] = {
    "Name": _as_str,
    "Alias": _as_str,
    "Address": _as_str,
    "AddressType": _as_str,
    "Icon": _as_str,
    "Paired": _as_bool,
    "Trusted": _as_bool,
    "Connected": _as_bool,
    "Connectable": _as_bool,
    "RSSI": _as_int16,
    "Appearance": _as_uint16,
    "UUIDs": _as_uuid_list,
}

ADAPTER_DECODERS: dict[str, Decoder] = {
    "Name": _as_str,
    "Address": _as_str,
    "Powered": _as_bool,
    "Discoverable": _as_bool,
    "Modalias": _as_str,
    "Discovering": _as_bool,
}

BATTERY_DECODERS: dict[str, Decoder] = {
    "Percentage": _as_percentage,
}

_DECODERS_BY_IFACE = {
    DEVICE_IFACE: DEVICE_DECODERS,
    ADAPTER_IFACE: ADAPTER_DECODERS,
    BATTERY_IFACE: BATTERY_DECODERS,
}


def decode_properties(props: Any, decoders: Mapping[str, Decoder]) -> dict[str, Any]:
    """Decode the well-known keys of a property map, skipping malformed ones."""
    if not isinstance(props, Mapping):
        raise DecodeError(f"expected property map, got {type(props).__name__}")
    decoded: dict[str, Any] = {}
    for key, decoder in decoders.items():
        if key not in props:
            continue
        try:
            decoded[key] = decoder(props[key])
        except DecodeError as exc:
            LOGGER.debug("Skipping property %s: %s", key, exc)
    return decoded


# --- Value normalization ---


def sanitize_name(value: str, replacement: str = "[?]") -> str:
    """Replace runs of pictographic characters, which break column widths."""
    out: list[str] = []
    in_run = False
    for char in value:
        code = ord(char)
        pictographic = unicodedata.category(char) in _PICTOGRAPHIC_CATEGORIES or any(
            low <= code <= high for low, high in _PICTOGRAPHIC_RANGES
        )
        if pictographic:
            if not in_run:
                out.append(replacement)
            in_run = True
        else:
            out.append(char)
            in_run = False
    return "".join(out)


def normalize_icon(icon: str) -> str:
    return _ICON_CATEGORIES.get(icon, "Unknown")


def looks_like_mac(value: str) -> bool:
    return bool(_MAC_RE.match(value))


# --- Field mapping shared by parsing and reconciliation ---


def device_updates(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Map decoded Device1/Battery1 keys onto `Device` field updates."""
    updates: dict[str, Any] = {}
    if "Name" in changes:
        updates["name"] = sanitize_name(changes["Name"])
    # Alias is the user's explicit choice and always wins over Name.
    if "Alias" in changes:
        updates["name"] = sanitize_name(changes["Alias"])
    if "Address" in changes:
        updates["address"] = changes["Address"]
    if "AddressType" in changes:
        updates["address_type"] = changes["AddressType"]
    if "Icon" in changes:
        updates["icon"] = normalize_icon(changes["Icon"])
    for key, attr in (
        ("Paired", "paired"),
        ("Trusted", "trusted"),
        ("Connected", "connected"),
        ("Connectable", "connectable"),
    ):
        if key in changes:
            updates[attr] = changes[key]
    if "RSSI" in changes:
        updates["rssi"] = changes["RSSI"]
    if "Percentage" in changes:
        updates["battery"] = changes["Percentage"]
    return updates


def adapter_updates(changes: Mapping[str, Any]) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    for key, attr in (
        ("Name", "name"),
        ("Address", "address"),
        ("Powered", "powered"),
        ("Discoverable", "discoverable"),
        ("Modalias", "modalias"),
        ("Discovering", "scanning"),
    ):
        if key in changes:
            updates[attr] = changes[key]
    return updates


# --- Entity parsing ---


def parse_adapter(path: str, props: Any) -> Adapter:
    return replace(Adapter(id=path), **adapter_updates(decode_properties(props, ADAPTER_DECODERS)))


def parse_device_record(path: str, interfaces: Mapping[str, Any]) -> DeviceRecord:
    """Build a `DeviceRecord` from the interfaces exported at one object path."""
    props = decode_properties(interfaces.get(DEVICE_IFACE, {}), DEVICE_DECODERS)
    battery_props = interfaces.get(BATTERY_IFACE)
    if battery_props is not None:
        try:
            props.update(decode_properties(battery_props, BATTERY_DECODERS))
        except DecodeError as exc:
            LOGGER.debug("Ignoring battery properties on %s: %s", path, exc)
    device = replace(Device(id=path), **device_updates(props))
    return DeviceRecord(
        device=device,
        advertised_name=props.get("Name", ""),
        appearance=props.get("Appearance", 0),
        uuids=props.get("UUIDs", ()),
    )


def parse_managed_objects(
    objects: Mapping[str, Mapping[str, Any]],
) -> tuple[tuple[Adapter, ...], tuple[DeviceRecord, ...]]:
    """Split a full-state query result into adapters and device records."""
    adapters: list[Adapter] = []
    records: list[DeviceRecord] = []
    for path, interfaces in objects.items():
        if not isinstance(interfaces, Mapping):
            LOGGER.debug("Ignoring object %s with malformed interface map", path)
            continue
        try:
            if ADAPTER_IFACE in interfaces:
                adapters.append(parse_adapter(path, interfaces[ADAPTER_IFACE]))
            if DEVICE_IFACE in interfaces:
                records.append(parse_device_record(path, interfaces))
        except DecodeError as exc:
            LOGGER.debug("Ignoring object %s: %s", path, exc)
    adapters.sort(key=lambda adapter: adapter.id)
    return tuple(adapters), tuple(records)


# --- Usability filter ---


@dataclass(frozen=True)
class UsabilityPolicy:
    uuids: frozenset[str] = USABLE_UUIDS
    appearances: frozenset[int] = USABLE_APPEARANCES

    def extended(self, uuids: Iterable[str] = (), appearances: Iterable[int] = ()) -> UsabilityPolicy:
        return UsabilityPolicy(
            uuids=self.uuids | {uuid.lower() for uuid in uuids},
            appearances=self.appearances | set(appearances),
        )

    def is_usable(self, record: DeviceRecord) -> bool:
        """Return False for nameless peers with no useful appearance or service."""
        name = record.advertised_name
        if name and not looks_like_mac(name):
            return True
        if record.appearance and record.appearance in self.appearances:
            return True
        return any(uuid in self.uuids for uuid in record.uuids)


DEFAULT_POLICY = UsabilityPolicy()


# --- Signal decoding ---


def decode_signal(signal: RawSignal) -> SignalEvent:
    """Decode one transport signal into exactly one typed event."""
    try:
        if signal.interface == OBJECT_MANAGER_IFACE and signal.member == "InterfacesAdded":
            return _decode_interfaces_added(signal.body)
        if signal.interface == OBJECT_MANAGER_IFACE and signal.member == "InterfacesRemoved":
            return _decode_interfaces_removed(signal.body)
        if signal.interface == PROPERTIES_IFACE and signal.member == "PropertiesChanged":
            return _decode_properties_changed(signal.path, signal.body)
    except DecodeError as exc:
        return Unrecognized(reason=f"{signal.member}: {exc}")
    return Unrecognized(reason=f"unhandled signal {signal.interface}.{signal.member}")


def _decode_interfaces_added(body: tuple[Any, ...]) -> SignalEvent:
    if len(body) < 2:
        raise DecodeError("InterfacesAdded needs a path and an interface map")
    path, interfaces = body[0], body[1]
    if not isinstance(path, str) or not isinstance(interfaces, Mapping):
        raise DecodeError("InterfacesAdded arguments have the wrong types")
    if DEVICE_IFACE not in interfaces:
        return Unrecognized(reason=f"no device interface added at {path}")
    return DeviceAdded(record=parse_device_record(path, interfaces))


def _decode_interfaces_removed(body: tuple[Any, ...]) -> SignalEvent:
    if len(body) < 1 or not isinstance(body[0], str):
        raise DecodeError("InterfacesRemoved needs an object path")
    path = body[0]
    if len(body) > 1 and isinstance(body[1], (list, tuple)) and DEVICE_IFACE not in body[1]:
        return Unrecognized(reason=f"no device interface removed at {path}")
    return DeviceRemoved(device_id=path)


def _decode_properties_changed(path: str, body: tuple[Any, ...]) -> SignalEvent:
    if len(body) < 2 or not isinstance(body[0], str):
        raise DecodeError("PropertiesChanged needs an interface name and a change set")
    interface, raw_changes = body[0], body[1]
    decoders = _DECODERS_BY_IFACE.get(interface)
    if decoders is None:
        return Unrecognized(reason=f"properties of {interface} are not tracked")
    if not isinstance(raw_changes, Mapping) or not raw_changes:
        return Unrecognized(reason=f"empty change set on {path}")
    changes = decode_properties(raw_changes, decoders)
    if not changes:
        return Unrecognized(reason=f"no recognized keys changed on {path}")
    if interface == ADAPTER_IFACE:
        return AdapterChanged(adapter_id=path, changes=changes)
    return DeviceChanged(device_id=path, changes=changes)

"""Resolve user-supplied device and adapter hints against a snapshot."""

from __future__ import annotations

from collections.abc import Sequence

from bluedeck.core.errors import DeviceSelectionError
from bluedeck.core.model import Adapter, Device


def match_score(device: Device, hint: str) -> int:
    lower_hint = hint.lower()
    address = device.address.lower()
    if device.id == hint or address == lower_hint:
        return 3
    if lower_hint in address:
        return 2
    if lower_hint in device.name.lower():
        return 1
    return 0


def resolve_device(devices: Sequence[Device], hint: str) -> Device:
    best: list[Device] = []
    best_score = 0
    for device in devices:
        score = match_score(device, hint)
        if score > best_score:
            best = [device]
            best_score = score
        elif score and score == best_score:
            best.append(device)

    if not best:
        raise DeviceSelectionError(f"No device found matching '{hint}'")
    if len(best) > 1:
        candidate_desc = ", ".join(f"{d.address} ({d.name})" for d in best)
        raise DeviceSelectionError(
            f"Multiple candidate devices found: {candidate_desc}. Use the MAC address to choose one."
        )
    return best[0]


def resolve_adapter(adapters: Sequence[Adapter], hint: str | None = None) -> Adapter:
    if not adapters:
        raise DeviceSelectionError("No Bluetooth adapter found. Ensure the bluetooth service is running.")
    if hint is None:
        return adapters[0]
    lower_hint = hint.lower()
    for adapter in adapters:
        if lower_hint in (adapter.id.lower(), adapter.short_id.lower(), adapter.address.lower()):
            return adapter
    raise DeviceSelectionError(f"No adapter found matching '{hint}'")

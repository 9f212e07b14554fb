"""In-memory mirror of adapters and devices.

The store has exactly one writer: the session's event-processing stream. It
never performs I/O. Transitions that need a follow-up action (pair -> trust ->
connect) are returned from `apply` as commands for the session to dispatch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from bluedeck.core import commands
from bluedeck.core.commands import Command
from bluedeck.core.decode import DEFAULT_POLICY, UsabilityPolicy, adapter_updates, device_updates
from bluedeck.core.events import (
    AdapterChanged,
    CommandFailed,
    CredentialRequested,
    DeviceAdded,
    DeviceChanged,
    DeviceRemoved,
    Resynced,
    SelectDevice,
    SubmitConfirmation,
    SubmitPin,
    UserCommand,
)
from bluedeck.core.model import Adapter, Device, Snapshot

LOGGER = logging.getLogger(__name__)


def unpaired_sort_key(device: Device) -> tuple[bool, int, str]:
    """Strongest signal first, no reading last, then case-insensitive name."""
    return (device.rssi is None, -(device.rssi or 0), device.name.casefold())


class StateStore:
    def __init__(self, policy: UsabilityPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy
        self._adapters: list[Adapter] = []
        self._paired: list[Device] = []
        self._unpaired: list[Device] = []
        self._selected_id: str | None = None
        self._pending = None
        self._last_error: str | None = None
        self._snapshot = Snapshot()
        self._handlers: dict[type, Callable[[Any], list[Command]]] = {
            Resynced: self._apply_resync,
            AdapterChanged: self._apply_adapter_changed,
            DeviceChanged: self._apply_device_changed,
            DeviceAdded: self._apply_device_added,
            DeviceRemoved: self._apply_device_removed,
            CommandFailed: self._apply_command_failed,
            CredentialRequested: self._apply_credential_requested,
            SubmitPin: self._apply_credential_resolved,
            SubmitConfirmation: self._apply_credential_resolved,
            SelectDevice: self._apply_select,
            UserCommand: self._apply_user_command,
        }

    def snapshot(self) -> Snapshot:
        return self._snapshot

    def apply(self, event: object) -> list[Command]:
        """Apply one event and return the follow-up commands it schedules."""
        handler = self._handlers.get(type(event))
        if handler is None:
            return []
        follow_ups = handler(event)
        self._unpaired.sort(key=unpaired_sort_key)
        self._snapshot = Snapshot(
            adapters=tuple(self._adapters),
            paired=tuple(self._paired),
            unpaired=tuple(self._unpaired),
            selected_id=self._selected_id,
            pending_request=self._pending,
            last_error=self._last_error,
        )
        return follow_ups

    def _locate(self, device_id: str) -> tuple[list[Device], int] | None:
        for devices in (self._paired, self._unpaired):
            for index, device in enumerate(devices):
                if device.id == device_id:
                    return devices, index
        return None

    def _apply_resync(self, event: Resynced) -> list[Command]:
        self._adapters = sorted(event.adapters, key=lambda adapter: adapter.id)
        self._paired = []
        self._unpaired = []
        for record in event.records:
            if not self.policy.is_usable(record):
                LOGGER.debug("Filtered unusable device %s", record.device.id)
                continue
            if record.device.paired:
                self._paired.append(record.device)
            else:
                self._unpaired.append(record.device)

        self._selected_id = self._paired[0].id if self._paired else None
        return []

    def _apply_adapter_changed(self, event: AdapterChanged) -> list[Command]:
        updates = adapter_updates(event.changes)
        for index, adapter in enumerate(self._adapters):
            if adapter.id == event.adapter_id:
                self._adapters[index] = replace(adapter, **updates)
                return []
        self._adapters.append(replace(Adapter(id=event.adapter_id), **updates))
        self._adapters.sort(key=lambda adapter: adapter.id)
        return []

    def _apply_device_changed(self, event: DeviceChanged) -> list[Command]:
        located = self._locate(event.device_id)
        if located is None:
            LOGGER.debug("Dropping change for untracked device %s", event.device_id)
            return []

        devices, index = located
        old = devices[index]
        new = replace(old, **device_updates(event.changes))
        follow_ups: list[Command] = []

        if new.paired != old.paired:
            del devices[index]
            if new.paired:
                self._paired.append(new)
                # BlueZ refuses to auto-connect untrusted peers.
                follow_ups.append(commands.trust(new.id))
            else:
                self._unpaired.append(new)
                if self._selected_id == new.id:
                    self._selected_id = None
        else:
            devices[index] = new

        if new.trusted and not old.trusted and new.paired and not new.connected:
            follow_ups.append(commands.connect(new.id))
        return follow_ups

    def _apply_device_added(self, event: DeviceAdded) -> list[Command]:
        record = event.record
        if not self.policy.is_usable(record):
            LOGGER.debug("Filtered unusable device %s", record.device.id)
            return []

        device = record.device
        located = self._locate(device.id)
        if located is not None:
            devices, index = located
            if devices[index].paired == device.paired:
                devices[index] = device
                return []
            del devices[index]
        (self._paired if device.paired else self._unpaired).append(device)
        return []

    def _apply_device_removed(self, event: DeviceRemoved) -> list[Command]:
        located = self._locate(event.device_id)
        if located is None:
            return []
        devices, index = located
        del devices[index]
        if self._selected_id == event.device_id:
            self._selected_id = None
        return []

    def _apply_command_failed(self, event: CommandFailed) -> list[Command]:
        self._last_error = f"{event.description}: {event.error}"
        return []

    def _apply_user_command(self, event: UserCommand) -> list[Command]:
        # An error stays visible until the next user command.
        self._last_error = None
        return []

    def _apply_credential_requested(self, event: CredentialRequested) -> list[Command]:
        self._pending = event.request
        return []

    def _apply_credential_resolved(self, event: object) -> list[Command]:
        self._pending = None
        return []

    def _apply_select(self, event: SelectDevice) -> list[Command]:
        if event.device_id is None or any(device.id == event.device_id for device in self._paired):
            self._selected_id = event.device_id
        return []

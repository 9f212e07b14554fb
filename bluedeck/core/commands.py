"""Imperative actions against the Bluetooth service.

Every command issues a single transport call and returns as soon as that call
returns. None of them wait for the state change they cause; that arrives
later through the signal stream. Failures surface as `TransportError` and are
never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from bluedeck.core.decode import ADAPTER_IFACE, DEVICE_IFACE
from bluedeck.core.errors import TransportError
from bluedeck.transports.base import RadioSwitch, Transport

LOGGER = logging.getLogger(__name__)


class Action(str, Enum):
    POWER = "power"
    SCAN = "scan"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    PAIR = "pair"
    TRUST = "trust"
    FORGET = "forget"


@dataclass(frozen=True)
class Command:
    action: Action
    target: str
    enable: bool = True
    adapter_id: str | None = None

    def describe(self) -> str:
        if self.action in (Action.POWER, Action.SCAN):
            state = "on" if self.enable else "off"
            return f"{self.action.value} {state} on {self.target}"
        return f"{self.action.value} {self.target}"


def power(adapter_id: str, on: bool) -> Command:
    return Command(Action.POWER, adapter_id, enable=on)


def scan(adapter_id: str, on: bool) -> Command:
    return Command(Action.SCAN, adapter_id, enable=on)


def connect(device_id: str) -> Command:
    return Command(Action.CONNECT, device_id)


def disconnect(device_id: str) -> Command:
    return Command(Action.DISCONNECT, device_id)


def pair(device_id: str) -> Command:
    return Command(Action.PAIR, device_id)


def trust(device_id: str) -> Command:
    return Command(Action.TRUST, device_id)


def forget(adapter_id: str, device_id: str) -> Command:
    return Command(Action.FORGET, device_id, adapter_id=adapter_id)


class CommandLayer:
    def __init__(self, transport: Transport, radio: RadioSwitch) -> None:
        self.transport = transport
        self.radio = radio

    async def execute(self, command: Command) -> None:
        LOGGER.info("Executing %s", command.describe())
        if command.action is Action.POWER:
            await self.set_power(command.target, command.enable)
        elif command.action is Action.SCAN:
            if command.enable:
                await self.start_scan(command.target)
            else:
                await self.stop_scan(command.target)
        elif command.action is Action.CONNECT:
            await self.connect(command.target)
        elif command.action is Action.DISCONNECT:
            await self.disconnect(command.target)
        elif command.action is Action.PAIR:
            await self.pair(command.target)
        elif command.action is Action.TRUST:
            await self.trust(command.target)
        elif command.action is Action.FORGET:
            if command.adapter_id is None:
                raise TransportError(f"Cannot forget {command.target}: no adapter known")
            await self.forget(command.adapter_id, command.target)
        else:  # pragma: no cover - exhaustive over Action
            raise TransportError(f"Unsupported action '{command.action}'")

    async def set_power(self, adapter_id: str, on: bool) -> None:
        # The radio can be hard-blocked independently of BlueZ, so the kill
        # switch is set first and both have to agree for Powered to read true.
        await self.radio.set_blocked(not on)
        await self.transport.set_property(adapter_id, ADAPTER_IFACE, "Powered", on)

    async def start_scan(self, adapter_id: str) -> None:
        await self.transport.call_method(adapter_id, ADAPTER_IFACE, "StartDiscovery")

    async def stop_scan(self, adapter_id: str) -> None:
        await self.transport.call_method(adapter_id, ADAPTER_IFACE, "StopDiscovery")

    async def connect(self, device_id: str) -> None:
        await self.transport.call_method(device_id, DEVICE_IFACE, "Connect")

    async def disconnect(self, device_id: str) -> None:
        await self.transport.call_method(device_id, DEVICE_IFACE, "Disconnect")

    async def pair(self, device_id: str) -> None:
        await self.transport.call_method(device_id, DEVICE_IFACE, "Pair")

    async def trust(self, device_id: str) -> None:
        await self.transport.set_property(device_id, DEVICE_IFACE, "Trusted", True)

    async def forget(self, adapter_id: str, device_id: str) -> None:
        await self.transport.call_method(adapter_id, ADAPTER_IFACE, "RemoveDevice", device_id)

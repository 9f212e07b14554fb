"""Stable public API for building tooling on top of bluedeck.

This module is the supported integration surface for third-party callers.
`Client` runs one-shot operations (each opens the bus, resyncs, acts, and
closes). Long-running frontends should build a `Session` instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from bluedeck.core import commands
from bluedeck.core.agent import PairingAgent
from bluedeck.core.commands import Command, CommandLayer
from bluedeck.core.config import Config
from bluedeck.core.device_match import resolve_adapter, resolve_device
from bluedeck.core.errors import (
    AgentBusy,
    AgentError,
    AgentNotReady,
    AgentStateError,
    BluedeckError,
    ConfigError,
    ConnectionLost,
    DecodeError,
    DeviceSelectionError,
    PairingRejected,
    RadioSwitchError,
    TransportCallError,
    TransportError,
)
from bluedeck.core.events import CredentialRequested
from bluedeck.core.model import Adapter, CredentialKind, Device, PendingCredentialRequest, Snapshot
from bluedeck.core.session import AppContext, Session, fetch_state, owning_adapter_id
from bluedeck.core.store import StateStore
from bluedeck.transports.base import RadioSwitch, Transport
from bluedeck.transports.rfkill import RfkillSwitch

__all__ = [
    "BluedeckError",
    "ConfigError",
    "ConnectionLost",
    "DecodeError",
    "DeviceSelectionError",
    "TransportError",
    "TransportCallError",
    "RadioSwitchError",
    "AgentError",
    "AgentBusy",
    "AgentNotReady",
    "AgentStateError",
    "PairingRejected",
    "Adapter",
    "Device",
    "CredentialKind",
    "PendingCredentialRequest",
    "Snapshot",
    "AppContext",
    "Session",
    "Client",
    "default_transport_factory",
]

T = TypeVar("T")
TransportFactory = Callable[[], Awaitable[Transport]]
CredentialPrompt = Callable[[PendingCredentialRequest], str]


async def default_transport_factory() -> Transport:
    from bluedeck.transports.bluez import BluezTransport

    return await BluezTransport.connect()


class Client:
    """Public client for one-shot operations against the Bluetooth service."""

    def __init__(
        self,
        *,
        transport_factory: TransportFactory | None = None,
        radio: RadioSwitch | None = None,
        config: Config | None = None,
    ) -> None:
        self.transport_factory = transport_factory or default_transport_factory
        self.radio = radio or RfkillSwitch()
        self.config = config or Config()

    def snapshot(self) -> Snapshot:
        return self._run(self._snapshot)

    def list_adapters(self) -> list[Adapter]:
        return list(self.snapshot().adapters)

    def list_devices(self, *, include_unpaired: bool = True) -> list[Device]:
        snapshot = self.snapshot()
        if include_unpaired:
            return list(snapshot.devices)
        return list(snapshot.paired)

    def set_power(self, on: bool, *, adapter_hint: str | None = None) -> Adapter:
        async def work(transport: Transport) -> Adapter:
            adapter = resolve_adapter((await self._snapshot(transport)).adapters, adapter_hint)
            await self._execute(transport, commands.power(adapter.id, on))
            return adapter

        return self._run(work)

    def scan(self, duration_s: float, *, adapter_hint: str | None = None) -> list[Device]:
        """Discover for `duration_s` seconds and return the nearby devices.

        BlueZ stops discovery once the requesting client disconnects, so the
        scan has to happen inside a single connection.
        """

        async def work(transport: Transport) -> list[Device]:
            adapter = resolve_adapter((await self._snapshot(transport)).adapters, adapter_hint)
            await self._execute(transport, commands.scan(adapter.id, True))
            try:
                await asyncio.sleep(duration_s)
                return list((await self._snapshot(transport)).unpaired)
            finally:
                await self._execute(transport, commands.scan(adapter.id, False))

        return self._run(work)

    def connect(self, device_hint: str) -> Device:
        return self._device_command(device_hint, lambda d: commands.connect(d.id))

    def disconnect(self, device_hint: str) -> Device:
        return self._device_command(device_hint, lambda d: commands.disconnect(d.id))

    def trust(self, device_hint: str) -> Device:
        return self._device_command(device_hint, lambda d: commands.trust(d.id))

    def forget(self, device_hint: str) -> Device:
        return self._device_command(device_hint, lambda d: commands.forget(owning_adapter_id(d.id), d.id))

    def pair(self, device_hint: str, prompt: CredentialPrompt) -> Device:
        """Pair and trust a device, answering credential requests via `prompt`.

        `prompt` is called off the event loop and must return the PIN or
        passkey, or "yes"/"no" for a confirmation.
        """

        async def work(transport: Transport) -> Device:
            device = resolve_device((await self._snapshot(transport)).devices, device_hint)
            agent = PairingAgent(name_lookup=lambda _: _constant(device.display_name))
            requests: asyncio.Queue[CredentialRequested] = asyncio.Queue(maxsize=1)
            agent.attach(requests)
            await transport.register_agent(
                agent, path=self.config.agent_path, capability=self.config.agent_capability
            )
            answering = asyncio.get_running_loop().create_task(_answer_requests(agent, requests, prompt))
            try:
                await self._execute(transport, commands.pair(device.id))
            except BluedeckError:
                failure = await _stop_answering(answering)
                if failure is not None:
                    reason = str(failure) or type(failure).__name__
                    raise PairingRejected(f"Pairing canceled: {reason}") from failure
                raise
            finally:
                answering.cancel()
                agent.shutdown()
            await self._execute(transport, commands.trust(device.id))
            return device

        return self._run(work)

    # --- Internals ---

    def _device_command(self, device_hint: str, build: Callable[[Device], Command]) -> Device:
        async def work(transport: Transport) -> Device:
            device = resolve_device((await self._snapshot(transport)).devices, device_hint)
            await self._execute(transport, build(device))
            return device

        return self._run(work)

    async def _snapshot(self, transport: Transport) -> Snapshot:
        store = StateStore(self.config.usability_policy())
        store.apply(await fetch_state(transport))
        return store.snapshot()

    async def _execute(self, transport: Transport, command: Command) -> None:
        await CommandLayer(transport, self.radio).execute(command)

    def _run(self, work: Callable[[Transport], Awaitable[T]]) -> T:
        async def main() -> T:
            transport = await self.transport_factory()
            try:
                return await work(transport)
            finally:
                await transport.close()

        return asyncio.run(main())


async def _constant(value: str) -> str:
    return value


async def _stop_answering(task: asyncio.Task[None]) -> Exception | None:
    """Stop the prompt task and return the error it died with, if any."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        return None
    except Exception as exc:
        return exc
    return None


async def _answer_requests(
    agent: PairingAgent,
    requests: asyncio.Queue[CredentialRequested],
    prompt: CredentialPrompt,
) -> None:
    while True:
        message = await requests.get()
        try:
            answer = await asyncio.to_thread(prompt, message.request)
        except Exception:
            agent.reject()
            raise
        if message.request.kind is CredentialKind.CONFIRM:
            agent.submit_confirmation(answer.strip().lower() in ("y", "yes"))
        else:
            agent.submit_pin(answer)

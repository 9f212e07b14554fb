"""The session: one serialized event-processing stream around the store.

Every state mutation happens in `Session.run`, one event at a time:
dispatcher output, refresh ticks, resync results, command failures, pairing
agent notifications, and UI input all arrive through the same queue. The
store therefore needs no locks. Commands and resyncs run as separate tasks
and report back through the queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from bluedeck.core import commands
from bluedeck.core.agent import PairingAgent
from bluedeck.core.commands import Command, CommandLayer
from bluedeck.core.config import Config
from bluedeck.core.decode import DEVICE_IFACE, parse_managed_objects
from bluedeck.core.device_match import resolve_adapter, resolve_device
from bluedeck.core.dispatcher import SignalDispatcher
from bluedeck.core.errors import AgentStateError, BluedeckError, ConnectionLost, TransportError
from bluedeck.core.events import (
    CommandFailed,
    CredentialRequested,
    Quit,
    RefreshTick,
    Resynced,
    SelectDevice,
    StreamFailed,
    SubmitConfirmation,
    SubmitPin,
    UserCommand,
)
from bluedeck.core.model import Snapshot
from bluedeck.core.refresh import RefreshScheduler
from bluedeck.core.store import StateStore
from bluedeck.transports.base import RadioSwitch, Transport

LOGGER = logging.getLogger(__name__)

Listener = Callable[[Snapshot], None]

DEVICE_ACTIONS = frozenset({"select", "toggle", "connect", "disconnect", "pair", "trust", "forget"})


@dataclass
class AppContext:
    """Everything a session owns; handed to each component at construction."""

    transport: Transport
    radio: RadioSwitch
    config: Config = field(default_factory=Config)
    events: asyncio.Queue[object] = field(default_factory=asyncio.Queue)


def owning_adapter_id(device_id: str) -> str:
    return device_id.rsplit("/", 1)[0]


async def fetch_state(transport: Transport) -> Resynced:
    """Run the full-state query and parse it into a `Resynced` event."""
    adapters, records = parse_managed_objects(await transport.get_managed_objects())
    return Resynced(adapters=adapters, records=records)


class Session:
    def __init__(self, context: AppContext) -> None:
        self.context = context
        self.store = StateStore(context.config.usability_policy())
        self.commands = CommandLayer(context.transport, context.radio)
        self.agent = PairingAgent(name_lookup=self._lookup_name)
        self.agent_requests: asyncio.Queue[CredentialRequested] = asyncio.Queue(maxsize=1)
        self.agent.attach(self.agent_requests)
        self.dispatcher = SignalDispatcher(context.transport, context.events)
        self.refresher = RefreshScheduler(context.events, context.config.refresh_interval_s)
        self.listeners: list[Listener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    # --- UI-facing surface ---

    def snapshot(self) -> Snapshot:
        return self.store.snapshot()

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def post(self, event: object) -> None:
        """Queue a UI-origin event (user command, PIN, confirmation, quit)."""
        self.context.events.put_nowait(event)

    # --- Event stream ---

    async def run(self) -> None:
        """Process events until `Quit`; raise `ConnectionLost` if the bus drops."""
        events = self.context.events
        await self._register_agent()
        sources = [
            self._start_source(self.dispatcher.run(), "signal dispatcher"),
            self._start_source(self.refresher.run(), "refresh scheduler"),
            self._start_source(self._forward_agent_requests(), "agent channel"),
        ]
        self._spawn(self._resync())
        try:
            while True:
                event = await events.get()
                if isinstance(event, Quit):
                    LOGGER.info("Session quit requested")
                    return
                if isinstance(event, StreamFailed):
                    if isinstance(event.error, ConnectionLost):
                        raise event.error
                    raise ConnectionLost(f"Event source failed: {event.error}") from event.error
                self.handle(event)
        finally:
            await self._shutdown(sources)

    def handle(self, event: object) -> None:
        """Apply one event. Never awaits, so events are strictly serialized."""
        if isinstance(event, RefreshTick):
            self._spawn(self._resync())
            return
        if isinstance(event, UserCommand):
            self._handle_user_command(event)
        elif isinstance(event, (SubmitPin, SubmitConfirmation)):
            self._handle_submission(event)
        else:
            for follow_up in self.store.apply(event):
                self.dispatch(follow_up)
        self._notify()

    def dispatch(self, command: Command) -> None:
        self._spawn(self._execute(command))

    # --- Handlers ---

    def _handle_user_command(self, event: UserCommand) -> None:
        self.store.apply(event)
        if event.action == "refresh":
            self._spawn(self._resync())
            return
        try:
            command = self._build_command(event)
        except BluedeckError as exc:
            self.store.apply(CommandFailed(event.action, str(exc)))
            return
        if command is not None:
            self.dispatch(command)

    def _build_command(self, event: UserCommand) -> Command | None:
        snapshot = self.store.snapshot()
        action = event.action
        if action in ("power", "scan"):
            adapter = resolve_adapter(snapshot.adapters, event.target)
            current = adapter.powered if action == "power" else adapter.scanning
            enable = _parse_switch(event.args, default=not current)
            if action == "power":
                return commands.power(adapter.id, enable)
            return commands.scan(adapter.id, enable)

        if action not in DEVICE_ACTIONS:
            raise BluedeckError(f"Unknown action '{action}'")
        if event.target is None:
            raise BluedeckError(f"'{action}' needs a device")
        device = resolve_device(snapshot.devices, event.target)
        if action == "select":
            self.store.apply(SelectDevice(device.id))
            return None
        if action == "toggle":
            return commands.disconnect(device.id) if device.connected else commands.connect(device.id)
        if action == "connect":
            return commands.connect(device.id)
        if action == "disconnect":
            return commands.disconnect(device.id)
        if action == "pair":
            return commands.pair(device.id)
        if action == "trust":
            return commands.trust(device.id)
        return commands.forget(owning_adapter_id(device.id), device.id)

    def _handle_submission(self, event: SubmitPin | SubmitConfirmation) -> None:
        try:
            if isinstance(event, SubmitPin):
                self.agent.submit_pin(event.pin)
            else:
                self.agent.submit_confirmation(event.confirmed)
        except AgentStateError as exc:
            LOGGER.warning("Ignoring answer: %s", exc)
            self.store.apply(CommandFailed("pairing", str(exc)))
            return
        self.store.apply(event)

    # --- Tasks ---

    async def _resync(self) -> None:
        try:
            event = await fetch_state(self.context.transport)
        except ConnectionLost as exc:
            await self.context.events.put(StreamFailed(exc))
            return
        except TransportError as exc:
            LOGGER.warning("Resync failed: %s", exc)
            await self.context.events.put(CommandFailed("refresh", str(exc)))
            return
        await self.context.events.put(event)

    async def _execute(self, command: Command) -> None:
        try:
            await self.commands.execute(command)
        except ConnectionLost as exc:
            await self.context.events.put(StreamFailed(exc))
        except TransportError as exc:
            # Reported, never retried: a blind retry against a stateful peer
            # can start a second pairing attempt.
            LOGGER.warning("Command %s failed: %s", command.describe(), exc)
            await self.context.events.put(CommandFailed(command.describe(), str(exc)))

    async def _forward_agent_requests(self) -> None:
        while True:
            request = await self.agent_requests.get()
            await self.context.events.put(request)

    async def _register_agent(self) -> None:
        config = self.context.config
        try:
            await self.context.transport.register_agent(
                self.agent, path=config.agent_path, capability=config.agent_capability
            )
        except ConnectionLost:
            raise
        except TransportError as exc:
            LOGGER.warning("Pairing agent registration failed: %s", exc)
            self.store.apply(CommandFailed("register agent", str(exc)))

    async def _lookup_name(self, device_id: str) -> str | None:
        name = await self.context.transport.get_property(device_id, DEVICE_IFACE, "Name")
        return name if isinstance(name, str) else None

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _start_source(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=name)

        def _on_done(finished: asyncio.Task[None]) -> None:
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                LOGGER.error("%s stopped: %s", name, error)
                self.context.events.put_nowait(StreamFailed(error))

        task.add_done_callback(_on_done)
        return task

    async def _shutdown(self, sources: list[asyncio.Task[None]]) -> None:
        self.agent.shutdown()
        pending = [*sources, *self._tasks]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _notify(self) -> None:
        snapshot = self.store.snapshot()
        for listener in self.listeners:
            listener(snapshot)


def _parse_switch(args: tuple[str, ...], *, default: bool) -> bool:
    if not args:
        return default
    value = args[0].lower()
    if value in ("on", "yes", "true", "1"):
        return True
    if value in ("off", "no", "false", "0"):
        return False
    raise BluedeckError(f"Expected 'on' or 'off', got '{args[0]}'")

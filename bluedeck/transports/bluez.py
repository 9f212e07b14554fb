"""BlueZ transport over the system D-Bus, backed by dbus_next."""

import asyncio
import contextlib
import logging
from typing import Any

from dbus_next import BusType, Message, MessageType, Variant
from dbus_next.aio import MessageBus
from dbus_next.errors import DBusError
from dbus_next.service import ServiceInterface, method

from bluedeck.core.agent import PairingAgent
from bluedeck.core.decode import BLUEZ_SERVICE, OBJECT_MANAGER_IFACE, PROPERTIES_IFACE
from bluedeck.core.errors import (
    AgentBusy,
    AgentError,
    AgentNotReady,
    ConnectionLost,
    PairingRejected,
    TransportCallError,
)
from bluedeck.transports.base import ManagedObjects, RawSignal

LOGGER = logging.getLogger(__name__)

AGENT_IFACE = "org.bluez.Agent1"
AGENT_MANAGER_IFACE = "org.bluez.AgentManager1"
AGENT_MANAGER_PATH = "/org/bluez"
SIGNAL_MATCH_RULE = "type='signal',sender='org.bluez'"

_SUBSCRIBED_SIGNALS = {
    (OBJECT_MANAGER_IFACE, "InterfacesAdded"),
    (OBJECT_MANAGER_IFACE, "InterfacesRemoved"),
    (PROPERTIES_IFACE, "PropertiesChanged"),
}
_METHOD_SIGNATURES = {
    "RemoveDevice": "o",
}
_DISCONNECTED = object()


def unwrap(value: Any) -> Any:
    """Recursively replace dbus_next Variants with their plain values."""
    if isinstance(value, Variant):
        return unwrap(value.value)
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unwrap(item) for item in value]
    return value


def _variant_for(value: Any) -> Variant:
    if isinstance(value, bool):
        return Variant("b", value)
    if isinstance(value, int):
        return Variant("i", value)
    if isinstance(value, str):
        return Variant("s", value)
    raise TypeError(f"Cannot send {type(value).__name__} as a D-Bus property value")


def _agent_error(exc: AgentError) -> DBusError:
    if isinstance(exc, (PairingRejected, AgentBusy)):
        return DBusError("org.bluez.Error.Rejected", str(exc))
    if isinstance(exc, AgentNotReady):
        return DBusError("org.bluez.Error.Failed", str(exc))
    return DBusError("org.bluez.Error.Canceled", str(exc))


class BluezAgentInterface(ServiceInterface):
    """Exports a `PairingAgent` as org.bluez.Agent1."""

    def __init__(self, agent: PairingAgent) -> None:
        super().__init__(AGENT_IFACE)
        self.agent = agent

    @method()
    async def RequestPinCode(self, device: "o") -> "s":
        try:
            return await self.agent.request_pin_code(device)
        except AgentError as exc:
            raise _agent_error(exc) from exc

    @method()
    async def RequestPasskey(self, device: "o") -> "u":
        try:
            return await self.agent.request_passkey(device)
        except AgentError as exc:
            raise _agent_error(exc) from exc

    @method()
    async def RequestConfirmation(self, device: "o", passkey: "u"):
        try:
            await self.agent.request_confirmation(device, passkey)
        except AgentError as exc:
            raise _agent_error(exc) from exc

    @method()
    def AuthorizeService(self, device: "o", uuid: "s"):
        self.agent.authorize_service(device, uuid)

    @method()
    def RequestAuthorization(self, device: "o"):
        self.agent.request_authorization(device)

    @method()
    def DisplayPasskey(self, device: "o", passkey: "u", entered: "q"):
        self.agent.display_passkey(device, passkey, entered)

    @method()
    def DisplayPinCode(self, device: "o", pincode: "s"):
        self.agent.display_pin_code(device, pincode)

    @method()
    def Release(self):
        self.agent.release()

    @method()
    def Cancel(self):
        self.agent.cancel()


class BluezTransport:
    def __init__(self, bus: MessageBus) -> None:
        self._bus = bus
        self._signals: asyncio.Queue[Any] = asyncio.Queue()
        self._agent_path: str | None = None
        self._disconnect_watch: asyncio.Task[None] | None = None

    @classmethod
    async def connect(cls) -> "BluezTransport":
        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except (DBusError, OSError) as exc:
            raise ConnectionLost(f"Failed to connect to D-Bus system bus: {exc}") from exc
        transport = cls(bus)
        await transport.subscribe()
        return transport

    async def subscribe(self) -> None:
        self._bus.add_message_handler(self._on_message)
        await self._call(
            Message(
                destination="org.freedesktop.DBus",
                path="/org/freedesktop/DBus",
                interface="org.freedesktop.DBus",
                member="AddMatch",
                signature="s",
                body=[SIGNAL_MATCH_RULE],
            )
        )
        self._disconnect_watch = asyncio.get_running_loop().create_task(self._watch_disconnect())

    # --- Transport protocol ---

    async def get_managed_objects(self) -> ManagedObjects:
        reply = await self._call(
            Message(
                destination=BLUEZ_SERVICE,
                path="/",
                interface=OBJECT_MANAGER_IFACE,
                member="GetManagedObjects",
            )
        )
        return unwrap(reply.body[0]) if reply.body else {}

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        reply = await self._call(
            Message(
                destination=BLUEZ_SERVICE,
                path=path,
                interface=PROPERTIES_IFACE,
                member="Get",
                signature="ss",
                body=[interface, name],
            )
        )
        return unwrap(reply.body[0]) if reply.body else None

    async def set_property(self, path: str, interface: str, name: str, value: Any) -> None:
        await self._call(
            Message(
                destination=BLUEZ_SERVICE,
                path=path,
                interface=PROPERTIES_IFACE,
                member="Set",
                signature="ssv",
                body=[interface, name, _variant_for(value)],
            )
        )

    async def call_method(self, path: str, interface: str, member: str, *args: Any) -> Any:
        reply = await self._call(
            Message(
                destination=BLUEZ_SERVICE,
                path=path,
                interface=interface,
                member=member,
                signature=_METHOD_SIGNATURES.get(member, ""),
                body=list(args),
            )
        )
        if not reply.body:
            return None
        body = unwrap(list(reply.body))
        return body[0] if len(body) == 1 else body

    async def next_signal(self) -> RawSignal:
        item = await self._signals.get()
        if item is _DISCONNECTED:
            # Leave the sentinel for any later reader.
            self._signals.put_nowait(_DISCONNECTED)
            raise ConnectionLost("D-Bus connection closed")
        return item

    async def register_agent(self, agent: PairingAgent, *, path: str, capability: str) -> None:
        self._bus.export(path, BluezAgentInterface(agent))
        self._agent_path = path
        try:
            await self._agent_manager_call("RegisterAgent", "os", [path, capability])
        except TransportCallError as exc:
            LOGGER.warning("Failed to register agent (may already exist): %s", exc)
            with contextlib.suppress(TransportCallError):
                await self._agent_manager_call("UnregisterAgent", "o", [path])
            await self._agent_manager_call("RegisterAgent", "os", [path, capability])
        await self._agent_manager_call("RequestDefaultAgent", "o", [path])
        LOGGER.info("Agent registered at %s with capability %s", path, capability)

    async def close(self) -> None:
        if self._agent_path is not None and self._bus.connected:
            with contextlib.suppress(TransportCallError, ConnectionLost):
                await self._agent_manager_call("UnregisterAgent", "o", [self._agent_path])
            self._bus.unexport(self._agent_path)
            self._agent_path = None
        if self._disconnect_watch is not None:
            self._disconnect_watch.cancel()
        self._bus.disconnect()

    # --- Internals ---

    def _on_message(self, msg: Message) -> None:
        if msg.message_type != MessageType.SIGNAL:
            return None
        if (msg.interface, msg.member) not in _SUBSCRIBED_SIGNALS:
            return None
        self._signals.put_nowait(
            RawSignal(
                path=msg.path,
                interface=msg.interface,
                member=msg.member,
                body=tuple(unwrap(list(msg.body))),
            )
        )
        return None

    async def _watch_disconnect(self) -> None:
        try:
            await self._bus.wait_for_disconnect()
        except Exception as exc:  # the bus re-raises whatever broke the connection
            LOGGER.error("D-Bus connection lost: %s", exc)
        self._signals.put_nowait(_DISCONNECTED)

    async def _agent_manager_call(self, member: str, signature: str, body: list[Any]) -> None:
        await self._call(
            Message(
                destination=BLUEZ_SERVICE,
                path=AGENT_MANAGER_PATH,
                interface=AGENT_MANAGER_IFACE,
                member=member,
                signature=signature,
                body=body,
            )
        )

    async def _call(self, message: Message) -> Message:
        if not self._bus.connected:
            raise ConnectionLost("D-Bus connection closed")
        try:
            reply = await self._bus.call(message)
        except DBusError as exc:
            raise TransportCallError(f"{message.member} failed: {exc.text}", error_name=exc.type) from exc
        except (EOFError, OSError) as exc:
            raise ConnectionLost(f"D-Bus connection lost during {message.member}: {exc}") from exc

        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else reply.error_name
            raise TransportCallError(f"{message.member} failed: {detail}", error_name=reply.error_name)
        return reply

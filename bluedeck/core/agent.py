"""Pairing agent: answers BlueZ credential requests with human input.

BlueZ calls the agent and waits for a reply. The agent forwards a
"need-input" notification to the UI through a single-slot outbound channel
and then waits on a single-slot answer channel. Both waits happen in the
agent's own task, so the session keeps processing signals meanwhile.

Only one request can be outstanding. The handshake is tracked explicitly as
`AgentState.IDLE` / `AgentState.AWAITING_ANSWER`; a second request while
awaiting is rejected with `AgentBusy`, and an answer submitted while idle
raises `AgentStateError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from bluedeck.core.errors import (
    AgentBusy,
    AgentNotReady,
    AgentStateError,
    PairingRejected,
    TransportError,
)
from bluedeck.core.events import CredentialRequested
from bluedeck.core.model import CredentialKind, PendingCredentialRequest

LOGGER = logging.getLogger(__name__)

CONFIRM_YES = "yes"
CONFIRM_NO = "no"
UNKNOWN_DEVICE_NAME = "Unknown Device"
_MAX_PASSKEY = 999999

NameLookup = Callable[[str], Awaitable[str | None]]


class AgentState(Enum):
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting-answer"


class PairingAgent:
    def __init__(self, name_lookup: NameLookup | None = None) -> None:
        self.name_lookup = name_lookup
        self.state = AgentState.IDLE
        self.pending: PendingCredentialRequest | None = None
        self._outbound: asyncio.Queue[CredentialRequested] | None = None
        self._answers: asyncio.Queue[str | None] = asyncio.Queue(maxsize=1)
        self._waiter: asyncio.Task[object] | None = None

    def attach(self, outbound: asyncio.Queue[CredentialRequested]) -> None:
        """Give the agent the channel it uses to ask the UI for input."""
        self._outbound = outbound

    # --- Credential callbacks ---

    async def request_pin_code(self, device_id: str) -> str:
        LOGGER.info("RequestPinCode received for %s", device_id)
        pin = await self._exchange(PendingCredentialRequest(device_id, CredentialKind.PIN))
        LOGGER.info("PIN received for %s", device_id)
        return pin

    async def request_passkey(self, device_id: str) -> int:
        LOGGER.info("RequestPasskey received for %s", device_id)
        answer = await self._exchange(PendingCredentialRequest(device_id, CredentialKind.PASSKEY))
        try:
            passkey = int(answer.strip())
        except ValueError:
            raise PairingRejected(f"passkey '{answer}' is not a number") from None
        if not 0 <= passkey <= _MAX_PASSKEY:
            raise PairingRejected(f"passkey {passkey} is outside 0-{_MAX_PASSKEY}")
        return passkey

    async def request_confirmation(self, device_id: str, passkey: int) -> None:
        LOGGER.info("RequestConfirmation received for %s with passkey %06d", device_id, passkey)
        name = await self._lookup_name(device_id)
        answer = await self._exchange(
            PendingCredentialRequest(device_id, CredentialKind.CONFIRM, device_name=name, passkey=passkey)
        )
        LOGGER.info("Confirmation received for %s: %s", device_id, answer)
        if answer != CONFIRM_YES:
            raise PairingRejected("pairing rejected")

    # --- UI side ---

    def submit_pin(self, pin: str) -> None:
        self._answer(pin)

    def submit_confirmation(self, confirmed: bool) -> None:
        self._answer(CONFIRM_YES if confirmed else CONFIRM_NO)

    def reject(self) -> None:
        """Refuse the pending request without an answer."""
        self._answer(None)

    # --- Auxiliary callbacks ---

    def authorize_service(self, device_id: str, uuid: str) -> None:
        LOGGER.info("AuthorizeService for %s, %s", device_id, uuid)

    def request_authorization(self, device_id: str) -> None:
        LOGGER.info("RequestAuthorization for %s", device_id)

    def display_passkey(self, device_id: str, passkey: int, entered: int) -> None:
        LOGGER.info("DisplayPasskey: %s, %06d (entered %d)", device_id, passkey, entered)

    def display_pin_code(self, device_id: str, pincode: str) -> None:
        LOGGER.info("DisplayPinCode: %s, %s", device_id, pincode)

    def release(self) -> None:
        LOGGER.info("Agent released")

    def cancel(self) -> None:
        LOGGER.info("Agent request canceled")

    # --- Handshake ---

    async def _exchange(self, request: PendingCredentialRequest) -> str:
        if self._outbound is None:
            LOGGER.warning("No UI channel attached; cannot ask for input for %s", request.device_id)
            raise AgentNotReady("agent not ready")
        if self.state is AgentState.AWAITING_ANSWER:
            LOGGER.warning("Rejecting request for %s: another request is outstanding", request.device_id)
            raise AgentBusy("another pairing request is already waiting for an answer")

        self.state = AgentState.AWAITING_ANSWER
        self.pending = request
        self._waiter = asyncio.current_task()
        try:
            await self._outbound.put(CredentialRequested(request))
            LOGGER.debug("Waiting for answer for %s", request.device_id)
            # No timeout: a human may take arbitrarily long.
            answer = await self._answers.get()
            if answer is None:
                raise PairingRejected("pairing canceled")
            return answer
        finally:
            self.state = AgentState.IDLE
            self.pending = None
            self._waiter = None

    def shutdown(self) -> None:
        """Release a request still waiting for an answer at process exit."""
        if self._waiter is not None and not self._waiter.done():
            LOGGER.info("Abandoning pending request for %s", self.pending.device_id if self.pending else "?")
            self._waiter.cancel()

    def _answer(self, value: str | None) -> None:
        if self.state is not AgentState.AWAITING_ANSWER:
            raise AgentStateError("no pairing request is waiting for an answer")
        try:
            self._answers.put_nowait(value)
        except asyncio.QueueFull:
            raise AgentStateError("the pending request has already been answered") from None

    async def _lookup_name(self, device_id: str) -> str:
        if self.name_lookup is None:
            return UNKNOWN_DEVICE_NAME
        try:
            name = await self.name_lookup(device_id)
        except TransportError as exc:
            LOGGER.debug("Name lookup failed for %s: %s", device_id, exc)
            return UNKNOWN_DEVICE_NAME
        return name or UNKNOWN_DEVICE_NAME

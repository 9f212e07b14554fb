"""Line-oriented frontend for `bluedeck watch`.

Renders the snapshot as plain text whenever the visible state changes and
turns stdin lines into session events. While a credential request is
pending, the next line answers it instead of being parsed as a command;
only a quit word still ends the session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable

from bluedeck.core.events import Quit, SubmitConfirmation, SubmitPin, UserCommand
from bluedeck.core.model import BATTERY_UNKNOWN, CredentialKind, Device, PendingCredentialRequest, Snapshot
from bluedeck.core.session import Session

LOGGER = logging.getLogger(__name__)

HELP_TEXT = (
    "commands: pair|connect|disconnect|toggle|trust|forget|select <device>, "
    "scan [on|off], power [on|off], refresh, help, quit"
)
_QUIT_WORDS = frozenset({"q", "quit", "exit"})
_YES_WORDS = frozenset({"y", "yes"})

Output = Callable[[str], None]
LineReader = Callable[[], str]


def format_device(device: Device, *, selected: bool = False) -> str:
    marker = ">" if selected else " "
    flags = []
    if device.connected:
        flags.append("connected")
    if device.trusted:
        flags.append("trusted")
    if device.battery != BATTERY_UNKNOWN:
        flags.append(f"battery {device.battery}%")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"{marker} {device.address} {device.display_name} ({device.icon}){suffix}"


def format_request(request: PendingCredentialRequest) -> str:
    if request.kind is CredentialKind.CONFIRM:
        passkey = f"{request.passkey:06d}" if request.passkey is not None else "?"
        return f"Confirm passkey {passkey} for {request.device_name or request.device_id}? [yes/no]"
    what = "PIN" if request.kind is CredentialKind.PIN else "passkey"
    return f"Enter {what} for {request.device_name or request.device_id}"


def render(snapshot: Snapshot) -> str:
    """Render everything except signal strength, which changes constantly."""
    lines = []
    for adapter in snapshot.adapters:
        state = "on" if adapter.powered else "off"
        scanning = ", scanning" if adapter.scanning else ""
        lines.append(f"Adapter {adapter.short_id} {adapter.address} {adapter.name}: power {state}{scanning}")
    if not snapshot.adapters:
        lines.append("No adapter")

    lines.append("Paired:")
    lines.extend(format_device(d, selected=d.id == snapshot.selected_id) for d in snapshot.paired)
    if not snapshot.paired:
        lines.append("  (none)")
    lines.append("Nearby:")
    lines.extend(format_device(d) for d in snapshot.unpaired)
    if not snapshot.unpaired:
        lines.append("  (none)")

    if snapshot.last_error:
        lines.append(f"Error: {snapshot.last_error}")
    if snapshot.pending_request is not None:
        lines.append(format_request(snapshot.pending_request))
    return "\n".join(lines)


def parse_line(line: str, snapshot: Snapshot) -> object | None:
    """Turn one input line into a session event, or None for blank input."""
    text = line.strip()
    request = snapshot.pending_request
    if request is not None and text.lower() not in _QUIT_WORDS:
        if request.kind is CredentialKind.CONFIRM:
            return SubmitConfirmation(text.lower() in _YES_WORDS)
        return SubmitPin(text)

    if not text:
        return None
    action, _, rest = text.partition(" ")
    action = action.lower()
    rest = rest.strip()
    if action in _QUIT_WORDS:
        return Quit()
    if action in ("power", "scan"):
        return UserCommand(action, None, tuple(rest.split()))
    if action == "refresh":
        return UserCommand(action)
    return UserCommand(action, rest or None)


class Console:
    def __init__(self, session: Session, *, out: Output, reader: LineReader = input) -> None:
        self.session = session
        self.out = out
        self.reader = reader
        self._last_view: str | None = None

    def on_snapshot(self, snapshot: Snapshot) -> None:
        view = render(snapshot)
        if view != self._last_view:
            self._last_view = view
            self.out(view)

    def start_reader(self, loop: asyncio.AbstractEventLoop) -> threading.Thread:
        """Read stdin on a daemon thread so a blocked read never holds up exit."""
        thread = threading.Thread(target=self._read_lines, args=(loop,), name="bluedeck-input", daemon=True)
        thread.start()
        return thread

    def _read_lines(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            try:
                line = self.reader()
            except EOFError:
                loop.call_soon_threadsafe(self.session.post, Quit())
                return
            loop.call_soon_threadsafe(self._submit_line, line)

    def _submit_line(self, line: str) -> None:
        snapshot = self.session.snapshot()
        if snapshot.pending_request is None and line.strip().lower() == "help":
            self.out(HELP_TEXT)
            return
        event = parse_line(line, snapshot)
        if event is not None:
            LOGGER.debug("Input line -> %s", event)
            self.session.post(event)


async def run_console(session: Session, console: Console) -> None:
    """Run the session with the console attached until quit or bus loss."""
    session.subscribe(console.on_snapshot)
    console.out(HELP_TEXT)
    console.start_reader(asyncio.get_running_loop())
    await session.run()

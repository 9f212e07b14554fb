from __future__ import annotations

import asyncio

from bluedeck.console import HELP_TEXT, Console, parse_line, render
from bluedeck.core.events import Quit, SubmitConfirmation, SubmitPin, UserCommand
from bluedeck.core.model import Adapter, CredentialKind, Device, PendingCredentialRequest, Snapshot
from bluedeck.core.session import AppContext, Session

from fakes import ADAPTER, FakeRadio, FakeTransport, device_path

DEV_A = device_path("0A")

SNAPSHOT = Snapshot(
    adapters=(Adapter(id=ADAPTER, name="laptop", address="00:11:22:33:44:55", powered=True, scanning=True),),
    paired=(Device(id=DEV_A, name="Buds", address="AA:BB:CC:DD:EE:0A", icon="Audio", connected=True, battery=80),),
    unpaired=(Device(id=device_path("0B"), name="Speaker", address="AA:BB:CC:DD:EE:0B", rssi=-40),),
    selected_id=DEV_A,
)


def test_render_lists_adapters_and_devices() -> None:
    view = render(SNAPSHOT)

    assert "Adapter hci0 00:11:22:33:44:55 laptop: power on, scanning" in view
    assert "> AA:BB:CC:DD:EE:0A Buds (Audio) [connected, battery 80%]" in view
    assert "  AA:BB:CC:DD:EE:0B Speaker (Unknown)" in view
    assert "-40" not in view


def test_render_shows_pending_confirmation() -> None:
    request = PendingCredentialRequest(DEV_A, CredentialKind.CONFIRM, device_name="Buds", passkey=42)

    view = render(Snapshot(pending_request=request, last_error="pair: timeout"))

    assert "No adapter" in view
    assert "Error: pair: timeout" in view
    assert view.endswith("Confirm passkey 000042 for Buds? [yes/no]")


def test_parse_commands() -> None:
    assert parse_line("pair Speaker Mini", SNAPSHOT) == UserCommand("pair", "Speaker Mini")
    assert parse_line("SCAN off", SNAPSHOT) == UserCommand("scan", None, ("off",))
    assert parse_line("power", SNAPSHOT) == UserCommand("power", None, ())
    assert parse_line("refresh", SNAPSHOT) == UserCommand("refresh")
    assert parse_line("quit", SNAPSHOT) == Quit()
    assert parse_line("   ", SNAPSHOT) is None


def test_pending_request_consumes_next_line() -> None:
    pin = Snapshot(pending_request=PendingCredentialRequest(DEV_A, CredentialKind.PIN))
    confirm = Snapshot(pending_request=PendingCredentialRequest(DEV_A, CredentialKind.CONFIRM, passkey=1))

    assert parse_line("0000\n", pin) == SubmitPin("0000")
    assert parse_line("quit\n", pin) == Quit()
    assert parse_line("q", confirm) == Quit()
    assert parse_line("yes", confirm) == SubmitConfirmation(True)
    assert parse_line("Y", confirm) == SubmitConfirmation(True)
    assert parse_line("nope", confirm) == SubmitConfirmation(False)


def test_console_prints_only_changed_views() -> None:
    printed: list[str] = []
    session = Session(AppContext(transport=FakeTransport(), radio=FakeRadio()))
    console = Console(session, out=printed.append)

    console.on_snapshot(SNAPSHOT)
    console.on_snapshot(SNAPSHOT)
    console.on_snapshot(Snapshot(adapters=SNAPSHOT.adapters))

    assert len(printed) == 2


def test_console_posts_parsed_lines() -> None:
    printed: list[str] = []
    session = Session(AppContext(transport=FakeTransport(), radio=FakeRadio()))
    console = Console(session, out=printed.append)

    console._submit_line("help")
    console._submit_line("")
    console._submit_line("connect Buds")

    assert printed == [HELP_TEXT]
    queued = session.context.events
    assert queued.qsize() == 1
    assert queued.get_nowait() == UserCommand("connect", "Buds")


def test_reader_posts_quit_on_end_of_input() -> None:
    async def scenario() -> object:
        session = Session(AppContext(transport=FakeTransport(), radio=FakeRadio()))
        lines = iter(["refresh"])

        def reader() -> str:
            try:
                return next(lines)
            except StopIteration:
                raise EOFError from None

        console = Console(session, out=lambda _: None, reader=reader)
        console.start_reader(asyncio.get_running_loop()).join(timeout=1)
        await asyncio.sleep(0)
        events = session.context.events
        return [events.get_nowait() for _ in range(events.qsize())]

    assert asyncio.run(scenario()) == [UserCommand("refresh"), Quit()]

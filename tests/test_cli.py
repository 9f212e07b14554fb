from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from bluedeck import cli
from bluedeck.core.errors import DeviceSelectionError, TransportCallError
from bluedeck.core.model import Adapter, CredentialKind, Device, PendingCredentialRequest

HEADPHONES = Device(
    id="/org/bluez/hci0/dev_AA_BB_CC_DD_EE_0A",
    name="Headphones",
    address="AA:BB:CC:DD:EE:0A",
    icon="Audio",
    paired=True,
    trusted=True,
    connected=True,
    battery=60,
)
SPEAKER = Device(id="/org/bluez/hci0/dev_AA_BB_CC_DD_EE_0B", name="Speaker", address="AA:BB:CC:DD:EE:0B", rssi=-45)
ADAPTER = Adapter(id="/org/bluez/hci0", name="laptop", address="00:11:22:33:44:55", powered=True)


class FakeClient:
    instances: list[FakeClient] = []

    def __init__(self, config=None) -> None:
        self.config = config
        self.calls: list[tuple] = []
        FakeClient.instances.append(self)

    def list_adapters(self):
        return [ADAPTER]

    def list_devices(self, *, include_unpaired=True):
        return [HEADPHONES, SPEAKER] if include_unpaired else [HEADPHONES]

    def set_power(self, on, *, adapter_hint=None):
        self.calls.append(("power", on, adapter_hint))
        return ADAPTER

    def scan(self, duration_s, *, adapter_hint=None):
        self.calls.append(("scan", duration_s, adapter_hint))
        return [SPEAKER]

    def pair(self, device_hint, prompt):
        answer = prompt(PendingCredentialRequest(SPEAKER.id, CredentialKind.PIN, device_name="Speaker"))
        self.calls.append(("pair", device_hint, answer))
        return SPEAKER

    def connect(self, device_hint):
        if device_hint == "toaster":
            raise DeviceSelectionError("No device found matching 'toaster'")
        return HEADPHONES

    def disconnect(self, device_hint):
        raise TransportCallError("Disconnect failed: org.bluez.Error.NotConnected")

    def trust(self, device_hint):
        return SPEAKER

    def forget(self, device_hint):
        return HEADPHONES


runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> list[tuple]:
    logging_calls: list[tuple] = []
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setattr(cli, "Client", FakeClient)
    monkeypatch.setattr(
        cli,
        "_configure_logging",
        lambda config, *, verbose, log_file: logging_calls.append((config, verbose, log_file)),
    )
    FakeClient.instances = []
    return logging_calls


def test_adapters_command() -> None:
    result = runner.invoke(cli.app, ["adapters"])
    assert result.exit_code == 0
    assert "hci0 00:11:22:33:44:55 laptop power=on" in result.stdout


def test_devices_command_defaults_to_paired() -> None:
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "AA:BB:CC:DD:EE:0A Headphones (Audio) [connected, trusted, battery 60%]" in result.stdout
    assert "Speaker" not in result.stdout


def test_devices_all_includes_nearby() -> None:
    result = runner.invoke(cli.app, ["devices", "--all"])
    assert result.exit_code == 0
    assert "Speaker" in result.stdout


def test_power_command() -> None:
    result = runner.invoke(cli.app, ["power", "off", "--adapter", "hci0"])
    assert result.exit_code == 0
    assert "Powered off hci0" in result.stdout
    assert FakeClient.instances[-1].calls == [("power", False, "hci0")]


def test_power_rejects_unknown_state() -> None:
    result = runner.invoke(cli.app, ["power", "maybe"])
    assert result.exit_code != 0
    assert FakeClient.instances == []


def test_scan_command_lists_nearby() -> None:
    result = runner.invoke(cli.app, ["scan", "--duration", "2"])
    assert result.exit_code == 0
    assert "AA:BB:CC:DD:EE:0B Speaker (Unknown) rssi=-45" in result.stdout
    assert FakeClient.instances[-1].calls == [("scan", 2.0, None)]


def test_pair_command_prompts_for_pin() -> None:
    result = runner.invoke(cli.app, ["pair", "Speaker"], input="0000\n")
    assert result.exit_code == 0
    assert "Enter PIN for Speaker" in result.stdout
    assert "Paired AA:BB:CC:DD:EE:0B (Speaker)" in result.stdout
    assert FakeClient.instances[-1].calls == [("pair", "Speaker", "0000")]


def test_device_commands() -> None:
    for command, expected in (
        ("connect", "Connected AA:BB:CC:DD:EE:0A (Headphones)"),
        ("trust", "Trusted AA:BB:CC:DD:EE:0B (Speaker)"),
        ("forget", "Forgot AA:BB:CC:DD:EE:0A (Headphones)"),
    ):
        result = runner.invoke(cli.app, [command, "x"])
        assert result.exit_code == 0
        assert expected in result.stdout


def test_selection_error_exits_with_message() -> None:
    result = runner.invoke(cli.app, ["connect", "toaster"])
    assert result.exit_code == 1
    assert "Error: No device found matching 'toaster'" in result.output


def test_transport_error_exits_with_message() -> None:
    result = runner.invoke(cli.app, ["disconnect", "Headphones"])
    assert result.exit_code == 1
    assert "Error: Disconnect failed: org.bluez.Error.NotConnected" in result.output


def test_config_option_is_loaded(tmp_path: Path, fake_environment: list[tuple]) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("refresh_interval_s: 3\nlog:\n  level: INFO\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["--config", str(config_path), "--verbose", "adapters"])

    assert result.exit_code == 0
    config, verbose, log_file = fake_environment[-1]
    assert config.refresh_interval_s == 3.0
    assert config.log_level == "INFO"
    assert verbose is True
    assert log_file is None
    assert FakeClient.instances[-1].config is config


def test_bad_config_exits_with_message(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("refresh_interval_s: fast\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["--config", str(config_path), "adapters"])

    assert result.exit_code == 1
    assert "Error: Schema validation failed" in result.output

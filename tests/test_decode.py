from __future__ import annotations

import pytest

from bluedeck.core.decode import (
    ADAPTER_IFACE,
    BATTERY_IFACE,
    DEFAULT_POLICY,
    DEVICE_DECODERS,
    DEVICE_IFACE,
    OBJECT_MANAGER_IFACE,
    adapter_updates,
    decode_properties,
    decode_signal,
    parse_device_record,
    parse_managed_objects,
    sanitize_name,
)
from bluedeck.core.errors import DecodeError
from bluedeck.core.events import AdapterChanged, DeviceAdded, DeviceChanged, DeviceRemoved, Unrecognized
from bluedeck.core.model import BATTERY_UNKNOWN, Device, DeviceRecord
from bluedeck.transports.base import RawSignal

from fakes import ADAPTER, HSP_UUID, adapter_interfaces, device_interfaces, device_path, properties_changed


def _record(name: str = "", appearance: int = 0, uuids: tuple[str, ...] = ()) -> DeviceRecord:
    return DeviceRecord(device=Device(id=device_path("01")), advertised_name=name, appearance=appearance, uuids=uuids)


def test_parse_managed_objects_splits_adapters_and_devices() -> None:
    objects = {
        "/org/bluez/hci1": adapter_interfaces(powered=False),
        ADAPTER: adapter_interfaces(discovering=True),
        device_path("01"): device_interfaces("01", "Headphones", paired=True, battery=70),
        "/org/bluez": {"org.bluez.AgentManager1": {}},
    }

    adapters, records = parse_managed_objects(objects)

    assert [a.id for a in adapters] == [ADAPTER, "/org/bluez/hci1"]
    assert adapters[0].powered is True
    assert adapters[0].scanning is True
    assert adapters[0].short_id == "hci0"
    assert len(records) == 1
    device = records[0].device
    assert device.name == "Headphones"
    assert device.address == "AA:BB:CC:DD:EE:01"
    assert device.icon == "Audio"
    assert device.paired is True
    assert device.battery == 70


def test_alias_overrides_name() -> None:
    interfaces = device_interfaces("01", "Vendor Name")
    interfaces[DEVICE_IFACE]["Alias"] = "My Buds"

    record = parse_device_record(device_path("01"), interfaces)

    assert record.device.name == "My Buds"
    assert record.advertised_name == "Vendor Name"


def test_malformed_value_only_drops_its_own_key() -> None:
    decoded = decode_properties({"RSSI": "strong", "Connected": True, "Unknown": 1}, DEVICE_DECODERS)

    assert decoded == {"Connected": True}


def test_out_of_range_rssi_is_skipped() -> None:
    assert decode_properties({"RSSI": 70000}, DEVICE_DECODERS) == {}


def test_property_map_must_be_a_mapping() -> None:
    with pytest.raises(DecodeError):
        decode_properties(["Paired"], DEVICE_DECODERS)


def test_device_without_battery_has_unknown_level() -> None:
    record = parse_device_record(device_path("01"), device_interfaces("01", "Mouse"))

    assert record.device.battery == BATTERY_UNKNOWN
    assert record.device.rssi is None


def test_sanitize_name_collapses_pictographic_runs() -> None:
    assert sanitize_name("Buds \U0001F3A7\U0001F3A7 Pro") == "Buds [?] Pro"
    assert sanitize_name("Plain Name") == "Plain Name"


def test_decode_interfaces_added_with_device() -> None:
    signal = RawSignal(
        path="/",
        interface=OBJECT_MANAGER_IFACE,
        member="InterfacesAdded",
        body=(device_path("02"), device_interfaces("02", "Speaker")),
    )

    event = decode_signal(signal)

    assert isinstance(event, DeviceAdded)
    assert event.record.device.id == device_path("02")


def test_decode_interfaces_added_without_device_is_unrecognized() -> None:
    signal = RawSignal(
        path="/",
        interface=OBJECT_MANAGER_IFACE,
        member="InterfacesAdded",
        body=(device_path("02"), {"org.bluez.MediaControl1": {}}),
    )

    assert isinstance(decode_signal(signal), Unrecognized)


def test_decode_interfaces_removed_requires_device_interface() -> None:
    removed = RawSignal("/", OBJECT_MANAGER_IFACE, "InterfacesRemoved", (device_path("02"), [DEVICE_IFACE]))
    battery_only = RawSignal("/", OBJECT_MANAGER_IFACE, "InterfacesRemoved", (device_path("02"), [BATTERY_IFACE]))

    assert decode_signal(removed) == DeviceRemoved(device_id=device_path("02"))
    assert isinstance(decode_signal(battery_only), Unrecognized)


def test_decode_adapter_properties_changed() -> None:
    event = decode_signal(properties_changed(ADAPTER, ADAPTER_IFACE, {"Discovering": True}))

    assert isinstance(event, AdapterChanged)
    assert event.adapter_id == ADAPTER
    assert adapter_updates(event.changes) == {"scanning": True}


def test_decode_battery_change_targets_the_device() -> None:
    event = decode_signal(properties_changed(device_path("01"), BATTERY_IFACE, {"Percentage": 42}))

    assert event == DeviceChanged(device_id=device_path("01"), changes={"Percentage": 42})


@pytest.mark.parametrize(
    "signal",
    [
        properties_changed(device_path("01"), "org.bluez.MediaPlayer1", {"Status": "playing"}),
        properties_changed(device_path("01"), DEVICE_IFACE, {}),
        properties_changed(device_path("01"), DEVICE_IFACE, {"RSSI": "loud"}),
        RawSignal(device_path("01"), "org.freedesktop.DBus.Properties", "PropertiesChanged", ()),
        RawSignal("/", OBJECT_MANAGER_IFACE, "InterfacesAdded", (42,)),
        RawSignal("/", "org.bluez.Adapter1", "SomethingElse", ()),
    ],
)
def test_unusable_signals_decode_to_unrecognized(signal: RawSignal) -> None:
    assert isinstance(decode_signal(signal), Unrecognized)


def test_nameless_device_without_appearance_or_services_is_unusable() -> None:
    assert DEFAULT_POLICY.is_usable(_record()) is False


def test_mac_shaped_name_does_not_count_as_a_name() -> None:
    assert DEFAULT_POLICY.is_usable(_record(name="AA-BB-CC-DD-EE-01")) is False
    assert DEFAULT_POLICY.is_usable(_record(name="AA-BB-CC-DD-EE-01", uuids=(HSP_UUID,))) is True


def test_known_appearance_makes_device_usable() -> None:
    assert DEFAULT_POLICY.is_usable(_record(appearance=0x0441)) is True
    assert DEFAULT_POLICY.is_usable(_record(appearance=0x03C1)) is False


def test_extended_policy_accepts_extra_service() -> None:
    custom_uuid = "0000fe2c-0000-1000-8000-00805f9b34fb"
    policy = DEFAULT_POLICY.extended(uuids=[custom_uuid.upper()], appearances=[0x03C1])

    assert policy.is_usable(_record(uuids=(custom_uuid,))) is True
    assert policy.is_usable(_record(appearance=0x03C1)) is True
    assert DEFAULT_POLICY.is_usable(_record(uuids=(custom_uuid,))) is False

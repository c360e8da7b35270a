"""End-to-end tests for the plugin lifecycle with a scripted smartctl."""
from __future__ import annotations

import configparser
import json
from pathlib import Path

import pytest

from conftest import FakeInvoker, ok
from smartctl_tap.config import DisplayNameMode, PollingOptions, load_options
from smartctl_tap.inventory import PlatformDisk
from smartctl_tap.invoker import ToolResult
from smartctl_tap.plugin import SCAN_FAILED_MESSAGE, SmartctlPlugin

EXAMPLE_CFG = Path(__file__).resolve().parents[1] / "config" / "example.cfg"

SCAN = {
    "devices": [
        {"name": "\\\\.\\PhysicalDrive1", "info_name": "\\\\.\\PhysicalDrive1 [SAT]", "type": "sat"},
        {"name": "\\\\.\\PhysicalDrive2", "info_name": "\\\\.\\PhysicalDrive2", "type": "nvme"},
    ]
}

ATTRIBUTES = {"ata_smart_attributes": {"table": [{"id": 194, "raw": {"value": 35}}]}}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def show_message(self, message: str) -> None:
        self.messages.append(message)


class ScriptedSmartctl:
    """Answers smartctl invocations the way a one-disk machine would."""

    def __init__(self, scan=SCAN, info=None, attributes=ATTRIBUTES) -> None:
        self.scan = scan
        self.info = info or {}
        self.attributes = attributes
        self.invokers: list[FakeInvoker] = []

    def __call__(self, executable: str) -> FakeInvoker:
        invoker = FakeInvoker(self.handle, executable)
        self.invokers.append(invoker)
        return invoker

    def handle(self, args: list[str]) -> ToolResult:
        if args[0] == "--scan-open":
            if isinstance(self.scan, ToolResult):
                return self.scan
            return ok(json.dumps(self.scan))
        if args[0] == "-i":
            return ok(json.dumps(self.info))
        if args[0] == "-A":
            return ok(json.dumps(self.attributes))
        return ok("", exit_code=4)

    def calls(self, first_arg: str) -> list[list[str]]:
        return [call for invoker in self.invokers for call in invoker.calls if call[0] == first_arg]


def make_plugin(smartctl=None, options=None, inventory=(), **kwargs):
    clock = FakeClock()
    notifier = RecordingNotifier()
    plugin = SmartctlPlugin(
        notifier=notifier,
        invoker_factory=smartctl or ScriptedSmartctl(),
        inventory_provider=lambda factory: inventory,
        clock=clock,
        options=options or PollingOptions(settings_hint_shown=True),
        **kwargs,
    )
    return plugin, clock, notifier


class TestLoad:
    def test_only_supported_devices_get_sensors(self):
        plugin, _, _ = make_plugin()
        sink: list = []

        assert plugin.load(sink) == 1

        assert len(sink) == 1
        assert sink[0].name == "Disk PD1 (sat)"
        assert sink[0].id == "smartctl://\\\\.\\PhysicalDrive1|sat"
        assert plugin.sensors == sink

    def test_metadata_drives_the_display_name(self):
        smartctl = ScriptedSmartctl(info={"model_name": "WDC WD40EFRX", "serial_number": "WD-1"})
        options = PollingOptions(display_name_mode=DisplayNameMode.MODEL_AND_SERIAL, settings_hint_shown=True)
        plugin, _, _ = make_plugin(smartctl, options)
        sink: list = []

        plugin.load(sink)

        assert sink[0].name == "WDC WD40EFRX - WD-1"

    def test_inventory_supplies_volume_labels(self):
        inventory = (PlatformDisk(device_id="\\\\.\\PHYSICALDRIVE1", volume_labels=("C:",)),)
        options = PollingOptions(display_name_mode=DisplayNameMode.VOLUME_LABELS, settings_hint_shown=True)
        plugin, _, _ = make_plugin(options=options, inventory=inventory)
        sink: list = []

        plugin.load(sink)

        assert sink[0].name == "Disk C:"

    def test_excluded_device_is_skipped(self):
        smartctl = ScriptedSmartctl(info={"serial_number": "SKIPME-01"})
        options = PollingOptions(excluded_tokens=("skipme",), settings_hint_shown=True)
        plugin, _, _ = make_plugin(smartctl, options)
        sink: list = []

        assert plugin.load(sink) == 0
        assert sink == []

    def test_scan_failure_notifies_and_registers_nothing(self):
        smartctl = ScriptedSmartctl(scan=ToolResult(exit_code=None, error="failed to start smartctl"))
        plugin, _, notifier = make_plugin(smartctl)
        sink: list = []

        assert plugin.load(sink) == 0
        assert notifier.messages == [SCAN_FAILED_MESSAGE]

    def test_one_broken_device_does_not_stop_the_rest(self, monkeypatch):
        scan = {"devices": [
            {"name": "/dev/sda", "type": "sat"},
            {"name": "/dev/sdb", "type": "sat"},
        ]}
        plugin, _, _ = make_plugin(ScriptedSmartctl(scan=scan))
        original = plugin._build_sensor

        def flaky(candidate, *args):
            if candidate.device_token == "/dev/sda":
                raise RuntimeError("boom")
            return original(candidate, *args)

        monkeypatch.setattr(plugin, "_build_sensor", flaky)
        sink: list = []

        assert plugin.load(sink) == 1
        assert sink[0].id == "smartctl:///dev/sdb|sat"

    def test_rejected_registration_is_not_tracked(self):
        class RejectingSink:
            def append(self, sensor):
                raise ValueError("duplicate id")

        plugin, _, _ = make_plugin()

        assert plugin.load(RejectingSink()) == 0
        assert plugin.sensors == []

    def test_reload_rebuilds_from_scratch(self):
        plugin, _, _ = make_plugin()
        first: list = []
        second: list = []

        plugin.load(first)
        plugin.load(second)

        assert len(plugin.sensors) == 1
        assert plugin.sensors[0] is second[0]
        assert first[0] is not second[0]


class TestUpdate:
    def test_interval_gates_refresh(self):
        smartctl = ScriptedSmartctl()
        plugin, clock, _ = make_plugin(smartctl, PollingOptions(poll_interval_s=10, settings_hint_shown=True))
        plugin.load([])

        assert plugin.update() is True
        clock.now += 3
        assert plugin.update() is False

        assert len(smartctl.calls("-A")) == 1
        assert plugin.sensors[0].value == 35.0

        clock.now += 7
        assert plugin.update() is True
        assert len(smartctl.calls("-A")) == 2

    def test_sensor_exception_does_not_abort_cycle(self, monkeypatch):
        scan = {"devices": [
            {"name": "/dev/sda", "type": "sat"},
            {"name": "/dev/sdb", "type": "sat"},
        ]}
        plugin, _, _ = make_plugin(ScriptedSmartctl(scan=scan))
        plugin.load([])

        def explode():
            raise RuntimeError("boom")

        monkeypatch.setattr(plugin.sensors[0], "refresh", explode)

        assert plugin.update() is True
        assert plugin.sensors[0].value is None
        assert plugin.sensors[1].value == 35.0

    def test_apply_options_resets_timer_and_requests_refresh(self):
        smartctl = ScriptedSmartctl()
        plugin, clock, _ = make_plugin(smartctl)
        requests: list[bool] = []
        plugin.refresh_requested = lambda: requests.append(True)
        plugin.load([])
        plugin.update()
        clock.now += 1

        plugin.apply_options(PollingOptions(poll_interval_s=30))

        assert requests == [True]
        assert plugin.options.poll_interval_s == 30
        assert plugin.options.settings_hint_shown is True
        assert plugin.update() is True

    def test_interval_is_clamped(self):
        plugin, clock, _ = make_plugin(options=PollingOptions(poll_interval_s=0.1, settings_hint_shown=True))
        plugin.load([])

        assert plugin.update() is True
        clock.now += 0.5
        assert plugin.update() is False
        clock.now += 0.5
        assert plugin.update() is True


class TestSettingsHint:
    def test_first_load_shows_hint_once_and_persists(self, tmp_path):
        config_path = tmp_path / "smartctl.cfg"
        config_path.write_text("[mqtt]\nhost = broker\n", encoding="utf-8")
        notifier = RecordingNotifier()
        plugin = SmartctlPlugin(
            config_path=config_path,
            notifier=notifier,
            invoker_factory=ScriptedSmartctl(),
            inventory_provider=lambda factory: (),
            clock=FakeClock(),
        )
        plugin.initialize()

        plugin.load([])
        plugin.load([])

        assert len(notifier.messages) == 1
        assert str(config_path) in notifier.messages[0]
        assert load_options(config_path).settings_hint_shown is True
        parser = configparser.ConfigParser(interpolation=None)
        parser.read(config_path, encoding="utf-8")
        assert parser.get("mqtt", "host") == "broker"

    def test_hint_keeps_config_comments(self, tmp_path):
        config_path = tmp_path / "example.cfg"
        original = EXAMPLE_CFG.read_text(encoding="utf-8")
        config_path.write_text(original, encoding="utf-8")
        plugin = SmartctlPlugin(
            config_path=config_path,
            notifier=RecordingNotifier(),
            invoker_factory=ScriptedSmartctl(),
            inventory_provider=lambda factory: (),
            clock=FakeClock(),
        )
        plugin.initialize()

        plugin.load([])

        def comments(text: str) -> list[str]:
            return [line for line in text.splitlines() if line.lstrip().startswith("#")]

        saved = config_path.read_text(encoding="utf-8")
        assert comments(saved) == comments(original)
        assert "settings_hint_shown = true" in saved.splitlines()
        assert load_options(config_path).settings_hint_shown is True

    def test_hint_suppressed_when_already_shown(self, tmp_path):
        config_path = tmp_path / "smartctl.cfg"
        config_path.write_text("[smartctl]\nsettings_hint_shown = true\n", encoding="utf-8")
        notifier = RecordingNotifier()
        plugin = SmartctlPlugin(
            config_path=config_path,
            notifier=notifier,
            invoker_factory=ScriptedSmartctl(),
            inventory_provider=lambda factory: (),
            clock=FakeClock(),
        )
        plugin.initialize()

        plugin.load([])

        assert notifier.messages == []


def test_close_drops_sensors():
    plugin, _, _ = make_plugin()
    plugin.load([])

    plugin.close()

    assert plugin.sensors == []


@pytest.mark.parametrize("broken", [RuntimeError("wmi"), OSError("no powershell")])
def test_inventory_failure_is_tolerated(broken):
    def provider(factory):
        raise broken

    plugin = SmartctlPlugin(
        notifier=RecordingNotifier(),
        invoker_factory=ScriptedSmartctl(),
        inventory_provider=provider,
        clock=FakeClock(),
        options=PollingOptions(settings_hint_shown=True),
    )

    assert plugin.load([]) == 1

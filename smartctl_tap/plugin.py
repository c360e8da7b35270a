from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import logging
import time
from typing import Callable, Iterable, Protocol

from smartctl_tap.config import PollingOptions, load_options, normalize_options, save_options
from smartctl_tap.exclusion import find_exclusion
from smartctl_tap.inventory import PlatformDisk, collect_platform_inventory
from smartctl_tap.invoker import ToolInvoker
from smartctl_tap.metadata import MetadataResolver
from smartctl_tap.naming import resolve_display_name
from smartctl_tap.scanner import DeviceCandidate, DeviceScanner, ScanError
from smartctl_tap.sensor import TemperatureSensor

PLUGIN_NAME = "Smartctl Disk Temperatures"
SCAN_FAILED_MESSAGE = "Smartctl scan failed. See log."


class SensorSink(Protocol):
    """Whatever the host collects sensors in; a plain list qualifies."""

    def append(self, sensor: TemperatureSensor) -> None: ...


class Notifier(Protocol):
    def show_message(self, message: str) -> None: ...


class LogNotifier:
    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    def show_message(self, message: str) -> None:
        self.logger.warning(message)


InventoryProvider = Callable[[Callable[[str], ToolInvoker]], Iterable[PlatformDisk]]


class SmartctlPlugin:
    def __init__(
        self,
        config_path: str | Path | None = None,
        notifier: Notifier | None = None,
        invoker_factory: Callable[[str], ToolInvoker] = ToolInvoker,
        inventory_provider: InventoryProvider = collect_platform_inventory,
        clock: Callable[[], float] = time.monotonic,
        options: PollingOptions | None = None,
    ) -> None:
        self.config_path = Path(config_path) if config_path is not None else None
        self.notifier = notifier or LogNotifier()
        self.invoker_factory = invoker_factory
        self.inventory_provider = inventory_provider
        self.clock = clock
        self.options = normalize_options(options) if options is not None else PollingOptions()
        self.sensors: list[TemperatureSensor] = []
        self.refresh_requested: Callable[[], None] | None = None
        self._last_poll: float | None = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def name(self) -> str:
        return PLUGIN_NAME

    def initialize(self) -> None:
        self.sensors.clear()
        self._last_poll = None
        if self.config_path is not None:
            self.options = load_options(self.config_path)

    def load(self, sink: SensorSink) -> int:
        """Rebuild the sensor set from a fresh scan; returns how many were added."""
        self.sensors.clear()
        self._maybe_show_settings_hint()
        options = self.options
        invoker = self.invoker_factory(options.smartctl_path)

        try:
            candidates = DeviceScanner(invoker).scan()
        except ScanError as exc:
            self.logger.error("%s", exc)
            self._notify(SCAN_FAILED_MESSAGE)
            return 0
        if not candidates:
            return 0

        inventory = self._collect_inventory()
        resolver = MetadataResolver(invoker, inventory)
        added = 0
        for candidate in candidates:
            try:
                sensor = self._build_sensor(candidate, resolver, invoker, options)
            except Exception:
                self.logger.exception("Failed to set up %s", candidate.device_token)
                continue
            if sensor is None:
                continue
            try:
                sink.append(sensor)
            except Exception:
                self.logger.exception("Unable to register %s with the host", sensor.identifier)
                continue
            self.sensors.append(sensor)
            added += 1

        self.logger.info("Added sensors: %d", added)
        return added

    def update(self) -> bool:
        """Refresh every sensor if the poll interval has elapsed."""
        now = self.clock()
        if self._last_poll is not None and now - self._last_poll < self.options.poll_interval:
            return False
        self._last_poll = now

        for sensor in self.sensors:
            try:
                sensor.refresh()
            except Exception as exc:
                self.logger.error("Update failed for %s: %s", sensor.identifier, exc)
        return True

    def apply_options(
        self, options: PollingOptions, persist: bool = True, request_refresh: bool = True
    ) -> None:
        self.options = replace(normalize_options(options), settings_hint_shown=True)
        self._last_poll = None
        if persist:
            self._save_options()
        if request_refresh and self.refresh_requested is not None:
            try:
                self.refresh_requested()
            except Exception as exc:
                self.logger.error("Failed to request plugin refresh: %s", exc)

    def close(self) -> None:
        self.sensors.clear()

    def _build_sensor(
        self,
        candidate: DeviceCandidate,
        resolver: MetadataResolver,
        invoker: ToolInvoker,
        options: PollingOptions,
    ) -> TemperatureSensor | None:
        metadata = resolver.resolve(candidate)
        token = find_exclusion(metadata, options.excluded_tokens)
        if token is not None:
            self.logger.info("Skipping %s: excluded by config (%s)", metadata.device_token, token)
            return None
        return TemperatureSensor(
            metadata=metadata,
            display_name=resolve_display_name(metadata, options),
            invoker=invoker,
        )

    def _collect_inventory(self) -> tuple[PlatformDisk, ...]:
        try:
            return tuple(self.inventory_provider(self.invoker_factory))
        except Exception as exc:
            self.logger.warning("Platform disk inventory failed: %s", exc)
            return ()

    def _maybe_show_settings_hint(self) -> None:
        if self.options.settings_hint_shown:
            return
        location = str(self.config_path) if self.config_path else "the [smartctl] config section"
        self._notify(
            f"Disk names, exclusions and the poll interval can be changed in {location}."
        )
        self.options = replace(self.options, settings_hint_shown=True)
        self._save_options()

    def _save_options(self) -> None:
        if self.config_path is None:
            return
        try:
            save_options(self.config_path, self.options)
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.error("Failed to save config: %s", exc)

    def _notify(self, message: str) -> None:
        try:
            self.notifier.show_message(message)
        except Exception as exc:
            self.logger.debug("Notifier failed: %s", exc)

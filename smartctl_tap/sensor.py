from __future__ import annotations

import json
import logging
import re
from typing import Any

from smartctl_tap.invoker import ToolInvoker, ToolResult
from smartctl_tap.metadata import DeviceMetadata
from smartctl_tap.scanner import normalize_device_path

ATTRIBUTES_TIMEOUT_S = 4.0
SCT_TIMEOUT_S = 3.0

# Temperature_Celsius, then Airflow_Temperature
TEMPERATURE_ATTRIBUTE_IDS: tuple[int, ...] = (194, 190)
# Exclusive bounds in degrees Celsius; anything outside is a misparse or sentinel
PLAUSIBLE_RANGE_C: tuple[float, float] = (-50.0, 150.0)

# smartctl exit status bit: device open failed or device did not return an
# IDENTIFY response
DEVICE_OPEN_FAILED = 0x02

# Never wake a spun-down disk just to read its temperature
STANDBY_ARGS = ["-n", "standby,0"]

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_FIRST_INTEGER = re.compile(r"(-?\d+)")


def parse_attribute_temperature(data: dict[str, Any], attribute_id: int) -> float | None:
    attributes = data.get("ata_smart_attributes")
    if not isinstance(attributes, dict):
        return None
    table = attributes.get("table")
    if not isinstance(table, list):
        return None
    for item in table:
        if not isinstance(item, dict) or item.get("id") != attribute_id:
            continue
        raw = item.get("raw")
        if not isinstance(raw, dict):
            continue
        value = raw.get("value")
        # Large raw values pack min/max into the upper bytes; use the string then
        if isinstance(value, int) and not isinstance(value, bool) and _INT32_MIN <= value <= _INT32_MAX:
            return float(value)
        text = raw.get("string")
        if isinstance(text, str) and (match := _FIRST_INTEGER.search(text)):
            return float(match.group(1))
    return None


def parse_sct_temperature(data: dict[str, Any]) -> float | None:
    temperature = data.get("temperature")
    if not isinstance(temperature, dict):
        return None
    current = temperature.get("current")
    if isinstance(current, int) and not isinstance(current, bool):
        return float(current)
    return None


def is_plausible(value: float, valid_range: tuple[float, float] = PLAUSIBLE_RANGE_C) -> bool:
    low, high = valid_range
    return low < value < high


class TemperatureSensor:
    """One disk's temperature, refreshed on demand and stale on failure."""

    def __init__(
        self,
        metadata: DeviceMetadata,
        display_name: str,
        invoker: ToolInvoker,
        attribute_ids: tuple[int, ...] = TEMPERATURE_ATTRIBUTE_IDS,
        valid_range: tuple[float, float] = PLAUSIBLE_RANGE_C,
    ) -> None:
        self.metadata = metadata
        self.name = display_name
        self.identifier = f"smartctl://{metadata.device_token}|{metadata.type_argument}"
        self.invoker = invoker
        self.attribute_ids = attribute_ids
        self.valid_range = valid_range
        path = metadata.device_path or metadata.device_token
        self.device_path = normalize_device_path(path) or path
        self._value: float | None = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def id(self) -> str:
        return self.identifier

    @property
    def value(self) -> float | None:
        return self._value

    def __repr__(self) -> str:
        return f"TemperatureSensor({self.identifier!r}, name={self.name!r}, value={self._value!r})"

    def _device_args(self) -> list[str]:
        return [*STANDBY_ARGS, "-d", self.metadata.type_argument, self.device_path]

    def refresh(self) -> None:
        result = self.invoker.run(["-A", "-j", *self._device_args()], ATTRIBUTES_TIMEOUT_S)
        if self._read_failed(result):
            self.logger.warning(
                "%s read failed (device %s): %s", self.name, self.device_path, result.describe()
            )
            return

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            self.logger.warning("%s returned unparseable attributes: %s", self.name, exc)
            return

        temperature = None
        if isinstance(data, dict):
            for attribute_id in self.attribute_ids:
                temperature = parse_attribute_temperature(data, attribute_id)
                if temperature is not None:
                    break

        if temperature is None:
            temperature = self._read_sct_temperature()

        if temperature is None:
            self.logger.debug("%s reported no temperature.", self.name)
            return
        if not is_plausible(temperature, self.valid_range):
            self.logger.debug("%s discarded implausible temperature %s.", self.name, temperature)
            return
        self._value = temperature
        self.logger.debug("%s temperature %s C", self.name, temperature)

    def _read_failed(self, result: ToolResult) -> bool:
        if not result.completed:
            return True
        if result.exit_code & DEVICE_OPEN_FAILED:
            return True
        return not result.stdout.strip()

    def _read_sct_temperature(self) -> float | None:
        result = self.invoker.run(
            ["-l", "scttempsts", "-j", *self._device_args()], SCT_TIMEOUT_S
        )
        if result.exit_code != 0 or not result.stdout.strip():
            self.logger.info(
                "%s scttempsts failed (device %s): %s",
                self.name,
                self.device_path,
                result.describe(),
            )
            return None
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            self.logger.debug("Failed to parse scttempsts JSON for %s.", self.device_path)
            return None
        if not isinstance(data, dict):
            return None
        return parse_sct_temperature(data)

from __future__ import annotations

from datetime import datetime, timezone
from importlib import resources
import json
import socket
from typing import Any, Iterable

from jsonschema import Draft202012Validator

from smartctl_tap.sensor import TemperatureSensor

SCHEMA_NAME = "smartctl-tap"
SCHEMA_VERSION = 1
SCHEMA_RESOURCE = "schemas/smartctl-tap.schema.json"


def load_schema() -> dict[str, Any]:
    schema_path = resources.files("smartctl_tap").joinpath(SCHEMA_RESOURCE)
    return json.loads(schema_path.read_text(encoding="utf-8"))


def get_validator() -> Draft202012Validator:
    schema = load_schema()
    return Draft202012Validator(schema=schema)


def validate_payload(payload: dict[str, Any]) -> list[str]:
    validator = get_validator()
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    return [error.message for error in errors]


def sensor_entry(sensor: TemperatureSensor) -> dict[str, Any]:
    metadata = sensor.metadata
    entry: dict[str, Any] = {
        "id": sensor.identifier,
        "name": sensor.name,
        "device": metadata.device_path or metadata.device_token,
        "type": metadata.type_argument,
    }
    # Only include optional fields if they have values
    if metadata.model_or_friendly:
        entry["model"] = metadata.model_or_friendly.strip()
    if metadata.serial:
        entry["serial"] = metadata.serial.strip()
    if metadata.firmware:
        entry["firmware"] = metadata.firmware.strip()
    if metadata.volume_labels:
        entry["volume_labels"] = list(metadata.volume_labels)
    if sensor.value is not None:
        entry["temp_c"] = sensor.value
    return entry


def build_payload(sensors: Iterable[TemperatureSensor], ts: str | None = None) -> dict[str, Any]:
    return {
        "schema": {"name": SCHEMA_NAME, "version": SCHEMA_VERSION},
        "ts": ts or datetime.now(timezone.utc).isoformat(),
        "host": {"name": socket.gethostname()},
        "sensors": [sensor_entry(sensor) for sensor in sensors],
    }

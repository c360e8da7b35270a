from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any
import uuid

from smartctl_tap.invoker import ToolInvoker

SCAN_TIMEOUT_S = 4.0

SUPPORTED_TYPE_MARKERS = ("sat", "scsi", "ata")
UNSUPPORTED_TYPE_MARKERS = ("nvme",)

_TRAILING_ANNOTATION = re.compile(r"\s*\[[^\]]+\]\s*$")
_SHORT_PD = re.compile(r"^PD\d", re.IGNORECASE)


class ScanError(RuntimeError):
    """The device scan itself failed, so nothing can be loaded."""


@dataclass(frozen=True)
class DeviceCandidate:
    device_token: str
    device_path: str
    type: str | None
    name: str | None = None
    info_name: str | None = None
    open_device: str | None = None


def looks_like_device_token(token: str | None) -> bool:
    if not token or not token.strip():
        return False
    if "/" in token or "\\" in token or "@" in token:
        return True
    if "physicaldrive" in token.lower():
        return True
    return bool(_SHORT_PD.match(token))


def normalize_device_path(value: str | None) -> str:
    """Reduce a scan field to a bare device path, or '' when it has none.

    ``/dev/sda [SAT]``, ``"/dev/sdb" # comment`` and ``info /dev/sdc`` all
    reduce to the path alone.
    """
    if not value or not value.strip():
        return ""
    trimmed = value.strip().strip('"')

    comment = trimmed.find("#")
    if comment >= 0:
        trimmed = trimmed[:comment].rstrip()

    trimmed = _TRAILING_ANNOTATION.sub("", trimmed)

    tokens = trimmed.split()
    if len(tokens) > 1:
        for token in tokens:
            if token.startswith("#"):
                break
            if looks_like_device_token(token):
                trimmed = token
                break

    trimmed = trimmed.strip()
    return trimmed if looks_like_device_token(trimmed) else ""


def select_device_path(*candidates: str | None) -> str:
    for candidate in candidates:
        normalized = normalize_device_path(candidate)
        if normalized:
            return normalized
    return ""


def is_supported_type(device_type: str | None) -> bool:
    if not device_type:
        return False
    lowered = device_type.lower()
    if any(marker in lowered for marker in UNSUPPORTED_TYPE_MARKERS):
        return False
    return any(marker in lowered for marker in SUPPORTED_TYPE_MARKERS)


class DeviceScanner:
    def __init__(self, invoker: ToolInvoker) -> None:
        self.invoker = invoker
        self.logger = logging.getLogger(self.__class__.__name__)

    def scan(self) -> list[DeviceCandidate]:
        result = self.invoker.run(["--scan-open", "-j"], SCAN_TIMEOUT_S)
        if result.exit_code != 0:
            raise ScanError(f"smartctl scan failed: {result.describe()}")
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            self.logger.error("Failed to parse smartctl scan JSON: %s", exc)
            return []
        devices = data.get("devices") if isinstance(data, dict) else None
        if not devices:
            self.logger.info("No devices found by smartctl --scan-open.")
            return []

        candidates: list[DeviceCandidate] = []
        for entry in devices:
            if not isinstance(entry, dict):
                continue
            candidate = self._build_candidate(entry)
            if candidate is not None:
                candidates.append(candidate)
        self.logger.debug("Scan produced %d usable candidates.", len(candidates))
        return candidates

    def _build_candidate(self, entry: dict[str, Any]) -> DeviceCandidate | None:
        device_type = _as_text(entry.get("type"))
        name = _as_text(entry.get("name"))
        info_name = _as_text(entry.get("info_name"))
        open_device = _as_text(entry.get("open_device"))

        if not is_supported_type(device_type):
            self.logger.debug("Skipping %s: unsupported type %s", name or info_name, device_type)
            return None

        device_token = name or open_device or info_name or uuid.uuid4().hex
        device_path = select_device_path(open_device, name, info_name)
        if not device_path:
            device_path = normalize_device_path(device_token)

        if not device_path or not looks_like_device_token(device_path):
            self.logger.info("Skipping %s: unable to resolve device path", device_token)
            return None

        return DeviceCandidate(
            device_token=device_token,
            device_path=device_path,
            type=device_type,
            name=name,
            info_name=info_name,
            open_device=open_device,
        )


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None

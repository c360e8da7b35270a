"""Best-effort enumeration of the disks the operating system knows about.

The inventory is an enrichment source only: every failure here degrades to an
empty tuple so discovery carries on with what smartctl reports.
"""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import platform
import re
from typing import Any, Callable, Iterable

from smartctl_tap.invoker import ToolInvoker

logger = logging.getLogger(__name__)

INVENTORY_TIMEOUT_S = 15.0

WINDOWS_DISK_QUERY = (
    "Get-WmiObject Win32_DiskDrive | ForEach-Object { "
    "$letters = @($_.GetRelated('Win32_DiskPartition') | ForEach-Object { "
    "$_.GetRelated('Win32_LogicalDisk') } | ForEach-Object { $_.DeviceID }); "
    "[PSCustomObject]@{ DeviceID = $_.DeviceID; SerialNumber = $_.SerialNumber; "
    "Model = $_.Model; Caption = $_.Caption; DriveLetters = $letters } "
    "} | ConvertTo-Json -Depth 3"
)

_PHYSICAL_DRIVE = re.compile(r"PhysicalDrive(\d+)", re.IGNORECASE)
_SHORT_PD = re.compile(r"PD(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class PlatformDisk:
    device_id: str
    serial: str | None = None
    model: str | None = None
    friendly_name: str | None = None
    volume_labels: tuple[str, ...] = ()


InvokerFactory = Callable[[str], ToolInvoker]


def merge_labels(*groups: Iterable[str]) -> tuple[str, ...]:
    """Union label lists case-insensitively, first spelling wins, sorted."""
    labels: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for label in group:
            if not label or not label.strip():
                continue
            key = label.casefold()
            if key in seen:
                continue
            seen.add(key)
            labels.append(label)
    return tuple(sorted(labels, key=str.casefold))


def normalize_serial(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", "", value).upper()


def normalize_device_id(value: str | None) -> str:
    """Canonicalize the spellings of "physical drive N" so they compare equal."""
    if not value or not value.strip():
        return ""
    trimmed = value.strip().replace("/", "\\")
    if trimmed.lower().startswith("\\\\.\\"):
        return trimmed.upper()
    if match := _PHYSICAL_DRIVE.search(trimmed):
        return f"\\\\.\\PHYSICALDRIVE{match.group(1)}"
    if match := _SHORT_PD.search(trimmed):
        return f"\\\\.\\PHYSICALDRIVE{match.group(1)}"
    return trimmed.upper()


def find_platform_disk(
    disks: Iterable[PlatformDisk],
    serial: str | None,
    identifiers: Iterable[str | None],
) -> PlatformDisk | None:
    """Match by normalized serial, then by each identifier in order."""
    disks = list(disks)
    if not disks:
        return None
    wanted_serial = normalize_serial(serial)
    if wanted_serial:
        for disk in disks:
            if disk.serial and normalize_serial(disk.serial) == wanted_serial:
                return disk
    for identifier in identifiers:
        candidate = normalize_device_id(identifier)
        if not candidate:
            continue
        for disk in disks:
            if normalize_device_id(disk.device_id) == candidate:
                return disk
    return None


def collect_platform_inventory(
    invoker_factory: InvokerFactory = ToolInvoker,
) -> tuple[PlatformDisk, ...]:
    system = platform.system().lower()
    try:
        if system == "windows":
            return _collect_windows(invoker_factory("powershell"))
        if system == "linux":
            return _collect_lsblk(invoker_factory("lsblk"))
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Platform disk inventory unavailable: %s", exc)
        return ()
    logger.debug("No platform disk inventory on %s.", system or "unknown platform")
    return ()


def _load_json(invoker: ToolInvoker, args: list[str]) -> Any:
    result = invoker.run(args, INVENTORY_TIMEOUT_S)
    if result.exit_code != 0 or not result.stdout.strip():
        logger.warning("Platform disk inventory unavailable: %s", result.describe())
        return None
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.warning("Failed to parse platform disk inventory JSON.")
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _collect_windows(invoker: ToolInvoker) -> tuple[PlatformDisk, ...]:
    data = _load_json(invoker, ["-NoProfile", "-NonInteractive", "-Command", WINDOWS_DISK_QUERY])
    if data is None:
        return ()
    # A single result comes back as an object rather than a list
    if isinstance(data, dict):
        data = [data]
    disks: list[PlatformDisk] = []
    for drive in data:
        device_id = _text(drive.get("DeviceID"))
        if not device_id:
            continue
        letters = drive.get("DriveLetters") or []
        if isinstance(letters, str):
            letters = [letters]
        disks.append(
            PlatformDisk(
                device_id=device_id,
                serial=_text(drive.get("SerialNumber")),
                model=_text(drive.get("Model")),
                friendly_name=_text(drive.get("FriendlyName")) or _text(drive.get("Caption")),
                volume_labels=merge_labels(str(letter) for letter in letters if letter),
            )
        )
    logger.debug("Collected %d disks from WMI.", len(disks))
    return tuple(disks)


def _collect_lsblk(invoker: ToolInvoker) -> tuple[PlatformDisk, ...]:
    data = _load_json(
        invoker, ["-J", "-o", "NAME,PATH,TYPE,SERIAL,MODEL,VENDOR,LABEL,MOUNTPOINT"]
    )
    if not isinstance(data, dict):
        return ()
    disks: list[PlatformDisk] = []
    for block in data.get("blockdevices", []):
        if block.get("type") != "disk":
            continue
        path = _text(block.get("path")) or (
            f"/dev/{block['name']}" if block.get("name") else None
        )
        if not path:
            continue
        model = _text(block.get("model"))
        vendor = _text(block.get("vendor"))
        friendly = " ".join(part for part in (vendor, model) if part) or None
        disks.append(
            PlatformDisk(
                device_id=path,
                serial=_text(block.get("serial")),
                model=model,
                friendly_name=friendly,
                volume_labels=merge_labels(_lsblk_labels(block.get("children", []))),
            )
        )
    logger.debug("Collected %d disks from lsblk.", len(disks))
    return tuple(disks)


def _lsblk_labels(children: list[dict[str, Any]]) -> list[str]:
    labels: list[str] = []
    for child in children:
        # Filesystem label first, the mountpoint when the volume has none
        label = _text(child.get("label")) or _text(child.get("mountpoint"))
        if label:
            labels.append(label)
        if "children" in child:
            labels.extend(_lsblk_labels(child["children"]))
    return labels

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
from typing import Any, Iterable

from smartctl_tap.inventory import PlatformDisk, find_platform_disk, merge_labels
from smartctl_tap.invoker import ToolInvoker
from smartctl_tap.scanner import DeviceCandidate

INFO_TIMEOUT_S = 4.0

# Field names smartctl uses for each attribute, in priority order. The
# vocabulary differs between ATA, SCSI and NVMe output and between smartctl
# releases; extend these lists when a new spelling turns up.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "model": (
        "model_name",
        "device_model",
        "model_family",
        "product",
        "nvme_model_number",
        "scsi_product",
    ),
    "serial": (
        "serial_number",
        "ata_serial_number",
        "nvme_serial_number",
        "scsi_serial_number",
    ),
    "firmware": (
        "firmware_version",
        "firmware_revision",
        "nvme_firmware_version",
        "scsi_firmware_version",
    ),
}


@dataclass(frozen=True)
class DeviceMetadata:
    device_token: str
    device_path: str
    type_argument: str = "auto"
    name: str | None = None
    info_name: str | None = None
    open_device: str | None = None
    model: str | None = None
    serial: str | None = None
    firmware: str | None = None
    platform_device_id: str | None = None
    platform_friendly_name: str | None = None
    volume_labels: tuple[str, ...] = ()

    @property
    def model_or_friendly(self) -> str | None:
        return self.model or self.platform_friendly_name

    def searchable_fields(self) -> list[str | None]:
        return [
            self.device_token,
            self.device_path,
            self.serial,
            self.model,
            self.name,
            self.info_name,
            self.open_device,
            self.platform_device_id,
            self.platform_friendly_name,
            *self.volume_labels,
        ]


def first_string(data: dict[str, Any], names: Iterable[str]) -> str | None:
    for name in names:
        value = data.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


def attach_platform_disk(metadata: DeviceMetadata, disk: PlatformDisk) -> DeviceMetadata:
    return replace(
        metadata,
        platform_device_id=disk.device_id,
        platform_friendly_name=disk.friendly_name,
        model=metadata.model or disk.model,
        serial=metadata.serial or disk.serial,
        volume_labels=merge_labels(metadata.volume_labels, disk.volume_labels),
    )


class MetadataResolver:
    def __init__(self, invoker: ToolInvoker, inventory: Iterable[PlatformDisk] = ()) -> None:
        self.invoker = invoker
        self.inventory = tuple(inventory)
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve(self, candidate: DeviceCandidate) -> DeviceMetadata:
        metadata = DeviceMetadata(
            device_token=candidate.device_token,
            device_path=candidate.device_path,
            type_argument=(candidate.type or "").strip() or "auto",
            name=candidate.name,
            info_name=candidate.info_name,
            open_device=candidate.open_device,
        )
        metadata = self._populate_from_smartctl(metadata)
        if self.inventory:
            metadata = self._attach_inventory(metadata)
        return metadata

    def _populate_from_smartctl(self, metadata: DeviceMetadata) -> DeviceMetadata:
        result = self.invoker.run(
            ["-i", "-j", "-d", metadata.type_argument, metadata.device_path], INFO_TIMEOUT_S
        )
        # smartctl sets exit status bits for health warnings while still
        # printing a complete identify document.
        if not result.stdout.strip():
            if not result.completed or result.exit_code != 0:
                self.logger.warning(
                    "Info query failed for %s: %s", metadata.device_path, result.describe()
                )
            return metadata
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            self.logger.warning("Failed to parse info JSON for %s: %s", metadata.device_path, exc)
            return metadata
        if not isinstance(data, dict):
            return metadata
        return replace(
            metadata,
            model=first_string(data, FIELD_ALIASES["model"]) or metadata.model,
            serial=first_string(data, FIELD_ALIASES["serial"]) or metadata.serial,
            firmware=first_string(data, FIELD_ALIASES["firmware"]) or metadata.firmware,
        )

    def _attach_inventory(self, metadata: DeviceMetadata) -> DeviceMetadata:
        disk = find_platform_disk(
            self.inventory,
            metadata.serial,
            (metadata.device_path, metadata.open_device, metadata.info_name),
        )
        if disk is None:
            self.logger.debug("No platform disk matches %s.", metadata.device_token)
            return metadata
        self.logger.debug("Matched %s to platform disk %s.", metadata.device_token, disk.device_id)
        return attach_platform_disk(metadata, disk)

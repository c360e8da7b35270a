from __future__ import annotations

import re

from smartctl_tap.config import DisplayNameMode, PollingOptions
from smartctl_tap.metadata import DeviceMetadata

_PHYSICAL_DRIVE = re.compile(r"PhysicalDrive(\d+)", re.IGNORECASE)


def choose_device_token(metadata: DeviceMetadata) -> str:
    for value in (
        metadata.device_path,
        metadata.device_token,
        metadata.open_device,
        metadata.info_name,
        metadata.name,
    ):
        if value and value.strip():
            return value
    return "Disk"


def join_labels(metadata: DeviceMetadata) -> str | None:
    return ", ".join(metadata.volume_labels) if metadata.volume_labels else None


def combine_non_empty(*values: str | None) -> str | None:
    parts = [value.strip() for value in values if value and value.strip()]
    return " - ".join(parts) if parts else None


def placeholder_values(metadata: DeviceMetadata) -> dict[str, str | None]:
    values = {
        "device": metadata.device_token,
        "devicePath": metadata.device_path,
        "type": metadata.type_argument,
        "model": metadata.model_or_friendly,
        "serial": metadata.serial,
        "letters": join_labels(metadata),
        "name": metadata.name,
        "info": metadata.info_name,
        "openDevice": metadata.open_device,
        "windowsDeviceId": metadata.platform_device_id,
        "friendly": metadata.platform_friendly_name,
        "firmware": metadata.firmware,
    }
    return {key.casefold(): value for key, value in values.items()}


def apply_format(template: str, metadata: DeviceMetadata) -> str:
    """Substitute ``{placeholder}`` fields; unknown or empty ones become ''.

    Text outside braces is copied as is. An unterminated ``{`` and everything
    after it are copied literally.
    """
    replacements = placeholder_values(metadata)
    parts: list[str] = []
    index = 0
    while index < len(template):
        open_at = template.find("{", index)
        if open_at < 0:
            parts.append(template[index:])
            break
        parts.append(template[index:open_at])
        close_at = template.find("}", open_at + 1)
        if close_at < 0:
            parts.append(template[open_at:])
            break
        key = template[open_at + 1:close_at].strip().casefold()
        value = replacements.get(key) if key else None
        if value and value.strip():
            parts.append(value)
        index = close_at + 1
    return "".join(parts).strip()


def _model_with_labels(metadata: DeviceMetadata) -> str | None:
    label = metadata.model_or_friendly
    letters = join_labels(metadata)
    if letters and label and label.strip():
        return f"{label} [{letters}]"
    if letters:
        return f"Disk {letters}"
    return label


def apply_mode(mode: DisplayNameMode, metadata: DeviceMetadata) -> str | None:
    token = choose_device_token(metadata)
    if mode is DisplayNameMode.DEVICE:
        return token
    if mode is DisplayNameMode.DEVICE_AND_TYPE:
        return f"{token} ({metadata.type_argument})"
    if mode is DisplayNameMode.MODEL:
        return metadata.model_or_friendly or token
    if mode is DisplayNameMode.SERIAL:
        return metadata.serial or token
    if mode is DisplayNameMode.MODEL_AND_SERIAL:
        if metadata.serial and metadata.serial.strip():
            return combine_non_empty(metadata.model_or_friendly, metadata.serial)
        return combine_non_empty(metadata.model_or_friendly, token)
    if mode is DisplayNameMode.VOLUME_LABELS:
        letters = join_labels(metadata)
        return f"Disk {letters}" if letters else None
    if mode is DisplayNameMode.MODEL_AND_VOLUME_LABELS:
        return _model_with_labels(metadata)
    return None


def default_display_name(metadata: DeviceMetadata) -> str:
    token = choose_device_token(metadata)
    match = _PHYSICAL_DRIVE.search(token)
    short = f"PD{match.group(1)}" if match else token
    device_type = metadata.type_argument.strip() if metadata.type_argument else ""
    return f"Disk {short} ({device_type or 'auto'})"


def resolve_display_name(metadata: DeviceMetadata, options: PollingOptions) -> str:
    result: str | None = None
    if options.display_name_format and options.display_name_format.strip():
        result = apply_format(options.display_name_format, metadata)
    if not result or not result.strip():
        result = apply_mode(options.display_name_mode, metadata)
    if not result or not result.strip():
        result = default_display_name(metadata)
    if options.display_name_prefix and options.display_name_prefix.strip():
        result = options.display_name_prefix + result
    if options.display_name_suffix and options.display_name_suffix.strip():
        result = result + options.display_name_suffix
    return result

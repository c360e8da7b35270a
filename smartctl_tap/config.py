from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
import configparser
import logging
import math
import re

logger = logging.getLogger(__name__)

SMARTCTL_SECTION = "smartctl"

DEFAULT_SMARTCTL_PATH = "smartctl"
DEFAULT_POLL_INTERVAL_S = 10.0
MIN_POLL_INTERVAL_S = 1.0
MAX_POLL_INTERVAL_S = 3600.0


class DisplayNameMode(Enum):
    AUTO = "auto"
    DEVICE = "device"
    DEVICE_AND_TYPE = "device_and_type"
    MODEL = "model"
    SERIAL = "serial"
    MODEL_AND_SERIAL = "model_and_serial"
    VOLUME_LABELS = "volume_labels"
    MODEL_AND_VOLUME_LABELS = "model_and_volume_labels"


# Keys are lowercase letters only; "DriveLetters" style names are kept for
# configs written by older releases.
_MODE_ALIASES = {
    "auto": DisplayNameMode.AUTO,
    "device": DisplayNameMode.DEVICE,
    "devicetoken": DisplayNameMode.DEVICE,
    "deviceandtype": DisplayNameMode.DEVICE_AND_TYPE,
    "devicetokenandtype": DisplayNameMode.DEVICE_AND_TYPE,
    "model": DisplayNameMode.MODEL,
    "serial": DisplayNameMode.SERIAL,
    "modelandserial": DisplayNameMode.MODEL_AND_SERIAL,
    "volumelabels": DisplayNameMode.VOLUME_LABELS,
    "driveletters": DisplayNameMode.VOLUME_LABELS,
    "modelandvolumelabels": DisplayNameMode.MODEL_AND_VOLUME_LABELS,
    "modelanddriveletters": DisplayNameMode.MODEL_AND_VOLUME_LABELS,
}


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    base_topic: str
    discovery_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    retain: bool
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int = 60


@dataclass(frozen=True)
class PublishConfig:
    tick_s: float


@dataclass(frozen=True)
class PollingOptions:
    smartctl_path: str = DEFAULT_SMARTCTL_PATH
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    display_name_mode: DisplayNameMode = DisplayNameMode.AUTO
    display_name_format: str | None = None
    display_name_prefix: str | None = None
    display_name_suffix: str | None = None
    excluded_tokens: tuple[str, ...] = field(default_factory=tuple)
    settings_hint_shown: bool = False

    @property
    def poll_interval(self) -> float:
        return min(max(self.poll_interval_s, MIN_POLL_INTERVAL_S), MAX_POLL_INTERVAL_S)


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    publish: PublishConfig
    smartctl: PollingOptions


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in re.split(r"[,\r\n]", value) if item.strip()]


def parse_display_name_mode(value: str | None) -> DisplayNameMode:
    if value is None or not value.strip():
        return DisplayNameMode.AUTO
    key = re.sub(r"[^a-z]", "", value.lower())
    if key.startswith("by") and key[2:] in _MODE_ALIASES:
        key = key[2:]
    mode = _MODE_ALIASES.get(key)
    if mode is None:
        logger.warning(
            "Unknown display_name_mode '%s'; using %s.", value, DisplayNameMode.AUTO.value
        )
        return DisplayNameMode.AUTO
    return mode


def dedupe_tokens(tokens: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Trim tokens, drop blanks and keep the first spelling of each token."""
    cleaned: list[str] = []
    seen: set[str] = set()
    for token in tokens:
        if token is None:
            continue
        trimmed = token.strip()
        if not trimmed or trimmed.casefold() in seen:
            continue
        seen.add(trimmed.casefold())
        cleaned.append(trimmed)
    return tuple(cleaned)


def normalize_options(options: PollingOptions) -> PollingOptions:
    smartctl_path = (options.smartctl_path or "").strip() or DEFAULT_SMARTCTL_PATH
    interval = options.poll_interval_s
    if not isinstance(interval, (int, float)) or not math.isfinite(interval) or interval <= 0:
        interval = DEFAULT_POLL_INTERVAL_S
    return replace(
        options,
        smartctl_path=smartctl_path,
        poll_interval_s=float(interval),
        display_name_format=_get_optional(options.display_name_format),
        display_name_prefix=_get_optional(options.display_name_prefix),
        display_name_suffix=_get_optional(options.display_name_suffix),
        excluded_tokens=dedupe_tokens(options.excluded_tokens),
    )


def _read_poll_interval(parser: configparser.ConfigParser) -> float:
    raw = parser.get(SMARTCTL_SECTION, "poll_interval_s", fallback=None)
    if raw is None or not raw.strip():
        return DEFAULT_POLL_INTERVAL_S
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid poll_interval_s '%s'; using %s.", raw, DEFAULT_POLL_INTERVAL_S)
        return DEFAULT_POLL_INTERVAL_S


def _parse_polling_options(parser: configparser.ConfigParser) -> PollingOptions:
    # Use parser.get with fallback to handle a missing [smartctl] section
    options = PollingOptions(
        smartctl_path=parser.get(SMARTCTL_SECTION, "smartctl_path", fallback=DEFAULT_SMARTCTL_PATH),
        poll_interval_s=_read_poll_interval(parser),
        display_name_mode=parse_display_name_mode(
            parser.get(SMARTCTL_SECTION, "display_name_mode", fallback=None)
        ),
        display_name_format=parser.get(SMARTCTL_SECTION, "display_name_format", fallback=None),
        display_name_prefix=parser.get(SMARTCTL_SECTION, "display_name_prefix", fallback=None),
        display_name_suffix=parser.get(SMARTCTL_SECTION, "display_name_suffix", fallback=None),
        excluded_tokens=tuple(
            _get_list(parser.get(SMARTCTL_SECTION, "exclude_devices", fallback=None))
        ),
        settings_hint_shown=parser.getboolean(
            SMARTCTL_SECTION, "settings_hint_shown", fallback=False
        ),
    )
    return normalize_options(options)


def _new_parser() -> configparser.ConfigParser:
    # Interpolation would choke on '%' in display name templates.
    return configparser.ConfigParser(interpolation=None)


def load_options(path: str | Path) -> PollingOptions:
    """Read the [smartctl] section, falling back to defaults when unusable."""
    parser = _new_parser()
    try:
        read_files = parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as exc:
        logger.error("Failed to parse config %s: %s", path, exc)
        return PollingOptions()
    if not read_files:
        logger.debug("Config file %s not found; using defaults.", path)
        return PollingOptions()
    try:
        return _parse_polling_options(parser)
    except (configparser.Error, ValueError) as exc:
        logger.error("Invalid [smartctl] section in %s: %s", path, exc)
        return PollingOptions()


_SECTION_HEADER = re.compile(r"^\s*\[([^\]]+)\]")
_OPTION_LINE = re.compile(r"^([^\s=:#;\[][^=:]*?)\s*[=:]")


def _section_name(line: str) -> str | None:
    match = _SECTION_HEADER.match(line)
    return match.group(1).strip() if match else None


def _option_line(key: str, value: str) -> str:
    return f"{key} = {value}".rstrip()


def _option_values(options: PollingOptions) -> dict[str, str]:
    return {
        "smartctl_path": options.smartctl_path,
        "poll_interval_s": f"{options.poll_interval:g}",
        "display_name_mode": options.display_name_mode.value,
        "display_name_format": options.display_name_format or "",
        "display_name_prefix": options.display_name_prefix or "",
        "display_name_suffix": options.display_name_suffix or "",
        "exclude_devices": ", ".join(options.excluded_tokens),
        "settings_hint_shown": "true" if options.settings_hint_shown else "false",
    }


def rewrite_section(lines: list[str], values: dict[str, str]) -> list[str]:
    """Set ``values`` inside the [smartctl] block and leave every other line alone.

    Known keys are replaced where they stand (continuation lines of the old
    value are dropped), keys the block lacks are appended after its last
    non-blank line, and a missing block is added at the end of the file.
    """
    start = next(
        (index for index, line in enumerate(lines) if _section_name(line) == SMARTCTL_SECTION),
        None,
    )
    if start is None:
        block = [f"[{SMARTCTL_SECTION}]", *(_option_line(k, v) for k, v in values.items())]
        if lines and lines[-1].strip():
            block.insert(0, "")
        return [*lines, *block]

    end = next(
        (index for index in range(start + 1, len(lines)) if _section_name(lines[index]) is not None),
        len(lines),
    )
    pending = dict(values)
    body: list[str] = []
    replacing = False
    for line in lines[start + 1:end]:
        stripped = line.strip()
        if replacing and line[:1] in (" ", "\t") and stripped and stripped[0] not in "#;":
            continue
        replacing = False
        match = _OPTION_LINE.match(line)
        key = match.group(1).strip().lower() if match else None
        if key in pending:
            body.append(_option_line(key, pending.pop(key)))
            replacing = True
        else:
            body.append(line)

    last = len(body)
    while last > 0 and not body[last - 1].strip():
        last -= 1
    body[last:last] = [_option_line(k, v) for k, v in pending.items()]
    return [*lines[:start + 1], *body, *lines[end:]]


def save_options(path: str | Path, options: PollingOptions) -> None:
    """Write the [smartctl] keys back in place, keeping comments and other sections."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        text = ""
    lines = rewrite_section(text.splitlines(), _option_values(options))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def load_config(path: str | Path) -> AppConfig:
    parser = _new_parser()
    read_files = parser.read(path, encoding="utf-8")
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    mqtt = MqttConfig(
        host=parser.get("mqtt", "host", fallback="localhost"),
        port=parser.getint("mqtt", "port", fallback=1883),
        base_topic=parser.get("mqtt", "base_topic", fallback="smartctl/temps"),
        discovery_topic=parser.get("mqtt", "discovery_topic", fallback="homeassistant"),
        client_id=parser.get("mqtt", "client_id", fallback="smartctl-tap"),
        username=_get_optional(parser.get("mqtt", "username", fallback=None)),
        password=_get_optional(parser.get("mqtt", "password", fallback=None)),
        qos=parser.getint("mqtt", "qos", fallback=0),
        retain=parser.getboolean("mqtt", "retain", fallback=False),
        tls_enabled=parser.getboolean("mqtt", "tls", fallback=False),
        ca_cert=_get_optional(parser.get("mqtt", "ca_cert", fallback=None)),
        keepalive=parser.getint("mqtt", "keepalive", fallback=60),
    )

    publish = PublishConfig(
        tick_s=parser.getfloat("publish", "tick_s", fallback=1.0),
    )

    return AppConfig(mqtt=mqtt, publish=publish, smartctl=_parse_polling_options(parser))

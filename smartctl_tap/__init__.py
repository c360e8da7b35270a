"""Smartctl disk temperature sensors."""

from smartctl_tap.config import AppConfig, DisplayNameMode, PollingOptions, load_config, load_options
from smartctl_tap.mqtt_client import MqttPublisher
from smartctl_tap.plugin import SmartctlPlugin
from smartctl_tap.schema import validate_payload
from smartctl_tap.sensor import TemperatureSensor

__all__ = [
    "AppConfig",
    "DisplayNameMode",
    "MqttPublisher",
    "PollingOptions",
    "SmartctlPlugin",
    "TemperatureSensor",
    "load_config",
    "load_options",
    "validate_payload",
]

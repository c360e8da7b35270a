from __future__ import annotations

import json
import logging
import re
import ssl
from typing import Any, Iterable

import paho.mqtt.client as mqtt

from smartctl_tap.config import MqttConfig
from smartctl_tap.sensor import TemperatureSensor


def object_id(sensor: TemperatureSensor) -> str:
    """Home Assistant object ids allow only [a-zA-Z0-9_-]."""
    raw = f"{sensor.metadata.device_token}_{sensor.metadata.type_argument}"
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", raw).strip("_").lower() or "disk"


class MqttPublisher:
    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False
        self._discovered: set[str] = set()

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            self.client.tls_set(
                ca_certs=config.ca_cert,
                cert_reqs=ssl.CERT_REQUIRED,
            )

        # Last Will and Testament for availability
        self.client.will_set(
            self._availability_topic,
            payload="offline",
            qos=1,
            retain=True,
        )

        self.client.reconnect_delay_set(min_delay=1, max_delay=120)

    @property
    def _availability_topic(self) -> str:
        return f"{self.config.base_topic}/status"

    @property
    def connected(self) -> bool:
        return self._connected

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if not reason_code.is_failure:
            self._connected = True
            self.logger.info(
                "Connected to MQTT broker %s:%s", self.config.host, self.config.port
            )
            self.client.publish(
                self._availability_topic,
                payload="online",
                qos=1,
                retain=True,
            )
        else:
            self._connected = False
            self.logger.error("Failed to connect to MQTT broker: %s", reason_code)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if not reason_code.is_failure:
            self.logger.info("Disconnected from MQTT broker (clean)")
        else:
            self.logger.warning(
                "Unexpectedly disconnected from MQTT broker: %s. Will attempt to reconnect.",
                reason_code,
            )

    def connect(self) -> None:
        self.logger.info(
            "Connecting to MQTT broker %s:%s", self.config.host, self.config.port
        )
        self.client.connect(
            self.config.host,
            self.config.port,
            keepalive=self.config.keepalive,
        )
        # Network loop runs in the background and handles reconnects
        self.client.loop_start()

    def disconnect(self) -> None:
        if self._connected:
            self.client.publish(
                self._availability_topic,
                payload="offline",
                qos=1,
                retain=True,
            )
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info("Disconnected from MQTT broker")

    def publish_status(self, status: str) -> bool:
        """Publish a custom status (e.g. "online", "sleeping") to the availability topic."""
        self.logger.info("Publishing status '%s' to %s", status, self._availability_topic)
        result = self.client.publish(
            self._availability_topic,
            payload=status,
            qos=1,
            retain=True,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish status, error code: %s", result.rc)
            return False
        return True

    def publish(self, payload: str) -> bool:
        if not self._connected:
            self.logger.warning("Not connected to MQTT broker, message may be queued")
        self.logger.debug("Publishing temperature payload to %s", self.config.base_topic)
        result = self.client.publish(
            self.config.base_topic,
            payload=payload,
            qos=self.config.qos,
            retain=self.config.retain,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish message, error code: %s", result.rc)
            return False
        return True

    def discovery_payload(self, sensor: TemperatureSensor) -> dict[str, Any]:
        metadata = sensor.metadata
        device: dict[str, Any] = {
            "identifiers": [f"{self.config.client_id}_{object_id(sensor)}"],
            "name": sensor.name,
        }
        if metadata.model_or_friendly:
            device["model"] = metadata.model_or_friendly
        if metadata.serial:
            device["serial_number"] = metadata.serial
        if metadata.firmware:
            device["sw_version"] = metadata.firmware
        return {
            "name": f"{sensor.name} Temperature",
            "unique_id": f"{self.config.client_id}_{object_id(sensor)}_temp",
            "state_topic": self.config.base_topic,
            "value_template": (
                "{% for s in value_json.sensors %}"
                f"{{% if s.id == {json.dumps(sensor.identifier)} %}}{{{{ s.temp_c }}}}{{% endif %}}"
                "{% endfor %}"
            ),
            "device_class": "temperature",
            "state_class": "measurement",
            "unit_of_measurement": "°C",
            "availability_topic": self._availability_topic,
            "payload_available": "online",
            "payload_not_available": "offline",
            "device": device,
        }

    def _discovery_config_topic(self, sensor_object_id: str) -> str:
        return (
            f"{self.config.discovery_topic}/sensor/"
            f"{self.config.client_id}/{sensor_object_id}/config"
        )

    def publish_discovery(self, sensors: Iterable[TemperatureSensor]) -> None:
        """Announce every sensor and retract ones announced earlier but now gone."""
        current: set[str] = set()
        for sensor in sensors:
            sensor_object_id = object_id(sensor)
            current.add(sensor_object_id)
            topic = self._discovery_config_topic(sensor_object_id)
            self.logger.debug("Publishing Home Assistant discovery to %s", topic)
            self.client.publish(
                topic,
                payload=json.dumps(self.discovery_payload(sensor)),
                qos=self.config.qos,
                retain=True,
            )
        # An empty retained config removes the entity from Home Assistant
        for stale in sorted(self._discovered - current):
            topic = self._discovery_config_topic(stale)
            self.logger.info("Removing Home Assistant discovery for %s", stale)
            self.client.publish(topic, payload="", qos=self.config.qos, retain=True)
        self._discovered = current

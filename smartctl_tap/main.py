from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import time

from smartctl_tap.config import load_config, load_options
from smartctl_tap.logging_utils import configure_logging, resolve_log_level
from smartctl_tap.mqtt_client import MqttPublisher
from smartctl_tap.plugin import SmartctlPlugin
from smartctl_tap.schema import build_payload, validate_payload
from smartctl_tap.sensor import TemperatureSensor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Smartctl disk temperature exporter")
    parser.add_argument(
        "--config",
        default="config/example.cfg",
        help="Path to CFG configuration file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log payloads without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Scan, read every disk once and exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the JSON payload to a file (overwrites on each poll)",
    )
    parser.add_argument(
        "--publish-status",
        metavar="STATUS",
        help="Publish a status (e.g., 'sleeping', 'online') to the availability topic and exit. "
             "Useful for system sleep/wake hooks.",
    )
    return parser


def emit_payload(
    sensors: list[TemperatureSensor],
    publisher: MqttPublisher | None,
    dump_path: str | None,
    pretty: bool,
) -> None:
    logger = logging.getLogger("smartctl_tap")
    payload = build_payload(sensors)
    schema_errors = validate_payload(payload)
    if schema_errors:
        logger.warning("Schema validation failed with %s errors.", len(schema_errors))
        logger.debug("Schema errors: %s", schema_errors)
    payload_json = json.dumps(payload, indent=2) if pretty else json.dumps(payload)
    if dump_path:
        with open(dump_path, "w", encoding="utf-8") as handle:
            handle.write(payload_json)
    if publisher is None:
        logger.debug("Payload: %s", payload_json)
    else:
        publisher.publish(payload_json)


def config_mtime(path: str | Path) -> int | None:
    try:
        return Path(path).stat().st_mtime_ns
    except OSError:
        return None


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    logger = logging.getLogger("smartctl_tap")
    config = load_config(args.config)
    pretty_print = level <= logging.DEBUG

    if args.publish_status:
        publisher = MqttPublisher(config.mqtt)
        publisher.connect()
        # Wait briefly for the connection to establish
        time.sleep(0.5)
        if publisher.connected:
            publisher.publish_status(args.publish_status)
            time.sleep(0.5)
        else:
            logger.error("Failed to connect to MQTT broker")
        publisher.disconnect()
        return

    plugin = SmartctlPlugin(config_path=args.config)
    plugin.initialize()
    sensors: list[TemperatureSensor] = []
    reload_requested = False

    def request_reload() -> None:
        nonlocal reload_requested
        reload_requested = True

    plugin.refresh_requested = request_reload
    plugin.load(sensors)
    last_mtime = config_mtime(args.config)

    publisher = None if args.dry_run else MqttPublisher(config.mqtt)
    if publisher is not None:
        publisher.connect()
        publisher.publish_discovery(sensors)

    if args.once:
        plugin.update()
        emit_payload(sensors, publisher, args.dump_json, pretty_print)
        logger.info("Single-run mode enabled; exiting after one poll.")
        if publisher is not None:
            publisher.disconnect()
        plugin.close()
        return

    tick = max(0.1, config.publish.tick_s)
    logger.info(
        "%s started with %d sensors. Polling every %s seconds.",
        plugin.name,
        len(sensors),
        plugin.options.poll_interval,
    )

    try:
        while True:
            mtime = config_mtime(args.config)
            if mtime != last_mtime:
                last_mtime = mtime
                logger.info("Config %s changed; reloading options.", args.config)
                plugin.apply_options(load_options(args.config), persist=False)
            if reload_requested:
                reload_requested = False
                sensors.clear()
                plugin.load(sensors)
                if publisher is not None:
                    publisher.publish_discovery(sensors)
            if plugin.update():
                emit_payload(sensors, publisher, args.dump_json, pretty_print)
            time.sleep(tick)
    except KeyboardInterrupt:
        logger.info("%s stopped.", plugin.name)
    finally:
        if publisher is not None:
            publisher.disconnect()
        plugin.close()


if __name__ == "__main__":
    main()

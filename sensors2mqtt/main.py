#!/usr/bin/env python3
"""Poll one sensor driver and republish its readings to MQTT with Home Assistant discovery."""

import argparse
import asyncio
import logging
import os
import signal
from typing import List, Optional

from . import metrics
from .config import ConfigError, Settings, load_settings
from .drivers import DRIVERS, SensorDriver, build_driver
from .lifecycle import LifecycleState, ReportingLifecycle, RunContext
from .mqtt_client import MQTTClient

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("sensors2mqtt")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sensors2mqtt", description=__doc__)
    parser.add_argument("driver", choices=DRIVERS, help="sensor driver to run")
    parser.add_argument(
        "--config",
        default=os.getenv("SENSORS2MQTT_CONFIG"),
        help="YAML config file (default: $SENSORS2MQTT_CONFIG)",
    )
    parser.add_argument("--sensor-name", help="sensor name, also used as MQTT client id")
    parser.add_argument("--server", help="MQTT broker host")
    parser.add_argument("--log-level", help="logging level (default: INFO)")
    return parser.parse_args(argv)


def build_client(settings: Settings) -> MQTTClient:
    mqtt_cfg = settings.mqtt
    return MQTTClient(
        host=mqtt_cfg.server,
        port=mqtt_cfg.port,
        client_id=settings.sensor_name,
        username=mqtt_cfg.username,
        password=mqtt_cfg.password,
        keepalive=mqtt_cfg.keepalive,
        connect_timeout=mqtt_cfg.connect_timeout,
        publish_timeout=mqtt_cfg.publish_timeout,
    )


async def serve(driver: SensorDriver, client, settings: Settings) -> LifecycleState:
    loop = asyncio.get_running_loop()
    ctx = RunContext(logger=logging.getLogger(f"sensors2mqtt.{driver.name}"))

    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, ctx.stop)
            handled.append(sig)
        except NotImplementedError:
            logger.debug("Signal handlers unavailable on this platform")

    lifecycle = ReportingLifecycle(
        driver,
        client,
        ctx,
        discovery_prefix=settings.discovery_prefix,
        poll_interval=settings.poll_interval_seconds,
        read_retries=settings.read_retries,
        announce_late=settings.onewire.announce_late_probes,
    )
    try:
        return await lifecycle.run()
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging("INFO")

    try:
        settings = load_settings(args.config, args.sensor_name, args.server, args.log_level)
    except ConfigError as exc:
        logger.critical("%s", exc)
        return 1
    configure_logging(settings.log_level)

    logger.info("Starting %s as %s -> %s", args.driver, settings.sensor_name, settings.mqtt.server)
    try:
        metrics.start_exporter(settings.metrics_port)
        driver = build_driver(args.driver, settings)
        state = asyncio.run(serve(driver, build_client(settings), settings))
    except Exception:
        logger.critical("Host terminated unexpectedly", exc_info=True)
        return 1
    return 0 if state is LifecycleState.STOPPED else 1


if __name__ == "__main__":
    raise SystemExit(main())

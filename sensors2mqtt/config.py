import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .sensors.onewire import W1_DEVICES_DIR

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Missing or invalid setting; fatal before any I/O."""


class MQTTSettings(BaseModel):
    server: str = ""
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 60
    connect_timeout: float = Field(10.0, gt=0)
    publish_timeout: float = Field(10.0, gt=0)


class BME280Settings(BaseModel):
    bus: int = 1
    address: int = 0x76
    settle_delay: float = Field(0.1, ge=0)


class MAX44009Settings(BaseModel):
    bus: int = 1
    address: int = 0x4A


class OneWireSettings(BaseModel):
    names_file: str = ""
    devices_dir: str = W1_DEVICES_DIR
    # Publish discovery for probes missing from the names file before their first state.
    announce_late_probes: bool = True


class Settings(BaseModel):
    sensor_name: str = ""
    base_topic: str = "sensors"
    discovery_prefix: str = "homeassistant"
    heartbeat_seconds: float = Field(60.0, gt=0)
    poll_interval_seconds: float = Field(1.0, ge=0)
    read_retries: int = Field(0, ge=0)
    log_level: str = "INFO"
    metrics_port: Optional[int] = None
    mqtt: MQTTSettings = Field(default_factory=MQTTSettings)
    bme280: BME280Settings = Field(default_factory=BME280Settings)
    max44009: MAX44009Settings = Field(default_factory=MAX44009Settings)
    onewire: OneWireSettings = Field(default_factory=OneWireSettings)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    def check_required(self) -> None:
        if not self.sensor_name.strip():
            raise ConfigError("No 'sensor_name' specified")
        if not self.mqtt.server.strip():
            raise ConfigError("No 'mqtt.server' specified")


def _expand_env(text: str) -> str:
    pattern = re.compile(r"\$\{([^:}]+)(:-([^}]*))?}")

    def repl(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(3) or ""
        return os.environ.get(var_name, default)

    return pattern.sub(repl, text)


def load_config(path: Path) -> dict:
    """Load YAML config with environment variable expansion."""
    raw_text = _expand_env(path.read_text(encoding="utf-8"))
    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_settings(
    path: Optional[str] = None,
    sensor_name: Optional[str] = None,
    server: Optional[str] = None,
    log_level: Optional[str] = None,
) -> Settings:
    """Build settings from the config file, then ``SENSOR_NAME``/``MQTT_SERVER``, then CLI flags."""
    data: dict = {}
    if path:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        data = load_config(config_path)

    sensor_name = sensor_name or os.environ.get("SENSOR_NAME")
    server = server or os.environ.get("MQTT_SERVER")
    if sensor_name:
        data["sensor_name"] = sensor_name
    if server:
        data.setdefault("mqtt", {})
        if not isinstance(data["mqtt"], dict):
            raise ConfigError("'mqtt' must be a mapping")
        data["mqtt"]["server"] = server
    if log_level:
        data["log_level"] = log_level

    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    settings.check_required()
    return settings


def load_name_map(path: str) -> Dict[str, str]:
    """Probe id to display name mapping; the file must exist and hold a JSON object of strings."""
    if not path:
        raise ConfigError("No 'onewire.names_file' specified")
    names_path = Path(path)
    if not names_path.is_file():
        logger.error("Failed to find sensor names file: %s", path)
        raise ConfigError(f"Cannot find sensor names file: {path}")

    try:
        with names_path.open("r", encoding="utf-8") as fp:
            names = json.load(fp)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read sensor names file {path}: {exc}") from exc

    if not isinstance(names, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in names.items()
    ):
        raise ConfigError(f"Sensor names file {path} must map probe ids to names")
    logger.info("Loaded %s sensor names from %s", len(names), path)
    return names

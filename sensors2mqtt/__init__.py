"""Publish sensor readings to MQTT using Home Assistant discovery."""

__version__ = "0.1.0"

"""Home Assistant discovery and state messages."""

import logging
from dataclasses import dataclass
from typing import Tuple

from .sensors import Reading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryDescriptor:
    sensor_id: str
    name: str
    state_topic: str
    device_class: str
    value_field: str
    unit: str

    def topic(self, discovery_prefix: str = "homeassistant") -> str:
        return f"{discovery_prefix}/sensor/{self.sensor_id}/{self.device_class}/config"

    def payload(self) -> dict:
        return {
            "name": self.name,
            "device_class": self.device_class,
            "state_topic": self.state_topic,
            "unit_of_measurement": self.unit,
            "value_template": f"{{{{ value_json.{self.value_field} }}}}",
        }


@dataclass(frozen=True)
class SensorInstance:
    """Static identity of one logical sensor: where it reports and how it is announced."""

    key: str
    display_name: str
    state_topic: str
    descriptors: Tuple[DiscoveryDescriptor, ...] = ()


class Topics:
    """Topic naming for one service instance, keyed by its sensor name."""

    def __init__(self, sensor_name: str, base_topic: str = "sensors", discovery_prefix: str = "homeassistant"):
        self.sensor_name = sensor_name
        self.base_topic = base_topic.rstrip("/")
        self.discovery_prefix = discovery_prefix.rstrip("/")

    def state(self, sub_name: str = "") -> str:
        if sub_name:
            return f"{self.base_topic}/sensor/{self.sensor_name}/{sub_name}/state"
        return f"{self.base_topic}/sensor/{self.sensor_name}/state"

    def descriptor(self, device_class: str, unit: str, value_field: str = "") -> DiscoveryDescriptor:
        """Descriptor for one field multiplexed onto the shared state topic."""
        return DiscoveryDescriptor(
            sensor_id=self.sensor_name,
            name=f"{self.sensor_name}_{device_class}",
            state_topic=self.state(),
            device_class=device_class,
            value_field=value_field or device_class,
            unit=unit,
        )


async def publish_discovery(client, descriptor: DiscoveryDescriptor, discovery_prefix: str = "homeassistant") -> None:
    topic = descriptor.topic(discovery_prefix)
    await client.publish_json(topic, descriptor.payload())
    logger.info("Discovery published for %s on %s", descriptor.name, topic)


async def publish_state(client, instance: SensorInstance, reading: Reading) -> None:
    await client.publish_json(instance.state_topic, reading.as_payload())
    logger.debug("State published for %s: %s", instance.display_name, reading.as_payload())

"""Per-sensor capability sets plugged into the reporting lifecycle."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Dict, List

from .config import Settings, load_name_map
from .discovery import DiscoveryDescriptor, SensorInstance, Topics
from .policy import BME280_THRESHOLDS, ONEWIRE_THRESHOLDS, ChangePolicy, RatioPolicy, ThresholdPolicy
from .sensors import BME280Sensor, MAX44009Sensor, OneWireBus, Reading


class SensorDriver(ABC):
    name = "sensor"

    def __init__(self, topics: Topics, policy: ChangePolicy):
        self.topics = topics
        self.policy = policy

    async def configure(self, ctx) -> None:
        """One-time setup before connecting to the broker."""

    @abstractmethod
    def known_instances(self) -> List[SensorInstance]:
        """Instances announced before polling starts."""

    def resolve(self, key: str, ctx) -> SensorInstance:
        for instance in self.known_instances():
            if instance.key == key:
                return instance
        raise KeyError(f"{self.name} has no sensor {key!r}")

    @abstractmethod
    async def read(self, ctx) -> List[Reading]:
        ...

    def close(self) -> None:
        pass


class BME280Driver(SensorDriver):
    name = "bme280"

    def __init__(self, topics: Topics, sensor: BME280Sensor, heartbeat: float = 60.0, settle_delay: float = 0.1):
        super().__init__(topics, ThresholdPolicy(BME280_THRESHOLDS, heartbeat))
        self.sensor = sensor
        self.settle_delay = settle_delay
        self.instance = SensorInstance(
            key=topics.sensor_name,
            display_name=topics.sensor_name,
            state_topic=topics.state(),
            descriptors=(
                topics.descriptor("humidity", "%"),
                topics.descriptor("temperature", "°C"),
                topics.descriptor("pressure", "hPa"),
            ),
        )

    async def configure(self, ctx) -> None:
        await asyncio.to_thread(self.sensor.configure)

    def known_instances(self) -> List[SensorInstance]:
        return [self.instance]

    async def read(self, ctx) -> List[Reading]:
        # conversion time of a forced measurement
        if await ctx.sleep(self.settle_delay):
            return []
        values = await self.sensor.read_async()
        return [Reading(self.instance.key, values)]

    def close(self) -> None:
        self.sensor.close()


class MAX44009Driver(SensorDriver):
    name = "max44009"

    def __init__(self, topics: Topics, sensor: MAX44009Sensor, heartbeat: float = 60.0):
        super().__init__(topics, RatioPolicy("lux", 10.0, heartbeat))
        self.sensor = sensor
        self.instance = SensorInstance(
            key=topics.sensor_name,
            display_name=topics.sensor_name,
            state_topic=topics.state(),
            descriptors=(topics.descriptor("illuminance", "lx", "lux"),),
        )

    async def configure(self, ctx) -> None:
        await asyncio.to_thread(self.sensor.configure)

    def known_instances(self) -> List[SensorInstance]:
        return [self.instance]

    async def read(self, ctx) -> List[Reading]:
        lux = await self.sensor.read_async()
        return [Reading(self.instance.key, {"lux": lux})]

    def close(self) -> None:
        self.sensor.close()


class OneWireDriver(SensorDriver):
    """Every probe on the bus is its own instance with its own state topic."""

    name = "onewire"

    def __init__(self, topics: Topics, bus: OneWireBus, names_file: str, heartbeat: float = 60.0):
        super().__init__(topics, ThresholdPolicy(ONEWIRE_THRESHOLDS, heartbeat))
        self.bus = bus
        self.names_file = names_file
        self.names: Dict[str, str] = {}

    async def configure(self, ctx) -> None:
        self.names = await asyncio.to_thread(load_name_map, self.names_file)

    def instance(self, probe_id: str, display_name: str) -> SensorInstance:
        sensor_name = self.topics.sensor_name
        state_topic = self.topics.state(display_name)
        descriptor = DiscoveryDescriptor(
            sensor_id=f"{sensor_name}_{probe_id}",
            name=f"{sensor_name}_{display_name}",
            state_topic=state_topic,
            device_class="temperature",
            value_field="temperature",
            unit="°C",
        )
        return SensorInstance(probe_id, display_name, state_topic, (descriptor,))

    def known_instances(self) -> List[SensorInstance]:
        return [self.instance(probe_id, name) for probe_id, name in self.names.items()]

    def resolve(self, key: str, ctx) -> SensorInstance:
        name = self.names.get(key)
        if name is None:
            ctx.logger.warning("Failed to find name for %s", key)
            name = key
        return self.instance(key, name)

    async def read(self, ctx) -> List[Reading]:
        temperatures = await self.bus.read_async()
        now = time.monotonic()
        return [Reading(device, {"temperature": value}, now) for device, value in temperatures.items()]


def build_driver(kind: str, settings: Settings) -> SensorDriver:
    topics = Topics(settings.sensor_name, settings.base_topic, settings.discovery_prefix)
    heartbeat = settings.heartbeat_seconds
    if kind == "bme280":
        sensor = BME280Sensor(bus=settings.bme280.bus, address=settings.bme280.address)
        return BME280Driver(topics, sensor, heartbeat, settings.bme280.settle_delay)
    if kind == "max44009":
        sensor = MAX44009Sensor(bus=settings.max44009.bus, address=settings.max44009.address)
        return MAX44009Driver(topics, sensor, heartbeat)
    if kind == "onewire":
        bus = OneWireBus(devices_dir=settings.onewire.devices_dir)
        return OneWireDriver(topics, bus, settings.onewire.names_file, heartbeat)
    raise ValueError(f"Unknown driver {kind!r}")


DRIVERS = ("bme280", "max44009", "onewire")

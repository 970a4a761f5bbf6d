"""Connect, announce, poll and shut down: the reporting lifecycle shared by every driver."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

from . import metrics
from .discovery import SensorInstance, publish_discovery, publish_state
from .policy import SensorState
from .sensors import Reading, SensorError


class LifecycleState(str, Enum):
    STARTING = "starting"
    CONNECTED = "connected"
    ANNOUNCED = "announced"
    POLLING = "polling"
    STOPPED = "stopped"
    FAILED = "failed"


class RunContext:
    """Logger, stop signal and shutdown request handed to every lifecycle step."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        stop_event: Optional[asyncio.Event] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ):
        self.logger = logger or logging.getLogger("sensors2mqtt")
        self.stop_event = stop_event or asyncio.Event()
        self.on_shutdown = on_shutdown
        self.shutdown_requested = False

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    def request_shutdown(self) -> None:
        self.shutdown_requested = True
        self.stop_event.set()
        if self.on_shutdown:
            self.on_shutdown()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True when the wait ended because of a stop request."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class ReportingLifecycle:
    def __init__(
        self,
        driver,
        client,
        ctx: RunContext,
        discovery_prefix: str = "homeassistant",
        poll_interval: float = 1.0,
        read_retries: int = 0,
        announce_late: bool = True,
    ):
        self.driver = driver
        self.client = client
        self.ctx = ctx
        self.discovery_prefix = discovery_prefix
        self.poll_interval = poll_interval
        self.read_retries = read_retries
        self.announce_late = announce_late

        self.state = LifecycleState.STARTING
        self.sensor_states: Dict[str, SensorState] = {}
        self._instances: Dict[str, SensorInstance] = {}
        self._announced: Set[str] = set()

    async def run(self) -> LifecycleState:
        log = self.ctx.logger
        log.info("Starting up %s", self.driver.name)
        try:
            await self.driver.configure(self.ctx)
            await self.client.connect()
            self.state = LifecycleState.CONNECTED
            await self.announce()
            self.state = LifecycleState.ANNOUNCED
            await self.poll()
            self.state = LifecycleState.STOPPED
        except asyncio.CancelledError:
            self.state = LifecycleState.STOPPED
            log.info("Cancelled, stopping %s", self.driver.name)
            raise
        except Exception as exc:
            if self.ctx.stopping:
                self.state = LifecycleState.STOPPED
                log.info("Ignoring error raised while stopping: %s", exc)
            else:
                self.state = LifecycleState.FAILED
                log.exception("Error running %s: %s", self.driver.name, exc)
                self.ctx.request_shutdown()
        finally:
            await self._release()
            log.info("Finishing (%s)", self.state.value)
        return self.state

    async def announce(self) -> None:
        for instance in self.driver.known_instances():
            self._instances[instance.key] = instance
            await self._announce(instance)

    async def _announce(self, instance: SensorInstance) -> None:
        for descriptor in instance.descriptors:
            await publish_discovery(self.client, descriptor, self.discovery_prefix)
            metrics.DISCOVERY_PUBLISHED_TOTAL.labels(sensor=instance.display_name).inc()
        self._announced.add(instance.key)

    async def poll(self) -> None:
        self.state = LifecycleState.POLLING
        log = self.ctx.logger
        log.info("Polling every %ss", self.poll_interval)
        failures = 0
        while not self.ctx.stopping:
            try:
                readings = await self.driver.read(self.ctx)
            except SensorError as exc:
                failures += 1
                metrics.READ_FAILURES_TOTAL.labels(driver=self.driver.name).inc()
                if failures > self.read_retries:
                    raise
                log.warning("Sensor read failed (%s/%s): %s", failures, self.read_retries, exc)
            else:
                failures = 0
                for reading in readings:
                    await self.report(reading)
            await self.ctx.sleep(self.poll_interval)
        log.info("Stop requested, leaving poll loop")

    async def report(self, reading: Reading) -> bool:
        """Publish ``reading`` if the driver's policy says it changed enough."""
        state = self.sensor_states.get(reading.sensor_id)
        if state is None:
            state = await self._track(reading.sensor_id)
        instance = self._instances[reading.sensor_id]

        policy = self.driver.policy
        if not policy.should_report(state, reading):
            metrics.READINGS_SKIPPED_TOTAL.labels(sensor=instance.display_name).inc()
            return False

        await publish_state(self.client, instance, reading)
        state.mark_reported(reading, policy.heartbeat)
        metrics.STATE_PUBLISHED_TOTAL.labels(sensor=instance.display_name).inc()
        return True

    async def _track(self, key: str) -> SensorState:
        instance = self._instances.get(key) or self.driver.resolve(key, self.ctx)
        self._instances[key] = instance
        if key not in self._announced:
            if self.announce_late:
                self.ctx.logger.info("Announcing %s first seen while polling", instance.display_name)
                await self._announce(instance)
            else:
                self.ctx.logger.warning("%s reports without a discovery entry", instance.display_name)
        state = SensorState(id=key, display_name=instance.display_name)
        self.sensor_states[key] = state
        return state

    async def _release(self) -> None:
        try:
            await self.client.disconnect()
        except Exception:  # noqa: BLE001 - teardown must not mask the run outcome
            self.ctx.logger.warning("Failed to disconnect cleanly", exc_info=True)
        try:
            self.driver.close()
        except Exception:  # noqa: BLE001
            self.ctx.logger.warning("Failed to close %s", self.driver.name, exc_info=True)

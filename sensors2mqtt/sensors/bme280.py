"""BME280 sensor abstraction over I2C."""

import logging
from typing import Callable, Dict, Optional

from . import SensorError

logger = logging.getLogger(__name__)

FIELDS = ("humidity", "pressure", "temperature")


class BME280Sensor:
    """Temperature, humidity and pressure from a BME280 in forced mode.

    ``reader`` replaces the hardware access and must return a dict with the
    three fields in °C, % and hPa.
    """

    def __init__(
        self,
        bus: int = 1,
        address: int = 0x76,
        reader: Optional[Callable[[], Dict[str, float]]] = None,
    ):
        self.bus = bus
        self.address = address
        self._hardware = reader is None
        self.reader = reader or self._smbus_read
        self._smbus = None
        self._calibration = None

    def configure(self) -> None:
        """Open the bus and load the factory calibration (1x oversampling, no filter)."""
        if not self._hardware:
            return

        try:
            import bme280
            import smbus2

            self._smbus = smbus2.SMBus(self.bus)
            self._calibration = bme280.load_calibration_params(self._smbus, self.address)
        except Exception as exc:  # noqa: BLE001 - driver errors surface as sensor errors
            raise SensorError(f"BME280 setup failed on bus {self.bus}: {exc}") from exc
        logger.info("BME280 configured on bus %s at 0x%02x", self.bus, self.address)

    def _smbus_read(self) -> Dict[str, float]:
        import bme280

        if self._smbus is None:
            raise SensorError("BME280 is not configured")
        sample = bme280.sample(self._smbus, self.address, self._calibration, bme280.oversampling.x1)
        return {
            "humidity": sample.humidity,
            "pressure": sample.pressure,
            "temperature": sample.temperature,
        }

    def read(self) -> Dict[str, float]:
        try:
            data = dict(self.reader())
            return {name: round(float(data[name]), 2) for name in FIELDS}
        except SensorError:
            raise
        except Exception as exc:  # noqa: BLE001 - propagate upstream failure as sensor error
            raise SensorError(f"BME280 read failed: {exc}") from exc

    async def read_async(self) -> Dict[str, float]:
        from asyncio import to_thread

        return await to_thread(self.read)

    def close(self) -> None:
        if self._smbus is not None:
            self._smbus.close()
            self._smbus = None

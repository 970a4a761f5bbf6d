"""MAX44009 ambient light sensor wrapper."""

import logging
from typing import Callable, Optional

from . import SensorError

logger = logging.getLogger(__name__)

CONFIG_REGISTER = 0x02
LUX_HIGH_REGISTER = 0x03
LUX_LOW_REGISTER = 0x04


def lux_from_registers(high: int, low: int) -> float:
    exponent = (high & 0xF0) >> 4
    mantissa = ((high & 0x0F) << 4) | (low & 0x0F)
    return (2 ** exponent) * mantissa * 0.045


class MAX44009Sensor:
    def __init__(
        self,
        bus: int = 1,
        address: int = 0x4A,
        reader: Optional[Callable[[], float]] = None,
    ):
        self.bus = bus
        self.address = address
        self._hardware = reader is None
        self.reader = reader or self._smbus_read
        self._smbus = None

    def configure(self) -> None:
        """Reset the configuration register to default continuous auto-range mode."""
        if not self._hardware:
            return

        try:
            import smbus2

            self._smbus = smbus2.SMBus(self.bus)
            self._smbus.write_byte_data(self.address, CONFIG_REGISTER, 0x00)
        except Exception as exc:  # noqa: BLE001 - driver errors surface as sensor errors
            raise SensorError(f"MAX44009 reset failed on bus {self.bus}: {exc}") from exc
        logger.info("MAX44009 reset on bus %s at 0x%02x", self.bus, self.address)

    def _smbus_read(self) -> float:
        if self._smbus is None:
            raise SensorError("MAX44009 is not configured")
        high = self._smbus.read_byte_data(self.address, LUX_HIGH_REGISTER)
        low = self._smbus.read_byte_data(self.address, LUX_LOW_REGISTER)
        return lux_from_registers(high, low)

    def read(self) -> float:
        try:
            value = float(self.reader())
        except SensorError:
            raise
        except Exception as exc:  # noqa: BLE001 - propagate upstream failure as sensor error
            raise SensorError(f"MAX44009 read failed: {exc}") from exc
        return round(max(0.0, value), 3)

    async def read_async(self) -> float:
        from asyncio import to_thread

        return await to_thread(self.read)

    def close(self) -> None:
        if self._smbus is not None:
            self._smbus.close()
            self._smbus = None

"""One-wire temperature probes read through the Linux w1 sysfs tree."""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from . import SensorError

logger = logging.getLogger(__name__)

W1_DEVICES_DIR = "/sys/bus/w1/devices"


def parse_w1_slave(text: str) -> Optional[float]:
    """Return degrees Celsius from a ``w1_slave`` dump, or None if the CRC check failed."""
    lines = text.strip().splitlines()
    if len(lines) < 2 or not lines[0].strip().endswith("YES"):
        return None
    pos = lines[1].find("t=")
    if pos == -1:
        return None
    return float(lines[1][pos + 2:]) / 1000.0


class OneWireBus:
    """All temperature probes currently attached to the one-wire master."""

    def __init__(
        self,
        devices_dir: str = W1_DEVICES_DIR,
        reader: Optional[Callable[[], Dict[str, float]]] = None,
    ):
        self.devices_dir = Path(devices_dir)
        self.reader = reader or self._sysfs_read

    def _sysfs_read(self) -> Dict[str, float]:
        temperatures: Dict[str, float] = {}
        for slave in sorted(self.devices_dir.glob("*/w1_slave")):
            device = slave.parent.name
            value = parse_w1_slave(slave.read_text())
            if value is None:
                logger.warning("CRC check failed for probe %s, skipping", device)
                continue
            temperatures[device] = value
        return temperatures

    def read(self) -> Dict[str, float]:
        try:
            data = self.reader()
            return {device: round(float(value), 3) for device, value in data.items()}
        except SensorError:
            raise
        except Exception as exc:  # noqa: BLE001 - propagate upstream failure as sensor error
            raise SensorError(f"One-wire read failed: {exc}") from exc

    async def read_async(self) -> Dict[str, float]:
        from asyncio import to_thread

        return await to_thread(self.read)

"""CPU temperature from the kernel thermal zone."""

import logging
import os
from typing import Optional

from .errors import SensorUnavailable
from .utils import parse_leading_int

logger = logging.getLogger(__name__)

DEFAULT_THERMAL_PATH = "/sys/class/thermal/thermal_zone0/temp"

# Enough for any millidegree reading up to 99999.
READ_SIZE = 6


class ThermalSampler:
    """Read CPU temperature (millidegrees Celsius) from a sysfs thermal zone."""

    def __init__(self, thermal_path: str = DEFAULT_THERMAL_PATH):
        self.thermal_path = thermal_path
        self.fd: Optional[int] = None

    def open(self) -> None:
        """
        Open the thermal zone file and keep it open for repeated reads.

        Raises:
            SensorUnavailable: If the file cannot be opened.
        """
        try:
            self.fd = os.open(self.thermal_path, os.O_RDONLY)
        except OSError as e:
            raise SensorUnavailable(
                f"Unable to open thermal zone '{self.thermal_path}': {e.strerror}"
            ) from e
        logger.debug(f"Opened thermal zone '{self.thermal_path}'")

    def close(self) -> None:
        if self.fd is not None:
            os.close(self.fd)
            self.fd = None

    def __enter__(self) -> "ThermalSampler":
        if self.fd is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def read_temperature(self) -> int:
        """
        Read the current temperature.

        sysfs attributes only refresh their content when read from offset 0,
        so every call seeks back to the start before reading.

        Returns:
            Temperature in millidegrees Celsius.

        Raises:
            SensorUnavailable: If the sensor is not open or the read fails.
        """
        if self.fd is None:
            raise SensorUnavailable(f"Thermal zone '{self.thermal_path}' is not open")
        try:
            os.lseek(self.fd, 0, os.SEEK_SET)
            raw = os.read(self.fd, READ_SIZE)
        except OSError as e:
            raise SensorUnavailable(f"Error reading from thermal zone device: {e}") from e
        return parse_leading_int(raw)

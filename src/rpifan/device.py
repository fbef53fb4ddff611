"""Access to the rpifan character device."""

import errno
import fcntl
import logging
import os
import struct
from typing import Optional

from .errors import ControlFailure, DeviceUnavailable, IoFailure
from .fan_config import PWM_PERIOD, FanConfig, decode, encode
from .utils import parse_leading_int

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_PATH = "/dev/rpifan"

# Size of the decimal text record exchanged with the driver.
RECORD_SIZE = 4

# ioctl request encoding (asm-generic/ioctl.h)
_IOC_NRBITS = 8
_IOC_TYPEBITS = 8
_IOC_SIZEBITS = 14
_IOC_NRSHIFT = 0
_IOC_TYPESHIFT = _IOC_NRSHIFT + _IOC_NRBITS
_IOC_SIZESHIFT = _IOC_TYPESHIFT + _IOC_TYPEBITS
_IOC_DIRSHIFT = _IOC_SIZESHIFT + _IOC_SIZEBITS
_IOC_WRITE = 1
_IOC_READ = 2

# The driver declares its requests with a pointer argument type.
_ARG_SIZE = struct.calcsize("P")
_DUTY_FORMAT = "Q"


def _IOC(direction: int, type_: str, nr: str, size: int) -> int:
    return (
        (direction << _IOC_DIRSHIFT)
        | (ord(type_) << _IOC_TYPESHIFT)
        | (ord(nr) << _IOC_NRSHIFT)
        | (size << _IOC_SIZESHIFT)
    )


def _IOW(type_: str, nr: str, size: int = _ARG_SIZE) -> int:
    """Create ioctl write command number"""
    return _IOC(_IOC_WRITE, type_, nr, size)


def _IOR(type_: str, nr: str, size: int = _ARG_SIZE) -> int:
    """Create ioctl read command number"""
    return _IOC(_IOC_READ, type_, nr, size)


WR_PWM_VALUE = _IOW("r", "a")
R_PWM_VALUE = _IOR("r", "b")


class DeviceChannel:
    """Open handle on the fan driver device node."""

    def __init__(self, device_path: str = DEFAULT_DEVICE_PATH):
        self.device_path = device_path
        self.fd: Optional[int] = None

    @classmethod
    def open(cls, device_path: str = DEFAULT_DEVICE_PATH) -> "DeviceChannel":
        """
        Open the device for reading and writing.

        Raises:
            DeviceUnavailable: If the node is missing, inaccessible or the
                driver behind it is not loaded.
        """
        channel = cls(device_path)
        try:
            channel.fd = os.open(device_path, os.O_RDWR)
        except OSError as e:
            if e.errno in (errno.ENOENT, errno.ENXIO, errno.ENODEV):
                reason = "is the driver loaded?"
            elif e.errno in (errno.EACCES, errno.EPERM):
                reason = "permission denied, try running as root"
            else:
                reason = e.strerror
            raise DeviceUnavailable(
                f"Unable to open '{device_path}' device ({reason})"
            ) from e
        logger.debug(f"Opened '{device_path}' successfully")
        return channel

    def close(self) -> None:
        if self.fd is not None:
            os.close(self.fd)
            self.fd = None

    def __enter__(self) -> "DeviceChannel":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_fd(self) -> int:
        if self.fd is None:
            raise IoFailure(f"Device '{self.device_path}' is not open")
        return self.fd

    def read_current_config(self) -> int:
        """
        Read the configuration byte currently applied by the driver.

        Returns:
            The configuration byte (0-255). A non-numeric record yields 0.

        Raises:
            IoFailure: If the read fails.
        """
        fd = self._require_fd()
        try:
            raw = os.read(fd, RECORD_SIZE)
        except OSError as e:
            raise IoFailure(f"Error reading from device: {e}") from e

        value = parse_leading_int(raw) & 0xFF
        logger.debug(f"Read record {raw!r} -> config byte {value}")
        return value

    def read_config(self) -> FanConfig:
        return decode(self.read_current_config())

    def write_config(self, config: FanConfig) -> None:
        """
        Write a new configuration as a NUL-padded decimal text record.

        Raises:
            IoFailure: If the write fails.
        """
        fd = self._require_fd()
        record = str(encode(config)).encode("ascii")[: RECORD_SIZE - 1]
        record = record.ljust(RECORD_SIZE, b"\x00")
        try:
            os.write(fd, record)
        except OSError as e:
            raise IoFailure(f"Unable to write new data to the driver: {e}") from e
        logger.debug(f"Wrote config {config}")

    def set_duty_cycle(self, duty: int) -> None:
        """
        Apply a duty cycle through the write ioctl.

        Raises:
            ValueError: If duty is outside [0, PWM_PERIOD].
            ControlFailure: If the ioctl call fails.
        """
        if not 0 <= duty <= PWM_PERIOD:
            raise ValueError(f"Duty cycle must be 0-{PWM_PERIOD}, got {duty}")

        fd = self._require_fd()
        buf = struct.pack(_DUTY_FORMAT, duty)
        try:
            fcntl.ioctl(fd, WR_PWM_VALUE, buf)
        except OSError as e:
            raise ControlFailure(
                f"Unable to write value to the driver via IOCTL call: {e}"
            ) from e

    def get_duty_cycle(self) -> int:
        """
        Read the duty cycle currently applied by the driver.

        Raises:
            ControlFailure: If the ioctl call fails.
        """
        fd = self._require_fd()
        buf = struct.pack(_DUTY_FORMAT, 0)
        try:
            result = fcntl.ioctl(fd, R_PWM_VALUE, buf)
        except OSError as e:
            raise ControlFailure(
                f"Unable to read value from the driver via IOCTL call: {e}"
            ) from e
        return struct.unpack(_DUTY_FORMAT, result)[0]

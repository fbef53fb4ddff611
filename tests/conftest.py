"""Shared fixtures for rpifan tests."""

import struct

import pytest

from rpifan import device
from rpifan.errors import ControlFailure, IoFailure
from rpifan.fan_config import FanConfig, decode, encode
from rpifan.settings import Settings


class FakeIoctl:
    """Stand-in for fcntl.ioctl that emulates the driver's duty-cycle register."""

    def __init__(self):
        self.duty = 0
        self.calls = []
        self.fail = False

    def __call__(self, fd, request, arg):
        self.calls.append(request)
        if self.fail:
            raise OSError(25, "Inappropriate ioctl for device")
        if request == device.WR_PWM_VALUE:
            self.duty = struct.unpack("Q", arg)[0]
            return arg
        if request == device.R_PWM_VALUE:
            return struct.pack("Q", self.duty)
        raise OSError(22, "Invalid argument")


class FakeChannel:
    """In-memory DeviceChannel used by dispatcher and governor tests."""

    def __init__(self, config_byte: int = 0, device_path: str = "/dev/fake"):
        self.device_path = device_path
        self.config_byte = config_byte
        self.duties = []
        self.writes = []
        self.fail_write = False
        self.fail_control = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    def read_current_config(self) -> int:
        return self.config_byte

    def read_config(self) -> FanConfig:
        return decode(self.config_byte)

    def write_config(self, config: FanConfig) -> None:
        if self.fail_write:
            raise IoFailure("Unable to write new data to the driver: EIO")
        self.writes.append(config)
        self.config_byte = encode(config)

    def set_duty_cycle(self, duty: int) -> None:
        if self.fail_control:
            raise ControlFailure("Unable to write value to the driver via IOCTL call")
        self.duties.append(duty)

    def get_duty_cycle(self) -> int:
        if self.fail_control:
            raise ControlFailure("Unable to read value from the driver via IOCTL call")
        return self.duties[-1] if self.duties else 0


@pytest.fixture
def fake_ioctl(monkeypatch):
    fake = FakeIoctl()
    monkeypatch.setattr(device.fcntl, "ioctl", fake)
    return fake


@pytest.fixture
def device_file(tmp_path):
    """Regular file standing in for /dev/rpifan, holding config byte 18."""
    path = tmp_path / "rpifan"
    path.write_bytes(b"18\x00\x00")
    return path


@pytest.fixture
def thermal_file(tmp_path):
    path = tmp_path / "temp"
    path.write_text("45000\n")
    return path


@pytest.fixture
def settings(tmp_path, device_file, thermal_file):
    return Settings(
        device_path=str(device_file),
        thermal_path=str(thermal_file),
        pid_file=str(tmp_path / "run" / "adaptive.pid"),
    )


@pytest.fixture
def fake_channel(monkeypatch):
    """Route DeviceChannel.open in the dispatcher to one shared FakeChannel."""
    from rpifan import cli

    channel = FakeChannel(config_byte=18)
    opened = []

    class _Factory:
        @staticmethod
        def open(device_path):
            opened.append(device_path)
            channel.device_path = device_path
            return channel

    monkeypatch.setattr(cli, "DeviceChannel", _Factory)
    channel.opened_paths = opened
    return channel

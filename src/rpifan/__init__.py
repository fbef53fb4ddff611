"""Userspace control for the rpifan PWM fan driver."""

from .device import DeviceChannel
from .errors import (
    ControlFailure,
    DeviceUnavailable,
    IoFailure,
    RpiFanError,
    SensorUnavailable,
    ValidationError,
)
from .fan_config import PWM_PERIOD, FanConfig, decode, encode, with_gpio, with_pwm_mode
from .governor import AdaptiveGovernor, compute_duty
from .thermal import ThermalSampler

__version__ = "0.1.0"

__all__ = [
    "AdaptiveGovernor",
    "ControlFailure",
    "DeviceChannel",
    "DeviceUnavailable",
    "FanConfig",
    "IoFailure",
    "PWM_PERIOD",
    "RpiFanError",
    "SensorUnavailable",
    "ThermalSampler",
    "ValidationError",
    "compute_duty",
    "decode",
    "encode",
    "with_gpio",
    "with_pwm_mode",
]

"""Exceptions raised by the fan utility."""


class RpiFanError(Exception):
    """Base class for all fan utility errors."""

    pass


class ConfigError(RpiFanError):
    """Configuration file missing or malformed."""

    pass


class ValidationError(RpiFanError):
    """User-supplied value out of range or not applicable."""

    pass


class DeviceUnavailable(RpiFanError):
    """Device node missing or driver not loaded."""

    pass


class IoFailure(RpiFanError):
    """Reading or writing the device record failed."""

    pass


class ControlFailure(RpiFanError):
    """Duty-cycle ioctl failed."""

    pass


class SensorUnavailable(RpiFanError):
    """Thermal zone could not be opened or read."""

    pass


class GovernorAlreadyRunning(ValidationError):
    """An adaptive governor already holds the instance lock."""

    def __init__(self, pid):
        super().__init__(f"Adaptive PWM process is already running (PID {pid})")
        self.pid = pid


class GovernorNotRunning(RpiFanError):
    """No adaptive governor is registered."""

    pass

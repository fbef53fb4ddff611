"""Fan configuration byte and duty-cycle values."""

from dataclasses import dataclass, replace

from .errors import ValidationError

# PWM timer period in driver ticks. A duty cycle is a value in [0, PWM_PERIOD].
PWM_PERIOD = 50_000_000

# Only these pins are wired to PWM hardware.
PWM_GPIOS = frozenset({12, 13, 18, 19})

GPIO_BITS = 5
PWM_MODE_BITS = 3
GPIO_MASK = (1 << GPIO_BITS) - 1
PWM_MODE_MASK = (1 << PWM_MODE_BITS) - 1

MIN_GPIO = 2
MAX_GPIO = 30
MIN_PWM_MODE = 0
MAX_PWM_MODE = PWM_MODE_MASK


@dataclass(frozen=True)
class FanConfig:
    """
    Single-byte fan configuration.

    Bit layout (LSB first): 5 bits GPIO pin number, 3 bits PWM mode.
    """

    gpio_num: int
    pwm_mode: int

    @property
    def is_pwm_capable(self) -> bool:
        """Whether the configured pin supports hardware PWM."""
        return self.gpio_num in PWM_GPIOS

    @property
    def has_valid_gpio(self) -> bool:
        return MIN_GPIO <= self.gpio_num <= MAX_GPIO

    def __str__(self) -> str:
        return f"gpio={self.gpio_num} pwm_mode={self.pwm_mode} (byte {encode(self)})"


def decode(value: int) -> FanConfig:
    """Split a configuration byte into its fields. Accepts any byte."""
    value &= 0xFF
    return FanConfig(
        gpio_num=value & GPIO_MASK,
        pwm_mode=(value >> GPIO_BITS) & PWM_MODE_MASK,
    )


def encode(config: FanConfig) -> int:
    """Pack a FanConfig back into one byte."""
    return ((config.pwm_mode & PWM_MODE_MASK) << GPIO_BITS) | (
        config.gpio_num & GPIO_MASK
    )


def validate_gpio(gpio_num: int) -> int:
    if not MIN_GPIO <= gpio_num <= MAX_GPIO:
        raise ValidationError(
            f"GPIO value must be between {MIN_GPIO} and {MAX_GPIO}, got {gpio_num}"
        )
    return gpio_num


def validate_pwm_mode(pwm_mode: int) -> int:
    if not MIN_PWM_MODE <= pwm_mode <= MAX_PWM_MODE:
        raise ValidationError(
            f"PWM value must be between {MIN_PWM_MODE} and {MAX_PWM_MODE}, got {pwm_mode}"
        )
    return pwm_mode


def with_gpio(old: FanConfig, gpio_num: int) -> FanConfig:
    """Change the pin, keep the PWM mode."""
    return replace(old, gpio_num=validate_gpio(gpio_num))


def with_pwm_mode(old: FanConfig, pwm_mode: int) -> FanConfig:
    """Change the PWM mode, keep the pin."""
    return replace(old, pwm_mode=validate_pwm_mode(pwm_mode))


def from_raw_byte(value: int) -> FanConfig:
    """
    Build a FanConfig from a literal configuration byte given by the user.

    Raises:
        ValidationError: If the value is not a non-zero byte or the pin
            it encodes is reserved.
    """
    if not 0 < value <= 0xFF:
        raise ValidationError(
            f"Configuration byte must be between 1 and 255, got {value}"
        )
    config = decode(value)
    if not config.has_valid_gpio:
        raise ValidationError(
            f"Configuration byte {value} selects reserved GPIO {config.gpio_num}"
        )
    return config


def percent_to_duty(percent: int) -> int:
    """Convert a 0-100 percentage to a duty-cycle value."""
    if not 0 <= percent <= 100:
        raise ValidationError(
            f"Custom PWM duty cycle must be between 0 and 100, got {percent}"
        )
    return percent * PWM_PERIOD // 100


def duty_to_percent(duty: int) -> float:
    return duty * 100 / PWM_PERIOD

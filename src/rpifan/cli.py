"""Command-line interface for the Raspberry Pi fan driver."""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .device import DeviceChannel
from .errors import (
    ControlFailure,
    GovernorAlreadyRunning,
    IoFailure,
    RpiFanError,
    ValidationError,
)
from .fan_config import (
    FanConfig,
    duty_to_percent,
    from_raw_byte,
    percent_to_duty,
    validate_gpio,
    validate_pwm_mode,
    with_gpio,
    with_pwm_mode,
)
from .governor import spawn_governor
from .instance import InstanceLock
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)

# Marks "-a" given without a value.
DEFAULT_INTERVAL = "default"


def interval_ms(value: str):
    """argparse type for -a: milliseconds, or the marker for a bare -a."""
    if value == DEFAULT_INTERVAL:
        return value
    return int(value)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpifan",
        description="Configure the rpifan driver: GPIO pin, PWM mode and duty cycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example usage:
  # Move the fan to GPIO 18 keeping the current PWM mode
  sudo rpifan -g 18

  # Run the fan at 60%
  sudo rpifan -c 60

  # Start the adaptive governor, polling every 2 seconds
  sudo rpifan -a 2000

  # Stop it again
  sudo rpifan -k

The positional value is a raw configuration byte: the low 5 bits select the
GPIO pin (2-30), the high 3 bits the PWM mode (0-7).
        """,
    )
    parser.add_argument(
        "value",
        nargs="?",
        type=int,
        help="Raw configuration byte to write (used when no -g/-p/-a is given)",
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug messages"
    )
    parser.add_argument(
        "--config",
        help="Path to configuration YAML file (default: $RPIFAN_CONFIG or built-in defaults)",
    )
    parser.add_argument(
        "-a",
        "--adaptive",
        type=interval_ms,
        nargs="?",
        const=DEFAULT_INTERVAL,
        metavar="MS",
        help="Start the adaptive PWM process, checking the temperature every MS milliseconds (default: default_interval_ms from the config)",
    )
    parser.add_argument(
        "-p",
        "--pwm",
        type=int,
        metavar="MODE",
        help="Only change the PWM mode (0-7)",
    )
    parser.add_argument(
        "-g",
        "--gpio",
        type=int,
        metavar="GPIO",
        help="Only change the GPIO pin (2-30). Non-PWM pins turn PWM off",
    )
    parser.add_argument(
        "-c",
        "--duty-cycle",
        type=int,
        metavar="PCT",
        help="Set a custom PWM duty cycle in percent (0-100)",
    )
    parser.add_argument(
        "-k",
        "--kill",
        action="store_true",
        help="Stop the running adaptive PWM process",
    )
    parser.add_argument(
        "-s",
        "--status",
        action="store_true",
        help="Show the current configuration and duty cycle",
    )
    return parser


def validate_args(args: argparse.Namespace) -> None:
    """
    Check every user-supplied value before the device is touched.

    Raises:
        ValidationError: On the first out-of-range or conflicting value.
    """
    if args.gpio is not None:
        validate_gpio(args.gpio)
    if args.pwm is not None:
        validate_pwm_mode(args.pwm)
    if args.duty_cycle is not None:
        percent_to_duty(args.duty_cycle)
    if args.adaptive is not None and args.adaptive <= 0:
        raise ValidationError("Adaptive interval must be a positive number of milliseconds")

    delta_given = args.gpio is not None or args.pwm is not None
    if args.value is not None:
        if delta_given:
            raise ValidationError("A raw value cannot be combined with -g or -p")
        if args.adaptive is not None:
            raise ValidationError("A raw value cannot be combined with -a")
        from_raw_byte(args.value)


def show_status(channel: DeviceChannel, config: FanConfig, settings: Settings) -> None:
    print(f"Device: {channel.device_path}")
    print(f"Config: {config}")
    if config.is_pwm_capable:
        print(f"✓ GPIO {config.gpio_num} supports PWM")
    else:
        print(f"✗ GPIO {config.gpio_num} is not a PWM pin (on/off only)")

    try:
        duty = channel.get_duty_cycle()
        print(f"Duty cycle: {duty} ({duty_to_percent(duty):.1f}%)")
    except ControlFailure as e:
        logger.warning(str(e))

    pid = InstanceLock(settings.pid_file).running_pid()
    if pid:
        print(f"Adaptive PWM process running with PID: {pid}")
    else:
        print("Adaptive PWM process not running")


def dispatch(
    args: argparse.Namespace, settings: Settings, config_path: Optional[str] = None
) -> int:
    """
    Perform the single action selected by the arguments.

    Returns:
        Exit status.

    Raises:
        RpiFanError: For validation, device and read failures.
    """
    if args.kill:
        pid = InstanceLock(settings.pid_file).stop()
        print(f"✓ Adaptive PWM process {pid} stopped")
        return 0

    if args.adaptive == DEFAULT_INTERVAL:
        args.adaptive = settings.default_interval_ms
    validate_args(args)

    with DeviceChannel.open(settings.device_path) as channel:
        old_config = channel.read_config()
        logger.debug(f"Current config: {old_config}")

        if args.status:
            show_status(channel, old_config, settings)
            return 0

        if args.duty_cycle is not None:
            duty = percent_to_duty(args.duty_cycle)
            if not old_config.is_pwm_capable:
                logger.warning(
                    f"GPIO {old_config.gpio_num} is not a PWM pin, duty cycle has no effect"
                )
            try:
                channel.set_duty_cycle(duty)
                logger.debug(f"Duty cycle set to {duty}")
            except ControlFailure as e:
                logger.warning(str(e))
            return 0

        new_config: Optional[FanConfig] = None
        if args.gpio is not None:
            new_config = with_gpio(old_config, args.gpio)
        if args.pwm is not None:
            new_config = with_pwm_mode(new_config or old_config, args.pwm)
        if new_config is None and args.adaptive is None:
            if args.value is None:
                raise ValidationError(
                    "Value parameter must be provided. Use -h for more information."
                )
            new_config = from_raw_byte(args.value)

        current = new_config or old_config
        if args.adaptive is not None:
            if not current.is_pwm_capable:
                raise ValidationError(
                    f"Current GPIO pin {current.gpio_num} is not a PWM pin. Unable to use adaptive PWM."
                )
            running = InstanceLock(settings.pid_file).running_pid()
            if running:
                raise GovernorAlreadyRunning(running)

        if new_config is not None:
            logger.debug(f"Current value: {old_config}, writing value: {new_config}")
            try:
                channel.write_config(new_config)
            except IoFailure as e:
                logger.warning(str(e))

        if args.adaptive is not None:
            pid = spawn_governor(args.adaptive, config_path, settings.debug)
            print(f"Adaptive PWM process started with PID: {pid}")

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except RpiFanError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    if args.debug:
        settings.debug = True
    configure_logging(settings.debug)
    logger.debug("Debug mode is on.")

    try:
        status = dispatch(args, settings, args.config)
    except RpiFanError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(status)


if __name__ == "__main__":
    main()

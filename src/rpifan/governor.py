"""
Adaptive PWM governor.

Runs as a detached background process. Each poll maps the current CPU
temperature to a duty cycle relative to the highest temperature seen since
the governor started:

    duty = temp * PWM_PERIOD / max_temp_seen

Usage (normally launched by `rpifan -a MS`):
    python -m rpifan.governor --interval 5000 [--config config.yaml] [--debug]
"""

import argparse
import enum
import logging
import os
import signal
import subprocess
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv

from .device import DeviceChannel
from .errors import ControlFailure, RpiFanError
from .fan_config import PWM_PERIOD
from .instance import InstanceLock
from .settings import Settings, load_settings
from .thermal import ThermalSampler

logger = logging.getLogger(__name__)

# Kernel limit for the task name, excluding the terminating NUL.
TASK_COMM_LEN = 15


class Phase(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


def compute_duty(temp: int, max_temp: int) -> int:
    """
    Scale a reading against the running maximum to a duty cycle.

    The divisor is clamped to 1 so a zero or negative first reading cannot
    divide by zero. The result is clamped to [0, PWM_PERIOD].
    """
    duty = (temp * PWM_PERIOD) // max(max_temp, 1)
    return min(max(duty, 0), PWM_PERIOD)


class AdaptiveGovernor:
    """
    Control loop: read sensor -> update maximum -> set duty -> sleep.
    """

    def __init__(
        self,
        channel: DeviceChannel,
        sampler: ThermalSampler,
        interval_ms: int,
        stop_event: Optional[threading.Event] = None,
    ):
        if interval_ms <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval_ms}ms")

        self.channel = channel
        self.sampler = sampler
        self.poll_interval = interval_ms
        self.stop_event = stop_event or threading.Event()

        self.max_temp_seen = 0
        self.phase = Phase.STARTING
        self.iterations = 0

    def tick(self) -> int:
        """
        Single control iteration.

        Returns:
            The duty cycle that was computed (and applied, unless the ioctl
            failed).

        Raises:
            SensorUnavailable: If the temperature cannot be read.
        """
        temp = self.sampler.read_temperature()

        if temp > self.max_temp_seen:
            self.max_temp_seen = temp
            logger.debug(
                f"New maximum temperature found. Remembering: {temp / 1000:.1f}°C"
            )

        duty = compute_duty(temp, self.max_temp_seen)
        logger.debug(
            f"CPU temperature: {temp / 1000:.1f}°C. Writing new duty cycle: {duty}"
        )

        try:
            self.channel.set_duty_cycle(duty)
        except ControlFailure as e:
            logger.warning(str(e))

        self.iterations += 1
        return duty

    def run(self) -> None:
        """Loop until a stop is requested. Sensor errors propagate."""
        self.phase = Phase.RUNNING
        logger.info(f"Adaptive PWM running (interval: {self.poll_interval}ms)")
        try:
            while not self.stop_event.is_set():
                self.tick()
                self.stop_event.wait(self.poll_interval / 1000)
        finally:
            self.phase = Phase.TERMINATED
            logger.info(f"Adaptive PWM stopped after {self.iterations} iterations")

    def stop(self) -> None:
        self.stop_event.set()


def set_process_name(name: str) -> None:
    """Rename the current task as shown by ps/top."""
    try:
        with open("/proc/self/comm", "w") as f:
            f.write(name[:TASK_COMM_LEN])
    except OSError as e:
        logger.debug(f"Could not rename process to {name!r}: {e}")


def detach() -> None:
    """Leave the controlling terminal's session if still attached to it."""
    if os.getsid(0) == os.getpid():
        return
    try:
        os.setsid()
    except PermissionError:
        # Process group leaders cannot start a new session.
        logger.debug("Already a process group leader, staying in current session")


def governor_command(
    interval_ms: int, config_path: Optional[str] = None, debug: bool = False
) -> List[str]:
    """Command line used to launch the governor process."""
    cmd = [sys.executable, "-m", "rpifan.governor", "--interval", str(interval_ms)]
    if config_path:
        cmd += ["--config", config_path]
    if debug:
        cmd.append("--debug")
    return cmd


def spawn_governor(
    interval_ms: int, config_path: Optional[str] = None, debug: bool = False
) -> int:
    """
    Launch the governor in a new session and return its PID.

    The caller does not wait for the governor to reach its running phase.
    """
    process = subprocess.Popen(
        governor_command(interval_ms, config_path, debug),
        stdin=subprocess.DEVNULL,
        stdout=None if debug else subprocess.DEVNULL,
        stderr=None if debug else subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    return process.pid


def run_governor(settings: Settings, interval_ms: int) -> int:
    """
    Governor process body.

    Returns:
        Process exit status: 0 after a requested stop, 1 on failure.
    """
    stop_event = threading.Event()

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGHUP, signal.SIG_IGN)

    detach()
    set_process_name(settings.process_name)

    lock = InstanceLock(settings.pid_file)
    try:
        lock.acquire()
    except (RpiFanError, OSError) as e:
        logger.error(f"Unable to register adaptive PWM process: {e}")
        return 1

    try:
        with ThermalSampler(settings.thermal_path) as sampler, DeviceChannel.open(
            settings.device_path
        ) as channel:
            governor = AdaptiveGovernor(channel, sampler, interval_ms, stop_event)
            governor.run()
    except RpiFanError as e:
        logger.error(f"{e}, aborting...")
        return 1
    finally:
        lock.release()

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the detached governor process."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Adaptive PWM fan governor")
    parser.add_argument(
        "--interval", type=int, required=True, help="Poll interval in milliseconds"
    )
    parser.add_argument("--config", help="Path to configuration YAML file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except RpiFanError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    debug = args.debug or settings.debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if args.interval <= 0:
        logger.error("Interval must be a positive number of milliseconds")
        sys.exit(1)

    sys.exit(run_governor(settings, args.interval))


if __name__ == "__main__":
    main()

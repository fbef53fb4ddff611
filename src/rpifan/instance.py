"""Single-instance registry for the adaptive governor."""

import fcntl
import logging
import os
import signal
import time
from pathlib import Path
from typing import Optional

from .errors import GovernorAlreadyRunning, GovernorNotRunning
from .utils import parse_leading_int

logger = logging.getLogger(__name__)


class InstanceLock:
    """
    PID file guarded by an exclusive flock.

    The lock lives as long as the holder keeps the file open, so a crashed
    governor never leaves a stale registration behind.
    """

    def __init__(self, pid_file: str):
        self.pid_file = Path(pid_file)
        self.fd: Optional[int] = None

    def acquire(self) -> None:
        """
        Register the current process.

        Raises:
            GovernorAlreadyRunning: If another process holds the lock.
            OSError: If the pid file cannot be created.
        """
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        while True:
            fd = os.open(self.pid_file, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                pid = self._read_pid(fd)
                os.close(fd)
                raise GovernorAlreadyRunning(pid)
            if self._is_current_file(fd):
                break
            # Locked a file a releasing holder has already unlinked.
            os.close(fd)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self.fd = fd
        logger.debug(f"Registered PID {os.getpid()} in {self.pid_file}")

    def release(self) -> None:
        if self.fd is None:
            return
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass
        fcntl.flock(self.fd, fcntl.LOCK_UN)
        os.close(self.fd)
        self.fd = None

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def _is_current_file(self, fd: int) -> bool:
        try:
            return os.fstat(fd).st_ino == os.stat(self.pid_file).st_ino
        except FileNotFoundError:
            return False

    @staticmethod
    def _read_pid(fd: int) -> int:
        os.lseek(fd, 0, os.SEEK_SET)
        return parse_leading_int(os.read(fd, 32))

    def running_pid(self) -> Optional[int]:
        """Return the PID of the registered governor, or None if there is none."""
        try:
            fd = os.open(self.pid_file, os.O_RDONLY)
        except FileNotFoundError:
            return None
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
            except BlockingIOError:
                return self._read_pid(fd)
            # Nobody holds it: leftover file.
            fcntl.flock(fd, fcntl.LOCK_UN)
            return None
        finally:
            os.close(fd)

    def stop(self, timeout: float = 5.0, poll_interval: float = 0.1) -> int:
        """
        Terminate the registered governor.

        Sends SIGTERM and waits for the lock to be released, falling back to
        SIGKILL after the timeout.

        Returns:
            The PID that was stopped.

        Raises:
            GovernorNotRunning: If no governor is registered.
        """
        pid = self.running_pid()
        if not pid:
            raise GovernorNotRunning(f"No adaptive PWM process registered in {self.pid_file}")

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            raise GovernorNotRunning(f"Adaptive PWM process {pid} no longer exists")

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.running_pid() is None:
                return pid
            time.sleep(poll_interval)

        logger.warning(f"PID {pid} did not stop within {timeout}s, sending SIGKILL")
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        return pid

"""Named inter-process lock serializing up/down for one network identity."""

from __future__ import annotations

import fcntl
import os
import time

from wgnet.exceptions import LockTimeout
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)


class NamedLock:
    """
    Exclusive ``flock`` on a lock file, acquired with a timeout.

    The kernel drops the lock when the process exits, so a crashed
    invocation never leaves it held.

    Usage:
        with NamedLock("/run/lock/wgnet-wg0-net.lock", timeout=10):
            ...
    """

    def __init__(self, path: str, timeout: float = 10.0, poll_interval: float = 0.1):
        self.path = path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: int | None = None

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise LockTimeout(self.path, self.timeout)
                time.sleep(self.poll_interval)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.debug(f"Released lock {self.path}")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> NamedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

"""
Run Lock

PID lock file that keeps two batch runs from overlapping.
"""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

from grepp.exceptions import LockError

logger = logging.getLogger("grepp.lock")

DEFAULT_LOCK_TIMEOUT_MINUTES = 15


class RunLock:
    """
    Exclusive lock file holding the owner PID.

    A lock file younger than the timeout belongs to a running job; an older
    one is considered stale and replaced.

    Example:
        with RunLock("/var/lib/grepp/monitor.lock") as lock:
            if lock.acquired:
                run()
    """

    def __init__(
        self,
        path: Union[str, Path],
        timeout_minutes: float = DEFAULT_LOCK_TIMEOUT_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.timeout_seconds = timeout_minutes * 60
        self._clock = clock
        self.acquired = False

    def age(self) -> Optional[float]:
        """Seconds since the lock file was written, None when absent."""
        try:
            return self._clock() - self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise LockError(f"Cannot create lock file {self.path}: {e}") from e

        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def acquire(self) -> bool:
        """
        Take the lock.

        Returns:
            False when another run holds a fresh lock

        Raises:
            LockError: If the lock file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._create():
            self.acquired = True
            return True

        age = self.age()
        if age is not None and age < self.timeout_seconds:
            logger.info(f"Another instance is still running (lock age: {int(age)}s)")
            return False

        logger.warning(f"Stale lock file detected, removing {self.path}")
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"Cannot remove stale lock {self.path}: {e}") from e

        self.acquired = self._create()
        return self.acquired

    def release(self) -> None:
        """Remove the lock file if this instance holds it. Never raises."""
        if not self.acquired:
            return
        self.acquired = False
        try:
            self.path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove lock file {self.path}: {e}")

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

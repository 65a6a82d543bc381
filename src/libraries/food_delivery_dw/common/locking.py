"""
Advisory per-table locking for dimension transitions.
"""

import logging
import os
import re
import time
from typing import Optional

from .exceptions import ConcurrencyViolation

logger = logging.getLogger(__name__)

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logger.warning(
        "fcntl not available (non-POSIX). Table locking is disabled. "
        "Do not run concurrent dimension loads on this platform."
    )


def _lock_file_name(table_name: str) -> str:
    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", table_name)
    return f"{safe_name}.lock"


class TableLock:
    """
    Exclusive advisory lock scoped to one target table.

    Usage:
        with TableLock("/tmp/locks", "consumption_sch.customer_dim", timeout_seconds=30):
            ...  # one merge cycle
    """

    poll_interval_seconds = 0.1

    def __init__(self, lock_dir: str, table_name: str, timeout_seconds: float = 30.0):
        """
        Initialize TableLock.

        Args:
            lock_dir: Directory holding the lock files
            table_name: Fully qualified table name being protected
            timeout_seconds: How long to wait before giving up
        """
        self.lock_dir = lock_dir
        self.table_name = table_name
        self.timeout_seconds = timeout_seconds
        self.lock_path = os.path.join(lock_dir, _lock_file_name(table_name))
        self._handle: Optional[object] = None

    @property
    def is_held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """
        Acquire the lock, polling until the timeout expires.

        Raises:
            ConcurrencyViolation: If another process holds the lock past the timeout
        """
        os.makedirs(self.lock_dir, exist_ok=True)
        handle = open(self.lock_path, "a+", encoding="utf-8")

        if not _HAS_FCNTL:
            self._handle = handle
            return

        deadline = time.monotonic() + self.timeout_seconds
        while True:
            try:
                _fcntl.flock(handle, _fcntl.LOCK_EX | _fcntl.LOCK_NB)
                break
            except (BlockingIOError, PermissionError):
                if time.monotonic() >= deadline:
                    handle.close()
                    logger.error(f"Timed out waiting for lock on {self.table_name}")
                    raise ConcurrencyViolation(
                        f"Another run is transitioning {self.table_name}; "
                        f"lock not acquired within {self.timeout_seconds}s",
                        table_name=self.table_name
                    )
                time.sleep(self.poll_interval_seconds)

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle
        logger.debug(f"Acquired lock {self.lock_path}")

    def release(self) -> None:
        """Release the lock if held."""
        if self._handle is None:
            return
        try:
            if _HAS_FCNTL:
                _fcntl.flock(self._handle, _fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
            logger.debug(f"Released lock {self.lock_path}")

    def __enter__(self) -> "TableLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

"""Advisory file locking for state shared between processes on one host."""

import fcntl
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from helm_release_operator.errors import RemoteOperationError

logger = logging.getLogger(__name__)


@contextmanager
def file_lock(
    path: str | Path, timeout: float = 30.0, poll_interval: float = 1.0
) -> Iterator[None]:
    """
    Hold an exclusive flock on ``path`` for the duration of the block.

    Raises:
        RemoteOperationError: If the lock cannot be acquired within ``timeout``
    """
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise RemoteOperationError(
                        "helm",
                        f"timed out after {timeout}s waiting for lock {lock_path}",
                    ) from None
                time.sleep(poll_interval)
        logger.debug(f"Acquired lock {lock_path}")
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Released lock {lock_path}")
    finally:
        handle.close()

"""Advisory state lock.

The daemon and one-shot commands take this lock around anything that
installs, removes or rewrites state, so they never interleave.
"""

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from flatly.exceptions import LockError


logger = logging.getLogger("flatly.lock")

POLL_INTERVAL = 0.2


@contextmanager
def state_lock(lock_file: Path, timeout: float = 30.0) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``lock_file``.

    Args:
        lock_file: Lock file path; created if missing.
        timeout: Seconds to keep retrying before giving up. ``0`` tries once.

    Raises:
        LockError: If the lock is still held elsewhere after ``timeout``.
    """
    try:
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        handle = open(lock_file, "a+", encoding="utf-8")
    except OSError as e:
        raise LockError(f"Cannot open lock file {lock_file}: {e}") from e

    with handle:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockError(
                        f"Another flatly process is running (lockfile: {lock_file})"
                    ) from None
                time.sleep(POLL_INTERVAL)

        try:
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
        except OSError:
            logger.debug(f"Could not record pid in {lock_file}")

        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)

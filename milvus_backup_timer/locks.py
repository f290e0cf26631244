"""File lock that keeps a manual run from overlapping a scheduled one."""

from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import RunLockedError


@contextmanager
def run_lock(lock_path: Path) -> Iterator[Path]:
    """Hold a non-blocking exclusive flock on *lock_path* for the duration of the block.

    Raises RunLockedError if another process holds it. The lock file is left
    in place; only the flock matters.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = open(lock_path, "a+")
    try:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.seek(0)
            holder = fh.read().strip() or "unknown"
            raise RunLockedError(
                f"Another backup run is in progress (pid {holder}, lock {lock_path})"
            ) from None
        fh.seek(0)
        fh.truncate()
        fh.write(str(os.getpid()))
        fh.flush()
        try:
            yield lock_path
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    finally:
        fh.close()

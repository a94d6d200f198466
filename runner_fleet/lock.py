"""
Operation Lock Module

Host-level exclusive lock serializing reconcile and teardown operations.
"""

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import ConcurrentOperation


@contextmanager
def operation_lock(path: Optional[Path], project_dir: Path = Path('.')) -> Iterator[None]:
    """
    Hold an exclusive advisory lock for the duration of the block

    Only protects operators on the same host; a Docker daemon shared by
    several hosts is not covered.

    Args:
        path: Lock file path (relative paths resolve against project_dir);
            None disables locking
        project_dir: Base directory for relative lock paths

    Raises:
        ConcurrentOperation: If another process holds the lock
    """
    if path is None:
        yield
        return

    lock_path = path if path.is_absolute() else project_dir / path
    fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise ConcurrentOperation(
                f"Another fleet operation is in progress (lock held on {lock_path})"
            ) from None
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)

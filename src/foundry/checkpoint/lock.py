# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Optional

from ..core.errors import CheckpointLocked

log = logging.getLogger("foundry")

_platform = platform.system()

if _platform == "Windows":
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


class CheckpointLock:
    """
    Advisory, non-blocking exclusive lock next to the checkpoint file.

    The lock file itself is never removed: deleting it while another
    process waits on the same inode would let two owners in.
    """

    def __init__(self, checkpoint_path: Path):
        self.path = checkpoint_path.with_name(checkpoint_path.name + ".lock")
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o600)
        if not _try_lock(fd):
            os.close(fd)
            raise CheckpointLocked(
                f"Another installer is already using {self.path.with_suffix('')}",
                remediation="Wait for the other run to finish, or close it and re-run.",
            )
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        log.debug("checkpoint lock acquired: %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            # msvcrt unlocks the byte range at the current position
            os.lseek(self._fd, 0, os.SEEK_SET)
            _unlock(self._fd)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug("checkpoint lock released: %s", self.path)

    def __enter__(self) -> "CheckpointLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

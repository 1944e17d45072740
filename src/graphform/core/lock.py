"""Single-writer lock for a stack/stage in the local state store."""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from graphform.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


class StateLock:
    """Exclusive ``flock`` on ``<stage>.lock``, held for one plan or apply.

    The holder's pid is written into the file so a contending process can
    report who owns the lock. ``timeout=None`` waits forever.
    """

    def __init__(
        self, lock_path: Path, *, timeout: float | None = None, poll_interval: float = 0.1
    ) -> None:
        self._lock_path = Path(lock_path)
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._file: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def _open(self) -> IO[str]:
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            return self._lock_path.open("a+", encoding="utf-8")
        except OSError as e:
            raise StateLockError(f"Cannot open lock file {self._lock_path}: {e}") from e

    def _holder(self, handle: IO[str]) -> str:
        handle.seek(0)
        return handle.read().strip() or "unknown"

    def _wait(self, handle: IO[str]) -> None:
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if deadline is not None and time.monotonic() >= deadline:
                    raise StateLockError(
                        f"State is locked by pid {self._holder(handle)} ({self._lock_path})"
                    ) from None
                logger.debug("Waiting for state lock %s", self._lock_path)
                time.sleep(self._poll_interval)

    def __enter__(self) -> StateLock:
        handle = self._open()
        try:
            self._wait(handle)
            handle.seek(0)
            handle.truncate()
            handle.write(str(os.getpid()))
            handle.flush()
        except OSError as e:
            handle.close()
            raise StateLockError(f"Cannot lock {self._lock_path}: {e}") from e
        except StateLockError:
            handle.close()
            raise
        self._file = handle
        logger.debug("Acquired state lock %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        handle, self._file = self._file, None
        if handle is None:
            return
        try:
            handle.truncate(0)
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

"""File-based locks serialising provisioning runs.

Only one provisioning run per device is supported: two runs racing on the
read-write/read-only remount toggle would leave the root filesystem in an
unpredictable state. Locks are advisory ``flock`` locks held on files under
the runtime directory of the machine driving the run.
"""
from __future__ import annotations

import fcntl
import json
import os
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

_POLL_INTERVAL = 0.05
_UNSAFE = re.compile(r"[^A-Za-z0-9_.@-]+")


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired within the timeout."""


@dataclass(slots=True)
class LockHandle:
    """Metadata describing a held lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Acquire per-device locks below *runtime_dir*."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        self.runtime_dir = Path(runtime_dir).expanduser()
        self.default_timeout = default_timeout

    def lock_path(self, key: str) -> Path:
        """Return the lock file used for *key*."""
        safe = _UNSAFE.sub("_", key).strip("_") or "device"
        return self.runtime_dir / "locks" / f"{safe}.lock"

    @contextmanager
    def device_lock(self, key: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock for device *key* for the duration of the block."""
        path = self.lock_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        limit = self.default_timeout if timeout is None else timeout
        started = time.monotonic()
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}. "
                            "Another provisioning run may be active for this device."
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            self._write_metadata(fd, path, key)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @staticmethod
    def _write_metadata(fd: int, path: Path, key: str) -> None:
        payload = {
            "pid": os.getpid(),
            "path": str(path),
            "device": key,
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, json.dumps(payload).encode("utf-8"))


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]

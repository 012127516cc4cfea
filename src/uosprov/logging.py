"""Structured operation logging for uosprov.

Every CLI operation appends one JSON record to ``operations.jsonl`` in the
configured logs directory. A record carries the command, its arguments, the
deployment target, every step recorded along the way and the final result.
The same events are mirrored to the standard library logger named
``uosprov`` so a human-readable trail shows up in ``uosprov.log``.

Logging never aborts a provisioning run: when the directory cannot be
created or a write fails, the logger disables itself and carries on.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

_LOGGER_NAME = "uosprov"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the final result for a single operation."""

    command: str
    args: dict[str, object]
    target: dict[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=_now)
    steps: list[dict[str, object]] = field(default_factory=list)
    lock_wait_ms: int | None = None
    result: dict[str, object] | None = None
    _started: float = field(default_factory=time.monotonic)

    def add_step(
        self,
        name: str,
        *,
        status: str = "success",
        detail: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Record a step outcome."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        if duration_ms is not None:
            step["duration_ms"] = duration_ms
        self.steps.append(step)
        logging.getLogger(_LOGGER_NAME).debug(
            "%s: step %s -> %s%s",
            self.command,
            name,
            status,
            f" ({detail})" if detail else "",
        )

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the operation waited for its lock."""
        self.lock_wait_ms = wait_ms

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=None,
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
            rc=0,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=0,
            warnings=None,
            errors=list(errors) if errors else [message],
            context=context,
            rc=rc,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Sequence[str] | None,
        errors: Sequence[str] | None,
        context: Mapping[str, object] | None,
        rc: int,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "context": _sanitize(dict(context or {})),
            "rc": rc,
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this operation."""
        duration_ms = int((time.monotonic() - self._started) * 1000)
        return {
            "id": self.op_id,
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "started_at": self.started_at,
            "finished_at": _now(),
            "duration_ms": duration_ms,
            "lock_wait_ms": self.lock_wait_ms,
            "steps": _sanitize(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to ``operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        self._logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self._logs_dir / "operations.jsonl"
        self._human_log_path = self._logs_dir / "uosprov.log"
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
            return
        self._attach_file_handler()

    @property
    def operations_log_path(self) -> Path:
        """Path of the JSON lines operations log."""
        return self._operations_log_path

    def _attach_file_handler(self) -> None:
        logger = logging.getLogger(_LOGGER_NAME)
        # One human log per process; the most recently configured directory wins.
        for existing in list(logger.handlers):
            if getattr(existing, "_uosprov_owned", False):
                logger.removeHandler(existing)
                existing.close()
        handler = logging.FileHandler(self._human_log_path, encoding="utf-8", delay=True)
        handler._uosprov_owned = True  # type: ignore[attr-defined]
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if os.environ.get("UOSPROV_DEBUG") else logging.INFO)

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        logger = logging.getLogger(_LOGGER_NAME)
        logger.info("%s: started (%s)", command, scope.op_id)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                message = str(exc) or type(exc).__name__
                scope.error(message, errors=[message])
            raise
        finally:
            if scope.result is None:
                scope.success("Operation complete.")
            assert scope.result is not None
            logger.info(
                "%s: %s - %s",
                command,
                scope.result["status"],
                scope.result["message"],
            )
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]

"""Helpers for the uosprov state registry.

The registry directory (``~/.local/state/uosprov/registry`` by default) stores
YAML artifacts such as ``clients.yml``. Writes go through a temporary file and
``os.replace`` so a crashed run never leaves a truncated file behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

CLIENTS_FILE = "clients.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)

    # Client helpers -------------------------------------------------------
    def read_clients(self) -> list[dict[str, Any]]:
        """Return the entries of ``clients.yml`` (empty list if missing)."""
        value = self.read(CLIENTS_FILE, default={"clients": []})
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"{CLIENTS_FILE} must contain a mapping.")
        entries = value.get("clients") or []
        if not isinstance(entries, list):
            raise StateRegistryError(f"{CLIENTS_FILE} 'clients' must be a list.")
        return [dict(entry) for entry in entries if isinstance(entry, Mapping)]

    def write_clients(self, entries: Iterable[Mapping[str, object]]) -> None:
        """Persist client entries to ``clients.yml``."""
        self.write(CLIENTS_FILE, {"clients": [dict(entry) for entry in entries]})


__all__ = ["CLIENTS_FILE", "StateRegistry", "StateRegistryError"]

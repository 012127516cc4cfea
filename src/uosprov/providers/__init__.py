"""Providers that act on the device through an execution channel."""
from __future__ import annotations

from .common import ABSENT_MARKERS, classify
from .files import FileProvider
from .mount import MountProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "ABSENT_MARKERS",
    "FileProvider",
    "MountProvider",
    "SystemdError",
    "SystemdProvider",
    "classify",
]

"""Device aliases, architecture triples and deployment targets."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

ARCH_ALIASES: dict[str, str] = {
    "ucu": "aarch64-unknown-linux-gnu",
    "ucm": "armv7-unknown-linux-gnueabihf",
    "ucg": "armv7-unknown-linux-gnueabihf",
    "x86_64": "x86_64-unknown-linux-gnu",
}

# arch-vendor-os[-env], e.g. aarch64-unknown-linux-gnu
_TRIPLE = re.compile(r"^[a-z0-9_]+-[a-z0-9_]+-[a-z0-9_]+(-[a-z0-9_.]+)?$")
_LOGIN = re.compile(r"^(?:[A-Za-z0-9_.-]+@)?[A-Za-z0-9_.:\[\]-]+$")


class TargetResolutionError(ValueError):
    """Raised when a device alias or triple cannot be resolved."""


def resolve_target_triple(value: str) -> str:
    """Map a device alias to its architecture triple.

    Literal triples pass through unchanged; anything else is rejected.
    """
    candidate = value.strip()
    if not candidate:
        raise TargetResolutionError("Missing target.")
    if candidate in ARCH_ALIASES:
        return ARCH_ALIASES[candidate]
    if _TRIPLE.match(candidate):
        return candidate
    known = ", ".join(sorted(ARCH_ALIASES))
    raise TargetResolutionError(
        f"Unknown target '{candidate}'. Use one of {known} or an architecture triple."
    )


def artifact_path(artifacts_root: Path, triple: str, service: str) -> Path:
    """Location of a built example executable in the cargo output tree."""
    return artifacts_root / triple / "release" / "examples" / service


def usage_text() -> str:
    """Help text listing the supported target aliases."""
    lines = ["Target examples:", "  'ucu', 'ucg', 'ucm' and 'x86_64' map to architecture triples", ""]
    lines.append("  Or the triples directly:")
    lines.append(f"    {ARCH_ALIASES['ucu']:<32}- arm64 (ucu)")
    lines.append(f"    {ARCH_ALIASES['ucm']:<32}- arm32 (ucm, ucg)")
    lines.append(f"    {ARCH_ALIASES['x86_64']:<32}- x86_64")
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class DeploymentTarget:
    """Either the local machine (``login is None``) or a remote device."""

    login: str | None = None

    def __post_init__(self) -> None:
        """Validate the remote login string."""
        if self.login is not None and not _LOGIN.match(self.login):
            raise TargetResolutionError(f"Invalid remote login '{self.login}'.")

    @property
    def is_remote(self) -> bool:
        """Whether commands travel over the remote channel."""
        return self.login is not None

    @property
    def user(self) -> str | None:
        """Remote user name, when one is part of the login."""
        if self.login and "@" in self.login:
            return self.login.split("@", 1)[0]
        return None

    @property
    def key(self) -> str:
        """Identifier used for locks and the credential ledger."""
        if self.login is None:
            return "local"
        return self.login.split("@", 1)[-1]

    def describe(self) -> str:
        """Human readable description."""
        return self.login if self.login else "local machine"


__all__ = [
    "ARCH_ALIASES",
    "DeploymentTarget",
    "TargetResolutionError",
    "artifact_path",
    "resolve_target_triple",
    "usage_text",
]

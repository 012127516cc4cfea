"""Configuration loader for uosprov.

Values are merged from multiple sources, lowest precedence first:

1. Built-in defaults.
2. ``/etc/uosprov/config.yml`` (or an override path).
3. Environment variables prefixed with ``UOSPROV_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export UOSPROV_PATHS__EXECUTABLE_DIR=/opt
    export UOSPROV_MOUNT__MANAGE=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load uosprov configuration. Install with "
        "`pip install uos-provision` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "UOSPROV_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, f"{ENV_PREFIX}SUDO_PASSWORD"}

CREDENTIAL_MODES = {"admin-api", "clients-dir"}
SERVICE_TOKEN = re.compile(r"^[A-Za-z0-9_.@-]+$")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Device-side locations touched by the provisioning workflow."""

    executable_dir: Path = Path("/usr/bin")
    unit_dir: Path = Path("/usr/lib/systemd/system")
    staging_dir: Path = Path("/tmp")
    credstore_dir: Path = Path("/etc/credstore.encrypted")
    hydra_admin_socket: Path = Path("/run/hydra/admin.sock")
    hydra_clients_dir: Path = Path("/usr/share/uc-iam/clients")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "executable_dir": str(self.executable_dir),
            "unit_dir": str(self.unit_dir),
            "staging_dir": str(self.staging_dir),
            "credstore_dir": str(self.credstore_dir),
            "hydra_admin_socket": str(self.hydra_admin_socket),
            "hydra_clients_dir": str(self.hydra_clients_dir),
        }


@dataclass(frozen=True)
class BinariesConfig:
    """Executables invoked on the device (or locally for ssh/scp)."""

    systemctl: str = "systemctl"
    systemd_creds: str = "systemd-creds"
    mount: str = "mount"
    growfs: str = "/usr/lib/systemd/systemd-growfs"
    curl: str = "curl"
    ssh: str = "ssh"
    scp: str = "scp"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl": self.systemctl,
            "systemd_creds": self.systemd_creds,
            "mount": self.mount,
            "growfs": self.growfs,
            "curl": self.curl,
            "ssh": self.ssh,
            "scp": self.scp,
        }


@dataclass(frozen=True)
class MountConfig:
    """Root filesystem mount handling."""

    manage: bool = True
    grow: bool = True
    root: str = "/"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"manage": self.manage, "grow": self.grow, "root": self.root}


@dataclass(frozen=True)
class CredentialsConfig:
    """Identity-provider and credential-store settings."""

    mode: str = "admin-api"
    admin_url: str = "http://hydra/admin/clients"
    client_creator_unit: str = "hydra-client-creator"
    timeout: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "mode": self.mode,
            "admin_url": self.admin_url,
            "client_creator_unit": self.client_creator_unit,
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class ChannelConfig:
    """Options passed to the remote execution channel."""

    ssh_options: tuple[str, ...] = ()
    timeout: float | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"ssh_options": list(self.ssh_options), "timeout": self.timeout}


@dataclass(frozen=True)
class ServiceEntry:
    """A managed service as declared in configuration."""

    name: str
    scope: str
    client_name: str | None = None
    executable: Path | None = None
    unit: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "scope": self.scope,
            "client_name": self.client_name,
            "executable": str(self.executable) if self.executable else None,
            "unit": str(self.unit) if self.unit else None,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for uosprov."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path | None
    lock_timeout: float
    paths: PathsConfig
    binaries: BinariesConfig
    mount: MountConfig
    credentials: CredentialsConfig
    channel: ChannelConfig
    services: tuple[ServiceEntry, ...]
    legacy_patterns: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "lock_timeout": self.lock_timeout,
            "paths": self.paths.to_dict(),
            "binaries": self.binaries.to_dict(),
            "mount": self.mount.to_dict(),
            "credentials": self.credentials.to_dict(),
            "channel": self.channel.to_dict(),
            "services": [service.to_dict() for service in self.services],
            "legacy_patterns": list(self.legacy_patterns),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/uosprov/config.yml",
    "state_dir": "~/.local/state/uosprov",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": None,
    "runtime_dir": None,
    "templates_dir": None,
    "lock_timeout": 30.0,
    "paths": PathsConfig().to_dict(),
    "binaries": BinariesConfig().to_dict(),
    "mount": MountConfig().to_dict(),
    "credentials": CredentialsConfig().to_dict(),
    "channel": {"ssh_options": [], "timeout": None},
    "services": [
        {"name": "u-os-hub-example-provider", "scope": "hub.variables.provide"},
        {"name": "u-os-hub-example-consumer", "scope": "hub.variables.readwrite"},
    ],
    "legacy_patterns": ["u_os_hub_example_*"],
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "paths": set(PathsConfig().to_dict()),
    "binaries": set(BinariesConfig().to_dict()),
    "mount": set(MountConfig().to_dict()),
    "credentials": set(CredentialsConfig().to_dict()),
    "channel": {"ssh_options", "timeout"},
}
_SERVICE_KEYS = {"name", "scope", "client_name", "executable", "unit"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for section, allowed in _SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    credentials = _as_dict(raw.get("credentials"), "credentials")
    mode = credentials.get("mode")
    if mode is not None and str(mode) not in CREDENTIAL_MODES:
        allowed_modes = ", ".join(sorted(CREDENTIAL_MODES))
        raise ConfigError(
            f"Unsupported credentials mode '{mode}'. Allowed: {allowed_modes}."
        )

    services = raw.get("services")
    if services is not None:
        seen: set[str] = set()
        for index, entry in enumerate(_as_sequence(services, "services")):
            mapping = _as_dict(entry, f"services[{index}]")
            unknown = set(mapping.keys()) - _SERVICE_KEYS
            if unknown:
                joined = ", ".join(sorted(unknown))
                raise ConfigError(f"Unknown keys for services[{index}]: {joined}.")
            for required in ("name", "scope"):
                value = mapping.get(required)
                if not isinstance(value, str) or not value.strip():
                    raise ConfigError(
                        f"services[{index}].{required} must be a non-empty string."
                    )
            name = str(mapping["name"]).strip()
            if not SERVICE_TOKEN.match(name):
                raise ConfigError(f"services[{index}].name '{name}' is not a valid token.")
            if name in seen:
                raise ConfigError(f"Duplicate service name '{name}' in services.")
            seen.add(name)

    legacy = raw.get("legacy_patterns")
    if legacy is not None:
        for index, pattern in enumerate(_as_sequence(legacy, "legacy_patterns")):
            if not isinstance(pattern, str) or not pattern.strip() or "/" in pattern:
                raise ConfigError(
                    f"legacy_patterns[{index}] must be a non-empty file name pattern."
                )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"
    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value else state_dir / "logs"
    runtime_dir_value = raw.get("runtime_dir")
    runtime_dir = _to_path(runtime_dir_value) if runtime_dir_value else state_dir / "run"
    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    paths_map = _as_dict(raw.get("paths"), "paths")
    default_paths = PathsConfig()
    paths = PathsConfig(
        **{
            key: _to_path(paths_map.get(key, getattr(default_paths, key)))
            for key in _SECTION_KEYS["paths"]
        }
    )

    binaries_map = _as_dict(raw.get("binaries"), "binaries")
    default_binaries = BinariesConfig()
    binaries = BinariesConfig(
        **{
            key: str(binaries_map.get(key, getattr(default_binaries, key)))
            for key in _SECTION_KEYS["binaries"]
        }
    )

    mount_map = _as_dict(raw.get("mount"), "mount")
    mount = MountConfig(
        manage=_expect_bool(mount_map.get("manage"), "mount.manage", default=True),
        grow=_expect_bool(mount_map.get("grow"), "mount.grow", default=True),
        root=str(mount_map.get("root", "/")),
    )

    credentials_map = _as_dict(raw.get("credentials"), "credentials")
    credentials = CredentialsConfig(
        mode=str(credentials_map.get("mode", "admin-api")),
        admin_url=str(credentials_map.get("admin_url", "http://hydra/admin/clients")),
        client_creator_unit=str(
            credentials_map.get("client_creator_unit", "hydra-client-creator")
        ),
        timeout=_expect_positive_float(
            credentials_map.get("timeout"), "credentials.timeout", default=10.0
        ),
    )

    channel_map = _as_dict(raw.get("channel"), "channel")
    ssh_options_raw = channel_map.get("ssh_options")
    ssh_options = (
        tuple(str(option) for option in _as_sequence(ssh_options_raw, "channel.ssh_options"))
        if ssh_options_raw is not None
        else ()
    )
    channel_timeout_raw = channel_map.get("timeout")
    channel = ChannelConfig(
        ssh_options=ssh_options,
        timeout=(
            _expect_positive_float(channel_timeout_raw, "channel.timeout", default=1.0)
            if channel_timeout_raw is not None
            else None
        ),
    )

    services: list[ServiceEntry] = []
    for index, entry in enumerate(_as_sequence(raw.get("services") or [], "services")):
        mapping = _as_dict(entry, f"services[{index}]")
        client_name = mapping.get("client_name")
        executable = mapping.get("executable")
        unit = mapping.get("unit")
        services.append(
            ServiceEntry(
                name=str(mapping["name"]).strip(),
                scope=str(mapping["scope"]).strip(),
                client_name=str(client_name).strip() if client_name else None,
                executable=_to_path(executable) if executable else None,
                unit=_to_path(unit) if unit else None,
            )
        )

    legacy_patterns = tuple(
        str(pattern).strip()
        for pattern in _as_sequence(raw.get("legacy_patterns") or [], "legacy_patterns")
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        paths=paths,
        binaries=binaries,
        mount=mount,
        credentials=credentials,
        channel=channel,
        services=tuple(services),
        legacy_patterns=legacy_patterns,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = [
                _deep_copy(_as_dict(item, f"copy.{key}")) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BinariesConfig",
    "ChannelConfig",
    "ConfigError",
    "CredentialsConfig",
    "MountConfig",
    "PathsConfig",
    "ServiceEntry",
    "load_config",
]

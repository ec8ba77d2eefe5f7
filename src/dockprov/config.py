"""Configuration loader for dockprov.

Values are layered in this order, later sources winning:

1. Built-in defaults.
2. ``/etc/dockprov/config.yml`` (or an override path).
3. Environment variables prefixed with ``DOCKPROV_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DOCKPROV_CHANNEL=test
    export DOCKPROV_REPOSITORY__BASE_URL=https://mirror.example.com/linux

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The loaded :class:`AppConfig` is combined with command-line
flags into a :class:`RunConfig`, an immutable value built once per invocation
and handed to the engine.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, cast

import yaml

from .errors import ProvisionError
from .exit_codes import ExitCode

ENV_PREFIX = "DOCKPROV_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

SUPPORTED_CHANNELS = ("stable", "test")

Action = Literal["install", "uninstall"]


class ConfigError(ProvisionError):
    """Raised when configuration parsing or validation fails."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class RepositoryConfig:
    """Upstream package repository settings."""

    base_url: str = "https://download.docker.com/linux"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_url": self.base_url}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for dockprov."""

    config_file: Path
    logs_dir: Path
    os_release: Path
    channel: str
    install_compose: bool
    compose_version: str
    download_timeout: float
    repository: RepositoryConfig
    prerequisite_tools: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "os_release": str(self.os_release),
            "channel": self.channel,
            "install_compose": self.install_compose,
            "compose_version": self.compose_version,
            "download_timeout": self.download_timeout,
            "repository": self.repository.to_dict(),
            "prerequisite_tools": list(self.prerequisite_tools),
        }


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Immutable per-invocation settings threaded through every stage."""

    action: Action
    channel: str = "stable"
    with_compose: bool = True
    target_user: str | None = None
    skip_group_add: bool = False
    verify_run: bool | None = None
    dry_run: bool = False
    verbose: bool = False
    assume_yes: bool = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        action: Action,
        channel: str | None = None,
        with_compose: bool | None = None,
        target_user: str | None = None,
        skip_group_add: bool = False,
        verify_run: bool | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        assume_yes: bool = False,
    ) -> RunConfig:
        """Combine *config* with command-line flags; flags win when given."""
        resolved_channel = validate_channel(channel if channel is not None else config.channel)
        return cls(
            action=action,
            channel=resolved_channel,
            with_compose=config.install_compose if with_compose is None else with_compose,
            target_user=target_user or None,
            skip_group_add=skip_group_add,
            verify_run=verify_run,
            dry_run=dry_run,
            verbose=verbose,
            assume_yes=assume_yes,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "action": self.action,
            "channel": self.channel,
            "with_compose": self.with_compose,
            "target_user": self.target_user,
            "skip_group_add": self.skip_group_add,
            "verify_run": self.verify_run,
            "dry_run": self.dry_run,
            "verbose": self.verbose,
            "assume_yes": self.assume_yes,
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/dockprov/config.yml",
    "logs_dir": "/var/log/dockprov",
    "os_release": "/etc/os-release",
    "channel": "stable",
    "install_compose": True,
    "compose_version": "v2.27.0",
    "download_timeout": 30.0,
    "repository": {
        "base_url": "https://download.docker.com/linux",
    },
    "prerequisite_tools": ["gpg", "lsb_release"],
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def validate_channel(value: object) -> str:
    """Return *value* when it names a supported repository channel."""
    channel = str(value).strip().lower()
    if channel not in SUPPORTED_CHANNELS:
        allowed = ", ".join(SUPPORTED_CHANNELS)
        raise ConfigError(f"Invalid channel '{value}'. Supported: {allowed}.")
    return channel


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = str(merged["config_file"])
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
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    repository = raw.get("repository")
    if repository is not None:
        repository_map = _as_dict(repository, "repository")
        unknown = set(repository_map.keys()) - {"base_url"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown repository configuration keys: {joined}.")
        base_url = repository_map.get("base_url")
        if base_url is not None and not str(base_url).startswith("https://"):
            raise ConfigError("repository.base_url must be an https:// URL.")

    validate_channel(raw.get("channel", "stable"))


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    repository_mapping = _as_dict(raw.get("repository"), "repository")
    base_url = str(repository_mapping.get("base_url", "https://download.docker.com/linux"))

    tools_raw = raw.get("prerequisite_tools")
    if tools_raw is None:
        tools: tuple[str, ...] = ()
    else:
        tools = tuple(str(item) for item in _as_sequence(tools_raw, "prerequisite_tools"))

    compose_version = str(raw.get("compose_version", "v2.27.0")).strip()
    if not compose_version:
        raise ConfigError("compose_version must be a non-empty string.")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        os_release=_to_path(raw.get("os_release")),
        channel=validate_channel(raw.get("channel", "stable")),
        install_compose=_expect_bool(raw.get("install_compose"), "install_compose", default=True),
        compose_version=compose_version,
        download_timeout=_expect_positive_float(
            raw.get("download_timeout"), "download_timeout", default=30.0
        ),
        repository=RepositoryConfig(base_url=base_url.rstrip("/")),
        prerequisite_tools=tools,
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
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


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


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


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
    "ConfigError",
    "RepositoryConfig",
    "RunConfig",
    "SUPPORTED_CHANNELS",
    "load_config",
    "validate_channel",
]

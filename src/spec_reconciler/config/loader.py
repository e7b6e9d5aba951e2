"""
spec-reconciler — runtime config loader.

File: src/spec_reconciler/config/loader.py
Last updated: 2026-10-17

Purpose
- Load the effective runtime config from defaults, ``reconciler.toml``, ``SPECREC_``
  environment variables and CLI overrides.

What should be included in this file
- Precedence: CLI > env > file > defaults, then the selected profile underneath
  env and CLI.
- TOML loading via ``tomllib``.
- Environment mapping ``SPECREC_<SECTION>__<FIELD>`` with type coercion.
- Path normalization relative to the config file's directory.

Functional requirements
- Invalid files, values or overrides raise ``ConfigLoadError`` or
  ``ConfigValidationError``; nothing is silently dropped.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, Literal

from spec_reconciler.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "reconciler.toml"
ENV_PREFIX: Final[str] = "SPECREC_"
ENV_SEPARATOR: Final[str] = "__"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

_ValueKind = Literal["str", "int", "float", "bool", "list"]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence."""

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)
    cli_map = dict(cli_overrides or {})

    file_payload = _load_toml_file(resolved_path, required=config_path is not None)
    merged = assert_valid_config(merge_config(default_config(), file_payload))

    selected = _resolve_profile(profile, cli_map, env_map)
    if selected is not None:
        merged = apply_profile_overlay(merged, selected)

    merged = merge_config(merged, _collect_env_overrides(merged, env_map))
    merged = merge_config(merged, _materialize_cli_overrides(cli_map))
    merged = assert_valid_config(merged)
    return normalize_paths(merged, base_dir=resolved_path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``."""

    materialized = merge_config({}, config)
    for section, key in (*PATH_FIELDS, ("observability", "log_dir")):
        values = materialized.get(section)
        if isinstance(values, dict) and isinstance(values.get(key), str):
            values[key] = _normalize_one_path(values[key], base_dir)
    return materialized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON dump of the redacted effective config."""

    return json.dumps(
        redact_config(config), sort_keys=True, indent=2, ensure_ascii=False
    ) + "\n"


def env_name_for(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + ENV_SEPARATOR.join(part.upper() for part in path)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _resolve_profile(
    profile: str | None, cli_overrides: Mapping[str, object], environ: Mapping[str, str]
) -> str | None:
    candidate: object = profile
    if candidate is None:
        candidate = cli_overrides.get("profile")
    if candidate is None:
        candidate = environ.get(f"{ENV_PREFIX}PROFILE")
    if candidate is None:
        return None
    if not isinstance(candidate, str):
        raise ConfigLoadError("profile must be a string")
    return candidate.strip() or None


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section in sorted(config):
        values = config[section]
        if section in {"meta", "profiles"} or not isinstance(values, Mapping):
            continue
        for key in sorted(values):
            path = (section, key)
            raw = environ.get(env_name_for(path))
            if raw is None:
                continue
            kind = _kind_for_value(values[key])
            overrides.setdefault(section, {})[key] = _coerce_env(raw, kind, path)
    return overrides


def _kind_for_value(value: object) -> _ValueKind:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, list):
        return "list"
    return "str"


def _coerce_env(raw: str, kind: _ValueKind, path: tuple[str, ...]) -> object:
    name = f"{env_name_for(path)} -> {'.'.join(path)}"
    value = raw.strip()
    if kind == "str":
        return value
    if kind == "list":
        return [item.strip() for item in value.split(",") if item.strip()]
    if kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be an integer") from exc
    if kind == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be a number") from exc
    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    """Turn ``{"orchestration.worker_count": 2}`` style keys into nested mappings."""

    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        if key == "profile":
            continue
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        cursor = payload
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
            if not isinstance(cursor, dict):
                raise ConfigLoadError(f"CLI override {key!r} collides with a scalar override")
        cursor[path[-1]] = value
    return payload


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "dump_effective_config",
    "env_name_for",
    "load_config",
    "normalize_paths",
]

"""
spec-reconciler — configuration schema and validation.

File: src/spec_reconciler/config/schema.py
Last updated: 2026-10-17

Purpose
- Define built-in defaults and strict validation rules for ``reconciler.toml``.

What should be included in this file
- Schema versioning and migration guidance.
- Per-section field rules (type, bounds, enum values).
- Profile overlays (``strict``/``permissive``) and deterministic deep-merge helpers.
- Redaction of sensitive keys for logged config dumps.

Functional requirements
- Validation returns structured issues (dotted field path + message).
- Embedded secrets are rejected; only ``*_env`` indirection is allowed.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from spec_reconciler.constants import (
    CACHE_DIR,
    CHECKER_VERSION,
    CONFIG_SCHEMA_VERSION,
    EXCLUSION_FILE,
    LOG_DIR,
    STATE_DB_PATH,
)
from spec_reconciler.domain.models import SEMANTIC_CHECK_CATEGORIES

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "apikey", "credential", "credentials", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = ("api_key", "access_token", "private_key")

_SEVERITIES: Final[tuple[str, ...]] = ("error", "warning", "info")
_CONFIDENCES: Final[tuple[str, ...]] = ("low", "medium", "high")
_CATEGORIES: Final[tuple[str, ...]] = tuple(kind.value for kind in SEMANTIC_CHECK_CATEGORIES)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "corpus_root"),
    ("paths", "code_root"),
    ("paths", "exclusion_file"),
    ("paths", "state_db"),
    ("paths", "cache_dir"),
    ("paths", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    corpus_root: str
    code_root: str
    exclusion_file: str
    state_db: str
    cache_dir: str
    log_dir: str


class OrchestrationConfig(TypedDict):
    worker_count: int
    max_retries: int
    max_review_rounds: int
    max_spec_rounds: int
    trust_level: Literal["auto", "acknowledge"]


class OracleConfig(TypedDict):
    max_retries: int
    initial_delay_seconds: float
    max_delay_seconds: float
    multiplier: float
    timeout_seconds: float


class TraceabilityConfig(TypedDict):
    narrowing_threshold: int
    primary_confidence: Literal["low", "medium", "high"]


class ConsistencyConfig(TypedDict):
    categories: list[str]
    checker_version: str


class VerificationConfig(TypedDict):
    proportionality_k: float
    proportionality_threshold: float
    flag_severity: Literal["error", "warning", "info"]
    residue_severity: Literal["error", "warning", "info"]
    blocking_severity: Literal["error", "warning", "info"]
    test_timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    redact_secrets: bool


class ReconcilerConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    orchestration: OrchestrationConfig
    oracle: OracleConfig
    traceability: TraceabilityConfig
    consistency: ConsistencyConfig
    verification: VerificationConfig
    observability: ObservabilityConfig
    profiles: dict[str, dict[str, object]]


DEFAULT_CONFIG: Final[ReconcilerConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "paths": {
        "corpus_root": "specs/",
        "code_root": "src/",
        "exclusion_file": EXCLUSION_FILE.as_posix(),
        "state_db": STATE_DB_PATH.as_posix(),
        "cache_dir": CACHE_DIR.as_posix(),
        "log_dir": LOG_DIR.as_posix(),
    },
    "orchestration": {
        "worker_count": 4,
        "max_retries": 2,
        "max_review_rounds": 2,
        "max_spec_rounds": 3,
        "trust_level": "auto",
    },
    "oracle": {
        "max_retries": 2,
        "initial_delay_seconds": 0.25,
        "max_delay_seconds": 4.0,
        "multiplier": 2.0,
        "timeout_seconds": 120.0,
    },
    "traceability": {
        "narrowing_threshold": 200,
        "primary_confidence": "high",
    },
    "consistency": {
        "categories": list(_CATEGORIES),
        "checker_version": CHECKER_VERSION,
    },
    "verification": {
        "proportionality_k": 10.0,
        "proportionality_threshold": 50.0,
        "flag_severity": "warning",
        "residue_severity": "warning",
        "blocking_severity": "error",
        "test_timeout_seconds": 300.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": LOG_DIR.as_posix(),
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "orchestration": {"trust_level": "acknowledge", "max_retries": 1},
            "verification": {"flag_severity": "error", "proportionality_threshold": 25.0},
        },
        "permissive": {
            "orchestration": {"max_retries": 4},
            "verification": {"proportionality_threshold": 100.0},
        },
    },
}


@dataclass(frozen=True, slots=True)
class _FieldRule:
    kind: Literal["int", "float", "bool", "str", "path", "enum", "enum_list"]
    minimum: float | None = None
    choices: tuple[str, ...] = ()


_SECTION_RULES: Final[dict[str, dict[str, _FieldRule]]] = {
    "meta": {"schema_version": _FieldRule("int", minimum=1)},
    "paths": {key: _FieldRule("path") for _, key in PATH_FIELDS},
    "orchestration": {
        "worker_count": _FieldRule("int", minimum=1),
        "max_retries": _FieldRule("int", minimum=0),
        "max_review_rounds": _FieldRule("int", minimum=1),
        "max_spec_rounds": _FieldRule("int", minimum=1),
        "trust_level": _FieldRule("enum", choices=("auto", "acknowledge")),
    },
    "oracle": {
        "max_retries": _FieldRule("int", minimum=0),
        "initial_delay_seconds": _FieldRule("float", minimum=0.0),
        "max_delay_seconds": _FieldRule("float", minimum=0.0),
        "multiplier": _FieldRule("float", minimum=1.0),
        "timeout_seconds": _FieldRule("float", minimum=0.001),
    },
    "traceability": {
        "narrowing_threshold": _FieldRule("int", minimum=1),
        "primary_confidence": _FieldRule("enum", choices=_CONFIDENCES),
    },
    "consistency": {
        "categories": _FieldRule("enum_list", choices=_CATEGORIES),
        "checker_version": _FieldRule("str"),
    },
    "verification": {
        "proportionality_k": _FieldRule("float", minimum=0.0),
        "proportionality_threshold": _FieldRule("float", minimum=0.0),
        "flag_severity": _FieldRule("enum", choices=_SEVERITIES),
        "residue_severity": _FieldRule("enum", choices=_SEVERITIES),
        "blocking_severity": _FieldRule("enum", choices=_SEVERITIES),
        "test_timeout_seconds": _FieldRule("float", minimum=0.001),
    },
    "observability": {
        "log_level": _FieldRule("enum", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": _FieldRule("path"),
        "redact_secrets": _FieldRule("bool"),
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> ReconcilerConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade reconciler.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the spec-reconciler runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``; lists are replaced."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named profile overlay over ``config`` and re-validate."""

    materialized = _deep_copy_mapping(config)
    selected = (profile or "").strip()
    if not selected:
        return materialized

    profiles = materialized.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a full config payload and collect every issue found."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_sections(config, "", issues, partial=False)
    profiles_raw = config.get("profiles")
    if profiles_raw is not None:
        normalized["profiles"] = _validate_profiles(profiles_raw, issues)
    _validate_cross_fields(normalized, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Redacted copy for logs and ``config`` command output."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_sections(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = set(_SECTION_RULES) if partial else {*_SECTION_RULES, "profiles"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, set(_SECTION_RULES), path, issues)

    out: dict[str, Any] = {}
    for section in sorted(_SECTION_RULES):
        if section not in payload:
            continue
        section_path = _join(path, section)
        raw = payload[section]
        if not isinstance(raw, Mapping):
            issues.add(section_path, f"expected object, got {type(raw).__name__}")
            continue
        out[section] = _validate_section(
            raw, _SECTION_RULES[section], section_path, issues, partial=partial
        )
    schema_version = out.get("meta", {}).get("schema_version")
    if isinstance(schema_version, int) and schema_version != ConfigSchemaVersion:
        issues.add(_join(path, "meta.schema_version"), migration_guidance(schema_version))
    return out


def _validate_section(
    payload: Mapping[str, object],
    rules: Mapping[str, _FieldRule],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(rules), path, issues)
    if not partial:
        _require_keys(payload, set(rules), path, issues)
    out: dict[str, Any] = {}
    for key in sorted(rules):
        if key not in payload:
            continue
        parsed = _coerce_field(payload[key], rules[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_profiles(raw: object, issues: _IssueCollector) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        issues.add("profiles", f"expected object, got {type(raw).__name__}")
        return {}
    out: dict[str, Any] = {}
    for name in sorted(raw):
        profile_path = _join("profiles", str(name))
        if not isinstance(name, str) or not _PROFILE_NAME_PATTERN.fullmatch(name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = raw[name]
        if not isinstance(overlay, Mapping):
            issues.add(profile_path, "profile overlay must be an object")
            continue
        if "meta" in overlay:
            issues.add(_join(profile_path, "meta"), "profiles may not override meta")
            continue
        out[name] = _validate_sections(overlay, profile_path, issues, partial=True)
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    oracle = config.get("oracle")
    if not isinstance(oracle, Mapping):
        return
    initial = oracle.get("initial_delay_seconds")
    ceiling = oracle.get("max_delay_seconds")
    if isinstance(initial, float) and isinstance(ceiling, float) and initial > ceiling:
        issues.add("oracle.initial_delay_seconds", "must be <= oracle.max_delay_seconds")


def _coerce_field(value: object, rule: _FieldRule, path: str, issues: _IssueCollector) -> Any:
    if rule.kind == "bool":
        if isinstance(value, bool):
            return value
        issues.add(path, f"expected boolean, got {type(value).__name__}")
        return None
    if rule.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
            return None
        return _check_minimum(value, rule, path, issues)
    if rule.kind == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.add(path, f"expected number, got {type(value).__name__}")
            return None
        number = float(value)
        if not math.isfinite(number):
            issues.add(path, "must be finite")
            return None
        return _check_minimum(number, rule, path, issues)
    if rule.kind == "enum_list":
        if not isinstance(value, (list, tuple)):
            issues.add(path, f"expected list, got {type(value).__name__}")
            return None
        items = [
            _as_enum(item, f"{path}[{i}]", rule.choices, issues) for i, item in enumerate(value)
        ]
        return None if any(item is None for item in items) else items

    text = _as_str(value, path, issues)
    if text is None:
        return None
    if rule.kind == "enum":
        return _as_enum(text, path, rule.choices, issues)
    if rule.kind == "path" and "\x00" in text:
        issues.add(path, "must not contain NUL bytes")
        return None
    return text


def _check_minimum(
    value: int | float, rule: _FieldRule, path: str, issues: _IssueCollector
) -> int | float | None:
    if rule.minimum is not None and value < rule.minimum:
        issues.add(path, f"must be >= {rule.minimum:g}")
        return None
    return value


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_enum(
    value: object, path: str, choices: tuple[str, ...], issues: _IssueCollector
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in choices:
        issues.add(path, f"invalid value {parsed!r}; expected one of: {', '.join(sorted(choices))}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(str(item) for item in payload):
        if key in allowed:
            continue
        if _looks_sensitive_key(key):
            issues.add(
                _join(path, key),
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object], required: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _NON_ALNUM.sub("_", key.strip().lower()).strip("_")
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return any(token in _SENSITIVE_KEY_TOKENS for token in normalized.split("_") if token)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _is_redacted_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _is_redacted_key(key: str) -> bool:
    return key.endswith("_env") or _looks_sensitive_key(key)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ReconcilerConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]

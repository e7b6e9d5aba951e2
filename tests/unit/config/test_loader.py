"""
spec-reconciler — unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-17

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults, profile below env and CLI.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from spec_reconciler.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for,
    load_config,
)
from spec_reconciler.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(config_path, "[orchestration]\nworker_count = 6\n")
    env = {"SPECREC_ORCHESTRATION__WORKER_COUNT": "8"}

    assert load_config(default_path, environ={})["orchestration"]["worker_count"] == 4
    assert load_config(config_path, environ={})["orchestration"]["worker_count"] == 6
    assert load_config(config_path, environ=env)["orchestration"]["worker_count"] == 8
    cli_loaded = load_config(
        config_path, environ=env, cli_overrides={"orchestration.worker_count": 9}
    )
    assert cli_loaded["orchestration"]["worker_count"] == 9


def test_env_name_mapping() -> None:
    assert env_name_for(("orchestration", "worker_count")) == (
        "SPECREC_ORCHESTRATION__WORKER_COUNT"
    )
    assert env_name_for(("paths", "corpus_root")) == "SPECREC_PATHS__CORPUS_ROOT"


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "SPECREC_OBSERVABILITY__REDACT_SECRETS": "off",
            "SPECREC_VERIFICATION__PROPORTIONALITY_K": "2.5",
            "SPECREC_CONSISTENCY__CATEGORIES": "gap, contradiction",
        },
    )

    assert loaded["observability"]["redact_secrets"] is False
    assert loaded["verification"]["proportionality_k"] == 2.5
    assert loaded["consistency"]["categories"] == ["gap", "contradiction"]


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("SPECREC_ORCHESTRATION__WORKER_COUNT", "many", "must be an integer"),
        ("SPECREC_ORACLE__TIMEOUT_SECONDS", "soon", "must be a number"),
        ("SPECREC_OBSERVABILITY__REDACT_SECRETS", "maybe", "must be a boolean"),
    ],
)
def test_bad_env_values_fail_loudly(tmp_path: Path, name: str, value: str, message: str) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ={name: value})


def test_out_of_range_override_fails_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="orchestration.worker_count: must be >= 1"):
        load_config(config_path, environ={}, cli_overrides={"orchestration.worker_count": 0})


def test_profile_sits_below_env_and_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    strict = load_config(config_path, profile="strict", environ={})
    from_env = load_config(config_path, environ={"SPECREC_PROFILE": "strict"})
    overridden = load_config(
        config_path,
        profile="strict",
        environ={"SPECREC_ORCHESTRATION__MAX_RETRIES": "3"},
    )

    assert strict["orchestration"]["trust_level"] == "acknowledge"
    assert strict["orchestration"]["max_retries"] == 1
    assert from_env["verification"]["proportionality_threshold"] == 25.0
    assert overridden["orchestration"]["max_retries"] == 3


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="profile 'nope' is not defined"):
        load_config(config_path, profile="nope", environ={})


def test_custom_profile_from_file(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(
        config_path,
        "[profiles.ci.orchestration]\nworker_count = 1\n",
    )

    loaded = load_config(config_path, profile="ci", environ={})

    assert loaded["orchestration"]["worker_count"] == 1


def test_paths_resolve_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "project" / "reconciler.toml"
    _write_config(config_path, '[paths]\ncorpus_root = "docs/spec"\ncode_root = "/abs/src"\n')

    loaded = load_config(config_path, environ={})

    base = config_path.parent.resolve().as_posix()
    assert loaded["paths"]["corpus_root"] == f"{base}/docs/spec"
    assert loaded["paths"]["code_root"] == "/abs/src"
    assert loaded["observability"]["log_dir"].startswith(base)


def test_missing_explicit_config_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "[orchestration\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_unknown_file_keys_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, '[oracle]\napi_key = "sk-123"\nshiny = 1\n')

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    paths = [issue.path for issue in excinfo.value.issues]
    assert paths == ["oracle.api_key", "oracle.shiny"]
    assert "embedded secret values are forbidden" in str(excinfo.value)


def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "reconciler.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert first.endswith("\n")
    assert json.loads(first)["orchestration"]["worker_count"] == 4

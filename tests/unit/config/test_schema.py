"""Unit tests for config schema validation, merging, profiles and redaction."""

from __future__ import annotations

import pytest

from spec_reconciler.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    ConfigSchemaVersion,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def test_defaults_are_valid() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert set(result.config["profiles"]) == set(BUILTIN_PROFILE_NAMES)


def test_default_config_is_a_copy() -> None:
    config = default_config()
    config["orchestration"]["worker_count"] = 99

    assert DEFAULT_CONFIG["orchestration"]["worker_count"] == 4


def test_non_mapping_root() -> None:
    result = validate_config(["not", "a", "mapping"])

    assert not result.is_valid
    assert result.issues[0].path == "<root>"


def test_every_issue_is_collected() -> None:
    config = merge_config(
        default_config(),
        {
            "orchestration": {"worker_count": "four", "trust_level": "blind"},
            "verification": {"flag_severity": "fatal"},
            "oracle": {"initial_delay_seconds": 9.0, "max_delay_seconds": 1.0},
        },
    )

    result = validate_config(config)

    assert [issue.path for issue in result.issues] == [
        "orchestration.trust_level",
        "orchestration.worker_count",
        "verification.flag_severity",
        "oracle.initial_delay_seconds",
    ]


def test_missing_section_is_reported() -> None:
    config = dict(default_config())
    del config["traceability"]

    result = validate_config(config)

    assert [(issue.path, issue.message) for issue in result.issues] == [
        ("traceability", "missing required field")
    ]


def test_bool_is_not_an_integer() -> None:
    config = merge_config(default_config(), {"orchestration": {"max_retries": True}})

    with pytest.raises(ConfigValidationError, match="expected integer, got bool"):
        assert_valid_config(config)


def test_unknown_category_is_rejected() -> None:
    config = merge_config(default_config(), {"consistency": {"categories": ["gap", "vibes"]}})

    with pytest.raises(ConfigValidationError, match=r"consistency.categories\[1\]"):
        assert_valid_config(config)


def test_schema_version_mismatch_gives_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError, match="upgrade the spec-reconciler runtime"):
        assert_valid_config(config)


def test_migration_guidance_directions() -> None:
    assert "older" in migration_guidance(0)
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_merge_replaces_lists_and_keeps_base() -> None:
    base = {"a": {"x": [1, 2], "y": 1}}

    merged = merge_config(base, {"a": {"x": [3]}})

    assert merged == {"a": {"x": [3], "y": 1}}
    assert base == {"a": {"x": [1, 2], "y": 1}}


def test_profile_overlay_applies_and_validates() -> None:
    strict = apply_profile_overlay(default_config(), "strict")
    unchanged = apply_profile_overlay(default_config(), "  ")

    assert strict["verification"]["flag_severity"] == "error"
    assert unchanged["verification"]["flag_severity"] == "warning"


def test_bad_profile_definitions() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"Bad Name": {}, "meta-override": {"meta": {"schema_version": 1}}}},
    )

    result = validate_config(config)

    assert {issue.path for issue in result.issues} == {
        "profiles.Bad Name",
        "profiles.meta-override.meta",
    }


def test_redaction_masks_sensitive_keys() -> None:
    redacted = redact_config(
        {"oracle": {"token_env": "SPECREC_TOKEN", "password": "hunter2", "max_retries": 2}}
    )

    assert redacted == {
        "oracle": {"max_retries": 2, "password": "<redacted>", "token_env": "<redacted>"}
    }
    assert redact_config("nope") == {}

"""Tests for the pre-flight pipeline validator.

Every test constructs real Pydantic models or loads real YAML.
No provider is ever called.
"""

from __future__ import annotations

import pytest

from ai_chain.errors import PipelineLoadError
from ai_chain.models import PipelineDefinition
from ai_chain.validator import (
    Diagnostic,
    Severity,
    ValidationResult,
    load_and_validate_pipeline,
    validate_definition,
)

KNOWN = ("claude", "gemini", "codex")


def definition(**data) -> PipelineDefinition:
    return PipelineDefinition.model_validate(data)


def step(provider="claude", action="a", **extra):
    return {"provider": provider, "action": action, **extra}


# ── ValidationResult ──────────────────────────────────────────────


def test_result_ok_with_only_warnings():
    r = ValidationResult(
        diagnostics=[Diagnostic(Severity.WARNING, 1, "odd", "transform")]
    )
    assert r.ok is True
    assert len(r.warnings) == 1
    assert r.errors == []


def test_result_not_ok_with_errors():
    r = ValidationResult(
        diagnostics=[
            Diagnostic(Severity.ERROR, 1, "bad", "provider"),
            Diagnostic(Severity.WARNING, 2, "odd", "transform"),
        ]
    )
    assert r.ok is False
    assert len(r.errors) == 1


# ── Checks ────────────────────────────────────────────────────────


def test_valid_chain():
    result = validate_definition(definition(chain="claude:a -> gemini:b"), KNOWN)
    assert result.ok
    assert result.diagnostics == []


def test_malformed_chain_is_pipeline_level_error():
    [d] = validate_definition(definition(chain="claude"), KNOWN).diagnostics
    assert d.severity is Severity.ERROR
    assert d.step_index == 0
    assert d.field == "chain"


def test_unknown_providers_all_reported():
    result = validate_definition(
        definition(steps=[step("mistral"), step("claude"), step("llama")]), KNOWN
    )
    assert [(d.step_index, d.field) for d in result.errors] == [
        (1, "provider"),
        (3, "provider"),
    ]
    assert "known: claude, codex, gemini" in result.errors[0].message


def test_no_known_providers():
    [d] = validate_definition(definition(chain="claude:a"), ()).errors
    assert "known: none" in d.message


def test_bad_jsonata_expression():
    result = validate_definition(
        definition(steps=[step(transform={"kind": "jsonata", "expression": "a.b["})]),
        KNOWN,
    )
    [d] = result.errors
    assert d.field == "transform"
    assert d.step_index == 1


def test_invalid_json_schema():
    result = validate_definition(
        definition(steps=[step(transform={"kind": "schema", "schema": {"type": "nope"}})]),
        KNOWN,
    )
    [d] = result.errors
    assert d.message.startswith("Invalid JSON Schema")


def test_zero_length_summary_is_warning():
    result = validate_definition(
        definition(steps=[step(transform={"kind": "summarize", "max_length": 0})]),
        KNOWN,
    )
    assert result.ok
    [d] = result.warnings
    assert "max_length 0" in d.message


def test_valid_transforms_pass():
    result = validate_definition(
        definition(
            steps=[
                step(transform={"kind": "jsonata", "expression": "$count(items)"}),
                step(transform={"kind": "schema", "schema": {"type": "object"}}),
                step(transform={"kind": "json_field", "field": "x"}),
            ]
        ),
        KNOWN,
    )
    assert result.diagnostics == []


# ── File loading ──────────────────────────────────────────────────


def test_load_and_validate(tmp_path):
    path = tmp_path / "p.yaml"
    path.write_text('chain: "claude:a -> nobody:b"\n')
    loaded, result = load_and_validate_pipeline(path, KNOWN)
    assert loaded.chain == "claude:a -> nobody:b"
    assert [d.step_index for d in result.errors] == [2]


def test_load_failure_propagates(tmp_path):
    with pytest.raises(PipelineLoadError):
        load_and_validate_pipeline(tmp_path / "missing.yaml", KNOWN)


def test_blank_action_and_provider():
    result = validate_definition(
        definition(steps=[step(action="  "), step(provider=" ")]), KNOWN
    )
    assert [(d.step_index, d.field) for d in result.errors] == [
        (1, "action"),
        (2, "provider"),
    ]


def test_provider_whitespace_is_ignored():
    result = validate_definition(definition(steps=[step(provider=" claude ")]), KNOWN)
    assert result.ok

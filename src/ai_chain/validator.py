"""Pre-flight pipeline validator.

Statically checks a pipeline definition without calling any provider:
unknown providers, malformed chains, JSONata expressions that will not
compile and JSON Schemas that are themselves invalid. Catches these
before any tokens are spent.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import jsonschema

from ai_chain.errors import ParseError, TransformError
from ai_chain.expressions import compile_expression
from ai_chain.loader import load_pipeline
from ai_chain.models import (
    JsonataSpec,
    PipelineDefinition,
    SchemaSpec,
    StepSpec,
    SummarizeSpec,
)
from ai_chain.parser import parse

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """A single validation finding."""

    severity: Severity
    step_index: int  # 1-based; 0 for pipeline-level findings
    message: str
    field: str  # "chain", "provider", "transform"


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate result of pipeline validation."""

    diagnostics: list[Diagnostic]

    @property
    def ok(self) -> bool:
        """True when there are no error-severity diagnostics."""
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _step_specs(definition: PipelineDefinition) -> tuple[list[StepSpec], list[Diagnostic]]:
    """Normalize chain-style definitions into step specs."""
    if definition.steps is not None:
        return list(definition.steps), []
    try:
        steps = parse(definition.chain or "")
    except ParseError as e:
        return [], [Diagnostic(Severity.ERROR, 0, str(e), "chain")]
    return [StepSpec(provider=s.provider, action=s.action) for s in steps], []


def _check_required(index: int, spec: StepSpec) -> list[Diagnostic]:
    return [
        Diagnostic(Severity.ERROR, index, f"{field} cannot be empty", field)
        for field in ("provider", "action")
        if not getattr(spec, field).strip()
    ]


def _check_provider(index: int, spec: StepSpec, known: set[str]) -> list[Diagnostic]:
    provider = spec.provider.strip()
    if not provider or provider in known:
        return []
    return [
        Diagnostic(
            severity=Severity.ERROR,
            step_index=index,
            message=(
                f"Unknown provider '{spec.provider}' "
                f"(known: {', '.join(sorted(known)) or 'none'})"
            ),
            field="provider",
        )
    ]


def _check_transform(index: int, spec: StepSpec) -> list[Diagnostic]:
    transform = spec.transform
    match transform:
        case JsonataSpec():
            try:
                compile_expression(transform.expression)
            except TransformError as e:
                return [Diagnostic(Severity.ERROR, index, str(e), "transform")]
        case SchemaSpec():
            try:
                jsonschema.validators.validator_for(transform.json_schema).check_schema(
                    transform.json_schema
                )
            except jsonschema.SchemaError as e:
                return [
                    Diagnostic(
                        Severity.ERROR,
                        index,
                        f"Invalid JSON Schema: {e.message}",
                        "transform",
                    )
                ]
        case SummarizeSpec(max_length=0):
            return [
                Diagnostic(
                    Severity.WARNING,
                    index,
                    "max_length 0 always produces empty content",
                    "transform",
                )
            ]
    return []


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_definition(
    definition: PipelineDefinition, known_providers: Iterable[str]
) -> ValidationResult:
    """Run every check and collect all diagnostics (no short-circuit)."""
    known = set(known_providers)
    specs, diagnostics = _step_specs(definition)
    for index, spec in enumerate(specs, start=1):
        diagnostics.extend(_check_required(index, spec))
        diagnostics.extend(_check_provider(index, spec, known))
        diagnostics.extend(_check_transform(index, spec))
    return ValidationResult(diagnostics=diagnostics)


def load_and_validate_pipeline(
    path: str | Path, known_providers: Iterable[str]
) -> tuple[PipelineDefinition, ValidationResult]:
    """Load a pipeline file and validate it.

    Raises:
        PipelineLoadError: If the file cannot be loaded at all.
    """
    definition = load_pipeline(path)
    return definition, validate_definition(definition, known_providers)

"""YAML pipeline file loading.

A pipeline file either carries a DSL ``chain`` or an explicit ``steps``
list, which can also attach static context and transforms that the DSL
cannot express::

    execution:
      continue_on_error: true
      max_retries: 2
    steps:
      - provider: claude
        action: design
        transform: {kind: json_field, field: plan}
      - provider: gemini
        action: implement
"""

from __future__ import annotations

from pathlib import Path

import jsonschema
import yaml
from pydantic import ValidationError as PydanticValidationError

from ai_chain.errors import PipelineLoadError, TransformError
from ai_chain.models import (
    IdentitySpec,
    JsonataSpec,
    JsonFieldSpec,
    PipelineDefinition,
    PipelineStep,
    SchemaSpec,
    SummarizeSpec,
    TransformSpec,
)
from ai_chain.parser import parse
from ai_chain.transforms import (
    FallbackBehavior,
    IdentityTransform,
    JsonataTransform,
    JsonExtractorTransform,
    SchemaTransform,
    SummarizerTransform,
    Transform,
)


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Load a pipeline definition from a YAML file.

    Parses YAML, then validates the structure via Pydantic.

    Raises:
        PipelineLoadError: If the file doesn't exist, YAML is invalid,
            or the structure doesn't match the expected schema.
    """
    path = Path(path)
    if not path.is_file():
        raise PipelineLoadError(f"Pipeline file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PipelineLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise PipelineLoadError(
            f"Pipeline YAML must be a mapping, got {type(raw).__name__}"
        )

    try:
        return PipelineDefinition.model_validate(raw)
    except PydanticValidationError as e:
        raise PipelineLoadError(f"Pipeline structure invalid: {e}") from e


def build_transform(spec: TransformSpec) -> Transform:
    """Instantiate the transform a spec describes."""
    match spec:
        case IdentitySpec():
            return IdentityTransform()
        case JsonFieldSpec():
            return JsonExtractorTransform(spec.field, FallbackBehavior(spec.fallback))
        case SummarizeSpec():
            return SummarizerTransform(spec.max_length)
        case JsonataSpec():
            return JsonataTransform(spec.expression)
        case SchemaSpec():
            return SchemaTransform(spec.json_schema)
        case _:
            raise PipelineLoadError(f"Unknown transform kind: {getattr(spec, 'kind', spec)}")


def build_steps(definition: PipelineDefinition) -> list[PipelineStep]:
    """Turn a definition into executable steps.

    Raises:
        ParseError: If ``chain`` is malformed.
        PipelineLoadError: If a step has a blank provider or action, or a
            transform cannot be constructed.
    """
    if definition.chain is not None:
        return parse(definition.chain)

    steps: list[PipelineStep] = []
    for index, spec in enumerate(definition.steps or [], start=1):
        provider = spec.provider.strip()
        action = spec.action.strip()
        if not provider:
            raise PipelineLoadError(f"Step {index}: provider cannot be empty")
        if not action:
            raise PipelineLoadError(f"Step {index}: action cannot be empty")

        transform = None
        if spec.transform is not None:
            try:
                transform = build_transform(spec.transform)
            except (TransformError, jsonschema.SchemaError) as e:
                raise PipelineLoadError(f"Step {index}: invalid transform: {e}") from e
        steps.append(
            PipelineStep(
                provider=provider,
                action=action,
                context=spec.context,
                transform=transform,
            )
        )
    return steps

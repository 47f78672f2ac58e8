"""Response transforms applied to a step's output before it joins the run.

A transform receives the provider's Response and returns a new one.
Transforms never mutate their input; failures raise TransformError and
abort the owning step.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import jsonschema

from ai_chain.errors import FieldNotFoundError, JsonParseError, TransformOperationError
from ai_chain.expressions import compile_expression, evaluate
from ai_chain.models import Response


def _parse_json(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise JsonParseError(str(e)) from e


def _json_text(value: Any) -> str:
    """Strings verbatim, everything else as compact JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class Transform(ABC):
    name: str = "transform"

    @abstractmethod
    async def transform(self, response: Response) -> Response:
        """Return the transformed response."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class IdentityTransform(Transform):
    name = "identity"

    async def transform(self, response: Response) -> Response:
        return response


class FallbackBehavior(str, Enum):
    """What JsonExtractorTransform does when the field is missing."""

    KEEP_ORIGINAL = "keep_original"
    RETURN_EMPTY = "return_empty"
    RETURN_ERROR = "return_error"


class JsonExtractorTransform(Transform):
    """Replace the content with one top-level field of a JSON payload."""

    name = "json_extractor"

    def __init__(
        self,
        field: str,
        fallback: FallbackBehavior = FallbackBehavior.KEEP_ORIGINAL,
    ) -> None:
        self.field = field
        self.fallback = FallbackBehavior(fallback)

    @classmethod
    def with_fallback(
        cls, field: str, behavior: FallbackBehavior
    ) -> JsonExtractorTransform:
        return cls(field, behavior)

    async def transform(self, response: Response) -> Response:
        document = _parse_json(response.content)

        if isinstance(document, dict) and self.field in document:
            content = _json_text(document[self.field])
            return response.model_copy(update={"content": content})

        match self.fallback:
            case FallbackBehavior.RETURN_EMPTY:
                return response.model_copy(update={"content": ""})
            case FallbackBehavior.RETURN_ERROR:
                raise FieldNotFoundError(self.field)
            case _:
                return response


class SummarizerTransform(Transform):
    """Truncate content to ``max_length`` characters (code points)."""

    name = "summarizer"

    def __init__(self, max_length: int) -> None:
        if max_length < 0:
            raise ValueError("max_length must be non-negative")
        self.max_length = max_length

    async def transform(self, response: Response) -> Response:
        # str slicing is per code point, so multi-byte characters stay whole.
        if len(response.content) <= self.max_length:
            return response
        return response.model_copy(
            update={"content": response.content[: self.max_length]}
        )


class JsonataTransform(Transform):
    """Reshape a JSON payload with a JSONata expression."""

    name = "jsonata"

    def __init__(self, expression: str) -> None:
        compile_expression(expression)
        self.expression = expression

    async def transform(self, response: Response) -> Response:
        document = _parse_json(response.content)
        result = evaluate(self.expression, document)
        if result is None:
            raise TransformOperationError(
                f"Expression '{self.expression}' produced no value"
            )
        return response.model_copy(update={"content": _json_text(result)})


class SchemaTransform(Transform):
    """Pass the response through only if its JSON matches a schema."""

    name = "schema"

    def __init__(self, schema: dict[str, Any]) -> None:
        jsonschema.validators.validator_for(schema).check_schema(schema)
        self.schema = schema

    async def transform(self, response: Response) -> Response:
        document = _parse_json(response.content)
        try:
            jsonschema.validate(instance=document, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise TransformOperationError(
                f"Schema validation failed: {e.message}"
            ) from e
        return response

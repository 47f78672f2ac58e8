"""Custom exception hierarchy for ai-chain.

All exceptions inherit from PipelineError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from ai_chain.models import PipelineStep


class PipelineError(Exception):
    """Base for all ai-chain errors."""


class ParseError(PipelineError):
    """A pipeline DSL string is malformed."""


class PipelineLoadError(PipelineError):
    """YAML parsing or pipeline file structure validation failed."""


class UnknownProviderError(PipelineError):
    """A step references a provider that is not registered."""

    def __init__(self, provider: str, known: Iterable[str] = ()) -> None:
        self.provider = provider
        self.known = sorted(known)
        super().__init__(
            f"Unknown provider: '{provider}'. Valid providers are: {self.known}"
        )


class ProviderInvocationError(PipelineError):
    """A provider call failed (transport, auth, timeout, bad exit code)."""


class ProviderNotSupportedError(ProviderInvocationError):
    """No provider implementation exists for a name/auth combination."""


class AuthResolutionError(PipelineError):
    """No credential could be discovered for a provider."""


class ContextValidationError(PipelineError):
    """A Context violates one of its size or safety limits."""


class TransformError(PipelineError):
    """A response transform could not be applied."""


class JsonParseError(TransformError):
    """Response content is not valid JSON."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"JSON parsing failed: {detail}")


class FieldNotFoundError(TransformError):
    """A requested JSON field is absent from the response."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Field '{field}' not found in JSON")


class TransformOperationError(TransformError):
    """Generic transform failure."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Transform operation failed: {detail}")


class StepExecutionError(PipelineError):
    """A step failed during execution and the run was aborted."""

    def __init__(
        self,
        step_index: int,
        step: PipelineStep,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        self.step_index = step_index
        self.step = step
        self.cause = cause
        super().__init__(f"Step {step_index} ({step}) failed: {message}")

"""Pipeline DSL parsing.

The DSL is ``provider:action -> provider:action -> ...``. Whitespace
around steps and arrows is ignored; the first colon in a step separates
provider from action, so actions may contain colons themselves.
"""

from __future__ import annotations

from typing import Iterable

from ai_chain.errors import ParseError, UnknownProviderError
from ai_chain.models import PipelineStep

ARROW = "->"


def _parse_step(segment: str) -> PipelineStep:
    if not segment:
        raise ParseError("Pipeline step cannot be empty")

    provider, sep, action = segment.partition(":")
    if not sep:
        raise ParseError(f"Invalid pipeline step format: '{segment}' (missing ':')")

    provider = provider.strip()
    action = action.strip()
    if not provider:
        raise ParseError(f"Provider cannot be empty in step: '{segment}'")
    if not action:
        raise ParseError(f"Action cannot be empty in step: '{segment}'")

    return PipelineStep(provider=provider, action=action)


def parse(text: str) -> list[PipelineStep]:
    """Parse a pipeline DSL string into ordered steps.

    Example::

        >>> [str(s) for s in parse("claude:design -> gemini:implement")]
        ['claude:design', 'gemini:implement']

    Raises:
        ParseError: If the string is empty or any step is malformed.
    """
    trimmed = text.strip()
    if not trimmed:
        raise ParseError("Pipeline string cannot be empty")
    return [_parse_step(part.strip()) for part in trimmed.split(ARROW)]


def validate_providers(
    steps: Iterable[PipelineStep], known_providers: Iterable[str]
) -> None:
    """Raise UnknownProviderError for the first step with an unknown provider."""
    known = list(known_providers)
    for step in steps:
        if step.provider not in known:
            raise UnknownProviderError(step.provider, known)


def format_pipeline(steps: Iterable[PipelineStep]) -> str:
    """Render steps back into DSL form (context and transforms are dropped)."""
    return f" {ARROW} ".join(str(step) for step in steps)


class PipelineBuilder:
    """Build a step list in code instead of parsing a string."""

    def __init__(self) -> None:
        self._steps: list[PipelineStep] = []

    def step(self, provider: str, action: str) -> PipelineBuilder:
        self._steps.append(PipelineStep(provider=provider, action=action))
        return self

    def step_with_context(
        self, provider: str, action: str, context: str
    ) -> PipelineBuilder:
        self._steps.append(
            PipelineStep(provider=provider, action=action, context=context)
        )
        return self

    def build(self) -> list[PipelineStep]:
        return list(self._steps)

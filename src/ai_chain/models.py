"""Data shapes shared by the parser, executor, context and providers.

No business logic, just shapes. Wire-facing records are Pydantic models
so they serialize cleanly; step records that carry behavior (a transform
instance, a raised exception) are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from ai_chain.transforms import Transform


# ── Conversation ─────────────────────────────────────────────────


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    role: MessageRole
    content: str


# ── Provider I/O ─────────────────────────────────────────────────


class Response(BaseModel):
    content: str
    metadata: dict[str, str] = Field(default_factory=dict)

    def with_metadata(self, key: str, value: str) -> Response:
        """Return a copy with one extra metadata entry."""
        return self.model_copy(update={"metadata": {**self.metadata, key: value}})


class Capabilities(BaseModel):
    supports_streaming: bool = False
    supports_context: bool = False
    max_tokens: int = 4096


# ── Execution ────────────────────────────────────────────────────


class ExecutionConfig(BaseModel):
    continue_on_error: bool = False
    max_retries: int = Field(default=0, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    # Enforced per provider call; None means no deadline.
    timeout_seconds: float | None = Field(default=None, gt=0)


class ContextDiff(BaseModel):
    added_messages: list[Message] = Field(default_factory=list)
    # Part of the shape, never populated by Context.diff().
    removed_messages: list[Message] = Field(default_factory=list)
    metadata_changes: dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.added_messages or self.removed_messages or self.metadata_changes
        )


@dataclass(frozen=True, eq=False)
class PipelineStep:
    """One ``provider:action`` unit of work."""

    provider: str
    action: str
    context: str | None = None
    transform: Transform | None = None

    def with_context(self, context: str) -> PipelineStep:
        return PipelineStep(self.provider, self.action, context, self.transform)

    def with_transform(self, transform: Transform) -> PipelineStep:
        return PipelineStep(self.provider, self.action, self.context, transform)

    def prompt(self) -> str:
        """The text actually sent to the provider."""
        if self.context is not None:
            return f"{self.action}: {self.context}"
        return self.action

    def __eq__(self, other: object) -> bool:
        # Transform identity is not compared, only whether one is attached.
        if not isinstance(other, PipelineStep):
            return NotImplemented
        return (
            self.provider == other.provider
            and self.action == other.action
            and self.context == other.context
            and (self.transform is None) == (other.transform is None)
        )

    def __hash__(self) -> int:
        return hash(
            (self.provider, self.action, self.context, self.transform is None)
        )

    def __str__(self) -> str:
        return f"{self.provider}:{self.action}"


@dataclass
class StepResult:
    """Execution record handed to observers, then discarded."""

    step: PipelineStep
    step_index: int
    response: Response | None
    error: Exception | None
    duration_ms: float
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Pipeline files ───────────────────────────────────────────────


class IdentitySpec(BaseModel):
    kind: Literal["identity"]


class JsonFieldSpec(BaseModel):
    kind: Literal["json_field"]
    field: str
    fallback: Literal["keep_original", "return_empty", "return_error"] = "keep_original"


class SummarizeSpec(BaseModel):
    kind: Literal["summarize"]
    max_length: int = Field(ge=0)


class JsonataSpec(BaseModel):
    kind: Literal["jsonata"]
    expression: str


class SchemaSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["schema"]
    # "schema" would shadow a BaseModel attribute.
    json_schema: dict[str, Any] = Field(alias="schema")


# Discriminated union: Pydantic picks the right model based on `kind`
TransformSpec = Annotated[
    IdentitySpec | JsonFieldSpec | SummarizeSpec | JsonataSpec | SchemaSpec,
    Field(discriminator="kind"),
]


class StepSpec(BaseModel):
    provider: str
    action: str
    context: str | None = None
    transform: TransformSpec | None = None


class PipelineDefinition(BaseModel):
    """A pipeline file: either a DSL ``chain`` or explicit ``steps``."""

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    chain: str | None = None
    steps: list[StepSpec] | None = None

    @model_validator(mode="after")
    def _chain_or_steps(self) -> PipelineDefinition:
        if (self.chain is None) == (self.steps is None):
            raise ValueError("exactly one of 'chain' or 'steps' is required")
        return self

"""Tests for the pipeline executor.

Fake in-process providers stand in for real backends so every run is
deterministic and offline.
"""

from __future__ import annotations

import asyncio

import pytest

from ai_chain.auth import AuthManager
from ai_chain.context import Context
from ai_chain.errors import (
    ParseError,
    ProviderInvocationError,
    StepExecutionError,
    TransformError,
    UnknownProviderError,
)
from ai_chain.executor import PipelineExecutor
from ai_chain.models import (
    Capabilities,
    ExecutionConfig,
    Message,
    MessageRole,
    PipelineStep,
    Response,
)
from ai_chain.observers import StepRecorder
from ai_chain.parser import parse
from ai_chain.providers.base import Provider
from ai_chain.transforms import JsonExtractorTransform, SummarizerTransform, FallbackBehavior


# ── Helpers ───────────────────────────────────────────────────────


class EchoProvider(Provider):
    """Answers every prompt with a predictable string and records calls."""

    def __init__(self, name: str, reply: str | None = None) -> None:
        self._name = name
        self.reply = reply
        self.prompts: list[str] = []
        self.history_lengths: list[int] = []

    @property
    def name(self) -> str:
        return self._name

    def capabilities(self) -> Capabilities:
        return Capabilities()

    async def execute(self, prompt: str, context: Context) -> Response:
        self.prompts.append(prompt)
        self.history_lengths.append(len(context.conversation_history))
        content = self.reply if self.reply is not None else f"Mock {self._name} response to: {prompt}"
        return Response(content=content)


class FailingProvider(EchoProvider):
    """Fails the first *failures* calls, then answers like EchoProvider."""

    def __init__(self, name: str, failures: int, reply: str | None = None) -> None:
        super().__init__(name, reply)
        self.failures = failures
        self.calls = 0

    async def execute(self, prompt: str, context: Context) -> Response:
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderInvocationError(f"{self._name} unavailable (call {self.calls})")
        return await super().execute(prompt, context)


class SlowProvider(EchoProvider):
    async def execute(self, prompt: str, context: Context) -> Response:
        await asyncio.sleep(5)
        return await super().execute(prompt, context)


class ExplodingObserver:
    def on_step_complete(self, result):
        raise RuntimeError("observer broke")


def make_executor(*providers: Provider, **config) -> PipelineExecutor:
    config.setdefault("retry_delay_ms", 0)
    executor = PipelineExecutor(ExecutionConfig(**config))
    for provider in providers:
        executor.register_provider(provider.name, provider)
    return executor


# ── Happy path ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_single_step_prefixes_provider_name():
    executor = make_executor(EchoProvider("claude"))
    context = Context()

    responses = await executor.execute(parse("claude:analyze"), context)

    assert len(responses) == 1
    assert responses[0].content == "claude: Mock claude response to: analyze"
    assert responses[0].metadata["step_index"] == "1"
    assert "previous_step" not in responses[0].metadata
    assert "has_initial_context" not in responses[0].metadata
    assert context.conversation_history[-1] == Message(
        role=MessageRole.ASSISTANT, content=responses[0].content
    )


@pytest.mark.asyncio
async def test_steps_see_previous_responses():
    claude = EchoProvider("claude")
    gemini = EchoProvider("gemini")
    executor = make_executor(claude, gemini)
    context = Context()

    responses = await executor.execute(
        parse("claude:design -> gemini:implement"), context
    )

    assert [r.content for r in responses] == [
        "claude: Mock claude response to: design",
        "gemini: Mock gemini response to: implement",
    ]
    assert gemini.history_lengths == [1]
    assert responses[1].metadata["previous_step"] == "true"
    assert responses[1].metadata["step_index"] == "2"
    assert len(context.conversation_history) == 2


@pytest.mark.asyncio
async def test_has_initial_context_marks_every_step():
    executor = make_executor(EchoProvider("claude"), EchoProvider("codex"))
    context = Context()
    context.add_message(Message(role=MessageRole.SYSTEM, content="Project notes"))

    responses = await executor.execute(parse("claude:a -> codex:b"), context)

    assert all(r.metadata["has_initial_context"] == "true" for r in responses)
    assert len(context.conversation_history) == 3


@pytest.mark.asyncio
async def test_static_step_context_is_appended_to_prompt():
    claude = EchoProvider("claude")
    executor = make_executor(claude)
    step = PipelineStep(provider="claude", action="review").with_context("security only")

    await executor.execute([step], Context())

    assert claude.prompts == ["review: security only"]


@pytest.mark.asyncio
async def test_streaming_matches_execute_content():
    executor = make_executor(EchoProvider("claude"), EchoProvider("gemini"))
    chain = "claude:design -> gemini:implement"

    plain = await executor.execute(parse(chain), Context())
    streamed = await executor.execute_streaming(parse(chain), Context())

    assert [r.content for r in streamed] == [r.content for r in plain]
    assert all(r.metadata["streamed"] == "true" for r in streamed)


@pytest.mark.asyncio
async def test_authenticated_marker_requires_auth_manager():
    executor = make_executor(EchoProvider("claude"))
    [without] = await executor.execute(parse("claude:x"), Context())
    executor.set_auth_manager(AuthManager(environ={}))
    [with_auth] = await executor.execute(parse("claude:x"), Context())

    assert "authenticated" not in without.metadata
    assert with_auth.metadata["authenticated"] == "true"


@pytest.mark.asyncio
async def test_execution_time_is_epoch_seconds():
    executor = make_executor(EchoProvider("claude"))
    [response] = await executor.execute(parse("claude:x"), Context())
    assert response.metadata["execution_time"].isdigit()


@pytest.mark.asyncio
async def test_context_records_step_results():
    executor = make_executor(EchoProvider("claude"), EchoProvider("gemini"))
    context = Context()

    responses = await executor.execute(parse("claude:a -> gemini:b"), context)

    assert context.metadata["last_response"] == responses[-1].content
    assert [r["content"] for r in context.metadata["step_results"]] == [
        r.content for r in responses
    ]
    assert context.metadata["response_step_index"] == "2"


@pytest.mark.asyncio
async def test_repeated_runs_are_identical():
    executor = make_executor(EchoProvider("claude"), EchoProvider("gemini"))
    chain = "claude:design -> gemini:implement"

    first = await executor.execute(parse(chain), Context())
    second = await executor.execute(parse(chain), Context())

    assert [r.content for r in first] == [r.content for r in second]


@pytest.mark.asyncio
async def test_empty_step_list_returns_nothing():
    executor = make_executor()
    context = Context()
    assert await executor.execute([], context) == []
    assert context.conversation_history == []


# ── Errors ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unknown_provider_fails_step():
    executor = make_executor(EchoProvider("claude"), max_retries=3)

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.execute(parse("unknown:task"), Context())

    assert exc_info.value.step_index == 1
    assert isinstance(exc_info.value.cause, UnknownProviderError)
    assert "unknown" in str(exc_info.value)


@pytest.mark.asyncio
async def test_failure_stops_pipeline_by_default():
    codex = EchoProvider("codex")
    executor = make_executor(
        EchoProvider("claude"), FailingProvider("gemini", failures=10), codex
    )
    context = Context()

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.execute(parse("claude:a -> gemini:b -> codex:c"), context)

    assert exc_info.value.step_index == 2
    assert str(exc_info.value.step) == "gemini:b"
    assert codex.prompts == []
    # The first step's answer was already folded in.
    assert len(context.conversation_history) == 1


@pytest.mark.asyncio
async def test_continue_on_error_inserts_placeholder():
    executor = make_executor(
        EchoProvider("claude"),
        FailingProvider("gemini", failures=10),
        EchoProvider("codex"),
        continue_on_error=True,
    )
    context = Context()

    responses = await executor.execute(
        parse("claude:a -> gemini:b -> codex:c"), context
    )

    assert len(responses) == 3
    assert responses[1].content.startswith("Error in step 2:")
    assert responses[1].metadata == {"error": "true", "step_index": "2"}
    assert "error" not in responses[0].metadata
    assert responses[2].content == "codex: Mock codex response to: c"
    assert len(context.conversation_history) == 3
    assert context.conversation_history[1].content == responses[1].content


@pytest.mark.asyncio
async def test_continue_on_error_covers_unknown_provider():
    executor = make_executor(EchoProvider("claude"), continue_on_error=True)
    responses = await executor.execute(parse("nope:a -> claude:b"), Context())
    assert responses[0].metadata["error"] == "true"
    assert responses[1].content.startswith("claude: ")


# ── Retries ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_retry_until_success():
    flaky = FailingProvider("claude", failures=2)
    executor = make_executor(flaky, max_retries=3)
    recorder = StepRecorder()
    executor.set_observer(recorder)

    [response] = await executor.execute(parse("claude:a"), Context())

    assert flaky.calls == 3
    assert response.metadata["retries"] == "2"
    assert recorder.results[0].retries == 2
    assert recorder.results[0].ok


@pytest.mark.asyncio
async def test_retries_exhausted():
    broken = FailingProvider("claude", failures=100)
    executor = make_executor(broken, max_retries=2)

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.execute(parse("claude:a"), Context())

    assert broken.calls == 3
    assert isinstance(exc_info.value.cause, ProviderInvocationError)


@pytest.mark.asyncio
async def test_no_retries_means_single_attempt():
    broken = FailingProvider("claude", failures=1)
    executor = make_executor(broken)
    with pytest.raises(StepExecutionError):
        await executor.execute(parse("claude:a"), Context())
    assert broken.calls == 1


@pytest.mark.asyncio
async def test_timeout_is_retryable_failure():
    executor = make_executor(SlowProvider("claude"), timeout_seconds=0.05)
    recorder = StepRecorder()
    executor.set_observer(recorder)

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.execute(parse("claude:a"), Context())

    assert isinstance(exc_info.value.cause, ProviderInvocationError)
    assert "timed out" in str(exc_info.value)
    assert recorder.failed and recorder.failed[0].step_index == 1


# ── Transforms ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_transform_runs_before_prefix():
    executor = make_executor(EchoProvider("claude", reply='{"plan": "ship it"}'))
    step = PipelineStep(provider="claude", action="plan").with_transform(
        JsonExtractorTransform("plan")
    )

    [response] = await executor.execute([step], Context())

    assert response.content == "claude: ship it"
    assert response.metadata["step_index"] == "1"


@pytest.mark.asyncio
async def test_summarizer_transform_truncates():
    executor = make_executor(EchoProvider("gemini", reply="abcdefghij"))
    step = PipelineStep("gemini", "x", transform=SummarizerTransform(4))
    [response] = await executor.execute([step], Context())
    assert response.content == "gemini: abcd"


@pytest.mark.asyncio
async def test_transform_failure_aborts_even_with_continue_on_error():
    claude = FailingProvider("claude", failures=0, reply="not json")
    executor = make_executor(claude, continue_on_error=True, max_retries=3)
    step = PipelineStep("claude", "plan").with_transform(
        JsonExtractorTransform.with_fallback("plan", FallbackBehavior.RETURN_ERROR)
    )

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.execute([step], Context())

    assert isinstance(exc_info.value.cause, TransformError)
    # Transform failures are not retried.
    assert claude.calls == 1


# ── Observers ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_observer_sees_every_step():
    executor = make_executor(
        EchoProvider("claude"),
        FailingProvider("gemini", failures=10),
        continue_on_error=True,
    )
    recorder = StepRecorder()
    executor.set_observer(recorder)

    await executor.execute(parse("claude:a -> gemini:b"), Context())

    assert [r.step_index for r in recorder.results] == [1, 2]
    assert recorder.results[0].response is not None
    assert recorder.results[1].response is None
    assert [r.step_index for r in recorder.failed] == [2]


@pytest.mark.asyncio
async def test_observer_exception_does_not_break_run(caplog):
    executor = make_executor(EchoProvider("claude"))
    executor.set_observer(ExplodingObserver())

    responses = await executor.execute(parse("claude:a"), Context())

    assert len(responses) == 1
    assert "observer failed" in caplog.text.lower()


# ── run() and configuration ──────────────────────────────────────


@pytest.mark.asyncio
async def test_run_parses_chain():
    executor = make_executor(EchoProvider("claude"))
    responses = await executor.run("claude:analyze")
    assert responses[0].content == "claude: Mock claude response to: analyze"


@pytest.mark.asyncio
async def test_run_rejects_malformed_chain():
    executor = make_executor(EchoProvider("claude"))
    with pytest.raises(ParseError):
        await executor.run("claude")


@pytest.mark.asyncio
async def test_run_rejects_unknown_provider_before_execution():
    claude = EchoProvider("claude")
    executor = make_executor(claude)

    with pytest.raises(UnknownProviderError) as exc_info:
        await executor.run("claude:a -> mystery:b")

    assert claude.prompts == []
    assert exc_info.value.known == ["claude"]


def test_setters_update_config():
    executor = PipelineExecutor()
    executor.set_continue_on_error(True)
    executor.set_max_retries(4)
    executor.set_retry_delay_ms(10)
    executor.set_timeout_seconds(2.5)

    assert executor.config == ExecutionConfig(
        continue_on_error=True, max_retries=4, retry_delay_ms=10, timeout_seconds=2.5
    )


def test_registry():
    executor = make_executor(EchoProvider("gemini"), EchoProvider("claude"))
    assert executor.provider_names() == ["claude", "gemini"]
    assert executor.has_provider("claude")
    assert executor.get_provider("codex") is None

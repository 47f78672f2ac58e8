"""Pipeline executor: the main orchestrator.

Runs steps strictly in order against registered providers, retrying
failed provider calls, applying per-step transforms, and folding every
response back into the shared Context so the next step can see it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable

from ai_chain import pipeline_logger
from ai_chain.auth import AuthManager
from ai_chain.context import Context
from ai_chain.errors import (
    ProviderInvocationError,
    StepExecutionError,
    TransformError,
    UnknownProviderError,
)
from ai_chain.models import (
    ExecutionConfig,
    Message,
    MessageRole,
    PipelineStep,
    Response,
    StepResult,
)
from ai_chain.observers import StepObserver
from ai_chain.parser import format_pipeline, parse, validate_providers
from ai_chain.providers.base import Provider

_log = logging.getLogger("ai_chain")


class PipelineExecutor:
    """Holds the provider registry and drives pipeline runs.

    One executor runs one pipeline at a time. Concurrent runs need
    separate executors (providers may be shared between them).
    """

    def __init__(self, config: ExecutionConfig | None = None) -> None:
        self.config = config or ExecutionConfig()
        self._providers: dict[str, Provider] = {}
        self._auth_manager: AuthManager | None = None
        self._observer: StepObserver | None = None

    # ── Registry ─────────────────────────────────────────────────

    def register_provider(self, name: str, provider: Provider) -> None:
        self._providers[name] = provider

    def has_provider(self, name: str) -> bool:
        return name in self._providers

    def get_provider(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def provider_names(self) -> list[str]:
        return sorted(self._providers)

    # ── Configuration ────────────────────────────────────────────

    def set_auth_manager(self, auth_manager: AuthManager) -> None:
        self._auth_manager = auth_manager

    def set_observer(self, observer: StepObserver | None) -> None:
        self._observer = observer

    def set_continue_on_error(self, value: bool) -> None:
        self.config.continue_on_error = value

    def set_max_retries(self, value: int) -> None:
        self.config.max_retries = value

    def set_retry_delay_ms(self, value: int) -> None:
        self.config.retry_delay_ms = value

    def set_timeout_seconds(self, value: float | None) -> None:
        self.config.timeout_seconds = value

    # ── Running ──────────────────────────────────────────────────

    async def run(
        self,
        chain: str,
        context: Context | None = None,
        *,
        streaming: bool = False,
    ) -> list[Response]:
        """Parse *chain*, check its providers, then execute it.

        Raises:
            ParseError: If the chain is malformed.
            UnknownProviderError: If a step names an unregistered provider.
            StepExecutionError: If a step fails and the run is aborted.
        """
        steps = parse(chain)
        validate_providers(steps, self.provider_names())
        context = context if context is not None else Context()
        if streaming:
            return await self.execute_streaming(steps, context)
        return await self.execute(steps, context)

    async def execute(
        self, steps: Iterable[PipelineStep], context: Context
    ) -> list[Response]:
        """Execute *steps* in order, threading *context* through each one.

        Returns:
            One Response per step, in step order. Failed steps appear as
            placeholder responses when ``continue_on_error`` is set.

        Raises:
            StepExecutionError: If a step fails and ``continue_on_error``
                is off, or if a transform fails (always fatal).
        """
        return await self._execute(list(steps), context, streaming=False)

    async def execute_streaming(
        self, steps: Iterable[PipelineStep], context: Context
    ) -> list[Response]:
        """Like ``execute``, but reads each provider through ``stream``."""
        return await self._execute(list(steps), context, streaming=True)

    async def _execute(
        self, steps: list[PipelineStep], context: Context, *, streaming: bool
    ) -> list[Response]:
        has_initial_context = bool(context.conversation_history)
        responses: list[Response] = []
        start = time.monotonic()
        pipeline_logger.log_pipeline_start(format_pipeline(steps), len(steps))

        for index, step in enumerate(steps, start=1):
            result = await self._run_step(
                step, index, context, has_initial_context, streaming
            )
            self._notify(result)

            error = result.error
            if error is None:
                assert result.response is not None
                response = result.response
            else:
                # Transform failures mean a malformed response; never continue.
                if isinstance(error, TransformError) or not self.config.continue_on_error:
                    raise StepExecutionError(index, step, str(error), cause=error) from error
                response = Response(
                    content=f"Error in step {index}: {error}",
                    metadata={"error": "true", "step_index": str(index)},
                )

            context.add_message(
                Message(role=MessageRole.ASSISTANT, content=response.content)
            )
            context.enhance_with_response(response)
            responses.append(response)

        pipeline_logger.log_pipeline_complete(
            len(responses), (time.monotonic() - start) * 1000
        )
        return responses

    async def _run_step(
        self,
        step: PipelineStep,
        index: int,
        context: Context,
        has_initial_context: bool,
        streaming: bool,
    ) -> StepResult:
        start = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - start) * 1000

        provider = self._providers.get(step.provider)
        if provider is None:
            # Lookup failure is not transient, so it is never retried.
            error = UnknownProviderError(step.provider, self._providers)
            pipeline_logger.log_step_failed(index, str(error), 0)
            return StepResult(step, index, None, error, elapsed(), 0)

        prompt = step.prompt()
        pipeline_logger.log_step_start(index, step.provider, prompt)

        retries = 0
        while True:
            try:
                response = await self._invoke(provider, prompt, context, streaming)
                break
            except Exception as e:
                if retries >= self.config.max_retries:
                    pipeline_logger.log_step_failed(index, str(e), retries)
                    return StepResult(step, index, None, e, elapsed(), retries)
                retries += 1
                pipeline_logger.log_step_retry(index, retries, str(e))
                await asyncio.sleep(self.config.retry_delay_ms / 1000)

        response = self._annotate(response, index, has_initial_context, retries)

        if step.transform is not None:
            try:
                response = await step.transform.transform(response)
            except Exception as e:
                error = TransformError(
                    f"Transform '{step.transform.name}' failed: {e}"
                )
                error.__cause__ = e
                pipeline_logger.log_step_failed(index, str(error), retries)
                return StepResult(step, index, None, error, elapsed(), retries)

        response = response.model_copy(
            update={"content": f"{step.provider}: {response.content}"}
        )
        duration_ms = elapsed()
        pipeline_logger.log_step_complete(index, duration_ms, retries)
        return StepResult(step, index, response, None, duration_ms, retries)

    async def _invoke(
        self,
        provider: Provider,
        prompt: str,
        context: Context,
        streaming: bool,
    ) -> Response:
        if streaming:
            call = self._collect_stream(provider, prompt, context)
        else:
            call = provider.execute(prompt, context)

        timeout = self.config.timeout_seconds
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as e:
            raise ProviderInvocationError(
                f"{provider.name} timed out after {timeout}s"
            ) from e

    @staticmethod
    async def _collect_stream(
        provider: Provider, prompt: str, context: Context
    ) -> Response:
        chunks = [chunk async for chunk in provider.stream(prompt, context)]
        return Response(content="".join(chunks), metadata={"streamed": "true"})

    def _annotate(
        self,
        response: Response,
        index: int,
        has_initial_context: bool,
        retries: int,
    ) -> Response:
        metadata = dict(response.metadata)
        if self._auth_manager is not None:
            metadata["authenticated"] = "true"
        if has_initial_context:
            metadata["has_initial_context"] = "true"
        if index > 1:
            metadata["previous_step"] = "true"
        metadata["step_index"] = str(index)
        if retries > 0:
            metadata["retries"] = str(retries)
        metadata["execution_time"] = str(int(time.time()))
        return response.model_copy(update={"metadata": metadata})

    def _notify(self, result: StepResult) -> None:
        if self._observer is None:
            return
        try:
            self._observer.on_step_complete(result)
        except Exception:
            _log.exception("Step observer failed on step %s", result.step_index)

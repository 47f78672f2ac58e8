"""Claude provider: one-turn queries through claude-agent-sdk.

The SDK drives the local Claude Code CLI, so a detected CLI session is
enough to run. An explicit API key is forwarded to the CLI through its
environment instead.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from claude_agent_sdk import ClaudeAgentOptions, ResultMessage, query
from claude_agent_sdk.types import AssistantMessage, TextBlock

from ai_chain.context import Context
from ai_chain.errors import PipelineError, ProviderInvocationError
from ai_chain.models import Capabilities, Response
from ai_chain.providers.base import EMPTY_RESPONSE, Provider
from ai_chain.templates import render_context

_log = logging.getLogger("ai_chain")


class ClaudeProvider(Provider):
    """Claude via ``claude_agent_sdk.query``.

    Args:
        api_key: Anthropic API key. None means rely on the CLI session.
        model: Model alias passed to the SDK (SDK default when None).
        llm_fn: Replacement for ``claude_agent_sdk.query`` (injected
            for testing).
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        llm_fn: Callable[..., AsyncIterator[Any]] | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._query = llm_fn or query

    @property
    def name(self) -> str:
        return "claude"

    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_streaming=True,
            supports_context=True,
            max_tokens=200_000,
        )

    def _options(self, context: Context) -> ClaudeAgentOptions:
        shaped = context.filter_for_provider(self.name)
        options = ClaudeAgentOptions(
            model=self.model,
            system_prompt=render_context(shaped) or None,
            max_turns=1,
        )
        if self.api_key:
            options.env = {"ANTHROPIC_API_KEY": self.api_key}
        return options

    async def execute(self, prompt: str, context: Context) -> Response:
        try:
            text = await self._run(prompt, context)
        except PipelineError:
            raise
        except Exception as e:
            raise ProviderInvocationError(f"Claude query failed: {e}") from e

        response = Response(content=text)
        if context.conversation_history:
            response = response.with_metadata(
                "conversation_length", str(len(context.conversation_history))
            )
        if self.model:
            response = response.with_metadata("model", self.model)
        return response

    async def _run(self, prompt: str, context: Context) -> str:
        result_text: str | None = None
        assistant_text_parts: list[str] = []

        async for message in self._query(prompt=prompt, options=self._options(context)):
            if message is None:
                continue

            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        assistant_text_parts.append(block.text)

            if isinstance(message, ResultMessage):
                result_text = message.result
                _log.debug(
                    "Claude result: length=%s, turns=%s",
                    len(result_text) if result_text else 0,
                    message.num_turns,
                )
                if message.is_error:
                    raise ProviderInvocationError(
                        f"Claude returned error: {result_text}"
                    )

        # ResultMessage.result first, streamed assistant text as fallback.
        if not result_text and assistant_text_parts:
            result_text = "".join(assistant_text_parts)
        return result_text or EMPTY_RESPONSE

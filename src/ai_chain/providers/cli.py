"""Providers backed by a local agent CLI (gemini, codex).

The CLI is run once per call with the rendered prompt as its final
argument; stdout is the response, stderr is only used for error text.
"""

from __future__ import annotations

import asyncio
import os

from ai_chain.context import Context
from ai_chain.errors import ProviderInvocationError
from ai_chain.models import Capabilities, Response
from ai_chain.providers.base import EMPTY_RESPONSE, Provider
from ai_chain.templates import render_prompt

STDERR_TAIL_CHARS = 500


class CliProvider(Provider):
    """Run ``command + [prompt]`` and return stdout as the response.

    Args:
        name: Provider name used in the DSL.
        command: Executable and leading arguments.
        api_key: Key exported to the child process, if any.
        api_key_env: Variable name the CLI reads the key from.
        max_tokens: Context window advertised in capabilities.
    """

    def __init__(
        self,
        name: str,
        command: list[str],
        *,
        api_key: str | None = None,
        api_key_env: str | None = None,
        max_tokens: int = 100_000,
    ) -> None:
        if not command:
            raise ValueError("command must name an executable")
        self._name = name
        self.command = list(command)
        self.api_key = api_key
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return self._name

    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_streaming=True,
            supports_context=True,
            max_tokens=self.max_tokens,
        )

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.api_key and self.api_key_env:
            env[self.api_key_env] = self.api_key
        return env

    async def execute(self, prompt: str, context: Context) -> Response:
        shaped = context.filter_for_provider(self._name)
        cmd = [*self.command, render_prompt(prompt, shaped)]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise ProviderInvocationError(
                f"{self._name}: could not start {self.command[0]}: {e}"
            ) from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Don't leave the CLI running after a timeout or abort.
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-STDERR_TAIL_CHARS:]
            message = f"{self._name} exited with code {proc.returncode}"
            if tail:
                message = f"{message}: {tail}"
            raise ProviderInvocationError(message)

        text = stdout.decode("utf-8", errors="replace").strip()
        response = Response(content=text or EMPTY_RESPONSE)
        if context.conversation_history:
            response = response.with_metadata(
                "conversation_length", str(len(context.conversation_history))
            )
        return response


class GeminiProvider(CliProvider):
    def __init__(self, api_key: str | None = None, *, binary: str = "gemini") -> None:
        super().__init__(
            "gemini",
            [binary, "-p"],
            api_key=api_key,
            api_key_env="GEMINI_API_KEY",
            max_tokens=1_000_000,
        )


class CodexProvider(CliProvider):
    def __init__(self, api_key: str | None = None, *, binary: str = "codex") -> None:
        super().__init__(
            "codex",
            [binary, "exec", "--skip-git-repo-check"],
            api_key=api_key,
            api_key_env="OPENAI_API_KEY",
            max_tokens=200_000,
        )

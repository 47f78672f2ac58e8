"""Provider capability contract consumed by the executor."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from ai_chain.context import Context
from ai_chain.models import Capabilities, Response

EMPTY_RESPONSE = "(empty response)"


class Provider(ABC):
    """An AI backend reachable by name from the pipeline DSL.

    Implementations must be safe to share between runs: the executor
    keeps one instance per name and never mutates it.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identity, used as the DSL token and registry key."""

    @abstractmethod
    async def execute(self, prompt: str, context: Context) -> Response:
        """Run *prompt* against the backend and return its response.

        Raises:
            ProviderInvocationError: On transport, auth or backend failure.
        """

    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Static description of what this backend supports."""

    async def stream(self, prompt: str, context: Context) -> AsyncIterator[str]:
        """Yield response chunks.

        Backends here do not stream incrementally, so the default is a
        single terminal chunk holding the full response.
        """
        response = await self.execute(prompt, context)
        yield response.content

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

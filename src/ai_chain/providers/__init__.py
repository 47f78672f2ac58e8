"""Provider factory: routes a resolved auth method to an implementation.

Routing:
  - "claude" → ClaudeProvider (claude-agent-sdk; CLI session or API key)
  - "gemini" → GeminiProvider (gemini CLI)
  - "codex"  → CodexProvider  (codex CLI)
"""

from __future__ import annotations

from ai_chain.auth import ApiKeyAuth, AuthMethod, CliAuth
from ai_chain.errors import ProviderNotSupportedError
from ai_chain.providers.base import Provider
from ai_chain.providers.claude import ClaudeProvider
from ai_chain.providers.cli import CliProvider, CodexProvider, GeminiProvider

SUPPORTED_PROVIDERS: tuple[str, ...] = ("claude", "gemini", "codex")

_FACTORIES = {
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
    "codex": CodexProvider,
}


def create_provider(name: str, auth: AuthMethod) -> Provider:
    """Build the provider *name* authenticated with *auth*.

    Raises:
        ProviderNotSupportedError: For unknown names or auth methods the
            provider cannot use (browser and account-based flows).
    """
    factory = _FACTORIES.get(name)
    if factory is None:
        raise ProviderNotSupportedError(f"Unknown provider: {name}")

    match auth:
        case ApiKeyAuth(key=key):
            return factory(api_key=key)
        case CliAuth():
            return factory()
        case _:
            raise ProviderNotSupportedError(
                f"Provider '{name}' does not support {auth.kind} authentication"
            )


__all__ = [
    "ClaudeProvider",
    "CliProvider",
    "CodexProvider",
    "create_provider",
    "GeminiProvider",
    "Provider",
    "SUPPORTED_PROVIDERS",
]

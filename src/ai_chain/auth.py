"""Credential discovery for providers.

``AuthManager.detect_auth`` walks an ordered list of probes and returns
the first credential found:

1. an existing CLI/desktop session marker under the home directory,
2. an API key set explicitly on the manager,
3. provider-specific environment variable aliases,
4. the generic ``<PROVIDER>_API_KEY`` variable.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

from ai_chain.errors import AuthResolutionError

_log = logging.getLogger("ai_chain")


# ── Auth methods ─────────────────────────────────────────────────


class ApiKeyAuth(BaseModel):
    kind: Literal["api_key"] = "api_key"
    key: str


class CliAuth(BaseModel):
    kind: Literal["cli"] = "cli"


class BrowserAuth(BaseModel):
    kind: Literal["browser"] = "browser"
    callback_url: str


class AccountBasedAuth(BaseModel):
    kind: Literal["account"] = "account"
    provider: str
    session_token: str | None = None


AuthMethod = ApiKeyAuth | CliAuth | BrowserAuth | AccountBasedAuth


# ── Probe configuration ──────────────────────────────────────────

# Files whose presence means the provider's own CLI is logged in.
SESSION_MARKERS: dict[str, tuple[str, ...]] = {
    "claude": (".claude/config.json", ".claude/.credentials.json"),
    "gemini": (".gemini/config.json", ".gemini/oauth_creds.json"),
    "codex": (".codex/config.json", ".codex/auth.json"),
}

ENV_ALIASES: dict[str, tuple[str, ...]] = {
    "claude": ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "codex": ("OPENAI_API_KEY", "CODEX_API_KEY"),
}

Probe = Callable[[str], AuthMethod | None]


class AuthManager:
    """Resolve which credential method is available for a provider.

    Args:
        home: Directory searched for session markers (defaults to the
            user's home directory).
        environ: Environment mapping (defaults to ``os.environ``).
    """

    def __init__(
        self,
        home: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._home = home
        self._environ = environ if environ is not None else os.environ
        self._api_keys: dict[str, str] = {}

    def set_api_key(self, provider: str, api_key: str) -> None:
        self._api_keys[provider] = api_key

    def probes(self) -> list[Probe]:
        """Probe strategies in precedence order."""
        return [
            self._probe_cli_session,
            self._probe_explicit_key,
            self._probe_env_aliases,
            self._probe_generic_env,
        ]

    def detect_auth(self, provider: str) -> AuthMethod:
        """Return the first credential found for *provider*.

        Raises:
            AuthResolutionError: If no probe finds anything.
        """
        for probe in self.probes():
            method = probe(provider)
            if method is not None:
                _log.debug("Auth for %s resolved by %s", provider, probe.__name__)
                return method
        raise AuthResolutionError(f"No authentication found for provider: {provider}")

    def session_marker(self, provider: str) -> Path | None:
        """Path of the first existing session marker, if any."""
        home = self._home if self._home is not None else Path.home()
        for relative in SESSION_MARKERS.get(provider, ()):
            candidate = home / relative
            if candidate.exists():
                return candidate
        return None

    # ── Probes ───────────────────────────────────────────────────

    def _probe_cli_session(self, provider: str) -> CliAuth | None:
        return CliAuth() if self.session_marker(provider) is not None else None

    def _probe_explicit_key(self, provider: str) -> ApiKeyAuth | None:
        key = self._api_keys.get(provider)
        return ApiKeyAuth(key=key) if key else None

    def _probe_env_aliases(self, provider: str) -> ApiKeyAuth | None:
        for var in ENV_ALIASES.get(provider, ()):
            if value := self._environ.get(var):
                return ApiKeyAuth(key=value)
        return None

    def _probe_generic_env(self, provider: str) -> ApiKeyAuth | None:
        value = self._environ.get(f"{provider.upper()}_API_KEY")
        return ApiKeyAuth(key=value) if value else None

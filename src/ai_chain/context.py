"""Pipeline execution context.

Conversation history, tracked files, environment and metadata that flow
through every step of a pipeline run. Each step sees what earlier steps
appended; derived copies (provider-filtered views, scoped sub-contexts)
never write back into their source unless explicitly merged.
"""

from __future__ import annotations

import math
import os
from datetime import datetime, timedelta, timezone
from pathlib import PurePath
from typing import Any, Iterable

from pydantic import BaseModel, Field

from ai_chain.errors import ContextValidationError
from ai_chain.models import ContextDiff, Message, Response

MAX_HISTORY_MESSAGES = 1000
MAX_METADATA_STRING_CHARS = 10_000
MAX_ENV_VALUE_CHARS = 1000
MAX_FILE_CONTENT_CHARS = 100_000

RESERVED_METADATA_KEYS: frozenset[str] = frozenset(
    {"last_response", "step_results", "filtered_for_provider", "focus_mode", "scope"}
)

# Providers that only get the tail of the conversation.
HISTORY_WINDOWS: dict[str, int] = {"gemini": 10}
# Providers that get a focus-mode marker in metadata.
FOCUS_MODES: dict[str, str] = {"codex": "code"}

_MISSING = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _word_tokens(text: str) -> float:
    return len(text.split()) * 1.3


class Context(BaseModel):
    """Accumulating conversational state shared by every step in a run.

    This is the one mutable object in the engine. Every mutating method
    refreshes ``last_updated``.
    """

    conversation_history: list[Message] = Field(default_factory=list)
    current_files: list[str] = Field(default_factory=list)
    file_contents: dict[str, str] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    scopes: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    last_updated: datetime = Field(default_factory=_now)

    def _touch(self) -> None:
        self.last_updated = _now()

    def clone(self) -> Context:
        return self.model_copy(deep=True)

    # ── History ──────────────────────────────────────────────────

    def add_message(self, message: Message) -> None:
        self.conversation_history.append(message)
        self._touch()

    def truncate_to_limit(self, max_messages: int) -> None:
        """Keep only the most recent *max_messages* messages."""
        if len(self.conversation_history) > max_messages:
            keep = max(max_messages, 0)
            self.conversation_history = (
                self.conversation_history[-keep:] if keep else []
            )
        self._touch()

    # ── Files ────────────────────────────────────────────────────

    def add_file(self, path: str | os.PathLike[str]) -> None:
        key = os.fspath(path)
        if key not in self.current_files:
            self.current_files.append(key)
        self._touch()

    def add_file_with_content(
        self, path: str | os.PathLike[str], content: str
    ) -> None:
        key = os.fspath(path)
        if key not in self.current_files:
            self.current_files.append(key)
        self.file_contents[key] = content
        self._touch()

    def get_file_content(self, path: str | os.PathLike[str]) -> str | None:
        return self.file_contents.get(os.fspath(path))

    def remove_file(self, path: str | os.PathLike[str]) -> None:
        key = os.fspath(path)
        if key in self.current_files:
            self.current_files.remove(key)
        self.file_contents.pop(key, None)
        self._touch()

    # ── Environment ──────────────────────────────────────────────

    def inherit_environment(self, other: Context) -> None:
        """Copy *other*'s environment entries that this context lacks."""
        for key, value in other.environment.items():
            self.environment.setdefault(key, value)
        self._touch()

    # ── Enrichment ───────────────────────────────────────────────

    def enhance_with_response(self, response: Response) -> None:
        """Record a step response so later steps can see its signals.

        Sets ``last_response``, appends a ``{content, metadata, timestamp}``
        record to the ``step_results`` array, and copies each response
        metadata entry to ``response_<key>``.
        """
        timestamp = _now().isoformat()
        self.metadata["last_response"] = response.content

        step_results = self.metadata.get("step_results")
        if not isinstance(step_results, list):
            step_results = []
        step_results.append({
            "content": response.content,
            "metadata": dict(response.metadata),
            "timestamp": timestamp,
        })
        self.metadata["step_results"] = step_results

        for key, value in response.metadata.items():
            self.metadata[f"response_{key}"] = value
        self._touch()

    def cleanup_expired(self, max_age: timedelta) -> int:
        """Drop ``step_results`` records older than *max_age*.

        Returns the number of records removed.
        """
        records = self.metadata.get("step_results")
        if not isinstance(records, list):
            return 0

        cutoff = _now() - max_age
        kept = []
        for record in records:
            stamp = record.get("timestamp") if isinstance(record, dict) else None
            if stamp is not None and datetime.fromisoformat(stamp) < cutoff:
                continue
            kept.append(record)

        removed = len(records) - len(kept)
        if removed:
            self.metadata["step_results"] = kept
            self._touch()
        return removed

    # ── Derived views ────────────────────────────────────────────

    def filter_for_provider(
        self, provider_name: str, excluded_keys: Iterable[str] = ()
    ) -> Context:
        """Return a copy shaped for *provider_name*; ``self`` is untouched."""
        filtered = self.clone()
        for key in excluded_keys:
            filtered.metadata.pop(key, None)

        window = HISTORY_WINDOWS.get(provider_name)
        if window is not None and len(filtered.conversation_history) > window:
            filtered.conversation_history = filtered.conversation_history[-window:]

        focus = FOCUS_MODES.get(provider_name)
        if focus is not None:
            filtered.metadata["focus_mode"] = focus

        filtered.metadata["filtered_for_provider"] = provider_name
        filtered.scopes.append(f"provider:{provider_name}")
        filtered._touch()
        return filtered

    def create_scoped(self, scope: str) -> Context:
        """Copy this context for a sub-execution labelled *scope*."""
        scoped = self.clone()
        scoped.scopes.append(scope)
        scoped._touch()
        return scoped

    def merge_scope(self, scoped: Context) -> None:
        """Fold a scoped copy's additions back into this context."""
        self.apply_diff(self.diff(scoped))
        for path in scoped.current_files:
            if path not in self.current_files:
                self.current_files.append(path)
        self.file_contents.update(scoped.file_contents)
        self.environment.update(scoped.environment)
        self._touch()

    # ── Diffing ──────────────────────────────────────────────────

    def diff(self, other: Context) -> ContextDiff:
        """Messages appended in *other* plus metadata that differs.

        Removed messages are not tracked.
        """
        own_len = len(self.conversation_history)
        added = [
            m.model_copy() for m in other.conversation_history[own_len:]
        ]
        changes = {
            key: value
            for key, value in other.metadata.items()
            if self.metadata.get(key, _MISSING) != value
        }
        return ContextDiff(added_messages=added, metadata_changes=changes)

    def apply_diff(self, diff: ContextDiff) -> None:
        self.conversation_history.extend(diff.added_messages)
        self.metadata.update(diff.metadata_changes)
        self._touch()

    # ── Checks ───────────────────────────────────────────────────

    def validate(self) -> None:  # type: ignore[override]
        """Raise ContextValidationError on the first limit violation.

        Checked in order: file paths, metadata, history, environment,
        cached file contents.
        """
        for path in self.current_files:
            if not path:
                raise ContextValidationError("File path cannot be empty")
            if ".." in PurePath(path).parts:
                raise ContextValidationError(
                    f"File path contains parent directory traversal: {path}"
                )

        for key, value in self.metadata.items():
            if isinstance(value, str) and len(value) > MAX_METADATA_STRING_CHARS:
                raise ContextValidationError(
                    f"Metadata value for '{key}' exceeds "
                    f"{MAX_METADATA_STRING_CHARS} characters"
                )
            if key in RESERVED_METADATA_KEYS and value is None:
                raise ContextValidationError(
                    f"Reserved metadata key '{key}' cannot be null"
                )

        if len(self.conversation_history) > MAX_HISTORY_MESSAGES:
            raise ContextValidationError(
                f"Conversation history has {len(self.conversation_history)} "
                f"messages (limit {MAX_HISTORY_MESSAGES})"
            )

        for key, value in self.environment.items():
            if not key:
                raise ContextValidationError("Environment key cannot be empty")
            if len(value) > MAX_ENV_VALUE_CHARS:
                raise ContextValidationError(
                    f"Environment value for '{key}' exceeds "
                    f"{MAX_ENV_VALUE_CHARS} characters"
                )

        for path, content in self.file_contents.items():
            if len(content) > MAX_FILE_CONTENT_CHARS:
                raise ContextValidationError(
                    f"Content of '{path}' exceeds {MAX_FILE_CONTENT_CHARS} characters"
                )

    def estimate_tokens(self) -> int:
        """Rough token estimate; not a provider-verified count."""
        total = 50.0
        for message in self.conversation_history:
            total += _word_tokens(message.content) + 5
        for content in self.file_contents.values():
            total += _word_tokens(content) + 10
        for value in self.metadata.values():
            total += _word_tokens(value) if isinstance(value, str) else 5
        for key, value in self.environment.items():
            total += (len(key) + len(value)) / 4
        return math.ceil(total)

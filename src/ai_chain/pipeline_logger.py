"""Structured JSON logging for pipeline runs.

Writes JSON-lines so a failed chain can be replayed step by step after
the fact. Each log entry is a single JSON object on one line.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

_logger = logging.getLogger("ai_chain")

PREVIEW_CHARS = 200


def configure_logging(
    log_dir: str | Path, level: int = logging.DEBUG
) -> None:
    """Set up pipeline logging to write JSON-lines to a file.

    Args:
        log_dir: Directory to write ``pipeline.log`` into.
        level: Logging level (default: DEBUG).
    """
    log_path = Path(log_dir) / "pipeline.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(str(log_path))
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    _logger.addHandler(handler)
    _logger.setLevel(level)


def _log(event: dict[str, Any], level: int = logging.INFO) -> None:
    _logger.log(level, json.dumps(event, default=str, ensure_ascii=False))


def log_pipeline_start(chain: str, step_count: int) -> None:
    _log({"event": "pipeline_start", "chain": chain, "steps": step_count})


def log_step_start(step_index: int, provider: str, prompt: str) -> None:
    _log({
        "event": "step_start",
        "step_index": step_index,
        "provider": provider,
        "prompt_preview": prompt[:PREVIEW_CHARS],
    })


def log_step_retry(step_index: int, attempt: int, error: str) -> None:
    _log(
        {
            "event": "step_retry",
            "step_index": step_index,
            "attempt": attempt,
            "error": error,
        },
        logging.WARNING,
    )


def log_step_complete(step_index: int, duration_ms: float, retries: int) -> None:
    _log({
        "event": "step_complete",
        "step_index": step_index,
        "duration_ms": round(duration_ms, 2),
        "retries": retries,
    })


def log_step_failed(step_index: int, error: str, retries: int) -> None:
    _log(
        {
            "event": "step_failed",
            "step_index": step_index,
            "error": error,
            "retries": retries,
        },
        logging.ERROR,
    )


def log_pipeline_complete(response_count: int, duration_ms: float) -> None:
    _log({
        "event": "pipeline_complete",
        "responses": response_count,
        "duration_ms": round(duration_ms, 2),
    })

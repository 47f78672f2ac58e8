"""Command-line interface for ai-chain.

Enables execution via ``python -m ai_chain`` or a plain ``ai-chain``
command after install.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ai_chain import __version__
from ai_chain.auth import ApiKeyAuth, AuthManager
from ai_chain.context import Context
from ai_chain.errors import (
    AuthResolutionError,
    PipelineError,
    PipelineLoadError,
    ProviderNotSupportedError,
)
from ai_chain.executor import PipelineExecutor
from ai_chain.models import ExecutionConfig, Message, MessageRole, PipelineStep, Response
from ai_chain.parser import parse, validate_providers
from ai_chain.pipeline_logger import configure_logging
from ai_chain.providers import SUPPORTED_PROVIDERS, create_provider

_log = logging.getLogger("ai_chain")

# ── Human-readable help strings ──────────────────────────────────────────────

_TOP_DESCRIPTION = """\
Chain prompts across AI providers (claude, gemini, codex).

A pipeline is a DSL string such as "claude:design -> gemini:implement".
Each step's answer is appended to a shared conversation that the next
step sees. Providers are registered automatically when a CLI session or
an API key is detected.
"""

_TOP_EPILOG = """\
Quick examples:
  ai-chain execute --provider claude --prompt "Explain this diff" --context diff.txt
  ai-chain pipeline "claude:design -> gemini:implement -> codex:review"
  ai-chain run pipeline.yaml --continue-on-error
  ai-chain check-auth gemini
"""

_PIPELINE_EPILOG = """\
DSL grammar:
  step ("->" step)*     where step = provider ":" action

  The first colon splits provider from action, so actions may contain
  colons. Whitespace around steps and arrows is ignored.

Output:
  One line per step: "[N] provider: response".
  With --continue-on-error a failed step prints "[N] Error in step N: ..."
  and the run goes on; otherwise the first failure exits with code 1.
"""

_RUN_EPILOG = """\
Pipeline file format (YAML):

  execution:                # optional, flags below override it
    continue_on_error: true
    max_retries: 2
  chain: "claude:design -> gemini:implement"
  # or, instead of chain:
  steps:
    - provider: claude
      action: design
      context: focus on the public API
      transform: {kind: json_field, field: plan, fallback: return_error}

Transform kinds: identity, json_field, summarize, jsonata, schema.
"""


# ── Argument parser ───────────────────────────────────────────────────────────


def _add_execution_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--context", "-c",
        type=Path,
        metavar="FILE",
        help="Text file added to the conversation as a system message.",
    )
    p.add_argument(
        "--no-stream",
        action="store_true",
        help="Call providers with execute() instead of stream().",
    )
    p.add_argument(
        "--continue-on-error",
        action="store_true",
        default=None,
        help="Record failed steps as error placeholders and keep going.",
    )
    p.add_argument(
        "--max-retries",
        type=int,
        metavar="N",
        help="Retries per step after a provider failure (default 0).",
    )
    p.add_argument(
        "--retry-delay-ms",
        type=int,
        metavar="MS",
        help="Delay between retries in milliseconds (default 1000).",
    )
    p.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Deadline for each provider call.",
    )
    p.add_argument(
        "--log-dir",
        type=Path,
        metavar="DIR",
        help=(
            "Write JSONL execution logs to DIR/pipeline.log (step_start, "
            "step_retry, step_complete, step_failed, ...)."
        ),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-chain",
        description=_TOP_DESCRIPTION,
        epilog=_TOP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    # ── execute ──────────────────────────────────────────────────────────────
    exec_p = sub.add_parser(
        "execute",
        help="Send a single prompt to one provider",
    )
    exec_p.add_argument("--provider", "-p", required=True, help="claude, gemini or codex")
    exec_p.add_argument("--prompt", "-P", required=True, help="Prompt text")
    exec_p.add_argument(
        "--api-key",
        help="API key to use when no session or key is detected for the provider.",
    )
    _add_execution_flags(exec_p)

    # ── pipeline ─────────────────────────────────────────────────────────────
    pipe_p = sub.add_parser(
        "pipeline",
        help="Run a DSL chain of provider:action steps",
        epilog=_PIPELINE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pipe_p.add_argument("chain", help='e.g. "claude:design -> gemini:implement"')
    _add_execution_flags(pipe_p)

    # ── run ──────────────────────────────────────────────────────────────────
    run_p = sub.add_parser(
        "run",
        help="Run a YAML pipeline file",
        epilog=_RUN_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_p.add_argument("pipeline", type=Path, help="Path to the pipeline YAML file")
    _add_execution_flags(run_p)

    # ── validate ─────────────────────────────────────────────────────────────
    val_p = sub.add_parser(
        "validate",
        help="Statically validate a YAML pipeline file without running it",
    )
    val_p.add_argument("pipeline", type=Path, help="Path to the pipeline YAML file")

    # ── misc ─────────────────────────────────────────────────────────────────
    sub.add_parser("list-providers", help="List providers with detected credentials")
    auth_p = sub.add_parser("check-auth", help="Show how a provider would authenticate")
    auth_p.add_argument("provider")
    sub.add_parser("version", help="Print the ai-chain version")

    return parser


# ── Helpers ───────────────────────────────────────────────────────────────────


def _register_detected_providers(
    executor: PipelineExecutor, auth: AuthManager
) -> None:
    """Register every supported provider whose credentials can be found."""
    for name in SUPPORTED_PROVIDERS:
        try:
            method = auth.detect_auth(name)
            executor.register_provider(name, create_provider(name, method))
        except (AuthResolutionError, ProviderNotSupportedError) as e:
            _log.debug("Skipping provider %s: %s", name, e)


def _execution_config(
    args: argparse.Namespace, base: ExecutionConfig | None = None
) -> ExecutionConfig:
    """Merge CLI flags over *base*; unset flags keep the base value."""
    overrides = {
        "continue_on_error": args.continue_on_error,
        "max_retries": args.max_retries,
        "retry_delay_ms": args.retry_delay_ms,
        "timeout_seconds": args.timeout,
    }
    config = base or ExecutionConfig()
    try:
        return ExecutionConfig.model_validate(
            {**config.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
        )
    except PydanticValidationError as e:
        raise PipelineLoadError(f"Invalid execution options: {e}") from e


def _initial_context(path: Path | None) -> Context:
    context = Context()
    if path is not None:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PipelineLoadError(f"Cannot read context file {path}: {e}") from e
        context.add_file(path)
        context.add_message(
            Message(role=MessageRole.SYSTEM, content=f"Context file {path}:\n{text}")
        )
    return context


def _make_executor(
    args: argparse.Namespace, config: ExecutionConfig | None = None
) -> PipelineExecutor:
    if getattr(args, "log_dir", None):
        configure_logging(args.log_dir)
    auth = AuthManager()
    executor = PipelineExecutor(_execution_config(args, config))
    executor.set_auth_manager(auth)
    _register_detected_providers(executor, auth)
    return executor


async def _execute(
    executor: PipelineExecutor,
    steps: list[PipelineStep],
    args: argparse.Namespace,
) -> list[Response]:
    context = _initial_context(args.context)
    if args.no_stream:
        return await executor.execute(steps, context)
    return await executor.execute_streaming(steps, context)


def _print_responses(responses: list[Response], numbered: bool) -> None:
    for i, response in enumerate(responses, start=1):
        print(f"[{i}] {response.content}" if numbered else response.content)


# ── Command handlers ──────────────────────────────────────────────────────────


async def _cmd_execute(args: argparse.Namespace) -> int:
    executor = _make_executor(args)
    if not executor.has_provider(args.provider) and args.api_key:
        executor.register_provider(
            args.provider, create_provider(args.provider, ApiKeyAuth(key=args.api_key))
        )
    if not executor.has_provider(args.provider):
        print(
            f"Provider '{args.provider}' not available. Use --api-key or configure auth.",
            file=sys.stderr,
        )
        return 1

    step = PipelineStep(provider=args.provider, action=args.prompt)
    _print_responses(await _execute(executor, [step], args), numbered=False)
    return 0


async def _cmd_pipeline(args: argparse.Namespace) -> int:
    executor = _make_executor(args)
    steps = parse(args.chain)
    try:
        validate_providers(steps, executor.provider_names())
    except PipelineError:
        print("Tip: provide API keys or log in to the missing providers.", file=sys.stderr)
        raise
    _print_responses(await _execute(executor, steps, args), numbered=True)
    return 0


async def _cmd_run(args: argparse.Namespace) -> int:
    from ai_chain.loader import build_steps, load_pipeline

    definition = load_pipeline(args.pipeline)
    executor = _make_executor(args, definition.execution)
    steps = build_steps(definition)
    validate_providers(steps, executor.provider_names())
    _print_responses(await _execute(executor, steps, args), numbered=True)
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    from ai_chain.validator import load_and_validate_pipeline

    definition, result = load_and_validate_pipeline(args.pipeline, SUPPORTED_PROVIDERS)

    if result.ok:
        steps = definition.steps if definition.steps is not None else parse(definition.chain or "")
        print(f"Pipeline is valid ({len(steps)} steps)")
        return 0

    for d in result.diagnostics:
        print(f"[{d.severity.value}] step {d.step_index}.{d.field}: {d.message}", file=sys.stderr)
    print(
        f"\n{len(result.errors)} error(s), {len(result.warnings)} warning(s)",
        file=sys.stderr,
    )
    return 1


def _cmd_list_providers() -> int:
    executor = PipelineExecutor()
    _register_detected_providers(executor, AuthManager())
    names = executor.provider_names()
    if not names:
        print("No providers registered (auth not detected). Use --api-key on execute.")
    for name in names:
        print(name)
    return 0


def _cmd_check_auth(args: argparse.Namespace) -> int:
    try:
        method = AuthManager().detect_auth(args.provider)
    except AuthResolutionError as e:
        print(f"{args.provider}: auth not found ({e})")
        return 1
    print(f"{args.provider}: {method.kind} credentials detected")
    return 0


# ── Entry point ───────────────────────────────────────────────────────────────


def _dispatch(args: argparse.Namespace) -> int:
    match args.command:
        case "execute":
            return asyncio.run(_cmd_execute(args))
        case "pipeline":
            return asyncio.run(_cmd_pipeline(args))
        case "run":
            return asyncio.run(_cmd_run(args))
        case "validate":
            return _cmd_validate(args)
        case "list-providers":
            return _cmd_list_providers()
        case "check-auth":
            return _cmd_check_auth(args)
        case "version":
            print(f"ai-chain version {__version__}")
            return 0
    raise AssertionError(f"unhandled command {args.command}")


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        sys.exit(_dispatch(args))
    except PipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

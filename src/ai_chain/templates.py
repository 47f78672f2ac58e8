"""Jinja2 rendering of pipeline context into provider prompt text.

Providers that take a single text prompt (CLI tools, one-turn SDK
queries) see earlier steps through this transcript. StrictUndefined
ensures missing variables blow up immediately instead of silently
rendering empty strings.
"""

from __future__ import annotations

from typing import Any

import jinja2

from ai_chain.context import Context

_ENV = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)

CONTEXT_TEMPLATE = """\
{% if args.history %}
Conversation so far:
{% for message in args.history %}
[{{ message.role }}] {{ message.content }}
{% endfor %}

{% endif %}
{% if args.files %}
Files in context:
{% for file in args.files %}
--- {{ file.path }} ---
{{ file.content }}
{% endfor %}

{% endif %}
{% if args.prompt %}
{{ args.prompt }}
{% endif %}
"""


def render_template(template_str: str, variables: dict[str, Any]) -> str:
    """Render a Jinja2 template string with variables available as ``args``.

    Raises:
        jinja2.UndefinedError: If the template references a variable
            that doesn't exist in *variables*.
    """
    template = _ENV.from_string(template_str)
    return template.render(args=variables)


def _context_variables(context: Context, prompt: str) -> dict[str, Any]:
    return {
        "history": [
            {"role": m.role.value, "content": m.content}
            for m in context.conversation_history
        ],
        "files": [
            {"path": path, "content": context.file_contents[path]}
            for path in context.current_files
            if path in context.file_contents
        ],
        "prompt": prompt,
    }


def render_prompt(prompt: str, context: Context) -> str:
    """Prefix *prompt* with the context transcript (history, cached files)."""
    return render_template(CONTEXT_TEMPLATE, _context_variables(context, prompt)).strip()


def render_context(context: Context) -> str:
    """The context transcript alone; empty string for an empty context."""
    return render_prompt("", context)

"""JSONata expression evaluation over parsed response payloads.

Thin wrapper over jsonata-python used by ``JsonataTransform`` and by the
pre-flight validator to reject expressions that will never compile.
"""

from __future__ import annotations

from typing import Any

import jsonata

from ai_chain.errors import TransformOperationError


def compile_expression(expression: str) -> jsonata.Jsonata:
    """Parse *expression*, raising TransformOperationError on bad syntax."""
    try:
        return jsonata.Jsonata(expression)
    except Exception as e:
        raise TransformOperationError(
            f"Invalid JSONata expression '{expression}': {e}"
        ) from e


def evaluate(expression: str, data: Any) -> Any:
    """Evaluate a JSONata expression against a JSON document.

    Args:
        expression: JSONata expression string (e.g., "plan.steps[0]",
            "$count(items)", '{"title": name}').
        data: Parsed JSON value the expression runs against.

    Returns:
        The resolved value, or None when the path does not exist
        (JSONata's undefined behavior).

    Raises:
        TransformOperationError: If the expression is invalid or fails.
    """
    expr = compile_expression(expression)
    try:
        return expr.evaluate(data)
    except Exception as e:
        raise TransformOperationError(
            f"Expression '{expression}' failed: {e}"
        ) from e

"""jq filtering of response bodies."""

import json
from typing import Any, List

import jq

from .errors import FilterError

RESULT_SEPARATOR = "\n---\n"


def _run(query: str, value: Any) -> List[Any]:
    if not query.strip():
        raise FilterError("Empty filter")
    try:
        program = jq.compile(query)
    except ValueError as e:
        raise FilterError(f"Parse error: {e}") from e
    try:
        return program.input_value(value).all()
    except ValueError as e:
        raise FilterError(f"Filter execution error: {e}") from e


def apply(query: str, value: Any) -> Any:
    """Apply ``query`` to a JSON value.

    One result is returned as is, several as a list, none as ``None``.
    """
    results = _run(query, value)
    if not results:
        return None
    if len(results) == 1:
        return results[0]
    return results


def apply_to_text(text: str, query: str) -> str:
    """Filter a JSON document and pretty-print each result."""
    try:
        value = json.loads(text)
    except ValueError as e:
        raise FilterError(f"Invalid JSON: {e}") from e

    results = _run(query, value)
    if not results:
        return "null"
    return RESULT_SEPARATOR.join(
        json.dumps(result, indent=2, ensure_ascii=False) for result in results
    )

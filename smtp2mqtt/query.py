"""JSONPath evaluation against the parsed-message tree."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from jsonpath_ng.ext import parse as parse_jsonpath
from jsonpath_ng.jsonpath import JSONPath


class QueryError(ValueError):
    """The query expression could not be parsed."""


@lru_cache(maxsize=256)
def compile_query(expression: str) -> JSONPath:
    """Parse *expression* once; later calls reuse the compiled path."""
    try:
        return parse_jsonpath(expression)
    except Exception as exc:
        raise QueryError(f"invalid query {expression!r}: {exc}") from exc


def evaluate(tree: Any, expression: str) -> list[Any]:
    """Return every value *expression* matches in *tree* (possibly none).

    Raises :class:`QueryError` for a malformed expression.  The tree is
    never modified.
    """
    path = compile_query(expression)
    try:
        return [match.value for match in path.find(tree)]
    except Exception as exc:
        raise QueryError(f"query {expression!r} failed: {exc}") from exc

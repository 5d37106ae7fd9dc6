"""Sandboxed per-field transforms.

Transforms are single expressions evaluated by simpleeval, not Python code:
no statements, no imports, no dunder access.  The only names in scope are
``message`` (the parsed-message tree) and ``value`` (the extracted value),
plus the pure helpers in :data:`SAFE_FUNCTIONS`.  Dict keys can be read as
attributes, so ``message.subject`` and ``message["subject"]`` are the same.
"""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Any

from simpleeval import EvalWithCompoundTypes

from .values import to_json

SAFE_FUNCTIONS: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sorted": sorted,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "strip": lambda s: str(s).strip(),
    "from_json": json.loads,
    "to_json": to_json,
}


class TransformError(Exception):
    """A transform raised, was rejected by the sandbox, or ran out of time."""


class TransformSandbox:
    """Evaluates transform expressions in isolation, with a time limit.

    Every call gets a fresh evaluator and its own copy of the message tree,
    so nothing a script does is visible to other fields or messages.
    """

    def __init__(self, timeout_seconds: float = 1.0) -> None:
        self._timeout = timeout_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def evaluate(self, script: str, *, message: Any, value: Any) -> Any:
        """Evaluate *script* synchronously.  Errors propagate to the caller."""
        evaluator = EvalWithCompoundTypes(
            functions=dict(SAFE_FUNCTIONS),
            names={"message": copy.deepcopy(message), "value": value},
        )
        return evaluator.eval(script)

    async def run(self, script: str, *, message: Any, value: Any) -> Any:
        """Evaluate *script* off the event loop.

        Any failure, including the timeout, is raised as
        :class:`TransformError` with the original exception chained.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.evaluate, script, message=message, value=value),
                timeout=self._timeout,
            )
        except Exception as exc:
            raise TransformError(str(exc) or type(exc).__name__) from exc

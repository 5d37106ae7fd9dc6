"""Field values as they flow from query through transform to formatting.

A field value is one of:

* :data:`ABSENT`: nothing to publish (query matched nothing, or a
  transform produced ``None``);
* :class:`Matches`: the raw result of a query, zero or more values;
* any plain JSON-compatible value produced by a transform.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final


class _Absent:
    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Final = _Absent()


@dataclass(frozen=True)
class Matches:
    """Every value a query matched, in document order."""

    values: tuple[Any, ...]

    def collapse(self) -> Any:
        """Sole element for a single match, a list otherwise, ABSENT for none."""
        if not self.values:
            return ABSENT
        if len(self.values) == 1:
            return self.values[0]
        return list(self.values)


def to_json(value: Any) -> str:
    """Compact JSON text, non-ASCII kept as-is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def stringify(value: Any) -> str:
    """Total, deterministic plain-text rendering of a field value."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return json.dumps(
            value,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
            default=_json_default,
        )
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    return str(value)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return str(value)

"""Turn a (possibly transformed) field value into its MQTT payload text."""

from __future__ import annotations

from typing import Any

from .values import ABSENT, Matches, stringify, to_json


def format_value(value: Any, *, as_json: bool = False) -> Any:
    """Return the payload string for *value*, or ``ABSENT``.

    Query results are collapsed first, so a single match is published as
    the match itself rather than a one-element array.
    """
    if isinstance(value, Matches):
        value = value.collapse()
    if value is ABSENT:
        return ABSENT
    if as_json:
        return to_json(value)
    return stringify(value)

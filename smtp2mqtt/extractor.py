"""Field extraction pipeline: query -> transform -> format, per field."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from .config import FieldSpec
from .formatter import format_value
from .parser import ParsedMessage
from .query import QueryError, evaluate
from .transform import TransformError, TransformSandbox
from .values import ABSENT, Matches, stringify, to_json

logger = structlog.get_logger()

FieldMap = dict[str, Any]


class FieldExtractor:
    """Builds the field map for one message from the configured field specs.

    Holds no per-message state, so one instance serves every connection.
    Fields are independent of each other and are evaluated concurrently.
    """

    def __init__(self, fields: Mapping[str, FieldSpec], sandbox: TransformSandbox) -> None:
        self._fields = dict(fields)
        self._sandbox = sandbox

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return self._fields

    async def extract(self, message: ParsedMessage) -> FieldMap:
        """Return field name -> payload string, or ``ABSENT`` when there is nothing to publish."""
        tree = message.to_tree()
        names = list(self._fields)
        values = await asyncio.gather(
            *(self.extract_field(name, self._fields[name], tree) for name in names)
        )
        return dict(zip(names, values))

    async def extract_field(self, name: str, spec: FieldSpec, tree: Any) -> Any:
        value = self._query(name, spec, tree)

        if spec.transform:
            serialized = _transform_input(value, as_json=spec.value_as_json)
            try:
                value = await self._sandbox.run(spec.transform, message=tree, value=serialized)
            except TransformError as exc:
                logger.warning(
                    "transform_failed",
                    field=name,
                    error=str(exc),
                    error_type=type(exc.__cause__).__name__,
                )
                # Already serialized per value_as_json; as_json is not applied again.
                return ABSENT if serialized is None else serialized
            if value is None:
                value = ABSENT

        return format_value(value, as_json=spec.as_json)

    def _query(self, name: str, spec: FieldSpec, tree: Any) -> Any:
        try:
            matches = evaluate(tree, spec.query)
        except QueryError as exc:
            logger.warning("field_query_invalid", field=name, query=spec.query, error=str(exc))
            return ABSENT

        if not matches:
            logger.debug("field_query_no_match", field=name, query=spec.query)
            return ABSENT
        return Matches(tuple(matches))


def _transform_input(value: Any, *, as_json: bool) -> Any:
    """The ``value`` binding handed to a transform: JSON text or plain text."""
    if isinstance(value, Matches):
        value = value.collapse()
    if value is ABSENT:
        return None
    return to_json(value) if as_json else stringify(value)

"""Map a message's field map onto MQTT topics and payloads.

Topic layout::

    {base_topic}/sources/{source}/events/{event}   -> "true"
    {base_topic}/sources/{source}/fields/{field}   -> field payload

``source`` is the ``$source`` field when present, otherwise the session
identity.  Field names starting with ``$`` are control fields and are never
published under ``fields/``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import structlog

from .models import PublishOp
from .values import ABSENT

logger = structlog.get_logger()

CONTROL_PREFIX = "$"
SOURCE_FIELD = "$source"
EVENT_FIELD = "$event"
EVENT_PAYLOAD = "true"

_UNSAFE_SEGMENT_CHARS = re.compile(r"[/+#\x00]")
_REPEATED_SEPARATORS = re.compile(r"/{2,}")


class TopicError(ValueError):
    """A topic segment is empty or the base topic is unusable."""


def normalize_base_topic(base_topic: str) -> str:
    """Collapse duplicate separators and strip leading/trailing ones."""
    normalized = _REPEATED_SEPARATORS.sub("/", base_topic).strip("/")
    if not normalized:
        raise TopicError("base topic is empty")
    return normalized


def topic_segment(value: Any) -> str:
    """Render an untrusted value as exactly one topic level."""
    segment = _UNSAFE_SEGMENT_CHARS.sub("_", str(value))
    if not segment:
        raise TopicError("empty topic segment")
    return segment


def join_topic(base_topic: str, *segments: Any) -> str:
    """Join *segments* under *base_topic*, one topic level per segment."""
    return "/".join([normalize_base_topic(base_topic), *(topic_segment(s) for s in segments)])


def build_publish_ops(
    fields: Mapping[str, Any],
    base_topic: str,
    session_identity: str | None,
) -> list[PublishOp]:
    """Derive every publish for one message.

    Raises :class:`TopicError` when no usable source segment exists; in that
    case nothing can be published for the message.  An unusable event value
    or field name only drops that one publish.
    """
    source = fields.get(SOURCE_FIELD, ABSENT)
    if source is ABSENT or source is None:
        source = session_identity
    if source is None:
        raise TopicError("no $source field and no session identity")

    prefix = join_topic(base_topic, "sources", source)
    ops: list[PublishOp] = []

    event = fields.get(EVENT_FIELD, ABSENT)
    if event is not ABSENT and event is not None:
        try:
            ops.append(PublishOp(topic=join_topic(prefix, "events", event), payload=EVENT_PAYLOAD))
        except TopicError as exc:
            logger.warning("event_topic_invalid", event_value=event, error=str(exc))

    for name, value in fields.items():
        if name.startswith(CONTROL_PREFIX) or value is ABSENT:
            continue
        try:
            ops.append(PublishOp(topic=join_topic(prefix, "fields", name), payload=value))
        except TopicError as exc:
            logger.warning("field_topic_invalid", field=name, error=str(exc))

    return ops

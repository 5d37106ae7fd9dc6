"""Dead-letter handler: routes publishes that exhausted their retries."""

from __future__ import annotations

import structlog

from .models import DeadLetterEnvelope, PublishOp
from .publisher import MqttPublisher

logger = structlog.get_logger()


class DeadLetterHandler:
    """Wraps a failed :class:`PublishOp` in a :class:`DeadLetterEnvelope`
    and publishes it to the dead-letter topic.
    """

    def __init__(self, publisher: MqttPublisher) -> None:
        self._publisher = publisher

    async def send(self, op: PublishOp, *, error: str, attempts: int) -> None:
        """Build a dead-letter envelope and publish it.

        The broker is usually the reason the original publish failed, so a
        failure here is logged rather than raised.
        """
        envelope = DeadLetterEnvelope(original=op, error=error, attempts=attempts)
        logger.error(
            "publish_dead_lettered",
            topic=op.topic,
            error=error,
            attempts=attempts,
        )
        try:
            await self._publisher.send_dead_letter(envelope)
        except Exception as exc:
            logger.error("dead_letter_publish_failed", topic=op.topic, error=str(exc))

"""aiosmtpd handler: every accepted message is turned into MQTT publishes.

The SMTP side never sees pipeline errors.  Any credentials are accepted and
every DATA command is answered ``250 OK``, whether or not fields could be
extracted and published.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog
from aiosmtpd.smtp import SMTP, AuthResult, Envelope, LoginPassword, Session

from .extractor import FieldExtractor
from .models import PublishOp
from .parser import MessageParseError, MimeParser, SmtpEnvelope
from .topics import TopicError, build_publish_ops

logger = structlog.get_logger()

Deliver = Callable[[Sequence[PublishOp]], Awaitable[Any]]

ACCEPTED = "250 OK"


def accept_any_credentials(
    server: SMTP,
    session: Session,
    envelope: Envelope,
    mechanism: str,
    auth_data: Any,
) -> AuthResult:
    """aiosmtpd authenticator that accepts everything and keeps the login."""
    username = _login_name(auth_data)
    logger.debug("smtp_auth", username=username, mechanism=mechanism, peer=_peer_host(session))
    return AuthResult(success=True, auth_data=username)


class BridgeHandler:
    """aiosmtpd handler: parse, extract fields, publish."""

    def __init__(
        self,
        extractor: FieldExtractor,
        base_topic: str,
        deliver: Deliver,
        parser: MimeParser | None = None,
    ) -> None:
        self._extractor = extractor
        self._base_topic = base_topic
        self._deliver = deliver
        self._parser = parser or MimeParser()
        self.messages_received: int = 0
        self.messages_failed: int = 0

    async def handle_DATA(self, server: SMTP, session: Session, envelope: Envelope) -> str:
        self.messages_received += 1
        identity = session_identity(session)

        with structlog.contextvars.bound_contextvars(
            message_ref=uuid.uuid4().hex[:12],
            identity=identity,
        ):
            logger.info(
                "smtp_message_received",
                mail_from=envelope.mail_from,
                rcpt_tos=list(envelope.rcpt_tos),
                size=len(envelope.content or b""),
            )
            if not self._extractor.fields:
                logger.info("smtp_message_ignored", reason="no_fields_configured")
                return ACCEPTED

            try:
                await self.process(envelope, session, identity)
            except Exception:
                # Accept anyway: the sender must never see extraction errors.
                self.messages_failed += 1
                logger.exception("message_processing_failed")

        return ACCEPTED

    async def process(
        self,
        envelope: Envelope,
        session: Session,
        identity: str | None,
    ) -> list[PublishOp]:
        """Run the pipeline for one message and hand the publishes over.

        Returns the publishes that were attempted (empty on failure).
        """
        raw = envelope.original_content or envelope.content or b""
        if isinstance(raw, str):
            raw = raw.encode("utf-8", errors="surrogateescape")

        try:
            message = self._parser.parse(
                raw,
                SmtpEnvelope(
                    mail_from=envelope.mail_from,
                    rcpt_tos=tuple(envelope.rcpt_tos),
                    peer=_peer_host(session),
                    user=_authenticated_user(session),
                ),
            )
        except MessageParseError as exc:
            self.messages_failed += 1
            logger.error("message_parse_failed", error=str(exc))
            return []

        fields = await self._extractor.extract(message)

        try:
            ops = build_publish_ops(fields, self._base_topic, identity)
        except TopicError as exc:
            self.messages_failed += 1
            logger.error("topic_derivation_failed", error=str(exc))
            return []

        await self._deliver(ops)
        logger.info("smtp_message_published", publishes=len(ops))
        return ops


def session_identity(session: Session) -> str | None:
    """Authenticated login if there is one, otherwise the peer address."""
    return _authenticated_user(session) or _peer_host(session)


def _authenticated_user(session: Session) -> str | None:
    if not getattr(session, "authenticated", False):
        return None
    return _login_name(session.auth_data)


def _login_name(auth_data: Any) -> str | None:
    if isinstance(auth_data, LoginPassword):
        auth_data = auth_data.login
    if isinstance(auth_data, bytes):
        return auth_data.decode("utf-8", errors="replace")
    if isinstance(auth_data, str):
        return auth_data
    return None


def _peer_host(session: Session) -> str | None:
    peer = getattr(session, "peer", None)
    if isinstance(peer, (tuple, list)) and peer:
        return str(peer[0])
    if peer:
        return str(peer)
    return None

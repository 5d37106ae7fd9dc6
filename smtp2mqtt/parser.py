"""MIME parser: raw RFC 822 bytes + SMTP envelope -> ParsedMessage.

The resulting model is immutable.  Field queries never look at the model
itself but at :meth:`ParsedMessage.to_tree`, a plain JSON-compatible
projection computed once per message.
"""

from __future__ import annotations

import email
import email.policy
import email.utils
import hashlib
from email.message import EmailMessage
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageParseError(Exception):
    """The DATA payload could not be parsed into a message."""


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    address: str = ""


class AddressField(BaseModel):
    """A parsed address header: individual mailboxes plus the original text."""

    model_config = ConfigDict(frozen=True)

    value: tuple[Address, ...] = ()
    text: str = ""


class Attachment(BaseModel):
    """Attachment metadata.  The payload itself stays out of the query tree."""

    model_config = ConfigDict(frozen=True)

    filename: str | None = None
    content_type: str
    content_disposition: str | None = None
    content_id: str | None = None
    size: int
    checksum: str


class SmtpEnvelope(BaseModel):
    """What the SMTP session told us about the message."""

    model_config = ConfigDict(frozen=True)

    mail_from: str | None = None
    rcpt_tos: tuple[str, ...] = ()
    peer: str | None = None
    user: str | None = None


class ParsedMessage(BaseModel):
    """Structured, read-only representation of one inbound email."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_id: str | None = None
    subject: str | None = None
    from_: AddressField | None = Field(default=None, alias="from")
    to: AddressField | None = None
    cc: AddressField | None = None
    bcc: AddressField | None = None
    reply_to: AddressField | None = None
    in_reply_to: str | None = None
    references: tuple[str, ...] = ()
    priority: str = "normal"
    date: str | None = None
    text: str | None = None
    html: str | None = None
    headers: dict[str, str | tuple[str, ...]] = Field(default_factory=dict)
    attachments: tuple[Attachment, ...] = ()
    envelope: SmtpEnvelope = Field(default_factory=SmtpEnvelope)

    def to_tree(self) -> dict[str, Any]:
        """Project the message into plain dicts/lists/strings for querying.

        Every snake_case key is also reachable under its camelCase name
        (``messageId``, ``inReplyTo``, ``attachments[*].contentType``, ...)
        so queries written against mailparser output keep working.  Header
        names are left as received.  Both spellings point at equal values, so
        a recursive-descent query such as ``$..address`` matches aliased
        subtrees (``replyTo``) twice.
        """
        return _add_camel_aliases(self.model_dump(mode="json", by_alias=True))


class MimeParser:
    """Stateless parser: raw RFC 822 bytes -> ParsedMessage."""

    def parse(self, raw_bytes: bytes, envelope: SmtpEnvelope | None = None) -> ParsedMessage:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            body_text, body_html = self._extract_bodies(msg)
            return ParsedMessage(
                message_id=_header(msg, "Message-ID"),
                subject=_header(msg, "Subject"),
                from_=self._parse_address_field(msg, "From"),
                to=self._parse_address_field(msg, "To"),
                cc=self._parse_address_field(msg, "Cc"),
                bcc=self._parse_address_field(msg, "Bcc"),
                reply_to=self._parse_address_field(msg, "Reply-To"),
                in_reply_to=_header(msg, "In-Reply-To"),
                references=tuple(str(msg.get("References", "")).split()),
                priority=_priority(msg),
                date=self._parse_date(msg),
                text=body_text,
                html=body_html,
                headers=self._collect_headers(msg),
                attachments=tuple(self._extract_attachments(msg)),
                envelope=envelope or SmtpEnvelope(),
            )
        except MessageParseError:
            raise
        except Exception as exc:
            raise MessageParseError(str(exc)) from exc

    def _collect_headers(self, msg: EmailMessage) -> dict[str, str | tuple[str, ...]]:
        """Lower-cased header name -> value; repeated headers keep every value."""
        collected: dict[str, list[str]] = {}
        for name, value in msg.items():
            collected.setdefault(name.lower(), []).append(str(value))
        return {
            name: values[0] if len(values) == 1 else tuple(values)
            for name, values in collected.items()
        }

    def _extract_bodies(self, msg: EmailMessage) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if part.get_content_disposition() == "attachment":
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue

            payload = _decode_text(part)
            if content_type == "text/plain" and body_text is None:
                body_text = payload
            elif content_type == "text/html" and body_html is None:
                body_html = payload

        return body_text, body_html

    def _extract_attachments(self, msg: EmailMessage) -> list[Attachment]:
        attachments: list[Attachment] = []

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            disposition = part.get_content_disposition()
            filename = part.get_filename()
            if disposition != "attachment" and not filename:
                continue

            payload = part.get_payload(decode=True) or b""
            attachments.append(
                Attachment(
                    filename=filename,
                    content_type=part.get_content_type(),
                    content_disposition=disposition,
                    content_id=_header(part, "Content-ID"),
                    size=len(payload),
                    checksum=hashlib.md5(payload, usedforsecurity=False).hexdigest(),
                )
            )

        return attachments

    def _parse_address_field(self, msg: EmailMessage, name: str) -> AddressField | None:
        values = msg.get_all(name)
        if not values:
            return None
        text = ", ".join(str(v) for v in values)
        return AddressField(
            value=tuple(
                Address(name=display, address=addr)
                for display, addr in email.utils.getaddresses([str(v) for v in values])
                if addr
            ),
            text=text,
        )

    def _parse_date(self, msg: EmailMessage) -> str | None:
        raw = msg.get("Date")
        if raw is None:
            return None
        try:
            return email.utils.parsedate_to_datetime(str(raw)).isoformat()
        except (TypeError, ValueError):
            return str(raw)


def _header(msg: EmailMessage, name: str) -> str | None:
    value = msg.get(name)
    return None if value is None else str(value)


def _decode_text(part: EmailMessage) -> str:
    """Body text of *part*; unknown or lying charsets decode as UTF-8 with replacement."""
    try:
        return part.get_content()
    except (LookupError, UnicodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _priority(msg: EmailMessage) -> str:
    """``high``, ``normal`` or ``low`` from X-Priority, X-MSMail-Priority or Importance."""
    x_priority = str(msg.get("X-Priority", "")).strip()
    if x_priority[:1].isdigit():
        level = int(x_priority[0])
        if level in (1, 2):
            return "high"
        if level in (4, 5):
            return "low"
        return "normal"
    for name in ("X-MSMail-Priority", "Importance"):
        value = str(msg.get(name, "")).strip().lower()
        if value in ("high", "low"):
            return value
        if value:
            return "normal"
    return "normal"


def _add_camel_aliases(node: Any) -> Any:
    if isinstance(node, list):
        return [_add_camel_aliases(item) for item in node]
    if not isinstance(node, dict):
        return node
    aliased: dict[str, Any] = {}
    for key, value in node.items():
        value = value if key == "headers" else _add_camel_aliases(value)
        aliased[key] = value
        camel = to_camel(key)
        if camel != key:
            aliased.setdefault(camel, value)
    return aliased

"""Shared test fixtures for the smtp2mqtt test suite."""

from __future__ import annotations

from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from types import SimpleNamespace

import pytest

from smtp2mqtt.config import (
    BridgeConfig,
    FieldSpec,
    MqttConfig,
    RetryConfig,
    SmtpConfig,
)
from smtp2mqtt.parser import MimeParser, ParsedMessage, SmtpEnvelope


@pytest.fixture
def mqtt_config() -> MqttConfig:
    return MqttConfig(host="broker.test", port=1883, base_topic="home")


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
    )


@pytest.fixture
def field_specs() -> dict[str, FieldSpec]:
    return {
        "subject": FieldSpec(query="$.subject"),
        "sender": FieldSpec(query="$.from.value[0].address"),
    }


@pytest.fixture
def smtp_config(field_specs: dict[str, FieldSpec]) -> SmtpConfig:
    return SmtpConfig(name="SMTP2MQTT-test", port=12525, fields=field_specs)


@pytest.fixture
def bridge_config(
    mqtt_config: MqttConfig,
    smtp_config: SmtpConfig,
    retry_config: RetryConfig,
) -> BridgeConfig:
    return BridgeConfig(
        mqtt=mqtt_config,
        smtp=smtp_config,
        retry=retry_config,
        health_port=18080,
        log_json=False,
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str = "<test-001@example.com>",
    cc: str | None = None,
    extra_headers: list[tuple[str, str]] | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = message_id
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    if cc:
        msg["Cc"] = cc
    for name, value in extra_headers or []:
        msg[name] = value
    return msg.as_bytes()


def build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "Sensor Hub <hub@example.com>"
    msg["To"] = "one@example.com, Two <two@example.com>"
    msg["Message-ID"] = "<multi-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return build_plain_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


@pytest.fixture
def parsed_message(plain_eml_bytes: bytes) -> ParsedMessage:
    return MimeParser().parse(
        plain_eml_bytes,
        SmtpEnvelope(
            mail_from="sender@example.com",
            rcpt_tos=("recipient@example.com",),
            peer="192.0.2.10",
            user="alice",
        ),
    )


@pytest.fixture
def parsed_multipart(multipart_eml_bytes: bytes) -> ParsedMessage:
    return MimeParser().parse(multipart_eml_bytes)


# ------------------------------------------------------------------
# aiosmtpd stand-ins
# ------------------------------------------------------------------


@pytest.fixture
def auth_session() -> SimpleNamespace:
    """An SMTP session that authenticated as ``alice``."""
    return SimpleNamespace(peer=("192.0.2.10", 50123), authenticated=True, auth_data="alice")


@pytest.fixture
def anonymous_session() -> SimpleNamespace:
    return SimpleNamespace(peer=("192.0.2.20", 50124), authenticated=False, auth_data=None)

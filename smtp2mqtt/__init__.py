"""SMTP to MQTT bridge.

Public API re-exported here for convenience::

    from smtp2mqtt import FieldExtractor, build_publish_ops, load_config
"""

from .bridge import Smtp2MqttBridge
from .config import (
    BridgeConfig,
    ConfigError,
    FieldSpec,
    MqttConfig,
    RetryConfig,
    SmtpConfig,
    load_config,
)
from .extractor import FieldExtractor
from .formatter import format_value
from .handler import BridgeHandler, accept_any_credentials
from .models import BridgeStatus, DeadLetterEnvelope, HealthStatus, PublishOp
from .parser import MessageParseError, MimeParser, ParsedMessage
from .publisher import MqttPublisher
from .query import QueryError, evaluate
from .topics import TopicError, build_publish_ops, join_topic
from .transform import TransformSandbox
from .values import ABSENT, Matches

__all__ = [
    "ABSENT",
    "BridgeConfig",
    "BridgeHandler",
    "BridgeStatus",
    "ConfigError",
    "DeadLetterEnvelope",
    "FieldExtractor",
    "FieldSpec",
    "HealthStatus",
    "Matches",
    "MessageParseError",
    "MimeParser",
    "MqttConfig",
    "MqttPublisher",
    "ParsedMessage",
    "PublishOp",
    "QueryError",
    "RetryConfig",
    "Smtp2MqttBridge",
    "SmtpConfig",
    "TopicError",
    "TransformSandbox",
    "accept_any_credentials",
    "build_publish_ops",
    "evaluate",
    "format_value",
    "join_topic",
    "load_config",
]

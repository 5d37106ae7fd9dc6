"""Data models shared across the bridge."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BridgeStatus(str, Enum):
    """Runtime status of the bridge process."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class PublishOp(BaseModel):
    """One MQTT publish derived from a message's field map."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(description="Full MQTT topic")
    payload: str = Field(description="UTF-8 text payload")
    retain: bool = Field(default=False, description="Broker retain flag")


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service: str = Field(description="Name announced by the SMTP listener")
    status: BridgeStatus = Field(description="Current bridge status")
    uptime_seconds: float = Field(description="Seconds since the bridge started")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Counters and broker connectivity",
    )


class DeadLetterEnvelope(BaseModel):
    """Wrapper for a publish that failed after retry exhaustion."""

    original: PublishOp = Field(description="The publish that could not be delivered")
    error: str = Field(description="Final error message")
    attempts: int = Field(description="Total publish attempts made")
    failed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the publish was dead-lettered (UTC)",
    )

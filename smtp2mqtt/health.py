"""FastAPI liveness and readiness endpoints for the bridge.

``/health`` reports ``degraded`` (503) while the SMTP listener runs but the
broker connection is down; ``/ready`` needs both sides up.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import BridgeStatus, HealthStatus

if TYPE_CHECKING:
    from .bridge import Smtp2MqttBridge

HEALTHY = (BridgeStatus.RUNNING, BridgeStatus.STARTING)


def create_health_app(bridge: Smtp2MqttBridge) -> FastAPI:
    app = FastAPI(title=f"{bridge.config.smtp.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        current = bridge.current_status()
        status = HealthStatus(
            service=bridge.config.smtp.name,
            status=current,
            uptime_seconds=time.monotonic() - bridge.start_time,
            details=bridge.health_details(),
        )
        return JSONResponse(
            content=status.model_dump(mode="json"),
            status_code=200 if current in HEALTHY else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        smtp_listening = bridge.status == BridgeStatus.RUNNING
        mqtt_connected = bridge.health_details()["mqtt_connected"]
        is_ready = smtp_listening and mqtt_connected
        return JSONResponse(
            content={
                "ready": is_ready,
                "smtp_listening": smtp_listening,
                "mqtt_connected": mqtt_connected,
            },
            status_code=200 if is_ready else 503,
        )

    return app

"""Smtp2MqttBridge: wires up infrastructure and runs the SMTP listener."""

from __future__ import annotations

import asyncio
import signal
import time
from collections.abc import Sequence

import structlog
import uvicorn
from aiosmtpd.smtp import SMTP

from .config import BridgeConfig
from .dead_letter import DeadLetterHandler
from .extractor import FieldExtractor
from .handler import BridgeHandler, accept_any_credentials
from .health import create_health_app
from .logging import setup_logging
from .models import BridgeStatus, PublishOp
from .publisher import MqttPublisher
from .retry import with_retry
from .transform import TransformSandbox

logger = structlog.get_logger()


class Smtp2MqttBridge:
    """SMTP listener whose messages are republished to MQTT.

    ``run()`` connects to the broker, then serves concurrently via
    :class:`asyncio.TaskGroup`:

    * the aiosmtpd listener (one protocol instance per connection)
    * the FastAPI health server
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self.status: BridgeStatus = BridgeStatus.STARTING
        self.start_time: float = time.monotonic()

        self._publisher = MqttPublisher(config.mqtt)
        self._dead_letter = DeadLetterHandler(self._publisher)
        self._extractor = FieldExtractor(
            config.smtp.fields,
            TransformSandbox(config.smtp.transform_timeout_seconds),
        )
        self._handler = BridgeHandler(
            self._extractor,
            base_topic=config.mqtt.base_topic,
            deliver=self.deliver_all,
        )
        self._shutdown_event = asyncio.Event()
        self._published: int = 0
        self._publish_failures: int = 0

    # ------------------------------------------------------------------
    # Publish delivery with retry + dead-letter
    # ------------------------------------------------------------------

    async def _deliver(self, op: PublishOp) -> bool:
        """Publish one op, retrying on failure; dead-letter it once retries run out."""
        retry_decorator = with_retry(self.config.retry)

        @retry_decorator
        async def _publish() -> None:
            await self._publisher.publish(op)

        try:
            await _publish()
        except Exception as exc:
            self._publish_failures += 1
            logger.error("mqtt_publish_failed_permanently", topic=op.topic, error=str(exc))
            await self._dead_letter.send(
                op,
                error=str(exc),
                attempts=self.config.retry.max_attempts,
            )
            return False

        self._published += 1
        return True

    async def deliver_all(self, ops: Sequence[PublishOp]) -> list[bool]:
        """Attempt every publish concurrently; one failure never skips the rest."""
        results = await asyncio.gather(*(self._deliver(op) for op in ops), return_exceptions=True)
        delivered: list[bool] = []
        for op, result in zip(ops, results):
            if isinstance(result, BaseException):
                logger.error("mqtt_publish_error", topic=op.topic, error=str(result))
                delivered.append(False)
            else:
                delivered.append(result)
        return delivered

    def current_status(self) -> BridgeStatus:
        """``status``, reported as degraded while the broker connection is down."""
        if self.status == BridgeStatus.RUNNING and not self._publisher.connected:
            return BridgeStatus.DEGRADED
        return self.status

    def health_details(self) -> dict[str, object]:
        return {
            "mqtt_connected": self._publisher.connected,
            "base_topic": self.config.mqtt.base_topic,
            "fields_configured": len(self.config.smtp.fields),
            "messages_received": self._handler.messages_received,
            "messages_failed": self._handler.messages_failed,
            "publishes_delivered": self._published,
            "publish_failures": self._publish_failures,
        }

    # ------------------------------------------------------------------
    # SMTP listener
    # ------------------------------------------------------------------

    def _smtp_factory(self) -> SMTP:
        smtp = self.config.smtp
        return SMTP(
            self._handler,
            hostname=smtp.name,
            data_size_limit=smtp.max_message_size,
            authenticator=accept_any_credentials,
            auth_required=False,
            auth_require_tls=False,
        )

    async def _run_smtp_server(self) -> None:
        loop = asyncio.get_running_loop()
        server = await loop.create_server(
            self._smtp_factory,
            host=self.config.smtp.host,
            port=self.config.smtp.port,
        )
        logger.info("smtp_listening", host=self.config.smtp.host, port=self.config.smtp.port)
        self.status = BridgeStatus.RUNNING

        try:
            await self._shutdown_event.wait()
        finally:
            server.close()
            await server.wait_closed()
            logger.info("smtp_stopped")

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        if not self.config.health_port:
            return
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            # keep the handlers installed by setup_logging
            log_config=None,
            log_level=None,
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _handle(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _handle, sig)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect to the broker and serve until shutdown.

        Call as ``asyncio.run(bridge.run())``.
        """
        setup_logging(json=self.config.log_json, level=self.config.log_level)
        self._install_signal_handlers()
        self.start_time = time.monotonic()

        logger.info(
            "bridge_starting",
            smtp_port=self.config.smtp.port,
            mqtt_host=self.config.mqtt.host,
            base_topic=self.config.mqtt.base_topic,
            fields=sorted(self.config.smtp.fields),
        )

        await self._publisher.start()

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_smtp_server())
                tg.create_task(self._run_health_server())
        except* Exception:
            self.status = BridgeStatus.DEGRADED
            logger.exception("bridge_task_group_error")
        finally:
            self.status = BridgeStatus.STOPPING
            await self._publisher.stop()
            self.status = BridgeStatus.STOPPED
            logger.info("bridge_stopped")

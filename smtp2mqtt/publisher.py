"""Typed async MQTT publisher wrapper."""

from __future__ import annotations

import asyncio
import ssl

import aiomqtt
import structlog

from .config import MqttConfig
from .models import DeadLetterEnvelope, PublishOp
from .topics import join_topic

logger = structlog.get_logger()

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"


class MqttPublisher:
    """Thin async wrapper around :class:`aiomqtt.Client`.

    Registers ``{base_topic}/status = offline`` as the last will, announces
    ``online`` once connected and ``offline`` again on a clean stop.

    aiomqtt does not reconnect by itself.  A publish that fails with
    :class:`aiomqtt.MqttError` discards the client, and the next publish
    connects again, so retrying a failed publish also retries the connection.
    """

    def __init__(self, config: MqttConfig) -> None:
        self._config = config
        self._client: aiomqtt.Client | None = None
        self._started = False
        self._connect_lock = asyncio.Lock()

    @property
    def base_topic(self) -> str:
        return self._config.base_topic

    @property
    def status_topic(self) -> str:
        return join_topic(self._config.base_topic, "status")

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _build_client(self) -> aiomqtt.Client:
        password = self._config.password.get_secret_value() if self._config.password else None
        tls_context = ssl.create_default_context() if self._config.tls else None
        return aiomqtt.Client(
            hostname=self._config.host,
            port=self._config.port,
            username=self._config.username,
            password=password,
            identifier=self._config.client_id,
            keepalive=self._config.keepalive,
            tls_context=tls_context,
            will=aiomqtt.Will(
                topic=self.status_topic,
                payload=STATUS_OFFLINE,
                retain=True,
            ),
        )

    async def start(self) -> None:
        self._started = True
        async with self._connect_lock:
            if self._client is None:
                await self._connect()

    async def _connect(self) -> aiomqtt.Client:
        client = self._build_client()
        await client.__aenter__()
        self._client = client
        logger.info("mqtt_connected", host=self._config.host, port=self._config.port)

        try:
            await client.publish(
                self.status_topic,
                payload=STATUS_ONLINE,
                retain=self._config.status_retain,
            )
        except aiomqtt.MqttError:
            await self._discard(client)
            raise
        return client

    async def _current_client(self) -> aiomqtt.Client:
        assert self._started, "Publisher not started"
        async with self._connect_lock:
            if self._client is None:
                logger.info("mqtt_reconnecting", host=self._config.host, port=self._config.port)
                return await self._connect()
            return self._client

    async def _discard(self, client: aiomqtt.Client) -> None:
        """Forget a broken client; the next publish connects a fresh one."""
        if self._client is client:
            self._client = None
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as exc:
            logger.debug("mqtt_disconnect_failed", error=str(exc))

    async def stop(self) -> None:
        self._started = False
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.publish(self.status_topic, payload=STATUS_OFFLINE, retain=True)
        except aiomqtt.MqttError as exc:
            logger.warning("mqtt_offline_status_failed", error=str(exc))
        await client.__aexit__(None, None, None)
        logger.info("mqtt_disconnected")

    async def _publish(self, topic: str, payload: bytes, *, retain: bool = False) -> None:
        client = await self._current_client()
        try:
            await client.publish(topic, payload=payload, retain=retain)
        except aiomqtt.MqttError as exc:
            logger.warning("mqtt_connection_lost", topic=topic, error=str(exc))
            await self._discard(client)
            raise

    async def publish(self, op: PublishOp) -> None:
        """Publish one field or event message."""
        await self._publish(op.topic, op.payload.encode("utf-8"), retain=op.retain)
        logger.debug("mqtt_published", topic=op.topic, retain=op.retain)

    async def send_dead_letter(self, envelope: DeadLetterEnvelope) -> None:
        """Publish a dead-letter envelope to the dead-letter topic, if enabled."""
        assert self._started, "Publisher not started"
        if not self._config.dead_letter_topic:
            return
        levels = [level for level in self._config.dead_letter_topic.split("/") if level]
        topic = join_topic(self._config.base_topic, *levels)
        await self._publish(topic, envelope.model_dump_json().encode("utf-8"))
        logger.warning(
            "dead_letter_sent",
            topic=topic,
            original_topic=envelope.original.topic,
            error=envelope.error,
        )

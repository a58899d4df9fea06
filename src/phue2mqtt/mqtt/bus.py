from __future__ import annotations

import asyncio
import contextlib

import aiomqtt

from phue2mqtt.config import MqttConfig
from phue2mqtt.const import BRIDGE_BIRTH_MSG, BRIDGE_WILL_MSG, MQTT_BUS_RECEIVE_TASK_NAME, RETRY_DELAY
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.properties import format_value
from phue2mqtt.structs import MessageHandler, Scalar

logger = get_logger(__name__)


def topic_matches(topic: str, pattern: str) -> bool:
    """MQTT wildcard match of a concrete topic against a subscription pattern."""
    try:
        return aiomqtt.Topic(topic).matches(pattern)
    except ValueError:
        return False


class MqttBus:
    """Broker connection used by the Hue link.

    Subscriptions are remembered by pattern so they survive reconnects; each
    incoming message is handed to every handler whose pattern matches. A failed
    publish or subscribe ends the receive task so the start loop reconnects.
    """

    lp: str = "MqttBus:"
    start_task: asyncio.Task[None] | None = None
    receive_task: asyncio.Task[None] | None = None
    client: aiomqtt.Client | None = None

    def __init__(self, config: MqttConfig, retry_delay: float = RETRY_DELAY) -> None:
        self.config: MqttConfig = config
        self.prefix: str = config.prefix
        self.retry_delay: float = retry_delay
        self.bridge_topic: str = f"{self.prefix}/$bridge/connected"
        self._connected: bool = False
        self._handlers: dict[str, MessageHandler] = {}
        self.client = None
        self.start_task = None
        self.receive_task = None

    def is_connected(self) -> bool:
        return self._connected

    def _build_client(self) -> aiomqtt.Client:
        will = aiomqtt.Will(topic=self.bridge_topic, payload=BRIDGE_WILL_MSG, retain=True)
        return aiomqtt.Client(
            hostname=self.config.server,
            port=self.config.port,
            username=self.config.login or None,
            password=self.config.password or None,
            identifier=self.config.client_id,
            will=will,
            tls_params=aiomqtt.TLSParameters() if self.config.use_tls else None,
        )

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        self.client = self._build_client()
        logger.debug(
            "%s Connecting to MQTT broker...",
            lp,
            extra={"server": self.config.server, "port": self.config.port, "tls": self.config.use_tls},
        )
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s Connection failed [MqttError] -> %s", lp, mqtt_err)
            self.client = None
            return False
        self._connected = True
        logger.info("%s Connected to MQTT broker %s:%s", lp, self.config.server, self.config.port)
        _ = await self.publish(self.bridge_topic, BRIDGE_BIRTH_MSG.decode(), retain=True)
        try:
            for pattern in self._handlers:
                await self.client.subscribe(pattern, qos=0)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s re-subscribe failed [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
        else:
            if self._handlers:
                logger.debug("%s re-subscribed", lp, extra={"patterns": list(self._handlers)})
        return self._connected

    async def start(self) -> None:
        """Connect, consume and reconnect until cancelled."""
        lp = f"{self.lp}start:"
        while True:
            if await self.connect():
                await self._run_receiver(lp)
            await self._drop_client()
            logger.info("%s retrying broker connection in %s seconds", lp, self.retry_delay)
            await asyncio.sleep(self.retry_delay)

    async def _run_receiver(self, lp: str) -> None:
        receive_task = asyncio.create_task(self._receive(), name=MQTT_BUS_RECEIVE_TASK_NAME)
        self.receive_task = receive_task
        try:
            _ = await asyncio.wait({receive_task})
        finally:
            self.receive_task = None
            if not receive_task.done():
                _ = receive_task.cancel()
        if receive_task.cancelled():
            logger.warning("%s connection lost, receiver stopped", lp)
            return
        err = receive_task.exception()
        if isinstance(err, aiomqtt.MqttError):
            logger.warning("%s connection lost [MqttError] -> %s", lp, err)
        elif err is not None:
            raise err

    def _connection_lost(self) -> None:
        self._connected = False
        receive_task = self.receive_task
        if receive_task is not None and not receive_task.done():
            _ = receive_task.cancel()

    async def _drop_client(self) -> None:
        self._connected = False
        client, self.client = self.client, None
        if client is not None:
            with contextlib.suppress(aiomqtt.MqttError):
                await client.__aexit__(None, None, None)

    async def _receive(self) -> None:
        assert self.client is not None, "client must be connected"
        async for message in self.client.messages:
            await self.dispatch(message.topic.value, message.payload)

    async def dispatch(self, topic: str, payload: object) -> None:
        """Hand one message to every matching handler; handler errors are logged."""
        lp = f"{self.lp}dispatch:"
        if isinstance(payload, bytes | bytearray):
            data = bytes(payload)
        elif payload is None:
            data = b""
        else:
            data = str(payload).encode()
        for pattern, handler in list(self._handlers.items()):
            if not topic_matches(topic, pattern):
                continue
            try:
                await handler(topic, data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s handler for '%s' failed", lp, pattern, extra={"topic": topic})

    async def publish(self, topic: str, value: Scalar, retain: bool = False) -> bool:
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            logger.debug("%s not connected, dropping", lp, extra={"topic": topic})
            return False
        try:
            await self.client.publish(topic, format_value(value).encode(), qos=0, retain=retain)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err, extra={"topic": topic})
            self._connection_lost()
        else:
            return True
        return False

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        lp = f"{self.lp}subscribe:"
        self._handlers[pattern] = handler
        if self._connected and self.client is not None:
            try:
                await self.client.subscribe(pattern, qos=0)
            except aiomqtt.MqttError as mqtt_err:
                # kept in the handler table, applied on the next connect
                logger.warning("%s [MqttError] -> %s", lp, mqtt_err, extra={"pattern": pattern})
                self._connection_lost()
        logger.debug("%s %s", lp, pattern)

    async def unsubscribe(self, pattern: str) -> None:
        lp = f"{self.lp}unsubscribe:"
        if self._handlers.pop(pattern, None) is None:
            return
        if self._connected and self.client is not None:
            try:
                await self.client.unsubscribe(pattern)
            except aiomqtt.MqttError as mqtt_err:
                logger.warning("%s [MqttError] -> %s", lp, mqtt_err, extra={"pattern": pattern})
        logger.debug("%s %s", lp, pattern)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self._connected:
            _ = await self.publish(self.bridge_topic, BRIDGE_WILL_MSG.decode(), retain=True)
        try:
            await self._drop_client()
        except Exception as e:
            logger.warning("%s MQTT disconnect failed: %s", lp, e, exc_info=True)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            if self.start_task and not self.start_task.done() and self.start_task is not asyncio.current_task():
                logger.debug("%s Cancelling start task", lp)
                _ = self.start_task.cancel()

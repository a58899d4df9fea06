"""
Unit tests for MqttBus.

Covers topic matching, handler dispatch, publish/subscribe bookkeeping and the
connect/reconnect loop with aiomqtt mocked out.
"""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import aiomqtt
import pytest

from phue2mqtt.config import MqttConfig
from phue2mqtt.mqtt import MqttBus, topic_matches


@pytest.fixture
def bus(monkeypatch):
    monkeypatch.delenv("PHUE2MQTT_TOPIC", raising=False)
    return MqttBus(MqttConfig(server="broker.local"), retry_delay=0.01)


async def _until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def broker_client():
    """Mocked aiomqtt client whose message stream stays open until cancelled."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.publish = AsyncMock()
    client.subscribe = AsyncMock()

    async def messages():
        await asyncio.Event().wait()
        yield MagicMock()

    client.messages = messages()
    return client


def connected_client(bus):
    """Attach a mocked aiomqtt client and mark the bus connected."""
    client = MagicMock()
    client.publish = AsyncMock()
    client.subscribe = AsyncMock()
    client.unsubscribe = AsyncMock()
    client.__aexit__ = AsyncMock(return_value=False)
    bus.client = client
    bus._connected = True
    return client


class TestTopicMatches:
    @pytest.mark.parametrize(
        ("topic", "pattern", "expected"),
        [
            ("homie/lights-5/lights/on/set", "homie/+/+/+/set", True),
            ("homie/lights-5/lights/on", "homie/+/+/+/set", False),
            ("homie/lights-5/lights/on/set", "homie/#", True),
            ("other/lights-5/lights/on/set", "homie/+/+/+/set", False),
            ("homie/lights-5/lights/on/set", "homie/#/set", False),
        ],
    )
    def test_matches(self, topic, pattern, expected):
        assert topic_matches(topic, pattern) is expected


class TestDispatch:
    """Tests for routing incoming messages to handlers"""

    @pytest.mark.asyncio
    async def test_matching_handler_receives_bytes(self, bus):
        handler = AsyncMock()
        other = AsyncMock()
        await bus.subscribe("homie/+/+/+/set", handler)
        await bus.subscribe("elsewhere/#", other)

        await bus.dispatch("homie/lights-5/lights/on/set", bytearray(b"true"))

        handler.assert_awaited_once_with("homie/lights-5/lights/on/set", b"true")
        other.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("payload", "expected"), [(None, b""), ("42", b"42"), (7, b"7")])
    async def test_payload_normalized(self, bus, payload, expected):
        handler = AsyncMock()
        await bus.subscribe("homie/#", handler)

        await bus.dispatch("homie/x", payload)

        handler.assert_awaited_once_with("homie/x", expected)

    @pytest.mark.asyncio
    async def test_handler_failure_logged_and_isolated(self, bus, caplog):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        await bus.subscribe("homie/#", failing)
        await bus.subscribe("homie/+/+/+/set", healthy)

        await bus.dispatch("homie/lights-5/lights/on/set", b"true")

        healthy.assert_awaited_once()
        assert "handler for 'homie/#' failed" in caplog.text

    @pytest.mark.asyncio
    async def test_receive_feeds_dispatch(self, bus):
        handler = AsyncMock()
        await bus.subscribe("homie/+/+/+/set", handler)
        client = connected_client(bus)
        message = MagicMock()
        message.topic.value = "homie/groups-1/groups/bri/set"
        message.payload = b"100"

        async def messages():
            yield message

        client.messages = messages()

        await bus._receive()

        handler.assert_awaited_once_with("homie/groups-1/groups/bri/set", b"100")


class TestPublishSubscribe:
    """Tests for publish/subscribe while connected and disconnected"""

    @pytest.mark.asyncio
    async def test_publish_when_disconnected(self, bus):
        assert await bus.publish("homie/lights-5/$state", "ready", retain=True) is False

    @pytest.mark.asyncio
    async def test_publish_formats_value(self, bus):
        client = connected_client(bus)

        result = await bus.publish("homie/lights-5/lights/on", True)

        assert result is True
        client.publish.assert_awaited_once_with("homie/lights-5/lights/on", b"true", qos=0, retain=False)

    @pytest.mark.asyncio
    async def test_publish_error_marks_disconnected(self, bus):
        client = connected_client(bus)
        client.publish.side_effect = aiomqtt.MqttError("gone")

        result = await bus.publish("homie/lights-5/lights/bri", 10)

        assert result is False
        assert bus.is_connected() is False

    @pytest.mark.asyncio
    async def test_subscribe_error_stops_receiver(self, bus):
        client = connected_client(bus)
        client.subscribe.side_effect = aiomqtt.MqttError("gone")
        bus.receive_task = receive_task = asyncio.create_task(asyncio.sleep(10))

        await bus.subscribe("homie/+/+/+/set", AsyncMock())
        with contextlib.suppress(asyncio.CancelledError):
            await receive_task

        assert receive_task.cancelled()
        assert bus.is_connected() is False
        assert "homie/+/+/+/set" in bus._handlers

    @pytest.mark.asyncio
    async def test_subscribe_while_disconnected_is_remembered(self, bus):
        await bus.subscribe("homie/+/+/+/set", AsyncMock())

        assert "homie/+/+/+/set" in bus._handlers

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe_while_connected(self, bus):
        client = connected_client(bus)

        await bus.subscribe("homie/+/+/+/set", AsyncMock())
        await bus.unsubscribe("homie/+/+/+/set")

        client.subscribe.assert_awaited_once_with("homie/+/+/+/set", qos=0)
        client.unsubscribe.assert_awaited_once_with("homie/+/+/+/set")
        assert bus._handlers == {}

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_pattern_is_noop(self, bus):
        client = connected_client(bus)

        await bus.unsubscribe("nothing/#")

        client.unsubscribe.assert_not_awaited()


class TestConnect:
    """Tests for MqttBus.connect()"""

    @pytest.mark.asyncio
    async def test_connect_publishes_birth_and_resubscribes(self, bus):
        await bus.subscribe("homie/+/+/+/set", AsyncMock())
        with patch("phue2mqtt.mqtt.bus.aiomqtt.Client") as mock_client_cls:
            client = mock_client_cls.return_value
            client.__aenter__ = AsyncMock(return_value=client)
            client.publish = AsyncMock()
            client.subscribe = AsyncMock()

            result = await bus.connect()

        assert result is True
        assert bus.is_connected() is True
        client.publish.assert_awaited_once_with("homie/$bridge/connected", b"online", qos=0, retain=True)
        client.subscribe.assert_awaited_once_with("homie/+/+/+/set", qos=0)
        kwargs = mock_client_cls.call_args.kwargs
        assert kwargs["hostname"] == "broker.local"
        assert kwargs["username"] is None
        assert kwargs["tls_params"] is None
        assert kwargs["will"].topic == "homie/$bridge/connected"

    @pytest.mark.asyncio
    async def test_resubscribe_failure_reports_not_connected(self, bus):
        await bus.subscribe("homie/+/+/+/set", AsyncMock())
        with patch("phue2mqtt.mqtt.bus.aiomqtt.Client") as mock_client_cls:
            client = mock_client_cls.return_value
            client.__aenter__ = AsyncMock(return_value=client)
            client.publish = AsyncMock()
            client.subscribe = AsyncMock(side_effect=aiomqtt.MqttError("gone"))

            result = await bus.connect()

        assert result is False
        assert bus.is_connected() is False

    @pytest.mark.asyncio
    async def test_connect_failure(self, bus):
        with patch("phue2mqtt.mqtt.bus.aiomqtt.Client") as mock_client_cls:
            mock_client_cls.return_value.__aenter__ = AsyncMock(side_effect=aiomqtt.MqttError("refused"))

            result = await bus.connect()

        assert result is False
        assert bus.is_connected() is False
        assert bus.client is None


class TestLifecycle:
    """Tests for the reconnect loop and shutdown"""

    @pytest.mark.asyncio
    async def test_start_retries_failed_connects(self, bus):
        bus.connect = AsyncMock(return_value=False)

        start_task = asyncio.create_task(bus.start())
        await asyncio.sleep(0.05)
        _ = start_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await start_task

        assert bus.connect.call_count >= 2

    @pytest.mark.asyncio
    async def test_start_reconnects_after_connection_lost(self, bus):
        bus.connect = AsyncMock(return_value=True)
        bus._receive = AsyncMock(side_effect=aiomqtt.MqttError("lost"))

        start_task = asyncio.create_task(bus.start())
        await asyncio.sleep(0.05)
        _ = start_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await start_task

        assert bus._receive.call_count >= 2
        assert bus.is_connected() is False

    @pytest.mark.asyncio
    async def test_publish_failure_while_receiving_reconnects(self, bus):
        first = broker_client()
        second = broker_client()
        with patch("phue2mqtt.mqtt.bus.aiomqtt.Client", side_effect=[first, second]) as mock_client_cls:
            start_task = asyncio.create_task(bus.start())
            await _until(lambda: bus.receive_task is not None)
            first.publish.side_effect = aiomqtt.MqttError("broken pipe")

            failed = await bus.publish("homie/lights-5/lights/on", True)
            await _until(lambda: mock_client_cls.call_count == 2 and bus.receive_task is not None)
            result = await bus.publish("homie/lights-5/lights/on", True)

            _ = start_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await start_task

        assert failed is False
        assert result is True
        first.__aexit__.assert_awaited_once()
        second.publish.assert_awaited_with("homie/lights-5/lights/on", b"true", qos=0, retain=False)

    @pytest.mark.asyncio
    async def test_stop_publishes_offline_and_cancels_start_task(self, bus):
        client = connected_client(bus)
        bus.start_task = asyncio.create_task(asyncio.sleep(10))

        await bus.stop()
        with contextlib.suppress(asyncio.CancelledError):
            await bus.start_task

        client.publish.assert_awaited_once_with("homie/$bridge/connected", b"offline", qos=0, retain=True)
        client.__aexit__.assert_awaited_once()
        assert bus.start_task.cancelled()
        assert bus.client is None
        assert bus.is_connected() is False

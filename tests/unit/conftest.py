"""
Shared fixtures for unit tests.

Provides in-memory stand-ins for the MQTT bus and the gateway session, plus
factories for typed gateway payloads.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from phue2mqtt.exceptions import GatewayConnectionError
from phue2mqtt.link.translator import DeviceTranslator
from phue2mqtt.payloads import DevicePayload, parse_device_payload
from phue2mqtt.structs import DeviceType, MessageHandler, Scalar

PREFIX = "homie"


class FakeBus:
    """Records publishes and subscriptions instead of talking to a broker."""

    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.published: list[tuple[str, Scalar, bool]] = []
        self.handlers: dict[str, MessageHandler] = {}
        self.unsubscribed: list[str] = []

    def is_connected(self) -> bool:
        return self.connected

    async def publish(self, topic: str, value: Scalar, retain: bool = False) -> bool:
        if not self.connected:
            return False
        self.published.append((topic, value, retain))
        return True

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        self.handlers[pattern] = handler

    async def unsubscribe(self, pattern: str) -> None:
        _ = self.handlers.pop(pattern, None)
        self.unsubscribed.append(pattern)

    def topics(self) -> list[str]:
        return [topic for topic, _, _ in self.published]

    def last(self, topic: str) -> tuple[Scalar, bool] | None:
        for published_topic, value, retain in reversed(self.published):
            if published_topic == topic:
                return value, retain
        return None

    def clear(self) -> None:
        self.published.clear()


class FakeSession:
    """Gateway session serving canned payloads and recording writes."""

    def __init__(self) -> None:
        self.devices: dict[DeviceType, list[DevicePayload]] = {t: [] for t in DeviceType}
        self.failing: set[DeviceType] = set()
        self.enumerate_calls: list[DeviceType] = []
        self.light_calls: list[tuple[str, dict[str, Scalar]]] = []
        self.group_calls: list[tuple[str, dict[str, Scalar]]] = []
        self.write_error: Exception | None = None

    def add(self, *payloads: DevicePayload) -> None:
        for payload in payloads:
            self.devices[payload.identity.device_type].append(payload)

    def replace(self, payload: DevicePayload) -> None:
        bucket = self.devices[payload.identity.device_type]
        for index, existing in enumerate(bucket):
            if existing.id == payload.id:
                bucket[index] = payload
                return
        bucket.append(payload)

    async def enumerate(self, device_type: DeviceType) -> list[DevicePayload]:
        self.enumerate_calls.append(device_type)
        if device_type in self.failing:
            msg = f"{device_type} unavailable"
            raise GatewayConnectionError(msg, "192.168.1.2")
        return list(self.devices[device_type])

    async def set_light_state(self, light_id: str, state: dict[str, Scalar]) -> None:
        self.light_calls.append((light_id, dict(state)))
        if self.write_error is not None:
            raise self.write_error

    async def set_group_state(self, group_id: str, state: dict[str, Scalar]) -> None:
        self.group_calls.append((group_id, dict(state)))
        if self.write_error is not None:
            raise self.write_error


@pytest.fixture
def fake_bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def translator(fake_bus: FakeBus) -> DeviceTranslator:
    return DeviceTranslator(fake_bus, PREFIX)


@pytest.fixture
def make_light() -> Callable[..., DevicePayload]:
    """Factory: make_light("5", name="Desk", on=False, bri=100)."""

    def _make(gateway_id: str, name: str = "Lamp", modelid: str = "LCT015", **state: Any) -> DevicePayload:
        return parse_device_payload(DeviceType.LIGHTS, gateway_id, {"name": name, "modelid": modelid, "state": state})

    return _make


@pytest.fixture
def make_group() -> Callable[..., DevicePayload]:
    def _make(gateway_id: str, name: str = "Living room", group_type: str = "Room", **action: Any) -> DevicePayload:
        return parse_device_payload(
            DeviceType.GROUPS,
            gateway_id,
            {"name": name, "type": group_type, "action": action, "lights": ["1", "2"]},
        )

    return _make


@pytest.fixture
def make_sensor() -> Callable[..., DevicePayload]:
    def _make(
        gateway_id: str,
        state: dict[str, Any],
        config: dict[str, Any],
        name: str = "Hall switch",
        modelid: str = "RWL021",
    ) -> DevicePayload:
        return parse_device_payload(
            DeviceType.SENSORS,
            gateway_id,
            {"name": name, "modelid": modelid, "state": state, "config": config},
        )

    return _make

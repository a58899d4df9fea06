"""Core data structures and collaborator protocols for the Hue link."""

from __future__ import annotations

import asyncio
from argparse import Namespace
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field

from phue2mqtt.const import STATE_READY

if TYPE_CHECKING:
    from phue2mqtt.payloads import DevicePayload

Scalar = bool | int | float | str
MessageHandler = Callable[[str, bytes], Awaitable[None]]


class ConnectionState(StrEnum):
    """Pairing/connection state owned by the orchestrator."""

    UNPAIRED = "unpaired"
    DISCOVERING = "discovering"
    AWAITING_BUTTON_PRESS = "awaiting_button_press"
    PAIRED_DISCONNECTED = "paired_disconnected"
    CONNECTED = "connected"


class DeviceType(StrEnum):
    LIGHTS = "lights"
    GROUPS = "groups"
    SENSORS = "sensors"


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    """Composite key of a gateway device, stable for one gateway session."""

    device_type: DeviceType
    gateway_id: str

    @property
    def key(self) -> str:
        """Cache key and topic path component, e.g. ``lights-5``."""
        return f"{self.device_type}-{self.gateway_id}"

    @classmethod
    def from_key(cls, key: str) -> DeviceIdentity:
        """Parse ``lights-5`` back into an identity.

        Raises:
            ValueError: unknown device type or missing gateway id

        """
        device_type, sep, gateway_id = key.partition("-")
        if not sep or not gateway_id:
            msg = f"Malformed device id: {key!r}"
            raise ValueError(msg)
        return cls(DeviceType(device_type), gateway_id)


@dataclass
class CachedDevice:
    """Last published view of one gateway device.

    ``properties`` only ever holds managed property names that were published
    for this device; ``status`` is the last published ``$state``.
    """

    identity: DeviceIdentity
    display_name: str
    model: str
    properties: dict[str, Scalar] = field(default_factory=dict)
    status: str = STATE_READY


class PairingCredential(BaseModel):
    """Credential obtained from a successful pairing handshake."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    gateway_address: str = Field(alias="gateway")
    username: str
    client_key: str = Field(default="", alias="clientKey")
    client_id: str = Field(default="phue2mqtt", alias="clientId")

    def to_saved_data(self) -> dict[str, str]:
        """Fields persisted to the saved pairing file."""
        return {
            "gateway": self.gateway_address,
            "username": self.username,
            "clientKey": self.client_key,
        }


class GatewaySessionProtocol(Protocol):
    """Authenticated session on one gateway."""

    async def enumerate(self, device_type: DeviceType) -> Sequence[DevicePayload]:
        """Return every device of ``device_type`` in gateway order."""
        ...

    async def set_light_state(self, light_id: str, state: dict[str, Scalar]) -> None:
        """Apply a partial state to one light."""
        ...

    async def set_group_state(self, group_id: str, state: dict[str, Scalar]) -> None:
        """Apply a partial action to one group."""
        ...


class GatewayClientProtocol(Protocol):
    """Discovery, pairing and session creation against the gateway."""

    async def discover(self) -> list[str]:
        """Return gateway addresses found on the network."""
        ...

    async def pair(self, address: str, app_name: str, client_id: str) -> PairingCredential:
        """Pair with the gateway. Raises LinkButtonNotPressedError until the button is pressed."""
        ...

    async def connect(self, address: str, credential: PairingCredential) -> GatewaySessionProtocol:
        """Open an authenticated session."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


class MessageBusProtocol(Protocol):
    """Publish/subscribe connection to the MQTT broker."""

    def is_connected(self) -> bool:
        """Return True while the broker connection is up."""
        ...

    async def publish(self, topic: str, value: Scalar, retain: bool = False) -> bool:
        """Publish one value. Returns False when it could not be sent."""
        ...

    async def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        """Route messages matching ``pattern`` to ``handler(topic, payload)``."""
        ...

    async def unsubscribe(self, pattern: str) -> None:
        """Stop routing ``pattern``."""
        ...


class HueLinkProtocol(Protocol):
    state: ConnectionState

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class MqttBusProtocol(MessageBusProtocol, Protocol):
    start_task: asyncio.Task[None] | None

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class GlobalObject:
    """Process-wide registry of running services, used for signal handling."""

    hue_link: HueLinkProtocol | None = None
    mqtt_bus: MqttBusProtocol | None = None
    loop: asyncio.AbstractEventLoop | None = None
    tasks: ClassVar[list[asyncio.Task[Any]]] = []
    cli_args: Namespace | None = None

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

"""Typed views of raw gateway device payloads.

The gateway reports lights, groups and sensors with different shapes. Each
shape is one member of a tagged union (``device_type`` is the tag) and knows
how to extract its own state snapshot:

- lights  -> ``state``
- groups  -> ``action``
- sensors -> ``state`` merged with ``config`` (config wins on collision)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from phue2mqtt.structs import DeviceIdentity, DeviceType

Snapshot = dict[str, Any]


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str = ""

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(DeviceType(getattr(self, "device_type")), self.id)


class LightPayload(_PayloadBase):
    device_type: Literal["lights"] = "lights"
    modelid: str = ""
    state: dict[str, Any] = Field(default_factory=dict)

    @property
    def model(self) -> str:
        return self.modelid

    def snapshot(self) -> Snapshot:
        return dict(self.state)


class GroupPayload(_PayloadBase):
    device_type: Literal["groups"] = "groups"
    type: str = ""
    action: dict[str, Any] = Field(default_factory=dict)

    @property
    def model(self) -> str:
        # groups have no model id; the group type (Room, Zone, LightGroup) stands in
        return self.type

    def snapshot(self) -> Snapshot:
        return dict(self.action)


class SensorPayload(_PayloadBase):
    device_type: Literal["sensors"] = "sensors"
    modelid: str = ""
    state: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def model(self) -> str:
        return self.modelid

    def snapshot(self) -> Snapshot:
        return {**self.state, **self.config}


DevicePayload = Annotated[LightPayload | GroupPayload | SensorPayload, Field(discriminator="device_type")]

_payload_adapter: TypeAdapter[LightPayload | GroupPayload | SensorPayload] = TypeAdapter(DevicePayload)


def parse_device_payload(device_type: DeviceType, gateway_id: str, body: Mapping[str, Any]) -> DevicePayload:
    """Validate one raw device body as returned under ``/api/<user>/<device_type>/<id>``."""
    return _payload_adapter.validate_python({**body, "id": str(gateway_id), "device_type": str(device_type)})

"""Curated table of gateway fields exposed on MQTT.

Only names listed in MANAGED_PROPERTIES are ever published, cached or accepted
as inbound writes. The table is built once at import time and is read-only;
the translator receives it by injection so tests can pass a reduced table.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict

from phue2mqtt.structs import Scalar

DataType = Literal["boolean", "integer", "float", "string", "enum", "datetime"]


class PropertyDescriptor(BaseModel):
    """Homie metadata for one managed property."""

    model_config = ConfigDict(frozen=True)

    name: str
    datatype: DataType
    settable: bool = False
    unit: str | None = None
    format: str | None = None

    def metadata(self) -> dict[str, Scalar]:
        """Attributes published under ``<property>/<attribute>``; unset ones are omitted."""
        attrs: dict[str, Scalar] = {
            "$name": self.name,
            "$datatype": self.datatype,
            "$settable": self.settable,
        }
        if self.unit is not None:
            attrs["$unit"] = self.unit
        if self.format is not None:
            attrs["$format"] = self.format
        return attrs


PropertyTable = Mapping[str, PropertyDescriptor]

MANAGED_PROPERTIES: PropertyTable = MappingProxyType(
    {
        # lights (state) and groups (action)
        "on": PropertyDescriptor(name="On", datatype="boolean", settable=True),
        "bri": PropertyDescriptor(name="Brightness", datatype="integer", settable=True, format="1:254"),
        "hue": PropertyDescriptor(name="Hue", datatype="integer", settable=True, format="0:65535"),
        "sat": PropertyDescriptor(name="Saturation", datatype="integer", settable=True, format="0:254"),
        "ct": PropertyDescriptor(
            name="Color temperature",
            datatype="integer",
            settable=True,
            unit="mired",
            format="153:500",
        ),
        "alert": PropertyDescriptor(name="Alert", datatype="enum", settable=True, format="none,select,lselect"),
        "effect": PropertyDescriptor(name="Effect", datatype="enum", settable=True, format="none,colorloop"),
        "colormode": PropertyDescriptor(name="Color mode", datatype="enum", format="hs,xy,ct"),
        # sensors (state + config)
        "status": PropertyDescriptor(name="Status", datatype="integer"),
        "buttonevent": PropertyDescriptor(name="Button event", datatype="integer"),
        "battery": PropertyDescriptor(name="Battery", datatype="integer", unit="%", format="0:100"),
        "lastupdated": PropertyDescriptor(name="Last updated", datatype="datetime"),
        "presence": PropertyDescriptor(name="Presence", datatype="boolean"),
        "temperature": PropertyDescriptor(name="Temperature", datatype="integer", unit="°C/100"),
        "lightlevel": PropertyDescriptor(name="Light level", datatype="integer", format="0:65535"),
        "dark": PropertyDescriptor(name="Dark", datatype="boolean"),
        "daylight": PropertyDescriptor(name="Daylight", datatype="boolean"),
    },
)


def format_value(value: Scalar) -> str:
    """Render a scalar as Homie payload text (booleans are lowercase)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

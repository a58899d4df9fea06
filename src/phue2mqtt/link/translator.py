"""Device cache and Homie topic translation.

The cache maps ``"{deviceType}-{gatewayId}"`` to the last published view of a
device. Only the translator mutates it; the poll loop and the command router
go through the methods below.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from phue2mqtt.const import HOMIE_VERSION, STATE_DISCONNECTED, STATE_READY
from phue2mqtt.exceptions import GatewayError
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.payloads import DevicePayload
from phue2mqtt.properties import MANAGED_PROPERTIES, PropertyTable
from phue2mqtt.structs import (
    CachedDevice,
    DeviceIdentity,
    DeviceType,
    GatewaySessionProtocol,
    MessageBusProtocol,
    Scalar,
)

logger = get_logger(__name__)


def is_scalar(value: object) -> bool:
    return isinstance(value, bool | int | float | str)


def same_value(cached: Scalar, fresh: object) -> bool:
    """Strict equality: ``True`` and ``1`` are different values."""
    return type(cached) is type(fresh) and cached == fresh


def reachability_status(snapshot: Mapping[str, Any]) -> str:
    """``disconnected`` only when the snapshot explicitly reports ``reachable: false``."""
    return STATE_DISCONNECTED if snapshot.get("reachable") is False else STATE_READY


class DeviceTranslator:
    """Publishes gateway devices as Homie devices and keeps the device cache."""

    lp: str = "DeviceTranslator:"

    def __init__(
        self,
        bus: MessageBusProtocol,
        prefix: str,
        properties: PropertyTable = MANAGED_PROPERTIES,
    ) -> None:
        self.bus: MessageBusProtocol = bus
        self.prefix: str = prefix.rstrip("/")
        self.properties: PropertyTable = properties
        self.cache: dict[str, CachedDevice] = {}
        # cleared on shutdown so late gateway results never touch the cache
        self.active: bool = True

    def device_topic(self, identity: DeviceIdentity) -> str:
        return f"{self.prefix}/{identity.key}"

    def node_topic(self, identity: DeviceIdentity) -> str:
        return f"{self.device_topic(identity)}/{identity.device_type}"

    def get(self, key: str) -> CachedDevice | None:
        return self.cache.get(key)

    def cached_types(self) -> list[DeviceType]:
        """Device types with at least one cached device, in enumeration order."""
        present = {device.identity.device_type for device in self.cache.values()}
        return [device_type for device_type in DeviceType if device_type in present]

    def exposed_properties(self, snapshot: Mapping[str, Any]) -> list[str]:
        """Sorted managed property names present in the snapshot with a publishable value."""
        return sorted(name for name, value in snapshot.items() if name in self.properties and is_scalar(value))

    async def publish_all_devices(self, session: GatewaySessionProtocol) -> int:
        """Enumerate every device type and publish each device in full.

        A failed enumeration is logged and the pass moves on to the next type;
        cached devices of that type are left untouched. Returns the number of
        devices published.
        """
        lp = f"{self.lp}publish_all_devices:"
        published = 0
        for device_type in DeviceType:
            try:
                payloads = await session.enumerate(device_type)
            except GatewayError as e:
                logger.warning("%s enumerating %s failed: %s", lp, device_type, e)
                continue
            if not self.active:
                logger.debug("%s link stopped, discarding %s enumeration", lp, device_type)
                return published
            self._drop_stale(device_type, (payload.identity.key for payload in payloads))
            for payload in payloads:
                _ = await self.publish_device(payload)
                published += 1
        logger.info("%s published %d devices", lp, published, extra={"cached": len(self.cache)})
        return published

    def _drop_stale(self, device_type: DeviceType, present_keys: Iterable[str]) -> None:
        keep = set(present_keys)
        for key in [k for k, d in self.cache.items() if d.identity.device_type == device_type and k not in keep]:
            logger.info("%s device %s no longer reported by the gateway", self.lp, key)
            del self.cache[key]

    async def publish_device(self, payload: DevicePayload) -> bool:
        """Publish the retained device attributes, then its properties."""
        lp = f"{self.lp}publish_device:"
        identity = payload.identity
        snapshot = payload.snapshot()
        status = reachability_status(snapshot)
        self.cache[identity.key] = CachedDevice(
            identity=identity,
            display_name=payload.name,
            model=payload.model,
            status=status,
        )
        device_topic = self.device_topic(identity)
        attributes: dict[str, Scalar] = {
            "$homie": HOMIE_VERSION,
            "$name": payload.name,
            "$state": status,
            "$nodes": str(identity.device_type),
        }
        for attribute, value in attributes.items():
            _ = await self.bus.publish(f"{device_topic}/{attribute}", value, retain=True)
        _ = await self.bus.publish(f"{self.node_topic(identity)}/$name", payload.name, retain=True)
        logger.debug("%s %s", lp, identity.key, extra={"name": payload.name, "model": payload.model, "state": status})
        return await self.publish_properties(identity, snapshot)

    async def publish_properties(self, identity: DeviceIdentity, snapshot: Mapping[str, Any]) -> bool:
        """Publish every managed property of one device and record it in the cache.

        Returns False, with a warning, when the snapshot holds no managed property.
        """
        lp = f"{self.lp}publish_properties:"
        exposed = self.exposed_properties(snapshot)
        if not exposed:
            logger.warning("%s device %s has no managed property", lp, identity.key)
            return False

        node_topic = self.node_topic(identity)
        _ = await self.bus.publish(f"{node_topic}/$properties", ",".join(exposed))
        cached = self.cache.get(identity.key)
        for name in exposed:
            value: Scalar = snapshot[name]
            _ = await self.bus.publish(f"{node_topic}/{name}", value)
            for attribute, attr_value in self.properties[name].metadata().items():
                _ = await self.bus.publish(f"{node_topic}/{name}/{attribute}", attr_value, retain=True)
            if cached is not None:
                cached.properties[name] = value
        return True

    async def publish_property(self, identity: DeviceIdentity, name: str, value: Scalar) -> bool:
        return await self.bus.publish(f"{self.node_topic(identity)}/{name}", value)

    async def publish_status(self, identity: DeviceIdentity, status: str) -> bool:
        return await self.bus.publish(f"{self.device_topic(identity)}/$state", status, retain=True)

    async def apply_snapshot(self, payload: DevicePayload) -> int:
        """Diff a fresh payload against the cache, publishing only what changed.

        Only property names already cached are compared; names missing from the
        fresh snapshot are left alone. Returns the number of publishes issued.
        """
        lp = f"{self.lp}apply_snapshot:"
        identity = payload.identity
        cached = self.cache.get(identity.key)
        if cached is None:
            return 0
        snapshot = payload.snapshot()
        changes = 0

        status = reachability_status(snapshot)
        if status != cached.status:
            cached.status = status
            logger.info("%s %s is now %s", lp, identity.key, status)
            _ = await self.publish_status(identity, status)
            changes += 1

        for name, old_value in list(cached.properties.items()):
            if name not in snapshot:
                continue
            new_value = snapshot[name]
            if not is_scalar(new_value) or same_value(old_value, new_value):
                continue
            if not self.active:
                return changes
            cached.properties[name] = new_value
            logger.debug("%s %s/%s: %r -> %r", lp, identity.key, name, old_value, new_value)
            _ = await self.publish_property(identity, name, new_value)
            changes += 1
        return changes

    async def mark_all_disconnected(self) -> None:
        """Publish ``$state = disconnected`` for every cached device."""
        for device in self.cache.values():
            _ = await self.publish_status(device.identity, STATE_DISCONNECTED)

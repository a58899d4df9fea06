"""Inbound MQTT command handling.

Commands arrive on ``{prefix}/{deviceType}-{gatewayId}/{node}/{property}/set``
with a plain-text payload. A command is applied only when the device and the
property are cached, the property is settable, and the value actually changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from phue2mqtt.correlation import correlated
from phue2mqtt.exceptions import CommandError, GatewayError
from phue2mqtt.link.translator import DeviceTranslator, same_value
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.structs import CachedDevice, DeviceIdentity, DeviceType, GatewaySessionProtocol, Scalar

logger = get_logger(__name__)

_DIGITS = re.compile(r"[0-9]+")


def coerce_payload(text: str) -> Scalar:
    """Best-guess scalar: all digits -> int, ``true``/``false`` -> bool, else the text."""
    if _DIGITS.fullmatch(text):
        return int(text)
    if text == "true":
        return True
    if text == "false":
        return False
    return text


@dataclass(frozen=True, slots=True)
class InboundCommand:
    identity: DeviceIdentity
    node: str
    property_name: str
    value: Scalar
    topic: str
    payload: str


class CommandRouter:
    """Validate inbound commands against the device cache and forward them to the gateway."""

    lp: str = "CommandRouter:"

    def __init__(self, translator: DeviceTranslator) -> None:
        self.translator: DeviceTranslator = translator
        self.session: GatewaySessionProtocol | None = None
        prefix = re.escape(translator.prefix)
        types = "|".join(re.escape(str(t)) for t in DeviceType)
        self._topic_re: re.Pattern[str] = re.compile(rf"^{prefix}/({types})-([^/]+)/([^/]+)/([^/]+)/set$")

    @property
    def subscription(self) -> str:
        return f"{self.translator.prefix}/+/+/+/set"

    def parse(self, topic: str, payload: bytes) -> InboundCommand:
        """Split a command topic and coerce its payload.

        Raises:
            CommandError: topic does not match the command layout or payload is not UTF-8

        """
        match = self._topic_re.match(topic)
        if match is None:
            msg = "not a command topic"
            raise CommandError(msg, topic)
        try:
            text = payload.decode("utf-8")
        except ValueError as e:
            msg = "payload is not valid UTF-8"
            raise CommandError(msg, topic, repr(payload)) from e
        device_type, gateway_id, node, property_name = match.groups()
        return InboundCommand(
            identity=DeviceIdentity(DeviceType(device_type), gateway_id),
            node=node,
            property_name=property_name,
            value=coerce_payload(text),
            topic=topic,
            payload=text,
        )

    def resolve(self, command: InboundCommand) -> CachedDevice:
        """Return the cached device a command targets.

        Raises:
            CommandError: unknown device, node or property, or property not writable

        """
        identity = command.identity
        device = self.translator.get(identity.key)
        if device is None:
            msg = f"unknown device {identity.key}"
            raise CommandError(msg, command.topic, command.payload)
        if command.node != identity.device_type:
            msg = f"unknown node {command.node}"
            raise CommandError(msg, command.topic, command.payload)
        if command.property_name not in device.properties:
            msg = f"{identity.key} has no property {command.property_name}"
            raise CommandError(msg, command.topic, command.payload)
        descriptor = self.translator.properties.get(command.property_name)
        if identity.device_type == DeviceType.SENSORS or descriptor is None or not descriptor.settable:
            msg = f"{command.property_name} is not settable on {identity.key}"
            raise CommandError(msg, command.topic, command.payload)
        return device

    @correlated
    async def handle_message(self, topic: str, payload: bytes) -> bool:
        """Apply one inbound command. Returns True when a gateway write was issued."""
        lp = f"{self.lp}handle_message:"
        try:
            command = self.parse(topic, payload)
            device = self.resolve(command)
        except CommandError as e:
            logger.warning("%s dropped: %s", lp, e.reason, extra={"topic": e.topic, "payload": e.payload})
            return False

        name = command.property_name
        if same_value(device.properties[name], command.value):
            logger.debug("%s %s/%s already %r", lp, device.identity.key, name, command.value)
            return False
        session = self.session
        if session is None or not self.translator.active:
            logger.warning("%s gateway not connected, dropping command", lp, extra={"topic": topic})
            return False

        # optimistic; the next poll reconciles a failed write
        device.properties[name] = command.value
        state: dict[str, Scalar] = {name: command.value}
        logger.info("%s %s <- %s", lp, device.identity.key, state)
        try:
            if device.identity.device_type == DeviceType.LIGHTS:
                await session.set_light_state(device.identity.gateway_id, state)
            else:
                await session.set_group_state(device.identity.gateway_id, state)
        except GatewayError as e:
            logger.error(
                "%s gateway write failed: %s",
                lp,
                e,
                extra={"topic": command.topic, "payload": command.payload},
            )
        if self.translator.active:
            _ = await self.translator.publish_property(device.identity, name, command.value)
        return True

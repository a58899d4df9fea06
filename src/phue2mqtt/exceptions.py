"""Exception hierarchy for the bridge.

Nothing below escapes the gateway link at runtime: the orchestrator, the poll
loop and the command handler each catch these at their own cycle boundary,
log them and try again on the next natural cycle. Only ConfigError is fatal,
and only at process start-up.
"""

from __future__ import annotations


class Phue2MqttError(Exception):
    """Base class for every error raised by phue2mqtt."""


class ConfigError(Phue2MqttError):
    """Configuration file missing, unreadable or invalid."""


class GatewayError(Phue2MqttError):
    """Any failure talking to the Hue gateway."""


class GatewayConnectionError(GatewayError):
    """Gateway unreachable, HTTP failure or request timeout.

    Attributes:
        address: Gateway address the request targeted (may be empty for discovery)

    """

    def __init__(self, reason: str, address: str = "") -> None:
        self.reason: str = reason
        self.address: str = address
        target = f" ({address})" if address else ""
        super().__init__(f"Gateway connection failed{target}: {reason}")


class GatewayResponseError(GatewayError):
    """The gateway answered with an error object.

    Attributes:
        error_type: Numeric Hue error type (101 = link button not pressed, ...)
        description: Gateway-provided description
        address: Resource path the error refers to

    """

    def __init__(self, error_type: int, description: str, address: str = "") -> None:
        self.error_type: int = error_type
        self.description: str = description
        self.address: str = address
        super().__init__(f"Gateway error {error_type}: {description}")


class PairingError(GatewayResponseError):
    """Pairing handshake rejected for a reason other than the link button."""


class LinkButtonNotPressedError(PairingError):
    """Pairing rejected because nobody pressed the physical link button yet."""


class CommandError(Phue2MqttError):
    """Inbound MQTT message rejected before reaching the gateway.

    Attributes:
        topic: Topic the message arrived on
        payload: Raw payload text (may be empty if it could not be decoded)

    """

    def __init__(self, reason: str, topic: str, payload: str = "") -> None:
        self.reason: str = reason
        self.topic: str = topic
        self.payload: str = payload
        super().__init__(f"{reason} (topic={topic!r}, payload={payload!r})")

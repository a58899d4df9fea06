import os

from phue2mqtt import __version__

__all__ = [
    "APP_NAME",
    "BRIDGE_BIRTH_MSG",
    "BRIDGE_WILL_MSG",
    "HOMIE_VERSION",
    "HUE_API_TIMEOUT",
    "HUE_DISCOVERY_URL",
    "HUE_LINK_BUTTON_ERROR",
    "HUE_SAVED_CONFIG_FILE",
    "HUE_UNAUTHORIZED_ERROR",
    "LINK_START_TASK_NAME",
    "MQTT_BUS_RECEIVE_TASK_NAME",
    "MQTT_BUS_START_TASK_NAME",
    "PHUE2MQTT_DEBUG",
    "PHUE2MQTT_LOG_FORMAT",
    "PHUE2MQTT_LOG_HUMAN_OUTPUT",
    "PHUE2MQTT_LOG_JSON_FILE",
    "PHUE2MQTT_VERSION",
    "POLL_FAILURE_LIMIT",
    "POLL_TASK_NAME",
    "RETRY_DELAY",
    "STATE_DISCONNECTED",
    "STATE_READY",
    "YES_ANSWER",
    "debug_from_env",
    "topic_from_env",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
PHUE2MQTT_VERSION: str = __version__

# Name announced to the gateway during pairing ("devicetype" = APP_NAME#clientId)
APP_NAME: str = "PHUE2MQTT"


def debug_from_env() -> bool:
    return os.environ.get("PHUE2MQTT_DEBUG", "0").casefold() in YES_ANSWER


def topic_from_env() -> str | None:
    """PHUE2MQTT_TOPIC read at call time, so values loaded from an env file apply."""
    topic = os.environ.get("PHUE2MQTT_TOPIC")
    return topic.rstrip("/") if topic else None


PHUE2MQTT_DEBUG: bool = debug_from_env()
PHUE2MQTT_LOG_FORMAT: str = os.environ.get("PHUE2MQTT_LOG_FORMAT", "human").casefold()
_json_file = os.environ.get("PHUE2MQTT_LOG_JSON_FILE")
PHUE2MQTT_LOG_JSON_FILE: str | None = _json_file if _json_file else None
PHUE2MQTT_LOG_HUMAN_OUTPUT: str = os.environ.get("PHUE2MQTT_LOG_HUMAN_OUTPUT", "stdout")

# Every non-terminal orchestration state retries on this fixed cadence (seconds)
RETRY_DELAY: float = 5.0

# Consecutive failed poll ticks before the gateway session is dropped
POLL_FAILURE_LIMIT: int = 3

HUE_DISCOVERY_URL: str = "https://discovery.meethue.com/"
HUE_API_TIMEOUT: int = 8
HUE_LINK_BUTTON_ERROR: int = 101
HUE_UNAUTHORIZED_ERROR: int = 1
HUE_SAVED_CONFIG_FILE: str = "hue.json"

HOMIE_VERSION: str = "4.0.0"
STATE_READY: str = "ready"
STATE_DISCONNECTED: str = "disconnected"

BRIDGE_BIRTH_MSG: bytes = b"online"
BRIDGE_WILL_MSG: bytes = b"offline"

LINK_START_TASK_NAME = "HueLink_START"
MQTT_BUS_RECEIVE_TASK_NAME = "MqttBus_RECEIVE"
MQTT_BUS_START_TASK_NAME = "MqttBus_START"
POLL_TASK_NAME = "HueLink_POLL"

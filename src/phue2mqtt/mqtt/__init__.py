"""MQTT side of the bridge.

- bus.py: MqttBus, the broker connection with pattern-routed subscriptions
"""

from .bus import MqttBus, topic_matches

__all__ = [
    "MqttBus",
    "topic_matches",
]

"""Gateway link: the bridge between one Hue gateway and the MQTT bus.

- orchestrator.py: HueLink pairing/connection state machine and start/stop surface
- translator.py: device cache and Homie topic publishing
- command_routing.py: inbound command validation and gateway writes
- poll_loop.py: periodic re-enumeration publishing only changed properties
"""

from .command_routing import CommandRouter, InboundCommand, coerce_payload
from .orchestrator import HueLink
from .poll_loop import PollLoop
from .translator import DeviceTranslator, reachability_status

__all__ = [
    "CommandRouter",
    "DeviceTranslator",
    "HueLink",
    "InboundCommand",
    "PollLoop",
    "coerce_payload",
    "reachability_status",
]

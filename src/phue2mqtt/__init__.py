"""Philips Hue gateway to MQTT bridge."""

__version__ = "0.3.0"

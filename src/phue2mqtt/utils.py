from __future__ import annotations

import asyncio
import os
import signal
import sys

from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.structs import GlobalObject

logger = get_logger(__name__)
g = GlobalObject()

MIN_PYTHON: tuple[int, int] = (3, 12)


def send_signal(signal_num: int):
    """Send a signal to the current process.

    Args:
        signal_num (int): The signal number to send.

    """
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm():
    """Request termination; the installed handler turns it into a clean shutdown."""
    send_signal(signal.SIGTERM)


async def async_signal_cleanup():
    """Stop the link before the bus so the disconnected states still reach the broker."""
    logger.info("phue2mqtt: Starting signal cleanup...")
    if g.hue_link:
        logger.debug("Stopping hue_link...")
        await g.hue_link.stop()
    if g.mqtt_bus:
        logger.debug("Stopping mqtt_bus...")
        await g.mqtt_bus.stop()
    for task in g.tasks:
        if not task.done() and task is not asyncio.current_task():
            logger.debug("phue2mqtt: Cancelling task: %s", task.get_name())
            _ = task.cancel()
    logger.info("phue2mqtt: Signal cleanup completed")


def signal_handler(signum: int):
    logger.info("phue2mqtt: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    loop = g.loop or asyncio.get_event_loop()
    task = loop.create_task(async_signal_cleanup())
    g.tasks.append(task)


def check_python_version():
    if sys.version_info < MIN_PYTHON:
        logger.error(
            "Unsupported Python version",
            extra={"found": sys.version.split()[0], "required": ".".join(map(str, MIN_PYTHON))},
        )
        sys.exit(1)

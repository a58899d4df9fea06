from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from functools import partial
from pathlib import Path

import dotenv
import uvloop

from phue2mqtt.config import ConfigManager
from phue2mqtt.const import MQTT_BUS_START_TASK_NAME, PHUE2MQTT_DEBUG, PHUE2MQTT_VERSION, debug_from_env
from phue2mqtt.correlation import correlation_context, ensure_correlation_id
from phue2mqtt.exceptions import ConfigError
from phue2mqtt.hue_api import HueClient
from phue2mqtt.link import HueLink
from phue2mqtt.logging_abstraction import get_logger, set_debug
from phue2mqtt.mqtt import MqttBus
from phue2mqtt.structs import GlobalObject
from phue2mqtt.utils import check_python_version, send_sigterm, signal_handler

logger = get_logger(__name__)

# Suppress verbose MQTT library output
for _name in ("aiomqtt", "mqtt"):
    logging.getLogger(_name).setLevel(logging.ERROR)

g = GlobalObject()


class Phue2Mqtt:
    """Process-level wiring: config, MQTT bus, Hue link."""

    lp: str = "Phue2Mqtt:"

    def __init__(self, config_path: Path) -> None:
        self.config_path: Path = config_path
        self.config_manager: ConfigManager = ConfigManager()
        g.loop = uvloop.new_event_loop()
        asyncio.set_event_loop(g.loop)

        logger.info("Initializing phue2mqtt", extra={"version": PHUE2MQTT_VERSION})

        g.loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT))
        g.loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def start(self) -> None:
        """Load the configuration, then run the bus and the link until stopped."""
        lp = f"{self.lp}start:"
        _ = ensure_correlation_id()

        try:
            config = self.config_manager.read_global_config(self.config_path)
        except ConfigError as e:
            logger.error("%s %s", lp, e, extra={"config_path": str(self.config_path)})
            return

        if config.debug:
            set_debug(True)
            logger.info("%s Debug logging enabled via configuration", lp)

        bus = MqttBus(config.mqtt)
        link = HueLink(
            config.hue,
            HueClient(),
            bus,
            bus.prefix,
            on_credential=self.config_manager.save_hue_data,
        )
        g.mqtt_bus = bus
        g.hue_link = link

        try:
            bus.start_task = asyncio.create_task(bus.start(), name=MQTT_BUS_START_TASK_NAME)
            g.tasks.append(bus.start_task)
            await link.start()
            if link.start_task is not None:
                g.tasks.append(link.start_task)
            logger.info(
                "%s Starting MQTT bus and Hue link...",
                lp,
                extra={"prefix": bus.prefix, "broker": f"{config.mqtt.server}:{config.mqtt.port}"},
            )

            _ = await asyncio.gather(*g.tasks, return_exceptions=True)
        except Exception as e:
            logger.exception("%s Service startup failed", lp, extra={"error": str(e)})
            await self.stop()
            raise
        # signal cleanup may still be finishing
        pending = [t for t in g.tasks if not t.done() and t is not asyncio.current_task()]
        if pending:
            _ = await asyncio.gather(*pending, return_exceptions=True)

    async def stop(self) -> None:
        """Stop the Hue link and MQTT bus through the signal cleanup path."""
        logger.info("%s Shutting down phue2mqtt...", self.lp)
        send_sigterm()


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Philips Hue to MQTT (Homie) bridge")
    _ = parser.add_argument("config", type=Path, help="Path to the configuration file")
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    g.cli_args = args = parser.parse_args(argv)

    if args.debug:
        set_debug(True)
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path: Path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
            if debug_from_env():
                set_debug(True)
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return args


def main(argv: list[str] | None = None) -> None:
    """Console entry point."""
    with correlation_context():
        logger.info("Starting phue2mqtt", extra={"version": PHUE2MQTT_VERSION})
        args = parse_cli(argv)
        if PHUE2MQTT_DEBUG:
            set_debug(True)
        check_python_version()
        app = Phue2Mqtt(args.config)
        assert g.loop is not None, "event loop must be created"

        try:
            g.loop.run_until_complete(app.start())
        except asyncio.CancelledError:
            logger.info("phue2mqtt cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
        else:
            logger.info("phue2mqtt stopped")
        finally:
            if not g.loop.is_closed():
                g.loop.close()
            logger.info("phue2mqtt shutdown complete")


if __name__ == "__main__":
    main()

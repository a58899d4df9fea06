"""Unit tests for main.py module.

Tests CLI parsing and the Phue2Mqtt startup flow with the bus and link mocked.
"""

import os
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from phue2mqtt.main import Phue2Mqtt, parse_cli

CONFIG = """
mqtt:
  server: broker.local
hue:
  gateway: 192.168.1.2
"""


@pytest.fixture
def mock_global_object() -> Generator[MagicMock]:
    """Mock the global object so no real loop or signal handlers are installed."""
    with patch("phue2mqtt.main.g") as mock_g:
        mock_g.tasks = []
        mock_g.mqtt_bus = None
        mock_g.hue_link = None
        yield mock_g


@pytest.fixture
def app(mock_global_object, tmp_path) -> Phue2Mqtt:
    config_path = tmp_path / "config.yaml"
    _ = config_path.write_text(CONFIG)
    with (
        patch("phue2mqtt.main.uvloop.new_event_loop"),
        patch("phue2mqtt.main.asyncio.set_event_loop"),
    ):
        return Phue2Mqtt(config_path)


class TestPhue2MqttInitialization:
    def test_init_configures_signal_handlers(self, app, mock_global_object):
        registered = [c.args[0] for c in mock_global_object.loop.add_signal_handler.call_args_list]

        assert registered == [2, 15]


class TestPhue2MqttStartup:
    """Tests for Phue2Mqtt.start()"""

    @pytest.mark.asyncio
    async def test_start_with_missing_config_file(self, app, mock_global_object, tmp_path, caplog):
        app.config_path = tmp_path / "missing.yaml"

        await app.start()

        assert mock_global_object.mqtt_bus is None
        assert mock_global_object.hue_link is None
        assert "not found" in caplog.text

    @pytest.mark.asyncio
    async def test_start_creates_bus_and_link(self, app, mock_global_object):
        with (
            patch("phue2mqtt.main.MqttBus") as mock_bus_class,
            patch("phue2mqtt.main.HueLink") as mock_link_class,
            patch("phue2mqtt.main.HueClient") as mock_client_class,
        ):
            mock_bus = mock_bus_class.return_value
            mock_bus.prefix = "homie"
            mock_bus.start = AsyncMock()
            mock_link = mock_link_class.return_value
            mock_link.start = AsyncMock()
            mock_link.start_task = None

            await app.start()

        assert mock_global_object.mqtt_bus is mock_bus
        assert mock_global_object.hue_link is mock_link
        mock_bus.start.assert_awaited_once()
        mock_link.start.assert_awaited_once()
        args = mock_link_class.call_args
        assert args.args[0].gateway == "192.168.1.2"
        assert args.args[1] is mock_client_class.return_value
        assert args.args[2] is mock_bus
        assert args.args[3] == "homie"
        assert args.kwargs["on_credential"] == app.config_manager.save_hue_data

    @pytest.mark.asyncio
    async def test_start_failure_calls_stop(self, app, mock_global_object):
        with (
            patch("phue2mqtt.main.MqttBus") as mock_bus_class,
            patch("phue2mqtt.main.HueLink") as mock_link_class,
            patch("phue2mqtt.main.HueClient"),
            patch("phue2mqtt.main.send_sigterm") as mock_sigterm,
        ):
            mock_bus_class.return_value.start = AsyncMock()
            mock_link_class.return_value.start = AsyncMock(side_effect=RuntimeError("link broke"))

            with pytest.raises(RuntimeError, match="link broke"):
                await app.start()

        mock_sigterm.assert_called_once()


class TestPhue2MqttShutdown:
    @pytest.mark.asyncio
    async def test_stop_sends_sigterm(self, app):
        with patch("phue2mqtt.main.send_sigterm") as mock_sigterm:
            await app.stop()

        mock_sigterm.assert_called_once()


class TestParseCLI:
    """Tests for CLI argument parsing."""

    def test_config_path_positional(self, mock_global_object):
        args = parse_cli(["config.yaml"])

        assert args.config == Path("config.yaml")
        assert args.debug is False
        assert mock_global_object.cli_args is args

    def test_debug_flag(self, mock_global_object):
        with patch("phue2mqtt.main.set_debug") as mock_set_debug:
            args = parse_cli(["config.yaml", "-D"])

        assert args.debug is True
        mock_set_debug.assert_called_once_with(True)

    def test_env_file_loaded(self, mock_global_object, tmp_path, monkeypatch):
        # recorded so monkeypatch restores the environment afterwards
        monkeypatch.setenv("PHUE2MQTT_TOPIC", "before")
        monkeypatch.setenv("PHUE2MQTT_DEBUG", "0")
        env_file = tmp_path / "test.env"
        _ = env_file.write_text("PHUE2MQTT_TOPIC=devices\nPHUE2MQTT_DEBUG=1\n")

        with patch("phue2mqtt.main.set_debug") as mock_set_debug:
            args = parse_cli(["config.yaml", "--env", str(env_file)])

        assert args.env == env_file
        assert os.environ["PHUE2MQTT_TOPIC"] == "devices"
        mock_set_debug.assert_called_once_with(True)

    def test_missing_env_file_logged(self, mock_global_object, tmp_path, caplog):
        with patch("phue2mqtt.main.dotenv.load_dotenv") as mock_load:
            _ = parse_cli(["config.yaml", "--env", str(tmp_path / "nope.env")])

        mock_load.assert_not_called()
        assert "Environment file not found" in caplog.text

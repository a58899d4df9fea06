"""Configuration file loading and pairing-credential persistence.

Config file layout (YAML, or JSON which YAML accepts)::

    mqtt:
      server: localhost
      port: 1883
      login: ""
      password: ""
      useTls: false
      topic: homie
    hue:
      discover: true
      gateway: ""          # address, filled by discovery when empty
      username: ""         # filled by pairing
      clientKey: ""
      clientId: phue2mqtt
      pollingInterval: 2
    debug: false

Pairing results are written to ``hue.json`` next to the config file and merged
back in on the next start when the main file names no gateway.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from phue2mqtt.const import HUE_SAVED_CONFIG_FILE, topic_from_env
from phue2mqtt.exceptions import ConfigError
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.structs import PairingCredential

logger = get_logger(__name__)


class MqttConfig(BaseModel):
    """Broker connection settings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    server: str = "localhost"
    port: int = 1883
    login: str = ""
    password: str = ""
    use_tls: bool = Field(default=False, alias="useTls")
    topic: str = "homie"
    client_id: str = Field(default="phue2mqtt", alias="clientId")

    @property
    def prefix(self) -> str:
        """Topic prefix; PHUE2MQTT_TOPIC overrides the file value."""
        return (topic_from_env() or self.topic).rstrip("/")


class HueConfig(BaseModel):
    """Gateway settings, including pairing data once known."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    discover: bool = True
    gateway: str = ""
    username: str = ""
    client_key: str = Field(default="", alias="clientKey")
    client_id: str = Field(default="phue2mqtt", alias="clientId")
    polling_interval: float = Field(default=2, alias="pollingInterval", gt=0)

    @model_validator(mode="after")
    def _gateway_reachable(self) -> HueConfig:
        if not self.discover and not self.gateway:
            msg = "discover is disabled and no gateway address is configured"
            raise ValueError(msg)
        return self

    @property
    def credential(self) -> PairingCredential | None:
        """Stored credential, or None until both address and username are known."""
        if not self.gateway or not self.username:
            return None
        return PairingCredential(
            gateway_address=self.gateway,
            username=self.username,
            client_key=self.client_key,
            client_id=self.client_id,
        )


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mqtt: MqttConfig
    hue: HueConfig
    debug: bool = False


class ConfigManager:
    """Read the global config file and persist pairing results beside it."""

    lp: str = "ConfigManager:"

    def __init__(self) -> None:
        self.config_directory: Path = Path.cwd()
        self.config: AppConfig | None = None

    @property
    def saved_hue_path(self) -> Path:
        return self.config_directory / HUE_SAVED_CONFIG_FILE

    def _read_file(self, path: Path) -> dict[str, Any]:
        try:
            with path.open(encoding="utf-8") as f:
                data: object = yaml.safe_load(f)
        except OSError as e:
            msg = f"cannot read {path}: {e}"
            raise ConfigError(msg) from e
        except yaml.YAMLError as e:
            msg = f"cannot parse {path}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"{path} must contain a mapping at top level"
            raise ConfigError(msg)
        return cast("dict[str, Any]", data)

    def _merge_saved_hue_data(self, hue_section: dict[str, Any]) -> dict[str, Any]:
        lp = f"{self.lp}merge_saved:"
        # an explicit gateway in the main file wins over saved pairing data
        if hue_section.get("gateway") or not self.saved_hue_path.exists():
            return hue_section
        saved = self._read_file(self.saved_hue_path)
        logger.info("%s using saved pairing data", lp, extra={"path": str(self.saved_hue_path)})
        merged = dict(hue_section)
        for key in ("gateway", "username", "clientKey"):
            if saved.get(key):
                merged[key] = saved[key]
        return merged

    def read_global_config(self, config_path: str | Path) -> AppConfig:
        """Load and validate the config file.

        Raises:
            ConfigError: file missing, unparsable, a section is missing or a value is invalid

        """
        path = Path(config_path).expanduser()
        if not path.exists():
            msg = f"config file {path} not found"
            raise ConfigError(msg)
        path = path.resolve()
        self.config_directory = path.parent
        raw = self._read_file(path)

        for section in ("mqtt", "hue"):
            if not isinstance(raw.get(section), dict):
                msg = f"'{section}' configuration section not found"
                raise ConfigError(msg)
        raw["hue"] = self._merge_saved_hue_data(raw["hue"])

        try:
            self.config = AppConfig.model_validate(raw)
        except ValidationError as e:
            msg = f"invalid configuration in {path}: {e}"
            raise ConfigError(msg) from e
        logger.debug(
            "%s configuration loaded",
            self.lp,
            extra={"path": str(path), "gateway": self.config.hue.gateway or "<discover>"},
        )
        return self.config

    async def save_hue_data(self, credential: PairingCredential) -> None:
        """Persist a fresh pairing credential; failures are logged, not raised."""
        lp = f"{self.lp}save_hue_data:"
        target = self.saved_hue_path
        content = json.dumps(credential.to_saved_data(), indent=2)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            _ = target.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError:
            logger.exception("%s failed to save pairing data", lp, extra={"path": str(target)})
        else:
            logger.info("%s pairing data saved", lp, extra={"path": str(target)})
        if self.config is not None:
            self.config.hue.gateway = credential.gateway_address
            self.config.hue.username = credential.username
            self.config.hue.client_key = credential.client_key

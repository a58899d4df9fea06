"""Logging abstraction for phue2mqtt.

Wraps stdlib logging with structured context (``extra={...}``), correlation ids,
and a choice of human-readable and/or JSON output selected from the environment.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

from phue2mqtt.correlation import get_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "PhueLogger",
    "get_logger",
    "set_debug",
]

_CONTEXT_ATTR = "phue_context"
_known_loggers: dict[str, PhueLogger] = {}


def _record_context(record: logging.LogRecord) -> Mapping[str, object] | None:
    context = getattr(record, _CONTEXT_ATTR, None)
    if isinstance(context, Mapping) and context:
        return cast("Mapping[str, object]", context)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _record_context(record)
        if context:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``timestamp level [module:line] [corr-id] > message | key=value ...``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        formatted = super().format(record)
        context = _record_context(record)
        if context:
            formatted = f"{formatted} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return formatted


class PhueLogger:
    """Thin wrapper over ``logging.Logger`` accepting a structured ``extra`` mapping."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        from phue2mqtt.const import PHUE2MQTT_DEBUG

        self.name: str = name
        self.log_format: str = log_format
        self.logger: logging.Logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if PHUE2MQTT_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        level = self.logger.level
        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: cannot open JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(level)
                self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            output = human_output or "stdout"
            if output == "stdout":
                handler: logging.Handler = logging.StreamHandler(sys.stdout)
            elif output == "stderr":
                handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(output)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: cannot open log file {output}: {e}", file=sys.stderr)
                    handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(HumanReadableFormatter())
            handler.setLevel(level)
            self.logger.addHandler(handler)

    def _log(
        self,
        level: int,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        payload = {_CONTEXT_ATTR: dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=payload, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(
        self,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra, exc_info=exc_info)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> PhueLogger:
    """Get or create the PhueLogger for ``name``.

    Unset arguments fall back to the PHUE2MQTT_LOG_* environment settings.
    """
    if name in _known_loggers:
        return _known_loggers[name]

    from phue2mqtt.const import (
        PHUE2MQTT_LOG_FORMAT,
        PHUE2MQTT_LOG_HUMAN_OUTPUT,
        PHUE2MQTT_LOG_JSON_FILE,
    )

    phue_logger = PhueLogger(
        name=name,
        log_format=log_format or PHUE2MQTT_LOG_FORMAT,
        json_file=json_file or PHUE2MQTT_LOG_JSON_FILE,
        human_output=human_output or PHUE2MQTT_LOG_HUMAN_OUTPUT,
    )
    _known_loggers[name] = phue_logger
    return phue_logger


def set_debug(enabled: bool) -> None:
    """Switch every logger created through get_logger to DEBUG (or back to INFO)."""
    level = logging.DEBUG if enabled else logging.INFO
    for phue_logger in _known_loggers.values():
        phue_logger.set_level(level)

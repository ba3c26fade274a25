"""Core module: Settings, RelayConfig, NotificationRequest, errors and log sinks."""

import json
import logging
from typing import Protocol

import structlog
from dbus_fast.validators import (
    is_bus_name_valid,
    is_interface_name_valid,
    is_member_name_valid,
    is_object_path_valid,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigError(RelayError):
    """Relay could not be configured or could not reach the bus at startup."""


class ConnectError(RelayError):
    """Session bus connection could not be established."""


class ClientInputError(RelayError):
    """Request was rejected before any bus communication."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BusSendError(RelayError):
    """Signal emission failed."""


class Settings(BaseSettings):
    """Application configuration with environment variable support.

    Variables are prefixed with ``GSBADGE_``, e.g. ``GSBADGE_FIELD_PATH``.
    """

    host: str = "localhost"
    port: int = 18989
    dest: str = "org.gnome.Shell"
    field_path: str = "/org/shalott/dbus/DockIcon"
    field_interface: str = "org.shalott.dbus.DockIcon"
    field_member: str = "SetAppNotifications"

    model_config = SettingsConfigDict(
        env_prefix="GSBADGE_", env_file=".env", extra="ignore"
    )

    def relay_config(self) -> "RelayConfig":
        """Build the validated relay configuration.

        Raises:
            ConfigError: If any value is out of range or not a valid bus name.
        """
        return RelayConfig.build(
            host=self.host,
            port=self.port,
            bus_destination=self.dest,
            bus_path=self.field_path,
            bus_interface=self.field_interface,
            bus_member=self.field_member,
        )


class RelayConfig(BaseModel):
    """Immutable addressing and listen configuration of the relay."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)
    bus_destination: str
    bus_path: str
    bus_interface: str
    bus_member: str

    @classmethod
    def build(cls, **values) -> "RelayConfig":
        """Validate values into a config, raising ConfigError on failure."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"invalid relay configuration: {e}") from e

    @field_validator("bus_destination")
    @classmethod
    def _check_destination(cls, v: str) -> str:
        if not is_bus_name_valid(v):
            raise ValueError(f"invalid bus name: {v!r}")
        return v

    @field_validator("bus_path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        if not is_object_path_valid(v):
            raise ValueError(f"invalid object path: {v!r}")
        return v

    @field_validator("bus_interface")
    @classmethod
    def _check_interface(cls, v: str) -> str:
        if not is_interface_name_valid(v):
            raise ValueError(f"invalid interface name: {v!r}")
        return v

    @field_validator("bus_member")
    @classmethod
    def _check_member(cls, v: str) -> str:
        if not is_member_name_valid(v):
            raise ValueError(f"invalid member name: {v!r}")
        return v

    @property
    def listen_addr(self) -> str:
        return f"{self.host}:{self.port}"


class NotificationRequest(BaseModel):
    """Badge state sent in the request body.

    Keys match case-insensitively and ``null`` leaves a field empty.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    label: str = ""
    color: str = ""

    @field_validator("label", "color", mode="before")
    @classmethod
    def _null_is_empty(cls, v):
        return "" if v is None else v

    @classmethod
    def decode(cls, body: bytes) -> "NotificationRequest":
        """Decode the first JSON value of a request body, ignoring anything after it.

        Raises:
            ValueError: If the body is not UTF-8, not JSON, or has wrong field types.
        """
        text = body.decode("utf-8").lstrip(" \t\r\n")
        value, _ = json.JSONDecoder().raw_decode(text)
        if value is None:
            value = {}
        if isinstance(value, dict):
            value = {k.lower(): v for k, v in value.items()}
        return cls.model_validate(value)


class RelayLog(Protocol):
    """Sink for structured key/value log entries."""

    def log(self, **fields: str) -> None: ...


class NopRelayLog:
    """Discards every entry."""

    def log(self, **fields: str) -> None:
        pass


class LoggerRelayLog:
    """Writes entries through structlog to a stdlib logger.

    Records carry the event dict; ``logfmt_formatter()`` renders them.
    """

    def __init__(self, log: logging.Logger | None = None):
        self.logger = structlog.wrap_logger(
            log or logger,
            processors=[
                structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
                structlog.stdlib.add_log_level,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
        )

    def log(self, **fields: str) -> None:
        self.logger.info(**fields)


def logfmt_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering structlog and plain stdlib records as logfmt lines."""
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.LogfmtRenderer(
                key_order=["ts", "level", "event"], drop_missing=True
            ),
        ],
        foreign_pre_chain=[
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.stdlib.add_log_level,
        ],
    )

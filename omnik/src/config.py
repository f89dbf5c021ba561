"""
Edge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Every variable carries the ``OMNIK_`` prefix and may also come from a
``.env`` file.  The listener list is a JSON array, e.g.::

    OMNIK_LISTENERS='[{"name": "roof", "port": 8899}]'

A timeout set to ``null`` waits without limit.

CHANGELOG:
- 2026-10-19: Port checks share validate_port with Listener
- 2026-10-16: Add connect/read timeouts (null selects no limit)
- 2026-10-15: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from omnik.src.codec import parse_serial_number
from omnik.src.errors import InvalidPort, InvalidSerialNumber
from omnik.src.listener import validate_port

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _check_port(v: int, field_name: str) -> int:
    try:
        return validate_port(v)
    except InvalidPort as exc:
        raise ValueError(f"{field_name}: {exc}") from exc


class ListenerConfig(BaseModel):
    """One push listener definition.

    Attributes:
        name: Name identifying the listener in events and logs.
        port: TCP port the device pushes to.
    """

    name: str
    port: int

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        """Reject empty listener names."""
        if not v.strip():
            raise ValueError("Listener name must not be empty")
        return v

    @field_validator("port")
    @classmethod
    def port_must_be_valid(cls, v: int) -> int:
        """Validate the listener port is in the TCP range."""
        return _check_port(v, "Listener port")


class OmnikSettings(BaseSettings):
    """Edge daemon configuration for the Omnik engine.

    Attributes:
        listeners: Push listeners to start, in order.
        listen_host: Interface address the listeners bind to.
        log_level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        connect_timeout_s: Pull connect timeout; None waits indefinitely.
        read_timeout_s: Pull per-read timeout; None waits indefinitely.
        report_read_failures: Report pulls that connect but never get a
            reply as failures (otherwise they are only logged).
        pull_address: Device address to pull from.  Pulling is disabled
            when not set.
        pull_port: Device TCP port for pulls.
        pull_serial_number: Wifi module serial number; required when
            pull_address is set.
        pull_interval_s: Seconds between pulls (min 10).
        health_path: Path of the JSON health file; not written when unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="OMNIK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_parse_none_str="null",
    )

    listeners: list[ListenerConfig] = []
    listen_host: str = "0.0.0.0"
    log_level: str = "INFO"
    connect_timeout_s: float | None = 10.0
    read_timeout_s: float | None = 30.0
    report_read_failures: bool = False
    pull_address: str | None = None
    pull_port: int = 8899
    pull_serial_number: str | None = None
    pull_interval_s: int = 300
    health_path: str | None = None

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise the log level to upper case and reject unknown names."""
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"OMNIK_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @field_validator("connect_timeout_s", "read_timeout_s")
    @classmethod
    def timeout_must_be_positive(cls, v: float | None) -> float | None:
        """Timeouts must be positive; None explicitly disables the limit."""
        if v is not None and v <= 0:
            raise ValueError("Timeouts must be > 0 (or null for no limit)")
        return v

    @field_validator("pull_port")
    @classmethod
    def pull_port_must_be_valid(cls, v: int) -> int:
        """Validate the device port is in the TCP range."""
        return _check_port(v, "OMNIK_PULL_PORT")

    @field_validator("pull_interval_s")
    @classmethod
    def pull_interval_must_spare_the_module(cls, v: int) -> int:
        """The wifi module is slow; refuse to pull more often than every 10s."""
        if v < 10:
            raise ValueError("OMNIK_PULL_INTERVAL_S must be >= 10")
        return v

    @field_validator("listeners")
    @classmethod
    def listener_names_must_be_unique(cls, v: list[ListenerConfig]) -> list[ListenerConfig]:
        """Listener names identify listeners, so they must be unique."""
        names = [listener.name for listener in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate listener names: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def _pull_target_needs_serial(self) -> OmnikSettings:
        """A pull target is useless without the serial number it authenticates with."""
        if self.pull_address:
            if not self.pull_serial_number:
                raise ValueError(
                    "OMNIK_PULL_SERIAL_NUMBER is required when OMNIK_PULL_ADDRESS is set"
                )
            try:
                parse_serial_number(self.pull_serial_number)
            except InvalidSerialNumber as exc:
                raise ValueError(str(exc)) from exc
        return self

    def listener_configs(self) -> list[tuple[str, int]]:
        """Return the listeners as the ``(name, port)`` tuples the controller takes."""
        return [(listener.name, listener.port) for listener in self.listeners]

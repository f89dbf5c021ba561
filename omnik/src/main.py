"""
Edge daemon for the Omnik telemetry engine.

Starts the configured push listeners and, when a pull target is configured,
runs a pull loop that asks the device for statistics every
``pull_interval_s`` seconds.  The daemon only talks to the engine through
the controller's operations and events: every decoded frame, connection and
failure is logged, and a HealthWriter (optional) tracks the latest
statistics timestamp, pull failures and connection counts.

Graceful shutdown on SIGTERM/SIGINT sets a shared asyncio.Event; the pull
loop finishes its current wait, then the controller stops every listener and
cancels pulls still in flight.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Statistics summary takes its units from the frame field map
- 2026-10-18: Exit with status 1 when listeners cannot start
- 2026-10-16: Initial creation (STORY-112)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from omnik.src.controller import Controller
from omnik.src.errors import BindFailed, ConfigurationError
from omnik.src.events import (
    BindFailedEvent,
    ClientConnected,
    ClientDisconnected,
    ListenerReady,
    PullSessionFailed,
    RawPullDataReceived,
    RawPushDataReceived,
    StatisticsAvailable,
)
from omnik.src.frame import RESPONSE_FIELDS_BY_NAME
from omnik.src.health import HealthWriter

if TYPE_CHECKING:
    from omnik.src.config import OmnikSettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the edge daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.

    Args:
        level: Root log level name.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: OmnikSettings) -> None:
    """Log a config summary at startup.

    The wifi serial number doubles as the only credential the device checks,
    so only its last three digits are logged.

    Args:
        settings: An OmnikSettings instance (or any object with the same attrs).
    """
    serial = settings.pull_serial_number
    masked_serial = f"***{serial[-3:]}" if serial else None
    logger.info(
        "Edge daemon starting with config: "
        "listeners=%s, listen_host=%s, log_level=%s, "
        "pull_address=%s, pull_port=%s, pull_serial_number=%s, pull_interval_s=%s, "
        "connect_timeout_s=%s, read_timeout_s=%s, report_read_failures=%s, health_path=%s",
        settings.listener_configs(),
        settings.listen_host,
        settings.log_level,
        settings.pull_address,
        settings.pull_port,
        masked_serial,
        settings.pull_interval_s,
        settings.connect_timeout_s,
        settings.read_timeout_s,
        settings.report_read_failures,
        settings.health_path,
    )


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


_LOGGED_FIELDS: tuple[str, ...] = (
    "temperature",
    "production_current_1",
    "production_today",
    "production_total",
    "dc_voltage_1",
    "dc_current_1",
    "ac_voltage_1",
    "ac_current_1",
    "ac_frequency",
    "hours_active",
)
"""Statistics fields summarised on every decoded frame, in log order."""


def _log_statistics(event: StatisticsAvailable) -> None:
    stats = event.statistics
    readings = ", ".join(
        f"{name}={getattr(stats, name)}{RESPONSE_FIELDS_BY_NAME[name].unit}"
        for name in _LOGGED_FIELDS
    )
    logger.info(
        "Statistics from wifi module %s (inverter %s): %s",
        stats.wifi_serial_number,
        stats.inverter_serial_number.strip("\x00 "),
        readings,
    )


def attach_handlers(controller: Controller, health: HealthWriter | None = None) -> None:
    """Subscribe the daemon's logging and health handlers to *controller*.

    Args:
        controller: The engine controller.
        health: HealthWriter instance, or None to skip health writes.
    """
    events = controller.events

    def _connected_clients() -> int:
        return sum(len(listener.connected_clients) for listener in controller.listeners.values())

    def _on_listener_ready(event: ListenerReady) -> None:
        logger.info(
            "Listener %s ready and listening at port %d", event.listener.name, event.listener.port
        )
        if health is not None:
            names = set(controller.listeners) | {event.listener.name}
            health.set_listeners(names)

    def _on_client_connected(event: ClientConnected) -> None:
        logger.info(
            "Client connected to listener %s from %s",
            event.client.listener.name,
            event.client.remote_endpoint,
        )
        if health is not None:
            health.set_connected_clients(_connected_clients())

    def _on_client_disconnected(event: ClientDisconnected) -> None:
        logger.info(
            "Client at %s has disconnected from listener %s listening at port %d",
            event.endpoint,
            event.listener.name,
            event.listener.port,
        )
        if health is not None:
            health.set_connected_clients(_connected_clients())

    def _on_push_data(event: RawPushDataReceived) -> None:
        logger.debug(
            "Incoming data at listener %s from %s. %d bytes received.",
            event.client.listener.name,
            event.client.remote_endpoint,
            len(event.data),
        )

    def _on_pull_data(event: RawPullDataReceived) -> None:
        logger.debug(
            "Incoming data from pull action to %s:%d. %d bytes received.",
            event.session.address,
            event.session.port,
            len(event.data),
        )

    def _on_statistics(event: StatisticsAvailable) -> None:
        _log_statistics(event)
        if health is not None:
            health.record_statistics()

    def _on_pull_failed(event: PullSessionFailed) -> None:
        logger.warning("Pull from %s:%d failed: %s", event.address, event.port, event.reason)
        if health is not None:
            health.record_pull_failure()

    def _on_bind_failed(event: BindFailedEvent) -> None:
        logger.error(
            "Listener %s could not bind port %d: %s", event.name, event.port, event.reason
        )

    events.subscribe(ListenerReady, _on_listener_ready)
    events.subscribe(ClientConnected, _on_client_connected)
    events.subscribe(ClientDisconnected, _on_client_disconnected)
    events.subscribe(RawPushDataReceived, _on_push_data)
    events.subscribe(RawPullDataReceived, _on_pull_data)
    events.subscribe(StatisticsAvailable, _on_statistics)
    events.subscribe(PullSessionFailed, _on_pull_failed)
    events.subscribe(BindFailedEvent, _on_bind_failed)


# ---------------------------------------------------------------------------
# Pull loop
# ---------------------------------------------------------------------------


def _pull_once(*, controller: Controller, settings: OmnikSettings) -> None:
    """Start one pull session.

    Catches all exceptions so that the caller's loop is never broken.
    """
    try:
        controller.pull_data(
            settings.pull_address,  # type: ignore[arg-type]
            settings.pull_port,
            settings.pull_serial_number or "",
        )
    except Exception:
        logger.error("Pull cycle error", exc_info=True)


async def _pull_loop(
    *,
    controller: Controller,
    settings: OmnikSettings,
    shutdown_event: asyncio.Event,
) -> None:
    """Start a pull every pull_interval_s until shutdown_event is set."""
    logger.info("Pull loop started (interval=%ss)", settings.pull_interval_s)
    while not shutdown_event.is_set():
        _pull_once(controller=controller, settings=settings)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=settings.pull_interval_s)
    logger.info("Pull loop stopped")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run(
    settings: OmnikSettings,
    shutdown_event: asyncio.Event,
    *,
    controller: Controller | None = None,
) -> None:
    """Run the engine until shutdown_event is set.

    Args:
        settings: Daemon configuration.
        shutdown_event: Event to signal graceful shutdown.
        controller: Controller to drive; built from *settings* when omitted.

    Raises:
        ConfigurationError: If the listener definitions are invalid.
        BindFailed: If a listener cannot bind its port.
    """
    if controller is None:
        controller = Controller(
            listen_host=settings.listen_host,
            connect_timeout=settings.connect_timeout_s,
            read_timeout=settings.read_timeout_s,
            report_read_failures=settings.report_read_failures,
        )
    health = HealthWriter(settings.health_path) if settings.health_path else None
    attach_handlers(controller, health)

    try:
        await controller.start_listeners(settings.listener_configs())

        if settings.pull_address:
            await _pull_loop(
                controller=controller,
                settings=settings,
                shutdown_event=shutdown_event,
            )
        else:
            await shutdown_event.wait()
    finally:
        await controller.close()
        if health is not None:
            health.set_listeners([])
        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> int:
    """Async entrypoint: load config, configure logging, run the engine.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.

    Returns:
        Process exit status.
    """
    from omnik.src.config import OmnikSettings

    settings = OmnikSettings()
    configure_logging(settings.log_level)
    log_config_summary(settings)

    if not settings.listeners and not settings.pull_address:
        logger.warning("No listeners and no pull target configured; nothing to do")

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    try:
        await run(settings, shutdown_event)
    except (ConfigurationError, BindFailed) as exc:
        logger.error("Unable to start: %s", exc)
        return 1
    return 0


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the edge daemon."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

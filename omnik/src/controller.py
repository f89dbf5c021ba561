"""
Composition root of the Omnik edge engine.

The :class:`Controller` owns the push listeners (by name) and the in-flight
pull sessions, and multiplexes all of their activity onto one
:class:`~omnik.src.events.EventBus`:

- every push read is published as ``RawPushDataReceived`` and, when it is
  exactly 139 bytes long, decoded and published as ``StatisticsAvailable``;
- every pull read is published as ``RawPullDataReceived`` and, when it is
  130-150 bytes long, decoded and published as ``StatisticsAvailable``;
- other lengths are only forwarded raw, never decoded.

Decode failures are logged; they never propagate into a connection loop.

CHANGELOG:
- 2026-10-18: Add pull_statistics() for callers that want to await one pull
- 2026-10-17: Validate the whole listener config before starting any listener
- 2026-10-14: Initial creation (STORY-109)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from omnik.src.client import ConnectedClient
from omnik.src.codec import decode_response
from omnik.src.errors import BindFailed, ConfigurationError, DataPullFailed, OmnikError
from omnik.src.events import (
    BindFailedEvent,
    EventBus,
    PullSessionFailed,
    RawPullDataReceived,
    RawPushDataReceived,
    StatisticsAvailable,
)
from omnik.src.frame import (
    DEFAULT_DEVICE_PORT,
    PULL_FRAME_MAX_LENGTH,
    PULL_FRAME_MIN_LENGTH,
    PUSH_FRAME_LENGTH,
)
from omnik.src.listener import DEFAULT_LISTEN_HOST, Listener, validate_port
from omnik.src.models import Statistics
from omnik.src.pull import DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_READ_TIMEOUT_S, PullSession

E = TypeVar("E")


def _listener_entry(entry: Any) -> tuple[str, int]:
    """Turn one listener definition into a ``(name, port)`` tuple.

    Accepts ``(name, port)`` pairs and objects with ``name`` and ``port``
    attributes (such as :class:`~omnik.src.config.ListenerConfig`).
    """
    if isinstance(entry, tuple | list):
        if len(entry) != 2:
            raise ConfigurationError(f"Listener definition must be (name, port), got {entry!r}")
        name, port = entry
    elif hasattr(entry, "name") and hasattr(entry, "port"):
        name, port = entry.name, entry.port
    else:
        raise ConfigurationError(f"Unrecognised listener definition {entry!r}")

    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"Listener name must be a non-empty string, got {name!r}")
    return name, validate_port(port)


class Controller:
    """Controls the communication to and from Omnik inverters.

    Args:
        events: Bus to publish events on.  A new one is created when omitted.
        listen_host: Interface address listeners bind to.
        connect_timeout: Pull connect timeout in seconds, None = no limit.
        read_timeout: Pull read timeout in seconds, None = no limit.
        report_read_failures: Report pulls that connect but get no reply as
            ``PullSessionFailed`` too (they are only logged by default).
        logger: Logger handed to every listener and session.
    """

    def __init__(
        self,
        *,
        events: EventBus | None = None,
        listen_host: str = DEFAULT_LISTEN_HOST,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT_S,
        read_timeout: float | None = DEFAULT_READ_TIMEOUT_S,
        report_read_failures: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)
        self.events = events or EventBus(self._log)
        self.listen_host = listen_host
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.report_read_failures = report_read_failures
        self.listeners: dict[str, Listener] = {}
        self._pull_tasks: dict[asyncio.Task[Any], PullSession] = {}

    async def __aenter__(self) -> Controller:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def subscribe(self, event_type: type[E], handler: Callable[[E], object]) -> Callable[[], None]:
        """Shortcut for ``controller.events.subscribe``."""
        return self.events.subscribe(event_type, handler)

    @property
    def pull_sessions(self) -> frozenset[PullSession]:
        """Pull sessions that are still running."""
        return frozenset(self._pull_tasks.values())

    # ------------------------------------------------------------------
    # Push: listeners
    # ------------------------------------------------------------------

    async def start_listeners(self, configs: Iterable[Any]) -> None:
        """Create, wire and start one listener per ``(name, port)`` entry.

        The whole definition list is validated before any listener starts.
        Listeners start in order; the first bind failure is published as a
        ``BindFailedEvent`` and re-raised, and the remaining entries are not
        started.  Listeners started before the failure keep running.

        Raises:
            ConfigurationError: On a malformed entry or a duplicate name.
            InvalidPort: On a port outside 1-65535.
            BindFailed: If a listener cannot bind its port.
        """
        entries = [_listener_entry(entry) for entry in configs]
        seen: set[str] = set()
        for name, _port in entries:
            if name in seen or name in self.listeners:
                raise ConfigurationError(f"Duplicate listener name '{name}'")
            seen.add(name)

        self._log.debug("Creating %d listener(s)", len(entries))

        for name, port in entries:
            self._log.debug("Creating listener named %s on TCP port %d", name, port)
            listener = Listener(
                port,
                name,
                host=self.listen_host,
                on_event=self.events.emit,
                on_data=self._handle_push_data,
                logger=self._log,
            )
            try:
                await listener.start()
            except BindFailed as exc:
                self.events.emit(BindFailedEvent(name, port, exc.reason))
                raise

            self.listeners[name] = listener
            self._log.info("Listener named %s on TCP port %d has been created", name, port)

    async def stop_listeners(self) -> None:
        """Stop every listener, continuing past individual failures."""
        self._log.debug("Stopping all %d active listener(s)", len(self.listeners))

        for name, listener in list(self.listeners.items()):
            try:
                await listener.stop()
            except Exception:
                self._log.error("Failed to stop listener %s", name, exc_info=True)

        self.listeners.clear()
        self._log.info("All active listener(s) have stopped")

    def _handle_push_data(self, data: bytes, client: ConnectedClient) -> None:
        self.events.emit(RawPushDataReceived(data, client))
        if len(data) == PUSH_FRAME_LENGTH:
            self._publish_statistics(data)

    # ------------------------------------------------------------------
    # Pull: sessions
    # ------------------------------------------------------------------

    def pull_data(
        self, address: str, port: int = DEFAULT_DEVICE_PORT, serial_number: str = ""
    ) -> PullSession:
        """Start pulling statistics from a device and return immediately.

        The outcome is observable only through events: ``RawPullDataReceived``
        and ``StatisticsAvailable`` on success, ``PullSessionFailed`` on a
        reported failure.  Must be called from inside the running event loop.

        Raises:
            InvalidSerialNumber: If *serial_number* is not a valid serial.
        """
        session = self._new_session(address, port, serial_number)
        self._schedule(session)
        return session

    async def pull_statistics(
        self,
        address: str,
        port: int = DEFAULT_DEVICE_PORT,
        serial_number: str = "",
        *,
        timeout: float | None = None,
    ) -> Statistics:
        """Pull one set of statistics and wait for it.

        Events are published exactly as for :meth:`pull_data`.  The session
        is closed once a decodable reply arrives.

        Args:
            address: IP address or host name of the device.
            port: TCP port of the device.
            serial_number: Wifi module serial number.
            timeout: Overall seconds to wait, None = rely on the session's
                own connect and read timeouts.

        Raises:
            DataPullFailed: If the session fails, ends without a decodable
                reply, or *timeout* elapses.
            InvalidSerialNumber: If *serial_number* is not a valid serial.
        """
        result: asyncio.Future[Statistics] = asyncio.get_running_loop().create_future()

        def _on_data(data: bytes, session: PullSession) -> None:
            statistics = self._handle_pull_data(data, session)
            if statistics is not None and not result.done():
                result.set_result(statistics)
                session.close()

        def _on_failed(address: str, port: int, serial_number: str, reason: str) -> None:
            self._handle_pull_failed(address, port, serial_number, reason)
            if not result.done():
                result.set_exception(DataPullFailed(address, port, reason))

        session = self._new_session(
            address, port, serial_number, on_data=_on_data, on_failed=_on_failed
        )
        task = self._schedule(session)

        def _on_done(_task: asyncio.Task[Any]) -> None:
            if not result.done():
                reason = session.failure_reason or "no statistics in the reply"
                result.set_exception(DataPullFailed(address, port, reason))

        task.add_done_callback(_on_done)

        try:
            return await asyncio.wait_for(result, timeout=timeout)
        except TimeoutError as exc:
            session.close()
            raise DataPullFailed(address, port, f"no statistics within {timeout}s") from exc

    def _new_session(
        self,
        address: str,
        port: int,
        serial_number: str,
        *,
        on_data: Callable[[bytes, PullSession], None] | None = None,
        on_failed: Callable[[str, int, str, str], None] | None = None,
    ) -> PullSession:
        return PullSession(
            address,
            port,
            serial_number,
            on_data=on_data or self._handle_pull_data,
            on_failed=on_failed or self._handle_pull_failed,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            report_read_failures=self.report_read_failures,
            logger=self._log,
        )

    def _schedule(self, session: PullSession) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(
            session.retrieve_data(),
            name=f"omnik-pull-{session.address}:{session.port}",
        )
        self._pull_tasks[task] = session
        task.add_done_callback(self._pull_finished)
        return task

    def _pull_finished(self, task: asyncio.Task[Any]) -> None:
        session = self._pull_tasks.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("Pull session %r crashed", session, exc_info=exc)

    def _handle_pull_data(self, data: bytes, session: PullSession) -> Statistics | None:
        self.events.emit(RawPullDataReceived(data, session))
        if PULL_FRAME_MIN_LENGTH <= len(data) <= PULL_FRAME_MAX_LENGTH:
            return self._publish_statistics(data)
        return None

    def _handle_pull_failed(
        self, address: str, port: int, serial_number: str, reason: str
    ) -> None:
        self.events.emit(PullSessionFailed(address, port, serial_number, reason))

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _publish_statistics(self, data: bytes) -> Statistics | None:
        """Decode a telemetry frame and publish it.  Returns None on failure."""
        try:
            statistics = decode_response(data)
        except OmnikError as exc:
            self._log.warning("Discarding %d byte frame: %s", len(data), exc)
            return None

        self.events.emit(StatisticsAvailable(statistics))
        return statistics

    async def close(self) -> None:
        """Stop all listeners and cancel the pull sessions still running."""
        await self.stop_listeners()

        tasks = list(self._pull_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

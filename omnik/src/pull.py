"""
Active pull session retrieving statistics from an Omnik device on demand.

A :class:`PullSession` connects to the device, sends the request frame built
from the wifi serial number and reads the reply.  It is single-shot: one
invocation of :meth:`PullSession.retrieve_data` walks the state machine

    IDLE -> CONNECTING -> AWAITING_RESPONSE -> COMPLETED
                 |                |
                 +----> FAILED <--+

and never retries.  Connect failures fire the ``on_failed`` hook.  A reply
that never arrives (end of stream, socket error, read timeout) only logs and
sets FAILED, unless the session was created with
``report_read_failures=True``.  After the first reply the session keeps
reading, so a device that splits one frame over several reads still has all
of it delivered; each read is handed to ``on_data`` as-is.

Connect and read waits are bounded by default.  Passing ``None`` for a
timeout selects unbounded waiting.

CHANGELOG:
- 2026-10-17: Add report_read_failures to surface post-connect failures
- 2026-10-16: Bound connect and read with configurable timeouts
- 2026-10-14: Initial creation (STORY-108)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Callable

from omnik.src.codec import encode_request, parse_serial_number
from omnik.src.frame import DEFAULT_DEVICE_PORT, READ_BUFFER_SIZE

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CONNECT_TIMEOUT_S: float = 10.0
"""Seconds to wait for the TCP connection to the device."""

DEFAULT_READ_TIMEOUT_S: float = 30.0
"""Seconds to wait for each read from the device."""

FailedHandler = Callable[[str, int, str, str], None]


class PullSessionState(enum.Enum):
    """Where a pull session is in its lifecycle."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"
    FAILED = "failed"


class PullSession:
    """One request/response exchange with a device.

    Args:
        address: IP address or host name of the device.
        port: TCP port of the device (default 8899).
        serial_number: Wifi module serial number, as printed on the module.
        on_data: Called with ``(data, session)`` for every non-empty read.
        on_failed: Called with ``(address, port, serial_number, reason)``
            when the session fails in a reported way.
        connect_timeout: Seconds to wait for the connection, None = no limit.
        read_timeout: Seconds to wait per read, None = no limit.
        report_read_failures: Also fire ``on_failed`` when the device closes
            or errors before replying.
        logger: Logger for session diagnostics.

    Raises:
        InvalidSerialNumber: If *serial_number* is not an unsigned 32-bit
            decimal integer.
    """

    def __init__(
        self,
        address: str,
        port: int = DEFAULT_DEVICE_PORT,
        serial_number: str = "",
        *,
        on_data: Callable[[bytes, PullSession], None] | None = None,
        on_failed: FailedHandler | None = None,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT_S,
        read_timeout: float | None = DEFAULT_READ_TIMEOUT_S,
        report_read_failures: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        parse_serial_number(serial_number)
        self.address = address
        self.port = port
        self.serial_number = serial_number
        self._on_data = on_data
        self._on_failed = on_failed
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.report_read_failures = report_read_failures
        self._log = logger or logging.getLogger(__name__)
        self._state = PullSessionState.IDLE
        self._writer: asyncio.StreamWriter | None = None
        self._closing = False
        self.failure_reason: str | None = None

        self._log.debug(
            "New data pull session to %s:%d with wifi serialnumber %s has been initialized",
            address,
            port,
            serial_number,
        )

    def __repr__(self) -> str:
        return (
            f"<PullSession {self.address}:{self.port} "
            f"serial={self.serial_number} {self._state.value}>"
        )

    @property
    def state(self) -> PullSessionState:
        """Current lifecycle state."""
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve_data(self) -> PullSessionState:
        """Run the session until the connection ends.

        Returns:
            The terminal state, COMPLETED or FAILED.

        Raises:
            RuntimeError: If the session has already been run.
        """
        if self._state is not PullSessionState.IDLE:
            raise RuntimeError(f"Pull session already ran (state: {self._state.value})")

        self._state = PullSessionState.CONNECTING
        try:
            await self._run()
        except asyncio.CancelledError:
            if self._state not in (PullSessionState.COMPLETED, PullSessionState.FAILED):
                self._fail("session cancelled", report=False)
            raise
        return self._state

    def close(self) -> None:
        """Stop reading and close the connection.

        The pending read returns end-of-stream, which ends
        :meth:`retrieve_data`.  A session closed while still awaiting its
        reply ends FAILED without reporting.
        """
        self._closing = True
        if self._writer is not None:
            self._writer.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        """Connect, send the request and read the replies."""
        self._log.debug(
            "Connecting to Omnik at %s:%d with serialnumber %s to pull data",
            self.address,
            self.port,
            self.serial_number,
        )

        # -- Connect --
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.address, self.port),
                timeout=self.connect_timeout,
            )
        except TimeoutError:
            self._fail(f"connection timed out after {self.connect_timeout}s", report=True)
            return
        except OSError as exc:
            self._fail(f"unable to connect: {exc}", report=True)
            return

        self._writer = writer
        try:
            if self._closing:
                self._fail("session closed before the request was sent", report=False)
                return
            # -- Request --
            if not self._send_request(writer):
                return
            try:
                await writer.drain()
            except (ConnectionError, OSError) as exc:
                self._fail(f"connection closed while sending request: {exc}", report=True)
                return

            # -- Response --
            self._state = PullSessionState.AWAITING_RESPONSE
            await self._read_replies(reader)
        finally:
            self._writer = None
            writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await writer.wait_closed()

    def _send_request(self, writer: asyncio.StreamWriter) -> bool:
        """Write the request frame.  Returns False when the session failed."""
        if writer.is_closing():
            self._log.warning(
                "Can't send to Omnik at %s:%d with serialnumber %s "
                "because the connection is closed",
                self.address,
                self.port,
                self.serial_number,
            )
            self._fail("connection closed before the request could be sent", report=True)
            return False

        frame = encode_request(self.serial_number)
        self._log.debug(
            "Sending Omnik at %s:%d with serialnumber %s the request statistics command %s",
            self.address,
            self.port,
            self.serial_number,
            frame.hex("-"),
        )
        writer.write(frame)
        return True

    async def _read_replies(self, reader: asyncio.StreamReader) -> None:
        """Read until end of stream, error, timeout or close()."""
        while True:
            try:
                data = await asyncio.wait_for(
                    reader.read(READ_BUFFER_SIZE), timeout=self.read_timeout
                )
            except TimeoutError:
                self._end_reading(f"no data within {self.read_timeout}s")
                return
            except (ConnectionError, OSError) as exc:
                self._end_reading(f"disconnected while delivering data: {exc}")
                return

            if not data:
                self._end_reading("disconnected after data pull request")
                return

            self._log.debug(
                "Data received from Omnik at %s:%d after data pull request: '%s' (length %d)",
                self.address,
                self.port,
                data.hex("-"),
                len(data),
            )
            self._state = PullSessionState.COMPLETED
            if self._on_data is not None:
                self._on_data(data, self)

            if self._closing:
                return

    def _end_reading(self, reason: str) -> None:
        """Finish the read loop: normal end after a reply, failure before one."""
        if self._state is PullSessionState.COMPLETED:
            self._log.debug("Pull session to %s:%d ended: %s", self.address, self.port, reason)
            return
        if self._closing:
            self._fail("session closed before a reply arrived", report=False)
            return
        self._fail(reason, report=self.report_read_failures)

    def _fail(self, reason: str, *, report: bool) -> None:
        self._state = PullSessionState.FAILED
        self.failure_reason = reason
        self._log.warning(
            "Pull session to Omnik at %s:%d with serialnumber %s failed: %s",
            self.address,
            self.port,
            self.serial_number,
            reason,
        )
        if report and self._on_failed is not None:
            self._on_failed(self.address, self.port, self.serial_number, reason)

"""
One device connection accepted by a listener.

A :class:`ConnectedClient` owns the stream pair of an accepted socket and runs
its read loop as an asyncio task.  Every non-empty read is handed to the
``on_data`` hook as-is (no reassembly across reads); the connection then stays
open for further frames, even when the hook raises.  End of stream, a socket error or :meth:`close`
moves the client to closed, fires ``on_disconnect`` exactly once and
releases the transport.

CHANGELOG:
- 2026-10-19: A failing on_data hook is logged and the read loop keeps going
- 2026-10-16: Cancel the in-flight read on close() instead of waiting for EOF
- 2026-10-13: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from omnik.src.frame import READ_BUFFER_SIZE

if TYPE_CHECKING:
    from omnik.src.listener import Listener

DataHandler = Callable[[bytes, "ConnectedClient"], None]
DisconnectHandler = Callable[["ConnectedClient"], None]


def peer_endpoint(writer: asyncio.StreamWriter) -> tuple[str, int] | None:
    """Return ``(host, port)`` of the remote side of *writer*, if known."""
    peername = writer.get_extra_info("peername")
    if not peername:
        return None
    # IPv6 peernames carry flowinfo and scope id as well.
    return peername[0], peername[1]


class ConnectedClient:
    """A device connected to a :class:`~omnik.src.listener.Listener`.

    The read loop starts as soon as the client is constructed, so it must be
    created from inside the running event loop.

    Args:
        reader: Stream reader of the accepted connection.
        writer: Stream writer of the accepted connection.
        listener: The listener that accepted the connection.
        on_data: Called with ``(data, client)`` for every non-empty read.
        on_disconnect: Called with ``(client)`` once when the client closes.
        logger: Logger for connection diagnostics.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        listener: Listener,
        *,
        on_data: DataHandler | None = None,
        on_disconnect: DisconnectHandler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.listener = listener
        self.remote_endpoint = peer_endpoint(writer)
        self._on_data = on_data
        self._on_disconnect = on_disconnect
        self._log = logger or logging.getLogger(__name__)
        self._closed = False
        self._read_task: asyncio.Task[None] = asyncio.get_running_loop().create_task(
            self._read_loop(),
            name=f"omnik-client-{self.remote_endpoint}",
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<ConnectedClient {self.remote_endpoint} listener={self.listener.name!r} {state}>"

    @property
    def is_open(self) -> bool:
        """True until the connection has been closed."""
        return not self._closed

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Read until end of stream, error or cancellation."""
        try:
            while True:
                data = await self._reader.read(READ_BUFFER_SIZE)
                if not data:
                    self._log.debug("Device at %s closed the connection", self.remote_endpoint)
                    break

                self._log.debug(
                    "Data received from device at %s: '%s' (length %d)",
                    self.remote_endpoint,
                    data.hex("-"),
                    len(data),
                )
                if self._on_data is not None:
                    try:
                        self._on_data(data, self)
                    except Exception:
                        self._log.error(
                            "Data handler %r failed for device at %s",
                            self._on_data,
                            self.remote_endpoint,
                            exc_info=True,
                        )
        except asyncio.CancelledError:
            self._log.debug("Read from device at %s cancelled", self.remote_endpoint)
            raise
        except (ConnectionError, OSError) as exc:
            self._log.debug("Device at %s disconnected: %s", self.remote_endpoint, exc)
        finally:
            self._release()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the connection, unblocking any pending read.

        Safe to call more than once; only the first call has an effect.
        """
        if self._closed:
            return

        task = self._read_task
        if task is asyncio.current_task():
            # Called from a data handler running inside the read loop.
            self._release()
            return

        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
        self._release()

    def _release(self) -> None:
        """Mark closed, notify once and drop the transport."""
        if self._closed:
            return
        self._closed = True

        self._log.info("Disconnected from device at %s", self.remote_endpoint)
        self._writer.close()

        if self._on_disconnect is not None:
            self._on_disconnect(self)

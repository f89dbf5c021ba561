"""
Passive TCP listener receiving frames pushed by Omnik devices.

A :class:`Listener` binds one port with :func:`asyncio.start_server`, wraps
every accepted socket in a :class:`~omnik.src.client.ConnectedClient` and
tracks the open clients.  Accepting and client I/O run concurrently: the
server keeps accepting while clients are reading.

Lifecycle: ``stopped -> listening -> stopped``.  :meth:`Listener.stop`
closes every still-open client through the same disconnect path as an
organic disconnect, so consumers see one ``ClientDisconnected`` per client
either way, then releases the passive socket.

CHANGELOG:
- 2026-10-19: Log the port actually bound
- 2026-10-17: Close connections accepted while stopping instead of tracking them
- 2026-10-16: Drain clients before waiting for the server to close
- 2026-10-13: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from collections.abc import Callable

from omnik.src.client import ConnectedClient, peer_endpoint
from omnik.src.errors import BindFailed, InvalidPort
from omnik.src.events import ClientConnected, ClientDisconnected, ListenerReady

DEFAULT_LISTEN_HOST: str = "0.0.0.0"
"""Listen on every IPv4 interface unless told otherwise."""

_LINGER_RESET = struct.pack("ii", 1, 0)
"""SO_LINGER on with zero timeout: close resets instead of lingering."""


def validate_port(port: object) -> int:
    """Return *port* as an int, or raise :class:`InvalidPort`."""
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise InvalidPort(port)
    return port


class Listener:
    """Listens on one TCP port for devices pushing telemetry.

    Events are reported through callables rather than a bus so the listener
    stays usable on its own; the controller wires them to its
    :class:`~omnik.src.events.EventBus`.

    Args:
        port: TCP port to listen on (1-65535).
        name: Name identifying this listener in events and logs.
        host: Interface address to bind.
        on_event: Called with every lifecycle event
            (:class:`ListenerReady`, :class:`ClientConnected`,
            :class:`ClientDisconnected`).
        on_data: Called with ``(data, client)`` for every read from a client.
        logger: Logger for listener diagnostics.

    Raises:
        InvalidPort: If *port* is outside 1-65535.
    """

    def __init__(
        self,
        port: int,
        name: str | None = None,
        *,
        host: str = DEFAULT_LISTEN_HOST,
        on_event: Callable[[object], None] | None = None,
        on_data: Callable[[bytes, ConnectedClient], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)
        try:
            self.port = validate_port(port)
        except InvalidPort:
            self._log.error("Trying to create a listener on invalid port number %r", port)
            raise
        self.name = name if name is not None else str(port)
        self.host = host
        self._on_event = on_event
        self._on_data = on_data
        self._server: asyncio.Server | None = None
        self._clients: set[ConnectedClient] = set()
        self._listening = False

    def __repr__(self) -> str:
        return f"<Listener {self.name!r} {self.host}:{self.port} listening={self._listening}>"

    async def __aenter__(self) -> Listener:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_listening(self) -> bool:
        """True between a successful :meth:`start` and :meth:`stop`."""
        return self._listening

    @property
    def connected_clients(self) -> frozenset[ConnectedClient]:
        """Snapshot of the currently open client connections."""
        return frozenset(self._clients)

    @property
    def bound_port(self) -> int | None:
        """Port the passive socket is bound to, or None when stopped."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind the port and start accepting connections.

        A listener that is already started is stopped first, so restarting
        never leaks the previous passive socket.

        Raises:
            BindFailed: If the operating system refuses the bind.
        """
        if self._server is not None:
            self._log.warning(
                "Listener was already active when attempting to start it. "
                "Closing listener named %s to reopen at port TCP %d.",
                self.name,
                self.port,
            )
            await self.stop()

        self._log.debug("Starting listener at TCP %d named %s", self.port, self.name)
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                host=self.host,
                port=self.port,
            )
        except OSError as exc:
            self._log.error(
                "Unable to start listening at TCP %d using listener named %s because %s",
                self.port,
                self.name,
                exc,
            )
            raise BindFailed(self.port, self.name, str(exc)) from exc

        self._listening = True
        self._log.info("Listening at TCP %s using listener named %s", self.bound_port, self.name)
        self._emit(ListenerReady(self))

    async def stop(self) -> None:
        """Disconnect every client and release the port.  Idempotent."""
        server = self._server
        if server is None:
            return

        self._log.debug("Closing listener at TCP %d named %s", self.port, self.name)
        self._listening = False
        self._server = None

        # Stop accepting first so no new client slips in while draining.
        server.close()

        while self._clients:
            client = self._clients.pop()
            await client.close()

        await server.wait_closed()
        self._log.info("Listener at TCP %d named %s has been closed", self.port, self.name)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Wrap a freshly accepted connection in a ConnectedClient."""
        if not self._listening:
            self._log.debug(
                "Dropping connection from %s accepted while stopping", peer_endpoint(writer)
            )
            writer.close()
            return

        sock = writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, _LINGER_RESET)
            except OSError:
                self._log.debug("Could not set SO_LINGER on accepted socket", exc_info=True)

        client = ConnectedClient(
            reader,
            writer,
            self,
            on_data=self._handle_data,
            on_disconnect=self._handle_disconnect,
            logger=self._log,
        )
        self._clients.add(client)
        self._log.info(
            "Device at %s connected to listener %s", client.remote_endpoint, self.name
        )
        self._emit(ClientConnected(client))

    def _handle_data(self, data: bytes, client: ConnectedClient) -> None:
        if self._on_data is not None:
            self._on_data(data, client)

    def _handle_disconnect(self, client: ConnectedClient) -> None:
        self._clients.discard(client)
        self._emit(ClientDisconnected(client.remote_endpoint, self))

    def _emit(self, event: object) -> None:
        if self._on_event is not None:
            self._on_event(event)

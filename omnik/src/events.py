"""
Typed engine events and the observer that delivers them.

Every observable occurrence in the engine is a frozen dataclass.  Consumers
subscribe a handler per event type on an :class:`EventBus`; each emitted
event reaches each subscribed handler exactly once, in subscription order.

A handler that raises is logged and skipped: it never reaches the socket
loop that emitted the event, and never prevents the remaining handlers from
running.

CHANGELOG:
- 2026-10-19: Drop handler_count
- 2026-10-14: Return an unsubscribe callable from subscribe()
- 2026-10-12: Initial creation (STORY-105)

TODO:
- None
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from omnik.src.client import ConnectedClient
    from omnik.src.listener import Listener
    from omnik.src.models import Statistics
    from omnik.src.pull import PullSession

# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ListenerReady:
    """A listener is bound and accepting connections."""

    listener: Listener


@dataclass(frozen=True, slots=True)
class ClientConnected:
    """A device connected to one of the listeners."""

    client: ConnectedClient


@dataclass(frozen=True, slots=True)
class ClientDisconnected:
    """A device connection closed, for whatever reason.

    Attributes:
        endpoint: ``(host, port)`` of the remote side, as seen on accept.
        listener: The listener the connection belonged to.
    """

    endpoint: tuple[str, int] | None
    listener: Listener


@dataclass(frozen=True, slots=True)
class RawPushDataReceived:
    """Bytes read from a device connected to a listener."""

    data: bytes
    client: ConnectedClient


@dataclass(frozen=True, slots=True)
class RawPullDataReceived:
    """Bytes read from a device in reply to a pull request."""

    data: bytes
    session: PullSession


@dataclass(frozen=True, slots=True)
class StatisticsAvailable:
    """A push or pull frame decoded into statistics."""

    statistics: Statistics


@dataclass(frozen=True, slots=True)
class PullSessionFailed:
    """A pull session could not reach the device or lost the connection."""

    address: str
    port: int
    serial_number: str
    reason: str


@dataclass(frozen=True, slots=True)
class BindFailedEvent:
    """A listener could not bind its port."""

    name: str
    port: int
    reason: str


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------

E = TypeVar("E")


class EventBus:
    """Dispatches engine events to the handlers subscribed per event type.

    Args:
        logger: Logger used to report failing handlers.  Defaults to this
            module's logger.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)
        self._handlers: dict[type, list[Callable[[Any], object]]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], object]) -> Callable[[], None]:
        """Register *handler* for events of exactly *event_type*.

        Returns:
            A callable that removes the subscription again.  Calling it more
            than once is harmless.
        """
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: object) -> None:
        """Deliver *event* to every handler subscribed to its type."""
        # Copy so handlers may unsubscribe while being called.
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                self._log.error(
                    "Event handler %r failed for %s",
                    handler,
                    type(event).__name__,
                    exc_info=True,
                )

"""
Error taxonomy for the Omnik edge engine.

Every error raised by the engine derives from :class:`OmnikError`.  Codec
errors additionally derive from :class:`ValueError` and the unsupported
channel error from :class:`NotImplementedError`, so callers that only know the
builtin hierarchy still catch them.

CHANGELOG:
- 2026-10-14: Add DataPullFailed for awaited pulls (STORY-108)
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations


class OmnikError(Exception):
    """Base class for all Omnik engine errors."""


class ConfigurationError(OmnikError):
    """Malformed listener or daemon configuration."""


class InvalidPort(ConfigurationError, ValueError):
    """A listener port outside the range 1-65535.

    Args:
        port: The rejected port value.
    """

    def __init__(self, port: object) -> None:
        self.port = port
        super().__init__(f"Port number should be in the range 1 - 65535 (got: {port!r})")


class BindFailed(OmnikError):
    """The operating system refused to bind a listener to its port.

    Args:
        port: The port the listener tried to bind.
        name: Name of the listener, when known.
        reason: Human-readable cause (usually the OSError message).
    """

    def __init__(self, port: int, name: str | None = None, reason: str = "") -> None:
        self.port = port
        self.name = name
        self.reason = reason
        label = f"listener '{name}' " if name else ""
        super().__init__(f"Could not start {label}listening at TCP {port} because {reason}")


class DataPullFailed(OmnikError):
    """A pull session ended without producing statistics.

    Args:
        address: Address of the device.
        port: Port of the device.
        reason: Why the pull failed.
    """

    def __init__(self, address: str, port: int, reason: str) -> None:
        self.address = address
        self.port = port
        self.reason = reason
        super().__init__(f"Could not pull data from {address}:{port} because {reason}")


class FrameTooShort(OmnikError, ValueError):
    """A response frame is shorter than the last byte any field reads.

    Args:
        length: Length of the rejected buffer.
        minimum: Minimum number of bytes required.
    """

    def __init__(self, length: int, minimum: int) -> None:
        self.length = length
        self.minimum = minimum
        super().__init__(f"Response frame is {length} bytes, at least {minimum} are required")


class InvalidSerialNumber(OmnikError, ValueError):
    """A wifi serial number that is not an unsigned 32-bit decimal integer."""

    def __init__(self, serial_number: object) -> None:
        self.serial_number = serial_number
        super().__init__(
            f"Wifi serial number must be a decimal integer between 0 and 4294967295 "
            f"(got: {serial_number!r})"
        )


class ChannelNotImplemented(OmnikError, NotImplementedError):
    """Access to a telemetry channel the decoder does not support."""

"""
Pure codec for the Omnik wifi-module protocol.

Builds the 16-byte request frame sent in pull mode and decodes response
frames into a :class:`~omnik.src.models.Statistics` model using the field map
in :mod:`omnik.src.frame`.

Both directions are pure functions: no I/O, no clock, no state.  The request
frame is rebuilt on every call since it only depends on the serial number.

CHANGELOG:
- 2026-10-19: Log each decoded field with its description and unit
- 2026-10-15: Always render the serial number as 4 bytes (zero-padded)
- 2026-10-13: Decode scaled values as exact Decimals
- 2026-10-12: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import logging
from decimal import Decimal

from omnik.src.errors import FrameTooShort, InvalidSerialNumber
from omnik.src.frame import (
    CHECKSUM_BASE,
    MIN_RESPONSE_LENGTH,
    REQUEST_COMMAND,
    REQUEST_END,
    REQUEST_HEADER,
    RESPONSE_FIELDS,
    FieldDef,
)
from omnik.src.models import Statistics

logger = logging.getLogger(__name__)

_MAX_SERIAL_NUMBER = 0xFFFFFFFF

# ---------------------------------------------------------------------------
# Request frame
# ---------------------------------------------------------------------------


def parse_serial_number(serial_number: str) -> int:
    """Parse a wifi serial number into its integer value.

    Surrounding whitespace is ignored; anything other than ASCII digits
    (including a sign) is rejected.

    Raises:
        InvalidSerialNumber: If the value is not a decimal integer that fits
            in 32 unsigned bits.
    """
    if not isinstance(serial_number, str):
        raise InvalidSerialNumber(serial_number)
    text = serial_number.strip()
    if not text or not (text.isascii() and text.isdigit()):
        raise InvalidSerialNumber(serial_number)
    value = int(text)
    if value > _MAX_SERIAL_NUMBER:
        raise InvalidSerialNumber(serial_number)
    return value


def serial_to_bytes(serial_number: str) -> bytes:
    """Render a wifi serial number as exactly 4 big-endian bytes."""
    return parse_serial_number(serial_number).to_bytes(4, "big")


def request_checksum(serial_bytes: bytes) -> int:
    """Compute the request checksum over the 4 serial number bytes.

    ``((S0 + S1 + S2 + S3) * 2 + 115) & 0xFF``; the sum does not depend on
    byte order.
    """
    return (sum(serial_bytes[:4]) * 2 + CHECKSUM_BASE) & 0xFF


def encode_request(serial_number: str) -> bytes:
    """Build the request frame asking the device for its statistics.

    Layout::

        68 02 40 30  S0 S1 S2 S3  S0 S1 S2 S3  01 00  CHK  16

    where ``S0..S3`` are the serial number bytes least-significant first.

    Args:
        serial_number: Wifi module serial number as a decimal string.

    Returns:
        The 16-byte request frame.

    Raises:
        InvalidSerialNumber: If *serial_number* is not a valid serial.
    """
    serial_le = serial_to_bytes(serial_number)[::-1]
    frame = (
        REQUEST_HEADER
        + serial_le
        + serial_le
        + REQUEST_COMMAND
        + bytes((request_checksum(serial_le), REQUEST_END))
    )
    logger.debug("Request frame for serial %s: %s", serial_number, frame.hex(" "))
    return frame


# ---------------------------------------------------------------------------
# Response frame
# ---------------------------------------------------------------------------


def _extract_value(field_def: FieldDef, buffer: bytes) -> str | int | Decimal:
    """Extract and scale a single field from a response buffer.

    ASCII fields keep their fixed width: every byte becomes one character.
    Numeric fields are unsigned integers; fields with ``decimals > 0`` are
    returned as a Decimal with exactly that many decimal places.
    """
    raw = buffer[field_def.offset : field_def.end]

    if field_def.kind == "ASCII":
        return raw.decode("latin-1")

    byteorder = "little" if field_def.kind == "U32LE" else "big"
    value = int.from_bytes(raw, byteorder, signed=False)

    if field_def.decimals:
        return Decimal(value).scaleb(-field_def.decimals)
    return value


def decode_response(buffer: bytes) -> Statistics:
    """Decode a response frame into a :class:`Statistics` model.

    Bytes past the last field are ignored, so frames from firmwares that
    append extra data decode the same way.

    Args:
        buffer: The frame as received from the socket.

    Returns:
        The decoded statistics.

    Raises:
        FrameTooShort: If *buffer* is shorter than
            :data:`~omnik.src.frame.MIN_RESPONSE_LENGTH` bytes.
    """
    data = bytes(buffer)
    if len(data) < MIN_RESPONSE_LENGTH:
        raise FrameTooShort(len(data), MIN_RESPONSE_LENGTH)

    logger.debug("Decoding %d byte response frame", len(data))

    fields: dict[str, str | int | Decimal] = {}
    for field_def in RESPONSE_FIELDS:
        value = _extract_value(field_def, data)
        logger.debug(
            "%s (%s) = %r%s", field_def.name, field_def.description, value, field_def.unit
        )
        fields[field_def.name] = value

    # The wifi serial number is exposed as a numeric string.
    fields["wifi_serial_number"] = str(fields["wifi_serial_number"])

    return Statistics(raw_data=data, **fields)

"""
Omnik wifi-module frame layout -- single source of truth.

Defines the byte layout of the 16-byte request frame sent to the device in
pull mode, and the field map of the telemetry response frame: byte offset,
encoding, width, decimal scaling and unit of every field.

Numeric response fields are big-endian unsigned integers, with one exception:
the wifi serial number at offsets 4-7 is little-endian, because the device
echoes it back in the same byte order the request frame carries it.

References:
    - Omnik wifi kit data logger protocol (139-byte push frame)
    - https://github.com/Woutrrr/Omnik-Data-Logger

CHANGELOG:
- 2026-10-19: Drop the unused request length constant
- 2026-10-15: Pin minimum response length to 131 bytes
- 2026-10-12: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Wire constants
# ---------------------------------------------------------------------------

REQUEST_HEADER: bytes = bytes((0x68, 0x02, 0x40, 0x30))
"""Start marker, length and control bytes opening every request frame."""

REQUEST_COMMAND: bytes = bytes((0x01, 0x00))
"""Command bytes asking the device for its statistics."""

REQUEST_END: int = 0x16
"""End marker closing every request frame."""

CHECKSUM_BASE: int = 115
"""Constant added to twice the serial byte sum to form the checksum."""

MIN_RESPONSE_LENGTH: int = 131
"""Shortest response buffer the decoder accepts."""

PUSH_FRAME_LENGTH: int = 139
"""Length of a telemetry frame pushed by the device."""

PULL_FRAME_MIN_LENGTH: int = 130
"""Shortest pulled frame treated as telemetry (firmware variance)."""

PULL_FRAME_MAX_LENGTH: int = 150
"""Longest pulled frame treated as telemetry (firmware variance)."""

READ_BUFFER_SIZE: int = 1024
"""Bytes requested per socket read."""

DEFAULT_DEVICE_PORT: int = 8899
"""TCP port the wifi module answers pull requests on."""

# ---------------------------------------------------------------------------
# Field definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldDef:
    """Definition of a single response frame field.

    Attributes:
        name: Unique identifier, also the :class:`Statistics` attribute name.
        offset: Index of the first byte of the field.
        kind: Encoding -- one of ``"U16"``, ``"U32"`` (big-endian unsigned),
            ``"U32LE"`` (little-endian unsigned) or ``"ASCII"``.
        decimals: Number of implied decimal places.  The raw integer is
            divided by ``10 ** decimals``; 0 keeps it an integer.
        unit: Engineering unit string (e.g. ``"V"``, ``"kWh"``).
        description: Free-text description of the field.
        width: Number of bytes the field occupies.  Derived from *kind* for
            numeric fields; ASCII fields must set it explicitly.
    """

    name: str
    offset: int
    kind: str
    decimals: int = 0
    unit: str = ""
    description: str = ""
    width: int = field(default=0, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        if self.width == 0:
            width = _DEFAULT_WIDTHS.get(self.kind)
            if width is None:
                msg = f"Field '{self.name}': width must be set explicitly for kind '{self.kind}'"
                raise ValueError(msg)
            object.__setattr__(self, "width", width)

    @property
    def end(self) -> int:
        """Index one past the last byte of the field."""
        return self.offset + self.width


_DEFAULT_WIDTHS: dict[str, int] = {
    "U16": 2,
    "U32": 4,
    "U32LE": 4,
}


def _channel_fields(
    prefix: str, first_offset: int, unit: str, description: str
) -> list[FieldDef]:
    """Build the three consecutive U16 channel fields of one measurement."""
    return [
        FieldDef(
            name=f"{prefix}_{channel}",
            offset=first_offset + 2 * (channel - 1),
            kind="U16",
            decimals=1,
            unit=unit,
            description=f"{description} channel {channel}",
        )
        for channel in (1, 2, 3)
    ]


# ---------------------------------------------------------------------------
# Identity fields
# ---------------------------------------------------------------------------

_IDENTITY_FIELDS: list[FieldDef] = [
    FieldDef(
        name="wifi_serial_number",
        offset=4,
        kind="U32LE",
        description="Serial number of the wifi module, rendered as decimal string",
    ),
    FieldDef(
        name="inverter_serial_number",
        offset=15,
        kind="ASCII",
        width=16,
        description="Serial number of the inverter",
    ),
    FieldDef(
        name="main_firmware_version",
        offset=101,
        kind="ASCII",
        width=15,
        description="Main firmware version of the inverter",
    ),
    FieldDef(
        name="slave_firmware_version",
        offset=121,
        kind="ASCII",
        width=9,
        description="Slave firmware version of the inverter",
    ),
]

# ---------------------------------------------------------------------------
# Electrical fields (offsets 31-60)
# ---------------------------------------------------------------------------

_ELECTRICAL_FIELDS: list[FieldDef] = [
    FieldDef(
        name="temperature",
        offset=31,
        kind="U16",
        decimals=1,
        unit="C",
        description="Inverter temperature",
    ),
    *_channel_fields("dc_voltage", 33, "V", "PV input DC voltage"),
    *_channel_fields("dc_current", 39, "A", "PV input DC current"),
    *_channel_fields("ac_current", 45, "A", "AC output current"),
    *_channel_fields("ac_voltage", 51, "V", "AC output voltage"),
    FieldDef(
        name="ac_frequency",
        offset=57,
        kind="U16",
        decimals=2,
        unit="Hz",
        description="AC output frequency",
    ),
    FieldDef(
        name="production_current_1",
        offset=59,
        kind="U16",
        unit="W",
        description="Current power output on channel 1",
    ),
]

# ---------------------------------------------------------------------------
# Energy counters (offsets 69-78)
# ---------------------------------------------------------------------------

_ENERGY_FIELDS: list[FieldDef] = [
    FieldDef(
        name="production_today",
        offset=69,
        kind="U16",
        decimals=2,
        unit="kWh",
        description="Energy produced today",
    ),
    FieldDef(
        name="production_total",
        offset=71,
        kind="U32",
        decimals=1,
        unit="kWh",
        description="Energy produced since installation",
    ),
    FieldDef(
        name="hours_active",
        offset=75,
        kind="U32",
        unit="h",
        description="Hours active since the last reset",
    ),
]

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

RESPONSE_FIELDS: list[FieldDef] = [
    *_IDENTITY_FIELDS,
    *_ELECTRICAL_FIELDS,
    *_ENERGY_FIELDS,
]
"""Every decoded response field, in frame order within each group."""

RESPONSE_FIELDS_BY_NAME: dict[str, FieldDef] = {f.name: f for f in RESPONSE_FIELDS}
"""Flat lookup of every response field by name."""

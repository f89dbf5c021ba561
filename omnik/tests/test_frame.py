"""
Tests for the Omnik frame layout.

Verifies field map integrity: unique names, in-bounds offsets, no overlaps,
valid kinds, and the wire constants of the request frame.

CHANGELOG:
- 2026-10-15: Pin minimum response length to the last field end + 1
- 2026-10-12: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

import pytest
from omnik.src.frame import (
    MIN_RESPONSE_LENGTH,
    PULL_FRAME_MAX_LENGTH,
    PULL_FRAME_MIN_LENGTH,
    PUSH_FRAME_LENGTH,
    REQUEST_COMMAND,
    REQUEST_END,
    REQUEST_HEADER,
    RESPONSE_FIELDS,
    RESPONSE_FIELDS_BY_NAME,
    FieldDef,
)
from omnik.src.models import Statistics

VALID_KINDS = {"U16", "U32", "U32LE", "ASCII"}

CHANNEL_FIELDS = {
    f"{prefix}_{channel}"
    for prefix in ("dc_voltage", "dc_current", "ac_voltage", "ac_current")
    for channel in (1, 2, 3)
}


class TestFieldMap:
    """The response field map is consistent and complete."""

    def test_names_are_unique(self) -> None:
        names = [f.name for f in RESPONSE_FIELDS]
        assert len(names) == len(set(names))

    def test_lookup_covers_every_field(self) -> None:
        assert set(RESPONSE_FIELDS_BY_NAME) == {f.name for f in RESPONSE_FIELDS}

    def test_kinds_are_valid(self) -> None:
        for f in RESPONSE_FIELDS:
            assert f.kind in VALID_KINDS, f"{f.name} has unknown kind {f.kind}"

    def test_fields_do_not_overlap(self) -> None:
        ordered = sorted(RESPONSE_FIELDS, key=lambda f: f.offset)
        for current, following in zip(ordered, ordered[1:], strict=False):
            assert current.end <= following.offset, (
                f"{current.name} ({current.offset}-{current.end}) overlaps {following.name}"
            )

    def test_every_field_fits_minimum_response(self) -> None:
        assert max(f.end for f in RESPONSE_FIELDS) <= MIN_RESPONSE_LENGTH

    def test_every_field_is_a_statistics_attribute(self) -> None:
        model_fields = set(Statistics.model_fields)
        for f in RESPONSE_FIELDS:
            assert f.name in model_fields

    def test_channel_fields_present(self) -> None:
        assert CHANNEL_FIELDS <= set(RESPONSE_FIELDS_BY_NAME)

    @pytest.mark.parametrize(
        ("name", "offset", "width"),
        [
            ("wifi_serial_number", 4, 4),
            ("inverter_serial_number", 15, 16),
            ("temperature", 31, 2),
            ("dc_voltage_1", 33, 2),
            ("dc_current_1", 39, 2),
            ("ac_current_1", 45, 2),
            ("ac_voltage_1", 51, 2),
            ("ac_frequency", 57, 2),
            ("production_current_1", 59, 2),
            ("production_today", 69, 2),
            ("production_total", 71, 4),
            ("hours_active", 75, 4),
            ("main_firmware_version", 101, 15),
            ("slave_firmware_version", 121, 9),
        ],
    )
    def test_offsets(self, name: str, offset: int, width: int) -> None:
        f = RESPONSE_FIELDS_BY_NAME[name]
        assert (f.offset, f.width) == (offset, width)

    def test_wifi_serial_is_little_endian(self) -> None:
        assert RESPONSE_FIELDS_BY_NAME["wifi_serial_number"].kind == "U32LE"

    @pytest.mark.parametrize(
        ("name", "decimals"),
        [
            ("temperature", 1),
            ("dc_voltage_2", 1),
            ("ac_current_3", 1),
            ("ac_frequency", 2),
            ("production_today", 2),
            ("production_total", 1),
            ("hours_active", 0),
            ("production_current_1", 0),
        ],
    )
    def test_decimals(self, name: str, decimals: int) -> None:
        assert RESPONSE_FIELDS_BY_NAME[name].decimals == decimals


class TestFieldDef:
    """FieldDef derives widths and rejects ambiguous definitions."""

    def test_numeric_width_is_derived(self) -> None:
        assert FieldDef(name="x", offset=0, kind="U16").width == 2
        assert FieldDef(name="y", offset=0, kind="U32").width == 4

    def test_ascii_requires_width(self) -> None:
        with pytest.raises(ValueError, match="width must be set"):
            FieldDef(name="text", offset=0, kind="ASCII")

    def test_end(self) -> None:
        assert FieldDef(name="x", offset=10, kind="U32").end == 14


class TestWireConstants:
    """Request frame constants and frame length classification."""

    def test_request_frame_parts_add_up(self) -> None:
        # header + 2 serial copies + command + checksum + end marker
        assert len(REQUEST_HEADER) + 8 + len(REQUEST_COMMAND) + 2 == 16

    def test_request_markers(self) -> None:
        assert REQUEST_HEADER == b"\x68\x02\x40\x30"
        assert REQUEST_COMMAND == b"\x01\x00"
        assert REQUEST_END == 0x16

    def test_push_length_is_a_valid_pull_length(self) -> None:
        assert PULL_FRAME_MIN_LENGTH <= PUSH_FRAME_LENGTH <= PULL_FRAME_MAX_LENGTH

    def test_minimum_response_length(self) -> None:
        assert MIN_RESPONSE_LENGTH == 131

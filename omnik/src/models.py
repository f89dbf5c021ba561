"""
Pydantic model for one decoded Omnik telemetry frame.

Defines the immutable :class:`Statistics` model produced by the codec from a
response frame.  Values are in engineering units after scaling; scaled values
are :class:`~decimal.Decimal` so ``0x0064`` tenths reads back as exactly
``10.0``.

CHANGELOG:
- 2026-10-13: Signal unsupported power channels with ChannelNotImplemented
- 2026-10-12: Initial creation (STORY-103)

TODO:
- None
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from omnik.src.errors import ChannelNotImplemented


class Statistics(BaseModel):
    """A single set of statistics reported by an Omnik inverter.

    Constructed once per decoded frame and never mutated afterwards.

    Attributes:
        raw_data: The frame exactly as received.
        wifi_serial_number: Serial number of the wifi module (decimal string).
        inverter_serial_number: Serial number of the inverter (16 chars).
        main_firmware_version: Main firmware version (15 chars).
        slave_firmware_version: Slave firmware version (9 chars).
        temperature: Inverter temperature in degrees Celsius.
        hours_active: Hours active since the last reset.
        dc_voltage_1: PV input voltage on channel 1 in volts.
        dc_current_1: PV input current on channel 1 in amps.
        ac_voltage_1: AC output voltage on channel 1 in volts.
        ac_current_1: AC output current on channel 1 in amps.
        ac_frequency: AC output frequency in hertz.
        production_today: Energy produced today in kWh.
        production_total: Energy produced since installation in kWh.
        production_current_1: Current power output on channel 1 in watts.
    """

    model_config = ConfigDict(frozen=True)

    raw_data: bytes
    wifi_serial_number: str
    inverter_serial_number: str
    main_firmware_version: str
    slave_firmware_version: str
    temperature: Decimal
    hours_active: int
    dc_voltage_1: Decimal
    dc_voltage_2: Decimal
    dc_voltage_3: Decimal
    dc_current_1: Decimal
    dc_current_2: Decimal
    dc_current_3: Decimal
    ac_voltage_1: Decimal
    ac_voltage_2: Decimal
    ac_voltage_3: Decimal
    ac_current_1: Decimal
    ac_current_2: Decimal
    ac_current_3: Decimal
    ac_frequency: Decimal
    production_today: Decimal
    production_total: Decimal
    production_current_1: int

    @property
    def production_current_2(self) -> int:
        """Current power output on channel 2 -- not supported by the decoder."""
        raise ChannelNotImplemented(
            "Retrieving the current electricity production on channel 2 is not implemented"
        )

    @property
    def production_current_3(self) -> int:
        """Current power output on channel 3 -- not supported by the decoder."""
        raise ChannelNotImplemented(
            "Retrieving the current electricity production on channel 3 is not implemented"
        )

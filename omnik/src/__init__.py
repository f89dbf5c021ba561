"""
Omnik edge engine package.

Exchanges telemetry with Omnik solar-inverter wifi modules over their binary
TCP protocol: listens for frames pushed by the device and pulls frames on
demand, decoding both into :class:`~omnik.src.models.Statistics`.

CHANGELOG:
- 2026-10-19: Install NullHandler on the package logger
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

import logging

logging.getLogger("omnik").addHandler(logging.NullHandler())

"""
Shared test fixtures for the Omnik engine tests.

Provides environment isolation for OmnikSettings tests, a factory for
synthetic telemetry frames, a free loopback port and a polling helper for
socket tests.  All OMNIK_* env vars are cleaned before each test.

CHANGELOG:
- 2026-10-17: Add frame factory and wait_until helper
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
import time
from collections.abc import Awaitable, Callable

import pytest

# All OmnikSettings environment variable names, used for cleanup.
_ALL_OMNIK_ENV_VARS = (
    "OMNIK_LISTENERS",
    "OMNIK_LISTEN_HOST",
    "OMNIK_LOG_LEVEL",
    "OMNIK_CONNECT_TIMEOUT_S",
    "OMNIK_READ_TIMEOUT_S",
    "OMNIK_REPORT_READ_FAILURES",
    "OMNIK_PULL_ADDRESS",
    "OMNIK_PULL_PORT",
    "OMNIK_PULL_SERIAL_NUMBER",
    "OMNIK_PULL_INTERVAL_S",
    "OMNIK_HEALTH_PATH",
)

LOOPBACK = "127.0.0.1"
"""All socket tests bind and connect on the IPv4 loopback interface."""

WIFI_SERIAL = 602123456
"""Wifi module serial number written into synthetic frames."""


@pytest.fixture(autouse=True)
def _clean_omnik_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all OMNIK_* env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_OMNIK_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def build_frame(length: int = 139, wifi_serial: int = WIFI_SERIAL) -> bytes:
    """Build a synthetic telemetry frame of *length* bytes.

    Every field the decoder reads is populated with a known value:

    ======================  ==========  =============
    field                   raw         decoded
    ======================  ==========  =============
    temperature             100         10.0
    dc_voltage_1            2500        250.0
    dc_current_1            35          3.5
    ac_current_1            42          4.2
    ac_voltage_1            2301        230.1
    ac_frequency            5000        50.00
    production_current_1    960         960
    production_today        1234        12.34
    production_total        123456      12345.6
    hours_active            4321        4321
    ======================  ==========  =============
    """
    frame = bytearray(max(length, 131))
    frame[0:4] = bytes((0x68, 0x7D, 0x41, 0xB0))
    frame[4:8] = wifi_serial.to_bytes(4, "little")
    frame[15:31] = b"NLDN302013123456"
    frame[31:33] = (100).to_bytes(2, "big")
    frame[33:35] = (2500).to_bytes(2, "big")
    frame[39:41] = (35).to_bytes(2, "big")
    frame[45:47] = (42).to_bytes(2, "big")
    frame[51:53] = (2301).to_bytes(2, "big")
    frame[57:59] = (5000).to_bytes(2, "big")
    frame[59:61] = (960).to_bytes(2, "big")
    frame[69:71] = (1234).to_bytes(2, "big")
    frame[71:75] = (123456).to_bytes(4, "big")
    frame[75:79] = (4321).to_bytes(4, "big")
    frame[101:116] = b"NL1-V1.0-0077-4"
    frame[121:130] = b"V2.0-0024"
    return bytes(frame[:length])


@pytest.fixture()
def make_frame() -> Callable[..., bytes]:
    """Return the synthetic frame builder."""
    return build_frame


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


@pytest.fixture()
def free_port() -> int:
    """Return a loopback TCP port that is free right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK, 0))
        return sock.getsockname()[1]


@pytest.fixture()
def wait_until() -> Callable[..., Awaitable[None]]:
    """Return a coroutine function polling a condition until it holds.

    ``await wait_until(lambda: cond, timeout=2.0)`` fails the test when the
    condition is still false after *timeout* seconds.
    """

    async def _wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not condition():
            if time.monotonic() > deadline:
                pytest.fail(f"condition not met within {timeout}s")
            await asyncio.sleep(0.01)

    return _wait_until


# ---------------------------------------------------------------------------
# Fake wifi module
# ---------------------------------------------------------------------------


class FakeDevice:
    """Minimal wifi module answering pull requests on a loopback port.

    Args:
        port: Port to listen on.
        replies: Chunks written after the request arrives, in order.
        hang_up: Close the connection after the replies.  When False the
            device keeps the connection open until the session closes it.
        pause: Seconds to wait between chunks.
    """

    def __init__(
        self,
        port: int,
        replies: tuple[bytes, ...] = (),
        *,
        hang_up: bool = True,
        pause: float = 0.0,
    ) -> None:
        self.port = port
        self.replies = replies
        self.hang_up = hang_up
        self.pause = pause
        self.requests: list[bytes] = []
        self._server: asyncio.Server | None = None

    async def __aenter__(self) -> FakeDevice:
        self._server = await asyncio.start_server(self._handle, LOOPBACK, self.port)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            self.requests.append(await reader.readexactly(16))
            for chunk in self.replies:
                if self.pause:
                    await asyncio.sleep(self.pause)
                writer.write(chunk)
                await writer.drain()
            if not self.hang_up:
                await reader.read()
        except (ConnectionError, OSError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await writer.wait_closed()


@pytest.fixture()
def fake_device() -> type[FakeDevice]:
    """Return the FakeDevice class; use it as ``async with fake_device(port, ...)``."""
    return FakeDevice

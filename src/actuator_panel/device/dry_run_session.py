"""
Dry-Run Session - transport implementation for testing without hardware.

This module provides the DryRunSession class which simulates the actuator
firmware in memory. It answers the handshake, echoes motor and regulator
commands, confirms homing steps and periodically reports a position that
moves toward the last target while the motor is on.
"""

import asyncio

from actuator_panel.core.logging import get_logger, log_serial_sent
from actuator_panel.core.utils import SerialReadError, SerialWriteError
from actuator_panel.device.protocol import ProtocolProfile, encode_line, format_decimal
from actuator_panel.device.session import DEFAULT_STALE_AFTER, TransportSession

logger = get_logger()

DEFAULT_REPORT_INTERVAL = 500  # ms
DEFAULT_STEP = 5.0  # percent per report


class DryRunSession(TransportSession):
    """
    Transport session backed by a simulated actuator.

    All commands are logged and interpreted, nothing touches hardware.
    """

    def __init__(
        self,
        profile: ProtocolProfile,
        port: str = "dry-run",
        stale_after: float = DEFAULT_STALE_AFTER,
        report_interval: float = DEFAULT_REPORT_INTERVAL,  # ms
        step: float = DEFAULT_STEP,
    ):
        """
        Initialize the dry-run session.

        Args:
            profile: Protocol revision the simulated firmware speaks.
            port: Name reported for this session.
            stale_after: Time in ms without data after which the session is stale.
            report_interval: Time in ms between unsolicited position reports.
            step: Distance in percent the actuator travels per report.
        """
        super().__init__(port, stale_after=stale_after)
        self.profile = profile
        self.report_interval = report_interval / 1000
        self.step = step

        self.position = 0.0
        self.target = 0.0
        self.motor_on = False
        self.received: list[str] = []

        self._outbox: asyncio.Queue[bytes] | None = None

    @property
    def is_open(self) -> bool:
        return self._outbox is not None

    async def open(self) -> None:
        if self.is_open:
            logger.warning("Dry-run session already open")
            return

        self._outbox = asyncio.Queue()
        self.touch()
        logger.info("Opened dry-run session (no actual hardware)")

    async def close(self) -> None:
        outbox, self._outbox = self._outbox, None
        if outbox is not None:
            # Ends a read that is still waiting
            outbox.put_nowait(b"")
            logger.debug("Dry-run session closed")

    async def write(self, data: bytes) -> None:
        if self._outbox is None:
            raise SerialWriteError("Cannot write - dry-run session is not open")

        for line in data.decode("ascii").splitlines():
            line = line.strip()
            if line:
                log_serial_sent(line)
                self.received.append(line)
                self._handle_command(line)

    async def read_chunk(self) -> bytes:
        outbox = self._outbox
        if outbox is None:
            raise SerialReadError("Cannot read - dry-run session is closed", fatal=True)

        try:
            data = await asyncio.wait_for(outbox.get(), timeout=self.report_interval)
        except asyncio.TimeoutError:
            self._advance()
            data = encode_line(f"{self.profile.height_tag}:{self.position:.1f}")

        if data:
            self.touch()
        return data

    def _reply(self, body: str) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait(encode_line(body))

    def _handle_command(self, line: str) -> None:
        profile = self.profile

        if line == profile.handshake_command:
            logger.debug("Dry-run: handshake request")
            self._reply(profile.handshake_ack or "")
            return

        if line == profile.set_min_command:
            logger.debug("Dry-run: min position stored")
            self._reply(profile.min_confirm)
            return

        if line == profile.set_max_command:
            logger.debug("Dry-run: max position stored")
            self._reply(profile.max_confirm[0])
            return

        if line == profile.calibration_command:
            logger.debug("Dry-run: calibration requested")
            return

        tag, _, value = line.partition(":")
        try:
            number = float(value)
        except ValueError:
            logger.warning(f"Dry-run: unhandled command {line!r}")
            return

        if tag == profile.target_tag:
            self.target = number
        elif tag == profile.motor_tag:
            self.motor_on = number == 1
            self._reply(f"{profile.motor_tag}:{1 if self.motor_on else 0}")
        elif tag in ("P", "S", "D"):
            self._reply(f"{tag}:{format_decimal(number)}")
        else:
            logger.warning(f"Dry-run: unhandled command {line!r}")

    def _advance(self) -> None:
        if not self.motor_on:
            return
        delta = self.target - self.position
        if abs(delta) <= self.step:
            self.position = self.target
        else:
            self.position += self.step if delta > 0 else -self.step

"""
Actuator Device - serial control of the height/angle actuator.

This module provides the ActuatorDevice class, which owns one transport
session at a time and drives it: it sends the handshake, runs the read loop
that reassembles and decodes inbound records, tracks homing, feeds telemetry
and watches for a silent device. Every failure ends in the same teardown
routine, which never raises and always leaves the panel disconnected.
"""

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from actuator_panel.core.logging import get_logger, log_serial_recv
from actuator_panel.core.utils import (
    SerialConnectionError,
    SerialDeviceNotFoundError,
    SerialReadError,
    SerialWriteError,
    is_device_lost_error,
    resolve_serial_port,
)
from actuator_panel.device.handlers import DefaultPanelHandler, PanelHandler
from actuator_panel.device.handshake import (
    DEFAULT_HANDSHAKE_TIMEOUT,
    Handshake,
    HandshakeState,
)
from actuator_panel.device.homing import HomingState, HomingTracker
from actuator_panel.device.line_buffer import LineBuffer
from actuator_panel.device.protocol import (
    DEFAULT_PROFILE,
    AngleReading,
    HeightReading,
    MaxPositionConfirmed,
    MinPositionConfirmed,
    MotorStatus,
    ProtocolEvent,
    ProtocolProfile,
    RegulatorTerm,
    Unrecognized,
    decode,
    encode_calibration,
    encode_handshake,
    encode_motor,
    encode_regulator_terms,
    encode_target,
    get_profile,
)
from actuator_panel.device.session import (
    DEFAULT_BAUD_RATE,
    DEFAULT_STALE_AFTER,
    SerialTransportSession,
    TransportSession,
)
from actuator_panel.device.status import ConnectionStatus, PanelDisplay

if TYPE_CHECKING:
    from actuator_panel.telemetry import TelemetrySink

logger = get_logger()

DEFAULT_LIVENESS_CHECK_PERIOD = 5000  # ms
DEFAULT_READ_RETRY_DELAY = 1000  # ms
DEFAULT_COMMAND_DELAY = 50  # ms

SessionFactory = Callable[[str], TransportSession]


class ReadLoopState(Enum):
    """Lifecycle of the read loop: RUNNING ⇄ STOPPING → STOPPED."""

    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value


class ActuatorDevice:
    """
    Panel-side driver for the actuator firmware.

    Inbound records are only acted on once the handshake is established.
    Outbound commands are written one line at a time, each write awaited
    before the next; bursts never interleave.
    """

    def __init__(
        self,
        usb_id: str | None = None,
        dev_path: str | None = None,
        baud_rate: int = DEFAULT_BAUD_RATE,
        profile: ProtocolProfile | str = DEFAULT_PROFILE,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,  # ms
        stale_after: float = DEFAULT_STALE_AFTER,  # ms
        liveness_check_period: float = DEFAULT_LIVENESS_CHECK_PERIOD,  # ms
        read_retry_delay: float = DEFAULT_READ_RETRY_DELAY,  # ms
        command_delay: float = DEFAULT_COMMAND_DELAY,  # ms
        telemetry: "TelemetrySink | None" = None,
        handler: PanelHandler | None = None,
        session_factory: SessionFactory | None = None,
    ):
        """
        Initialize the actuator device.

        Args:
            usb_id: USB device ID in vendor:product format (alternative to dev_path).
            dev_path: Device path like /dev/ttyACM0.
            baud_rate: Serial baud rate for communication.
            profile: Protocol profile or its registry name.
            handshake_timeout: Time in ms to wait for the handshake acknowledgement.
            stale_after: Time in ms without data after which the connection is lost.
            liveness_check_period: Period in ms of the staleness check.
                Set to 0 to disable the check.
            read_retry_delay: Delay in ms before retrying a failed read.
            command_delay: Delay in ms between the lines of a multi-line command.
            telemetry: Sink receiving target/actual positions and regulator terms.
            handler: Receiver of status and display updates.
            session_factory: Builds the transport session for a port name.
                Defaults to a serial session.
        """
        self.usb_id = usb_id
        self.dev_path = dev_path
        self.baud_rate = baud_rate
        self.profile = get_profile(profile) if isinstance(profile, str) else profile
        self.handshake_timeout = handshake_timeout
        self.stale_after = stale_after
        self.liveness_check_period = liveness_check_period / 1000
        self.read_retry_delay = read_retry_delay / 1000
        self.command_delay = command_delay / 1000
        self.telemetry = telemetry
        self.handler = handler or DefaultPanelHandler()
        self._session_factory = session_factory or self._create_serial_session

        self.display = PanelDisplay()

        self._session: TransportSession | None = None
        self._handshake: Handshake | None = None
        self._homing = HomingTracker(self.profile)
        self._line_buffer = LineBuffer()

        self._running = False
        self._closing = False
        self._read_loop_state = ReadLoopState.STOPPED
        self._read_loop_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None

        self._write_lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._disconnected = asyncio.Event()
        self._disconnected.set()

    def _create_serial_session(self, port: str) -> TransportSession:
        return SerialTransportSession(port, baud_rate=self.baud_rate, stale_after=self.stale_after)

    @property
    def status(self) -> ConnectionStatus:
        return self.display.status

    @property
    def session(self) -> TransportSession | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        """Check if a transport session is open."""
        return self._session is not None and self._session.is_open

    @property
    def is_ready(self) -> bool:
        """Check if the handshake is complete and commands may be sent."""
        return self.is_connected and self.handshake_state == HandshakeState.ESTABLISHED

    @property
    def handshake_state(self) -> HandshakeState:
        if self._handshake is None:
            return HandshakeState.IDLE
        return self._handshake.state

    @property
    def homing_state(self) -> HomingState:
        return self._homing.state

    @property
    def is_fully_homed(self) -> bool:
        return self._homing.is_fully_homed

    @property
    def read_loop_state(self) -> ReadLoopState:
        return self._read_loop_state

    def set_position_command(self) -> bytes | None:
        """The command the set-position action would send now (None when disabled)."""
        return self._homing.current_command()

    async def connect(self) -> None:
        """
        Open a session and start the handshake.

        Returns once the handshake request has been sent; use
        wait_until_ready() to wait for the acknowledgement.

        Raises:
            SerialDeviceNotFoundError: If no device is selected or present.
            ValueError: If the configured USB ID is malformed.
            SerialOpenError: If the port cannot be opened.
            SerialWriteError: If the handshake request cannot be sent.
        """
        if self._closing:
            await self._disconnected.wait()

        if self._session is not None:
            logger.warning("Already connected to device")
            return

        self._set_status(ConnectionStatus.CONNECTING)

        try:
            port = resolve_serial_port(usb_id=self.usb_id, dev_path=self.dev_path)
            session = self._session_factory(port)
            await session.open()
        except (SerialDeviceNotFoundError, SerialConnectionError, ValueError) as e:
            logger.error(f"Failed to connect: {e}")
            self.display.reset()
            self._set_status(ConnectionStatus.DISCONNECTED, str(e))
            raise

        self._session = session
        self._disconnected.clear()
        self._ready.clear()
        self._line_buffer = LineBuffer()
        self._homing.reset()
        self._handshake = Handshake(
            self.profile,
            timeout=self.handshake_timeout,
            on_timeout=self._on_handshake_timeout,
        )

        self._running = True
        self._read_loop_state = ReadLoopState.RUNNING
        self._read_loop_task = asyncio.create_task(self._read_loop())
        self._watchdog_task = asyncio.create_task(self._watchdog_loop())

        logger.info(f"Connected to {session.port} (profile: {self.profile.name})")

        # Enter AWAITING_ACK before the request goes out so a quick ack is not missed
        self._handshake.begin()
        if self._handshake.is_established:
            self._on_established()
            return

        try:
            await self._write(encode_handshake(self.profile))
        except SerialWriteError as e:
            await self._teardown(
                ConnectionStatus.HANDSHAKE_FAILED, f"Handshake request failed: {e}"
            )
            raise

    async def disconnect(self) -> None:
        """
        Disconnect from the device.

        Idempotent; waits for a teardown already in progress.
        """
        if self._closing:
            await self._disconnected.wait()
            return

        if self._session is None:
            return

        logger.info("Disconnecting from device")
        await self._teardown(ConnectionStatus.DISCONNECTED)

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """
        Wait for the handshake to complete.

        Args:
            timeout: Maximum time to wait in seconds. None means no limit.

        Returns:
            True if the device is ready, False if the session ended or the
            timeout elapsed first.
        """
        if self.is_ready:
            return True
        if self._session is None:
            return False

        waiters = {
            asyncio.create_task(self._ready.wait()),
            asyncio.create_task(self._disconnected.wait()),
        }
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

        return self.is_ready

    # Commands

    async def set_target(self, position: int) -> None:
        """
        Move the actuator to a target position.

        Args:
            position: Target in percent, integer 0..100.

        Raises:
            ValueError: If the position is out of range.
            SerialConnectionError: If the device is not ready or the write fails.
        """
        command = encode_target(self.profile, position)
        await self._send_command(command)
        logger.info(f"Sent target position: {position}%")

        if self.telemetry is not None:
            self.telemetry.record_target(position)

    async def set_motor(self, on: bool) -> None:
        """Switch the motor on or off."""
        await self._send_command(encode_motor(self.profile, on))
        logger.info(f"Motor turned {'ON' if on else 'OFF'}")

        self.display.motor_on = on
        self._notify_display()

    async def send_regulator_terms(self, p: float, s: float, d: float) -> None:
        """
        Send the P, S and D regulator terms as three separate lines.

        The lines are spaced by command_delay so the firmware's input buffer
        is not overrun.
        """
        await self._send_command(
            *encode_regulator_terms(self.profile, p, s, d), delay=self.command_delay
        )
        logger.info(f"Sent regulator terms P={p} S={s} D={d}")

    async def set_position(self) -> bool:
        """
        Store the current position as the next homing bound.

        Sends the min command first, the max command after the minimum is
        confirmed, and nothing once the system is homed.

        Returns:
            True if a command was sent, False if homing is already complete.
        """
        command = self._homing.current_command()
        if command is None:
            logger.info("System already homed, ignoring set position")
            return False

        await self._send_command(command)
        logger.info(f"Sent set position command ({self._homing.state})")
        return True

    async def calibrate(self) -> None:
        """
        Send the calibration command of the active profile.

        Raises:
            ValueError: If the profile has no calibration command.
        """
        await self._send_command(encode_calibration(self.profile))
        logger.info("Sent calibration command")

    async def _send_command(self, *lines: bytes, delay: float = 0.0) -> None:
        if not self.is_ready:
            raise SerialConnectionError(f"Device is not ready for commands ({self.status})")

        try:
            await self._write(*lines, delay=delay)
        except SerialWriteError as e:
            logger.error(f"Failed to send command: {e}")
            raise

    async def _write(self, *lines: bytes, delay: float = 0.0) -> None:
        """Write lines strictly one after another, pausing `delay` seconds between them."""
        async with self._write_lock:
            for index, line in enumerate(lines):
                session = self._session
                if session is None:
                    raise SerialWriteError("Cannot write - not connected to device")
                if index and delay:
                    await asyncio.sleep(delay)
                await session.write(line)

    # Read loop

    async def _read_loop(self) -> None:
        """
        Loop that reads from the session and processes complete records.

        End of stream and fatal read errors tear the connection down. Other
        read errors are retried after read_retry_delay unless the loop was
        stopped in the meantime.
        """
        logger.info("Device read loop started")

        try:
            while self._running:
                session = self._session
                if session is None:
                    break

                try:
                    chunk = await session.read_chunk()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if is_device_lost_error(e):
                        logger.error(f"Device connection lost: {e}")
                        self._read_loop_state = ReadLoopState.STOPPING
                        await self._teardown(ConnectionStatus.CONNECTION_LOST, str(e))
                        break

                    if not self._running:
                        break

                    logger.warning(
                        f"Error reading from device, retrying in "
                        f"{self.read_retry_delay * 1000:.0f}ms: {e}"
                    )
                    await asyncio.sleep(self.read_retry_delay)
                    continue

                if not chunk:
                    logger.info("Device closed the serial stream")
                    self._read_loop_state = ReadLoopState.STOPPING
                    await self._teardown(
                        ConnectionStatus.CONNECTION_LOST, "Serial stream ended"
                    )
                    break

                for line in self._line_buffer.feed(chunk):
                    try:
                        self._handle_line(line)
                    except Exception as e:
                        logger.error(f"Error handling record {line!r}: {e}")

        except asyncio.CancelledError:
            logger.info("Device read loop stopped")

        finally:
            self._read_loop_state = ReadLoopState.STOPPED

    def _handle_line(self, line: str) -> None:
        """
        Route one record through the handshake gate to its consumers.

        Args:
            line: A complete, trimmed record.
        """
        log_serial_recv(line)

        handshake = self._handshake
        if handshake is None or not handshake.is_established:
            if handshake is not None and handshake.observe(line):
                self._on_established()
            return

        for event in decode(line, self.profile):
            self._dispatch(event)

    def _dispatch(self, event: ProtocolEvent) -> None:
        changed = False

        if isinstance(event, (HeightReading, AngleReading)):
            self.display.show_position(event.value)
            if self.telemetry is not None:
                self.telemetry.record_actual(event.value)
            logger.verbose(f"Received position: {event.value}")
            changed = True

        elif isinstance(event, RegulatorTerm):
            if self.telemetry is not None:
                self.telemetry.record_regulator(event.which, event.value)
            logger.verbose(f"Received regulator term {event.which}={event.value}")

        elif isinstance(event, (MinPositionConfirmed, MaxPositionConfirmed)):
            if self._homing.apply(event):
                self.display.homing_text = self._homing.status_text
                changed = True

        elif isinstance(event, MotorStatus):
            self.display.motor_on = event.on
            logger.debug(f"Motor status: {'ON' if event.on else 'OFF'}")
            changed = True

        elif isinstance(event, Unrecognized):
            logger.debug(f"Unrecognized record: {event.raw!r}")

        try:
            self.handler.on_event(event)
        except Exception as e:
            logger.error(f"Panel handler failed on event {event}: {e}")

        if changed:
            self._notify_display()

    def _on_established(self) -> None:
        self._homing.reset()
        self.display.homing_text = self._homing.status_text
        self.display.commands_enabled = True
        self._ready.set()
        self._set_status(ConnectionStatus.CONNECTED)
        self._notify_display()
        logger.info("Device ready for commands")

    # Timeouts

    async def _on_handshake_timeout(self) -> None:
        await self._teardown(
            ConnectionStatus.HANDSHAKE_FAILED,
            f"No handshake acknowledgement within {self.handshake_timeout:.0f}ms",
        )

    async def _watchdog_loop(self) -> None:
        """
        Loop that checks every liveness_check_period whether data still arrives.

        Only an established session is checked. A stale session is torn down
        with status CONNECTION_LOST.
        """
        if self.liveness_check_period <= 0:
            logger.info("Device watchdog disabled (liveness_check_period is 0)")
            return

        try:
            while self._running:
                await asyncio.sleep(self.liveness_check_period)

                session = self._session
                if session is None or self.handshake_state != HandshakeState.ESTABLISHED:
                    continue

                if session.is_stale():
                    detail = f"No data received for over {session.stale_after:g}s"
                    logger.error(f"{detail}, connection considered lost")
                    await self._teardown(ConnectionStatus.CONNECTION_LOST, detail)
                    break

        except asyncio.CancelledError:
            logger.debug("Device watchdog stopped")

    # Teardown

    async def _teardown(self, status: ConnectionStatus, detail: str | None = None) -> None:
        """
        Close the connection and reset the panel.

        Stops the read loop and the watchdog (never the calling task), closes
        the handshake and the session. Each step runs even if an earlier one
        failed. Never raises.
        """
        if self._closing:
            await self._disconnected.wait()
            return

        self._closing = True
        try:
            self._running = False
            if self._read_loop_state == ReadLoopState.RUNNING:
                self._read_loop_state = ReadLoopState.STOPPING
            self._ready.clear()

            current = asyncio.current_task()
            for task in (self._read_loop_task, self._watchdog_task):
                if task is None or task is current or task.done():
                    continue
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Error stopping device task: {e}")

            self._read_loop_task = None
            self._watchdog_task = None

            if self._handshake is not None:
                try:
                    self._handshake.close()
                except Exception as e:
                    logger.warning(f"Error closing handshake: {e}")

            session, self._session = self._session, None
            if session is not None:
                try:
                    await session.close()
                except Exception as e:
                    logger.warning(f"Error closing session: {e}")

            self._line_buffer.clear()
            self._homing.reset()

        finally:
            self._closing = False
            self.display.reset(status)
            self._disconnected.set()
            self._set_status(status, detail)
            self._notify_display()
            logger.info(f"Disconnected from device ({status})")

    # Handler notifications

    def _set_status(self, status: ConnectionStatus, detail: str | None = None) -> None:
        self.display.status = status
        try:
            self.handler.on_status(status, detail)
        except Exception as e:
            logger.error(f"Panel handler failed on status {status}: {e}")

    def _notify_display(self) -> None:
        try:
            self.handler.on_display(self.display)
        except Exception as e:
            logger.error(f"Panel handler failed on display update: {e}")

    async def __aenter__(self) -> "ActuatorDevice":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()

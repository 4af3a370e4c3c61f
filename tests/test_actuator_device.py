"""
Tests for the ActuatorDevice read-loop driver.

A FakeSession stands in for the serial port: tests push inbound chunks (or
exceptions) into it and inspect what the device wrote.
"""

import asyncio

import pytest

from actuator_panel.core.utils import (
    SerialConnectionError,
    SerialDeviceNotFoundError,
    SerialOpenError,
    SerialReadError,
    SerialWriteError,
)
from actuator_panel.device.actuator_device import ActuatorDevice, ReadLoopState
from actuator_panel.device.handlers import PanelHandler
from actuator_panel.device.handshake import HandshakeState
from actuator_panel.device.homing import HomingState
from actuator_panel.device.protocol import RegulatorTermName
from actuator_panel.device.session import TransportSession
from actuator_panel.device.status import ConnectionStatus
from actuator_panel.telemetry import TelemetryRecorder


class FakeSession(TransportSession):
    """In-memory transport session."""

    def __init__(self, stale_after=10000, auto_ack=True, open_error=None, write_error=None):
        super().__init__("/dev/fake", stale_after=stale_after)
        self.auto_ack = auto_ack
        self.open_error = open_error
        self.write_error = write_error
        self.written: list[bytes] = []
        self.close_count = 0
        self._open = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self):
        return self._open

    @property
    def closed(self):
        return self.close_count > 0 and not self._open

    def feed(self, item):
        """Queue inbound bytes, or an exception to raise from the next read."""
        self._inbox.put_nowait(item)

    async def open(self):
        if self.open_error:
            raise self.open_error
        self._open = True
        self.touch()

    async def close(self):
        self._open = False
        self.close_count += 1

    async def write(self, data):
        if self.write_error:
            raise self.write_error
        self.written.append(data)
        if self.auto_ack and data == b"M\n":
            self.feed(b"N\n")

    async def read_chunk(self):
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        if item:
            self.touch()
        return item


class RecordingHandler(PanelHandler):
    """Remembers every status and display update."""

    def __init__(self):
        self.statuses: list[tuple[ConnectionStatus, str | None]] = []
        self.displays = 0
        self.events = []

    def on_status(self, status, detail=None):
        self.statuses.append((status, detail))

    def on_display(self, display):
        self.displays += 1

    def on_event(self, event):
        self.events.append(event)


def make_device(*sessions, **kwargs):
    remaining = iter(sessions)
    kwargs.setdefault("dev_path", "/dev/fake")
    return ActuatorDevice(
        session_factory=lambda port: next(remaining),
        telemetry=kwargs.pop("telemetry", TelemetryRecorder()),
        handler=kwargs.pop("handler", RecordingHandler()),
        **kwargs,
    )


async def settle():
    """Let the read loop process what was fed."""
    await asyncio.sleep(0.02)


async def connected_device(session=None, **kwargs):
    session = session or FakeSession()
    device = make_device(session, **kwargs)
    await device.connect()
    assert await device.wait_until_ready(timeout=1.0)
    return device, session


class TestHandshakeGating:
    """The handshake gates all protocol traffic."""

    @pytest.mark.asyncio
    async def test_connect_sends_handshake(self):
        session = FakeSession(auto_ack=False)
        device = make_device(session)

        await device.connect()
        try:
            assert session.written == [b"M\n"]
            assert device.status == ConnectionStatus.CONNECTING
            assert device.handshake_state == HandshakeState.AWAITING_ACK
            assert device.is_connected
            assert not device.is_ready
        finally:
            await device.disconnect()

    @pytest.mark.asyncio
    async def test_records_before_ack_are_discarded(self):
        session = FakeSession(auto_ack=False)
        device = make_device(session)
        await device.connect()

        session.feed(b"HEIGHT:42.5\nZ:1\n")
        await settle()

        assert device.display.position_text == "--"
        assert not device.display.motor_on
        assert len(device.telemetry) == 0
        assert device.handler.events == []

        session.feed(b"N\n")
        assert await device.wait_until_ready(timeout=1.0)
        assert device.status == ConnectionStatus.CONNECTED
        assert device.display.commands_enabled

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_commands_before_ready_raise(self):
        session = FakeSession(auto_ack=False)
        device = make_device(session)
        await device.connect()

        with pytest.raises(SerialConnectionError):
            await device.set_target(50)
        with pytest.raises(SerialConnectionError):
            await device.set_motor(True)

        assert session.written == [b"M\n"]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_timeout_closes_session(self):
        session = FakeSession(auto_ack=False)
        device = make_device(session, handshake_timeout=50)
        await device.connect()

        await asyncio.sleep(0.2)

        assert device.status == ConnectionStatus.HANDSHAKE_FAILED
        assert device.handshake_state == HandshakeState.FAILED
        assert session.closed
        assert not device.is_connected
        assert device.read_loop_state == ReadLoopState.STOPPED
        assert device.handler.statuses[-1][0] == ConnectionStatus.HANDSHAKE_FAILED

    @pytest.mark.asyncio
    async def test_wait_until_ready_returns_false_on_handshake_failure(self):
        session = FakeSession(auto_ack=False)
        device = make_device(session, handshake_timeout=50)
        await device.connect()

        assert not await device.wait_until_ready(timeout=1.0)

    @pytest.mark.asyncio
    async def test_profile_without_handshake_is_ready_immediately(self):
        session = FakeSession()
        device = make_device(session, profile="legacy")

        await device.connect()

        assert device.is_ready
        assert device.status == ConnectionStatus.CONNECTED
        assert session.written == []
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_write_failure(self):
        session = FakeSession(write_error=SerialWriteError("write failed"))
        device = make_device(session)

        with pytest.raises(SerialWriteError):
            await device.connect()

        assert device.status == ConnectionStatus.HANDSHAKE_FAILED
        assert session.closed


class TestConnect:
    """Tests for opening the connection."""

    @pytest.mark.asyncio
    async def test_open_failure_is_reported(self):
        session = FakeSession(open_error=SerialOpenError("Failed to open /dev/fake: busy"))
        device = make_device(session)

        with pytest.raises(SerialOpenError):
            await device.connect()

        assert device.status == ConnectionStatus.DISCONNECTED
        assert device.handler.statuses[-1] == (
            ConnectionStatus.DISCONNECTED,
            "Failed to open /dev/fake: busy",
        )
        assert not device.is_connected

    @pytest.mark.asyncio
    async def test_no_device_selected(self):
        device = make_device(FakeSession(), dev_path=None)

        with pytest.raises(SerialDeviceNotFoundError):
            await device.connect()

        assert device.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unknown_profile_name(self):
        with pytest.raises(ValueError):
            make_device(FakeSession(), profile="bogus")

    @pytest.mark.asyncio
    async def test_context_manager(self):
        session = FakeSession()
        async with make_device(session) as device:
            assert await device.wait_until_ready(timeout=1.0)
        assert session.closed
        assert device.status == ConnectionStatus.DISCONNECTED


class TestInboundRecords:
    """Records after the handshake reach display, telemetry and homing."""

    @pytest.mark.asyncio
    async def test_height_reading_updates_display_and_telemetry(self):
        device, session = await connected_device()

        session.feed(b"HEIGHT:42.5\n")
        await settle()

        assert device.display.position_text == "42.5%"
        assert device.display.position == 42.5
        assert len(device.telemetry) == 1
        assert device.telemetry.samples[0].actual == 42.5
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_record_split_across_chunks(self):
        device, session = await connected_device()

        session.feed(b"HEI")
        session.feed(b"GHT:1")
        session.feed(b"0\nA:")
        await settle()
        assert device.display.position_text == "10.0%"

        session.feed(b"12.3\n")
        await settle()
        assert device.display.position_text == "12.3%"
        assert len(device.telemetry) == 2
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_empty_recorder_receives_first_samples(self):
        recorder = TelemetryRecorder()
        assert len(recorder) == 0
        device, session = await connected_device(telemetry=recorder)

        session.feed(b"HEIGHT:42.5\n")
        await settle()
        await device.set_target(50)

        assert device.telemetry is recorder
        assert len(recorder) == 2
        assert recorder.samples[0].actual == 42.5
        assert recorder.last_target == 50.0
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_motor_status_in_any_homing_state(self):
        device, session = await connected_device()

        session.feed(b"Z:1\n")
        await settle()
        assert device.display.motor_on
        assert device.homing_state == HomingState.NOT_STARTED

        session.feed(b"C\nZ:0\n")
        await settle()
        assert not device.display.motor_on
        assert device.homing_state == HomingState.MIN_SET
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_regulator_terms_reach_telemetry(self):
        device, session = await connected_device()

        session.feed(b"P:1.5\nX:-3\n")
        await settle()

        assert device.telemetry.regulator[RegulatorTermName.P] == 1.5
        assert device.telemetry.regulator[RegulatorTermName.X] == -3.0
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_unrecognized_records_are_ignored(self):
        device, session = await connected_device()

        session.feed(b"hello\nHEIGHT:1\n")
        await settle()

        assert device.display.position_text == "1.0%"
        assert device.status == ConnectionStatus.CONNECTED
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_loop(self):
        class BrokenHandler(RecordingHandler):
            def on_display(self, display):
                raise RuntimeError("render failed")

        device, session = await connected_device(handler=BrokenHandler())

        session.feed(b"HEIGHT:5\nHEIGHT:6\n")
        await settle()

        assert device.display.position_text == "6.0%"
        assert device.read_loop_state == ReadLoopState.RUNNING
        await device.disconnect()


class TestHoming:
    """Set-position drives the homing sequence."""

    @pytest.mark.asyncio
    async def test_full_homing_sequence(self):
        device, session = await connected_device()
        session.written.clear()

        assert await device.set_position()
        assert session.written == [b"B\n"]

        session.feed(b"C\n")
        await settle()
        assert device.homing_state == HomingState.MIN_SET
        assert device.display.homing_text == "Min Position Set"

        assert await device.set_position()
        assert session.written == [b"B\n", b"C\n"]

        session.feed(b"D\n")
        await settle()
        assert device.homing_state == HomingState.FULLY_HOMED
        assert device.display.homing_text == "System is homed"

        assert not await device.set_position()
        assert session.written == [b"B\n", b"C\n"]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_max_confirmation_before_min_is_ignored(self):
        device, session = await connected_device()

        session.feed(b"E\n")
        await settle()

        assert device.homing_state == HomingState.NOT_STARTED
        assert device.set_position_command() == b"B\n"
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_homing_resets_on_reconnect(self):
        first, second = FakeSession(), FakeSession()
        device = make_device(first, second)
        await device.connect()
        await device.wait_until_ready(timeout=1.0)
        first.feed(b"C\n")
        await settle()
        assert device.homing_state == HomingState.MIN_SET

        await device.disconnect()
        await device.connect()
        assert await device.wait_until_ready(timeout=1.0)

        assert device.homing_state == HomingState.NOT_STARTED
        await device.disconnect()


class TestCommands:
    """Outbound commands."""

    @pytest.mark.asyncio
    async def test_set_target(self):
        device, session = await connected_device()
        session.written.clear()

        await device.set_target(50)

        assert session.written == [b"T:50\n"]
        assert device.telemetry.last_target == 50
        assert len(device.telemetry) == 1
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_invalid_target_writes_nothing(self):
        device, session = await connected_device()
        session.written.clear()

        with pytest.raises(ValueError):
            await device.set_target(101)

        assert session.written == []
        assert len(device.telemetry) == 0
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_set_motor(self):
        device, session = await connected_device()
        session.written.clear()

        await device.set_motor(True)

        assert session.written == [b"Z:1\n"]
        assert device.display.motor_on
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_calibrate(self):
        device, session = await connected_device()
        session.written.clear()

        await device.calibrate()

        assert session.written == [b"D\n"]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_calibrate_unsupported_by_profile(self):
        device, session = await connected_device(profile="handshake-de")

        with pytest.raises(ValueError):
            await device.calibrate()
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_regulator_terms_are_sent_as_three_lines(self):
        device, session = await connected_device(command_delay=10)
        session.written.clear()

        await device.send_regulator_terms(1.5, 2, 0.25)

        assert session.written == [b"P:1.5\n", b"S:2\n", b"D:0.25\n"]
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_regulator_burst_is_not_interleaved(self):
        device, session = await connected_device(command_delay=10)
        session.written.clear()

        await asyncio.gather(
            device.send_regulator_terms(1, 2, 3),
            device.set_target(40),
            device.set_motor(True),
        )

        burst_start = session.written.index(b"P:1\n")
        assert session.written[burst_start:burst_start + 3] == [b"P:1\n", b"S:2\n", b"D:3\n"]
        assert sorted(session.written) == sorted(
            [b"P:1\n", b"S:2\n", b"D:3\n", b"T:40\n", b"Z:1\n"]
        )
        await device.disconnect()


class TestConnectionLoss:
    """Every failure ends in the same teardown."""

    def assert_reset(self, device, session, status):
        assert device.status == status
        assert session.closed
        assert not device.is_connected
        assert not device.display.commands_enabled
        assert not device.display.motor_on
        assert device.display.homing_text == "System Not Homed"
        assert device.read_loop_state == ReadLoopState.STOPPED

    @pytest.mark.asyncio
    async def test_end_of_stream(self):
        device, session = await connected_device()
        session.feed(b"Z:1\n")
        await settle()

        session.feed(b"")
        await settle()

        self.assert_reset(device, session, ConnectionStatus.CONNECTION_LOST)

    @pytest.mark.asyncio
    async def test_fatal_read_error(self):
        device, session = await connected_device()

        session.feed(SerialReadError("device disconnected", fatal=True))
        await settle()

        self.assert_reset(device, session, ConnectionStatus.CONNECTION_LOST)
        assert device.handler.statuses[-1] == (
            ConnectionStatus.CONNECTION_LOST,
            "device disconnected",
        )

    @pytest.mark.asyncio
    async def test_transient_read_error_is_retried(self):
        device, session = await connected_device(read_retry_delay=10)

        session.feed(SerialReadError("parity error"))
        session.feed(b"HEIGHT:5\n")
        await asyncio.sleep(0.1)

        assert device.status == ConnectionStatus.CONNECTED
        assert device.display.position_text == "5.0%"
        assert session.close_count == 0
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_stale_connection_is_closed(self):
        session = FakeSession(stale_after=50)
        device, session = await connected_device(
            session, stale_after=50, liveness_check_period=20
        )

        await asyncio.sleep(0.3)

        self.assert_reset(device, session, ConnectionStatus.CONNECTION_LOST)
        assert "No data received" in device.handler.statuses[-1][1]

    @pytest.mark.asyncio
    async def test_staleness_is_not_checked_before_handshake(self):
        session = FakeSession(stale_after=20, auto_ack=False)
        device = make_device(session, liveness_check_period=10, handshake_timeout=1000)
        await device.connect()

        await asyncio.sleep(0.1)

        assert device.status == ConnectionStatus.CONNECTING
        assert device.is_connected
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_commands_after_loss_raise(self):
        device, session = await connected_device()
        session.feed(b"")
        await settle()

        with pytest.raises(SerialConnectionError):
            await device.set_target(10)


class TestDisconnect:
    """Explicit disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_during_pending_read(self):
        device, session = await connected_device()
        assert device.read_loop_state == ReadLoopState.RUNNING

        await asyncio.wait_for(device.disconnect(), timeout=1.0)

        assert device.status == ConnectionStatus.DISCONNECTED
        assert device.read_loop_state == ReadLoopState.STOPPED
        assert device.handshake_state == HandshakeState.IDLE
        assert session.closed

    @pytest.mark.asyncio
    async def test_disconnect_during_retry_wait(self):
        device, session = await connected_device(read_retry_delay=5000)

        session.feed(SerialReadError("parity error"))
        await settle()
        assert device.read_loop_state == ReadLoopState.RUNNING

        await asyncio.wait_for(device.disconnect(), timeout=0.5)

        assert device.status == ConnectionStatus.DISCONNECTED
        assert device.read_loop_state == ReadLoopState.STOPPED
        assert session.closed

    @pytest.mark.asyncio
    async def test_immediate_reconnect(self):
        first, second = FakeSession(), FakeSession()
        device = make_device(first, second)
        await device.connect()
        assert await device.wait_until_ready(timeout=1.0)

        await device.disconnect()
        await device.connect()
        assert await device.wait_until_ready(timeout=1.0)

        assert device.session is second
        assert first.closed
        second.feed(b"HEIGHT:7\n")
        await settle()
        assert device.display.position_text == "7.0%"
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        device, session = await connected_device()

        await device.disconnect()
        await device.disconnect()

        assert session.close_count == 1
        assert device.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_without_connect(self):
        device = make_device(FakeSession())
        await device.disconnect()
        assert device.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_concurrent_disconnects_close_once(self):
        device, session = await connected_device()

        await asyncio.gather(device.disconnect(), device.disconnect())

        assert session.close_count == 1

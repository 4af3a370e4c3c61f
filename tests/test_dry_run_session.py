"""Tests for the dry-run session."""

import pytest
import pytest_asyncio

from actuator_panel.core.utils import SerialWriteError
from actuator_panel.device.dry_run_session import DryRunSession
from actuator_panel.device.protocol import HANDSHAKE_PROFILE, LEGACY_PROFILE


@pytest_asyncio.fixture
async def session():
    session = DryRunSession(HANDSHAKE_PROFILE, report_interval=10, step=10.0)
    await session.open()
    yield session
    await session.close()


class TestDryRunSession:
    """Tests for DryRunSession."""

    @pytest.mark.asyncio
    async def test_handshake_is_acknowledged(self, session):
        await session.write(b"M\n")
        assert await session.read_chunk() == b"N\n"
        assert session.received == ["M"]

    @pytest.mark.asyncio
    async def test_homing_commands_are_confirmed(self, session):
        await session.write(b"B\n")
        await session.write(b"C\n")
        assert await session.read_chunk() == b"C\n"
        assert await session.read_chunk() == b"D\n"

    @pytest.mark.asyncio
    async def test_legacy_homing(self):
        session = DryRunSession(LEGACY_PROFILE, report_interval=10)
        await session.open()
        await session.write(b"H:0\n")
        assert await session.read_chunk() == b"H:0\n"
        await session.close()

    @pytest.mark.asyncio
    async def test_motor_and_regulator_echo(self, session):
        await session.write(b"Z:1\n")
        await session.write(b"P:1.5\n")
        assert await session.read_chunk() == b"Z:1\n"
        assert await session.read_chunk() == b"P:1.5\n"

    @pytest.mark.asyncio
    async def test_position_moves_toward_target_while_motor_on(self, session):
        await session.write(b"T:25\n")
        assert await session.read_chunk() == b"HEIGHT:0.0\n"

        await session.write(b"Z:1\n")
        assert await session.read_chunk() == b"Z:1\n"
        assert await session.read_chunk() == b"HEIGHT:10.0\n"
        assert await session.read_chunk() == b"HEIGHT:20.0\n"
        assert await session.read_chunk() == b"HEIGHT:25.0\n"

    @pytest.mark.asyncio
    async def test_close_ends_stream(self):
        session = DryRunSession(HANDSHAKE_PROFILE)
        await session.open()
        await session.close()
        assert not session.is_open
        with pytest.raises(SerialWriteError):
            await session.write(b"M\n")

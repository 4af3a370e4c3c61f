"""Tests for the command-line interface."""

import asyncio
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from actuator_panel.cli import create_device, main, run_panel
from actuator_panel.console import PanelConsole
from actuator_panel.core.config import Config
from actuator_panel.core.settings import SettingsStore
from actuator_panel.core.utils import SerialOpenError
from actuator_panel.device.dry_run_session import DryRunSession
from actuator_panel.device.status import ConnectionStatus
from actuator_panel.telemetry import TelemetryRecorder
from test_actuator_device import FakeSession, make_device, settle


class TestCli:
    """Tests for the click commands."""

    def test_generate_config(self, tmp_path):
        path = tmp_path / "config.yaml"

        result = CliRunner().invoke(main, ["generate-config", "--config", str(path)])

        assert result.exit_code == 0
        assert "Configuration file generated" in result.output
        data = yaml.safe_load(path.read_text())
        assert data["device"]["profile"] == "handshake"
        assert data["webhook"]["port"] == 9000

    @patch("actuator_panel.cli.list_serial_ports")
    def test_ports(self, mock_list):
        mock_list.return_value = ["/dev/ttyACM0 - Arduino Uno (VID:PID=2341:0043)"]

        result = CliRunner().invoke(main, ["ports"])

        assert result.exit_code == 0
        assert "/dev/ttyACM0" in result.output

    @patch("actuator_panel.cli.list_serial_ports", return_value=[])
    def test_ports_none_found(self, mock_list):
        result = CliRunner().invoke(main, ["ports"])
        assert "No serial ports found" in result.output

    def test_run_without_device_fails(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DEVICE_USB_ID", raising=False)
        monkeypatch.delenv("DEVICE_DEV_PATH", raising=False)

        result = CliRunner().invoke(main, ["run", "--config", str(tmp_path / "none.yaml")])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_create_device_dry_run(self):
        config = Config()
        config.device.profile = "legacy"

        device = create_device(config, TelemetryRecorder(), dry_run=True)

        session = device._session_factory("dry-run")
        assert isinstance(session, DryRunSession)
        assert session.profile.name == "legacy"
        assert device.profile.name == "legacy"


def scripted_console(device, tmp_path, steps):
    """A console reading from a list of lines or coroutine functions."""
    script = iter(steps)

    async def read_line():
        step = next(script, "")
        if callable(step):
            return await step()
        return step

    return PanelConsole(
        device,
        TelemetryRecorder(),
        SettingsStore(tmp_path / "settings.yaml"),
        echo=lambda line: None,
        read_line=read_line,
    )


class TestRunPanel:
    """Tests for the connect-then-console lifecycle."""

    @pytest.mark.asyncio
    async def test_runs_console_until_quit(self, tmp_path):
        session = FakeSession()
        device = make_device(session)
        console = scripted_console(device, tmp_path, ["target 25\n", "quit\n", "target 50\n"])

        await asyncio.wait_for(run_panel(device, console), timeout=2.0)

        assert session.written == [b"M\n", b"T:25\n"]
        assert session.closed
        assert device.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_end_of_input_disconnects(self, tmp_path):
        session = FakeSession()
        device = make_device(session)
        console = scripted_console(device, tmp_path, [])

        await asyncio.wait_for(run_panel(device, console), timeout=2.0)

        assert session.closed
        assert device.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_after_connection_lost(self, tmp_path):
        first, second = FakeSession(), FakeSession()
        device = make_device(first, second)

        async def lose_connection():
            first.feed(b"")
            await settle()
            assert device.status == ConnectionStatus.CONNECTION_LOST
            return "status\n"

        console = scripted_console(
            device, tmp_path, [lose_connection, "connect\n", "motor on\n", "quit\n"]
        )

        await asyncio.wait_for(run_panel(device, console), timeout=2.0)

        assert first.closed
        assert second.written == [b"M\n", b"Z:1\n"]
        assert second.closed

    @pytest.mark.asyncio
    async def test_connect_failure_is_raised(self, tmp_path):
        device = make_device(FakeSession(open_error=SerialOpenError("port busy")))
        console = scripted_console(device, tmp_path, ["quit\n"])

        with pytest.raises(SerialOpenError):
            await run_panel(device, console)

        assert device.status == ConnectionStatus.DISCONNECTED

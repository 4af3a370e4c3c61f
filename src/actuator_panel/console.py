"""
Console front end for the actuator panel.

Reads operator commands line by line and turns them into device commands.
Status and display updates from the device are echoed back to the terminal.
"""

import asyncio
import shlex
import sys
import threading
from collections.abc import Awaitable, Callable
from typing import TextIO

import click

from actuator_panel.core.logging import get_logger
from actuator_panel.core.settings import (
    REGULATOR_TERM_MAX,
    REGULATOR_TERM_MIN,
    WINDOW_SIZE_MAX,
    WINDOW_SIZE_MIN,
    SettingsStore,
)
from actuator_panel.core.utils import SerialConnectionError, SerialDeviceNotFoundError
from actuator_panel.device.actuator_device import ActuatorDevice
from actuator_panel.device.handlers import PanelHandler
from actuator_panel.device.status import ConnectionStatus, PanelDisplay
from actuator_panel.telemetry import TelemetryRecorder, export_csv

logger = get_logger()

HELP_TEXT = """\
Commands:
  target <0-100>      Move to a target position (percent)
  motor on|off        Switch the motor
  pid [<p> <s> <d>]   Send regulator terms (0-200 each), or resend the last ones
  set-position        Store the current position as min, then max
  calibrate           Start calibration (if the firmware supports it)
  window <n>          Number of samples shown by 'status' (10-1000)
  export [path]       Export the telemetry history to CSV
  status              Show connection, position and homing state
  connect             Open the connection to the device
  disconnect          Close the connection to the device
  help                Show this help
  quit                Disconnect and exit"""


class ConsolePanelHandler(PanelHandler):
    """
    Echoes panel updates to the terminal.

    Position readings arrive continuously; they are only shown by the
    'status' command. Homing and motor changes are echoed as they happen.
    """

    def __init__(self, echo: Callable[[str], None] = click.echo):
        self.echo = echo
        self._homing_text: str | None = None
        self._motor_on: bool | None = None

    def on_status(self, status: ConnectionStatus, detail: str | None = None) -> None:
        if detail:
            self.echo(f"[{status}] {detail}")
        else:
            self.echo(f"[{status}]")

    def on_display(self, display: PanelDisplay) -> None:
        if display.homing_text != self._homing_text:
            self._homing_text = display.homing_text
            if display.commands_enabled:
                self.echo(f"Homing: {display.homing_text}")

        if display.motor_on != self._motor_on:
            self._motor_on = display.motor_on
            if display.commands_enabled:
                self.echo(f"Motor: {'ON' if display.motor_on else 'OFF'}")


class PanelConsole:
    """Interprets console commands against an ActuatorDevice."""

    def __init__(
        self,
        device: ActuatorDevice,
        recorder: TelemetryRecorder,
        settings: SettingsStore,
        echo: Callable[[str], None] = click.echo,
        read_line: Callable[[], Awaitable[str]] | None = None,
    ):
        self.device = device
        self.recorder = recorder
        self.settings = settings
        self.echo = echo
        self.read_line = read_line

        self._commands: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            "target": self._cmd_target,
            "motor": self._cmd_motor,
            "pid": self._cmd_pid,
            "set-position": self._cmd_set_position,
            "calibrate": self._cmd_calibrate,
            "window": self._cmd_window,
            "export": self._cmd_export,
            "status": self._cmd_status,
            "connect": self._cmd_connect,
            "disconnect": self._cmd_disconnect,
            "help": self._cmd_help,
        }

    async def execute(self, line: str) -> bool:
        """
        Run one console command.

        Errors are printed, never raised.

        Returns:
            False when the console should stop, True otherwise.
        """
        try:
            args = shlex.split(line)
        except ValueError as e:
            self.echo(f"Error: {e}")
            return True

        if not args:
            return True

        name, args = args[0].lower(), args[1:]
        if name in ("quit", "exit"):
            return False

        command = self._commands.get(name)
        if command is None:
            self.echo(f"Unknown command '{name}'. Type 'help' for a list of commands.")
            return True

        try:
            await command(args)
        except (SerialConnectionError, SerialDeviceNotFoundError, ValueError, OSError) as e:
            self.echo(f"Error: {e}")

        return True

    async def run(self, read_line: Callable[[], Awaitable[str]] | None = None) -> None:
        """
        Read and execute commands until 'quit' or end of input.

        Args:
            read_line: Coroutine function returning the next line, "" at end
                of input. Defaults to the one given at construction, then stdin.
        """
        read_line = read_line or self.read_line or StdinReader().readline

        while True:
            line = await read_line()
            if not line:
                logger.debug("Console input closed")
                break
            if not await self.execute(line):
                break

    async def _cmd_target(self, args: list[str]) -> None:
        if len(args) != 1:
            raise ValueError("Usage: target <0-100>")
        try:
            position = int(args[0])
        except ValueError:
            raise ValueError("Please enter a whole number between 0 and 100") from None
        await self.device.set_target(position)

    async def _cmd_motor(self, args: list[str]) -> None:
        if len(args) != 1 or args[0].lower() not in ("on", "off"):
            raise ValueError("Usage: motor on|off")
        await self.device.set_motor(args[0].lower() == "on")

    async def _cmd_pid(self, args: list[str]) -> None:
        if not args:
            p, s, d = self.settings.settings.regulator_terms
            await self.device.send_regulator_terms(p, s, d)
            self.echo(f"Sent last regulator terms: {_format_terms(p, s, d)}")
            return

        if len(args) != 3:
            raise ValueError("Usage: pid [<p> <s> <d>]")
        try:
            p, s, d = (float(arg) for arg in args)
        except ValueError:
            raise ValueError("Regulator terms must be numbers") from None
        for value in (p, s, d):
            if not REGULATOR_TERM_MIN <= value <= REGULATOR_TERM_MAX:
                raise ValueError(
                    f"Regulator terms must be between {REGULATOR_TERM_MIN:g} "
                    f"and {REGULATOR_TERM_MAX:g}"
                )

        await self.device.send_regulator_terms(p, s, d)
        self.settings.update_regulator_terms(p, s, d)

    async def _cmd_set_position(self, args: list[str]) -> None:
        if not await self.device.set_position():
            self.echo("System is already homed")

    async def _cmd_calibrate(self, args: list[str]) -> None:
        await self.device.calibrate()

    async def _cmd_window(self, args: list[str]) -> None:
        if len(args) != 1:
            raise ValueError(f"Usage: window <{WINDOW_SIZE_MIN}-{WINDOW_SIZE_MAX}>")
        try:
            size = int(args[0])
        except ValueError:
            raise ValueError("Window size must be a whole number") from None
        self.settings.update_window_size(size)
        self.echo(f"Window size: {self.settings.settings.window_size}")

    async def _cmd_export(self, args: list[str]) -> None:
        path = export_csv(self.recorder, args[0] if args else None)
        self.echo(f"Exported {len(self.recorder)} data points to {path}")

    async def _cmd_status(self, args: list[str]) -> None:
        display = self.device.display
        self.echo(f"Status:   {display.status}")
        self.echo(f"Position: {display.position_text}")
        self.echo(f"Homing:   {display.homing_text}")
        self.echo(f"Motor:    {'ON' if display.motor_on else 'OFF'}")
        self.echo(f"Regulator: {_format_terms(*self.settings.settings.regulator_terms)}")

        window = self.recorder.window(self.settings.settings.window_size)
        if window:
            actual = [sample.actual for sample in window]
            self.echo(
                f"Last {len(window)} samples: actual min {min(actual):.1f}, "
                f"max {max(actual):.1f}, target {window[-1].target:g}"
            )

    async def _cmd_connect(self, args: list[str]) -> None:
        if self.device.is_connected:
            self.echo("Already connected")
            return

        await self.device.connect()
        if await self.device.wait_until_ready(timeout=self.device.handshake_timeout / 1000 + 1):
            self.echo("Ready.")

    async def _cmd_disconnect(self, args: list[str]) -> None:
        if not self.device.is_connected:
            self.echo("Not connected")
            return
        await self.device.disconnect()

    async def _cmd_help(self, args: list[str]) -> None:
        self.echo(HELP_TEXT)


def _format_terms(p: float, s: float, d: float) -> str:
    return f"P {p:g}, S {s:g}, D {d:g}"


class StdinReader:
    """
    Reads stdin lines on a daemon thread.

    The thread never keeps the process alive, so a signal can end the panel
    while a read is pending.
    """

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdin
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    async def readline(self) -> str:
        """Return the next line, "" at end of input."""
        if self._thread is None:
            self._loop = asyncio.get_running_loop()
            self._thread = threading.Thread(target=self._pump, name="stdin-reader", daemon=True)
            self._thread.start()
        return await self._queue.get()

    def _pump(self) -> None:
        assert self._loop is not None
        try:
            for line in iter(self.stream.readline, ""):
                self._loop.call_soon_threadsafe(self._queue.put_nowait, line)
            self._loop.call_soon_threadsafe(self._queue.put_nowait, "")
        except RuntimeError:
            # Event loop already closed
            return

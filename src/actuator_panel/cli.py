"""
Command-line interface for the Actuator Panel.

This module provides the CLI using Click, supporting configuration via:
1. Environment variables (highest precedence)
2. CLI arguments
3. Config file
4. Default values (lowest precedence)
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

import click

from actuator_panel.console import ConsolePanelHandler, PanelConsole
from actuator_panel.core.config import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_FILE,
    ENV_DEVICE_BAUD_RATE,
    ENV_DEVICE_DEV_PATH,
    ENV_DEVICE_PROFILE,
    ENV_DEVICE_USB_ID,
    ENV_SERIAL_LOG_FILE,
    ENV_WEBHOOK_PORT,
    Config,
)
from actuator_panel.core.logging import get_logger, setup_logging
from actuator_panel.core.settings import SettingsStore
from actuator_panel.core.utils import (
    SerialConnectionError,
    SerialDeviceNotFoundError,
    list_serial_ports,
)
from actuator_panel.device import PROFILES, ActuatorDevice, DryRunSession, get_profile
from actuator_panel.telemetry import TelemetryRecorder

logger = get_logger()

config_option = click.option(
    "-c", "--config",
    "config_file",
    type=click.Path(exists=False, path_type=Path),
    envvar=ENV_CONFIG_FILE,
    default=None,
    help=f"Path to configuration file. [default: {DEFAULT_CONFIG_PATH}] [env: {ENV_CONFIG_FILE}]",
)
verbose_option = click.option(
    "-v", "--verbose",
    count=True,
    help="Increase verbosity (-v for DEBUG, -vv for VERBOSE).",
)
quiet_option = click.option(
    "-q", "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output except errors.",
)


@click.group()
@click.version_option(package_name="actuator-panel")
def main() -> None:
    """
    Actuator Panel - Control a height/angle actuator over a serial line.

    Configuration is loaded with the following precedence (highest to lowest):

    \b
    1. Environment variables
    2. CLI arguments
    3. Configuration file
    4. Default values
    """


@main.command()
@config_option
@click.option(
    "-d", "--usb-id",
    "usb_id",
    type=str,
    default=None,
    help=f"USB device ID in vendor:product format (e.g., 2341:0043). [env: {ENV_DEVICE_USB_ID}]",
)
@click.option(
    "--dev",
    "dev_path",
    type=str,
    default=None,
    help=f"Device path (e.g., /dev/ttyACM0). [env: {ENV_DEVICE_DEV_PATH}]",
)
@click.option(
    "-b", "--baud-rate",
    type=int,
    default=None,
    help=f"Serial baud rate. [env: {ENV_DEVICE_BAUD_RATE}]",
)
@click.option(
    "--profile",
    type=click.Choice(sorted(PROFILES)),
    default=None,
    help=f"Firmware protocol profile. [env: {ENV_DEVICE_PROFILE}]",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Simulate the actuator instead of opening a serial port.",
)
@click.option(
    "--serial-log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Log every line sent to and received from the device. [env: {ENV_SERIAL_LOG_FILE}]",
)
@verbose_option
@quiet_option
def run(
    config_file: Path | None,
    usb_id: str | None,
    dev_path: str | None,
    baud_rate: int | None,
    profile: str | None,
    dry_run: bool,
    serial_log_file: Path | None,
    verbose: int,
    quiet: bool,
) -> None:
    """
    Connect to the actuator and read panel commands from stdin.

    Example usage:

    \b
        # Connect by USB ID
        actuator-panel run --usb-id 2341:0043

        # Connect by device path with the legacy firmware
        actuator-panel run --dev /dev/ttyACM0 --profile legacy

        # Try the panel without hardware
        actuator-panel run --dry-run
    """
    cli_args: dict[str, Any] = {}
    if usb_id is not None:
        cli_args["usb_id"] = usb_id
    if dev_path is not None:
        cli_args["dev_path"] = dev_path
    if baud_rate is not None:
        cli_args["baud_rate"] = baud_rate
    if profile is not None:
        cli_args["profile"] = profile
    if serial_log_file is not None:
        cli_args["serial_log_file"] = str(serial_log_file)

    try:
        config = Config.load(
            config_file=config_file,
            cli_args=cli_args,
            skip_device_validation=dry_run,
        )
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(verbosity_level=verbose, quiet=quiet, serial_log_file=config.serial_log_file)

    logger.info("Starting Actuator Panel")
    if dry_run:
        logger.info("  Device: dry-run (no hardware)")
    else:
        logger.info(
            f"  Device: {config.device.path or config.device.usb_id} "
            f"@ {config.device.baud_rate} baud"
        )
    logger.info(f"  Profile: {config.device.profile}")

    settings = SettingsStore(config.settings_path)
    settings.load()
    recorder = TelemetryRecorder()

    device = create_device(config, recorder, dry_run=dry_run)
    console = PanelConsole(device, recorder, settings)

    try:
        asyncio.run(run_panel(device, console))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (SerialDeviceNotFoundError, SerialConnectionError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    logger.info("Actuator Panel stopped")


def create_device(config: Config, recorder: TelemetryRecorder, dry_run: bool = False) -> ActuatorDevice:
    """Build the device from configuration."""
    device_config = config.device
    profile = get_profile(device_config.profile)

    session_factory = None
    if dry_run:
        def session_factory(port: str) -> DryRunSession:
            return DryRunSession(profile, port=port, stale_after=device_config.stale_after)

    return ActuatorDevice(
        usb_id=device_config.usb_id,
        dev_path="dry-run" if dry_run else device_config.path,
        baud_rate=device_config.baud_rate,
        profile=profile,
        handshake_timeout=device_config.handshake_timeout,
        stale_after=device_config.stale_after,
        liveness_check_period=device_config.liveness_check_period,
        read_retry_delay=device_config.read_retry_delay,
        command_delay=device_config.command_delay,
        telemetry=recorder,
        handler=ConsolePanelHandler(),
        session_factory=session_factory,
    )


async def run_panel(device: ActuatorDevice, console: PanelConsole) -> None:
    """
    Connect, then run the console until quit, end of input or a signal.

    The console outlives a lost connection; the operator reconnects with
    the 'connect' command.

    Args:
        device: The device to drive.
        console: Console reading operator commands.
    """
    loop = asyncio.get_running_loop()

    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await device.connect()

        if not await device.wait_until_ready(timeout=device.handshake_timeout / 1000 + 1):
            raise SerialConnectionError(f"Device did not become ready ({device.status})")

        click.echo("Ready. Type 'help' for a list of commands.")

        console_task = asyncio.create_task(console.run())
        stop_task = asyncio.create_task(stop_event.wait())
        done, pending = await asyncio.wait(
            {console_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

        if console_task in done:
            # Propagate errors from the console
            console_task.result()

    finally:
        await device.disconnect()


@main.command()
def ports() -> None:
    """List the serial ports available for --dev and --usb-id."""
    entries = list_serial_ports()
    if not entries:
        click.echo("No serial ports found")
        return
    for entry in entries:
        click.echo(entry)


@main.command()
@config_option
@click.option(
    "-a", "--address",
    type=str,
    default=None,
    help="Bind address of the webhook server.",
)
@click.option(
    "-p", "--port",
    type=int,
    default=None,
    help=f"Port of the webhook server. [env: {ENV_WEBHOOK_PORT}]",
)
@verbose_option
@quiet_option
def webhook(
    config_file: Path | None,
    address: str | None,
    port: int | None,
    verbose: int,
    quiet: bool,
) -> None:
    """Serve the deployment webhook."""
    # Imported here so the panel commands do not need Flask
    from actuator_panel.webhook import ShellDeploymentExecutor, create_app

    cli_args: dict[str, Any] = {}
    if address is not None:
        cli_args["address"] = address
    if port is not None:
        cli_args["port"] = port

    try:
        config = Config.load(config_file=config_file, cli_args=cli_args, skip_device_validation=True)
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(verbosity_level=verbose, quiet=quiet)

    webhook_config = config.webhook
    if not webhook_config.secret:
        logger.warning("No webhook secret configured, signed requests will be rejected")

    executor = ShellDeploymentExecutor(webhook_config.repo_path, webhook_config.container)
    app = create_app(webhook_config, executor)

    logger.info(f"Webhook server running on {webhook_config.address}:{webhook_config.port}")
    logger.info(f"Monitoring repository at {webhook_config.repo_path}")
    logger.info(
        f"Will restart {webhook_config.container} container when "
        f"{webhook_config.tracked_file} changes on {webhook_config.branch}"
    )

    app.run(host=webhook_config.address, port=webhook_config.port)


@main.command("generate-config")
@config_option
def generate_config(config_file: Path | None) -> None:
    """Generate a default configuration file and exit."""
    try:
        config = Config.load(config_file=config_file, skip_device_validation=True)
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    target_path = config_file if config_file else DEFAULT_CONFIG_PATH
    try:
        config.save(target_path)
        click.echo(f"Configuration file generated: {target_path}")
    except OSError as e:
        click.echo(f"Error generating config file: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

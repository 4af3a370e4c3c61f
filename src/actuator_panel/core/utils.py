"""
Utility functions for the Actuator Panel.

This module provides the serial error taxonomy, serial device discovery and
the classification of read failures into fatal (device lost) and transient.
"""

import errno
import re

import serial
import serial.tools.list_ports

from actuator_panel.core.logging import get_logger

logger = get_logger()


class SerialDeviceNotFoundError(Exception):
    """Raised when no serial device is selected or the selected one is not present."""

    pass


class SerialConnectionError(Exception):
    """Raised when there's an error connecting to or communicating with the serial device."""

    pass


class SerialOpenError(SerialConnectionError):
    """Raised when the port exists but cannot be opened (busy, bad baud rate, ...)."""

    pass


class SerialWriteError(SerialConnectionError):
    """Raised when a command cannot be written to the device."""

    pass


class SerialReadError(SerialConnectionError):
    """
    Raised when reading from the device fails.

    Attributes:
        fatal: True when the device is gone or the port was closed under us.
            Fatal read errors end the session; others are retried.
    """

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


DEVICE_LOST_RE = re.compile(
    r"device has been lost|device is no longer accessible|port is closed|"
    r"connection was closed|device disconnected|no such device|"
    r"device reports readiness to read but returned no data|"
    r"attempting to use a port that is not open",
    re.IGNORECASE,
)
DEVICE_LOST_ERRNOS = frozenset({errno.ENODEV, errno.ENXIO, errno.EBADF, errno.EIO})


def is_device_lost_error(exc: BaseException) -> bool:
    """
    Check whether a read failure means the device is gone.

    Args:
        exc: The exception raised by the underlying read.

    Returns:
        True for unplugged devices and closed ports, False for everything
        that is worth retrying.
    """
    if isinstance(exc, SerialReadError):
        return exc.fatal

    if isinstance(exc, (ConnectionError, EOFError)):
        return True

    if isinstance(exc, OSError) and exc.errno in DEVICE_LOST_ERRNOS:
        return True

    return bool(DEVICE_LOST_RE.search(str(exc)))


def list_serial_ports() -> list[str]:
    """
    List available serial ports in a human readable form.

    Returns:
        One entry per port: device path, description and VID:PID when known.
    """
    entries = []
    for port in serial.tools.list_ports.comports():
        entry = f"{port.device} - {port.description}"
        if port.vid is not None and port.pid is not None:
            entry += f" (VID:PID={port.vid:04x}:{port.pid:04x})"
        entries.append(entry)
    return entries


def find_serial_port_by_usb_id(usb_id: str) -> str:
    """
    Find the serial port path for a given USB device ID.

    Args:
        usb_id: USB device ID in vendor:product format (e.g., "2341:0043").

    Returns:
        The serial port path (e.g., "/dev/ttyUSB0" or "COM3").

    Raises:
        SerialDeviceNotFoundError: If no matching device is found.
        ValueError: If the USB ID is malformed.
    """
    try:
        vendor_id, product_id = usb_id.lower().split(":")
        vendor_id_int = int(vendor_id, 16)
        product_id_int = int(product_id, 16)
    except (ValueError, AttributeError) as e:
        raise ValueError(
            f"Invalid USB ID format '{usb_id}'. "
            "Expected format: 'vendor:product' (e.g., '2341:0043')"
        ) from e

    ports = serial.tools.list_ports.comports()

    for port in ports:
        if port.vid == vendor_id_int and port.pid == product_id_int:
            logger.debug(f"Found device {usb_id} at {port.device}")
            return port.device

    available = [
        f"{p.device} (VID:PID={p.vid:04x}:{p.pid:04x})"
        for p in ports
        if p.vid is not None and p.pid is not None
    ]

    logger.debug(f"Device {usb_id} not found. Available devices: {available}")

    raise SerialDeviceNotFoundError(
        f"USB device with ID '{usb_id}' not found. "
        f"Available USB serial devices: {available or 'none'}"
    )


def resolve_serial_port(usb_id: str | None = None, dev_path: str | None = None) -> str:
    """
    Resolve the serial port to open.

    A device path is used as given; a USB ID is looked up among the
    connected devices.

    Raises:
        SerialDeviceNotFoundError: If no device was selected or the USB ID
            is not present.
    """
    if dev_path:
        return dev_path

    if usb_id:
        return find_serial_port_by_usb_id(usb_id)

    raise SerialDeviceNotFoundError("No serial device selected")

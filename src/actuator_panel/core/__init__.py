"""
Core package - Contains core utilities and infrastructure.

This package provides:
- Config: Configuration loading and management
- SettingsStore: Persistent operator settings
- Logging: Logging setup and the serial traffic log
- Utils: Serial port discovery and the connection error taxonomy
"""

from .config import Config, DeviceConfig, WebhookConfig
from .logging import get_logger, setup_logging
from .settings import PanelSettings, SettingsStore
from .utils import (
    SerialConnectionError,
    SerialDeviceNotFoundError,
    SerialOpenError,
    SerialReadError,
    SerialWriteError,
    find_serial_port_by_usb_id,
    list_serial_ports,
    resolve_serial_port,
)

__all__ = [
    "Config",
    "DeviceConfig",
    "WebhookConfig",
    "get_logger",
    "setup_logging",
    "PanelSettings",
    "SettingsStore",
    "SerialConnectionError",
    "SerialDeviceNotFoundError",
    "SerialOpenError",
    "SerialReadError",
    "SerialWriteError",
    "find_serial_port_by_usb_id",
    "list_serial_ports",
    "resolve_serial_port",
]

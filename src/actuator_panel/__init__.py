"""Actuator Panel - Serial control panel for a height/angle actuator."""

__version__ = "0.1.0"

from .core import Config, SerialConnectionError, SerialDeviceNotFoundError, SettingsStore
from .device import ActuatorDevice, ConnectionStatus, DryRunSession, PanelHandler
from .telemetry import TelemetryRecorder, export_csv

__all__ = [
    "ActuatorDevice",
    "ConnectionStatus",
    "DryRunSession",
    "PanelHandler",
    "Config",
    "SettingsStore",
    "SerialConnectionError",
    "SerialDeviceNotFoundError",
    "TelemetryRecorder",
    "export_csv",
    "__version__",
]

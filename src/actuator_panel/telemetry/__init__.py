"""
Telemetry package - history of target/actual positions and its CSV export.

This package provides:
- TelemetrySink: Interface the device core reports telemetry to
- TelemetryRecorder: In-memory append-only history with windowed views
- TelemetrySample: One row of history
- export_csv / write_csv: CSV export of the history
"""

from .recorder import TelemetryRecorder, TelemetrySample, TelemetrySink
from .export import default_export_name, export_csv, write_csv

__all__ = [
    "TelemetryRecorder",
    "TelemetrySample",
    "TelemetrySink",
    "default_export_name",
    "export_csv",
    "write_csv",
]

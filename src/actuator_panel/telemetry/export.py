"""
CSV export of the telemetry history.
"""

import csv
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from actuator_panel.core.logging import get_logger
from actuator_panel.telemetry.recorder import TelemetryRecorder, TelemetrySample

logger = get_logger()

BASE_COLUMNS = ("Timestamp", "Target", "Actual")
REGULATOR_COLUMNS = ("P", "S", "D", "X")


def default_export_name(now: datetime | None = None) -> str:
    """File name used when the operator does not pick one."""
    now = now or datetime.now()
    return f"angle_data_{now.isoformat(timespec='seconds').replace(':', '-')}.csv"


def _cell(value: float | None) -> str:
    return "" if value is None else f"{value:g}"


def write_csv(
    samples: Sequence[TelemetrySample], path: Path | str, include_regulator: bool = False
) -> Path:
    """
    Write telemetry samples to a CSV file.

    Args:
        samples: Samples to write, in order.
        path: Destination file; parent directories are created.
        include_regulator: Whether to add the P,S,D,X columns.

    Returns:
        The path written.

    Raises:
        ValueError: If there are no samples.
    """
    if not samples:
        raise ValueError("No data to export")

    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)

    header = BASE_COLUMNS + (REGULATOR_COLUMNS if include_regulator else ())

    with open(out_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(header)
        for sample in samples:
            row = [sample.timestamp, _cell(sample.target), _cell(sample.actual)]
            if include_regulator:
                row += [_cell(sample.p), _cell(sample.s), _cell(sample.d), _cell(sample.x)]
            writer.writerow(row)

    logger.info(f"Exported {len(samples)} data points to {out_path}")
    return out_path


def export_csv(recorder: TelemetryRecorder, path: Path | str | None = None) -> Path:
    """
    Export the full history of a recorder.

    Regulator columns are included once the device has reported regulator terms.
    """
    return write_csv(
        recorder.samples,
        path or default_export_name(),
        include_regulator=recorder.has_regulator_data,
    )

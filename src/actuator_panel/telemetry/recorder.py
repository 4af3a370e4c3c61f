"""
Telemetry recording.

The device core pushes target and actual positions (and regulator terms when
the firmware reports them) into a TelemetrySink. TelemetryRecorder keeps the
full append-only history; views over the last N samples feed the display.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

from actuator_panel.device.protocol import RegulatorTermName


class TelemetrySink(ABC):
    """
    Abstract receiver of telemetry values.

    Extend this class to route telemetry somewhere other than memory.
    """

    @abstractmethod
    def record_target(self, value: float) -> None:
        """Called when a new target position was sent to the device."""
        pass

    @abstractmethod
    def record_actual(self, value: float) -> None:
        """Called for every position reported by the device."""
        pass

    @abstractmethod
    def record_regulator(self, which: RegulatorTermName, value: float) -> None:
        """Called for every regulator term reported by the device."""
        pass


@dataclass(frozen=True)
class TelemetrySample:
    """
    One row of telemetry history.

    Regulator fields stay None until the device reports regulator terms.
    """
    timestamp: str
    target: float
    actual: float
    p: float | None = None
    s: float | None = None
    d: float | None = None
    x: float | None = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class TelemetryRecorder(TelemetrySink):
    """
    In-memory telemetry history.

    Every target or actual value appends one sample carrying the latest
    value of the other series and the latest regulator terms.
    """

    def __init__(self):
        self.samples: list[TelemetrySample] = []
        self.last_target = 0.0
        self.last_actual = 0.0
        self.regulator: dict[RegulatorTermName, float] = {}

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def has_regulator_data(self) -> bool:
        return bool(self.regulator)

    def record_target(self, value: float) -> None:
        self.last_target = float(value)
        self._append()

    def record_actual(self, value: float) -> None:
        self.last_actual = float(value)
        self._append()

    def record_regulator(self, which: RegulatorTermName, value: float) -> None:
        self.regulator[RegulatorTermName(which)] = float(value)

    def window(self, size: int) -> list[TelemetrySample]:
        """Return the most recent samples, oldest first."""
        if size <= 0:
            return []
        return self.samples[-size:]

    def clear(self) -> None:
        self.samples.clear()

    def _append(self) -> None:
        self.samples.append(
            TelemetrySample(
                timestamp=_timestamp(),
                target=self.last_target,
                actual=self.last_actual,
                p=self.regulator.get(RegulatorTermName.P),
                s=self.regulator.get(RegulatorTermName.S),
                d=self.regulator.get(RegulatorTermName.D),
                x=self.regulator.get(RegulatorTermName.X),
            )
        )

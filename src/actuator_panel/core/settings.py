"""
Persistent panel settings.

Stores the values the operator last used so they survive restarts: the
regulator terms (P, S, D) and the number of telemetry points shown in the
display window. Settings are read once at startup and written on change.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from actuator_panel.core.logging import get_logger

logger = get_logger()

REGULATOR_TERM_MIN = 0.0
REGULATOR_TERM_MAX = 200.0
WINDOW_SIZE_MIN = 10
WINDOW_SIZE_MAX = 1000
DEFAULT_WINDOW_SIZE = 100


def clamp_regulator_term(value: float) -> float:
    """Clamp a regulator term to the range accepted by the panel."""
    return min(max(float(value), REGULATOR_TERM_MIN), REGULATOR_TERM_MAX)


def clamp_window_size(value: int) -> int:
    """Clamp a display window size to the supported range."""
    return min(max(int(value), WINDOW_SIZE_MIN), WINDOW_SIZE_MAX)


@dataclass
class PanelSettings:
    """Values remembered between sessions."""

    p: float = 0.0
    s: float = 0.0
    d: float = 0.0
    window_size: int = DEFAULT_WINDOW_SIZE

    @property
    def regulator_terms(self) -> tuple[float, float, float]:
        return (self.p, self.s, self.d)


class SettingsStore:
    """
    YAML-backed key-value store for PanelSettings.

    A missing or unreadable file yields defaults; the store never fails the
    caller on load. Saving creates parent directories as needed.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self.settings = PanelSettings()

    def load(self) -> PanelSettings:
        """
        Read settings from disk.

        Returns:
            The loaded settings, defaults for anything missing or invalid.
        """
        self.settings = PanelSettings()

        if not self.path.exists():
            return self.settings

        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load settings file {self.path}: {e}")
            return self.settings

        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {self.path}: expected a mapping")
            return self.settings

        regulator = data.get("regulator") or {}
        if not isinstance(regulator, dict):
            logger.warning(f"Ignoring invalid regulator settings: {regulator!r}")
            regulator = {}

        for term in ("p", "s", "d"):
            if term in regulator:
                try:
                    setattr(self.settings, term, clamp_regulator_term(regulator[term]))
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring invalid regulator term {term}: {regulator[term]!r}")

        window_size = data.get("window-size", data.get("window_size"))
        if window_size is not None:
            try:
                self.settings.window_size = clamp_window_size(window_size)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid window size: {window_size!r}")

        logger.debug(f"Loaded settings from {self.path}: {self.settings}")
        return self.settings

    def save(self) -> None:
        """Write the current settings to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {
            "regulator": {
                "p": self.settings.p,
                "s": self.settings.s,
                "d": self.settings.d,
            },
            "window-size": self.settings.window_size,
        }

        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)

        logger.debug(f"Saved settings to {self.path}")

    def update_regulator_terms(self, p: float, s: float, d: float) -> None:
        self.settings.p = clamp_regulator_term(p)
        self.settings.s = clamp_regulator_term(s)
        self.settings.d = clamp_regulator_term(d)
        self.save()

    def update_window_size(self, window_size: int) -> None:
        self.settings.window_size = clamp_window_size(window_size)
        self.save()

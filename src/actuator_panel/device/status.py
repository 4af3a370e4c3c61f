"""
Connection status and the visible panel state driven by the device core.
"""

from dataclasses import dataclass, field
from enum import Enum

from actuator_panel.device.homing import HOMING_STATUS_TEXT, HomingState


class ConnectionStatus(str, Enum):
    """
    User-visible connection status.

    The string value is the status text shown to the operator.
    """
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    CONNECTION_LOST = "Connection lost"
    HANDSHAKE_FAILED = "Handshake failed"
    DISCONNECTED = "Disconnected"

    def __str__(self) -> str:
        return self.value


@dataclass
class PanelDisplay:
    """
    Snapshot of what the panel shows.

    Attributes:
        status: Connection status.
        position_text: Last reported position, formatted as a percentage.
        position: Last reported position value, if any.
        homing_text: Homing progress text.
        motor_on: State of the motor switch.
        commands_enabled: Whether commands may be sent (handshake complete).
    """
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    position_text: str = "--"
    position: float | None = None
    homing_text: str = field(default_factory=lambda: HOMING_STATUS_TEXT[HomingState.NOT_STARTED])
    motor_on: bool = False
    commands_enabled: bool = False

    def reset(self, status: ConnectionStatus = ConnectionStatus.DISCONNECTED) -> None:
        """Return to the disconnected baseline."""
        self.status = status
        self.homing_text = HOMING_STATUS_TEXT[HomingState.NOT_STARTED]
        self.motor_on = False
        self.commands_enabled = False

    def show_position(self, value: float) -> None:
        self.position = value
        self.position_text = f"{value:.1f}%"

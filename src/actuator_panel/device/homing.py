"""
Homing State Machine - tracks the min/max travel calibration of the actuator.

The operator first stores the minimum position, then the maximum position.
The firmware confirms each step; only confirmations advance the state, and
the state only moves forward. The single "set position" action sends the
command for whichever step is next.
"""

from enum import Enum

from actuator_panel.core.logging import get_logger
from actuator_panel.device.protocol import (
    MaxPositionConfirmed,
    MinPositionConfirmed,
    ProtocolEvent,
    ProtocolProfile,
    encode_set_max,
    encode_set_min,
)

logger = get_logger()


class HomingState(Enum):
    """
    Enum for the progress of the homing sequence.

    States:
    - NOT_STARTED: No position stored yet
    - MIN_SET: Minimum position confirmed by the device
    - FULLY_HOMED: Maximum position confirmed, travel bounds known
    """

    NOT_STARTED = "not-started"
    MIN_SET = "min-set"
    FULLY_HOMED = "fully-homed"

    def __str__(self) -> str:
        return self.value


HOMING_STATUS_TEXT = {
    HomingState.NOT_STARTED: "System Not Homed",
    HomingState.MIN_SET: "Min Position Set",
    HomingState.FULLY_HOMED: "System is homed",
}


class HomingTracker:
    """Reactive homing state for one established session."""

    def __init__(self, profile: ProtocolProfile):
        self.profile = profile
        self.state = HomingState.NOT_STARTED

    def reset(self) -> None:
        self.state = HomingState.NOT_STARTED

    @property
    def is_fully_homed(self) -> bool:
        return self.state == HomingState.FULLY_HOMED

    @property
    def status_text(self) -> str:
        return HOMING_STATUS_TEXT[self.state]

    def current_command(self) -> bytes | None:
        """
        The wire command the "set position" action should send now.

        Returns:
            The min command before anything is stored, the max command once
            the minimum is confirmed, and None (disabled) when fully homed.
        """
        if self.state == HomingState.NOT_STARTED:
            return encode_set_min(self.profile)
        if self.state == HomingState.MIN_SET:
            return encode_set_max(self.profile)
        return None

    def apply(self, event: ProtocolEvent) -> bool:
        """
        Advance on a confirmation event.

        A max confirmation before the minimum is set is ignored; the sequence
        never skips MIN_SET.

        Returns:
            True if the state changed.
        """
        if isinstance(event, MinPositionConfirmed):
            if self.state == HomingState.NOT_STARTED:
                self.state = HomingState.MIN_SET
                logger.info("Min position set")
                return True
            logger.debug(f"Ignoring min position confirmation in state {self.state}")

        elif isinstance(event, MaxPositionConfirmed):
            if self.state == HomingState.MIN_SET:
                self.state = HomingState.FULLY_HOMED
                logger.info("Max position set, system homed")
                return True
            logger.debug(f"Ignoring max position confirmation in state {self.state}")

        return False

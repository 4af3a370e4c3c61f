"""
Device package - Contains the actuator driver and its protocol pieces.

This package provides:
- ActuatorDevice: Read-loop driver owning one transport session at a time
- TransportSession: Base class for byte transports
- SerialTransportSession: Serial port transport (pyserial-asyncio)
- DryRunSession: Simulated firmware for testing without hardware
- LineBuffer: Reassembles newline-terminated records from raw chunks
- ProtocolProfile: Wire vocabulary of one firmware revision
- Handshake / HandshakeState: Session gating until the device acknowledges
- HomingTracker / HomingState: Min/max position calibration progress
- ConnectionStatus / PanelDisplay: Visible panel state
- PanelHandler: Extensible receiver of panel updates
"""

from .actuator_device import ActuatorDevice, ReadLoopState
from .dry_run_session import DryRunSession
from .handlers import DefaultPanelHandler, PanelHandler
from .handshake import Handshake, HandshakeState
from .homing import HomingState, HomingTracker
from .line_buffer import LineBuffer
from .protocol import (
    DEFAULT_PROFILE,
    PROFILES,
    ProtocolEvent,
    ProtocolProfile,
    decode,
    get_profile,
)
from .session import SerialTransportSession, TransportSession
from .status import ConnectionStatus, PanelDisplay

__all__ = [
    "ActuatorDevice",
    "ReadLoopState",
    "DryRunSession",
    "DefaultPanelHandler",
    "PanelHandler",
    "Handshake",
    "HandshakeState",
    "HomingState",
    "HomingTracker",
    "LineBuffer",
    "DEFAULT_PROFILE",
    "PROFILES",
    "ProtocolEvent",
    "ProtocolProfile",
    "decode",
    "get_profile",
    "SerialTransportSession",
    "TransportSession",
    "ConnectionStatus",
    "PanelDisplay",
]

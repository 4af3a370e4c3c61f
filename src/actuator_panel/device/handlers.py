"""
Extensible handlers for panel updates.

The device core reports connection status changes, display updates and
decoded protocol events through a PanelHandler. A front end (console, GUI,
web view) extends PanelHandler to render them.
"""

from abc import ABC, abstractmethod

from actuator_panel.core.logging import get_logger
from actuator_panel.device.protocol import ProtocolEvent
from actuator_panel.device.status import ConnectionStatus, PanelDisplay

logger = get_logger()


class PanelHandler(ABC):
    """
    Abstract base class for receiving panel updates.

    Handlers are called synchronously from the device's read loop and must
    not block.
    """

    @abstractmethod
    def on_status(self, status: ConnectionStatus, detail: str | None = None) -> None:
        """
        Called when the connection status changes.

        Args:
            status: The new connection status.
            detail: Optional human readable reason (error text, timeout).
        """
        pass

    @abstractmethod
    def on_display(self, display: PanelDisplay) -> None:
        """
        Called after the visible panel state changed.

        Args:
            display: The current display state (shared, do not keep a reference
                expecting it to stay unchanged).
        """
        pass

    def on_event(self, event: ProtocolEvent) -> None:
        """
        Called for every protocol event decoded after the handshake.

        Args:
            event: The decoded event.
        """
        return None


class DefaultPanelHandler(PanelHandler):
    """
    Default handler that only logs.
    """

    def on_status(self, status: ConnectionStatus, detail: str | None = None) -> None:
        if detail:
            logger.info(f"Status: {status} ({detail})")
        else:
            logger.info(f"Status: {status}")

    def on_display(self, display: PanelDisplay) -> None:
        logger.verbose(f"Display: {display}")

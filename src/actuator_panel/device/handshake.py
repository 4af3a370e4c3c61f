"""
Handshake & Session State Machine.

A fresh connection is not trusted until the device answers the handshake
request. Until then every inbound record is only inspected for the
acknowledgement; nothing reaches the rest of the panel. A stalled handshake
is aborted by a timer.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from actuator_panel.core.logging import get_logger
from actuator_panel.device.protocol import HandshakeAck, ProtocolProfile, decode

logger = get_logger()

DEFAULT_HANDSHAKE_TIMEOUT = 3000  # ms


class HandshakeState(Enum):
    """
    Enum of handshake states.

    States:
    - IDLE: No connection, or the connection was closed
    - AWAITING_ACK: Handshake request sent, timer running
    - ESTABLISHED: Acknowledged, protocol traffic flows
    - FAILED: No acknowledgement before the timer expired
    """

    IDLE = "idle"
    AWAITING_ACK = "awaiting-ack"
    ESTABLISHED = "established"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class Handshake:
    """
    Handshake state for one connection.

    A new instance is created for every connection; no state survives a close.
    Profiles without a handshake are established as soon as begin() is called.
    """

    def __init__(
        self,
        profile: ProtocolProfile,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,  # ms
        on_timeout: Callable[[], Awaitable[None]] | None = None,
    ):
        """
        Initialize the handshake.

        Args:
            profile: Protocol revision; decides the request and ack tokens.
            timeout: Time in ms to wait for the acknowledgement.
            on_timeout: Coroutine function invoked after the state became FAILED.
        """
        self.profile = profile
        self.timeout = timeout / 1000
        self.on_timeout = on_timeout
        self.state = HandshakeState.IDLE
        self._timer: asyncio.Task | None = None

    @property
    def is_established(self) -> bool:
        return self.state == HandshakeState.ESTABLISHED

    def begin(self) -> None:
        """
        Enter AWAITING_ACK and start the timer.

        The caller sends the handshake request right after this returns.
        Must be called from a running event loop.
        """
        if self.state != HandshakeState.IDLE:
            logger.warning(f"Handshake already started (state: {self.state})")
            return

        if not self.profile.requires_handshake:
            logger.debug(f"Profile '{self.profile.name}' has no handshake, session established")
            self.state = HandshakeState.ESTABLISHED
            return

        self.state = HandshakeState.AWAITING_ACK
        self._timer = asyncio.create_task(self._expire())
        logger.debug(f"Awaiting handshake acknowledgement ({self.timeout * 1000:.0f}ms)")

    def observe(self, line: str) -> bool:
        """
        Inspect a record received before the session is established.

        Returns:
            True if this record completed the handshake.
        """
        if self.state != HandshakeState.AWAITING_ACK:
            return False

        if not any(isinstance(event, HandshakeAck) for event in decode(line, self.profile)):
            logger.verbose(f"Discarding record before handshake: {line!r}")
            return False

        self._cancel_timer()
        self.state = HandshakeState.ESTABLISHED
        logger.info("Handshake acknowledged")
        return True

    def close(self) -> None:
        """
        Stop the timer and leave the handshake.

        ESTABLISHED and AWAITING_ACK return to IDLE; FAILED is kept so the
        failure stays observable after the connection is torn down.
        """
        self._cancel_timer()
        if self.state in (HandshakeState.ESTABLISHED, HandshakeState.AWAITING_ACK):
            self.state = HandshakeState.IDLE

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        # The timeout callback may close us from inside the timer task
        if timer and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout)

        if self.state != HandshakeState.AWAITING_ACK:
            return

        self.state = HandshakeState.FAILED
        logger.error(f"Handshake timed out after {self.timeout * 1000:.0f}ms")

        if self.on_timeout:
            await self.on_timeout()

"""Cooperative cancellation for translation jobs."""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    External cancellation signal checked at every suspension point.

    Each job owns its own token. sleep() doubles as the job's wait
    primitive: it returns as soon as the token is cancelled, so a long
    quota wait does not hold up a stop request.

    Example:
        ```python
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGINT, token.cancel)

        if await token.sleep(4.0):
            return  # cancelled while waiting
        ```
    """

    def __init__(self):
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def event(self) -> asyncio.Event:
        """Lazy initialization of the event (must be created within event loop)."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Request cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        logger.info(f"🛑 Cancellation requested: {reason}")
        if self._event is not None:
            self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """
        Wait up to seconds, returning early on cancellation.

        Args:
            seconds: Time to wait

        Returns:
            True if the token was cancelled before or during the wait
        """
        if self._cancelled:
            return True
        if seconds <= 0:
            return self._cancelled
        try:
            await asyncio.wait_for(self.event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return self._cancelled

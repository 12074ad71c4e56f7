"""
Expiry Monitor - Advisory countdown for the session expiration warning.
"""

import asyncio
from typing import Optional, Callable, Any
from dataclasses import dataclass

from medportal.config.constants import EXPIRY_TICK_SECONDS, EXPIRY_WARNING_SECONDS
from medportal.onboarding.session import SessionGateway
from medportal.infra.logger import get_logger
from medportal.infra.utils import format_countdown


logger = get_logger(__name__)


@dataclass
class ExpiryStatus:
    """What the expiration banner should show."""
    seconds_left: Optional[int]
    is_expired: bool
    show_warning: bool
    formatted: str = ""


class ExpiryMonitor:
    """
    Recomputes the time to expiry on a timer and hands it to a callback.

    Purely advisory: it never extends or recovers the session itself.
    """

    def __init__(
        self,
        gateway: SessionGateway,
        on_tick: Optional[Callable[[ExpiryStatus], Any]] = None,
        interval: float = EXPIRY_TICK_SECONDS,
        warning_threshold: int = EXPIRY_WARNING_SECONDS
    ):
        self.gateway = gateway
        self.on_tick = on_tick
        self.interval = interval
        self.warning_threshold = warning_threshold
        self._task: Optional[asyncio.Task] = None

    def status(self) -> ExpiryStatus:
        """Current expiry status derived from the gateway."""
        seconds_left = self.gateway.time_until_expiry()
        expired = self.gateway.is_expired()

        if seconds_left is None and not expired:
            return ExpiryStatus(seconds_left=None, is_expired=False, show_warning=False)

        seconds = seconds_left or 0
        return ExpiryStatus(
            seconds_left=seconds,
            is_expired=expired,
            show_warning=expired or seconds <= self.warning_threshold,
            formatted=format_countdown(seconds)
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop ticking."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            status = self.status()
            if self.on_tick is not None:
                try:
                    result = self.on_tick(status)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(f"Error in expiry tick handler: {e}")
            await asyncio.sleep(self.interval)

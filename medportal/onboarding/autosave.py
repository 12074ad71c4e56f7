"""
Auto-Save Scheduler - Background persistence of onboarding progress.

Answer edits are debounced; step transitions save right away. Saves are
best-effort: every failure is logged and swallowed.
"""

import asyncio
from typing import Optional, Set

from medportal.config.constants import AUTOSAVE_DEBOUNCE_SECONDS, AUTOSAVE_INTERVAL_SECONDS
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.store import (
    SessionStore,
    StoreChange,
    CHANGE_ANSWERS,
    CHANGE_RESET,
    CHANGE_RESTORE,
)
from medportal.infra.logger import get_logger


logger = get_logger(__name__)


class AutoSaveScheduler:
    """
    Watches a SessionStore and writes it through the gateway.

    A save that has taken its snapshot is never cancelled: its write may
    already be on the wire, and the gateway discards writes to closed
    sessions. Only timers and saves still waiting for their snapshot are.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: SessionGateway,
        debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS,
        interval_seconds: Optional[float] = AUTOSAVE_INTERVAL_SECONDS,
        enabled: bool = True
    ):
        self.store = store
        self.gateway = gateway
        self.debounce_seconds = debounce_seconds
        self.interval_seconds = interval_seconds
        self.enabled = enabled

        self._debounce_task: Optional[asyncio.Task] = None
        self._immediate_task: Optional[asyncio.Task] = None
        self._interval_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._running = False
        self._generation = 0

        self.save_count = 0
        self.failure_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Subscribe to the store and start the periodic save."""
        if not self.enabled or self._running:
            return

        self._running = True
        self.store.subscribe(self._on_change)

        if self.interval_seconds:
            self._interval_task = asyncio.create_task(self._interval_loop())

        logger.debug("Auto-save started")

    def _on_change(self, change: StoreChange) -> None:
        if not self._running:
            return

        if change.kind in (CHANGE_RESET, CHANGE_RESTORE):
            self._generation += 1
            self.cancel_pending()
        elif change.kind == CHANGE_ANSWERS:
            self._schedule_debounced()
        else:
            self._schedule_immediate()

    def _cancel_debounce(self) -> None:
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def _schedule_debounced(self) -> None:
        self._cancel_debounce()
        self._debounce_task = self._track(asyncio.create_task(self._debounced_save()))

    def _schedule_immediate(self) -> None:
        self._cancel_debounce()

        # Notifications arriving before the pending write takes its snapshot
        # collapse into that write.
        if self._immediate_task is not None:
            return
        self._immediate_task = self._track(asyncio.create_task(self._save(immediate=True)))

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._debounce_task = None
        await self._save()

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.store.has_unsaved_changes:
                # Stopping the loop must not cancel a write already under way.
                await asyncio.shield(self._track(asyncio.create_task(self._save())))

    async def _save(self, immediate: bool = False) -> bool:
        async with self._lock:
            if immediate:
                self._immediate_task = None
            generation = self._generation
            revision = self.store.revision
            snapshot = self.store.snapshot()
            try:
                session_id = await self.gateway.save(snapshot)
            except Exception as e:
                self.failure_count += 1
                logger.warning(f"Auto-save failed: {e}")
                return False

            if session_id is None:
                return False

            if generation != self._generation:
                # The store was reset or restored while this write was in flight.
                logger.debug(f"Auto-saved session {session_id} no longer matches the store")
                return False

            self.store.mark_saved(session_id, revision=revision)
            self.save_count += 1
            logger.debug(f"Auto-saved session {session_id}")
            return True

    async def flush(self) -> bool:
        """
        Save now, folding in any pending debounced write.

        Returns:
            True if the save succeeded
        """
        if not self.enabled:
            return False

        self._cancel_debounce()
        return await self._save()

    def cancel_pending(self) -> None:
        """Cancel timers and saves that have not taken their snapshot yet."""
        self._cancel_debounce()
        if self._immediate_task is not None:
            self._immediate_task.cancel()
            self._immediate_task = None

    async def stop(self) -> None:
        """Stop listening, cancel timers and let in-flight writes finish."""
        if not self._running:
            return

        self._running = False
        self.store.unsubscribe(self._on_change)

        self.cancel_pending()
        if self._interval_task:
            self._interval_task.cancel()
            await asyncio.gather(self._interval_task, return_exceptions=True)
            self._interval_task = None

        await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        logger.debug("Auto-save stopped")

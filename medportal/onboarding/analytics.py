"""
Analytics Emitter - Fire-and-forget onboarding telemetry.

Each event is dispatched as its own task with an error boundary and a
timeout, so a slow or failing analytics backend never delays the wizard.
"""

import asyncio
from typing import Dict, List, Any, Optional, Callable, Set
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from medportal.backend.base import AnalyticsBackend
from medportal.config.constants import ANALYTICS_TIMEOUT_SECONDS
from medportal.onboarding.states import OnboardingStep
from medportal.infra.logger import get_logger
from medportal.infra.utils import utc_now, to_iso


logger = get_logger(__name__)


class AnalyticsEventType(Enum):
    """Onboarding analytics event types."""

    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"
    SESSION_SAVED = "session_saved"
    SESSION_RESUMED = "session_resumed"
    SESSION_EXPIRED = "session_expired"
    SESSION_ABANDONED = "session_abandoned"
    ONBOARDING_COMPLETED = "onboarding_completed"


@dataclass
class AnalyticsEvent:
    """One analytics event."""

    event_type: AnalyticsEventType
    step: OnboardingStep
    timestamp: datetime
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        data: Dict[str, Any] = {
            "type": self.event_type.value,
            "step": self.step.value,
            "timestamp": to_iso(self.timestamp)
        }
        if self.session_id:
            data["session_id"] = self.session_id
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        if self.error_message:
            data["error_message"] = self.error_message
        return data


class AnalyticsEmitter:
    """
    Reports onboarding events without ever blocking the caller.
    """

    def __init__(
        self,
        backend: Optional[AnalyticsBackend],
        enabled: bool = True,
        timeout: float = ANALYTICS_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now
    ):
        self.backend = backend
        self.enabled = enabled and backend is not None
        self.timeout = timeout
        self._clock = clock

        self._pending: Set[asyncio.Task] = set()
        self._step_started_at: Dict[OnboardingStep, datetime] = {}
        self._history: List[AnalyticsEvent] = []
        self._max_history = 500
        self.failure_count = 0

    def emit(
        self,
        event_type: AnalyticsEventType,
        step: OnboardingStep,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """
        Schedule an event for delivery.

        Args:
            event_type: The type of event
            step: The step the event refers to
            session_id: Current session id, if any
            metadata: Extra event data
            duration_ms: Elapsed time on the step
            error_message: Error text for api_error events

        Returns:
            The dispatch task, or None when analytics is disabled
        """
        if not self.enabled:
            return None

        event = AnalyticsEvent(
            event_type=event_type,
            step=step,
            timestamp=self._clock(),
            session_id=session_id,
            metadata=dict(metadata or {}),
            duration_ms=duration_ms,
            error_message=error_message
        )

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        task = asyncio.create_task(self._dispatch(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _dispatch(self, event: AnalyticsEvent) -> None:
        """Deliver one event; failures are logged only."""
        try:
            await asyncio.wait_for(self.backend.track(event.to_dict()), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.failure_count += 1
            logger.warning(f"Analytics event {event.event_type.value} timed out")
        except Exception as e:
            self.failure_count += 1
            logger.warning(f"Failed to track {event.event_type.value}: {e}")

    async def drain(self) -> None:
        """Wait for all in-flight events."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def start_step(self, step: OnboardingStep) -> None:
        """Remember when a step was entered."""
        self._step_started_at[step] = self._clock()

    def complete_step(self, step: OnboardingStep) -> Optional[int]:
        """Milliseconds since start_step(step), or None if it was never started."""
        started = self._step_started_at.pop(step, None)
        if started is None:
            return None
        return max(0, int((self._clock() - started).total_seconds() * 1000))

    def step_started(
        self,
        step: OnboardingStep,
        session_id: Optional[str] = None,
        **metadata
    ) -> Optional[asyncio.Task]:
        self.start_step(step)
        return self.emit(AnalyticsEventType.STEP_STARTED, step, session_id, metadata)

    def step_completed(
        self,
        step: OnboardingStep,
        session_id: Optional[str] = None,
        **metadata
    ) -> Optional[asyncio.Task]:
        duration = self.complete_step(step)
        return self.emit(
            AnalyticsEventType.STEP_COMPLETED, step, session_id, metadata, duration_ms=duration
        )

    def step_skipped(
        self,
        step: OnboardingStep,
        session_id: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        duration = self.complete_step(step)
        return self.emit(AnalyticsEventType.STEP_SKIPPED, step, session_id, duration_ms=duration)

    def validation_error(
        self,
        step: OnboardingStep,
        fields: List[str],
        session_id: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        return self.emit(
            AnalyticsEventType.VALIDATION_ERROR,
            step,
            session_id,
            {"fields": sorted(fields)}
        )

    def api_error(
        self,
        step: OnboardingStep,
        error_message: str,
        session_id: Optional[str] = None,
        operation: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        metadata = {"operation": operation} if operation else None
        return self.emit(
            AnalyticsEventType.API_ERROR,
            step,
            session_id,
            metadata,
            error_message=error_message
        )

    def session_abandoned(
        self,
        step: OnboardingStep,
        reason: str,
        session_id: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        return self.emit(
            AnalyticsEventType.SESSION_ABANDONED, step, session_id, {"reason": reason}
        )

    def get_recent_events(
        self,
        event_type: Optional[AnalyticsEventType] = None,
        limit: int = 100
    ) -> List[AnalyticsEvent]:
        """
        Get recently emitted events, oldest first.

        Args:
            event_type: Optional filter by event type
            limit: Maximum number of events to return
        """
        events = self._history
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]

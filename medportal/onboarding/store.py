"""
Session Store - In-memory state the wizard renders from.

One store per orchestrator; nothing here is global. Observers (auto-save,
UI adapters) subscribe and are told about every mutation.
"""

from typing import Dict, List, Any, Optional, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from medportal.onboarding.states import (
    OnboardingStep,
    Session,
    progress_percent,
    unknown_fields,
)
from medportal.infra.exceptions import UnknownFieldError
from medportal.infra.logger import get_logger
from medportal.infra.utils import utc_now


logger = get_logger(__name__)


CHANGE_STEP = "step"
CHANGE_ANSWERS = "answers"
CHANGE_COMPLETED = "completed"
CHANGE_SKIPPED = "skipped"
CHANGE_RESET = "reset"
CHANGE_RESTORE = "restore"


@dataclass
class StoreChange:
    """Describes one mutation of the store."""
    kind: str
    step: OnboardingStep
    fields: List[str] = field(default_factory=list)


StoreListener = Callable[[StoreChange], Any]


class SessionStore:
    """
    Holds the current step, the answers and the completed/skipped log.
    """

    def __init__(
        self,
        first_step: OnboardingStep = OnboardingStep.WELCOME,
        clock: Callable[[], datetime] = utc_now
    ):
        self._clock = clock
        self._listeners: List[StoreListener] = []

        self.current_step: OnboardingStep = first_step
        self.answers: Dict[str, Any] = {}
        self.completed_steps: List[OnboardingStep] = []
        self.skipped_steps: List[OnboardingStep] = []
        self.path: List[OnboardingStep] = []
        self.validation_errors: Dict[str, str] = {}
        self.role_chosen_in_session = False
        self.school_created_in_session = False

        self.session_id: Optional[str] = None
        self.step_started_at: Dict[OnboardingStep, datetime] = {}
        self.has_unsaved_changes = False
        self.last_saved_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.error_count = 0
        self.revision = 0

    def subscribe(self, listener: StoreListener) -> None:
        """Register a listener called after every mutation."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        """Remove a listener."""
        self._listeners = [l for l in self._listeners if l != listener]

    def _notify(self, change: StoreChange) -> None:
        self.revision += 1
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Error in store listener for {change.kind}: {e}")

    def set_step(self, step: OnboardingStep) -> None:
        """Show another step and remember when it was entered."""
        self.current_step = step
        self.step_started_at[step] = self._clock()
        self.has_unsaved_changes = True
        self._notify(StoreChange(CHANGE_STEP, step))

    def navigate_back(self, step: OnboardingStep) -> None:
        """Return to an earlier step, dropping it and everything after it from the path."""
        if step in self.path:
            index = len(self.path) - 1 - self.path[::-1].index(step)
            self.path = self.path[:index]
        self.set_step(step)

    def merge_answers(self, partial: Dict[str, Any]) -> List[str]:
        """
        Merge user input into the answer set.

        Args:
            partial: Field -> value updates

        Returns:
            Names of fields whose value actually changed

        Raises:
            UnknownFieldError: If a key is not part of the answer set
        """
        unknown = unknown_fields(partial)
        if unknown:
            raise UnknownFieldError(unknown)

        changed = [
            name for name, value in partial.items()
            if self.answers.get(name) != value or name not in self.answers
        ]
        if not changed:
            return []

        for name in changed:
            self.answers[name] = partial[name]
            self.validation_errors.pop(name, None)

        self.has_unsaved_changes = True
        self._notify(StoreChange(CHANGE_ANSWERS, self.current_step, changed))
        return changed

    def complete_step(self, step: OnboardingStep) -> None:
        """Record a step as completed (ordered set, append-only)."""
        self._append_path(step)
        if step not in self.completed_steps:
            self.completed_steps.append(step)
        if step in self.skipped_steps:
            self.skipped_steps.remove(step)
        self.has_unsaved_changes = True
        self._notify(StoreChange(CHANGE_COMPLETED, step))

    def skip_step(self, step: OnboardingStep) -> None:
        """Record a step as skipped; a completed step is never marked skipped."""
        self._append_path(step)
        if step not in self.skipped_steps and step not in self.completed_steps:
            self.skipped_steps.append(step)
        self.has_unsaved_changes = True
        self._notify(StoreChange(CHANGE_SKIPPED, step))

    def _append_path(self, step: OnboardingStep) -> None:
        if step in self.path:
            self.path.remove(step)
        self.path.append(step)

    def set_validation_errors(self, errors: Dict[str, str]) -> None:
        self.validation_errors = dict(errors)

    def clear_validation_errors(self) -> None:
        self.validation_errors = {}

    def set_error(self, message: Optional[str]) -> None:
        """Record the last user-visible error."""
        self.last_error = message
        if message:
            self.error_count += 1

    def reset(self, first_step: OnboardingStep = OnboardingStep.WELCOME) -> None:
        """Clear answers and history and go back to the first step."""
        self.current_step = first_step
        self.answers = {}
        self.completed_steps = []
        self.skipped_steps = []
        self.path = []
        self.validation_errors = {}
        self.role_chosen_in_session = False
        self.school_created_in_session = False
        self.session_id = None
        self.step_started_at = {first_step: self._clock()}
        self.has_unsaved_changes = False
        self.last_saved_at = None
        self.last_error = None
        self._notify(StoreChange(CHANGE_RESET, first_step))

    def restore(self, session: Session) -> None:
        """Load state from a persisted session."""
        self.session_id = session.session_id
        self.current_step = session.current_step
        self.answers = dict(session.answers)
        self.completed_steps = list(session.completed_steps)
        self.skipped_steps = [
            s for s in session.skipped_steps if s not in session.completed_steps
        ]
        self.path = list(session.path)
        self.validation_errors = {}
        self.role_chosen_in_session = OnboardingStep.ROLE_SELECTION in self.completed_steps
        self.school_created_in_session = OnboardingStep.SCHOOL_SETUP in self.completed_steps
        self.step_started_at = {session.current_step: self._clock()}
        self.has_unsaved_changes = False
        self.last_saved_at = session.updated_at
        self._notify(StoreChange(CHANGE_RESTORE, session.current_step))

    def mark_saved(
        self,
        session_id: str,
        at: Optional[datetime] = None,
        revision: Optional[int] = None
    ) -> None:
        """
        Record a successful save.

        Args:
            session_id: Id the gateway saved under
            at: Save time (defaults to now)
            revision: Store revision the saved snapshot was taken at; changes
                made after it stay unsaved
        """
        self.session_id = session_id
        if revision is None or revision == self.revision:
            self.has_unsaved_changes = False
        self.last_saved_at = at or self._clock()

    def snapshot(self) -> Dict[str, Any]:
        """Payload persisted by the session gateway."""
        return {
            "session_id": self.session_id,
            "current_step": self.current_step,
            "answers": dict(self.answers),
            "completed_steps": list(self.completed_steps),
            "skipped_steps": list(self.skipped_steps),
            "path": list(self.path)
        }

    @property
    def role(self) -> Any:
        return self.answers.get("role")

    @property
    def history(self) -> List[OnboardingStep]:
        """Steps left by moving forward (completed or skipped) along the current path."""
        return list(self.path)

    @property
    def progress(self) -> int:
        return progress_percent(self.completed_steps)

    def step_duration_ms(self, step: OnboardingStep, until: Optional[datetime] = None) -> Optional[int]:
        """Milliseconds spent on a step since it was entered."""
        started = self.step_started_at.get(step)
        if started is None:
            return None
        end = until or self._clock()
        return max(0, int((end - started).total_seconds() * 1000))

    def completed(self, steps: Iterable[OnboardingStep]) -> bool:
        return all(s in self.completed_steps for s in steps)

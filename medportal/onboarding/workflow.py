"""
Onboarding Workflow - Orchestrates the onboarding wizard.

Ties the store, router, validator, session gateway, auto-save and analytics
together behind the user actions: Next, Back, Skip, Save, Reset, extend and
recover. One orchestrator serves both the plain wizard and the persistent,
instrumented one; WorkflowConfig switches the extras on or off.
"""

import asyncio
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field

from medportal.backend.base import EntityBackend, CompletionBackend
from medportal.config.constants import (
    AUTOSAVE_DEBOUNCE_SECONDS,
    AUTOSAVE_INTERVAL_SECONDS,
    EXPIRY_WARNING_SECONDS,
    DEFAULT_PROGRAM_DURATION,
    DEFAULT_SITE_TYPE,
    DEFAULT_SITE_CAPACITY,
    WORKFLOW_MESSAGES,
)
from medportal.onboarding.analytics import AnalyticsEmitter, AnalyticsEventType
from medportal.onboarding.autosave import AutoSaveScheduler
from medportal.onboarding.expiry import ExpiryMonitor, ExpiryStatus
from medportal.onboarding.router import next_step, previous_step, initial_step
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.states import (
    OnboardingStep,
    StepOptions,
    UserProfile,
    UserRole,
    get_step_info,
)
from medportal.onboarding.store import SessionStore
from medportal.onboarding.validator import validate
from medportal.infra.exceptions import (
    BackendError,
    PersistenceError,
    SideEffectError,
    get_user_friendly_message,
)
from medportal.infra.logger import get_logger
from medportal.infra.utils import is_blank, parse_positive_int


logger = get_logger(__name__)


@dataclass
class WorkflowConfig:
    """Feature switches for one orchestrator."""
    enable_analytics: bool = True
    enable_session_persistence: bool = True
    enable_auto_save: bool = True
    autosave_debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS
    autosave_interval_seconds: Optional[float] = AUTOSAVE_INTERVAL_SECONDS
    expiry_warning_seconds: int = EXPIRY_WARNING_SECONDS

    @classmethod
    def from_settings(cls, settings) -> "WorkflowConfig":
        """Build from application Settings."""
        return cls(
            enable_analytics=settings.enable_analytics,
            enable_session_persistence=settings.enable_session_persistence,
            enable_auto_save=settings.enable_auto_save,
            autosave_debounce_seconds=settings.autosave_debounce_seconds,
            autosave_interval_seconds=settings.autosave_interval_seconds,
            expiry_warning_seconds=settings.expiry_warning_seconds
        )


@dataclass
class StepResult:
    """Outcome of a user action."""
    advanced: bool
    step: OnboardingStep
    errors: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    finished: bool = False


class OnboardingWorkflow:
    """
    The onboarding state machine.

    States are the step catalog, transitions come from the router and are
    gated by the validator. 'complete' is terminal.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: SessionGateway,
        entities: EntityBackend,
        analytics: Optional[AnalyticsEmitter] = None,
        config: Optional[WorkflowConfig] = None,
        options: Optional[StepOptions] = None,
        completion: Optional[CompletionBackend] = None,
        on_expiry_tick: Optional[Callable[[ExpiryStatus], Any]] = None
    ):
        self.store = store
        self.gateway = gateway
        self.entities = entities
        self.completion = completion or entities
        self.config = config or WorkflowConfig()
        self.options = options

        if analytics is None or not self.config.enable_analytics:
            analytics = AnalyticsEmitter(None, enabled=False)
        self.analytics = analytics

        self.autosave = AutoSaveScheduler(
            store,
            gateway,
            debounce_seconds=self.config.autosave_debounce_seconds,
            interval_seconds=self.config.autosave_interval_seconds,
            enabled=self.persistence_enabled and self.config.enable_auto_save
        )
        self.expiry = ExpiryMonitor(
            gateway,
            on_tick=self._on_expiry_tick,
            warning_threshold=self.config.expiry_warning_seconds
        )
        self._on_expiry_tick_callback = on_expiry_tick

        self.profile: Optional[UserProfile] = None
        self.warning: Optional[str] = None
        self.notice: Optional[str] = None
        self.is_finished = False
        self._expired_reported = False
        self._action_lock = asyncio.Lock()

    @property
    def persistence_enabled(self) -> bool:
        return self.config.enable_session_persistence

    @property
    def current_step(self) -> OnboardingStep:
        return self.store.current_step

    @property
    def progress(self) -> int:
        return self.store.progress

    @property
    def session_id(self) -> Optional[str]:
        return self.store.session_id or self.gateway.session_id

    def set_options(self, options: Optional[StepOptions]) -> None:
        """Replace the schools/programs offered by the selection steps."""
        self.options = options

    # ==================== Lifecycle ====================

    async def initialize(self, profile: Optional[UserProfile] = None) -> OnboardingStep:
        """
        Resume a saved session or start fresh from the user's profile.

        Args:
            profile: What the identity provider knows about the user

        Returns:
            The step to show first
        """
        self.profile = profile

        if self.persistence_enabled:
            session = None
            try:
                session = await self.gateway.load()
            except PersistenceError as e:
                self._warn("load_failed", e)

            if session is not None:
                self.store.restore(session)
                self.analytics.start_step(session.current_step)
                self.analytics.emit(
                    AnalyticsEventType.SESSION_RESUMED,
                    session.current_step,
                    session.session_id
                )
                self.notice = WORKFLOW_MESSAGES["resumed"]
                logger.info(f"Resumed session {session.session_id} at {session.current_step.value}")
                self._start_background()
                return self.store.current_step

            if self.gateway.is_expired():
                self._report_expired()

        answers = profile.to_answers() if profile else {}
        role = answers.get("role")
        first = initial_step(role, answers)

        self.store.reset(first)
        if answers:
            self.store.merge_answers(answers)
        self.analytics.step_started(first)

        logger.info(f"Starting onboarding at {first.value}")
        self._start_background()
        return first

    def _start_background(self) -> None:
        self.autosave.start()
        if self.persistence_enabled:
            self.expiry.start()

    async def close(self) -> None:
        """Stop background work and forget the in-memory session copy."""
        await self.autosave.stop()
        await self.expiry.stop()
        await self.analytics.drain()
        self.gateway.close()

    # ==================== User actions ====================

    def update_answers(self, **fields: Any) -> List[str]:
        """
        Apply user input.

        Returns:
            The fields that changed

        Raises:
            UnknownFieldError: If a field is outside the answer set
        """
        return self.store.merge_answers(fields)

    async def handle_next(self) -> StepResult:
        """Validate the current step, run its side effect and move forward."""
        async with self._action_lock:
            step = self.store.current_step

            if self.is_finished:
                return StepResult(advanced=False, step=step, finished=True)

            if step == OnboardingStep.COMPLETE:
                return await self._finish()

            self.store.clear_validation_errors()
            errors = validate(step, self.store.answers, self.options)
            if errors:
                self.store.set_validation_errors(errors)
                self.analytics.validation_error(step, list(errors), self.session_id)
                logger.debug(f"Validation failed on {step.value}: {sorted(errors)}")
                return StepResult(advanced=False, step=step, errors=errors)

            try:
                await self._run_side_effect(step)
            except SideEffectError as e:
                message = get_user_friendly_message(e)
                self.store.set_error(message)
                self.analytics.api_error(step, message, self.session_id, e.operation)
                logger.warning(f"Side effect failed on {step.value}: {e}")
                return StepResult(advanced=False, step=step, error=message)

            self.store.set_error(None)
            self.analytics.step_completed(step, self.session_id)
            self.store.complete_step(step)

            target = next_step(self.store.role, self.store.answers, step, self.store.history)
            self._enter(target)
            return StepResult(advanced=True, step=target)

    async def handle_back(self) -> StepResult:
        """Go back along the forward path. No validation, no side effects."""
        async with self._action_lock:
            current = self.store.current_step
            target = previous_step(current, self.store.path)

            if target is None or self.is_finished:
                return StepResult(advanced=False, step=current)

            self.store.clear_validation_errors()
            self.store.navigate_back(target)
            self.analytics.step_started(target, self.session_id, direction="back")
            return StepResult(advanced=True, step=target)

    async def handle_skip(self) -> StepResult:
        """Skip an optional step and move forward."""
        async with self._action_lock:
            step = self.store.current_step

            if self.is_finished or not get_step_info(step).skippable:
                return StepResult(
                    advanced=False,
                    step=step,
                    error=f"{get_step_info(step).title} cannot be skipped"
                )

            self.store.clear_validation_errors()
            self.analytics.step_skipped(step, self.session_id)
            self.store.skip_step(step)

            target = next_step(self.store.role, self.store.answers, step, self.store.history)
            self._enter(target)
            return StepResult(advanced=True, step=target)

    async def handle_save(self) -> bool:
        """
        Save progress now.

        Returns:
            True if the session was written
        """
        if not self.persistence_enabled or self.is_finished:
            return False

        revision = self.store.revision
        try:
            session_id = await self.gateway.save(self.store.snapshot())
        except PersistenceError as e:
            self._warn("save_failed", e)
            self.analytics.api_error(
                self.store.current_step, e.message, self.session_id, "save_session"
            )
            return False

        if session_id is None:
            return False

        self.store.mark_saved(session_id, revision=revision)
        self.analytics.emit(AnalyticsEventType.SESSION_SAVED, self.store.current_step, session_id)
        return True

    async def handle_reset(self, reason: str = "user_requested") -> OnboardingStep:
        """
        Abandon the current session and start over.

        Args:
            reason: Tag reported with the session_abandoned event

        Returns:
            The first step
        """
        async with self._action_lock:
            self.autosave.cancel_pending()

            step = self.store.current_step
            session_id = self.session_id

            if self.persistence_enabled:
                try:
                    # Without an id yet, this waits for the first write and removes it.
                    await self.gateway.abandon(session_id)
                except PersistenceError as e:
                    self._warn("abandon_failed", e)

            self.analytics.session_abandoned(step, reason, session_id)

            self.store.reset(OnboardingStep.WELCOME)
            if self.is_finished:
                self._start_background()
            self.is_finished = False
            self._expired_reported = False
            self.analytics.step_started(OnboardingStep.WELCOME)

            self.notice = WORKFLOW_MESSAGES["abandoned"]
            logger.info(f"Onboarding reset ({reason})")
            return OnboardingStep.WELCOME

    async def extend_session(self) -> bool:
        """Push the session expiry out by a full TTL."""
        if not self.persistence_enabled:
            return False

        try:
            extended = await self.gateway.extend(self.session_id)
        except PersistenceError as e:
            self._warn("extend_failed", e)
            return False

        if not extended:
            self.warning = WORKFLOW_MESSAGES["extend_failed"]
            return False

        self.warning = None
        self._expired_reported = False
        return True

    async def recover_session(self) -> bool:
        """Re-open an expired session and continue exactly where it stopped."""
        if not self.persistence_enabled:
            return False

        try:
            session = await self.gateway.recover(self.session_id)
        except PersistenceError as e:
            self._warn("recover_failed", e)
            return False

        if session is None:
            self.warning = WORKFLOW_MESSAGES["recover_failed"]
            return False

        self.store.restore(session)
        self.analytics.start_step(session.current_step)
        self.analytics.emit(
            AnalyticsEventType.SESSION_RESUMED,
            session.current_step,
            session.session_id,
            {"recovered": True}
        )
        self.warning = None
        self._expired_reported = False
        return True

    def dismiss_warning(self) -> None:
        self.warning = None

    # ==================== Internals ====================

    def _enter(self, step: OnboardingStep) -> None:
        self.store.set_step(step)
        self.analytics.step_started(step, self.session_id)

    def _warn(self, key: str, error: Exception) -> None:
        message = WORKFLOW_MESSAGES[key]
        self.warning = message
        logger.warning(f"{message}: {error}")

    def _report_expired(self) -> None:
        if self._expired_reported:
            return
        self._expired_reported = True
        self.warning = WORKFLOW_MESSAGES["expired"]
        self.analytics.emit(
            AnalyticsEventType.SESSION_EXPIRED,
            self.store.current_step,
            self.gateway.session_id
        )

    def _on_expiry_tick(self, status: ExpiryStatus) -> Any:
        if status.is_expired:
            self._report_expired()
        if self._on_expiry_tick_callback is not None:
            return self._on_expiry_tick_callback(status)
        return None

    async def _finish(self) -> StepResult:
        """Mark onboarding complete, then clean up the session."""
        try:
            await self.completion.mark_complete()
        except BackendError as e:
            message = get_user_friendly_message(
                SideEffectError(
                    e.message or "Failed to complete onboarding",
                    step=OnboardingStep.COMPLETE.value,
                    operation="mark_complete"
                )
            )
            self.store.set_error(message)
            self.analytics.api_error(
                OnboardingStep.COMPLETE, message, self.session_id, "mark_complete"
            )
            logger.warning(f"Completion failed, keeping session: {e}")
            return StepResult(advanced=False, step=OnboardingStep.COMPLETE, error=message)

        session_id = self.session_id
        answers = self.store.answers
        self.analytics.emit(
            AnalyticsEventType.ONBOARDING_COMPLETED,
            OnboardingStep.COMPLETE,
            session_id,
            {
                "completed_steps": len(self.store.completed_steps),
                "final_role": answers.get("role"),
                "has_school": not is_blank(answers.get("school_id")),
                "has_program": not is_blank(answers.get("program_id"))
            }
        )

        self.is_finished = True
        self.store.set_error(None)
        await self.autosave.stop()
        await self.expiry.stop()

        if self.persistence_enabled and session_id:
            try:
                await self.gateway.abandon(session_id)
            except PersistenceError as e:
                logger.warning(f"Could not remove completed session {session_id}: {e}")

        self.notice = WORKFLOW_MESSAGES["completed"]
        logger.info("Onboarding completed")
        return StepResult(advanced=False, step=OnboardingStep.COMPLETE, finished=True)

    async def _call_entity(self, step: OnboardingStep, operation: str, call) -> Dict[str, Any]:
        try:
            return await call()
        except BackendError as e:
            raise SideEffectError(e.message, step=step.value, operation=operation) from e

    async def _create(self, step: OnboardingStep, operation: str, call) -> str:
        result = await self._call_entity(step, operation, call)
        created_id = (result or {}).get("id")
        if is_blank(created_id):
            raise SideEffectError(
                f"{operation} returned no id", step=step.value, operation=operation
            )
        return str(created_id)

    async def _update_user(self, step: OnboardingStep, **fields: Any) -> None:
        await self._call_entity(step, "update_user", lambda: self.entities.update_user(**fields))

    async def _run_side_effect(self, step: OnboardingStep) -> None:
        """
        Run the collaborator call tied to leaving a step.

        Created ids are folded back into the answers before anything else can
        fail, so a retry never creates the same record twice.

        Raises:
            SideEffectError: If the collaborator call fails
        """
        answers = self.store.answers

        if step == OnboardingStep.ROLE_SELECTION:
            role = UserRole.parse(answers.get("role"))
            await self._update_user(step, role=role.value)
            self.store.role_chosen_in_session = True

        elif step in (OnboardingStep.SCHOOL_SELECTION, OnboardingStep.AFFILIATION_SETUP):
            await self._update_user(step, school_id=answers["school_id"])

        elif step == OnboardingStep.PROGRAM_SELECTION:
            await self._update_user(step, program_id=answers["program_id"])

        elif step == OnboardingStep.SCHOOL_SETUP:
            if not (self.store.school_created_in_session and not is_blank(answers.get("school_id"))):
                school_id = await self._create(
                    step,
                    "create_school",
                    lambda: self.entities.create_school(
                        name=answers["school_name"].strip(),
                        address=answers.get("school_address")
                    )
                )
                self.store.merge_answers({"school_id": school_id})
                self.store.school_created_in_session = True
            await self._update_user(step, school_id=self.store.answers["school_id"])

        elif step == OnboardingStep.PROGRAM_SETUP:
            if is_blank(answers.get("program_id")):
                duration = answers.get("program_duration")
                program_id = await self._create(
                    step,
                    "create_program",
                    lambda: self.entities.create_program(
                        school_id=answers.get("school_id"),
                        name=answers["program_name"].strip(),
                        program_type=answers["program_type"],
                        duration=parse_positive_int(duration) or DEFAULT_PROGRAM_DURATION,
                        description=answers.get("program_description")
                    )
                )
                self.store.merge_answers({"program_id": program_id})

        elif step == OnboardingStep.CLINICAL_SITE_SETUP:
            capacity = answers.get("site_capacity")
            await self._create(
                step,
                "create_clinical_site",
                lambda: self.entities.create_clinical_site(
                    name=answers["site_name"].strip(),
                    address=answers["site_address"].strip(),
                    site_type=answers.get("site_type") or DEFAULT_SITE_TYPE,
                    capacity=parse_positive_int(capacity) or DEFAULT_SITE_CAPACITY,
                    email=answers.get("site_email"),
                    phone=answers.get("site_phone")
                )
            )

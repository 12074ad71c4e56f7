"""Tests for the onboarding workflow orchestrator."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from medportal.backend.memory import InMemorySessionBackend
from medportal.config.constants import WORKFLOW_MESSAGES, VALIDATION_MESSAGES
from medportal.infra.exceptions import BackendError, PersistenceError, UnknownFieldError
from medportal.onboarding.analytics import AnalyticsEmitter, AnalyticsEventType
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.states import OnboardingStep, StepOptions, UserProfile, UserRole
from medportal.onboarding.store import SessionStore
from medportal.onboarding.workflow import OnboardingWorkflow, WorkflowConfig


S = OnboardingStep

OPTIONS = StepOptions(
    schools=[{"id": "S1", "name": "North"}],
    programs=[{"id": "P1", "school_id": "S1", "name": "Nursing"}]
)


@pytest.fixture
def backend(clock):
    return InMemorySessionBackend(clock=clock)


@pytest.fixture
def build(clock, backend, mock_entities, mock_analytics_backend):
    """Factory for workflows sharing one session backend."""

    def _build(session_backend=None, **config):
        config.setdefault("enable_auto_save", False)
        if session_backend is None:
            session_backend = backend
        return OnboardingWorkflow(
            store=SessionStore(clock=clock),
            gateway=SessionGateway(session_backend, clock=clock),
            entities=mock_entities,
            analytics=AnalyticsEmitter(mock_analytics_backend, clock=clock),
            config=WorkflowConfig(**config),
            options=OPTIONS
        )

    return _build


class SlowSessionBackend(InMemorySessionBackend):
    """Session writes take a moment to land."""

    async def upsert(self, record):
        await asyncio.sleep(0.01)
        return await super().upsert(record)


def event_types(workflow):
    return [e.event_type for e in workflow.analytics.get_recent_events()]


class TestLearnerFlow:
    """A student walks through role, school and program selection."""

    @pytest.mark.asyncio
    async def test_full_flow(self, build, mock_entities, backend):
        workflow = build()
        assert await workflow.initialize() == S.WELCOME

        assert (await workflow.handle_next()).step == S.ROLE_SELECTION

        workflow.update_answers(role="STUDENT")
        assert (await workflow.handle_next()).step == S.SCHOOL_SELECTION
        mock_entities.update_user.assert_awaited_with(role="STUDENT")

        workflow.update_answers(school_id="S1")
        assert (await workflow.handle_next()).step == S.PROGRAM_SELECTION
        mock_entities.update_user.assert_awaited_with(school_id="S1")

        workflow.update_answers(program_id="P1")
        result = await workflow.handle_next()
        assert result.advanced
        assert result.step == S.COMPLETE
        mock_entities.update_user.assert_awaited_with(program_id="P1")

        assert await workflow.handle_save()
        assert len(backend) == 1

        result = await workflow.handle_next()
        assert result.finished
        assert workflow.is_finished
        mock_entities.mark_complete.assert_awaited_once()
        assert len(backend) == 0
        assert workflow.notice == WORKFLOW_MESSAGES["completed"]

        await workflow.analytics.drain()
        assert AnalyticsEventType.ONBOARDING_COMPLETED in event_types(workflow)
        await workflow.close()

    @pytest.mark.asyncio
    async def test_validation_blocks_advance(self, build, mock_entities):
        workflow = build()
        await workflow.initialize()
        await workflow.handle_next()

        result = await workflow.handle_next()
        assert not result.advanced
        assert result.step == S.ROLE_SELECTION
        assert result.errors == {"role": VALIDATION_MESSAGES["role"]}
        assert workflow.store.validation_errors == result.errors
        mock_entities.update_user.assert_not_awaited()
        assert AnalyticsEventType.VALIDATION_ERROR in event_types(workflow)

        workflow.update_answers(role="STUDENT")
        assert workflow.store.validation_errors == {}
        await workflow.close()

    @pytest.mark.asyncio
    async def test_program_from_other_school_rejected(self, build):
        workflow = build()
        workflow.set_options(StepOptions(
            schools=[{"id": "S1"}, {"id": "S2"}],
            programs=[{"id": "P2", "school_id": "S2"}]
        ))
        await workflow.initialize(UserProfile("u1", role=UserRole.STUDENT, school_id="S1"))
        assert (await workflow.handle_next()).step == S.PROGRAM_SELECTION

        workflow.update_answers(program_id="P2")
        result = await workflow.handle_next()
        assert result.errors == {"program_id": VALIDATION_MESSAGES["program_id_mismatch"]}
        await workflow.close()

    @pytest.mark.asyncio
    async def test_side_effect_failure_keeps_step_and_answers(self, build, mock_entities):
        mock_entities.update_user.side_effect = BackendError("User service unavailable", status=503)
        workflow = build()
        await workflow.initialize()
        await workflow.handle_next()
        workflow.update_answers(role="STUDENT")

        result = await workflow.handle_next()
        assert not result.advanced
        assert result.step == S.ROLE_SELECTION
        assert result.error == "User service unavailable"
        assert workflow.store.last_error == "User service unavailable"
        assert workflow.store.answers == {"role": "STUDENT"}
        assert S.ROLE_SELECTION not in workflow.store.completed_steps
        assert AnalyticsEventType.API_ERROR in event_types(workflow)

        mock_entities.update_user.side_effect = None
        assert (await workflow.handle_next()).step == S.SCHOOL_SELECTION
        await workflow.close()

    @pytest.mark.asyncio
    async def test_unknown_answer_field_raises(self, build):
        workflow = build()
        await workflow.initialize()
        with pytest.raises(UnknownFieldError):
            workflow.update_answers(favourite_colour="blue")
        await workflow.close()


class TestProvisionedUsers:
    """Users that arrive with role, school or program already set."""

    @pytest.mark.asyncio
    async def test_fully_provisioned_goes_straight_to_complete(self, build, mock_entities):
        workflow = build()
        profile = UserProfile("u1", role=UserRole.STUDENT, school_id="S1", program_id="P1")

        assert await workflow.initialize(profile) == S.COMPLETE
        result = await workflow.handle_next()
        assert result.finished
        mock_entities.update_user.assert_not_awaited()
        await workflow.close()

    @pytest.mark.asyncio
    async def test_learner_with_school_goes_to_program_and_back_to_welcome(self, build):
        workflow = build()
        await workflow.initialize(UserProfile("u1", role=UserRole.STUDENT, school_id="S1"))

        assert (await workflow.handle_next()).step == S.PROGRAM_SELECTION
        back = await workflow.handle_back()
        assert back.step == S.WELCOME
        await workflow.close()


class TestAdministratorFlow:
    """A school administrator creates a school, a program and a site."""

    async def _to_school_setup(self, workflow):
        await workflow.initialize()
        await workflow.handle_next()
        workflow.update_answers(role="SCHOOL_ADMIN")
        result = await workflow.handle_next()
        assert result.step == S.SCHOOL_SETUP

    @pytest.mark.asyncio
    async def test_creates_school_program_and_site(self, build, mock_entities):
        workflow = build()
        await self._to_school_setup(workflow)

        workflow.update_answers(school_name="North Campus", school_address="1 College Rd")
        assert (await workflow.handle_next()).step == S.PROGRAM_SETUP
        mock_entities.create_school.assert_awaited_once_with(name="North Campus", address="1 College Rd")
        assert workflow.store.answers["school_id"] == "school-new"
        assert workflow.store.school_created_in_session

        workflow.update_answers(program_name="Nursing", program_type="BSN")
        assert (await workflow.handle_next()).step == S.CLINICAL_SITE_SETUP
        mock_entities.create_program.assert_awaited_once_with(
            school_id="school-new",
            name="Nursing",
            program_type="BSN",
            duration=4,
            description=None
        )
        assert workflow.store.answers["program_id"] == "program-new"

        workflow.update_answers(site_name="General", site_address="2 Main St", site_capacity="25")
        assert (await workflow.handle_next()).step == S.COMPLETE
        mock_entities.create_clinical_site.assert_awaited_once_with(
            name="General",
            address="2 Main St",
            site_type="HOSPITAL",
            capacity=25,
            email=None,
            phone=None
        )
        await workflow.close()

    @pytest.mark.asyncio
    async def test_optional_steps_can_be_skipped(self, build, mock_entities):
        workflow = build()
        await self._to_school_setup(workflow)
        workflow.update_answers(school_name="North Campus")
        await workflow.handle_next()

        result = await workflow.handle_skip()
        assert result.step == S.CLINICAL_SITE_SETUP
        assert workflow.store.skipped_steps == [S.PROGRAM_SETUP]

        result = await workflow.handle_skip()
        assert result.step == S.COMPLETE
        mock_entities.create_program.assert_not_awaited()
        mock_entities.create_clinical_site.assert_not_awaited()
        assert AnalyticsEventType.STEP_SKIPPED in event_types(workflow)
        await workflow.close()

    @pytest.mark.asyncio
    async def test_required_step_cannot_be_skipped(self, build):
        workflow = build()
        await self._to_school_setup(workflow)

        result = await workflow.handle_skip()
        assert not result.advanced
        assert result.step == S.SCHOOL_SETUP
        assert result.error
        await workflow.close()

    @pytest.mark.asyncio
    async def test_retry_does_not_create_school_twice(self, build, mock_entities):
        workflow = build()
        await self._to_school_setup(workflow)
        mock_entities.update_user.side_effect = [BackendError("timeout"), {"success": True}]

        workflow.update_answers(school_name="North Campus")
        assert not (await workflow.handle_next()).advanced
        assert workflow.store.answers["school_id"] == "school-new"

        assert (await workflow.handle_next()).step == S.PROGRAM_SETUP
        assert mock_entities.create_school.await_count == 1
        await workflow.close()


class TestBackNavigation:
    """Back follows the path actually taken."""

    @pytest.mark.asyncio
    async def test_back_through_chosen_steps(self, build, mock_entities):
        workflow = build()
        await workflow.initialize()
        await workflow.handle_next()
        workflow.update_answers(role="STUDENT")
        await workflow.handle_next()
        calls = mock_entities.update_user.await_count

        assert (await workflow.handle_back()).step == S.ROLE_SELECTION
        assert (await workflow.handle_back()).step == S.WELCOME

        result = await workflow.handle_back()
        assert not result.advanced
        assert result.step == S.WELCOME
        assert mock_entities.update_user.await_count == calls
        await workflow.close()

    @pytest.mark.asyncio
    async def test_back_is_not_allowed_from_complete(self, build):
        workflow = build()
        await workflow.initialize(
            UserProfile("u1", role=UserRole.STUDENT, school_id="S1", program_id="P1")
        )
        assert not (await workflow.handle_back()).advanced
        await workflow.close()


class TestSessionLifecycle:
    """Resume, save failures, reset, expiry and recovery."""

    @pytest.mark.asyncio
    async def test_resume_from_saved_session(self, build):
        first = build()
        await first.initialize()
        await first.handle_next()
        first.update_answers(role="STUDENT")
        await first.handle_next()
        first.update_answers(school_id="S1")
        assert await first.handle_save()
        await first.close()

        second = build()
        step = await second.initialize(UserProfile("u1"))
        assert step == S.SCHOOL_SELECTION
        assert second.store.answers == {"role": "STUDENT", "school_id": "S1"}
        assert second.store.completed_steps == [S.WELCOME, S.ROLE_SELECTION]
        assert second.notice == WORKFLOW_MESSAGES["resumed"]
        assert AnalyticsEventType.SESSION_RESUMED in event_types(second)

        assert (await second.handle_back()).step == S.ROLE_SELECTION
        await second.close()

    @pytest.mark.asyncio
    async def test_save_failure_warns_without_rollback(self, build):
        workflow = build()
        await workflow.initialize()
        workflow.update_answers(role="STUDENT")
        workflow.gateway.save = AsyncMock(side_effect=PersistenceError("offline"))

        assert not await workflow.handle_save()
        assert workflow.warning == WORKFLOW_MESSAGES["save_failed"]
        assert workflow.store.answers == {"role": "STUDENT"}
        assert workflow.store.has_unsaved_changes

        workflow.dismiss_warning()
        assert workflow.warning is None
        await workflow.close()

    @pytest.mark.asyncio
    async def test_load_failure_starts_fresh_with_warning(self, build):
        workflow = build()
        workflow.gateway.load = AsyncMock(side_effect=PersistenceError("offline"))

        assert await workflow.initialize() == S.WELCOME
        assert workflow.warning == WORKFLOW_MESSAGES["load_failed"]
        await workflow.close()

    @pytest.mark.asyncio
    async def test_reset_abandons_session(self, build, backend):
        workflow = build()
        await workflow.initialize()
        await workflow.handle_next()
        workflow.update_answers(role="STUDENT")
        await workflow.handle_save()
        old_id = workflow.session_id

        assert await workflow.handle_reset("start_fresh") == S.WELCOME
        assert len(backend) == 0
        assert workflow.store.answers == {}
        assert workflow.store.completed_steps == []

        abandoned = workflow.analytics.get_recent_events(AnalyticsEventType.SESSION_ABANDONED)
        assert abandoned[-1].metadata == {"reason": "start_fresh"}
        assert abandoned[-1].session_id == old_id

        workflow.update_answers(role="STUDENT")
        assert await workflow.handle_save()
        assert workflow.session_id != old_id
        await workflow.close()

    @pytest.mark.asyncio
    async def test_expired_session_can_be_recovered(self, build, clock):
        first = build()
        await first.initialize()
        await first.handle_next()
        first.update_answers(role="STUDENT")
        await first.handle_save()
        await first.close()

        clock.advance(hours=25)

        second = build()
        assert await second.initialize() == S.WELCOME
        assert second.warning == WORKFLOW_MESSAGES["expired"]
        assert second.gateway.is_expired()
        assert AnalyticsEventType.SESSION_EXPIRED in event_types(second)

        assert await second.recover_session()
        assert second.current_step == S.ROLE_SELECTION
        assert second.store.answers == {"role": "STUDENT"}
        assert not second.gateway.is_expired()
        assert second.warning is None
        await second.close()

    @pytest.mark.asyncio
    async def test_extend_session(self, build, clock):
        workflow = build()
        await workflow.initialize()
        await workflow.handle_save()
        clock.advance(hours=20)

        assert await workflow.extend_session()
        assert workflow.gateway.time_until_expiry() == 24 * 3600
        await workflow.close()

    @pytest.mark.asyncio
    async def test_fresh_start_after_expiry_keeps_expired_session(self, build, backend, clock):
        first = build()
        await first.initialize()
        await first.handle_next()
        first.update_answers(role="STUDENT")
        await first.handle_save()
        old_id = first.session_id
        await first.close()

        clock.advance(hours=25)

        second = build()
        assert await second.initialize() == S.WELCOME
        assert await second.handle_save()

        assert second.session_id != old_id
        assert backend.get(old_id)["answers"] == {"role": "STUDENT"}
        assert backend.get(second.session_id)["answers"] == {}
        assert len(backend) == 2
        await second.close()

    @pytest.mark.asyncio
    async def test_manual_save_during_auto_save_keeps_one_session(self, build):
        slow = SlowSessionBackend()
        workflow = build(
            session_backend=slow,
            enable_auto_save=True,
            autosave_debounce_seconds=0.01,
            autosave_interval_seconds=None
        )
        await workflow.initialize()
        await workflow.handle_next()
        assert await workflow.handle_save()
        await asyncio.sleep(0.05)

        assert len(slow) == 1
        assert {w["session_id"] for w in slow.writes} == {workflow.session_id}
        await workflow.close()

    @pytest.mark.asyncio
    async def test_reset_during_first_save_leaves_nothing_behind(self, build):
        slow = SlowSessionBackend()
        workflow = build(
            session_backend=slow,
            enable_auto_save=True,
            autosave_debounce_seconds=0.01,
            autosave_interval_seconds=None
        )
        await workflow.initialize()
        await workflow.handle_next()
        await asyncio.sleep(0)

        assert await workflow.handle_reset("start_fresh") == S.WELCOME
        await asyncio.sleep(0.05)

        assert len(slow.writes) == 1
        assert len(slow) == 0
        assert workflow.session_id is None
        await workflow.close()

    @pytest.mark.asyncio
    async def test_completion_failure_keeps_session(self, build, mock_entities, backend):
        workflow = build()
        await workflow.initialize(
            UserProfile("u1", role=UserRole.STUDENT, school_id="S1", program_id="P1")
        )
        await workflow.handle_save()
        mock_entities.mark_complete.side_effect = BackendError("completion failed")

        result = await workflow.handle_next()
        assert not result.finished
        assert result.error == "completion failed"
        assert len(backend) == 1

        mock_entities.mark_complete.side_effect = None
        assert (await workflow.handle_next()).finished
        assert len(backend) == 0
        await workflow.close()


class TestConfiguration:
    """Persistence, auto-save and analytics switches."""

    @pytest.mark.asyncio
    async def test_persistence_disabled(self, build, backend):
        workflow = build(enable_session_persistence=False, enable_auto_save=True)
        await workflow.initialize()
        await workflow.handle_next()

        assert not await workflow.handle_save()
        assert not await workflow.extend_session()
        assert backend.writes == []
        assert not workflow.autosave.is_running
        await workflow.close()

    @pytest.mark.asyncio
    async def test_analytics_disabled(self, build, mock_analytics_backend):
        workflow = build(enable_analytics=False)
        await workflow.initialize()
        await workflow.handle_next()
        await workflow.analytics.drain()

        mock_analytics_backend.track.assert_not_awaited()
        await workflow.close()

    @pytest.mark.asyncio
    async def test_auto_save_on_transitions_and_stop_after_completion(self, build, backend):
        workflow = build(
            enable_auto_save=True,
            autosave_debounce_seconds=0.01,
            autosave_interval_seconds=None
        )
        await workflow.initialize()
        await workflow.handle_next()
        await asyncio.sleep(0.05)

        assert len(backend.writes) == 1
        assert backend.writes[-1]["current_step"] == "role-selection"

        workflow.update_answers(role="SUPER_ADMIN")
        assert (await workflow.handle_next()).step == S.COMPLETE
        await asyncio.sleep(0.05)
        assert (await workflow.handle_next()).finished

        writes = len(backend.writes)
        await asyncio.sleep(0.05)
        assert len(backend) == 0
        assert len(backend.writes) == writes
        await workflow.close()

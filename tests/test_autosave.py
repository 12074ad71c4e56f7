"""Tests for the auto-save scheduler."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from medportal.backend.memory import InMemorySessionBackend
from medportal.infra.exceptions import PersistenceError
from medportal.onboarding.autosave import AutoSaveScheduler
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.states import OnboardingStep
from medportal.onboarding.store import SessionStore


S = OnboardingStep

DEBOUNCE = 0.05


async def settle(seconds: float = DEBOUNCE * 3) -> None:
    await asyncio.sleep(seconds)


class SlowSessionBackend(InMemorySessionBackend):
    """Session writes take a moment to land."""

    async def upsert(self, record):
        await asyncio.sleep(DEBOUNCE / 5)
        return await super().upsert(record)


class TestAutoSaveScheduler:
    """Tests for debounce, immediate saves and cancellation."""

    @pytest.fixture
    def backend(self):
        return InMemorySessionBackend()

    @pytest.fixture
    def store(self):
        return SessionStore()

    @pytest.fixture
    def scheduler(self, store, backend):
        gateway = SessionGateway(backend)
        return AutoSaveScheduler(store, gateway, debounce_seconds=DEBOUNCE, interval_seconds=None)

    @pytest.mark.asyncio
    async def test_rapid_edits_collapse_into_one_write(self, scheduler, store, backend):
        scheduler.start()
        store.merge_answers({"school_name": "N"})
        store.merge_answers({"school_name": "North"})
        await settle()

        assert len(backend.writes) == 1
        assert backend.writes[0]["answers"] == {"school_name": "North"}
        assert not store.has_unsaved_changes
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_step_change_saves_immediately(self, scheduler, store, backend):
        scheduler.start()
        store.merge_answers({"role": "STUDENT"})
        store.complete_step(S.ROLE_SELECTION)
        store.set_step(S.SCHOOL_SELECTION)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert len(backend.writes) == 1
        assert backend.writes[0]["current_step"] == "school-selection"
        assert backend.writes[0]["answers"] == {"role": "STUDENT"}

        await settle()
        assert len(backend.writes) == 1
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_saves_reuse_session_id(self, scheduler, store, backend):
        scheduler.start()
        store.set_step(S.ROLE_SELECTION)
        await settle()
        store.set_step(S.SCHOOL_SELECTION)
        await settle()

        assert len(backend.writes) == 2
        assert backend.writes[0]["session_id"] == backend.writes[1]["session_id"]
        assert len(backend) == 1
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_and_ignores_changes(self, scheduler, store, backend):
        scheduler.start()
        store.merge_answers({"school_name": "North"})
        await scheduler.stop()
        store.merge_answers({"school_name": "South"})
        await settle()

        assert backend.writes == []
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, store):
        gateway = SessionGateway(InMemorySessionBackend())
        gateway.save = AsyncMock(side_effect=PersistenceError("offline"))
        scheduler = AutoSaveScheduler(store, gateway, debounce_seconds=DEBOUNCE, interval_seconds=None)

        scheduler.start()
        store.set_step(S.ROLE_SELECTION)
        await settle()

        assert scheduler.failure_count == 1
        assert store.has_unsaved_changes
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_flush_folds_in_pending_edit(self, scheduler, store, backend):
        scheduler.start()
        store.merge_answers({"school_name": "North"})
        assert await scheduler.flush()
        await settle()

        assert len(backend.writes) == 1
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reset_cancels_pending_save(self, scheduler, store, backend):
        scheduler.start()
        store.merge_answers({"school_name": "North"})
        store.reset()
        await settle()

        assert backend.writes == []
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_disabled_scheduler_never_saves(self, store, backend):
        scheduler = AutoSaveScheduler(store, SessionGateway(backend), enabled=False)
        scheduler.start()
        store.set_step(S.ROLE_SELECTION)
        await settle()

        assert backend.writes == []
        assert await scheduler.flush() is False

    @pytest.mark.asyncio
    async def test_interval_saves_unsaved_changes(self, store, backend):
        scheduler = AutoSaveScheduler(
            store, SessionGateway(backend), debounce_seconds=10, interval_seconds=DEBOUNCE
        )
        scheduler.start()
        store.merge_answers({"school_name": "North"})
        await settle()

        assert len(backend.writes) >= 1
        assert backend.writes[-1]["answers"] == {"school_name": "North"}
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reset_lets_in_flight_save_finish(self, store):
        backend = SlowSessionBackend()
        scheduler = AutoSaveScheduler(
            store, SessionGateway(backend), debounce_seconds=DEBOUNCE, interval_seconds=None
        )
        scheduler.start()
        store.set_step(S.ROLE_SELECTION)
        await asyncio.sleep(0)

        store.reset()
        await settle()

        assert len(backend.writes) == 1
        assert backend.writes[0]["current_step"] == "role-selection"
        assert store.session_id is None
        assert scheduler.save_count == 0
        assert scheduler.failure_count == 0
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_save(self, store):
        backend = SlowSessionBackend()
        scheduler = AutoSaveScheduler(
            store, SessionGateway(backend), debounce_seconds=DEBOUNCE, interval_seconds=None
        )
        scheduler.start()
        store.set_step(S.ROLE_SELECTION)
        await asyncio.sleep(0)

        await scheduler.stop()

        assert len(backend.writes) == 1
        assert not store.has_unsaved_changes

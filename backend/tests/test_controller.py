"""Tests for the application controller."""

import asyncio
import threading

import pytest

from kiosk.core import messages
from kiosk.core.exceptions import ConnectivityError, NotFoundError, PersistenceError, ValidationError
from kiosk.services.connectivity import ConnectivityMonitor
from kiosk.services.controller import AppController
from kiosk.services.feedback import FeedbackKind
from kiosk.services.local_store import LocalStore
from kiosk.services.sync_engine import SyncStatus
from kiosk.services.ticket_issuance import IssueStatus

from conftest import LUNCH_ID, NOW, PERIOD_ID, FakeRemote


class UnreachableRemote(FakeRemote):
    """Fails every reference data call."""

    async def get_user_count(self):
        raise ConnectivityError()

    async def get_today_period(self):
        raise ConnectivityError()


@pytest.fixture
def offline_controller(seeded_store: LocalStore) -> AppController:
    return AppController(seeded_store, connectivity=ConnectivityMonitor(online=False), now=lambda: NOW)


class TestInitialize:
    """Startup loads the cache first and tolerates a dead server."""

    @pytest.mark.asyncio
    async def test_offline_uses_cache(self, offline_controller: AppController):
        state = await offline_controller.initialize()

        assert state.initialized is True
        assert state.online is False
        assert state.period.external_id == PERIOD_ID
        assert state.active_meal.external_id == LUNCH_ID
        assert len(state.roster) == 3
        assert state.stats.total == 0

    @pytest.mark.asyncio
    async def test_online_with_unreachable_server(self, seeded_store: LocalStore):
        controller = AppController(
            seeded_store, remote=UnreachableRemote(), connectivity=ConnectivityMonitor(online=True), now=lambda: NOW
        )

        state = await controller.initialize()

        assert state.initialized is True
        assert state.active_meal.name == "Almuerzo"
        assert len(state.roster) == 3

    @pytest.mark.asyncio
    async def test_store_failure_is_reported(self, offline_controller: AppController, monkeypatch):
        def broken():
            raise PersistenceError(messages.STORE_FAILED)

        monkeypatch.setattr(offline_controller.store, "initialize", broken)

        state = await offline_controller.initialize()

        assert state.initialized is True
        assert offline_controller.feedback.current.message == messages.INITIAL_LOAD_FAILED

    @pytest.mark.asyncio
    async def test_store_work_runs_on_worker_threads(self, offline_controller: AppController, monkeypatch):
        loop_thread = threading.get_ident()
        threads = []
        store = offline_controller.store
        for name in ("initialize", "get_users", "get_current_period", "get_ticket_stats"):
            real = getattr(store, name)

            def recorded(*args, _real=real, **kwargs):
                threads.append(threading.get_ident())
                return _real(*args, **kwargs)

            monkeypatch.setattr(store, name, recorded)

        await offline_controller.initialize()

        assert len(threads) >= 4
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_listeners_see_final_state(self, offline_controller: AppController):
        seen = []
        offline_controller.subscribe(lambda state: seen.append(state.to_dict()))

        await offline_controller.initialize()

        assert seen[-1]["initialized"] is True
        assert seen[-1]["active_meal_name"] == "Almuerzo"
        assert seen[-1]["roster_size"] == 3


class TestIssueTicket:

    @pytest.mark.asyncio
    async def test_issue_updates_stats_and_feedback(self, offline_controller: AppController):
        await offline_controller.initialize()

        result = offline_controller.issue_ticket("1234")

        assert result.status == IssueStatus.ISSUED
        assert offline_controller.state.stats.to_dict() == {"total": 1, "pending": 1, "synced": 0}
        feedback = offline_controller.feedback.current
        assert feedback.kind == FeedbackKind.SUCCESS
        assert feedback.detail == "Ana Quispe"

    @pytest.mark.asyncio
    async def test_repeat_is_informational(self, offline_controller: AppController):
        await offline_controller.initialize()
        offline_controller.issue_ticket("1234")

        result = offline_controller.issue_ticket("1234")

        assert result.status == IssueStatus.ALREADY_ISSUED
        assert offline_controller.feedback.current.kind == FeedbackKind.INFO
        assert offline_controller.state.stats.total == 1

    @pytest.mark.asyncio
    async def test_refusal_publishes_error(self, offline_controller: AppController):
        await offline_controller.initialize()

        with pytest.raises(NotFoundError):
            offline_controller.issue_ticket("0000")

        assert offline_controller.feedback.current.kind == FeedbackKind.ERROR
        assert offline_controller.feedback.current.message == messages.INVALID_CODE


class TestSync:

    @pytest.mark.asyncio
    async def test_offline_sync(self, offline_controller: AppController):
        await offline_controller.initialize()

        report = await offline_controller.sync(force=True)

        assert report.status == SyncStatus.OFFLINE
        assert offline_controller.state.syncing is False

    @pytest.mark.asyncio
    async def test_issued_ticket_is_uploaded(self, seeded_store: LocalStore, fake_remote: FakeRemote):
        controller = AppController(
            seeded_store, remote=fake_remote, connectivity=ConnectivityMonitor(online=True), now=lambda: NOW
        )
        await controller.refresh_period(force_local=True)
        await controller.refresh_roster(force_local=True)
        controller.state.initialized = True
        controller.issue_ticket("1234")

        report = await controller.sync(force=True)

        assert report.status == SyncStatus.COMPLETED
        assert report.uploaded == 1
        assert controller.state.stats.to_dict() == {"total": 1, "pending": 0, "synced": 1}

    @pytest.mark.asyncio
    async def test_periodic_sync_runs_until_cancelled(self, offline_controller: AppController, monkeypatch):
        calls = []

        async def fake_sync(force=False):
            calls.append(force)

            class Report:
                status = SyncStatus.OFFLINE

            return Report()

        monkeypatch.setattr(offline_controller, "sync", fake_sync)

        task = asyncio.create_task(offline_controller.run_periodic_sync(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

        assert calls
        assert all(force is False for force in calls)


class TestSettings:

    def test_api_url_validation(self, offline_controller: AppController):
        with pytest.raises(ValidationError):
            offline_controller.set_api_url("not a url")

    def test_api_url_roundtrip(self, offline_controller: AppController):
        offline_controller.set_api_url("http://10.0.0.9:3000/api/")
        assert offline_controller.get_api_url() == "http://10.0.0.9:3000/api"
        assert offline_controller.reset_api_url() == offline_controller.get_api_url()

    def test_connectivity_change_reaches_state(self, offline_controller: AppController):
        seen = []
        offline_controller.subscribe(lambda state: seen.append(state.online))

        assert offline_controller.set_online(True) is True

        assert offline_controller.state.online is True
        assert seen == [True]

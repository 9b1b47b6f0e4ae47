"""Tests for the ticket issuance engine."""

import uuid
from datetime import date, datetime, timezone

import pytest

from kiosk.core import messages
from kiosk.core.config import settings
from kiosk.core.exceptions import (
    EmptyCodeError,
    NoActiveMealError,
    NoActivePeriodError,
    NotFoundError,
    NotReadyError,
    PersistenceError,
    RosterEmptyError,
)
from kiosk.services.local_store import LocalStore
from kiosk.services.ticket_issuance import IssueStatus, TicketIssuer, derive_ticket_uuid

from conftest import LUNCH_ID, NOW, PERIOD_ID, make_ticket


@pytest.fixture
def issuer(seeded_store: LocalStore) -> TicketIssuer:
    return TicketIssuer(seeded_store, now=lambda: NOW)


@pytest.fixture
def context(seeded_store: LocalStore) -> dict:
    period = seeded_store.get_current_period(NOW.date())
    links = seeded_store.get_meal_links_for_period(period.external_id)
    lunch = next(link.meal for link in links if link.meal_external_id == LUNCH_ID)
    return {"roster": seeded_store.get_users(), "period": period, "meal": lunch}


class TestDeriveTicketUuid:
    """Tests for deterministic ticket ids."""

    def test_regular_code_is_deterministic(self):
        expected = str(uuid.uuid5(uuid.UUID(settings.ticket_uuid_namespace), "77-5-20240315"))
        assert derive_ticket_uuid(77, 5, date(2024, 3, 15)) == expected
        assert derive_ticket_uuid(77, 5, date(2024, 3, 15)) == expected

    def test_day_changes_uuid(self):
        assert derive_ticket_uuid(77, 5, date(2024, 3, 15)) != derive_ticket_uuid(77, 5, date(2024, 3, 16))

    def test_special_code_includes_millis(self):
        expected = str(uuid.uuid5(uuid.UUID(settings.ticket_uuid_namespace), "90-5-20240315-1710505800000"))
        assert derive_ticket_uuid(90, 5, date(2024, 3, 15), special=True, now_millis=1710505800000) == expected

    def test_special_code_needs_timestamp(self):
        with pytest.raises(ValueError):
            derive_ticket_uuid(90, 5, date(2024, 3, 15), special=True)


class TestPreconditions:
    """Each refusal has its own error, checked in order."""

    def test_not_initialized_first(self, issuer, context):
        with pytest.raises(NotReadyError) as exc:
            issuer.issue("", initialized=False, **context)
        assert exc.value.speech == messages.STILL_LOADING_SPEECH

    def test_blank_code(self, issuer, context):
        with pytest.raises(EmptyCodeError):
            issuer.issue("   ", **context)

    def test_no_period(self, issuer, context):
        context["period"] = None
        context["meal"] = None
        with pytest.raises(NoActivePeriodError) as exc:
            issuer.issue("1234", **context)
        assert exc.value.speech == messages.NO_PERIOD_SPEECH

    def test_no_active_meal(self, issuer, context):
        context["meal"] = None
        with pytest.raises(NoActiveMealError):
            issuer.issue("1234", **context)

    def test_empty_roster(self, issuer, context):
        context["roster"] = []
        with pytest.raises(RosterEmptyError):
            issuer.issue("1234", **context)

    def test_unknown_code(self, issuer, context):
        with pytest.raises(NotFoundError) as exc:
            issuer.issue("0000", **context)
        assert exc.value.message == messages.INVALID_CODE


class TestIssue:
    """Tests for successful and duplicate issuance."""

    def test_issues_pending_ticket(self, issuer, context, seeded_store: LocalStore):
        result = issuer.issue(" 1234 ", **context)

        assert result.status == IssueStatus.ISSUED
        assert result.message == messages.ISSUED
        assert result.user.external_id == 77
        stored = seeded_store.get_ticket_by_uuid(result.ticket.uuid)
        assert stored.sync_pending is True
        assert stored.period_external_id == PERIOD_ID
        assert stored.meal_external_id == LUNCH_ID
        assert stored.created_at.startswith("2024-03-15T12:30:00.000")
        assert stored.uuid == derive_ticket_uuid(77, LUNCH_ID, date(2024, 3, 15))

    def test_second_regular_issue_is_soft_success(self, issuer, context, seeded_store: LocalStore):
        issuer.issue("1234", **context)
        result = issuer.issue("1234", **context)

        assert result.status == IssueStatus.ALREADY_ISSUED
        assert result.message == "Ya separó Almuerzo"
        assert result.ticket is None
        assert len(seeded_store.get_tickets()) == 1

    def test_existing_ticket_from_server_counts(self, issuer, context, seeded_store: LocalStore):
        seeded_store.save_ticket(make_ticket("from-server", sync_pending=False))
        assert issuer.issue("1234", **context).status == IssueStatus.ALREADY_ISSUED

    def test_uuid_collision_is_soft_success(self, issuer, context, seeded_store: LocalStore, monkeypatch):
        issuer.issue("1234", **context)
        # Pre-check misses (e.g. a concurrent issuance); the unique index still holds
        monkeypatch.setattr(seeded_store, "ticket_exists", lambda *args: False)

        result = issuer.issue("1234", **context)

        assert result.status == IssueStatus.ALREADY_ISSUED
        assert len(seeded_store.get_tickets()) == 1

    def test_special_code_issues_every_time(self, issuer, context, seeded_store: LocalStore):
        results = [issuer.issue("V001", **context) for _ in range(3)]

        assert all(r.status == IssueStatus.ISSUED for r in results)
        assert len({r.ticket.uuid for r in results}) == 3
        assert len(seeded_store.get_tickets()) == 3

    def test_save_failure_is_reported(self, issuer, context, seeded_store: LocalStore, monkeypatch):
        def broken_save(ticket):
            raise PersistenceError(messages.STORE_FAILED)

        monkeypatch.setattr(seeded_store, "save_ticket", broken_save)
        with pytest.raises(PersistenceError) as exc:
            issuer.issue("1234", **context)
        assert exc.value.message == messages.SAVE_FAILED

    def test_configured_special_codes(self, seeded_store: LocalStore, context):
        issuer = TicketIssuer(seeded_store, special_codes=["1234"], now=lambda: NOW)
        issuer.issue("1234", **context)
        assert issuer.issue("1234", **context).status == IssueStatus.ISSUED

    def test_uses_clock_for_day(self, seeded_store: LocalStore, context):
        later = datetime(2024, 3, 16, 12, 30, tzinfo=timezone.utc)
        issuer = TicketIssuer(seeded_store, now=lambda: later)
        result = issuer.issue("1234", **context)
        assert result.ticket.uuid == derive_ticket_uuid(77, LUNCH_ID, date(2024, 3, 16))

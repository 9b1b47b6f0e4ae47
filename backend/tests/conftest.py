"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from typing import Dict, Generator, List, Optional

import pytest

from kiosk.core.config import settings
from kiosk.models import Meal, MealPeriodLink, Period, RosterUser, Ticket
from kiosk.schemas.remote import RemoteTicket
from kiosk.services.local_store import LocalStore
from kiosk.services.remote_client import (
    STATUS_ERROR,
    STATUS_LIMIT_REACHED,
    STATUS_OK,
    CreateTicketResult,
    TicketPage,
    TotalResult,
)

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Friday 2024-03-15, 12:30 UTC: inside the lunch window
NOW = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)

PERIOD_ID = 10
LUNCH_ID = 5
BREAKFAST_ID = 4


@pytest.fixture(autouse=True)
def kiosk_settings(monkeypatch, tmp_path):
    """Pin the clock zone and keep backups inside the test's temp dir."""
    monkeypatch.setattr(settings, "timezone", "UTC")
    monkeypatch.setattr(settings, "backup_private_dir", str(tmp_path / "private"))
    monkeypatch.setattr(settings, "backup_export_dir", None)
    yield


@pytest.fixture
def now():
    return lambda: NOW


@pytest.fixture(scope="function")
def store() -> Generator[LocalStore, None, None]:
    """An initialized store on in-memory SQLite that never sleeps between retries."""
    local_store = LocalStore(TEST_DATABASE_URL, sleep=lambda seconds: None)
    local_store.initialize()
    yield local_store
    local_store.close()


def make_ticket(
    uuid: str,
    user_id: int = 77,
    meal_id: int = LUNCH_ID,
    period_id: Optional[int] = PERIOD_ID,
    created_at: str = "2024-03-15T12:00:00.000+00:00",
    sync_pending: bool = True,
    external_id: Optional[int] = None,
) -> Ticket:
    return Ticket(
        external_id=external_id,
        user_external_id=user_id,
        meal_external_id=meal_id,
        period_external_id=period_id,
        created_at=created_at,
        uuid=uuid,
        sync_pending=sync_pending,
    )


def make_remote_ticket(
    uuid: str,
    user_id: int = 77,
    meal_id: int = LUNCH_ID,
    period_id: int = PERIOD_ID,
    external_id: int = 900,
    created_at: str = "2024-03-15T12:00:00.000Z",
) -> RemoteTicket:
    return RemoteTicket(
        pre_ticket_id=external_id,
        pre_usuario_id=user_id,
        pre_comida_id=meal_id,
        pre_periodo_id=period_id,
        create_at=created_at,
        uuid4=uuid,
    )


@pytest.fixture
def seeded_store(store: LocalStore) -> LocalStore:
    """Store holding one period with breakfast and lunch, and a small roster."""
    store.save_period(Period(
        external_id=PERIOD_ID, name="Marzo", start_date="2024-03-01", end_date="2024-03-31", active_flag=True,
    ))
    store.save_meal(Meal(external_id=BREAKFAST_ID, name="Desayuno", start_time="07:00", end_time="09:00", active_flag=True))
    store.save_meal(Meal(external_id=LUNCH_ID, name="Almuerzo", start_time="12:00", end_time="14:00", active_flag=True))
    store.save_meal_period_link(MealPeriodLink(
        link_id=100, period_external_id=PERIOD_ID, meal_external_id=BREAKFAST_ID, active_flag=True, state_flag=True,
    ))
    store.save_meal_period_link(MealPeriodLink(
        link_id=101, period_external_id=PERIOD_ID, meal_external_id=LUNCH_ID, active_flag=True, state_flag=True,
    ))
    for external_id, code, first, last in [
        (77, "1234", "Ana", "Quispe"),
        (78, "5678", "Luis", "Mamani"),
        (90, "V001", "Visita", ""),
    ]:
        store.save_user(RosterUser(external_id=external_id, code=code, first_name=first, last_name=last))
    return store


class FakeRemote:
    """In-memory stand-in for RemoteTicketService."""

    def __init__(self, tickets: Optional[List[RemoteTicket]] = None, page_size: int = 600):
        self.tickets = list(tickets or [])
        self.page_size = page_size
        self.total_error: Optional[Exception] = None
        self.total_success = True
        self.page_errors: Dict[int, Exception] = {}
        self.create_responses: Dict[str, object] = {}
        self.created: List[str] = []
        self.page_calls: List[int] = []
        self.on_page = None

    async def get_total_tickets_in_range(self, start, end) -> TotalResult:
        if self.total_error is not None:
            raise self.total_error
        return TotalResult(success=self.total_success, count=len(self.tickets))

    async def get_tickets_in_range(self, start, end, page, page_size=None) -> TicketPage:
        self.page_calls.append(page)
        if self.on_page is not None:
            self.on_page(page)
        if page in self.page_errors:
            raise self.page_errors[page]
        size = page_size or self.page_size
        chunk = self.tickets[(page - 1) * size: page * size]
        return TicketPage(status=STATUS_OK, tickets=chunk)

    async def create_ticket(self, ticket: Ticket) -> CreateTicketResult:
        self.created.append(ticket.uuid)
        response = self.create_responses.get(ticket.uuid, STATUS_OK)
        if isinstance(response, Exception):
            raise response
        if response == STATUS_OK:
            return CreateTicketResult(status=STATUS_OK, server_ticket_id=1000 + len(self.created))
        if response == STATUS_LIMIT_REACHED:
            return CreateTicketResult(status=STATUS_LIMIT_REACHED, error_code=STATUS_LIMIT_REACHED)
        return CreateTicketResult(status=STATUS_ERROR, error_code=str(response))


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()

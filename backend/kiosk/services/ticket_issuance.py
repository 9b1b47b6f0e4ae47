"""
Ticket Issuance

Turns an operator-entered code into a pending ticket in the local store.

Ticket ids are uuid5 values over "{user}-{meal}-{YYYYMMDD}", so the same
regular code on the same day always yields the same id, across retries and
restarts. Special (override) codes append the current epoch milliseconds to
the name, which makes every issuance distinct and lets staff and guest codes
be served more than once per period.
"""

import enum
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.core.exceptions import (
    ConflictError,
    EmptyCodeError,
    NoActiveMealError,
    NoActivePeriodError,
    NotFoundError,
    NotReadyError,
    PersistenceError,
    RosterEmptyError,
)
from kiosk.models import Meal, Period, RosterUser, Ticket
from kiosk.services.local_store import LocalStore

logger = logging.getLogger(__name__)


class IssueStatus(str, enum.Enum):
    ISSUED = "issued"
    ALREADY_ISSUED = "already_issued"


@dataclass
class IssueResult:
    status: IssueStatus
    user: RosterUser
    meal: Meal
    ticket: Optional[Ticket] = None

    @property
    def message(self) -> str:
        if self.status == IssueStatus.ALREADY_ISSUED:
            return messages.ALREADY_ISSUED.format(meal=self.meal.name)
        return messages.ISSUED


def derive_ticket_uuid(
    user_id: int,
    meal_id: int,
    day: date,
    special: bool = False,
    now_millis: Optional[int] = None,
    namespace: Optional[str] = None,
) -> str:
    name = f"{user_id}-{meal_id}-{day:%Y%m%d}"
    if special:
        if now_millis is None:
            raise ValueError("special codes need a timestamp")
        name = f"{name}-{now_millis}"
    return str(uuid.uuid5(uuid.UUID(namespace or settings.ticket_uuid_namespace), name))


class TicketIssuer:
    """Validates a code against the roster and persists a pending ticket."""

    def __init__(
        self,
        store: LocalStore,
        special_codes: Optional[Iterable[str]] = None,
        namespace: Optional[str] = None,
        now: Callable[[], datetime] = clock.now,
    ):
        self.store = store
        self.special_codes = frozenset(
            special_codes if special_codes is not None else settings.special_codes_list
        )
        self.namespace = namespace or settings.ticket_uuid_namespace
        self._now = now
        self._lock = threading.Lock()
        self._last_special_millis = 0

    def is_special_code(self, code: str) -> bool:
        return code in self.special_codes

    def issue(
        self,
        code: Optional[str],
        *,
        roster: List[RosterUser],
        period: Optional[Period],
        meal: Optional[Meal],
        initialized: bool = True,
    ) -> IssueResult:
        """Issue a ticket for ``code``.

        Preconditions are checked in a fixed order and each failure raises its
        own error. A regular code that already holds a ticket for the same
        user, meal and period returns ALREADY_ISSUED without writing.
        """
        if not initialized:
            raise NotReadyError()

        code = (code or "").strip()
        if not code:
            raise EmptyCodeError()
        if period is None:
            raise NoActivePeriodError()
        if meal is None:
            raise NoActiveMealError()
        if not roster:
            raise RosterEmptyError()

        user = next((u for u in roster if str(u.code) == code), None)
        if user is None:
            raise NotFoundError()

        special = self.is_special_code(code)
        moment = self._now()

        with self._lock:
            if special:
                millis = max(clock.epoch_millis(moment), self._last_special_millis + 1)
                self._last_special_millis = millis
            else:
                millis = None

            ticket = Ticket(
                user_external_id=user.external_id,
                meal_external_id=meal.external_id,
                period_external_id=period.external_id,
                created_at=clock.iso_timestamp(moment),
                uuid=derive_ticket_uuid(
                    user.external_id,
                    meal.external_id,
                    moment.date(),
                    special=special,
                    now_millis=millis,
                    namespace=self.namespace,
                ),
                sync_pending=True,
            )

            if not special and self.store.ticket_exists(
                user.external_id, meal.external_id, period.external_id
            ):
                logger.info(f"User {user.external_id} already has meal {meal.external_id} in period {period.external_id}")
                return IssueResult(IssueStatus.ALREADY_ISSUED, user, meal)

            try:
                saved = self.store.save_ticket(ticket)
            except ConflictError:
                # Same derived uuid already stored: another issuance won the race
                logger.info(f"Ticket {ticket.uuid} already stored")
                return IssueResult(IssueStatus.ALREADY_ISSUED, user, meal)
            except PersistenceError as e:
                logger.error(f"Could not save ticket for user {user.external_id}: {e}")
                raise PersistenceError(messages.SAVE_FAILED) from e

        logger.info(f"Issued ticket {ticket.uuid} (local id {saved.id}) for user {user.external_id}")
        return IssueResult(IssueStatus.ISSUED, user, meal, ticket)

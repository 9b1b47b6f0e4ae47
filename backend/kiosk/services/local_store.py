"""
Durable Local Store

SQLite-backed persistence for the roster, meals, periods, meal-period links,
tickets and a small key-value table. Every public operation is retried with
tenacity: a failed attempt re-acquires the connection (a liveness check
detects a dead engine and reopens it) and the next attempt waits twice as
long as the previous one. Once attempts run out the failure surfaces as a
PersistenceError.
"""

import functools
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import case, delete, func, insert, select, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.core.exceptions import (
    ConflictError,
    KioskError,
    PersistenceError,
    ValidationError,
)
from kiosk.db.base import Base
from kiosk.db.session import create_session_factory, create_store_engine
from kiosk.models import AppSetting, Meal, MealPeriodLink, Period, RosterUser, Ticket

logger = logging.getLogger(__name__)


# Columns added after the first schema release: (table, column, DDL type)
COLUMN_MIGRATIONS = [
    ("users", "sync_flag", "BOOLEAN DEFAULT 0"),
    ("users", "sync_pending", "BOOLEAN DEFAULT 0"),
    ("tickets", "uuid", "TEXT"),
    ("tickets", "external_id", "INTEGER"),
]


@dataclass(frozen=True)
class SaveResult:
    id: int
    is_new: bool


@dataclass(frozen=True)
class TicketStats:
    total: int = 0
    pending: int = 0
    synced: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "pending": self.pending, "synced": self.synced}


def store_operation(func):
    """Run a store method with retries; wrap storage failures in PersistenceError."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return self._retrying(func.__name__)(func, self, *args, **kwargs)
        except KioskError:
            raise
        except Exception as e:
            logger.error(f"Local store operation {func.__name__} failed: {e}")
            raise PersistenceError(messages.STORE_FAILED) from e

    return wrapper


def _ticket_values(ticket: Ticket) -> Dict[str, Any]:
    return {
        "external_id": ticket.external_id,
        "user_external_id": ticket.user_external_id,
        "meal_external_id": ticket.meal_external_id,
        "period_external_id": ticket.period_external_id,
        "created_at": ticket.created_at or clock.iso_timestamp(clock.now()),
        "uuid": ticket.uuid,
        "sync_pending": bool(ticket.sync_pending),
    }


class LocalStore:
    """Local durable store for the kiosk."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        echo: bool = False,
        sleep=time.sleep,
    ):
        self.database_url = database_url or settings.database_url
        self.max_retries = max_retries if max_retries is not None else settings.store_max_retries
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.store_retry_base_delay
        )
        self.echo = echo
        self._sleep = sleep
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    # ==================== CONNECTION ====================

    @property
    def engine(self) -> Engine:
        self.connect()
        return self._engine

    def connect(self) -> sessionmaker:
        """Return a live session factory, reopening the engine if it stopped answering."""
        if self._engine is not None:
            try:
                with self._engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                return self._session_factory
            except SQLAlchemyError as e:
                logger.warning(f"Database connection lost, reinitializing: {e}")
                self.close()

        self._ensure_directory()
        self._engine = create_store_engine(self.database_url, echo=self.echo)
        self._session_factory = create_session_factory(self._engine)
        logger.info("Database connection established")
        return self._session_factory

    def close(self) -> None:
        if self._engine is not None:
            try:
                self._engine.dispose()
            except SQLAlchemyError as e:
                logger.warning(f"Error closing existing database: {e}")
        self._engine = None
        self._session_factory = None

    def _ensure_directory(self) -> None:
        prefix = "sqlite:///"
        if self.database_url.startswith(prefix) and ":memory:" not in self.database_url:
            path = self.database_url[len(prefix):]
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

    def _retrying(self, label: str) -> Retrying:
        """Retry policy for one store call; KioskErrors are never retried."""

        def after_attempt(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(f"{label} attempt {retry_state.attempt_number}/{self.max_retries} failed: {exc}")
            self._on_retry_error(exc)

        return Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_base_delay),
            retry=retry_if_not_exception_type(KioskError),
            after=after_attempt,
            sleep=self._sleep,
            reraise=True,
        )

    def _on_retry_error(self, exc: BaseException) -> None:
        # A disconnect invalidates the engine; the next attempt reopens it
        if isinstance(exc, OperationalError) and exc.connection_invalidated:
            self.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.connect()()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==================== SCHEMA ====================

    @store_operation
    def initialize(self) -> bool:
        """Create tables and add late columns. Safe to call repeatedly."""
        engine = self.engine
        Base.metadata.create_all(bind=engine)

        for table, column, ddl in COLUMN_MIGRATIONS:
            try:
                with engine.connect() as conn:
                    conn.execute(text(f"SELECT {column} FROM {table} LIMIT 1"))
            except OperationalError:
                logger.info(f"Adding {column} column to {table} table")
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))

        try:
            with engine.begin() as conn:
                conn.execute(text("CREATE UNIQUE INDEX IF NOT EXISTS ix_tickets_uuid ON tickets (uuid)"))
        except IntegrityError as e:
            logger.warning(f"Could not enforce unique ticket uuids on existing data: {e}")

        logger.info("All tables created/verified")
        return True

    # ==================== USERS ====================

    @store_operation
    def save_user(self, user: RosterUser) -> int:
        """Upsert a roster user by external id; returns the local id."""
        values = {
            "external_id": user.external_id,
            "code": str(user.code),
            "first_name": user.first_name or "",
            "last_name": user.last_name or "",
            "birth_date": user.birth_date,
            "sync_flag": bool(user.sync_flag),
            "sync_pending": bool(user.sync_pending),
        }
        with self._session() as session:
            stmt = sqlite_insert(RosterUser).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[RosterUser.external_id],
                set_={k: v for k, v in values.items() if k != "external_id"},
            )
            session.execute(stmt)
            return session.scalar(
                select(RosterUser.id).where(RosterUser.external_id == user.external_id)
            )

    @store_operation
    def get_users(self) -> List[RosterUser]:
        with self._session() as session:
            return list(session.scalars(select(RosterUser).order_by(RosterUser.id)))

    @store_operation
    def get_user_by_code(self, code: str) -> Optional[RosterUser]:
        with self._session() as session:
            return session.scalars(
                select(RosterUser).where(RosterUser.code == str(code)).limit(1)
            ).first()

    # ==================== MEALS & PERIODS ====================

    @store_operation
    def save_meal(self, meal: Meal) -> bool:
        values = {
            "external_id": meal.external_id,
            "name": meal.name,
            "start_time": meal.start_time,
            "end_time": meal.end_time,
            "active_flag": True if meal.active_flag is None else bool(meal.active_flag),
        }
        with self._session() as session:
            stmt = sqlite_insert(Meal).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Meal.external_id],
                set_={k: v for k, v in values.items() if k != "external_id"},
            )
            session.execute(stmt)
        return True

    @store_operation
    def get_meal(self, meal_id: int) -> Optional[Meal]:
        with self._session() as session:
            return session.get(Meal, meal_id)

    @store_operation
    def get_active_meals(self) -> List[Meal]:
        with self._session() as session:
            return list(session.scalars(
                select(Meal).where(Meal.active_flag.is_(True)).order_by(Meal.start_time)
            ))

    @store_operation
    def save_meal_period_link(self, link: MealPeriodLink) -> bool:
        values = {
            "link_id": link.link_id,
            "period_external_id": link.period_external_id,
            "meal_external_id": link.meal_external_id,
            "hours_before_cutoff": link.hours_before_cutoff or 1,
            "max_persons": link.max_persons or 1,
            "active_flag": bool(link.active_flag),
            "state_flag": bool(link.state_flag),
            "subsidy_amount": link.subsidy_amount or "0.00",
        }
        with self._session() as session:
            # The link id and the (period, meal) pair are both unique: drop a
            # row that holds the pair under another id before upserting.
            session.execute(
                delete(MealPeriodLink).where(
                    MealPeriodLink.period_external_id == link.period_external_id,
                    MealPeriodLink.meal_external_id == link.meal_external_id,
                    MealPeriodLink.link_id != link.link_id,
                )
            )
            stmt = sqlite_insert(MealPeriodLink).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[MealPeriodLink.link_id],
                set_={k: v for k, v in values.items() if k != "link_id"},
            )
            session.execute(stmt)
        return True

    @store_operation
    def save_period(self, period: Period) -> bool:
        values = {
            "external_id": period.external_id,
            "name": period.name,
            "start_date": period.start_date,
            "end_date": period.end_date,
            "active_flag": True if period.active_flag is None else bool(period.active_flag),
        }
        with self._session() as session:
            stmt = sqlite_insert(Period).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Period.external_id],
                set_={k: v for k, v in values.items() if k != "external_id"},
            )
            session.execute(stmt)
        return True

    @store_operation
    def get_current_period(self, today: Optional[date] = None) -> Optional[Period]:
        """Active period whose date range contains today; highest id wins ties."""
        day = (today or clock.today()).isoformat()
        with self._session() as session:
            return session.scalars(
                select(Period)
                .where(
                    Period.start_date <= day,
                    Period.end_date >= day,
                    Period.active_flag.is_(True),
                )
                .order_by(Period.external_id.desc())
                .limit(1)
            ).first()

    @store_operation
    def get_meal_links_for_period(self, period_id: int) -> List[MealPeriodLink]:
        """Links of a period with their meals loaded, ordered by start time."""
        with self._session() as session:
            return list(session.scalars(
                select(MealPeriodLink)
                .join(MealPeriodLink.meal)
                .options(contains_eager(MealPeriodLink.meal))
                .where(MealPeriodLink.period_external_id == period_id)
                .order_by(Meal.start_time)
            ).unique())

    # ==================== TICKETS ====================

    @store_operation
    def save_ticket(self, ticket: Ticket) -> SaveResult:
        """Update the ticket in place when its local id is known, else insert it."""
        if not ticket.user_external_id or not ticket.meal_external_id or not ticket.uuid:
            raise ValidationError(messages.INCOMPLETE_TICKET)

        values = _ticket_values(ticket)
        try:
            with self._session() as session:
                if ticket.id:
                    result = session.execute(
                        update(Ticket).where(Ticket.id == ticket.id).values(**values)
                    )
                    if result.rowcount:
                        return SaveResult(id=ticket.id, is_new=False)
                    logger.warning(f"Ticket {ticket.id} not found locally, inserting it")

                result = session.execute(insert(Ticket).values(**values))
                new_id = result.inserted_primary_key[0]
        except IntegrityError as e:
            raise ConflictError(f"{messages.DUPLICATE_TICKET}: {ticket.uuid}") from e

        ticket.id = new_id
        return SaveResult(id=new_id, is_new=True)

    @store_operation
    def ticket_exists(self, user_id: int, meal_id: int, period_id: Optional[int]) -> bool:
        with self._session() as session:
            count = session.scalar(
                select(func.count(Ticket.id)).where(
                    Ticket.user_external_id == user_id,
                    Ticket.meal_external_id == meal_id,
                    Ticket.period_external_id == period_id,
                )
            )
        return bool(count)

    @store_operation
    def get_tickets(self) -> List[Ticket]:
        """All tickets, most recently created first."""
        with self._session() as session:
            return list(session.scalars(
                select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())
            ))

    @store_operation
    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        with self._session() as session:
            return session.get(Ticket, ticket_id)

    @store_operation
    def get_ticket_by_uuid(self, uuid: str) -> Optional[Ticket]:
        with self._session() as session:
            return session.scalars(select(Ticket).where(Ticket.uuid == uuid)).first()

    @store_operation
    def get_pending_tickets(self) -> List[Ticket]:
        with self._session() as session:
            return list(session.scalars(
                select(Ticket).where(Ticket.sync_pending.is_(True)).order_by(Ticket.id)
            ))

    @store_operation
    def mark_ticket_synced(self, ticket_id: int) -> bool:
        with self._session() as session:
            session.execute(update(Ticket).where(Ticket.id == ticket_id).values(sync_pending=False))
        return True

    @store_operation
    def get_recent_tickets(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Latest tickets with the user's name and code and the meal name."""
        with self._session() as session:
            rows = session.execute(
                select(
                    Ticket,
                    RosterUser.first_name,
                    RosterUser.last_name,
                    RosterUser.code,
                    Meal.name.label("meal_name"),
                )
                .outerjoin(RosterUser, RosterUser.external_id == Ticket.user_external_id)
                .outerjoin(Meal, Meal.external_id == Ticket.meal_external_id)
                .order_by(Ticket.id.desc())
                .limit(limit)
            ).all()

        return [
            {
                "id": t.id,
                "external_id": t.external_id,
                "user_external_id": t.user_external_id,
                "meal_external_id": t.meal_external_id,
                "period_external_id": t.period_external_id,
                "created_at": t.created_at,
                "uuid": t.uuid,
                "sync_pending": t.sync_pending,
                "first_name": first_name,
                "last_name": last_name,
                "code": code,
                "meal_name": meal_name,
            }
            for t, first_name, last_name, code, meal_name in rows
        ]

    @store_operation
    def delete_ticket(self, ticket_id: int) -> None:
        with self._session() as session:
            session.execute(delete(Ticket).where(Ticket.id == ticket_id))

    @store_operation
    def delete_ticket_by_uuid(self, uuid: Optional[str]) -> int:
        """Delete every ticket carrying ``uuid``; empty uuids are ignored."""
        if not uuid:
            return 0
        with self._session() as session:
            result = session.execute(delete(Ticket).where(Ticket.uuid == uuid))
            return result.rowcount or 0

    @store_operation
    def get_ticket_stats(self, period_id: int, meal_id: int) -> TicketStats:
        with self._session() as session:
            total, pending = session.execute(
                select(
                    func.count(Ticket.id),
                    func.coalesce(func.sum(case((Ticket.sync_pending.is_(True), 1), else_=0)), 0),
                ).where(
                    Ticket.period_external_id == period_id,
                    Ticket.meal_external_id == meal_id,
                )
            ).one()
        total = int(total or 0)
        pending = int(pending or 0)
        return TicketStats(total=total, pending=pending, synced=total - pending)

    @store_operation
    def cleanup_old_tickets(self, today: Optional[date] = None) -> int:
        """Delete synced tickets created before today. Pending ones are kept."""
        day = today or clock.today()
        with self._session() as session:
            synced = session.execute(
                select(Ticket.id, Ticket.created_at).where(Ticket.sync_pending.is_(False))
            ).all()
            stale = [
                ticket_id for ticket_id, created_at in synced
                if (clock.local_date_of(created_at) or day) < day
            ]
            if stale:
                session.execute(delete(Ticket).where(Ticket.id.in_(stale)))
        if stale:
            logger.info(f"Removed {len(stale)} synced tickets from previous days")
        return len(stale)

    # ==================== KEY-VALUE ====================

    @store_operation
    def get_setting(self, key: str) -> Optional[str]:
        with self._session() as session:
            return session.scalar(select(AppSetting.value).where(AppSetting.key == key))

    @store_operation
    def set_setting(self, key: str, value: str) -> None:
        with self._session() as session:
            stmt = sqlite_insert(AppSetting).values(key=key, value=value)
            stmt = stmt.on_conflict_do_update(
                index_elements=[AppSetting.key],
                set_={"value": value, "updated_at": func.current_timestamp()},
            )
            session.execute(stmt)

    @store_operation
    def delete_setting(self, key: str) -> None:
        with self._session() as session:
            session.execute(delete(AppSetting).where(AppSetting.key == key))

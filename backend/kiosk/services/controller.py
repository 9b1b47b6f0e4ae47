"""
Application Controller

Owns the kiosk's application state (period, active meal, roster, stats,
connectivity, sync flag) and exposes the commands the UI issues. Every state
change is pushed to subscribers as a fresh snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.core.exceptions import KioskError, ValidationError
from kiosk.core.progress import ProgressTracker
from kiosk.core.threads import run_blocking
from kiosk.models import Meal, MealPeriodLink, Period, RosterUser
from kiosk.services.backup import CsvBackupWriter
from kiosk.services.connectivity import ConnectivityMonitor
from kiosk.services.feedback import Feedback, FeedbackBus, FeedbackKind
from kiosk.services.local_store import LocalStore, TicketStats
from kiosk.services.meal_resolver import resolve_active_meal
from kiosk.services.reference_data import ReferenceDataService
from kiosk.services.remote_client import RemoteTicketService
from kiosk.services.sync_engine import SyncEngine, SyncReport
from kiosk.services.ticket_issuance import IssueResult, IssueStatus, TicketIssuer

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    initialized: bool = False
    online: bool = True
    syncing: bool = False
    period: Optional[Period] = None
    links: List[MealPeriodLink] = field(default_factory=list)
    active_meal: Optional[Meal] = None
    roster: List[RosterUser] = field(default_factory=list)
    stats: TicketStats = field(default_factory=TicketStats)

    def to_dict(self) -> dict:
        return {
            "initialized": self.initialized,
            "online": self.online,
            "syncing": self.syncing,
            "period_id": self.period.external_id if self.period else None,
            "period_name": self.period.name if self.period else None,
            "active_meal_id": self.active_meal.external_id if self.active_meal else None,
            "active_meal_name": self.active_meal.name if self.active_meal else None,
            "roster_size": len(self.roster),
            "stats": self.stats.to_dict(),
        }


StateListener = Callable[[AppState], None]


class AppController:
    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteTicketService] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        feedback: Optional[FeedbackBus] = None,
        progress: Optional[ProgressTracker] = None,
        backup: Optional[CsvBackupWriter] = None,
        now: Callable[[], datetime] = clock.now,
    ):
        self.store = store
        self.remote = remote or RemoteTicketService(store)
        self.connectivity = connectivity or ConnectivityMonitor(remote=self.remote)
        self.feedback = feedback or FeedbackBus()
        self.progress = progress or ProgressTracker()
        self._now = now

        self.issuer = TicketIssuer(store, now=now)
        self.reference = ReferenceDataService(
            store, self.remote, self.connectivity, today=lambda: self._now().date()
        )
        self.sync_engine = SyncEngine(
            store,
            self.remote,
            self.connectivity,
            progress=self.progress,
            backup=backup,
            feedback=self.feedback,
            now=now,
        )

        self.state = AppState(online=self.connectivity.is_online)
        self._listeners: List[StateListener] = []
        self.connectivity.subscribe(self._on_connectivity_change)

    # ==================== STATE ====================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

    def _on_connectivity_change(self, online: bool) -> None:
        self.state.online = online
        self._emit()

    def refresh_active_meal(self) -> Optional[Meal]:
        """Re-resolve the meal being served; windows move with the clock."""
        self.state.active_meal = resolve_active_meal(self.state.links, self._now())
        return self.state.active_meal

    # ==================== COMMANDS ====================

    async def initialize(self) -> AppState:
        """Prepare the store, load cached data, then refresh from the server."""
        try:
            await run_blocking(self.store.initialize)
            await self._load_reference_data(force_local=True)
            if self.connectivity.is_online:
                await self._load_reference_data(force_local=False)
        except KioskError as e:
            logger.error(f"{messages.INITIAL_LOAD_FAILED}: {e}")
            self.feedback.publish(Feedback(
                FeedbackKind.ERROR, messages.INITIAL_LOAD_FAILED, speech=messages.INITIAL_LOAD_FAILED,
            ))
        finally:
            self.state.initialized = True
            self._emit()
        logger.info(f"Kiosk initialized: {self.state.to_dict()}")
        return self.state

    async def _load_reference_data(self, force_local: bool) -> None:
        await self.refresh_period(force_local=force_local, emit=False)
        await self.refresh_roster(force_local=force_local, emit=False)

    def issue_ticket(self, code: Optional[str]) -> IssueResult:
        self.refresh_active_meal()
        clear_after = settings.issue_feedback_clear_seconds
        try:
            result = self.issuer.issue(
                code,
                roster=self.state.roster,
                period=self.state.period,
                meal=self.state.active_meal,
                initialized=self.state.initialized,
            )
        except KioskError as e:
            logger.info(f"Issuance refused for code {code!r}: {e.message}")
            self.feedback.error(e, clear_after=clear_after)
            raise

        kind = FeedbackKind.SUCCESS if result.status == IssueStatus.ISSUED else FeedbackKind.INFO
        self.feedback.publish(
            Feedback(kind, result.message, speech=result.message, detail=result.user.full_name),
            clear_after=clear_after,
        )
        if result.status == IssueStatus.ISSUED:
            self.refresh_stats()
        return result

    async def sync(self, force: bool = False) -> SyncReport:
        self.state.syncing = True
        self._emit()
        try:
            report = await self.sync_engine.run(force=force)
        finally:
            self.state.syncing = False
        self.state.stats = await run_blocking(self._load_stats)
        self._emit()
        return report

    def cancel_sync(self) -> bool:
        return self.sync_engine.cancel()

    async def refresh_roster(self, force_local: bool = False, emit: bool = True) -> List[RosterUser]:
        self.state.roster = await self.reference.refresh_roster(force_local=force_local)
        if emit:
            self._emit()
        return self.state.roster

    async def refresh_period(self, force_local: bool = False, emit: bool = True) -> Optional[Period]:
        data = await self.reference.refresh_period(force_local=force_local)
        self.state.period = data.period
        self.state.links = data.links
        self.refresh_active_meal()
        self.state.stats = await run_blocking(self._load_stats)
        if emit:
            self._emit()
        return self.state.period

    def refresh_stats(self, emit: bool = True) -> TicketStats:
        self.state.stats = self._load_stats()
        if emit:
            self._emit()
        return self.state.stats

    def _load_stats(self) -> TicketStats:
        period, meal = self.state.period, self.state.active_meal
        if period is None or meal is None:
            return TicketStats()
        try:
            return self.store.get_ticket_stats(period.external_id, meal.external_id)
        except KioskError as e:
            logger.warning(f"Could not load ticket stats: {e}")
            return self.state.stats

    def set_online(self, online: bool) -> bool:
        return self.connectivity.set_online(online)

    def get_api_url(self) -> str:
        return self.remote.get_base_url()

    def set_api_url(self, url: str) -> str:
        try:
            return self.remote.set_base_url(url)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def reset_api_url(self) -> str:
        return self.remote.reset_base_url()

    # ==================== BACKGROUND ====================

    async def run_periodic_sync(self, interval_seconds: float) -> None:
        """Trigger an unforced sync every ``interval_seconds``; the throttle still applies."""
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                self.refresh_active_meal()
                report = await self.sync()
                logger.debug(f"Periodic sync: {report.status.value}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Periodic sync error: {e}")

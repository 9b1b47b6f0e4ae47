"""
Synchronization Engine

Reconciles today's local tickets with the remote authoritative set.

A run goes through these steps:
1. Guards: reentrancy, throttle (unless forced), connectivity, local period.
2. Fetch: the remote count for today, then ``ceil(count / page_size)`` pages.
   Only a failed count is fatal; a failed page is logged and skipped, which
   leaves the download incomplete.
3. Merge by uuid against the remote tickets of the active meal, and persist
   every touched ticket. Local tickets missing on the server are only looked
   for when the download is complete.
4. Upload each pending ticket once. Created and "limit reached" both resolve
   the ticket; anything else leaves it pending and reports it as failed.
5. Back up the tickets about to be pruned and the failed uploads as CSV, then
   delete the pruned ones. A failed backup never blocks deletion.
6. Record the completion time and report the outcome.

Store and backup calls run on worker threads. Progress is weighted 40/30/30
over download, processing and upload.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.core.exceptions import ConnectivityError, KioskError, SyncCancelled
from kiosk.core.progress import ProgressTracker, SyncStage
from kiosk.core.threads import run_blocking
from kiosk.models import Meal, MealPeriodLink, Period, Ticket
from kiosk.schemas.remote import RemoteTicket
from kiosk.services.backup import CsvBackupWriter, build_rows
from kiosk.services.connectivity import ConnectivityMonitor
from kiosk.services.feedback import Feedback, FeedbackBus, FeedbackKind
from kiosk.services.local_store import LocalStore
from kiosk.services.meal_resolver import resolve_active_meal
from kiosk.services.remote_client import REMOTE_ERRORS, RemoteTicketService

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "sync.last_completed_at"

# Processing progress is reported on the first record, every 10th and the last
PROGRESS_EVERY = 10


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    THROTTLED = "throttled"
    OFFLINE = "offline"
    NO_PERIOD = "no_period"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncReport:
    status: SyncStatus
    message: str = ""
    downloaded: int = 0
    in_scope: int = 0
    updated: int = 0
    inserted: int = 0
    marked_pending: int = 0
    uploaded: int = 0
    pruned: int = 0
    cleaned: int = 0
    failed_uuids: List[str] = field(default_factory=list)
    skipped_pages: List[int] = field(default_factory=list)
    backup_path: Optional[str] = None

    @property
    def failed(self) -> int:
        return len(self.failed_uuids)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "downloaded": self.downloaded,
            "in_scope": self.in_scope,
            "updated": self.updated,
            "inserted": self.inserted,
            "marked_pending": self.marked_pending,
            "uploaded": self.uploaded,
            "pruned": self.pruned,
            "cleaned": self.cleaned,
            "failed": self.failed,
            "failed_uuids": list(self.failed_uuids),
            "skipped_pages": list(self.skipped_pages),
            "backup_path": self.backup_path,
        }


@dataclass
class Download:
    """Remote tickets for today and how many the server said there were."""

    tickets: List[RemoteTicket] = field(default_factory=list)
    expected: int = 0
    skipped_pages: List[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped_pages and len(self.tickets) >= self.expected


@dataclass
class MergePlan:
    """Ticket writes produced by a merge.

    ``marked_pending`` holds in-scope tickets that were synced locally but are
    missing from the server. They are persisted as pending so an interrupted
    run re-uploads them; a run that reaches the prune step backs them up and
    deletes them instead.
    """

    updates: List[Ticket] = field(default_factory=list)
    inserts: List[Ticket] = field(default_factory=list)
    marked_pending: List[Ticket] = field(default_factory=list)

    @property
    def touched(self) -> List[Ticket]:
        return self.updates + self.marked_pending + self.inserts


def _copy_ticket(ticket: Ticket, **changes) -> Ticket:
    values = {
        "id": ticket.id,
        "external_id": ticket.external_id,
        "user_external_id": ticket.user_external_id,
        "meal_external_id": ticket.meal_external_id,
        "period_external_id": ticket.period_external_id,
        "created_at": ticket.created_at,
        "uuid": ticket.uuid,
        "sync_pending": ticket.sync_pending,
    }
    values.update(changes)
    return Ticket(**values)


def merge_tickets(
    local: Iterable[Ticket],
    remote: Iterable[RemoteTicket],
    in_scope: Optional[Callable[[Ticket], bool]] = None,
) -> MergePlan:
    """Plan the local writes that bring ``local`` in line with ``remote``.

    Remote tickets are matched against every local ticket by uuid. A match is
    updated from the server and marked synced; a remote ticket with no local
    counterpart is inserted as synced. Local tickets accepted by ``in_scope``
    and absent remotely are marked pending when they are not already.
    Inputs are not modified.
    """
    by_uuid: Dict[str, Ticket] = {t.uuid: t for t in local if t.uuid}
    plan = MergePlan()
    seen = set()

    for item in remote:
        if not item.uuid:
            logger.warning(f"Remote ticket {item.external_id} has no uuid, skipping")
            continue
        if item.uuid in seen:
            continue
        seen.add(item.uuid)

        existing = by_uuid.get(item.uuid)
        if existing is not None:
            plan.updates.append(_copy_ticket(
                existing,
                external_id=item.external_id or existing.external_id,
                user_external_id=item.user_external_id,
                meal_external_id=item.meal_external_id,
                period_external_id=(
                    item.period_external_id
                    if item.period_external_id is not None
                    else existing.period_external_id
                ),
                created_at=item.created_at or existing.created_at,
                sync_pending=False,
            ))
        else:
            plan.inserts.append(Ticket(
                external_id=item.external_id,
                user_external_id=item.user_external_id,
                meal_external_id=item.meal_external_id,
                period_external_id=item.period_external_id,
                created_at=item.created_at,
                uuid=item.uuid,
                sync_pending=False,
            ))

    for uuid, ticket in by_uuid.items():
        if uuid in seen or ticket.sync_pending:
            continue
        if in_scope is not None and not in_scope(ticket):
            continue
        plan.marked_pending.append(_copy_ticket(ticket, sync_pending=True))

    return plan


class CancelToken:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SyncCancelled()


class SyncEngine:
    """Runs sync passes; at most one at a time."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteTicketService,
        connectivity: ConnectivityMonitor,
        progress: Optional[ProgressTracker] = None,
        backup: Optional[CsvBackupWriter] = None,
        feedback: Optional[FeedbackBus] = None,
        now: Callable[[], datetime] = clock.now,
        min_interval_seconds: Optional[int] = None,
        page_size: Optional[int] = None,
        prune_old_synced: Optional[bool] = None,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.progress = progress or ProgressTracker()
        self.backup = backup or CsvBackupWriter()
        self.feedback = feedback
        self._now = now
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None else settings.sync_min_interval_seconds
        )
        self.page_size = page_size or settings.ticket_page_size
        self.prune_old_synced = (
            prune_old_synced if prune_old_synced is not None else settings.prune_old_synced_tickets
        )
        self._running = False
        self._token: Optional[CancelToken] = None

    @property
    def in_progress(self) -> bool:
        return self._running

    def cancel(self) -> bool:
        """Ask the running pass to stop at its next checkpoint."""
        if not self._running or self._token is None:
            return False
        logger.info("Sync cancellation requested")
        self._token.cancel()
        return True

    # ==================== THROTTLE ====================

    def last_completed_at(self) -> Optional[int]:
        value = self.store.get_setting(LAST_SYNC_KEY)
        try:
            return int(value) if value else None
        except ValueError:
            logger.warning(f"Ignoring unreadable last sync time: {value!r}")
            return None

    def should_sync(self) -> bool:
        last = self.last_completed_at()
        if last is None:
            return True
        elapsed = clock.epoch_millis(self._now()) - last
        return elapsed > self.min_interval_seconds * 1000

    async def _record_completion(self) -> None:
        try:
            await run_blocking(self.store.set_setting, LAST_SYNC_KEY, str(clock.epoch_millis(self._now())))
        except KioskError as e:
            logger.error(f"Could not record sync time: {e}")

    # ==================== RUN ====================

    async def run(self, force: bool = False) -> SyncReport:
        if self._running:
            logger.info("Sync already in progress, skipping")
            return SyncReport(SyncStatus.SKIPPED)

        # Claimed before the first await so a concurrent caller sees it
        self._running = True
        try:
            return await self._guarded_run(force)
        finally:
            self._running = False
            self._token = None

    async def _guarded_run(self, force: bool) -> SyncReport:
        if not force and not await run_blocking(self.should_sync):
            logger.info("Last sync was less than the minimum interval ago, skipping")
            return SyncReport(SyncStatus.THROTTLED)

        if not self.connectivity.is_online:
            logger.warning("Sync requested while offline")
            self.progress.reset(messages.NO_CONNECTION)
            self._publish(Feedback.from_error(ConnectivityError()))
            return SyncReport(SyncStatus.OFFLINE, message=messages.NO_CONNECTION)

        self._token = CancelToken()
        try:
            report = await self._run(self._token)
        except SyncCancelled:
            logger.info("Sync cancelled")
            self.progress.reset(messages.SYNC_CANCELLED)
            return SyncReport(SyncStatus.CANCELLED, message=messages.SYNC_CANCELLED)
        except Exception as e:
            detail = e.message if isinstance(e, KioskError) else str(e)
            logger.error(f"Sync failed: {detail}")
            message = messages.SYNC_ERROR.format(detail=detail)
            self.progress.reset(message)
            self._publish(Feedback(FeedbackKind.ERROR, message, speech=messages.SYNC_FAILED_SPEECH))
            report = SyncReport(SyncStatus.FAILED, message=message)

        await self._record_completion()
        return report

    async def _run(self, token: CancelToken) -> SyncReport:
        moment = self._now()
        today = moment.date()
        self.progress.start()
        logger.info(f"Sync started for {today.isoformat()}")

        self.progress.stage(SyncStage.FETCHING, messages.SYNC_LOCAL_DATA)
        period = await run_blocking(self.store.get_current_period, today)
        if period is None:
            logger.warning("Cannot sync: no local period for today")
            self.progress.reset(messages.SYNC_NO_PERIOD)
            return SyncReport(SyncStatus.NO_PERIOD, message=messages.SYNC_NO_PERIOD)
        links = await run_blocking(self.store.get_meal_links_for_period, period.external_id)
        meal = resolve_active_meal(links, moment)

        self.progress.stage(SyncStage.FETCHING, messages.SYNC_LOCAL_TICKETS)
        local = await run_blocking(self.store.get_tickets)
        logger.info(f"Local tickets: {len(local)}")

        download = await self._download(today, token)
        remote = download.tickets
        meal_id = meal.external_id if meal else None
        scoped = [t for t in remote if t.meal_external_id == meal_id]
        report = SyncReport(
            SyncStatus.COMPLETED,
            downloaded=len(remote),
            in_scope=len(scoped),
            skipped_pages=list(download.skipped_pages),
        )

        if download.complete:
            scope = self._scope(period, meal_id, today)
        else:
            # A ticket on a missing page would look deleted remotely
            logger.warning(
                f"Downloaded {len(remote)} of {download.expected} tickets, "
                "not checking for tickets missing on server"
            )
            scope = self._nothing_in_scope
        plan = merge_tickets(local, scoped, scope)
        report.updated = len(plan.updates)
        report.inserted = len(plan.inserts)
        report.marked_pending = len(plan.marked_pending)
        logger.info(
            f"Merge: {report.updated} updated, {report.inserted} inserted, "
            f"{report.marked_pending} missing on server"
        )
        unsaved = await self._persist(plan, report, token)

        prune = [t for t in plan.marked_pending if t.uuid not in unsaved]
        failed = await self._upload({t.uuid for t in prune} | unsaved, report, token)

        await self._backup_and_prune(prune + failed, prune, links, report)

        if self.prune_old_synced:
            try:
                report.cleaned = await run_blocking(self.store.cleanup_old_tickets, today)
            except KioskError as e:
                logger.warning(f"Old ticket cleanup failed: {e}")

        if not download.complete:
            report.status = SyncStatus.PARTIAL
            report.message = messages.SYNC_INCOMPLETE.format(downloaded=len(remote), expected=download.expected)
            speech = report.message
        elif report.failed:
            report.status = SyncStatus.PARTIAL
            report.message = messages.SYNC_PARTIAL.format(failed=report.failed)
            speech = report.message
        else:
            report.message = messages.SYNC_DONE
            speech = messages.SYNC_DONE_SPEECH
        self.progress.complete(report.message)
        self._publish(Feedback(FeedbackKind.SUCCESS, report.message, speech=speech))
        logger.info(f"Sync finished: {report.to_dict()}")
        return report

    @staticmethod
    def _scope(period: Period, meal_id: Optional[int], today: date) -> Callable[[Ticket], bool]:
        def in_scope(ticket: Ticket) -> bool:
            return (
                ticket.meal_external_id == meal_id
                and ticket.period_external_id == period.external_id
                and clock.local_date_of(ticket.created_at) == today
            )

        return in_scope

    @staticmethod
    def _nothing_in_scope(ticket: Ticket) -> bool:
        return False

    async def _download(self, today: date, token: CancelToken) -> Download:
        self.progress.stage(SyncStage.FETCHING, messages.SYNC_TOTAL)
        try:
            total = await self.remote.get_total_tickets_in_range(today, today)
        except REMOTE_ERRORS as e:
            raise ConnectivityError(messages.SYNC_TOTAL_FAILED) from e
        if not total.success:
            raise ConnectivityError(messages.SYNC_TOTAL_FAILED)

        pages = total.pages(self.page_size)
        logger.info(f"Remote reports {total.count} tickets in {pages} pages")
        self.progress.update(
            SyncStage.FETCHING, 0, pages, messages.SYNC_DOWNLOADING.format(page=0, pages=pages)
        )

        download = Download(expected=total.count)
        for page in range(1, pages + 1):
            token.raise_if_cancelled()
            try:
                result = await self.remote.get_tickets_in_range(today, today, page, self.page_size)
            except REMOTE_ERRORS as e:
                logger.warning(f"Page {page}/{pages} failed: {e}")
                download.skipped_pages.append(page)
                continue
            if result.status != "ok":
                logger.warning(f"Page {page}/{pages} rejected by server")
                download.skipped_pages.append(page)
                continue
            download.tickets.extend(result.tickets)
            self.progress.update(
                SyncStage.FETCHING, page, pages, messages.SYNC_DOWNLOADING.format(page=page, pages=pages)
            )
        return download

    async def _persist(self, plan: MergePlan, report: SyncReport, token: CancelToken) -> Set[str]:
        """Save every touched ticket; return the uuids that could not be saved."""
        self.progress.update(SyncStage.PROCESSING, 0, 1, messages.SYNC_PROCESSING_START)
        unsaved: Set[str] = set()
        touched = plan.touched
        total = len(touched)
        for index, ticket in enumerate(touched, start=1):
            token.raise_if_cancelled()
            try:
                await run_blocking(self.store.save_ticket, ticket)
            except KioskError as e:
                logger.warning(f"Could not save ticket {ticket.uuid}: {e}")
                unsaved.add(ticket.uuid)
                report.failed_uuids.append(ticket.uuid)
            if (index - 1) % PROGRESS_EVERY == 0 or index == total:
                self.progress.update(
                    SyncStage.PROCESSING, index, total,
                    messages.SYNC_PROCESSING.format(current=index, total=total),
                )
        return unsaved

    async def _upload(self, skip: Set[str], report: SyncReport, token: CancelToken) -> List[Ticket]:
        self.progress.update(SyncStage.UPLOADING, 0, 1, messages.SYNC_UPLOAD_START)
        pending = [t for t in await run_blocking(self.store.get_pending_tickets) if t.uuid not in skip]
        if not pending:
            self.progress.update(SyncStage.UPLOADING, 1, 1, messages.SYNC_NOTHING_PENDING)
            return []

        failed: List[Ticket] = []
        total = len(pending)
        for index, ticket in enumerate(pending, start=1):
            token.raise_if_cancelled()
            self.progress.update(
                SyncStage.UPLOADING, index, total,
                messages.SYNC_UPLOADING.format(current=index, total=total),
            )
            try:
                result = await self.remote.create_ticket(ticket)
            except REMOTE_ERRORS as e:
                logger.warning(f"Upload of ticket {ticket.uuid} failed: {e}")
                failed.append(ticket)
                continue

            if not result.resolved:
                logger.warning(f"Server rejected ticket {ticket.uuid}: {result.error_code}")
                failed.append(ticket)
                continue

            ticket.sync_pending = False
            if result.server_ticket_id:
                ticket.external_id = result.server_ticket_id
            try:
                await run_blocking(self.store.save_ticket, ticket)
                report.uploaded += 1
            except KioskError as e:
                logger.warning(f"Uploaded ticket {ticket.uuid} could not be marked synced: {e}")
                failed.append(ticket)

        report.failed_uuids.extend(t.uuid for t in failed)
        if failed:
            logger.warning(f"{len(failed)} of {total} uploads failed")
        return failed

    def _meal_names(self, links: List[MealPeriodLink], tickets: List[Ticket]) -> Dict[int, str]:
        names = {link.meal_external_id: link.meal.name for link in links if link.meal is not None}
        for meal_id in {t.meal_external_id for t in tickets} - names.keys():
            meal: Optional[Meal] = self.store.get_meal(meal_id)
            if meal is not None:
                names[meal_id] = meal.name
        return names

    async def _backup_and_prune(
        self,
        to_backup: List[Ticket],
        prune: List[Ticket],
        links: List[MealPeriodLink],
        report: SyncReport,
    ) -> None:
        if not to_backup:
            return

        try:
            users = await run_blocking(self.store.get_users)
            names = await run_blocking(self._meal_names, links, to_backup)
            result = await run_blocking(self.backup.write, build_rows(to_backup, users, names))
        except KioskError as e:
            logger.error(f"Backup could not be prepared: {e}")
            result = None

        if result is not None:
            report.backup_path = result.path
            if self.feedback is not None:
                self.feedback.announcer.announce(result.message)

        for ticket in prune:
            try:
                report.pruned += await run_blocking(self.store.delete_ticket_by_uuid, ticket.uuid)
            except KioskError as e:
                logger.warning(f"Could not delete ticket {ticket.uuid}: {e}")
                report.failed_uuids.append(ticket.uuid)
        if prune:
            logger.info(f"Pruned {report.pruned} tickets no longer on the server")

    def _publish(self, feedback: Feedback) -> None:
        if self.feedback is not None:
            self.feedback.publish(feedback)

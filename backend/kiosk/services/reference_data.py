"""
Reference data refresh: the user roster and today's period with its meals.

When online, both are pulled from the remote service and upserted into the
local store on a worker thread; the caller always receives what the store
holds afterwards, so a remote failure degrades to the last cached copy.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from kiosk.core import clock, messages
from kiosk.core.config import settings
from kiosk.core.threads import run_blocking
from kiosk.models import Meal, MealPeriodLink, Period, RosterUser
from kiosk.schemas.remote import RemotePeriod, RemoteUser
from kiosk.services.connectivity import ConnectivityMonitor
from kiosk.services.local_store import LocalStore
from kiosk.services.remote_client import REMOTE_ERRORS, RemoteTicketService

logger = logging.getLogger(__name__)


@dataclass
class PeriodData:
    period: Optional[Period] = None
    links: List[MealPeriodLink] = field(default_factory=list)


def roster_user_from_remote(user: RemoteUser) -> RosterUser:
    return RosterUser(
        external_id=user.external_id,
        code=user.code,
        first_name=user.first_name,
        last_name=user.last_name,
        birth_date=user.birth_date,
        sync_flag=True,
        sync_pending=False,
    )


class ReferenceDataService:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteTicketService,
        connectivity: ConnectivityMonitor,
        page_size: Optional[int] = None,
        today: Callable[[], date] = clock.today,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.page_size = page_size or settings.user_page_size
        self._today = today

    async def refresh_roster(self, force_local: bool = False) -> List[RosterUser]:
        if not force_local and self.connectivity.is_online:
            try:
                saved = await self._download_roster()
                logger.info(f"Roster refreshed from server: {saved} users")
            except REMOTE_ERRORS as e:
                logger.warning(f"{messages.ROSTER_LOAD_FAILED}: {e}")
        return await run_blocking(self.store.get_users)

    async def _download_roster(self) -> int:
        total = await self.remote.get_user_count()
        pages = math.ceil(total / self.page_size) if total > 0 else 0
        saved = 0
        for page in range(1, pages + 1):
            for user in await self.remote.get_users_page(page, self.page_size, active_only=True):
                await run_blocking(self.store.save_user, roster_user_from_remote(user))
                saved += 1
        return saved

    async def refresh_period(self, force_local: bool = False) -> PeriodData:
        if not force_local and self.connectivity.is_online:
            try:
                remote_period = await self.remote.get_today_period()
            except REMOTE_ERRORS as e:
                logger.warning(f"{messages.PERIOD_LOAD_FAILED}: {e}")
                remote_period = None
            if remote_period is not None:
                await run_blocking(self.save_remote_period, remote_period)
            else:
                logger.info("Server returned no period for today")
        return await run_blocking(self.load_period)

    def save_remote_period(self, remote_period: RemotePeriod) -> None:
        """Upsert the period, then each meal before the link that references it."""
        self.store.save_period(Period(
            external_id=remote_period.external_id,
            name=remote_period.name,
            start_date=remote_period.start_date,
            end_date=remote_period.end_date,
            active_flag=remote_period.active_flag,
        ))

        for link in remote_period.meal_links:
            if link.meal is None:
                logger.warning(f"Meal link {link.link_id} has no meal, skipping")
                continue
            self.store.save_meal(Meal(
                external_id=link.meal.external_id,
                name=link.meal.name,
                start_time=link.meal.start_time,
                end_time=link.meal.end_time,
                active_flag=link.meal.active_flag,
            ))
            self.store.save_meal_period_link(MealPeriodLink(
                link_id=link.link_id,
                period_external_id=link.period_external_id or remote_period.external_id,
                meal_external_id=link.meal_external_id,
                hours_before_cutoff=link.hours_before_cutoff,
                max_persons=link.max_persons,
                active_flag=link.active_flag,
                state_flag=link.state_flag,
                subsidy_amount=link.subsidy_amount,
            ))
        logger.info(f"Period {remote_period.external_id} saved with {len(remote_period.meal_links)} meals")

    def load_period(self) -> PeriodData:
        period = self.store.get_current_period(self._today())
        if period is None:
            return PeriodData()
        return PeriodData(period, self.store.get_meal_links_for_period(period.external_id))

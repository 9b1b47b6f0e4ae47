"""Resolve which meal of a period is being served right now."""

import logging
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Tuple

from kiosk.models import Meal, MealPeriodLink

logger = logging.getLogger(__name__)


def parse_meal_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    parts = [int(p) for p in str(value).strip().split(":")]
    if len(parts) == 2:
        parts.append(0)
    if len(parts) != 3:
        raise ValueError(f"Invalid meal time: {value!r}")
    return time(*parts)


def meal_window(meal: Meal, now: datetime) -> Tuple[datetime, datetime]:
    """Today's [start, end) window for a meal; windows crossing midnight end tomorrow."""
    day = now.date()
    start = datetime.combine(day, parse_meal_time(meal.start_time), tzinfo=now.tzinfo)
    end = datetime.combine(day, parse_meal_time(meal.end_time), tzinfo=now.tzinfo)
    if end < start:
        end += timedelta(days=1)
    return start, end


def resolve_active_meal(links: Iterable[MealPeriodLink], now: datetime) -> Optional[Meal]:
    """First meal whose window contains ``now``, or None outside service hours.

    Windows are expected not to overlap; when they do, the first one listed wins.
    """
    for link in links:
        meal = link.meal
        if meal is None:
            continue
        try:
            start, end = meal_window(meal, now)
        except ValueError as e:
            logger.warning(f"Skipping meal {meal.external_id}: {e}")
            continue
        if start <= now < end:
            return meal
    return None

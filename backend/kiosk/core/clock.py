"""Wall-clock helpers.

The kiosk reasons in local time: meal windows, "today" and ticket ids all
follow the configured timezone, or the machine's local zone when none is set.
"""

from datetime import date, datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from kiosk.core.config import settings


def local_zone(name: Optional[str] = None) -> Optional[tzinfo]:
    name = name if name is not None else settings.timezone
    return ZoneInfo(name) if name else None


def now(tz: Optional[tzinfo] = None) -> datetime:
    """Current aware datetime in the kiosk's zone."""
    tz = tz or local_zone()
    if tz is None:
        return datetime.now().astimezone()
    return datetime.now(tz)


def today(tz: Optional[tzinfo] = None) -> date:
    return now(tz).date()


def iso_timestamp(moment: datetime) -> str:
    """ISO-8601 with milliseconds and offset, e.g. 2024-03-15T08:30:00.000-05:00."""
    return moment.isoformat(timespec="milliseconds")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO timestamp as stored on tickets; None when unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def local_date_of(value: str, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Local calendar date of a stored timestamp."""
    moment = parse_timestamp(value)
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.date()
    tz = tz or local_zone()
    return moment.astimezone(tz).date() if tz else moment.astimezone().date()


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)

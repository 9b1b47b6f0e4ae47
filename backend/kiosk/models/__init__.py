"""ORM models. Importing this package registers every table on Base.metadata."""

from kiosk.models.meal import Meal, MealPeriodLink, Period
from kiosk.models.roster import RosterUser
from kiosk.models.setting import AppSetting
from kiosk.models.ticket import Ticket

__all__ = [
    "AppSetting",
    "Meal",
    "MealPeriodLink",
    "Period",
    "RosterUser",
    "Ticket",
]

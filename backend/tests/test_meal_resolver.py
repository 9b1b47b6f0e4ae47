"""Tests for active meal resolution."""

from datetime import datetime, time, timezone

import pytest

from kiosk.models import Meal, MealPeriodLink
from kiosk.services.meal_resolver import meal_window, parse_meal_time, resolve_active_meal


def link(meal_id: int, start: str, end: str, name: str = "Comida") -> MealPeriodLink:
    item = MealPeriodLink(link_id=meal_id, period_external_id=1, meal_external_id=meal_id)
    item.meal = Meal(external_id=meal_id, name=name, start_time=start, end_time=end, active_flag=True)
    return item


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 15, hour, minute, tzinfo=timezone.utc)


LINKS = [
    link(1, "07:00", "09:00", "Desayuno"),
    link(2, "12:00:00", "14:00:00", "Almuerzo"),
    link(3, "19:00", "21:00", "Cena"),
]


class TestParseMealTime:

    def test_accepts_minutes_and_seconds(self):
        assert parse_meal_time("07:30") == time(7, 30)
        assert parse_meal_time("07:30:15") == time(7, 30, 15)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_meal_time("7")


class TestResolveActiveMeal:
    """Tests for resolve_active_meal."""

    def test_inside_window(self):
        assert resolve_active_meal(LINKS, at(12, 30)).name == "Almuerzo"

    def test_start_inclusive_end_exclusive(self):
        assert resolve_active_meal(LINKS, at(7, 0)).name == "Desayuno"
        assert resolve_active_meal(LINKS, at(9, 0)) is None

    def test_between_meals(self):
        assert resolve_active_meal(LINKS, at(10, 0)) is None

    def test_window_crossing_midnight(self):
        night = [link(4, "22:00", "02:00", "Refrigerio")]
        start, end = meal_window(night[0].meal, at(23, 0))
        assert end.day == 16
        assert resolve_active_meal(night, at(23, 30)).name == "Refrigerio"

    def test_first_listed_wins_on_overlap(self):
        overlapping = [link(1, "11:00", "13:00", "Primero"), link(2, "12:00", "14:00", "Segundo")]
        assert resolve_active_meal(overlapping, at(12, 30)).name == "Primero"

    def test_unparseable_times_are_skipped(self):
        broken = [link(1, "mediodia", "14:00", "Roto"), link(2, "12:00", "14:00", "Almuerzo")]
        assert resolve_active_meal(broken, at(12, 30)).name == "Almuerzo"

    def test_empty_links(self):
        assert resolve_active_meal([], at(12, 0)) is None

"""Schemas for configuration, connectivity, period and state endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from kiosk.schemas.ticket import TicketStatsOut


class ApiUrlUpdate(BaseModel):
    api_url: str


class ApiUrlOut(BaseModel):
    api_url: str
    is_default: bool


class ConnectivityUpdate(BaseModel):
    online: bool


class MealOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: int
    name: str
    start_time: str
    end_time: str
    active_flag: bool


class MealLinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    link_id: int
    meal_external_id: int
    hours_before_cutoff: int
    max_persons: int
    active_flag: bool
    state_flag: bool
    subsidy_amount: str
    meal: Optional[MealOut] = None


class PeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: int
    name: str
    start_date: str
    end_date: str
    active_flag: bool


class CurrentPeriodOut(BaseModel):
    period: Optional[PeriodOut] = None
    meal_links: List[MealLinkOut] = []
    active_meal: Optional[MealOut] = None


class RosterRefreshOut(BaseModel):
    users: int


class StateOut(BaseModel):
    initialized: bool
    online: bool
    syncing: bool
    period_id: Optional[int] = None
    period_name: Optional[str] = None
    active_meal_id: Optional[int] = None
    active_meal_name: Optional[str] = None
    roster_size: int
    stats: TicketStatsOut

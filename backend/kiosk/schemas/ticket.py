"""Ticket schemas for the kiosk API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IssueRequest(BaseModel):
    """Code entered on the keypad."""

    code: str = Field("", max_length=50)


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    external_id: Optional[int] = None
    user_external_id: int
    meal_external_id: int
    period_external_id: Optional[int] = None
    created_at: str
    uuid: str
    sync_pending: bool


class IssueResponse(BaseModel):
    status: str
    message: str
    user_name: str
    code: str
    meal_name: str
    ticket: Optional[TicketOut] = None


class RecentTicketOut(TicketOut):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    code: Optional[str] = None
    meal_name: Optional[str] = None


class TicketStatsOut(BaseModel):
    total: int
    pending: int
    synced: int

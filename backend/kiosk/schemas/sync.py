"""Sync schemas for the kiosk API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class SyncProgressOut(BaseModel):
    status: str
    percent: int
    message: str


class SyncReportOut(BaseModel):
    """Outcome of one sync request."""

    status: str
    message: str = ""
    downloaded: int = 0
    in_scope: int = 0
    updated: int = 0
    inserted: int = 0
    marked_pending: int = 0
    uploaded: int = 0
    pruned: int = 0
    cleaned: int = 0
    failed: int = 0
    failed_uuids: List[str] = []
    skipped_pages: List[int] = []
    backup_path: Optional[str] = None


class CancelOut(BaseModel):
    cancelled: bool

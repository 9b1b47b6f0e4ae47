"""Sync routes."""

from fastapi import APIRouter, Query, Request

from kiosk.api.deps import Controller
from kiosk.core.rate_limit import limiter
from kiosk.schemas.sync import CancelOut, SyncProgressOut, SyncReportOut

router = APIRouter()


@router.post("", response_model=SyncReportOut)
@limiter.limit("10/minute")
async def run_sync(
    request: Request,
    controller: Controller,
    force: bool = Query(False, description="Ignore the minimum interval between runs"),
):
    """Run a sync pass and return its report once it finishes."""
    controller.refresh_active_meal()
    report = await controller.sync(force=force)
    return report.to_dict()


@router.get("/progress", response_model=SyncProgressOut)
def sync_progress(controller: Controller):
    return controller.progress.current.to_dict()


@router.post("/cancel", response_model=CancelOut)
def cancel_sync(controller: Controller):
    return {"cancelled": controller.cancel_sync()}

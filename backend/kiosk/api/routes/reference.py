"""Roster and period routes."""

from fastapi import APIRouter, Query

from kiosk.api.deps import Controller
from kiosk.schemas.config import CurrentPeriodOut, RosterRefreshOut

roster_router = APIRouter()
period_router = APIRouter()


@roster_router.post("/refresh", response_model=RosterRefreshOut)
async def refresh_roster(
    controller: Controller,
    force_local: bool = Query(False, description="Reload from the local store only"),
):
    users = await controller.refresh_roster(force_local=force_local)
    return {"users": len(users)}


def _current_period(controller) -> dict:
    state = controller.state
    return {
        "period": state.period,
        "meal_links": state.links,
        "active_meal": state.active_meal,
    }


@period_router.post("/refresh", response_model=CurrentPeriodOut)
async def refresh_period(
    controller: Controller,
    force_local: bool = Query(False, description="Reload from the local store only"),
):
    await controller.refresh_period(force_local=force_local)
    return _current_period(controller)


@period_router.get("/current", response_model=CurrentPeriodOut)
def current_period(controller: Controller):
    """Cached period with its meals and the meal being served now."""
    controller.refresh_active_meal()
    return _current_period(controller)

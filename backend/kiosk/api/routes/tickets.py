"""Ticket routes: issuance at the keypad and local ticket listings."""

from typing import List

from fastapi import APIRouter, Query, Request

from kiosk.api.deps import Controller
from kiosk.core.rate_limit import limiter
from kiosk.schemas.ticket import (
    IssueRequest,
    IssueResponse,
    RecentTicketOut,
    TicketOut,
    TicketStatsOut,
)

router = APIRouter()


@router.post("/issue", response_model=IssueResponse)
@limiter.limit("120/minute")
def issue_ticket(request: Request, body: IssueRequest, controller: Controller):
    """Issue a ticket for a keypad code.

    Refusals (unknown code, no active meal, ...) come back as errors with the
    operator message; a code that already holds today's ticket is a success
    with status ``already_issued``.
    """
    result = controller.issue_ticket(body.code)
    return IssueResponse(
        status=result.status.value,
        message=result.message,
        user_name=result.user.full_name,
        code=result.user.code,
        meal_name=result.meal.name,
        ticket=TicketOut.model_validate(result.ticket) if result.ticket is not None else None,
    )


@router.get("", response_model=List[TicketOut])
def list_tickets(controller: Controller):
    return controller.store.get_tickets()


@router.get("/recent", response_model=List[RecentTicketOut])
def recent_tickets(controller: Controller, limit: int = Query(10, ge=1, le=100)):
    return controller.store.get_recent_tickets(limit=limit)


@router.get("/stats", response_model=TicketStatsOut)
def ticket_stats(controller: Controller):
    """Counts for the current period and active meal."""
    controller.refresh_active_meal()
    return controller.refresh_stats().to_dict()

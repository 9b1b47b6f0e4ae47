"""API routes."""

from fastapi import APIRouter

from kiosk.api.routes import reference, sync, system, tickets

api_router = APIRouter()

api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(reference.roster_router, prefix="/roster", tags=["roster"])
api_router.include_router(reference.period_router, prefix="/period", tags=["period"])
api_router.include_router(system.config_router, prefix="/config", tags=["config"])
api_router.include_router(system.router, tags=["system"])

"""Remote URL configuration, connectivity reports and state snapshot."""

from fastapi import APIRouter

from kiosk.api.deps import Controller
from kiosk.core.config import settings
from kiosk.schemas.config import ApiUrlOut, ApiUrlUpdate, ConnectivityUpdate, StateOut

config_router = APIRouter()
router = APIRouter()


def _api_url(url: str) -> dict:
    return {"api_url": url, "is_default": url == settings.default_api_url}


@config_router.get("/api-url", response_model=ApiUrlOut)
def get_api_url(controller: Controller):
    return _api_url(controller.get_api_url())


@config_router.put("/api-url", response_model=ApiUrlOut)
def set_api_url(body: ApiUrlUpdate, controller: Controller):
    return _api_url(controller.set_api_url(body.api_url))


@config_router.delete("/api-url", response_model=ApiUrlOut)
def reset_api_url(controller: Controller):
    return _api_url(controller.reset_api_url())


@router.put("/connectivity", response_model=StateOut)
def report_connectivity(body: ConnectivityUpdate, controller: Controller):
    """Called by the platform network listener on every change."""
    controller.set_online(body.online)
    return controller.state.to_dict()


@router.get("/state", response_model=StateOut)
def get_state(controller: Controller):
    controller.refresh_active_meal()
    return controller.state.to_dict()

"""Request dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from kiosk.services.controller import AppController


def get_controller(request: Request) -> AppController:
    """The controller created by the application lifespan."""
    return request.app.state.controller


Controller = Annotated[AppController, Depends(get_controller)]

"""FastAPI application entry point for the kiosk's local API."""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from kiosk import __version__
from kiosk.api.routes import api_router
from kiosk.core.config import settings
from kiosk.core.exceptions import KioskError, RemoteBusinessError
from kiosk.core.rate_limit import limiter
from kiosk.services.controller import AppController
from kiosk.services.local_store import LocalStore

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:

    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)


def create_controller() -> AppController:
    return AppController(LocalStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting meal ticket kiosk")

    controller = getattr(app.state, "controller", None)
    if controller is None:
        controller = create_controller()
        app.state.controller = controller
    await controller.initialize()

    sync_task = None
    if settings.sync_interval_seconds > 0:
        sync_task = asyncio.create_task(controller.run_periodic_sync(settings.sync_interval_seconds))
        logger.info(f"Periodic sync started (every {settings.sync_interval_seconds}s)")

    yield

    if sync_task is not None:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass

    controller.store.close()
    logger.info("Shutting down meal ticket kiosk")


app = FastAPI(
    title="Meal Ticket Kiosk",
    description="Local API of the offline-first meal ticket kiosk",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(KioskError)
async def kiosk_error_handler(request: Request, exc: KioskError):
    content = {"detail": exc.message, "speech": exc.speech, "error": type(exc).__name__}
    if isinstance(exc, RemoteBusinessError):
        content["code"] = exc.error_code
    return JSONResponse(status_code=exc.status_code, content=content)


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check(request: Request):
    """Basic liveness check endpoint."""
    controller = getattr(request.app.state, "controller", None)
    return {
        "status": "healthy",
        "version": __version__,
        "initialized": bool(controller and controller.state.initialized),
    }

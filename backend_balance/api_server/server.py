"""
FastAPI server for the balance engine.

Routes delegate to one app-scoped BalanceService created in the lifespan. When
SCHEDULER_ENABLED is true the lifespan also starts the periodic task threads and
stops them on shutdown. Engine errors map to HTTP status codes in one place:
not found 404, invalid state 400, write conflict 409, database failure 503.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from backend_balance import __version__
from backend_balance.api_server.admin_api import router as admin_router
from backend_balance.api_server.balance_api import router as balance_router
from backend_balance.api_server.community_api import messages_router
from backend_balance.api_server.community_api import router as community_router
from backend_balance.balance_logging import get_logger
from backend_balance.config.settings import Settings, get_settings
from backend_balance.core.exceptions import (
    BalanceEngineError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
)
from backend_balance.scheduler.engine import create_scheduler
from backend_balance.service import BalanceService

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Lifespan: service + background scheduler (never blocks the API)
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service (unless one was injected) and start the scheduler when enabled."""
    settings: Settings = app.state.settings or get_settings()
    app.state.settings = settings
    owns_service = app.state.service is None
    if owns_service:
        app.state.service = BalanceService.from_settings(settings)
    service: BalanceService = app.state.service

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = create_scheduler(service, settings)
        scheduler.start()
        logger.info("api_scheduler_started", tasks=len(scheduler.tasks))

    yield

    if scheduler is not None:
        scheduler.stop()
    if owns_service:
        service.close()
        app.state.service = None
    logger.info("api_shutdown_complete")


# -----------------------------------------------------------------------------
# Error mapping
# -----------------------------------------------------------------------------


def _error_response(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})


def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc, exc.code)


def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    return _error_response(400, exc, exc.code)


def conflict_handler(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
    logger.warning("api_write_conflict", path=request.url.path, error=str(exc))
    return _error_response(409, exc, exc.code)


def engine_error_handler(request: Request, exc: BalanceEngineError) -> JSONResponse:
    return _error_response(400, exc, exc.code)


def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("api_database_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable", "code": "database_unavailable"},
    )


def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------


def create_app(settings: Settings | None = None, service: BalanceService | None = None) -> FastAPI:
    """
    Build the ASGI app. settings default to get_settings() at startup; an injected
    service is used as-is and not closed on shutdown.
    """
    app = FastAPI(
        title="Backend Balance API",
        description="Freedom/security balance, ledger history and community rules.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    app.include_router(balance_router, prefix="/api")
    app.include_router(community_router, prefix="/api")
    app.include_router(messages_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(InvalidStateError, invalid_state_handler)
    app.add_exception_handler(ConcurrentModificationError, conflict_handler)
    app.add_exception_handler(BalanceEngineError, engine_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness check: API is up."""
        return {"status": "ok"}

    return app


app = create_app()

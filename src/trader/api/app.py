"""FastAPI application factory for the alert webhook and tick endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from trader.api import routes
from trader.exceptions import (
    ConfigurationError,
    InvalidAlertError,
    StrategyNotFound,
    WebhookSecretMismatch,
)

if TYPE_CHECKING:
    from trader.orchestrator import TriggerOrchestrator

log = structlog.get_logger(__name__)

#: HTTP status for each client-visible pipeline error.
_ERROR_STATUS: dict[type[Exception], int] = {
    StrategyNotFound: 404,
    WebhookSecretMismatch: 401,
    ConfigurationError: 400,
    InvalidAlertError: 400,
}


def _error_handler(status_code: int):  # type: ignore[no-untyped-def]
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        log.info(
            "request_rejected",
            path=request.url.path,
            status_code=status_code,
            error=str(exc),
        )
        return JSONResponse({"success": False, "error": str(exc)}, status_code=status_code)

    return handler


async def _validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors(include_url=False)
    ]
    return JSONResponse(
        {"success": False, "error": "Invalid alert payload", "detail": errors},
        status_code=422,
    )


def create_app(orchestrator: TriggerOrchestrator | None = None, lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Orchestrator serving the routes. main.py sets it on
            app.state from its lifespan instead when omitted.
        lifespan: Optional async context manager for startup/shutdown.

    Returns:
        Configured FastAPI application with routes under /api.
    """
    app = FastAPI(title="Signal-to-Settlement Trader", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    for exc_type, status_code in _ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _error_handler(status_code))
    app.add_exception_handler(ValidationError, _validation_handler)  # type: ignore[arg-type]

    app.include_router(routes.router, prefix="/api")
    return app

"""Router error hierarchy and the FastAPI handlers that render it.

Attempt-level errors (``StrategyTimeoutError``, ``StrategyExecutionError``)
are absorbed by the router into recorded attempts. Callers only ever see
``AllStrategiesExhaustedError`` (via ``RouteResult.raise_for_failure``),
``ResourcePoolExhaustedError`` from the pool, ``StrategyNotFoundError`` from
the implementation registry and ``ConfigurationError`` at startup.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class RouterError(Exception):
    """Base class; ``details`` keyword arguments become the envelope's ``meta``."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **details: object) -> None:
        self.message = message or type(self).message
        self.details = details
        super().__init__(self.message)


class ConfigurationError(RouterError):
    message = "Invalid route configuration"


class StrategyTimeoutError(RouterError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    message = "Strategy attempt timed out"


class StrategyExecutionError(RouterError):
    """A strategy implementation failed.

    ``upstream_status`` is the HTTP status the target (or unblocking
    service) answered with, when the implementation got that far.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Strategy execution failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream_status: int | None = None,
        **details: object,
    ) -> None:
        super().__init__(message, **details)
        self.upstream_status = upstream_status


class StrategyNotFoundError(RouterError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Strategy not found"


class AllStrategiesExhaustedError(RouterError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "All strategies exhausted"


class ResourcePoolExhaustedError(RouterError):
    """Raised by ``ProxyPoolManager.require_next`` after the reset path fails."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "No usable proxy endpoints available"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: str, meta: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": None, "error": error, "meta": meta or None},
    )


async def _handle_router_error(_request: Request, exc: RouterError) -> JSONResponse:
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s: %s", type(exc).__name__, exc.message)
    return _error_response(exc.status_code, exc.message, exc.details)


async def _handle_validation_error(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", {"fields": fields}
    )


async def _handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on *app*."""
    app.add_exception_handler(RouterError, _handle_router_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected)

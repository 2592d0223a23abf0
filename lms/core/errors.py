"""
Central error handling for the leave management backend
"""
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException

from lms.core.config import settings
from lms.core.exceptions import LeaveEngineError

logger = logging.getLogger(__name__)


def _envelope(request: Request, status_code: int, detail, error_code: str = None, details=None) -> dict:
    return {
        "error": True,
        "status_code": status_code,
        "error_code": error_code,
        "detail": detail,
        "details": details,
        "path": str(request.url.path),
    }


async def app_exception_handler(request: Request, exc: LeaveEngineError) -> JSONResponse:
    """
    Render a domain error raised by the leave engine

    Args:
        request: FastAPI request object
        exc: LeaveEngineError instance

    Returns:
        JSONResponse with error_code and optional structured details
    """
    if exc.status_code >= 500:
        logger.error("Leave engine error: %s (%s)", exc.message, exc.error_code)
    else:
        logger.warning("Refused request %s: %s (%s)", request.url.path, exc.message, exc.error_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.status_code, exc.message, exc.error_code, exc.details),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTPException with consistent JSON response format

    Args:
        request: FastAPI request object
        exc: HTTPException instance

    Returns:
        JSONResponse with error details
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.status_code, exc.detail, "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle RequestValidationError with consistent JSON response format

    Does not leak internal validation details in production.
    """
    if settings.APP_ENV == "prod":
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_envelope(request, 422, "Validation error: Invalid request data", "VALIDATION_ERROR"),
        )

    # ctx may hold the raised ValueError itself; stringify anything not JSON-native
    errors = []
    for e in exc.errors():
        err = dict(e)
        if "ctx" in err and isinstance(err["ctx"], dict):
            err["ctx"] = {
                k: (str(v) if not isinstance(v, (str, int, float, bool, type(None))) else v)
                for k, v in err["ctx"].items()
            }
        errors.append(err)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(request, 422, "Validation error", "VALIDATION_ERROR", {"errors": errors}),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with consistent JSON response format

    Does not leak internal error details in production.
    """
    logger.error("Unhandled exception: %s", exc, exc_info=True)

    detail = "Internal server error" if settings.APP_ENV == "prod" else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request, 500, detail, "INTERNAL_ERROR"),
    )

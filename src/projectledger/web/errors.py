"""Map service exceptions onto HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from projectledger.exceptions import (
    CompensationFailure,
    ConflictError,
    DependencyFailure,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from projectledger.logging import get_logger

logger = get_logger(__name__)

STATUS_BY_ERROR: list[tuple[type[LedgerError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (DependencyFailure, 502),
    (CompensationFailure, 500),
]


def error_status(exc: LedgerError) -> int:
    """HTTP status for a service exception."""
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    """Install a single handler for the LedgerError hierarchy."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error_code=exc.code,
                error=str(exc),
            )
        body = {"error": exc.code, "detail": str(exc)}
        field = getattr(exc, "field", None)
        if field:
            body["field"] = field
        return JSONResponse(status_code=status_code, content=body)

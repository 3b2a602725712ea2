from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse


class LedgerError(RuntimeError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    status_code = 404


class ForbiddenError(LedgerError):
    status_code = 403


class ConflictError(LedgerError):
    status_code = 409


class ValidationError(LedgerError):
    status_code = 400


class UpstreamPaymentError(LedgerError):
    """A Stripe or PayMongo call failed or returned an unusable payload."""

    status_code = 502


async def _ledger_error_handler(request: Request, exc: LedgerError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, _ledger_error_handler)

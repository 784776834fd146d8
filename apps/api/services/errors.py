"""Error taxonomy shared by the ledger, unlock, bucket and search services.

Each error is an HTTPException so routers can let it propagate untouched; the
structured ``detail`` tells the caller whether retrying makes sense.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ServiceError(HTTPException):
    status_code = 400
    code = "error"
    retriable = False

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        detail = {
            "code": self.code,
            "message": message,
            "retriable": self.retriable,
            **context,
        }
        super().__init__(status_code=self.status_code, detail=detail)


class InsufficientCreditsError(ServiceError):
    status_code = 402
    code = "insufficient_credits"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Top up credits to continue.",
            required=required,
            available=available,
        )


class ResumeLockedError(ServiceError):
    status_code = 403
    code = "locked"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"


class ValidationFailedError(ServiceError):
    status_code = 422
    code = "validation_error"


class TransientStoreError(ServiceError):
    status_code = 503
    code = "transient_store_error"
    retriable = True

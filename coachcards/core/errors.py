"""
Custom exception hierarchy for the coaching service.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

The insights engine itself never raises for data conditions (unknown child,
thin data, stale evidence); these errors belong to the HTTP and record
ingest layers only.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class CoachCardsError(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ChildNotFoundError(CoachCardsError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "CHILD_NOT_FOUND"

    def __init__(self, child_id: str):
        super().__init__(
            message=f"Child {child_id} does not exist.",
            details={"child_id": child_id},
        )


class BehaviorNotFoundError(CoachCardsError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "BEHAVIOR_NOT_FOUND"

    def __init__(self, behavior_id: str):
        super().__init__(
            message=f"Behavior type {behavior_id} does not exist.",
            details={"behavior_id": behavior_id},
        )


class RecordAlreadyExistsError(CoachCardsError):
    http_status = status.HTTP_409_CONFLICT
    code = "RECORD_EXISTS"

    def __init__(self, kind: str, record_id: str):
        super().__init__(
            message=f"A {kind} with id {record_id} already exists.",
            details={"kind": kind, "id": record_id},
        )


class BatchTooLargeError(CoachCardsError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "BATCH_TOO_LARGE"

    def __init__(self, max_items: int, received: int):
        super().__init__(
            message=f"Batch exceeds maximum size of {max_items} items. Received {received}.",
            details={"max_items": max_items, "received": received},
        )


class EmptyBatchError(CoachCardsError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "EMPTY_BATCH"

    def __init__(self):
        super().__init__(message="Batch must contain at least one item.")


class TimestampOutOfRangeError(CoachCardsError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "TIMESTAMP_OUT_OF_RANGE"

    def __init__(self, field: str, reason: str):
        super().__init__(
            message=f"{field}: {reason}",
            details={"field": field},
        )


class RecordIngestionError(CoachCardsError):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INGESTION_ERROR"

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(
            message=message,
            details={"id": record_id} if record_id else {},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def coachcards_exception_handler(request: Request, exc: CoachCardsError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )

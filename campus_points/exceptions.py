"""
Custom exception classes and FastAPI exception handlers.

The ledger services raise domain-specific errors without importing HTTP
concepts. The handler layer then translates these into HTTP responses, so:
    - Service code is testable without HTTP
    - Error responses are consistent across all endpoints

Exception hierarchy:
    PointsAPIError (base)
    ├── InvalidInputError        — malformed or out-of-range payload
    │   └── InsufficientPointsError — balance too low for transfer/redemption
    ├── NotFoundError            — referenced user/transaction/promotion/event missing
    ├── InvalidStateError        — operation not allowed given current data
    └── ForbiddenError           — actor lacks the required role or standing

Store failures (SQLAlchemyError) are not wrapped; a catch-all handler
reports them as a generic 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class PointsAPIError(Exception):
    """Base exception for all Campus Points domain errors."""

    error_type = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class InvalidInputError(PointsAPIError):
    """Raised when a payload is malformed or a value is out of range."""

    error_type = "invalid_input"


class InsufficientPointsError(InvalidInputError):
    """
    Raised when an operation would take a user's balance below zero.

    Attributes:
        user_id: The user who lacks points.
        requested: The number of points the operation needs.
        available: The user's current balance.
    """

    error_type = "insufficient_points"

    def __init__(self, user_id: int, requested: int, available: int):
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient points: requested {requested}, available {available}"
        )


class NotFoundError(PointsAPIError):
    """Raised when a referenced entity does not exist."""

    error_type = "not_found"

    def __init__(self, entity: str, key=None):
        self.entity = entity
        self.key = key
        if key is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {key} not found")


class InvalidStateError(PointsAPIError):
    """Raised when current data state does not permit the operation."""

    error_type = "invalid_state"


class ForbiddenError(PointsAPIError):
    """Raised when the actor lacks the role or standing for an operation."""

    error_type = "forbidden"

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and a
    consistent JSON body: {"detail": "...", "error_type": "..."}

    This is called once during app startup in main.py.
    """

    @app.exception_handler(InsufficientPointsError)
    async def insufficient_points_handler(
        request: Request, exc: InsufficientPointsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": exc.detail,
                "error_type": exc.error_type,
                "requested": exc.requested,
                "available": exc.available,
            },
        )

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(
        request: Request, exc: InvalidInputError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(
        request: Request, exc: NotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(
        request: Request, exc: ForbiddenError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=403,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(SQLAlchemyError)
    async def store_failure_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        logger.exception("Store failure on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

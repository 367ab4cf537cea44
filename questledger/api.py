"""
Central API router and utilities for the Quest Ledger service.

This module provides:
- A central router that module routers are registered with
- The standard response envelope
- Exception handlers mapping ledger errors to HTTP responses
"""

import logging
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Dict, Any, Optional

from questledger.common.exceptions import (
    InconsistentState, LedgerError, StorageUnavailable, ValidationError
)

# Configure logging
logger = logging.getLogger(__name__)

# Create main API router
main_router = APIRouter()

# Dictionary to track registered modules
registered_modules: Dict[str, APIRouter] = {}


def register_module(name: str, router: APIRouter) -> None:
    """
    Register a module router with the main API router.

    Args:
        name: Name of the module, used as its path segment and tag
        router: FastAPI router for the module
    """
    if name in registered_modules:
        logger.warning(f"Module '{name}' already registered, overwriting")

    main_router.include_router(
        router,
        prefix=f"/{name}",
        tags=[name]
    )

    registered_modules[name] = router
    logger.info(f"Registered module: {name} with {len(router.routes)} routes")


# Common validation error handler
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors and return a standardized response.

    Args:
        request: The incoming request
        exc: The validation exception

    Returns:
        A JSON response with error details
    """
    error_details = []
    for error in exc.errors():
        error_details.append({
            "location": error.get("loc", []),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=APIResponse.error("Validation error", details=error_details)
    )


async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """
    Map ledger errors to HTTP responses.

    Malformed events are 422, storage outages are 503 with a retry hint,
    and a diverged summary is 409.
    """
    if isinstance(exc, ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=APIResponse.error(exc.message, details=exc.errors, code="invalid_event")
        )

    if isinstance(exc, StorageUnavailable):
        logger.warning(f"Storage unavailable for {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=APIResponse.error(
                exc.message,
                details={"outcome_unknown": exc.outcome_unknown, "retry_with_same_ids": True},
                code="storage_unavailable"
            ),
            headers={"Retry-After": "1"}
        )

    if isinstance(exc, InconsistentState):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=APIResponse.error(
                exc.message,
                details={key: list(value) for key, value in exc.differences.items()},
                code="inconsistent_state"
            )
        )

    logger.error(f"Unhandled ledger error: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=APIResponse.error(exc.message, code="ledger_error")
    )


# Standard API response model
class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """
        Create a success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Response dictionary
        """
        return {
            "status": "success",
            "message": message,
            "data": data
        }

    @staticmethod
    def error(message: str, details: Optional[Any] = None,
              code: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an error response.

        Args:
            message: Error message
            details: Optional error details
            code: Optional error code

        Returns:
            Response dictionary
        """
        response = {
            "status": "error",
            "message": message
        }

        if details:
            response["details"] = details

        if code:
            response["code"] = code

        return response

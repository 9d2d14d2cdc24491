"""Standardized error handling and response schemas for the REST API.

This module provides consistent error handling across all API endpoints with:
- Standardized error response format
- Type-safe error codes (Enum)
- Error raiser functions used by routes to translate domain exceptions
- Global exception handlers for FastAPI

Error Response Format:
    All errors return JSON with this structure:
    {
        "code": "CAMERA_BUSY",
        "message": "Camera 1 is already in use by: alice",
        "details": {"camId": "1", "heldBy": "alice"}
    }

Error Categories:
    - Request errors: VALIDATION_ERROR (400)
    - Resource errors: NOT_FOUND (404), RANGE_NOT_SATISFIABLE (416)
    - State errors: CAMERA_BUSY (409)
    - Capacity errors: INSUFFICIENT_STORAGE (507)
    - Process errors: PROCESS_SPAWN_FAILED, STOP_FAILED (500)
    - System errors: INTERNAL_ERROR (500), SERVICE_UNAVAILABLE (503)

Logging Strategy:
    DEBUG - Error creation
    INFO  - Client errors (4xx)
    WARN  - Validation errors, storage rejections
    ERROR - Server errors (5xx), unexpected exceptions
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, NoReturn, Optional

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..services.exceptions import (
    CameraBusy,
    InsufficientDiskSpace,
    RangeNotSatisfiable,
)

logger = logging.getLogger(__name__)

HTTP_416_RANGE_NOT_SATISFIABLE = 416
HTTP_507_INSUFFICIENT_STORAGE = 507

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors.

    Attributes:
        code: Machine-readable error code (from ErrorCode enum)
        message: Human-readable error message for display
        details: Optional additional context
    """

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "INSUFFICIENT_STORAGE",
                    "message": "Insufficient disk space: 12.40 GB free (at least 20 GB required)",
                    "details": {"freeGB": 12.4, "minFreeGB": 20.0},
                }
            ]
        }
    }


# ============================================================================
# Error Codes Enum
# ============================================================================

class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"

    NOT_FOUND = "NOT_FOUND"
    RANGE_NOT_SATISFIABLE = "RANGE_NOT_SATISFIABLE"

    CAMERA_BUSY = "CAMERA_BUSY"
    INSUFFICIENT_STORAGE = "INSUFFICIENT_STORAGE"

    PROCESS_SPAWN_FAILED = "PROCESS_SPAWN_FAILED"
    STOP_FAILED = "STOP_FAILED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response.

    Example:
        >>> error = create_error_response(ErrorCode.NOT_FOUND, "File not found")
    """
    code_str = code.value if isinstance(code, ErrorCode) else code
    logger.debug(f"Creating error response: code={code_str}, message={message}")
    return ErrorResponse(code=code_str, message=message, details=details)


def _raise(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> NoReturn:
    error = create_error_response(code=code, message=message, details=details)
    raise HTTPException(status_code=status_code, detail=error.model_dump(), headers=headers)


# ============================================================================
# Specialized Error Raisers
# ============================================================================

def raise_validation_error(message: str, details: Optional[dict[str, Any]] = None) -> NoReturn:
    """Raise a standardized 400 error for missing or invalid request fields."""
    logger.debug(f"Validation error: {message}, details={details}")
    _raise(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, message, details)


def raise_not_found(resource: str, resource_id: str) -> NoReturn:
    logger.debug(f"Resource not found: {resource} with id={resource_id}")
    _raise(
        status.HTTP_404_NOT_FOUND,
        ErrorCode.NOT_FOUND,
        f"{resource.capitalize()} not found",
        {"resource": resource, "id": resource_id},
    )


def raise_camera_busy(exc: CameraBusy) -> NoReturn:
    _raise(
        status.HTTP_409_CONFLICT,
        ErrorCode.CAMERA_BUSY,
        str(exc),
        {"camId": exc.cam_id, "heldBy": exc.held_by},
    )


def raise_insufficient_storage(exc: Exception) -> NoReturn:
    """Raise 507 for a refused admission.

    ``InsufficientDiskSpace`` carries the measured and required space;
    a failed disk query has no numbers.
    """
    details = None
    if isinstance(exc, InsufficientDiskSpace):
        details = {"freeGB": round(exc.free_gb, 2), "minFreeGB": exc.threshold_gb}
    logger.warning(f"Recording refused: {exc}")
    _raise(HTTP_507_INSUFFICIENT_STORAGE, ErrorCode.INSUFFICIENT_STORAGE, str(exc), details)


def raise_range_not_satisfiable(exc: RangeNotSatisfiable) -> NoReturn:
    _raise(
        HTTP_416_RANGE_NOT_SATISFIABLE,
        ErrorCode.RANGE_NOT_SATISFIABLE,
        "Requested range not satisfiable",
        {"range": exc.range_header, "size": exc.file_size},
        headers={"Content-Range": f"bytes */{exc.file_size}"},
    )


def raise_process_error(code: ErrorCode, message: str, error: Exception) -> NoReturn:
    """Raise 500 for an encoder that could not be started or stopped."""
    _raise(status.HTTP_500_INTERNAL_SERVER_ERROR, code, message, {"error": str(error)})


def raise_service_unavailable(message: str) -> NoReturn:
    _raise(status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.SERVICE_UNAVAILABLE, message)


# ============================================================================
# Global Exception Handlers
# ============================================================================

async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors (malformed JSON, wrong types) as 400."""
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({len(errors)} error(s))"
    )
    logger.debug(f"Validation errors: {errors}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": errors},
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error.model_dump())


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTPException with standardized format.

    Pre-formatted details pass through; plain ones are wrapped. Headers set
    on the exception (e.g. Content-Range on 416) are kept.
    """
    if exc.status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )

    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=headers)

    code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.INTERNAL_ERROR
    error = create_error_response(
        code=code,
        message=str(exc.detail) if exc.detail else "An error occurred",
    )
    return JSONResponse(status_code=exc.status_code, content=error.model_dump(), headers=headers)


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions; the stack trace is logged, not returned."""
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {exc}",
        exc_info=exc
    )
    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal server error occurred",
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error.model_dump())

"""
Unified error handling
Standard error response format and FastAPI exception handlers

Main features:
- one JSON error envelope for every failure
- error code to HTTP status mapping
- logging of unexpected errors to the process log and the logs table
"""

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

import duckdb
from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .database import DatabaseManager, db_manager
from .exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


class ErrorResponse:
    """Standard error response"""

    def __init__(self, error_code: str, message: str,
                 details: Optional[Dict[str, Any]] = None,
                 http_status: int = 400):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.http_status,
            content=jsonable_encoder(self.to_dict())
        )


class ErrorHandler:
    """Global error handler"""

    # error code -> HTTP status
    ERROR_CODE_STATUS_MAP = {
        "BAD_REQUEST": 400,
        "VALIDATION_ERROR": 400,
        "AUTHENTICATION_REQUIRED": 401,
        "PERMISSION_DENIED": 403,
        "RESOURCE_NOT_FOUND": 404,
        "DUPLICATE_RESOURCE": 409,
        "INTERNAL_ERROR": 500,

        # accounts
        "USER_NOT_FOUND": 404,
        "ACCOUNT_INACTIVE": 403,
        "INSUFFICIENT_BALANCE": 400,
        "TRANSACTION_NOT_FOUND": 404,

        # meal schedules
        "MEAL_NOT_FOUND": 404,
        "DUPLICATE_SCHEDULE": 409,
        "MEAL_ALREADY_CANCELLED": 400,
        "MEAL_STATUS_TRANSITION_INVALID": 400,
        "OUTSIDE_TIME_WINDOW": 400,

        # storage
        "CONSTRAINT_VIOLATION": 500,
        "CONCURRENCY_CONFLICT": 409,
    }

    @classmethod
    def handle_application_error(cls, error: BaseApplicationError) -> ErrorResponse:
        http_status = cls.ERROR_CODE_STATUS_MAP.get(error.error_code, 400)
        if http_status >= 500:
            logger.error("%s: %s", error.error_code, error.message)

        return ErrorResponse(
            error_code=error.error_code,
            message=error.message,
            details=error.details,
            http_status=http_status
        )

    @classmethod
    def handle_http_exception(cls, error: HTTPException) -> ErrorResponse:
        return ErrorResponse(
            error_code="HTTP_ERROR",
            message=str(error.detail),
            details={"status_code": error.status_code},
            http_status=error.status_code
        )

    @classmethod
    def handle_validation_error(cls, error: Exception) -> ErrorResponse:
        """Request body/query validation failure"""
        errors = error.errors() if hasattr(error, "errors") else str(error)
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed",
            details={"validation_errors": errors},
            http_status=422
        )

    @classmethod
    def handle_unknown_error(cls, error: Exception, db: Optional[DatabaseManager] = None) -> ErrorResponse:
        error_details = {
            "type": type(error).__name__,
            "message": str(error),
            "traceback": traceback.format_exc()
        }
        logger.error("Unhandled %s: %s", error_details["type"], error, exc_info=error)
        cls._log_system_error(error_details, db or db_manager)

        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="Internal server error",
            details={"error_type": type(error).__name__},
            http_status=500
        )

    @classmethod
    def _log_system_error(cls, error_details: Dict[str, Any], db: DatabaseManager):
        """Record the error in the logs table"""
        try:
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO logs(user_id, actor_id, action, detail_json, created_at) VALUES (?,?,?,?,?)",
                    [None, None, "system_error", json.dumps(error_details), datetime.now()]
                )
        except (BaseApplicationError, duckdb.Error) as e:
            logger.error("Failed to write system_error log row: %s", e)


async def application_error_handler(request: Request, exc: BaseApplicationError) -> JSONResponse:
    return ErrorHandler.handle_application_error(exc).to_json_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return ErrorHandler.handle_http_exception(exc).to_json_response()


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return ErrorHandler.handle_validation_error(exc).to_json_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    db = getattr(request.app.state, "db", None)
    return ErrorHandler.handle_unknown_error(exc, db).to_json_response()


def create_success_response(data: Any = None, message: str = "OK") -> Dict[str, Any]:
    """Standard success envelope"""
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = jsonable_encoder(data)

    return response

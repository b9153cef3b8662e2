"""
Error Handling Module for the Payroll Engine

This module provides centralized error handling with:
- Custom exception hierarchy mirroring the payroll error families
  (validation, configuration, state, calculation, dependency)
- Standardized error responses
- Error logging and tracking
- Database error mapping
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("payroll_engine.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_FREQUENCY = "INVALID_FREQUENCY"

    # Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Resource Errors (404)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    DEPARTMENT_NOT_FOUND = "DEPARTMENT_NOT_FOUND"
    PAYROLL_NOT_FOUND = "PAYROLL_NOT_FOUND"

    # Configuration Errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NO_GRADE_ASSIGNED = "NO_GRADE_ASSIGNED"
    NO_ACTIVE_GRADE_FOR_LEVEL = "NO_ACTIVE_GRADE_FOR_LEVEL"
    MISSING_DEDUCTION_CONFIGURATION = "MISSING_DEDUCTION_CONFIGURATION"

    # State Errors (409)
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATUS = "INVALID_STATUS"
    DUPLICATE_PERIOD = "DUPLICATE_PERIOD"
    RECORD_IMMUTABLE = "RECORD_IMMUTABLE"

    # Calculation Errors (422)
    CALCULATION_ERROR = "CALCULATION_ERROR"

    # External Service Errors (502)
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Malformed input, rejected before any side effect"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidPeriodException(ValidationException):
    """Missing or out of range month/year"""

    def __init__(self, month: Any, year: Any):
        super().__init__(
            message=f"Invalid payroll period: month={month}, year={year}",
            field="period",
            code=ErrorCode.INVALID_PERIOD,
            details={"month": month, "year": year},
        )


class InvalidFrequencyException(ValidationException):
    """Unknown pay frequency"""

    def __init__(self, frequency: Any, allowed: list):
        super().__init__(
            message=f"Invalid pay frequency: {frequency}",
            field="frequency",
            code=ErrorCode.INVALID_FREQUENCY,
            details={"provided": str(frequency), "allowed": allowed},
        )


# ============================================================================
# Authorization Exceptions
# ============================================================================

class PermissionDeniedException(AppException):
    """Actor lacks the permission required for an operation"""

    def __init__(self, required_permission: str, actor_id: Optional[Union[str, UUID]] = None):
        details = {"required_permission": required_permission}
        if actor_id:
            details["actor_id"] = str(actor_id)
        super().__init__(
            code=ErrorCode.PERMISSION_DENIED,
            message=f"Insufficient permissions. Required: {required_permission}",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class PayrollNotFoundException(NotFoundException):
    """Payroll record not found"""

    def __init__(self, payroll_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayrollRecord",
            resource_id=payroll_id,
            code=ErrorCode.PAYROLL_NOT_FOUND,
        )


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationException(AppException):
    """
    Payroll configuration is missing or inconsistent for an employee.

    Recoverable per employee inside a batch; fatal for a single-employee call.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details,
        )


class EmployeeNotFoundException(ConfigurationException):
    """Employee does not exist"""

    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            message=f"Employee with ID '{employee_id}' not found",
            code=ErrorCode.EMPLOYEE_NOT_FOUND,
            details={"employee_id": str(employee_id)},
            status_code=status.HTTP_404_NOT_FOUND,
        )


class DepartmentNotFoundException(ConfigurationException):
    """Department does not exist"""

    def __init__(self, department_id: Union[str, UUID]):
        super().__init__(
            message=f"Department with ID '{department_id}' not found",
            code=ErrorCode.DEPARTMENT_NOT_FOUND,
            details={"department_id": str(department_id)},
            status_code=status.HTTP_404_NOT_FOUND,
        )


class NoGradeAssignedException(ConfigurationException):
    """Employee has no grade level"""

    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            message=f"Employee '{employee_id}' has no grade level assigned",
            code=ErrorCode.NO_GRADE_ASSIGNED,
            details={"employee_id": str(employee_id)},
        )


class NoActiveGradeForLevelException(ConfigurationException):
    """No active salary grade matches the level"""

    def __init__(self, grade_level: str):
        super().__init__(
            message=f"No active salary grade found for level '{grade_level}'",
            code=ErrorCode.NO_ACTIVE_GRADE_FOR_LEVEL,
            details={"grade_level": grade_level},
        )


class MissingDeductionConfigurationException(ConfigurationException):
    """Deduction is missing data needed to compute it"""

    def __init__(self, deduction_name: str, missing: str):
        super().__init__(
            message=f"Deduction '{deduction_name}' is missing {missing}",
            code=ErrorCode.MISSING_DEDUCTION_CONFIGURATION,
            details={"deduction": deduction_name, "missing": missing},
        )


# ============================================================================
# State Exceptions
# ============================================================================

class StateException(AppException):
    """Operation conflicts with the current record state. Never retried."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class InvalidTransitionException(StateException):
    """Transition not allowed from the current state"""

    def __init__(self, current: str, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(
            message=f"Cannot transition payroll from '{current}' to '{attempted}'",
            code=ErrorCode.INVALID_TRANSITION,
            details={"current_status": current, "attempted_status": attempted},
        )


class InvalidStatusException(StateException):
    """Operation requires the record to be in another status"""

    def __init__(self, current: str, required: list, operation: str):
        super().__init__(
            message=f"Cannot {operation} payroll in status '{current}'. Required: {', '.join(required)}",
            code=ErrorCode.INVALID_STATUS,
            details={"current_status": current, "required_status": required, "operation": operation},
        )


class DuplicatePeriodException(StateException):
    """A payroll already exists for (employee, month, year, frequency)"""

    def __init__(self, employee_id: Union[str, UUID], month: int, year: int, frequency: str):
        super().__init__(
            message=(
                f"Payroll already exists for employee '{employee_id}' "
                f"for {year}-{month:02d} ({frequency})"
            ),
            code=ErrorCode.DUPLICATE_PERIOD,
            details={
                "employee_id": str(employee_id),
                "month": month,
                "year": year,
                "frequency": frequency,
            },
        )


class RecordImmutableException(StateException):
    """Fields can only be edited while the record is a draft"""

    def __init__(self, payroll_id: Union[str, UUID], current: str):
        super().__init__(
            message=f"Payroll '{payroll_id}' is '{current}' and can no longer be edited",
            code=ErrorCode.RECORD_IMMUTABLE,
            details={"payroll_id": str(payroll_id), "current_status": current},
        )


# ============================================================================
# Calculation Exceptions
# ============================================================================

class CalculationException(AppException):
    """Numeric input missing, negative or otherwise unusable"""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.CALCULATION_ERROR,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


# ============================================================================
# Dependency Exceptions
# ============================================================================

class DependencyException(AppException):
    """
    Audit, notification or mail collaborator failed.

    Logged by the caller; never propagated as a failure of the business
    operation that triggered it.
    """

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.DEPENDENCY_ERROR,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"service": service_name},
            original_error=original_error,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.DEPENDENCY_ERROR,
        503: ErrorCode.DEPENDENCY_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    # In production, don't expose internal error details
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Utility Functions
# ============================================================================

def validate_period(month: Any, year: Any) -> None:
    """Validate a payroll month/year pair"""
    if not isinstance(month, int) or not isinstance(year, int):
        raise InvalidPeriodException(month, year)
    if month < 1 or month > 12 or year < 1900 or year > 9999:
        raise InvalidPeriodException(month, year)


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidPeriodException",
    "InvalidFrequencyException",

    # Auth
    "PermissionDeniedException",

    # Resource
    "NotFoundException",
    "PayrollNotFoundException",

    # Configuration
    "ConfigurationException",
    "EmployeeNotFoundException",
    "DepartmentNotFoundException",
    "NoGradeAssignedException",
    "NoActiveGradeForLevelException",
    "MissingDeductionConfigurationException",

    # State
    "StateException",
    "InvalidTransitionException",
    "InvalidStatusException",
    "DuplicatePeriodException",
    "RecordImmutableException",

    # Calculation
    "CalculationException",

    # Dependencies
    "DependencyException",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",

    # Utilities
    "validate_period",
]

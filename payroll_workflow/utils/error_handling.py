"""
Error Handling Module for Payroll Workflow

This module provides centralized error handling with:
- Custom exception hierarchy (validation, not found, permission,
  state conflict, calculation, batch item)
- Standardized error responses
- Error logging
"""

from datetime import datetime
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

# Configure logging
logger = logging.getLogger("payroll_workflow.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_FREQUENCY = "INVALID_FREQUENCY"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_CALCULATION_METHOD = "INVALID_CALCULATION_METHOD"
    INCOMPLETE_PAYMENT_DETAILS = "INCOMPLETE_PAYMENT_DETAILS"
    EMPLOYEE_NOT_IN_DEPARTMENT = "EMPLOYEE_NOT_IN_DEPARTMENT"
    NO_GRADE_LEVEL = "NO_GRADE_LEVEL"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_INVALID = "TOKEN_INVALID"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    FORBIDDEN = "FORBIDDEN"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Resource Errors (404)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    DEPARTMENT_NOT_FOUND = "DEPARTMENT_NOT_FOUND"
    PAYROLL_NOT_FOUND = "PAYROLL_NOT_FOUND"
    DEDUCTION_NOT_FOUND = "DEDUCTION_NOT_FOUND"
    BONUS_NOT_FOUND = "BONUS_NOT_FOUND"

    # State Conflicts (409)
    INVALID_STATUS = "INVALID_STATUS"
    ALREADY_APPROVED_AT_LEVEL = "ALREADY_APPROVED_AT_LEVEL"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    PAYROLL_ALREADY_EXISTS = "PAYROLL_ALREADY_EXISTS"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Calculation Errors (422)
    CALCULATION_ERROR = "CALCULATION_ERROR"
    INVALID_DEDUCTION_DEFINITION = "INVALID_DEDUCTION_DEFINITION"
    NO_ACTIVE_SALARY_GRADE = "NO_ACTIVE_SALARY_GRADE"
    PAYROLL_CALCULATION_FAILED = "PAYROLL_CALCULATION_FAILED"

    # Batch warnings
    NO_ELIGIBLE_APPROVER = "NO_ELIGIBLE_APPROVER"
    NO_PAYROLLS_FOUND = "NO_PAYROLLS_FOUND"
    NO_EMPLOYEES_FOUND = "NO_EMPLOYEES_FOUND"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


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
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

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


class InvalidInputException(ValidationException):
    """Negative, missing or non-numeric amount"""

    def __init__(self, field: str, value: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid value for {field}: {value!r}. Expected a non-negative number.",
            field=field,
            code=ErrorCode.INVALID_INPUT,
            details={"provided": str(value)},
        )


class InvalidFrequencyException(ValidationException):
    """Unrecognized pay frequency"""

    def __init__(self, frequency: Any, allowed: list):
        super().__init__(
            message=f"Invalid payroll frequency: {frequency}. Must be one of: {', '.join(allowed)}",
            field="frequency",
            code=ErrorCode.INVALID_FREQUENCY,
            details={"provided": str(frequency), "allowed": allowed},
        )


class InvalidCalculationMethodException(ValidationException):
    """Unknown deduction or allowance calculation method"""

    def __init__(self, method: Any, name: Optional[str] = None):
        details = {"provided": str(method), "allowed": ["fixed", "percentage"]}
        if name:
            details["deduction"] = name
        super().__init__(
            message=f"Invalid calculation method: {method}",
            field="calculation_method",
            code=ErrorCode.INVALID_CALCULATION_METHOD,
            details=details,
        )


class IncompletePaymentDetailsException(ValidationException):
    """Bank details missing for payment"""

    def __init__(self, missing_fields: list):
        super().__init__(
            message=f"Incomplete payment details. Missing: {', '.join(missing_fields)}",
            code=ErrorCode.INCOMPLETE_PAYMENT_DETAILS,
            details={"missing_fields": missing_fields},
        )


# ============================================================================
# Authentication/Authorization Exceptions
# ============================================================================

class AuthenticationException(AppException):
    """Base authentication exception"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class TokenInvalidException(AuthenticationException):
    """Token is invalid"""

    def __init__(self, message: str = "Invalid access token"):
        super().__init__(
            message=message,
            code=ErrorCode.TOKEN_INVALID,
        )


class AuthorizationException(AppException):
    """Authorization denied exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        required_permission: Optional[str] = None,
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if required_permission:
            _details["required_permission"] = required_permission
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=_details,
        )


class InsufficientCapabilityException(AuthorizationException):
    """Actor lacks the capability required at an approval level"""

    def __init__(self, required_capability: str, level: Optional[str] = None, message: Optional[str] = None):
        details = {}
        if level:
            details["level"] = level
        super().__init__(
            message=message or f"Insufficient permissions. Required capability: {required_capability}",
            required_permission=required_capability,
            code=ErrorCode.PERMISSION_DENIED,
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


class EmployeeNotFoundException(NotFoundException):
    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            resource_type="Employee",
            resource_id=employee_id,
            code=ErrorCode.EMPLOYEE_NOT_FOUND,
        )


class PayrollNotFoundException(NotFoundException):
    def __init__(self, payroll_id: Union[str, UUID], message: Optional[str] = None):
        super().__init__(
            resource_type="Payroll",
            resource_id=payroll_id,
            message=message,
            code=ErrorCode.PAYROLL_NOT_FOUND,
        )


# ============================================================================
# State Conflict Exceptions
# ============================================================================

class StateConflictException(AppException):
    """Operation is illegal for the record's current state"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_STATUS,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class InvalidStatusException(StateConflictException):
    def __init__(self, current_status: str, expected: list, operation: str):
        super().__init__(
            message=f"Cannot {operation} a payroll in status {current_status}. Expected: {', '.join(expected)}",
            code=ErrorCode.INVALID_STATUS,
            details={"current_status": current_status, "expected_status": expected, "operation": operation},
        )


class AlreadyApprovedAtLevelException(StateConflictException):
    def __init__(self, level: str):
        super().__init__(
            message=f"Payroll has already been approved at level {level}",
            code=ErrorCode.ALREADY_APPROVED_AT_LEVEL,
            details={"level": level},
        )


class ConcurrentModificationException(StateConflictException):
    """The record moved on between read and conditional write"""

    def __init__(self, payroll_id: Union[str, UUID], expected_level: str, expected_status: str):
        super().__init__(
            message="Payroll was modified by another request. Reload and try again.",
            code=ErrorCode.CONCURRENT_MODIFICATION,
            details={
                "payroll_id": str(payroll_id),
                "expected_level": expected_level,
                "expected_status": expected_status,
            },
        )


class DuplicatePayrollException(StateConflictException):
    def __init__(self, employee_id: Union[str, UUID], month: int, year: int, frequency: str):
        super().__init__(
            message=f"Payroll already exists for employee {employee_id} for {year}-{month:02d} ({frequency})",
            code=ErrorCode.PAYROLL_ALREADY_EXISTS,
            details={"employee_id": str(employee_id), "month": month, "year": year, "frequency": frequency},
        )


# ============================================================================
# Calculation Exceptions
# ============================================================================

class CalculationException(AppException):
    """Deduction engine could not produce a result"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CALCULATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidDeductionDefinitionException(CalculationException):
    def __init__(self, name: str, reason: str):
        super().__init__(
            message=f"Invalid deduction definition '{name}': {reason}",
            code=ErrorCode.INVALID_DEDUCTION_DEFINITION,
            details={"deduction": name, "reason": reason},
        )


class MissingSalaryGradeException(CalculationException):
    def __init__(self, grade_level: str):
        super().__init__(
            message=f"No active salary grade found for grade level {grade_level}",
            code=ErrorCode.NO_ACTIVE_SALARY_GRADE,
            details={"grade_level": grade_level},
        )


# ============================================================================
# Batch Item Error
# ============================================================================

class BatchItemError(Exception):
    """
    Failure of a single item inside a batch loop.

    Carries a stable code and the offending item's identifier. It is
    recorded in the batch summary and never aborts sibling items.
    """

    def __init__(
        self,
        code: Union[ErrorCode, str],
        item_id: Union[str, UUID, None],
        message: str,
        cause: Optional[Exception] = None,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.item_id = str(item_id) if item_id is not None else None
        self.message = message
        self.cause = cause
        super().__init__(message)

    @classmethod
    def from_exception(cls, item_id: Union[str, UUID, None], exc: Exception) -> "BatchItemError":
        """Wrap an application or unexpected exception raised for one item."""
        if isinstance(exc, BatchItemError):
            return exc
        if isinstance(exc, AppException):
            return cls(exc.code, item_id, exc.message, cause=exc)
        return cls(ErrorCode.PAYROLL_CALCULATION_FAILED, item_id, str(exc), cause=exc)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "item_id": self.item_id, "message": self.message}


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
            "timestamp": datetime.utcnow().isoformat() + "Z",
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
        409: ErrorCode.INVALID_STATUS,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
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


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidInputException",
    "InvalidFrequencyException",
    "InvalidCalculationMethodException",
    "IncompletePaymentDetailsException",

    # Auth
    "AuthenticationException",
    "TokenInvalidException",
    "AuthorizationException",
    "InsufficientCapabilityException",

    # Resource
    "NotFoundException",
    "EmployeeNotFoundException",
    "PayrollNotFoundException",

    # State
    "StateConflictException",
    "InvalidStatusException",
    "AlreadyApprovedAtLevelException",
    "ConcurrentModificationException",
    "DuplicatePayrollException",

    # Calculation
    "CalculationException",
    "InvalidDeductionDefinitionException",
    "MissingSalaryGradeException",

    # Batch
    "BatchItemError",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",
]

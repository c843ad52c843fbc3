from typing import Dict, Any, Optional
from datetime import datetime, timezone
from fastapi import status
from pydantic import BaseModel
import enum
import logging

logger = logging.getLogger(__name__)


class BaseCustomException(Exception):
    """Base class for custom exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(BaseCustomException):
    """Malformed input, detected before any ledger call"""

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            error_code=error_code or "VALIDATION_ERROR"
        )


class LedgerError(BaseCustomException):
    """Base class for failures reported by, or on the way to, the ledger"""

    def __init__(
        self,
        message: str = "Ledger operation failed",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            details=details,
            error_code=error_code or "LEDGER_ERROR"
        )


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached"""

    def __init__(
        self,
        message: str = "Ledger unavailable",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            details=details,
            error_code=error_code or "LEDGER_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class LedgerRejected(LedgerError):
    """The ledger validated the request and refused it"""

    def __init__(
        self,
        message: str = "Ledger rejected the request",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST
    ):
        super().__init__(
            message=message,
            details=details,
            error_code=error_code or "LEDGER_REJECTED",
            status_code=status_code
        )


class InsufficientBalance(LedgerRejected):
    """A spend asked for more units than the account holds"""

    def __init__(
        self,
        message: str = "Insufficient balance",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            details=details,
            error_code=error_code or "INSUFFICIENT_BALANCE",
            status_code=status.HTTP_409_CONFLICT
        )


class LookupStatus(str, enum.Enum):
    """Outcome of a read against the ledger.

    NOT_FOUND is a valid answer (zero matching rows); QUERY_FAILED means the
    ledger could not answer and the value next to it is a placeholder.
    """
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    QUERY_FAILED = "QUERY_FAILED"


# Response models for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    error: str
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None


def create_error_response(
    exception: BaseCustomException,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create standardized error response"""
    response = {
        "error": exception.__class__.__name__.replace("Error", " Error"),
        "message": exception.message,
        "error_code": exception.error_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id
    }

    if exception.details:
        response["details"] = exception.details

    return response


def handle_validation_error(
    error: Exception,
    field: Optional[str] = None,
    value: Optional[Any] = None
) -> ValidationError:
    """Convert a pydantic (or plain) validation failure into ValidationError"""
    logger.error(f"Validation error: {error}")

    details: Dict[str, Any] = {"original_error": str(error)}
    if field:
        details["field"] = field
    if value is not None:
        details["value"] = str(value)

    errors = getattr(error, "errors", None)
    if callable(errors):
        details["fields"] = {
            ".".join(str(part) for part in e["loc"]): e["msg"] for e in errors()
        }

    return ValidationError(
        message="Validation failed",
        details=details,
        error_code="VALIDATION_ERROR"
    )


def handle_ledger_transport_error(error: Exception, operation: str = "request") -> LedgerUnavailable:
    """Convert a transport failure talking to the ledger into LedgerUnavailable"""
    logger.error(f"Ledger transport error during {operation}: {error}")

    return LedgerUnavailable(
        message="Ledger service unavailable",
        details={
            "operation": operation,
            "original_error": str(error)
        },
        error_code="LEDGER_UNAVAILABLE"
    )

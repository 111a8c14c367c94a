"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1007"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_MISSING_GATEWAY_ORDER = "ERR_2002"
    ORDER_GATEWAY_MISMATCH = "ERR_2003"
    ORDER_INVALID_SIGNATURE = "ERR_2004"
    ORDER_TENANT_MISSING = "ERR_2005"
    ORDER_ACCESS_DENIED = "ERR_2006"

    # Tenant configuration errors (3xxx)
    TENANT_NOT_CONFIGURED = "ERR_3001"

    # Reconciliation errors (4xxx)
    RECONCILIATION_FAILED = "ERR_4001"

    # External service errors (5xxx)
    GATEWAY_ERROR = "ERR_5001"
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class OrderNotFoundError(NotFoundException):
    """Raised when an order does not exist (or belongs to another tenant)"""

    def __init__(self, order_id: Any):
        super().__init__("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class ConfigurationError(AppException):
    """Raised when a tenant has not configured the credentials an operation needs.

    ההודעה מיועדת ללקוח ואומרת לו מה להגדיר.
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.TENANT_NOT_CONFIGURED,
            status_code=400,
            details={"missing": missing} if missing else None
        )


class AuthenticationError(AppException):
    """Raised when a signature or credential check fails"""

    def __init__(
        self,
        message: str = "Invalid signature",
        error_code: ErrorCode = ErrorCode.ORDER_INVALID_SIGNATURE,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=401,
        )


class ConflictError(AppException):
    """Raised when an operation conflicts with the current state of a resource"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )


class InvalidStateTransitionError(ConflictError):
    """Raised when an order operation is not allowed from its current status"""

    def __init__(self, current_state: str, target_state: str, message: str | None = None):
        super().__init__(
            message=message or f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "current_state": current_state,
                "target_state": target_state,
            }
        )


class MissingCorrelationError(ConflictError):
    """Raised when an order has no gateway order id yet"""

    def __init__(self, order_id: Any):
        super().__init__(
            message="Gateway order not created yet. Send the payment request first.",
            error_code=ErrorCode.ORDER_MISSING_GATEWAY_ORDER,
            details={"order_id": str(order_id)}
        )


class OrderTenantMissingError(ConflictError):
    """Raised when a persisted order has no tenant. נתונים פגומים, לא מתקנים אוטומטית."""

    def __init__(self, order_id: Any):
        super().__init__(
            message="Order has no tenant assigned",
            error_code=ErrorCode.ORDER_TENANT_MISSING,
            details={"order_id": str(order_id)}
        )


class OrderAccessDeniedError(AppException):
    """Raised when a caller touches an order owned by another tenant"""

    def __init__(self, order_id: Any):
        super().__init__(
            message="Not allowed to access this order",
            error_code=ErrorCode.ORDER_ACCESS_DENIED,
            status_code=403,
            details={"order_id": str(order_id)}
        )


class ReconciliationError(AppException):
    """Raised when syncing an order against the gateway fails.

    ההודעה נחשפת ללקוח כ-"Sync failed: ...".
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Sync failed: {message}",
            error_code=ErrorCode.RECONCILIATION_FAILED,
            status_code=400,
            details=details
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None,
        status_code: int = 503,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        self.details["service"] = service_name


def _response_details(operation: str, response: Any, max_response_chars: int) -> dict[str, Any]:
    status_code = getattr(response, "status_code", None)
    response_text = getattr(response, "text", "") or ""
    return {
        "operation": operation,
        "status_code": status_code,
        "response_text": response_text[:max_response_chars],
    }


class GatewayError(ExternalServiceException):
    """Raised when the payment gateway API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="gateway",
            message=f"Payment gateway error: {message}",
            error_code=ErrorCode.GATEWAY_ERROR,
            details=details,
            status_code=502,
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "GatewayError":
        """
        יצירת GatewayError מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: create_order, refund)
            response: אובייקט response (למשל httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופק - נבנית אוטומטית)
            max_response_chars: אורך מקסימלי לשמירת response_text (מניעת לוגים גדולים)
        """
        details = _response_details(operation, response, max_response_chars)
        return cls(
            message=message or f"{operation} returned status {details['status_code']}",
            details=details,
        )


class WhatsAppError(ExternalServiceException):
    """Raised when WhatsApp API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details,
            status_code=502,
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "WhatsAppError":
        """יצירת WhatsAppError מתוך HTTP response בצורה עקבית."""
        details = _response_details(operation, response, max_response_chars)
        return cls(
            message=message or f"{operation} returned status {details['status_code']}",
            details=details,
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds},
            status_code=504,
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )

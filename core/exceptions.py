"""
Custom exceptions for the offer and payment engine
Provides structured error handling across all domains
"""
from typing import Any, Dict, Iterable, Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace errors"""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MarketplaceError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: Optional[str] = None, **details):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field, **details} if field else details,
            status_code=400,
        )


class InvalidStatusError(ValidationError):
    """Raised when a requested status is outside the allowed set"""

    def __init__(self, status: Any, allowed: Iterable[str]):
        allowed = sorted(allowed)
        super().__init__(
            f"Invalid status: {status}. Allowed: {', '.join(allowed)}",
            field="status",
            requested=str(status),
            allowed_statuses=allowed,
        )
        self.error_code = "INVALID_STATUS"


class NotFoundError(MarketplaceError):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            status_code=404,
        )


class AuthorizationError(MarketplaceError):
    """Raised when the acting user is not a legitimate party for the operation"""

    def __init__(self, message: str, user_id: Optional[str] = None, **details):
        super().__init__(
            message=message,
            error_code="NOT_AUTHORIZED",
            details={"user_id": user_id, **details} if user_id else details,
            status_code=403,
        )


class InvalidStateError(MarketplaceError):
    """Raised when a transition is not legal from the current status"""

    def __init__(self, message: str, current_status: Any, **details):
        current = getattr(current_status, "value", current_status)
        super().__init__(
            message=message,
            error_code="INVALID_STATE",
            details={"current_status": current, **details},
            status_code=409,
        )
        self.current_status = current


class ConcurrentModificationError(MarketplaceError):
    """Raised when a conditional write loses a race; callers should re-read and retry"""

    retryable = True

    def __init__(self, resource: str, identifier: Any, expected_status: Any):
        expected = getattr(expected_status, "value", expected_status)
        super().__init__(
            message=f"{resource} {identifier} changed concurrently (expected status {expected})",
            error_code="CONCURRENT_MODIFICATION",
            details={
                "resource": resource,
                "identifier": str(identifier),
                "expected_status": expected,
            },
            status_code=409,
        )


class PaymentGatewayError(MarketplaceError):
    """Raised when the payment processor is unreachable or fails server-side"""

    retryable = True

    def __init__(self, provider: str, message: str, **details):
        super().__init__(
            message=f"{provider} gateway error: {message}",
            error_code="PAYMENT_GATEWAY_ERROR",
            details={"provider": provider, **details},
            status_code=502,
        )


class PaymentRequestInvalid(MarketplaceError):
    """Raised when the payment processor rejects a request as malformed"""

    def __init__(self, provider: str, message: str, **details):
        super().__init__(
            message=f"{provider} rejected request: {message}",
            error_code="PAYMENT_REQUEST_INVALID",
            details={"provider": provider, **details},
            status_code=400,
        )


class SignatureInvalidError(MarketplaceError):
    """Raised when a webhook payload fails signature verification"""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message=message,
            error_code="SIGNATURE_INVALID",
            status_code=401,
        )


class RefundFailedError(MarketplaceError):
    """Raised when the processor refuses a refund; no local state is changed"""

    def __init__(self, payment_id: str, message: str, **details):
        super().__init__(
            message=f"Refund failed for payment {payment_id}: {message}",
            error_code="REFUND_FAILED",
            details={"payment_id": payment_id, **details},
            status_code=502,
        )


class ConfigurationError(MarketplaceError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details={"setting": setting} if setting else {},
            status_code=500,
        )

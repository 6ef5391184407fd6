# iqraquest/core/exceptions.py
"""
Domain-specific exceptions for the IqraQuest settlement core.

These exceptions carry business-focused messages and map onto HTTP
responses at the API layer via ``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Settlement exceptions


class InsufficientFundsError(BusinessRuleException):
    """Raised when a wallet cannot cover a debit."""

    def __init__(self, required: int, available: int, *, wallet_id: Optional[str] = None):
        super().__init__(
            message="Insufficient wallet balance",
            code="INSUFFICIENT_FUNDS",
            details={"required": required, "available": available, "wallet_id": wallet_id},
        )
        self.required = required
        self.available = available


class DuplicateHoldError(ConflictException):
    """Raised when a booking already has an active escrow hold."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="An escrow hold already exists for this booking",
            code="DUPLICATE_HOLD",
            details={"booking_id": booking_id},
        )


class InvalidSignatureError(ValidationException):
    """Raised when a webhook payload signature does not verify."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")


class BelowMinimumPayoutError(ValidationException):
    """Raised when a payout request is below the configured minimum."""

    def __init__(self, amount: int, minimum: int):
        super().__init__(
            message=f"Minimum payout amount is {minimum}",
            code="BELOW_MINIMUM_PAYOUT",
            details={"amount": amount, "minimum": minimum},
        )


class NotFoundError(NotFoundException):
    """Raised when an entity or gateway reference is unknown."""

    def __init__(self, entity: str, identifier: str):
        super().__init__(
            message=f"{entity} not found",
            code="NOT_FOUND",
            details={"entity": entity, "id": identifier},
        )


class InvalidStateTransitionError(BusinessRuleException):
    """Raised when an entity is asked to move to a state it cannot reach."""

    def __init__(
        self,
        message: str,
        *,
        current: Optional[str] = None,
        target: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            code="INVALID_STATE_TRANSITION",
            details={"current": current, "target": target, "id": entity_id},
        )


class GatewayError(ServiceException):
    """Raised when the payment gateway rejects or fails a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(
            message=message,
            code="GATEWAY_ERROR",
            details={"status_code": status_code, "response": response},
        )
        self.http_status = status_code
        self.response = response


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """

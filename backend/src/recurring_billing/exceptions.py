"""
Billing engine exceptions.

NotFoundError and ValidationError are surfaced to the caller and never
retried. InvalidPeriodError points at corrupt plan configuration upstream.
ConcurrentModificationError is transient and safe to retry.
"""
from typing import Any


class BillingError(Exception):
    """
    Base billing error with context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for logs and API layers."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
            "retryable": self.retryable,
        }


class NotFoundError(BillingError):
    """A referenced entity does not exist."""

    entity = "entity"

    def __init__(self, entity_id: Any, message: str | None = None):
        super().__init__(
            message or f"{self.entity.capitalize()} {entity_id} not found",
            error_code=f"{self.entity.upper()}_NOT_FOUND",
            context={f"{self.entity}_id": str(entity_id)},
            recovery_hint=f"Verify the {self.entity} ID",
        )
        self.entity_id = entity_id


class BusinessNotFoundError(NotFoundError):
    entity = "business"


class CustomerNotFoundError(NotFoundError):
    entity = "customer"


class PlanNotFoundError(NotFoundError):
    entity = "plan"


class SubscriptionNotFoundError(NotFoundError):
    entity = "subscription"


class PaymentNotFoundError(NotFoundError):
    entity = "payment"


class InvalidPeriodError(BillingError):
    """Plan period configuration is malformed (unknown type or count below one)."""

    def __init__(self, message: str, period_type: Any = None, period_count: Any = None):
        super().__init__(
            message,
            error_code="INVALID_PERIOD",
            context={"period_type": str(period_type), "period_count": period_count},
            recovery_hint="Fix the payment plan's period_type/period_count",
        )


class ValidationError(BillingError):
    """Bad amounts or dates."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(message, error_code="VALIDATION_ERROR", context=context, recovery_hint=recovery_hint)


class InvalidOperationError(ValidationError):
    """Operation not allowed in the subscription's or plan's current state."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context=context)
        self.error_code = "INVALID_OPERATION"


class ConcurrentModificationError(BillingError):
    """The subscription changed between load and save."""

    retryable = True

    def __init__(self, subscription_id: Any, expected_version: int | None = None):
        super().__init__(
            f"Subscription {subscription_id} was modified concurrently",
            error_code="CONCURRENT_MODIFICATION",
            context={"subscription_id": str(subscription_id), "expected_version": expected_version},
            recovery_hint="Reload the subscription and retry the operation",
        )
        self.subscription_id = subscription_id

"""
Platform exceptions.

Every error a caller can observe carries a machine-readable code, an HTTP
status, context data and an optional recovery hint. None are retried.
"""

from typing import Any


class SubHubError(Exception):
    """
    Base platform error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "SUBHUB_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# ============================================================
# Error kinds
# ============================================================


class NotFoundError(SubHubError):
    """A referenced plan, subscription or user does not exist."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "NOT_FOUND", status_code=404, context=context, recovery_hint=recovery_hint
        )


class ConflictError(SubHubError):
    """The request conflicts with the current state of a resource."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "CONFLICT", status_code=409, context=context, recovery_hint=recovery_hint
        )


class ForbiddenError(SubHubError):
    """The caller is authenticated but not allowed to perform the action."""

    def __init__(self, message: str = "Insufficient permissions", context: dict[str, Any] | None = None):
        super().__init__(message, "FORBIDDEN", status_code=403, context=context)


class ValidationError(SubHubError):
    """Malformed or semantically invalid input."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "VALIDATION_ERROR", status_code=422, context=context)


class AuthenticationError(SubHubError):
    """Missing, invalid or expired credentials."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, "AUTHENTICATION_ERROR", status_code=401)


class FeatureNotImplementedError(SubHubError):
    """The operation exists as an interface but has no implementation yet."""

    def __init__(self, feature: str):
        super().__init__(
            f"{feature} is not implemented",
            "NOT_IMPLEMENTED",
            status_code=501,
            context={"feature": feature},
        )


# ============================================================
# Specific errors
# ============================================================


class PlanNotFoundError(NotFoundError):
    """Plan not found error."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(
            "Plan not found",
            context={"plan_id": plan_id},
            recovery_hint="Verify the plan ID and ensure the plan exists",
        )
        self.error_code = "PLAN_NOT_FOUND"


class SubscriptionNotFoundError(NotFoundError):
    """Subscription not found error."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            "Subscription not found",
            context={"subscription_id": subscription_id},
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"


class UserNotFoundError(NotFoundError):
    """User not found error."""

    def __init__(self, user_id: str) -> None:
        super().__init__("User not found", context={"user_id": user_id})
        self.error_code = "USER_NOT_FOUND"


class DuplicateActiveSubscriptionError(ConflictError):
    """User already holds an active subscription to the plan."""

    def __init__(self, user_id: str, plan_id: str) -> None:
        super().__init__(
            "User already has an active subscription for this plan",
            context={"user_id": user_id, "plan_id": plan_id},
            recovery_hint="Cancel or update the existing subscription instead",
        )
        self.error_code = "DUPLICATE_ACTIVE_SUBSCRIPTION"


class InvalidStatusTransitionError(ConflictError):
    """Requested status change is not a legal lifecycle transition."""

    def __init__(self, message: str, current_status: str, target_status: str) -> None:
        super().__init__(
            message,
            context={"current_status": current_status, "target_status": target_status},
        )
        self.error_code = "INVALID_STATUS_TRANSITION"


class PlanInUseError(ConflictError):
    """Plan is referenced by active subscriptions."""

    def __init__(self, message: str, plan_id: str, active_subscriptions: int) -> None:
        super().__init__(
            message,
            context={"plan_id": plan_id, "active_subscriptions": active_subscriptions},
            recovery_hint="Wait for subscriptions to end or migrate subscribers to another plan",
        )
        self.error_code = "PLAN_IN_USE"


class DuplicatePlanError(ConflictError):
    """Plan name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(
            "A plan with this name already exists",
            context={"name": name},
            recovery_hint="Use a unique plan name or update the existing plan",
        )
        self.error_code = "DUPLICATE_PLAN"


class DuplicateUserError(ConflictError):
    """Email already registered."""

    def __init__(self, email: str) -> None:
        super().__init__("User already exists with this email", context={"email": email})
        self.error_code = "DUPLICATE_USER"


__all__ = [
    "SubHubError",
    "NotFoundError",
    "ConflictError",
    "ForbiddenError",
    "ValidationError",
    "AuthenticationError",
    "FeatureNotImplementedError",
    "PlanNotFoundError",
    "SubscriptionNotFoundError",
    "UserNotFoundError",
    "DuplicateActiveSubscriptionError",
    "InvalidStatusTransitionError",
    "PlanInUseError",
    "DuplicatePlanError",
    "DuplicateUserError",
]

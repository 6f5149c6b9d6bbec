"""Exceptions raised by the push dispatch core."""
from typing import Optional


class PushDispatchError(Exception):
    """Base class for push dispatch errors."""

    code = "PUSH_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(PushDispatchError):
    """Malformed token, platform, topic or message; rejected before any store or gateway call."""

    code = "VALIDATION_ERROR"


class OwnershipError(PushDispatchError):
    """The caller does not own the referenced token."""

    code = "TOKEN_OWNERSHIP"


class TokenNotFoundError(PushDispatchError):
    """No registry record exists for the referenced token."""

    code = "TOKEN_NOT_FOUND"


class DeliveryError(PushDispatchError):
    """A gateway delivery attempt failed."""

    code = "DELIVERY_ERROR"

    @classmethod
    def from_gateway_error(cls, error, policy) -> "DeliveryError":
        """Wrap a GatewayError in the subclass its failure category calls for."""
        from .services.failure_policy import FailureCategory

        category = policy.classify(error.code)
        if category == FailureCategory.PERMANENT:
            return PermanentDeliveryError(error.message, code=error.code)
        if category == FailureCategory.SERVICE:
            return ServiceDeliveryError(error.message, code=error.code)
        return TransientDeliveryError(error.message, code=error.code)


class TransientDeliveryError(DeliveryError):
    """Timeout, rate limit or gateway outage; counts toward the failure threshold."""

    code = "TRANSIENT_DELIVERY_ERROR"


class PermanentDeliveryError(DeliveryError):
    """Token unregistered, malformed or bound to another sender; deactivates immediately."""

    code = "PERMANENT_DELIVERY_ERROR"


class ServiceDeliveryError(DeliveryError):
    """Push switched off or the gateway refused the sender itself; tokens are left alone."""

    code = "SERVICE_DELIVERY_ERROR"

"""Failure policy - classifies gateway errors and decides token deactivation.

Classification is a plain lookup from a normalized error code to a
category. Gateway-specific codes are added to the table (through settings or
``FailurePolicy.register``) without touching dispatch logic.
"""
import asyncio
from enum import Enum
from typing import Dict, Iterable, Optional, Union

import httpx

from ..errors import PushDispatchError
from .gateway import GatewayError


class FailureCategory(str, Enum):
    """What a failed send means for the token that received it."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    OWNERSHIP = "ownership"
    VALIDATION = "validation"
    CANCELLED = "cancelled"
    SERVICE = "service"


# Reference: https://firebase.google.com/docs/cloud-messaging/send/v1-api#error-codes
DEFAULT_ERROR_TABLE: Dict[str, FailureCategory] = {
    # Gateway or network trouble, retry later
    "TIMEOUT": FailureCategory.TRANSIENT,
    "DEADLINE_EXCEEDED": FailureCategory.TRANSIENT,
    "NETWORK_ERROR": FailureCategory.TRANSIENT,
    "UNAVAILABLE": FailureCategory.TRANSIENT,
    "GATEWAY_UNAVAILABLE": FailureCategory.TRANSIENT,
    "INTERNAL": FailureCategory.TRANSIENT,
    "SERVER_ERROR": FailureCategory.TRANSIENT,
    "QUOTA_EXCEEDED": FailureCategory.TRANSIENT,
    "RATE_LIMITED": FailureCategory.TRANSIENT,
    "UNKNOWN_ERROR": FailureCategory.TRANSIENT,
    # Also returned for a bad payload; rejected tokens come back as INVALID_REGISTRATION
    "INVALID_ARGUMENT": FailureCategory.TRANSIENT,
    # Token is dead for good
    "UNREGISTERED": FailureCategory.PERMANENT,
    "NOT_REGISTERED": FailureCategory.PERMANENT,
    "INVALID_REGISTRATION": FailureCategory.PERMANENT,
    "INVALID_TOKEN": FailureCategory.PERMANENT,
    "BAD_DEVICE_TOKEN": FailureCategory.PERMANENT,
    "SENDER_ID_MISMATCH": FailureCategory.PERMANENT,
    "MISMATCHED_CREDENTIAL": FailureCategory.PERMANENT,
    # Rejected before reaching the gateway
    "TOKEN_OWNERSHIP": FailureCategory.OWNERSHIP,
    "VALIDATION_ERROR": FailureCategory.VALIDATION,
    "INVALID_MESSAGE": FailureCategory.VALIDATION,
    "CANCELLED": FailureCategory.CANCELLED,
    # Gateway-wide trouble: push switched off, wrong project, bad credentials
    "PUSH_DISABLED": FailureCategory.SERVICE,
    "NOT_FOUND": FailureCategory.SERVICE,
    "PERMISSION_DENIED": FailureCategory.SERVICE,
    "UNAUTHENTICATED": FailureCategory.SERVICE,
    "THIRD_PARTY_AUTH_ERROR": FailureCategory.SERVICE,
}


def normalize_code(code: Optional[str]) -> str:
    """Upper-case a code and unify separators: 'not-registered' -> 'NOT_REGISTERED'."""
    if not code:
        return "UNKNOWN_ERROR"
    return code.strip().upper().replace("-", "_").replace(" ", "_")


class FailurePolicy:
    """Table-driven error classification plus the deactivation rule."""

    def __init__(
        self,
        failure_threshold: int = 5,
        permanent_codes: Iterable[str] = (),
        transient_codes: Iterable[str] = (),
        table: Optional[Dict[str, FailureCategory]] = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self._table: Dict[str, FailureCategory] = dict(table or DEFAULT_ERROR_TABLE)
        for code in permanent_codes:
            self.register(code, FailureCategory.PERMANENT)
        for code in transient_codes:
            self.register(code, FailureCategory.TRANSIENT)

    @classmethod
    def from_settings(cls, settings) -> "FailurePolicy":
        return cls(
            failure_threshold=settings.failure_threshold,
            permanent_codes=settings.push_permanent_error_codes,
            transient_codes=settings.push_transient_error_codes,
        )

    def register(self, code: str, category: Union[FailureCategory, str]) -> None:
        """Add or override a code in the classification table."""
        self._table[normalize_code(code)] = FailureCategory(category)

    def classify(self, signal: Union[str, BaseException, None]) -> FailureCategory:
        """Map an error code or exception to its failure category.

        Unknown codes are treated as transient so a single odd response never
        kills a token; the threshold still catches repeat offenders.
        """
        return self._table.get(self.code_for(signal), FailureCategory.TRANSIENT)

    def code_for(self, signal: Union[str, BaseException, None]) -> str:
        """Extract the normalized error code from a code string or exception."""
        if isinstance(signal, BaseException):
            if isinstance(signal, (GatewayError, PushDispatchError)):
                return normalize_code(signal.code)
            if isinstance(signal, (asyncio.TimeoutError, httpx.TimeoutException)):
                return "TIMEOUT"
            if isinstance(signal, httpx.TransportError):
                return "NETWORK_ERROR"
            if isinstance(signal, asyncio.CancelledError):
                return "CANCELLED"
            return "UNKNOWN_ERROR"
        return normalize_code(signal)

    def affects_token(self, category: FailureCategory) -> bool:
        """Only delivery outcomes change token health."""
        return category in (FailureCategory.TRANSIENT, FailureCategory.PERMANENT)

    def should_deactivate(self, category: FailureCategory, failure_count: int) -> bool:
        if category == FailureCategory.PERMANENT:
            return True
        if category == FailureCategory.TRANSIENT:
            return failure_count >= self.failure_threshold
        return False

    def known_codes(self) -> Dict[str, FailureCategory]:
        return dict(self._table)

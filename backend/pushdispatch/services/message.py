"""Transient push message and result types."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Hashable, List, Mapping, Optional


class PushPriority(str, Enum):
    """Delivery priority understood by the gateway."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


@dataclass
class PushMessage:
    """Canonical message handed to the gateway."""

    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    sound: str = "default"
    priority: PushPriority = PushPriority.NORMAL
    badge: Optional[int] = None
    click_action: Optional[str] = None
    ttl_seconds: Optional[int] = None


@dataclass
class PushResult:
    """Outcome of one delivery attempt."""

    success: bool
    message_id: str = ""
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    token: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def ok(cls, message_id: str, token: Optional[str] = None) -> "PushResult":
        return cls(success=True, message_id=message_id or "", token=token)

    @classmethod
    def failed(
        cls,
        error_code: str,
        error_message: str,
        token: Optional[str] = None,
        category: Optional[str] = None,
    ) -> "PushResult":
        return cls(
            success=False,
            error_code=error_code,
            error_message=error_message,
            token=token,
            category=category,
        )

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "success": self.success,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass
class BatchResult:
    """Aggregated outcome of a fan-out."""

    results: List[PushResult] = field(default_factory=list)
    total_users: Optional[int] = None
    by_user: Optional[Dict[Hashable, List[PushResult]]] = None

    @classmethod
    def from_results(cls, results: List[PushResult]) -> "BatchResult":
        return cls(results=list(results))

    @classmethod
    def from_user_results(cls, user_results: Mapping[Hashable, List[PushResult]]) -> "BatchResult":
        flattened = [result for results in user_results.values() for result in results]
        return cls(
            results=flattened,
            total_users=len(user_results),
            by_user={user_id: list(results) for user_id, results in user_results.items()},
        )

    @property
    def total_sent(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return self.total_sent - self.success_count

    def to_dict(self) -> dict:
        data = {
            "total_sent": self.total_sent,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [r.to_dict() for r in self.results],
        }
        if self.total_users is not None:
            data["total_users"] = self.total_users
        if self.by_user is not None:
            data["by_user"] = {
                str(user_id): [r.to_dict() for r in results] for user_id, results in self.by_user.items()
            }
        return data


@dataclass
class TokenValidation:
    """Whether the gateway still accepts a token."""

    is_valid: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None

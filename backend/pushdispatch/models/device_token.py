"""DeviceToken model - push SDK registration tokens owned by users."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)

from ..database import Base


class Platform(str, Enum):
    """Client platforms that can register push tokens."""
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


class DeviceToken(Base):
    """Registered device token for push notifications.

    At most one active row exists per raw token value; the partial unique
    index below enforces it at the store level.
    """

    __tablename__ = "device_tokens"
    __table_args__ = (
        CheckConstraint("platform IN ('android', 'ios', 'web')", name="ck_device_tokens_platform"),
        CheckConstraint("failure_count >= 0", name="ck_device_tokens_failure_count"),
        Index(
            "uq_device_tokens_active_token",
            "token",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("idx_device_tokens_user_platform", "user_id", "platform"),
        Index("idx_device_tokens_inactive", "is_active", "last_used_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    token = Column(String(4096), nullable=False)
    platform = Column(String(20), nullable=False)
    device_info = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime, nullable=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_failure_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def touch(self) -> None:
        """Mark the token as recently used."""
        self.last_used_at = datetime.utcnow()

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        """Deactivate the token (keeps the record, stops deliveries)."""
        self.is_active = False

    def merge_device_info(self, device_info: Optional[dict]) -> None:
        """Merge new device metadata over the stored blob."""
        if not device_info:
            return
        merged = dict(self.device_info or {})
        merged.update(device_info)
        self.device_info = merged

    def record_failure(self, reason: str) -> None:
        """Count a consecutive delivery failure."""
        self.failure_count = (self.failure_count or 0) + 1
        self.last_failure_at = datetime.utcnow()
        self.failure_reason = reason

    def reset_failures(self) -> None:
        self.failure_count = 0
        self.last_failure_at = None
        self.failure_reason = None

"""Message composer - builds canonical push messages."""
import logging
from typing import Any, Dict, Mapping, Optional

from ..errors import ValidationError
from ..schemas.notification import NotificationRecord
from .message import PushMessage, PushPriority

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
BODY_MAX_LENGTH = 500

# Data keys FCM reserves for itself
RESERVED_DATA_KEYS = frozenset({"from", "notification", "message_type"})
RESERVED_DATA_PREFIXES = ("google", "gcm")

# Notification (domain) priority -> push priority
NOTIFICATION_PRIORITY_MAP: Dict[str, PushPriority] = {
    "urgent": PushPriority.HIGH,
    "high": PushPriority.HIGH,
    "normal": PushPriority.NORMAL,
    "low": PushPriority.LOW,
}


class MessageComposer:
    """Turns send requests and notification records into PushMessages."""

    def __init__(self, default_sound: str = "default", default_ttl_seconds: Optional[int] = None):
        self.default_sound = default_sound
        self.default_ttl_seconds = default_ttl_seconds

    def from_request(
        self,
        title: str,
        body: str,
        data: Optional[Mapping[str, Any]] = None,
        image_url: Optional[str] = None,
        sound: Optional[str] = None,
        priority: Optional[str] = None,
        badge: Optional[int] = None,
    ) -> PushMessage:
        """Build a message from a raw send request.

        ``sound`` defaults to the configured sound and ``priority`` to high.
        Keys FCM reserves for itself are rejected. Non-string ``data`` values
        are dropped, since push data payloads are string-to-string.
        """
        title = (title or "").strip()
        body = (body or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters")
        if not body:
            raise ValidationError("Body is required")
        if len(body) > BODY_MAX_LENGTH:
            raise ValidationError(f"Body must be at most {BODY_MAX_LENGTH} characters")
        if badge is not None and badge < 0:
            raise ValidationError("Badge must be zero or greater")
        if image_url is not None and not image_url.startswith(("http://", "https://")):
            raise ValidationError("Image URL must be an http(s) URL")
        reserved = sorted(k for k in (data or {}) if is_reserved_data_key(k))
        if reserved:
            raise ValidationError(f"Reserved data keys are not allowed: {', '.join(reserved)}")

        if priority is None:
            push_priority = PushPriority.HIGH
        else:
            try:
                push_priority = PushPriority(priority)
            except ValueError:
                raise ValidationError("Priority must be one of: high, normal, low")

        return PushMessage(
            title=title,
            body=body,
            data=string_values(data),
            image_url=image_url or None,
            sound=sound or self.default_sound,
            priority=push_priority,
            badge=badge,
            ttl_seconds=self.default_ttl_seconds,
        )

    def from_notification(self, notification: NotificationRecord) -> PushMessage:
        """Mirror a stored notification as a push message.

        Correlation keys let the client route the tap back to the notification
        and the entity it refers to.
        """
        data = {
            "notification_id": str(notification.id),
            "type": notification.type,
            "category": notification.category,
        }
        if notification.action_url:
            data["action_url"] = notification.action_url
        if notification.related_id is not None:
            data["related_id"] = str(notification.related_id)
        if notification.related_type:
            data["related_type"] = notification.related_type

        return PushMessage(
            title=notification.title,
            body=notification.message,
            data=data,
            image_url=notification.icon or None,
            sound="default",
            priority=map_notification_priority(notification.priority),
            ttl_seconds=self.default_ttl_seconds,
        )

    def test_message(self) -> PushMessage:
        return PushMessage(
            title="Test Notification",
            body="This is a test push notification.",
            data={"type": "test"},
            sound=self.default_sound,
            priority=PushPriority.HIGH,
        )


def map_notification_priority(priority: Optional[str]) -> PushPriority:
    return NOTIFICATION_PRIORITY_MAP.get((priority or "").lower(), PushPriority.NORMAL)


def is_reserved_data_key(key) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return lowered in RESERVED_DATA_KEYS or lowered.startswith(RESERVED_DATA_PREFIXES)


def string_values(data: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Keep only entries whose key and value are both strings."""
    if not data:
        return {}
    kept = {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}
    dropped = len(data) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} non-string data entries from push message")
    return kept

"""Notification record schema - read-only input from the notification producer."""
from typing import Optional

from pydantic import BaseModel


class NotificationRecord(BaseModel):
    """A stored in-app notification that can be mirrored as a push message."""
    id: int
    user_id: int
    type: str
    title: str
    message: str
    priority: str = "normal"  # urgent, high, normal, low
    category: str = ""
    icon: Optional[str] = None
    action_url: Optional[str] = None
    related_id: Optional[int] = None
    related_type: Optional[str] = None

    class Config:
        from_attributes = True

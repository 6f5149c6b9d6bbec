"""Push send schemas for API."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PushMessageRequest(BaseModel):
    """Message content shared by every send request."""
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    image_url: Optional[str] = None
    sound: Optional[str] = None
    priority: Optional[str] = None  # high, normal, low
    badge: Optional[int] = None


class SendToDeviceRequest(PushMessageRequest):
    token: str


class SendToUserRequest(PushMessageRequest):
    user_id: int = Field(..., gt=0)


class SendToMultipleUsersRequest(PushMessageRequest):
    user_ids: List[int] = Field(..., min_length=1)


class SendToTopicRequest(PushMessageRequest):
    topic: str


class PushTestRequest(BaseModel):
    token: str


class PushResultResponse(BaseModel):
    message_id: str = ""
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class BatchResultResponse(BaseModel):
    """Aggregated fan-out outcome."""
    total_sent: int
    success_count: int
    failure_count: int
    results: List[PushResultResponse]


class MultiUserBatchResponse(BatchResultResponse):
    total_users: int
    by_user: Dict[str, List[PushResultResponse]]

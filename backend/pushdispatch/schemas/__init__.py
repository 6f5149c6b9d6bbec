"""Pydantic schemas for API request/response models."""
from .device_token import (
    DeviceRegisterRequest,
    DeviceRefreshRequest,
    DeviceValidateRequest,
    DeviceTokenResponse,
    DeviceUnregisterResponse,
    TokenValidationResponse,
    DeviceStatsResponse,
)
from .notification import NotificationRecord
from .push import (
    PushMessageRequest,
    SendToDeviceRequest,
    SendToUserRequest,
    SendToMultipleUsersRequest,
    SendToTopicRequest,
    PushTestRequest,
    PushResultResponse,
    BatchResultResponse,
    MultiUserBatchResponse,
)

__all__ = [
    "DeviceRegisterRequest",
    "DeviceRefreshRequest",
    "DeviceValidateRequest",
    "DeviceTokenResponse",
    "DeviceUnregisterResponse",
    "TokenValidationResponse",
    "DeviceStatsResponse",
    "NotificationRecord",
    "PushMessageRequest",
    "SendToDeviceRequest",
    "SendToUserRequest",
    "SendToMultipleUsersRequest",
    "SendToTopicRequest",
    "PushTestRequest",
    "PushResultResponse",
    "BatchResultResponse",
    "MultiUserBatchResponse",
]

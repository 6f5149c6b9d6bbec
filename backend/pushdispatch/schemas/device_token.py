"""Device token schemas for API."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class DeviceRegisterRequest(BaseModel):
    """Request to register a device token for push notifications."""
    token: str
    platform: str  # android, ios, web
    device_info: Dict[str, Any] = Field(default_factory=dict)


class DeviceRefreshRequest(BaseModel):
    """Request to rotate a registered token to a new value."""
    old_token: str
    new_token: str


class DeviceValidateRequest(BaseModel):
    token: str


class DeviceTokenResponse(BaseModel):
    """Device token in API responses. The raw token is never echoed back."""
    id: int
    user_id: int
    platform: str
    device_info: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    failure_count: int = 0
    failure_reason: Optional[str] = None
    last_used_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeviceUnregisterResponse(BaseModel):
    success: bool
    message: str


class TokenValidationResponse(BaseModel):
    is_valid: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class PlatformCounts(BaseModel):
    active: int = 0
    inactive: int = 0


class DeviceStatsResponse(BaseModel):
    """Token counts by platform and active state."""
    total: int
    active: int
    inactive: int
    by_platform: Dict[str, PlatformCounts]

"""Device token API endpoints."""
from typing import List

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user_id, get_dispatcher, get_registry
from ..schemas import (
    DeviceRefreshRequest,
    DeviceRegisterRequest,
    DeviceStatsResponse,
    DeviceTokenResponse,
    DeviceUnregisterResponse,
    DeviceValidateRequest,
    TokenValidationResponse,
)
from ..services.dispatcher import Dispatcher
from ..services.registry import TokenRegistry

router = APIRouter(prefix="/api/devices", tags=["devices"])


@router.post("/register", response_model=DeviceTokenResponse)
async def register_device(
    request: DeviceRegisterRequest,
    user_id: int = Depends(get_current_user_id),
    registry: TokenRegistry = Depends(get_registry),
):
    """Register a device token for the current user.

    Clients should call this on every launch; re-registering refreshes the
    existing record, and a token last registered by another user moves to
    the caller.
    """
    return await registry.register(user_id, request.token, request.platform, request.device_info)


@router.put("/refresh", response_model=DeviceTokenResponse)
async def refresh_device_token(
    request: DeviceRefreshRequest,
    user_id: int = Depends(get_current_user_id),
    registry: TokenRegistry = Depends(get_registry),
):
    """Replace a rotated token with its new value."""
    return await registry.refresh_token(user_id, request.old_token, request.new_token)


@router.delete("/{token}", response_model=DeviceUnregisterResponse)
async def unregister_device(
    token: str,
    user_id: int = Depends(get_current_user_id),
    registry: TokenRegistry = Depends(get_registry),
):
    """Unregister one of the current user's device tokens."""
    await registry.unregister(user_id, token)
    return DeviceUnregisterResponse(success=True, message="Device unregistered successfully")


@router.get("", response_model=List[DeviceTokenResponse])
async def list_devices(
    active_only: bool = False,
    user_id: int = Depends(get_current_user_id),
    registry: TokenRegistry = Depends(get_registry),
):
    return await registry.get_user_devices(user_id, active_only=active_only)


@router.get("/stats", response_model=DeviceStatsResponse)
async def get_device_stats(registry: TokenRegistry = Depends(get_registry)):
    """Token counts by platform and active state (for admin dashboards)."""
    return await registry.get_stats()


@router.post("/validate", response_model=TokenValidationResponse)
async def validate_device_token(
    request: DeviceValidateRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Check with the push gateway whether a token is still deliverable."""
    validation = await dispatcher.validate_token(request.token)
    return TokenValidationResponse(
        is_valid=validation.is_valid,
        error_code=validation.error_code,
        error_message=validation.error_message,
    )

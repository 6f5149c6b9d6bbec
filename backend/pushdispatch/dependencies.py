"""FastAPI dependencies for the wired push services."""
from fastapi import Header, HTTPException, Request

from .services.dispatcher import Dispatcher
from .services.registry import TokenRegistry


def get_registry(request: Request) -> TokenRegistry:
    return request.app.state.registry


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_current_user_id(x_user_id: int = Header(None)) -> int:
    """Acting user id, set by the authenticating proxy in front of this service."""
    if x_user_id is None or x_user_id <= 0:
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-ID header")
    return x_user_id

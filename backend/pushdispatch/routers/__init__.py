"""API routers."""
from .devices import router as devices_router
from .push import router as push_router

__all__ = ["devices_router", "push_router"]

"""Services for token lifecycle, message composition and push dispatch."""
from .cleanup import TokenCleanupService
from .composer import MessageComposer
from .dispatcher import Dispatcher
from .failure_policy import FailureCategory, FailurePolicy
from .gateway import DisabledGateway, FCMGateway, GatewayError, PushGateway, build_gateway
from .message import BatchResult, PushMessage, PushPriority, PushResult, TokenValidation
from .registry import TokenRegistry
from .token_store import SQLAlchemyTokenStore, TokenStore

__all__ = [
    "TokenCleanupService",
    "MessageComposer",
    "Dispatcher",
    "FailureCategory",
    "FailurePolicy",
    "DisabledGateway",
    "FCMGateway",
    "GatewayError",
    "PushGateway",
    "build_gateway",
    "BatchResult",
    "PushMessage",
    "PushPriority",
    "PushResult",
    "TokenValidation",
    "TokenRegistry",
    "SQLAlchemyTokenStore",
    "TokenStore",
]

"""Push send API endpoints."""
import logging

from fastapi import APIRouter, Depends

from ..config import settings
from ..dependencies import get_dispatcher
from ..errors import ValidationError
from ..schemas import (
    BatchResultResponse,
    MultiUserBatchResponse,
    NotificationRecord,
    PushMessageRequest,
    PushResultResponse,
    PushTestRequest,
    SendToDeviceRequest,
    SendToMultipleUsersRequest,
    SendToTopicRequest,
    SendToUserRequest,
)
from ..services.dispatcher import Dispatcher
from ..services.message import BatchResult, PushMessage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push", tags=["push"])


def compose(dispatcher: Dispatcher, request: PushMessageRequest) -> PushMessage:
    return dispatcher.composer.from_request(
        title=request.title,
        body=request.body,
        data=request.data,
        image_url=request.image_url,
        sound=request.sound,
        priority=request.priority,
        badge=request.badge,
    )


@router.post("/device", response_model=PushResultResponse)
async def send_to_device(
    request: SendToDeviceRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    result = await dispatcher.send_to_device(request.token, compose(dispatcher, request))
    return result.to_dict()


@router.post("/user", response_model=BatchResultResponse)
async def send_to_user(
    request: SendToUserRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Send to every active device of a user. No devices is an empty, successful batch."""
    results = await dispatcher.send_to_user(request.user_id, compose(dispatcher, request))
    return BatchResult.from_results(results).to_dict()


@router.post("/users", response_model=MultiUserBatchResponse)
async def send_to_multiple_users(
    request: SendToMultipleUsersRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    if len(request.user_ids) > settings.max_batch_users:
        logger.warning(
            f"Multi-user push rejected - {len(request.user_ids)} users exceeds limit of {settings.max_batch_users}"
        )
        raise ValidationError(f"At most {settings.max_batch_users} users per batch")
    if any(uid <= 0 for uid in request.user_ids):
        raise ValidationError("User ids must be positive")

    by_user = await dispatcher.send_to_multiple_users(request.user_ids, compose(dispatcher, request))
    return BatchResult.from_user_results(by_user).to_dict()


@router.post("/topic", response_model=PushResultResponse)
async def send_to_topic(
    request: SendToTopicRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    result = await dispatcher.send_to_topic(request.topic, compose(dispatcher, request))
    return result.to_dict()


@router.post("/notification", response_model=BatchResultResponse)
async def send_notification(
    notification: NotificationRecord,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Mirror a stored notification to its owner's devices."""
    results = await dispatcher.send_notification(notification)
    return BatchResult.from_results(results).to_dict()


@router.post("/test", response_model=PushResultResponse)
async def send_test_notification(
    request: PushTestRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Send a canned test message to one token; unregistered tokens are fine."""
    result = await dispatcher.send_test(request.token)
    return result.to_dict()

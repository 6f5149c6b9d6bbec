"""Dispatcher - resolves recipients, fans out sends, and feeds outcomes back.

Concurrency:
- Single-device and topic sends are plain awaited calls.
- ``send_to_user`` drains the user's tokens with at most ``device_concurrency``
  worker tasks, however many devices the user has.
- ``send_to_multiple_users`` drains the user list with at most
  ``user_concurrency`` workers, so at most
  ``user_concurrency * device_concurrency`` gateway calls are in flight.

Every fan-out waits for all of its sends and returns one result per recipient.
When the caller sets ``cancel_event``, sends that have not started yet resolve
to a CANCELLED result instead of being dropped; in-flight sends finish.
"""
import asyncio
import logging
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from ..errors import DeliveryError, PermanentDeliveryError, ServiceDeliveryError, ValidationError
from ..schemas.notification import NotificationRecord
from .composer import MessageComposer
from .failure_policy import FailureCategory, FailurePolicy
from .gateway import GatewayError, PushGateway
from .message import PushMessage, PushResult, TokenValidation
from .registry import TokenRegistry, short

logger = logging.getLogger(__name__)

# FCM topic names: letters, digits and -_.~%
TOPIC_PATTERN = re.compile(r"^[a-zA-Z0-9\-_.~%]{1,100}$")

CANCELLED_CODE = "CANCELLED"
LOOKUP_FAILED_CODE = "TOKEN_LOOKUP_FAILED"

T = TypeVar("T")
R = TypeVar("R")


def cancelled_result(token: Optional[str] = None) -> PushResult:
    return PushResult.failed(
        CANCELLED_CODE,
        "Send cancelled before it started",
        token=token,
        category=FailureCategory.CANCELLED.value,
    )


async def run_bounded(items: List[T], limit: int, func: Callable[[T], Awaitable[R]]) -> List[R]:
    """Run ``func`` over ``items`` with at most ``limit`` worker tasks.

    Results come back in input order. ``func`` must not raise.
    """
    results: List[Optional[R]] = [None] * len(items)
    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    async def worker() -> None:
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await func(item)

    await asyncio.gather(*[worker() for _ in range(min(limit, len(items)))])
    return results


class Dispatcher:
    """Fan-out engine over the token registry and a push gateway."""

    def __init__(
        self,
        registry: TokenRegistry,
        gateway: PushGateway,
        policy: Optional[FailurePolicy] = None,
        composer: Optional[MessageComposer] = None,
        device_concurrency: int = 10,
        user_concurrency: int = 5,
    ):
        if device_concurrency < 1 or user_concurrency < 1:
            raise ValueError("Concurrency limits must be at least 1")
        self.registry = registry
        self.gateway = gateway
        self.policy = policy or registry.policy
        self.composer = composer or MessageComposer()
        self.device_concurrency = device_concurrency
        self.user_concurrency = user_concurrency

    @classmethod
    def from_settings(cls, settings, registry: TokenRegistry, gateway: PushGateway) -> "Dispatcher":
        return cls(
            registry=registry,
            gateway=gateway,
            composer=MessageComposer(
                default_sound=settings.push_default_sound,
                default_ttl_seconds=settings.push_default_ttl_seconds,
            ),
            device_concurrency=settings.device_concurrency,
            user_concurrency=settings.user_concurrency,
        )

    # ------------------------------------------------------------------
    # Single sends
    # ------------------------------------------------------------------

    async def send_to_device(self, token: str, message: PushMessage) -> PushResult:
        """Send to one raw token and update its health if it is registered.

        Raises ValidationError for a malformed token; delivery failures come
        back as an unsuccessful PushResult.
        """
        self.registry.validate_token_shape(token)

        try:
            message_id = await self.gateway.send_to_token(token, message)
        except GatewayError as e:
            return await self._handle_failure(token, e)
        except Exception as e:
            # Transport exceptions a gateway let through still count as failures
            code = self.policy.code_for(e)
            return await self._handle_failure(token, GatewayError(code, str(e) or type(e).__name__))

        try:
            await self.registry.record_success(token)
        except Exception as e:
            logger.error(f"Failed to record push success for {short(token)}: {e}")
        return PushResult.ok(message_id, token=token)

    async def _handle_failure(self, token: str, error: GatewayError) -> PushResult:
        failure = DeliveryError.from_gateway_error(error, self.policy)
        category = self.policy.classify(error.code)

        try:
            record = await self.registry.record_failure(token, error.code, error.message)
        except Exception as e:
            logger.error(f"Failed to record push failure for {short(token)}: {e}")
            record = None

        if record is None:
            logger.debug(f"Send to unregistered token {short(token)} failed: {error.code}")
        elif isinstance(failure, ServiceDeliveryError):
            logger.error(f"Push gateway refused the send to {short(token)} ({error.code}): {error.message}")
        elif isinstance(failure, PermanentDeliveryError):
            logger.warning(f"Permanent push failure for {short(token)} ({error.code}): {error.message}")
        else:
            logger.warning(
                f"Push failure for {short(token)} ({error.code}), "
                f"{record.failure_count} consecutive: {error.message}"
            )

        return PushResult.failed(
            failure.code,
            failure.message,
            token=token,
            category=category.value,
        )

    async def send_to_topic(self, topic: str, message: PushMessage) -> PushResult:
        """Send to a topic. Topic failures never touch device tokens."""
        if not topic or not TOPIC_PATTERN.match(topic):
            raise ValidationError("Topic must be 1-100 characters of letters, digits or -_.~%")

        try:
            message_id = await self.gateway.send_to_topic(topic, message)
        except GatewayError as e:
            logger.warning(f"Topic push to {topic} failed ({e.code}): {e.message}")
            return PushResult.failed(e.code, e.message, category=self.policy.classify(e.code).value)
        except Exception as e:
            code = self.policy.code_for(e)
            logger.warning(f"Topic push to {topic} failed ({code}): {e}")
            return PushResult.failed(code, str(e) or type(e).__name__, category=self.policy.classify(code).value)

        return PushResult.ok(message_id)

    async def validate_token(self, token: str) -> TokenValidation:
        """Ask the gateway whether ``token`` is deliverable.

        An unknown answer (transport error, outage) is reported as invalid with
        the error attached, never as valid.
        """
        self.registry.validate_token_shape(token)
        try:
            is_valid = await self.gateway.validate_token(token)
        except GatewayError as e:
            logger.warning(f"Token validation for {short(token)} failed ({e.code}): {e.message}")
            return TokenValidation(is_valid=False, error_code=e.code, error_message=e.message)
        except Exception as e:
            code = self.policy.code_for(e)
            logger.warning(f"Token validation for {short(token)} failed ({code}): {e}")
            return TokenValidation(is_valid=False, error_code=code, error_message=str(e) or type(e).__name__)

        if is_valid:
            return TokenValidation(is_valid=True)
        return TokenValidation(
            is_valid=False,
            error_code="INVALID_TOKEN",
            error_message="Token rejected by the push gateway",
        )

    async def send_test(self, token: str) -> PushResult:
        return await self.send_to_device(token, self.composer.test_message())

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def send_to_user(
        self,
        user_id: int,
        message: PushMessage,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[PushResult]:
        """Send to every active device of ``user_id``.

        A user without active devices yields an empty list, not an error.
        """
        tokens = await self.registry.find_active_by_user(user_id)
        if not tokens:
            logger.info(f"No active device tokens for user {user_id}")
            return []
        return await self._send_to_tokens([t.token for t in tokens], message, cancel_event)

    async def _send_to_tokens(
        self,
        tokens: List[str],
        message: PushMessage,
        cancel_event: Optional[asyncio.Event],
    ) -> List[PushResult]:
        async def send_one(token: str) -> PushResult:
            if cancel_event is not None and cancel_event.is_set():
                return cancelled_result(token)
            try:
                return await self.send_to_device(token, message)
            except ValidationError as e:
                return PushResult.failed(
                    e.code, e.message, token=token, category=FailureCategory.VALIDATION.value
                )

        return await run_bounded(tokens, self.device_concurrency, send_one)

    async def send_to_multiple_users(
        self,
        user_ids: Iterable[int],
        message: PushMessage,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[int, List[PushResult]]:
        """Send to every active device of each user.

        Users are isolated: one user's lookup failure is reported in that
        user's entry and the others still receive the message.
        """
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}

        async def send_user(user_id: int) -> List[PushResult]:
            if cancel_event is not None and cancel_event.is_set():
                return [cancelled_result()]
            try:
                return await self.send_to_user(user_id, message, cancel_event)
            except Exception as e:
                logger.error(f"Error sending to user {user_id}: {e}")
                return [
                    PushResult.failed(
                        LOOKUP_FAILED_CODE,
                        f"Could not resolve device tokens: {e}",
                    )
                ]

        results = await run_bounded(unique_ids, self.user_concurrency, send_user)
        by_user = dict(zip(unique_ids, results))

        sent = sum(len(r) for r in results)
        succeeded = sum(1 for r in results for item in r if item.success)
        logger.info(f"Push to {len(unique_ids)} users: {succeeded}/{sent} sends succeeded")
        return by_user

    async def send_notification(
        self,
        notification: NotificationRecord,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[PushResult]:
        """Mirror a stored notification to its owner's devices."""
        message = self.composer.from_notification(notification)
        return await self.send_to_user(notification.user_id, message, cancel_event)

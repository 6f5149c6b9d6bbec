"""Token registry - device token lifecycle.

Rules:
- At most one active record per raw token value. A token presented by a new
  owner deactivates the previous owner's record first (ownership transfer).
- Re-registering by the same owner refreshes the record in place.
- Send outcomes update failure counters; the failure policy decides when a
  token is deactivated.

Every mutation of a token happens under a lock keyed by its raw value, so
concurrent sends to the same device never lose an update.
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from ..errors import OwnershipError, TokenNotFoundError, ValidationError
from ..models.device_token import DeviceToken, Platform
from .failure_policy import FailurePolicy
from .token_store import TokenStore

logger = logging.getLogger(__name__)


def short(token: str) -> str:
    """Truncated token for log lines."""
    return f"{token[:16]}..."


class TokenRegistry:
    """Owns device token records and their Active/Inactive lifecycle."""

    def __init__(
        self,
        store: TokenStore,
        policy: Optional[FailurePolicy] = None,
        token_min_length: int = 10,
        token_max_length: int = 4096,
    ):
        self.store = store
        self.policy = policy or FailurePolicy()
        self.token_min_length = token_min_length
        self.token_max_length = token_max_length
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def _token_lock(self, token: str):
        lock = self._locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[token] = lock
        async with lock:
            yield

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_token_shape(self, token: str) -> None:
        """Raise ValidationError unless ``token`` is a plausible push token."""
        if not isinstance(token, str) or not token.strip():
            raise ValidationError("Token is required")
        if len(token) < self.token_min_length:
            raise ValidationError(f"Token must be at least {self.token_min_length} characters")
        if len(token) > self.token_max_length:
            raise ValidationError(f"Token must be at most {self.token_max_length} characters")
        if any(c.isspace() for c in token):
            raise ValidationError("Token must not contain whitespace")

    @staticmethod
    def validate_platform(platform) -> Platform:
        try:
            return Platform(platform)
        except ValueError:
            allowed = ", ".join(p.value for p in Platform)
            raise ValidationError(f"Platform must be one of: {allowed}")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        user_id: int,
        token: str,
        platform,
        device_info: Optional[dict] = None,
    ) -> DeviceToken:
        """Register ``token`` for ``user_id``, refreshing or transferring as needed."""
        self.validate_token_shape(token)
        platform = self.validate_platform(platform)

        async with self._token_lock(token):
            existing = await self.store.find_by_token(token)

            if existing is not None and existing.is_active:
                if existing.user_id == user_id:
                    existing.platform = platform.value
                    existing.merge_device_info(device_info)
                    existing.activate()
                    existing.touch()
                    refreshed = await self.store.update(existing)
                    logger.info(f"Device token refreshed for user {user_id}: {short(token)}")
                    return refreshed

                # Ownership transfer: the previous owner loses the token first
                previous_owner = existing.user_id
                existing.deactivate()
                await self.store.update(existing)
                logger.info(
                    f"Device token transferred from user {previous_owner} to user {user_id}: {short(token)}"
                )

            own = await self._find_own_record(user_id, token)
            if own is not None:
                own.platform = platform.value
                own.merge_device_info(device_info)
                own.activate()
                own.reset_failures()
                own.touch()
                reactivated = await self.store.update(own)
                logger.info(f"Device token reactivated for user {user_id}: {short(token)}")
                return reactivated

            now = datetime.utcnow()
            created = await self.store.create(
                DeviceToken(
                    user_id=user_id,
                    token=token,
                    platform=platform.value,
                    device_info=dict(device_info or {}),
                    is_active=True,
                    failure_count=0,
                    last_used_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.info(f"New device token registered for user {user_id}: {short(token)}")
            return created

    async def _find_own_record(self, user_id: int, token: str) -> Optional[DeviceToken]:
        records = await self.store.find_by_user(user_id, active_only=False)
        for record in records:
            if record.token == token:
                return record
        return None

    async def _owned_record(self, user_id: int, token: str) -> DeviceToken:
        existing = await self.store.find_by_token(token)
        if existing is None:
            raise TokenNotFoundError("Device token not found")
        if existing.user_id != user_id:
            own = await self._find_own_record(user_id, token)
            if own is None:
                raise OwnershipError("Device token does not belong to user")
            return own
        return existing

    async def unregister(self, user_id: int, token: str) -> None:
        """Delete the caller's record for ``token``."""
        self.validate_token_shape(token)
        async with self._token_lock(token):
            record = await self._owned_record(user_id, token)
            await self.store.delete(record.id)
        logger.info(f"Device token unregistered for user {user_id}: {short(token)}")

    async def refresh_token(self, user_id: int, old_token: str, new_token: str) -> DeviceToken:
        """Swap the raw value of the caller's record after the client SDK rotated it."""
        self.validate_token_shape(old_token)
        self.validate_token_shape(new_token)
        if old_token == new_token:
            raise ValidationError("New token must differ from the old token")

        # Lock both values in a stable order
        first, second = sorted((old_token, new_token))
        async with self._token_lock(first), self._token_lock(second):
            record = await self._owned_record(user_id, old_token)

            holder = await self.store.find_by_token(new_token)
            if holder is not None and holder.is_active:
                if holder.user_id == user_id:
                    # Already registered under the new value; retire the old record
                    await self.store.delete(record.id)
                    logger.info(f"Device token rotation merged for user {user_id}: {short(new_token)}")
                    return holder
                holder.deactivate()
                await self.store.update(holder)
                logger.info(
                    f"Device token transferred from user {holder.user_id} to user {user_id}: {short(new_token)}"
                )

            record.token = new_token
            record.activate()
            record.reset_failures()
            record.touch()
            updated = await self.store.update(record)
            logger.info(f"Device token rotated for user {user_id}: {short(old_token)} -> {short(new_token)}")
            return updated

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_active_by_user(self, user_id: int) -> List[DeviceToken]:
        return await self.store.find_by_user(user_id, active_only=True)

    async def find_by_user_and_platform(self, user_id: int, platform) -> List[DeviceToken]:
        platform = self.validate_platform(platform)
        return await self.store.find_by_user_and_platform(user_id, platform.value)

    async def get_user_devices(self, user_id: int, active_only: bool = False) -> List[DeviceToken]:
        return await self.store.find_by_user(user_id, active_only=active_only)

    async def find_by_token(self, token: str) -> Optional[DeviceToken]:
        return await self.store.find_by_token(token)

    # ------------------------------------------------------------------
    # Delivery outcomes
    # ------------------------------------------------------------------

    async def record_failure(self, token: str, error_code: str, reason: str = "") -> Optional[DeviceToken]:
        """Count a failed send against ``token``; None when it has no record."""
        category = self.policy.classify(error_code)
        if not self.policy.affects_token(category):
            return await self.store.find_by_token(token)

        async with self._token_lock(token):
            record = await self.store.find_by_token(token)
            if record is None:
                return None

            code = self.policy.code_for(error_code)
            record.record_failure(f"{code}: {reason}" if reason else code)
            if record.is_active and self.policy.should_deactivate(category, record.failure_count):
                record.deactivate()
                logger.info(
                    f"Device token deactivated after {category.value} failure "
                    f"#{record.failure_count} ({code}): {short(token)}"
                )
            return await self.store.update(record)

    async def record_success(self, token: str) -> Optional[DeviceToken]:
        """Reset failure tracking after a delivered send; None when ``token`` has no record."""
        async with self._token_lock(token):
            record = await self.store.find_by_token(token)
            if record is None:
                return None
            record.reset_failures()
            record.touch()
            return await self.store.update(record)

    # ------------------------------------------------------------------
    # Stats and housekeeping
    # ------------------------------------------------------------------

    async def get_stats(self, user_id: Optional[int] = None) -> dict:
        """Token counts by platform and active state."""
        counts = await self.store.count_by_platform(user_id)

        by_platform = {p.value: {"active": 0, "inactive": 0} for p in Platform}
        for (platform, is_active), count in counts.items():
            bucket = by_platform.setdefault(platform, {"active": 0, "inactive": 0})
            bucket["active" if is_active else "inactive"] += count

        active = sum(b["active"] for b in by_platform.values())
        inactive = sum(b["inactive"] for b in by_platform.values())
        return {
            "total": active + inactive,
            "active": active,
            "inactive": inactive,
            "by_platform": by_platform,
        }

    async def cleanup(self, inactive_days: int = 90, max_failures: int = 10) -> int:
        """Delete stale inactive tokens and tokens that keep failing."""
        cutoff = datetime.utcnow() - timedelta(days=inactive_days)
        removed = 0

        for record in await self.store.find_stale(cutoff):
            async with self._token_lock(record.token):
                if await self.store.delete(record.id):
                    removed += 1

        for record in await self.store.find_by_failure_count(max_failures):
            async with self._token_lock(record.token):
                if await self.store.delete(record.id):
                    removed += 1

        if removed:
            logger.info(f"Cleaned up {removed} device tokens")
        return removed

"""Token store - persistence contract for device tokens and its SQLAlchemy implementation."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.device_token import DeviceToken
from ..utils.db_utils import retry_on_lock


class TokenStore(ABC):
    """Persistence operations the token registry relies on.

    Implementations must back the one-active-record-per-token rule, either
    with a unique constraint on active tokens or a guarded check-then-act.
    """

    @abstractmethod
    async def create(self, device_token: DeviceToken) -> DeviceToken:
        ...

    @abstractmethod
    async def update(self, device_token: DeviceToken) -> DeviceToken:
        ...

    @abstractmethod
    async def find_by_id(self, token_id: int) -> Optional[DeviceToken]:
        ...

    @abstractmethod
    async def find_by_token(self, token: str) -> Optional[DeviceToken]:
        """Return the active record for ``token``, else the most recently updated one."""

    @abstractmethod
    async def find_by_user(self, user_id: int, active_only: bool = True) -> List[DeviceToken]:
        ...

    @abstractmethod
    async def find_by_user_and_platform(self, user_id: int, platform: str) -> List[DeviceToken]:
        ...

    @abstractmethod
    async def delete(self, token_id: int) -> bool:
        ...

    @abstractmethod
    async def delete_by_token(self, token: str) -> int:
        ...

    @abstractmethod
    async def count_by_platform(self, user_id: Optional[int] = None) -> Dict[Tuple[str, bool], int]:
        """Count records grouped by (platform, is_active)."""

    @abstractmethod
    async def find_stale(self, cutoff: datetime, limit: int = 1000) -> List[DeviceToken]:
        """Inactive records whose last use (or creation) is older than ``cutoff``."""

    @abstractmethod
    async def find_by_failure_count(self, min_failures: int, limit: int = 1000) -> List[DeviceToken]:
        ...


class SQLAlchemyTokenStore(TokenStore):
    """Token store over an async SQLAlchemy session factory.

    Each call runs in its own short session; returned records are detached
    and are written back through ``update``.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(self, device_token: DeviceToken) -> DeviceToken:
        async with self._session_factory() as session:
            session.add(device_token)
            await retry_on_lock(session.commit)
            await session.refresh(device_token)
            return device_token

    async def update(self, device_token: DeviceToken) -> DeviceToken:
        async with self._session_factory() as session:
            merged = await session.merge(device_token)
            await retry_on_lock(session.commit)
            await session.refresh(merged)
            return merged

    async def find_by_id(self, token_id: int) -> Optional[DeviceToken]:
        async with self._session_factory() as session:
            return await session.get(DeviceToken, token_id)

    async def find_by_token(self, token: str) -> Optional[DeviceToken]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceToken)
                .where(DeviceToken.token == token)
                .order_by(DeviceToken.is_active.desc(), DeviceToken.updated_at.desc(), DeviceToken.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_user(self, user_id: int, active_only: bool = True) -> List[DeviceToken]:
        async with self._session_factory() as session:
            query = select(DeviceToken).where(DeviceToken.user_id == user_id)
            if active_only:
                query = query.where(DeviceToken.is_active.is_(True))
            result = await session.execute(query.order_by(DeviceToken.id))
            return list(result.scalars().all())

    async def find_by_user_and_platform(self, user_id: int, platform: str) -> List[DeviceToken]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceToken)
                .where(
                    and_(
                        DeviceToken.user_id == user_id,
                        DeviceToken.platform == platform,
                    )
                )
                .order_by(DeviceToken.id)
            )
            return list(result.scalars().all())

    async def delete(self, token_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(DeviceToken).where(DeviceToken.id == token_id))
            await retry_on_lock(session.commit)
            return result.rowcount > 0

    async def delete_by_token(self, token: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(DeviceToken).where(DeviceToken.token == token))
            await retry_on_lock(session.commit)
            return result.rowcount

    async def count_by_platform(self, user_id: Optional[int] = None) -> Dict[Tuple[str, bool], int]:
        async with self._session_factory() as session:
            query = select(
                DeviceToken.platform,
                DeviceToken.is_active,
                func.count(DeviceToken.id),
            ).group_by(DeviceToken.platform, DeviceToken.is_active)
            if user_id is not None:
                query = query.where(DeviceToken.user_id == user_id)
            result = await session.execute(query)
            return {(platform, bool(is_active)): count for platform, is_active, count in result.all()}

    async def find_stale(self, cutoff: datetime, limit: int = 1000) -> List[DeviceToken]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceToken)
                .where(
                    and_(
                        DeviceToken.is_active.is_(False),
                        or_(
                            DeviceToken.last_used_at < cutoff,
                            and_(DeviceToken.last_used_at.is_(None), DeviceToken.created_at < cutoff),
                        ),
                    )
                )
                .order_by(DeviceToken.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_by_failure_count(self, min_failures: int, limit: int = 1000) -> List[DeviceToken]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceToken)
                .where(DeviceToken.failure_count >= min_failures)
                .order_by(DeviceToken.failure_count.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

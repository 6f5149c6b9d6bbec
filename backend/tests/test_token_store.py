"""Tests for the SQLAlchemy token store against a throwaway SQLite file."""
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from pushdispatch.database import build_engine, build_session_factory, create_tables
from pushdispatch.models.device_token import DeviceToken
from pushdispatch.services.registry import TokenRegistry
from pushdispatch.services.token_store import SQLAlchemyTokenStore

from fakes import make_token


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tokens.db'}")
    await create_tables(engine)
    yield SQLAlchemyTokenStore(build_session_factory(engine))
    await engine.dispose()


def new_record(user_id: int, token: str, platform: str = "android", is_active: bool = True) -> DeviceToken:
    now = datetime.utcnow()
    return DeviceToken(
        user_id=user_id,
        token=token,
        platform=platform,
        device_info={},
        is_active=is_active,
        failure_count=0,
        last_used_at=now,
        created_at=now,
        updated_at=now,
    )


class TestSQLAlchemyTokenStore:
    """Tests for store queries and constraints."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, sql_store):
        created = await sql_store.create(new_record(1, make_token(1)))
        assert created.id is not None

        found = await sql_store.find_by_token(make_token(1))
        assert found.id == created.id
        assert (await sql_store.find_by_id(created.id)).user_id == 1
        assert await sql_store.find_by_token(make_token(9)) is None

    @pytest.mark.asyncio
    async def test_one_active_record_per_token(self, sql_store):
        await sql_store.create(new_record(1, make_token(1)))
        with pytest.raises(IntegrityError):
            await sql_store.create(new_record(2, make_token(1)))

    @pytest.mark.asyncio
    async def test_inactive_duplicates_are_allowed(self, sql_store):
        await sql_store.create(new_record(1, make_token(1), is_active=False))
        active = await sql_store.create(new_record(2, make_token(1)))
        assert (await sql_store.find_by_token(make_token(1))).id == active.id

    @pytest.mark.asyncio
    async def test_update_detached_record(self, sql_store):
        record = await sql_store.create(new_record(1, make_token(1)))
        record.record_failure("UNAVAILABLE")
        record.merge_device_info({"model": "Pixel"})
        await sql_store.update(record)

        stored = await sql_store.find_by_id(record.id)
        assert stored.failure_count == 1
        assert stored.failure_reason == "UNAVAILABLE"
        assert stored.device_info == {"model": "Pixel"}

    @pytest.mark.asyncio
    async def test_user_queries(self, sql_store):
        await sql_store.create(new_record(1, make_token(1), "android"))
        await sql_store.create(new_record(1, make_token(2), "ios", is_active=False))
        await sql_store.create(new_record(2, make_token(3), "ios"))

        assert [r.token for r in await sql_store.find_by_user(1)] == [make_token(1)]
        assert len(await sql_store.find_by_user(1, active_only=False)) == 2
        ios = await sql_store.find_by_user_and_platform(1, "ios")
        assert [r.token for r in ios] == [make_token(2)]

    @pytest.mark.asyncio
    async def test_count_by_platform(self, sql_store):
        await sql_store.create(new_record(1, make_token(1), "android"))
        await sql_store.create(new_record(1, make_token(2), "ios", is_active=False))
        await sql_store.create(new_record(2, make_token(3), "ios"))

        assert await sql_store.count_by_platform() == {
            ("android", True): 1,
            ("ios", False): 1,
            ("ios", True): 1,
        }
        assert await sql_store.count_by_platform(user_id=2) == {("ios", True): 1}

    @pytest.mark.asyncio
    async def test_housekeeping_queries(self, sql_store):
        old = datetime.utcnow() - timedelta(days=100)
        stale = new_record(1, make_token(1), is_active=False)
        stale.last_used_at = old
        stale = await sql_store.create(stale)
        await sql_store.create(new_record(1, make_token(2), is_active=False))
        failing = new_record(1, make_token(3))
        failing.failure_count = 11
        failing = await sql_store.create(failing)

        cutoff = datetime.utcnow() - timedelta(days=90)
        assert [r.id for r in await sql_store.find_stale(cutoff)] == [stale.id]
        assert [r.id for r in await sql_store.find_by_failure_count(10)] == [failing.id]

    @pytest.mark.asyncio
    async def test_delete(self, sql_store):
        record = await sql_store.create(new_record(1, make_token(1)))
        assert await sql_store.delete(record.id) is True
        assert await sql_store.delete(record.id) is False

        await sql_store.create(new_record(1, make_token(2), is_active=False))
        await sql_store.create(new_record(2, make_token(2)))
        assert await sql_store.delete_by_token(make_token(2)) == 2


class TestRegistryOnSQLite:
    """End-to-end registry rules against the real schema."""

    @pytest.mark.asyncio
    async def test_ownership_transfer(self, sql_store):
        registry = TokenRegistry(sql_store)
        first = await registry.register(1, make_token(1), "android")
        second = await registry.register(2, make_token(1), "ios")

        assert second.id != first.id
        assert (await sql_store.find_by_id(first.id)).is_active is False
        assert (await sql_store.find_by_token(make_token(1))).user_id == 2

        back = await registry.register(1, make_token(1), "android")
        assert back.id == first.id
        assert back.is_active
        assert (await sql_store.find_by_id(second.id)).is_active is False

    @pytest.mark.asyncio
    async def test_failure_threshold_persists(self, sql_store):
        registry = TokenRegistry(sql_store)
        await registry.register(1, make_token(1), "android")
        for _ in range(5):
            record = await registry.record_failure(make_token(1), "UNAVAILABLE")
        assert record.failure_count == 5
        assert record.is_active is False
        assert await registry.find_active_by_user(1) == []

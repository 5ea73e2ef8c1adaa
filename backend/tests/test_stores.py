"""Integration tests for the SQL and Redis adapters.

SQL tests run on in-memory SQLite (aiosqlite).  The Redis test needs a
server at settings.redis_url and is skipped without one; the fallback
test points at a closed port on purpose.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as redis
from sqlalchemy import select

from permengine.auth.audit import AuditEmitter, AuditEvent, AuditOutcome, SqlAuditSink
from permengine.auth.resolver import PrincipalResolver
from permengine.auth.stores import InMemoryPrincipalStore, SqlPrincipalStore
from permengine.config import settings
from permengine.database import build_engine, build_sessionmaker, create_tables
from permengine.main import create_app
from permengine.middleware.exceptions import PrincipalInactive
from permengine.models.audit_log import PermissionAuditLog
from permengine.models.user import User
from permengine.utils.cache import (
    CachingPrincipalStore,
    close_redis,
    invalidate_principal,
    principal_key,
)


@pytest_asyncio.fixture
async def session_factory(test_settings) -> AsyncGenerator:
    engine = build_engine(test_settings)
    await create_tables(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def stored_users(session_factory):
    async with session_factory() as session:
        session.add_all([
            User(
                id="u-cashier",
                email="cashier@example.com",
                full_name="Cashier",
                role="staff",
                feature_permissions={"transactions": {"canCreateTransactions": True}},
                discount_authorization={"canApplyBillDiscounts": True, "maxDiscountPercent": 5},
            ),
            User(
                id="u-gone",
                email="gone@example.com",
                full_name="Former Employee",
                role="manager",
                is_active=False,
            ),
        ])
        await session.commit()


@pytest.mark.integration
@pytest.mark.asyncio
class TestSqlAdapters:
    """users table -> principal, audit events -> permission_audit_logs."""

    async def test_sql_principal_store(self, session_factory, stored_users, evaluator):
        resolver = PrincipalResolver(SqlPrincipalStore(session_factory))

        principal = await resolver.resolve("u-cashier")
        assert principal.role.value == "staff"
        assert evaluator.has_permission(principal, "transactions", "canCreateTransactions")
        assert principal.discount_authorization.max_discount_percent == 5

        with pytest.raises(PrincipalInactive):
            await resolver.resolve("u-gone")

    async def test_null_grants_load_as_empty(self, session_factory, stored_users, evaluator):
        record = await SqlPrincipalStore(session_factory).get_principal_by_id("u-gone")
        assert record["featurePermissions"] is None
        assert record["active"] is False

    async def test_sql_audit_sink(self, session_factory):
        emitter = AuditEmitter(SqlAuditSink(session_factory))
        event = AuditEvent(
            principal_id="u-cashier",
            role="staff",
            category="inventory",
            capability="canEditCostPrices",
            outcome=AuditOutcome.OVERRIDDEN,
            context={"field": "costPrice", "attemptedValue": 1.0, "keptValue": 7.0},
        )
        assert await emitter.emit(event) is True

        async with session_factory() as session:
            rows = (await session.execute(select(PermissionAuditLog))).scalars().all()
        assert len(rows) == 1
        assert rows[0].outcome == "overridden"
        assert rows[0].context["field"] == "costPrice"
        assert rows[0].principal_id == "u-cashier"


@pytest.mark.integration
@pytest.mark.asyncio
class TestPrincipalCache:
    """Read-through Redis cache in front of the principal store."""

    async def test_redis_down_falls_back(self, principal_store):
        client = redis.from_url("redis://127.0.0.1:1/0", socket_connect_timeout=0.2)
        cached = CachingPrincipalStore(principal_store, ttl=30, client=client)
        try:
            record = await cached.get_principal_by_id("manager-1")
        finally:
            await client.aclose()
        assert record["role"] == "manager"

    async def test_cache_hit_and_invalidate(self):
        client = redis.from_url(settings.redis_url, decode_responses=True)
        try:
            await client.ping()
        except redis.RedisError:
            await client.aclose()
            pytest.skip("Redis not available")

        store = InMemoryPrincipalStore({"cache-1": {"role": "staff"}})
        cached = CachingPrincipalStore(store, ttl=30, client=client)
        try:
            assert (await cached.get_principal_by_id("cache-1"))["role"] == "staff"

            # Stale until invalidated
            store.put("cache-1", {"role": "manager"})
            assert (await cached.get_principal_by_id("cache-1"))["role"] == "staff"

            assert await invalidate_principal(client, "cache-1") is True
            assert (await cached.get_principal_by_id("cache-1"))["role"] == "manager"

            # Unknown ids are never cached
            assert await cached.get_principal_by_id("cache-missing") is None
            assert await client.get(principal_key("cache-missing")) is None
        finally:
            await client.delete(principal_key("cache-1"))
            await client.aclose()

    async def test_app_cache_uses_configured_url(self, test_settings, principal_store, audit_sink):
        """The cache connects where the app's settings say, not to the default."""
        custom = test_settings.model_copy(update={
            "redis_url": "redis://custom-host:6390/3",
            "principal_cache_ttl_seconds": 5,
        })
        app = create_app(custom, principal_store=principal_store, audit_sink=audit_sink)
        cached = app.state.engine.resolver._store
        assert isinstance(cached, CachingPrincipalStore)
        assert cached.redis_url == "redis://custom-host:6390/3"

        try:
            client = await cached._redis()
            kwargs = client.connection_pool.connection_kwargs
            assert kwargs["host"] == "custom-host"
            assert kwargs["port"] == 6390
            assert kwargs["db"] == 3
        finally:
            await close_redis()

"""Unit tests for velocity counting and its stores."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from riskgate.domains.fraud.config import FailureMode, FailurePolicy, VelocityThresholds
from riskgate.domains.fraud.detectors import (
    InMemoryVelocityStore,
    PostgresVelocityStore,
    RedisVelocityStore,
    VelocityCounter,
    VelocityDetector,
    velocity_key,
)
from riskgate.domains.fraud.rules import VELOCITY, DetectorSetting
from riskgate.shared.errors import DependencyUnavailable
from tests.conftest import NOW, make_attempt, make_session_factory

WINDOW = timedelta(hours=1)
SETTING = DetectorSetting(id=VELOCITY, name="High velocity transactions", weight=30)


class TestVelocityKey:
    def test_normalizes_customer_identity(self):
        assert velocity_key("m1", "  Ada@Example.COM ") == "vel:m1:ada@example.com"


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        store = InMemoryVelocityStore()
        counts = [await store.increment("k", WINDOW, NOW) for _ in range(3)]
        assert counts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_resets_after_expiry(self):
        store = InMemoryVelocityStore()
        await store.increment("k", WINDOW, NOW)
        await store.increment("k", WINDOW, NOW)
        assert await store.increment("k", WINDOW, NOW + WINDOW) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_hits_are_not_lost(self):
        store = InMemoryVelocityStore()
        counts = await asyncio.gather(*(store.increment("k", WINDOW, NOW) for _ in range(20)))
        assert sorted(counts) == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        store = InMemoryVelocityStore()
        await store.increment("old", WINDOW, NOW)
        await store.increment("new", WINDOW, NOW + WINDOW)
        assert await store.purge_expired(NOW + WINDOW) == 1


class TestPostgresStore:
    @pytest.mark.asyncio
    async def test_returns_upserted_count(self, mock_db_session):
        result = MagicMock()
        result.scalar_one.return_value = 4
        mock_db_session.execute.return_value = result

        store = PostgresVelocityStore(make_session_factory(mock_db_session))
        assert await store.increment("k", WINDOW, NOW) == 4
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_error_is_dependency_unavailable(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
        store = PostgresVelocityStore(make_session_factory(mock_db_session))
        with pytest.raises(DependencyUnavailable):
            await store.increment("k", WINDOW, NOW)


def _mock_redis(execute_result=None, execute_error=None):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=execute_result, side_effect=execute_error)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=pipe)
    context.__aexit__ = AsyncMock(return_value=False)
    client = MagicMock()
    client.pipeline.return_value = context
    return client, pipe


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_incr_and_expire_in_one_transaction(self):
        client, pipe = _mock_redis(execute_result=[3, True])
        store = RedisVelocityStore(client)

        assert await store.increment("k", WINDOW, NOW) == 3
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incr.assert_called_once_with("k")
        pipe.pexpire.assert_called_once_with("k", 3_600_000, nx=True)

    @pytest.mark.asyncio
    async def test_redis_error_is_dependency_unavailable(self):
        client, _ = _mock_redis(execute_error=RedisConnectionError("down"))
        with pytest.raises(DependencyUnavailable):
            await RedisVelocityStore(client).increment("k", WINDOW, NOW)


class TestVelocityCounter:
    @pytest.mark.asyncio
    async def test_uses_default_window(self):
        store = InMemoryVelocityStore()
        counter = VelocityCounter(store, WINDOW)
        assert await counter.increment("m1", "ada@example.com", now=NOW) == 1
        assert await counter.increment("m1", "ADA@example.com", now=NOW) == 2
        assert await counter.increment("m2", "ada@example.com", now=NOW) == 1


class TestVelocityDetector:
    @pytest.mark.asyncio
    async def test_triggers_on_sixth_attempt(self):
        detector = VelocityDetector(
            InMemoryVelocityStore(), VelocityThresholds(), FailurePolicy()
        )
        results = [
            await detector.evaluate(make_attempt(), SETTING, NOW) for _ in range(6)
        ]
        assert [r.triggered for r in results] == [False] * 5 + [True]
        assert results[-1].weight == 30
        assert results[-1].evidence["count"] == 6

    @pytest.mark.asyncio
    async def test_store_outage_fails_open_by_default(self):
        store = MagicMock()
        store.increment = AsyncMock(side_effect=DependencyUnavailable("down"))
        detector = VelocityDetector(store, VelocityThresholds(), FailurePolicy())

        result = await detector.evaluate(make_attempt(), SETTING, NOW)
        assert not result.triggered
        assert result.degraded
        assert result.weight == 0

    @pytest.mark.asyncio
    async def test_store_outage_fails_closed_with_capped_penalty(self):
        store = MagicMock()
        store.increment = AsyncMock(side_effect=DependencyUnavailable("down"))
        policy = FailurePolicy(mode=FailureMode.CLOSED, fail_closed_weight=10)
        detector = VelocityDetector(store, VelocityThresholds(), policy)

        result = await detector.evaluate(make_attempt(), SETTING, NOW)
        assert result.triggered
        assert result.weight == 10
        assert result.factor == "High velocity transactions check unavailable"

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return 1

        store = MagicMock()
        store.increment = slow
        detector = VelocityDetector(
            store, VelocityThresholds(timeout_seconds=0.01), FailurePolicy()
        )
        result = await detector.evaluate(make_attempt(), SETTING, NOW)
        assert result.degraded
        assert result.evidence["reason"] == "timeout"

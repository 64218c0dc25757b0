"""Fixed-window velocity counting per (merchant, customer)."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import VelocityCounterDB
from riskgate.shared.errors import DependencyUnavailable

from ..config import FailurePolicy, VelocityThresholds
from ..models import TransactionAttempt
from .base import Detector

logger = structlog.get_logger()


def velocity_key(merchant_id: str, customer_identity: str) -> str:
    return f"vel:{merchant_id}:{customer_identity.strip().lower()}"


class VelocityStore(Protocol):
    async def increment(self, key: str, window: timedelta, now: datetime) -> int:
        """Atomically bump the counter for ``key`` and return the new count.

        A missing or expired counter restarts at 1 with expiry ``now + window``.
        """
        ...


class InMemoryVelocityStore:
    """Process-local counters; suitable for a single worker or tests."""

    def __init__(self) -> None:
        self._counters: dict[str, tuple[int, datetime]] = {}
        self._lock = asyncio.Lock()

    async def increment(self, key: str, window: timedelta, now: datetime) -> int:
        async with self._lock:
            count, expires_at = self._counters.get(key, (0, None))
            if expires_at is None or expires_at <= now:
                count, expires_at = 1, now + window
            else:
                count += 1
            self._counters[key] = (count, expires_at)
            return count

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, (_, exp) in self._counters.items() if exp <= now]
            for key in expired:
                del self._counters[key]
            return len(expired)


class PostgresVelocityStore:
    """Single-statement upsert; the row lock taken by ON CONFLICT serializes writers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def increment(self, key: str, window: timedelta, now: datetime) -> int:
        expired = VelocityCounterDB.expires_at <= now
        stmt = (
            pg_insert(VelocityCounterDB)
            .values(key=key, count=1, expires_at=now + window)
            .on_conflict_do_update(
                index_elements=[VelocityCounterDB.key],
                set_={
                    "count": case((expired, 1), else_=VelocityCounterDB.count + 1),
                    "expires_at": case(
                        (expired, now + window), else_=VelocityCounterDB.expires_at
                    ),
                },
            )
            .returning(VelocityCounterDB.count)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                count = result.scalar_one()
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise DependencyUnavailable("Velocity store unavailable") from exc
        return count


class RedisVelocityStore:
    """INCR plus PEXPIRE NX in one MULTI/EXEC, so the TTL is set only by the first hit."""

    def __init__(self, client: Redis) -> None:
        self._redis = client

    async def increment(self, key: str, window: timedelta, now: datetime) -> int:
        window_ms = int(window.total_seconds() * 1000)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, window_ms, nx=True)
                count, _ = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise DependencyUnavailable("Velocity store unavailable") from exc
        return int(count)


class VelocityCounter:
    """Counts transaction attempts per (merchant, customer) in fixed windows."""

    def __init__(self, store: VelocityStore, default_window: timedelta) -> None:
        self._store = store
        self._default_window = default_window

    async def increment(
        self,
        merchant_id: str,
        customer_identity: str,
        window: timedelta | None = None,
        now: datetime | None = None,
    ) -> int:
        key = velocity_key(merchant_id, customer_identity)
        return await self._store.increment(
            key, window or self._default_window, now or datetime.now(UTC)
        )


class VelocityDetector(Detector):
    """Triggers when the attempt count in the current window exceeds the threshold."""

    detector_id = "velocity"

    def __init__(
        self,
        store: VelocityStore,
        thresholds: VelocityThresholds,
        failure: FailurePolicy,
    ) -> None:
        super().__init__(timeout_seconds=thresholds.timeout_seconds, failure=failure)
        self._thresholds = thresholds
        self.counter = VelocityCounter(store, timedelta(seconds=thresholds.window_seconds))

    async def detect(self, attempt: TransactionAttempt, now: datetime) -> tuple[bool, dict]:
        count = await self.counter.increment(attempt.merchant_id, attempt.customer_email, now=now)
        threshold = self._thresholds.max_per_window
        return count > threshold, {
            "count": count,
            "threshold": threshold,
            "window_seconds": self._thresholds.window_seconds,
        }

"""Read-side queries over historical transactions used by the anomaly detectors."""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol

import structlog
from pydantic import BaseModel
from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import TransactionDB
from riskgate.shared.errors import DependencyUnavailable

logger = structlog.get_logger()

SUCCESS_STATUS = "success"


class AmountStats(BaseModel):
    sample_size: int = 0
    avg_amount: float | None = None
    max_amount: int | None = None


class HistoryProvider(Protocol):
    async def merchant_amount_stats(self, merchant_id: str, since: datetime) -> AmountStats: ...

    async def customer_locations(self, customer_email: str, since: datetime) -> set[str]: ...


class SqlHistoryProvider:
    """Aggregates over the ``transactions`` table. Each query uses its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def merchant_amount_stats(self, merchant_id: str, since: datetime) -> AmountStats:
        stmt = select(
            func.count(TransactionDB.id).label("cnt"),
            func.avg(TransactionDB.amount).label("avg_amount"),
            func.max(TransactionDB.amount).label("max_amount"),
        ).where(
            TransactionDB.merchant_id == merchant_id,
            TransactionDB.status == SUCCESS_STATUS,
            TransactionDB.created_at >= since,
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).one()
        except (SQLAlchemyError, OSError) as exc:
            raise DependencyUnavailable("Merchant amount history unavailable") from exc

        if not row.cnt:
            return AmountStats()
        return AmountStats(
            sample_size=row.cnt,
            avg_amount=float(row.avg_amount),
            max_amount=int(row.max_amount),
        )

    async def customer_locations(self, customer_email: str, since: datetime) -> set[str]:
        stmt = select(distinct(TransactionDB.ip_address)).where(
            TransactionDB.customer_email == customer_email,
            TransactionDB.created_at >= since,
            TransactionDB.ip_address.isnot(None),
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            raise DependencyUnavailable("Customer location history unavailable") from exc
        return {row[0] for row in result.fetchall()}


class InMemoryHistoryProvider:
    """Computes the same aggregates over an in-process list of transactions."""

    def __init__(self, source: Callable[[], Iterable]) -> None:
        self._source = source

    async def merchant_amount_stats(self, merchant_id: str, since: datetime) -> AmountStats:
        amounts = [
            tx.amount
            for tx in self._source()
            if tx.merchant_id == merchant_id
            and tx.status == SUCCESS_STATUS
            and tx.created_at >= since
        ]
        if not amounts:
            return AmountStats()
        return AmountStats(
            sample_size=len(amounts),
            avg_amount=sum(amounts) / len(amounts),
            max_amount=max(amounts),
        )

    async def customer_locations(self, customer_email: str, since: datetime) -> set[str]:
        return {
            tx.ip_address
            for tx in self._source()
            if tx.customer_email == customer_email
            and tx.created_at >= since
            and tx.ip_address
        }

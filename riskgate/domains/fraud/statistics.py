"""Persisted fraud decisions and the per-merchant statistics built from them."""

from collections import Counter
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import FraudDecisionDB

from .models import DecisionRecord, FraudAction, FraudStatistics, RiskFactorCount

TOP_FACTORS = 10


class DecisionLog(Protocol):
    async def record(self, decision: DecisionRecord) -> None: ...

    async def list(
        self,
        merchant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[DecisionRecord]: ...


class InMemoryDecisionLog:
    def __init__(self) -> None:
        self._records: list[DecisionRecord] = []

    async def record(self, decision: DecisionRecord) -> None:
        self._records.append(decision)

    async def list(self, merchant_id, start=None, end=None):
        return [
            r
            for r in self._records
            if r.merchant_id == merchant_id
            and (start is None or r.created_at >= start)
            and (end is None or r.created_at <= end)
        ]


class SqlDecisionLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, decision: DecisionRecord) -> None:
        async with self._session_factory() as session:
            session.add(FraudDecisionDB(**decision.model_dump()))
            await session.commit()

    async def list(self, merchant_id, start=None, end=None):
        stmt = select(FraudDecisionDB).where(FraudDecisionDB.merchant_id == merchant_id)
        if start is not None:
            stmt = stmt.where(FraudDecisionDB.created_at >= start)
        if end is not None:
            stmt = stmt.where(FraudDecisionDB.created_at <= end)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [DecisionRecord.model_validate(r, from_attributes=True) for r in rows]


def summarize_decisions(merchant_id: str, decisions: list[DecisionRecord]) -> FraudStatistics:
    """Aggregate stored decisions. ``flagged`` counts review and block, as the gate does."""
    total = len(decisions)
    if total == 0:
        return FraudStatistics(merchant_id=merchant_id)

    review = sum(1 for d in decisions if d.action == FraudAction.REVIEW)
    blocked = sum(1 for d in decisions if d.action == FraudAction.BLOCK)
    flagged = review + blocked
    factors = Counter(f for d in decisions for f in d.factors)

    return FraudStatistics(
        merchant_id=merchant_id,
        total_transactions=total,
        flagged_transactions=flagged,
        review_transactions=review,
        blocked_transactions=blocked,
        fraud_rate=round(flagged / total * 100, 2),
        average_risk_score=round(sum(d.risk_score for d in decisions) / total, 2),
        top_risk_factors=[
            RiskFactorCount(factor=factor, count=count)
            for factor, count in factors.most_common(TOP_FACTORS)
        ],
    )


async def get_fraud_statistics(
    log: DecisionLog,
    merchant_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> FraudStatistics:
    decisions = await log.list(merchant_id, start=start, end=end)
    return summarize_decisions(merchant_id, decisions)

"""Human review cases for transactions held by the decision gate."""

import uuid
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import ReviewCaseDB
from riskgate.shared.errors import (
    ConcurrencyError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

from .models import ReviewCase, ReviewStatus, RiskAssessment

logger = structlog.get_logger()


class ReviewRepository(Protocol):
    async def create(self, case: ReviewCase) -> ReviewCase: ...

    async def get(self, case_id: str) -> ReviewCase: ...

    async def resolve(
        self,
        case_id: str,
        status: ReviewStatus,
        reviewer_id: str | None,
        note: str | None,
        resolved_at: datetime,
    ) -> ReviewCase | None:
        """Move a pending case to ``status``. Returns None if it was not pending."""
        ...

    async def reopen(self, case_id: str, status: ReviewStatus) -> None:
        """Put a case resolved as ``status`` back to pending."""
        ...

    async def list(
        self, merchant_id: str | None = None, status: ReviewStatus | None = None
    ) -> list[ReviewCase]: ...


class HeldTransactions(Protocol):
    """What a resolved review does to the transaction it was holding."""

    async def release_held(self, reference: str) -> object: ...

    async def reject_held(self, reference: str, reason: str) -> object: ...


class InMemoryReviewRepository:
    def __init__(self) -> None:
        self._cases: dict[str, ReviewCase] = {}

    async def create(self, case: ReviewCase) -> ReviewCase:
        self._cases[case.case_id] = case.model_copy()
        return case

    async def get(self, case_id: str) -> ReviewCase:
        case = self._cases.get(case_id)
        if case is None:
            raise NotFoundError(f"Review case '{case_id}' not found")
        return case.model_copy()

    async def resolve(self, case_id, status, reviewer_id, note, resolved_at):
        case = self._cases.get(case_id)
        if case is None:
            raise NotFoundError(f"Review case '{case_id}' not found")
        if case.status != ReviewStatus.PENDING:
            return None
        resolved = case.model_copy(
            update={
                "status": status,
                "reviewer_id": reviewer_id,
                "reviewer_note": note,
                "resolved_at": resolved_at,
            }
        )
        self._cases[case_id] = resolved
        return resolved.model_copy()

    async def reopen(self, case_id, status):
        case = self._cases.get(case_id)
        if case is not None and case.status == status:
            self._cases[case_id] = case.model_copy(
                update={
                    "status": ReviewStatus.PENDING,
                    "reviewer_id": None,
                    "reviewer_note": None,
                    "resolved_at": None,
                }
            )

    async def list(self, merchant_id=None, status=None):
        return [
            c.model_copy()
            for c in self._cases.values()
            if (merchant_id is None or c.merchant_id == merchant_id)
            and (status is None or c.status == status)
        ]


def _to_case(row: ReviewCaseDB) -> ReviewCase:
    return ReviewCase.model_validate(row, from_attributes=True)


class SqlReviewRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, case: ReviewCase) -> ReviewCase:
        async with self._session_factory() as session:
            session.add(ReviewCaseDB(**case.model_dump()))
            await session.commit()
        return case

    async def get(self, case_id: str) -> ReviewCase:
        async with self._session_factory() as session:
            row = (
                await session.execute(select(ReviewCaseDB).where(ReviewCaseDB.case_id == case_id))
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Review case '{case_id}' not found")
            return _to_case(row)

    async def resolve(self, case_id, status, reviewer_id, note, resolved_at):
        # Conditional write: only the first resolution matches status = pending
        stmt = (
            update(ReviewCaseDB)
            .where(
                ReviewCaseDB.case_id == case_id,
                ReviewCaseDB.status == ReviewStatus.PENDING.value,
            )
            .values(
                status=status.value,
                reviewer_id=reviewer_id,
                reviewer_note=note,
                resolved_at=resolved_at,
            )
            .returning(ReviewCaseDB)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            if row is not None:
                return _to_case(row)
        # Distinguish "already resolved" from "unknown case"
        await self.get(case_id)
        return None

    async def reopen(self, case_id, status):
        stmt = (
            update(ReviewCaseDB)
            .where(ReviewCaseDB.case_id == case_id, ReviewCaseDB.status == status.value)
            .values(
                status=ReviewStatus.PENDING.value,
                reviewer_id=None,
                reviewer_note=None,
                resolved_at=None,
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def list(self, merchant_id=None, status=None):
        stmt = select(ReviewCaseDB).order_by(ReviewCaseDB.created_at.desc())
        if merchant_id:
            stmt = stmt.where(ReviewCaseDB.merchant_id == merchant_id)
        if status:
            stmt = stmt.where(ReviewCaseDB.status == status.value)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_case(r) for r in rows]


class ReviewService:
    """Opens review cases and resolves them exactly once.

    Repeating the same verdict is a no-op that returns the stored case; the
    opposite verdict on a resolved case is an invalid transition. The held
    transaction is only touched by the call that actually resolved the case.
    If the ledger refuses the verdict the case goes back to pending.
    """

    def __init__(self, repository: ReviewRepository, transactions: HeldTransactions) -> None:
        self._repository = repository
        self._transactions = transactions

    async def open_case(
        self,
        transaction_reference: str,
        merchant_id: str,
        assessment: RiskAssessment,
    ) -> ReviewCase:
        case = ReviewCase(
            case_id=f"rev_{uuid.uuid4().hex}",
            transaction_reference=transaction_reference,
            merchant_id=merchant_id,
            risk_score=assessment.score,
            risk_level=assessment.level,
            factors=list(assessment.factors),
            created_at=datetime.now(UTC),
        )
        await self._repository.create(case)
        logger.warning(
            "review_case_opened",
            case_id=case.case_id,
            transaction_reference=transaction_reference,
            merchant_id=merchant_id,
            risk_score=case.risk_score,
            risk_level=case.risk_level.value,
        )
        return case

    async def get(self, case_id: str) -> ReviewCase:
        return await self._repository.get(case_id)

    async def list(
        self, merchant_id: str | None = None, status: ReviewStatus | None = None
    ) -> list[ReviewCase]:
        return await self._repository.list(merchant_id=merchant_id, status=status)

    async def approve(
        self, case_id: str, reviewer_id: str | None = None, note: str | None = None
    ) -> ReviewCase:
        case, resolved_now = await self._resolve(case_id, ReviewStatus.APPROVED, reviewer_id, note)
        if resolved_now:
            await self._apply(case, self._transactions.release_held(case.transaction_reference))
        return case

    async def deny(
        self, case_id: str, reviewer_id: str | None = None, note: str | None = None
    ) -> ReviewCase:
        case, resolved_now = await self._resolve(case_id, ReviewStatus.DENIED, reviewer_id, note)
        if resolved_now:
            await self._apply(
                case,
                self._transactions.reject_held(case.transaction_reference, "fraud_review_denied"),
            )
        return case

    async def _apply(self, case: ReviewCase, outcome: Awaitable[object]) -> None:
        try:
            await outcome
        except NotFoundError:
            # Cases opened for unrecorded attempts have no ledger transaction
            logger.warning(
                "review_transaction_not_recorded",
                case_id=case.case_id,
                transaction_reference=case.transaction_reference,
            )
        except (ValidationError, ConcurrencyError) as exc:
            # The ledger refused the verdict; reopen so it can be retried
            await self._repository.reopen(case.case_id, case.status)
            logger.warning(
                "review_resolution_reverted",
                case_id=case.case_id,
                status=case.status.value,
                transaction_reference=case.transaction_reference,
                error=str(exc),
            )
            raise

    async def _resolve(
        self,
        case_id: str,
        status: ReviewStatus,
        reviewer_id: str | None,
        note: str | None,
    ) -> tuple[ReviewCase, bool]:
        resolved = await self._repository.resolve(
            case_id, status, reviewer_id, note, datetime.now(UTC)
        )
        if resolved is not None:
            logger.info(
                "review_case_resolved",
                case_id=case_id,
                status=status.value,
                reviewer_id=reviewer_id,
                transaction_reference=resolved.transaction_reference,
            )
            return resolved, True

        existing = await self._repository.get(case_id)
        if existing.status == status:
            logger.info("review_case_already_resolved", case_id=case_id, status=status.value)
            return existing, False
        raise InvalidStateTransitionError("review case", existing.status.value, status.value)

"""Unit tests for review case resolution."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from riskgate.domains.fraud.models import ReviewStatus, RiskAssessment, RiskLevel
from riskgate.domains.fraud.reviews import (
    InMemoryReviewRepository,
    ReviewService,
    SqlReviewRepository,
)
from riskgate.domains.payments.models import TransactionStatus
from riskgate.shared.errors import (
    ConcurrencyError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from tests.conftest import NOW, make_session_factory, make_transaction

ASSESSMENT = RiskAssessment(
    score=55,
    level=RiskLevel.MEDIUM,
    factors=["High velocity transactions", "Amount anomaly detected"],
)


async def _held_case(services, reference="TXN_001"):
    await services.ledger.create_transaction(make_transaction(reference=reference))
    await services.ledger.apply_fraud_action(reference, "review", ASSESSMENT.score)
    return await services.reviews.open_case(reference, "merchant-1", ASSESSMENT)


class TestReviewService:
    @pytest.mark.asyncio
    async def test_open_case_copies_assessment(self, services):
        case = await _held_case(services)
        assert case.case_id.startswith("rev_")
        assert case.status == ReviewStatus.PENDING
        assert case.risk_score == 55
        assert case.risk_level == RiskLevel.MEDIUM
        assert case.factors == ASSESSMENT.factors

    @pytest.mark.asyncio
    async def test_approve_releases_transaction(self, services):
        case = await _held_case(services)
        approved = await services.reviews.approve(case.case_id, "analyst-1", "known customer")
        assert approved.status == ReviewStatus.APPROVED
        assert approved.reviewer_id == "analyst-1"
        assert approved.reviewer_note == "known customer"
        assert approved.resolved_at is not None

        tx = await services.ledger.get_transaction("TXN_001")
        assert tx.status == TransactionStatus.PROCESSING
        assert not tx.held_for_review

    @pytest.mark.asyncio
    async def test_deny_rejects_transaction(self, services):
        case = await _held_case(services)
        denied = await services.reviews.deny(case.case_id, "analyst-1")
        assert denied.status == ReviewStatus.DENIED

        tx = await services.ledger.get_transaction("TXN_001")
        assert tx.status == TransactionStatus.FAILED
        assert tx.failure_reason == "fraud_review_denied"

    @pytest.mark.asyncio
    async def test_repeat_approve_is_a_no_op(self, services):
        case = await _held_case(services)
        first = await services.reviews.approve(case.case_id, "analyst-1")
        tx_after_first = await services.ledger.get_transaction("TXN_001")

        second = await services.reviews.approve(case.case_id, "analyst-2")
        assert second.status == ReviewStatus.APPROVED
        assert second.reviewer_id == "analyst-1"
        assert second.resolved_at == first.resolved_at

        tx = await services.ledger.get_transaction("TXN_001")
        assert tx.version == tx_after_first.version

    @pytest.mark.asyncio
    async def test_deny_after_approve_conflicts(self, services):
        case = await _held_case(services)
        await services.reviews.approve(case.case_id)
        with pytest.raises(InvalidStateTransitionError):
            await services.reviews.deny(case.case_id)
        assert (await services.reviews.get(case.case_id)).status == ReviewStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unknown_case(self, services):
        with pytest.raises(NotFoundError):
            await services.reviews.approve("rev_missing")

    @pytest.mark.asyncio
    async def test_case_without_ledger_transaction_still_resolves(self, services):
        case = await services.reviews.open_case("TXN_UNRECORDED", "merchant-1", ASSESSMENT)
        approved = await services.reviews.approve(case.case_id)
        assert approved.status == ReviewStatus.APPROVED

    @pytest.mark.asyncio
    async def test_refused_verdict_reopens_case(self, services):
        case = await _held_case(services)
        await services.ledger.cancel("TXN_001", "customer abandoned checkout")

        with pytest.raises(ValidationError, match="not held"):
            await services.reviews.approve(case.case_id, "analyst-1")
        reopened = await services.reviews.get(case.case_id)
        assert reopened.status == ReviewStatus.PENDING
        assert reopened.reviewer_id is None
        assert reopened.resolved_at is None

    @pytest.mark.asyncio
    async def test_verdict_can_be_retried_after_ledger_conflict(self):
        transactions = MagicMock()
        transactions.release_held = AsyncMock(
            side_effect=[ConcurrencyError("Transaction 'TXN_001' changed"), None]
        )
        reviews = ReviewService(InMemoryReviewRepository(), transactions)
        case = await reviews.open_case("TXN_001", "merchant-1", ASSESSMENT)

        with pytest.raises(ConcurrencyError):
            await reviews.approve(case.case_id)
        assert (await reviews.get(case.case_id)).status == ReviewStatus.PENDING

        approved = await reviews.approve(case.case_id)
        assert approved.status == ReviewStatus.APPROVED
        assert transactions.release_held.await_count == 2

    @pytest.mark.asyncio
    async def test_list_filters(self, services):
        first = await _held_case(services, "TXN_A")
        await _held_case(services, "TXN_B")
        await services.reviews.deny(first.case_id)

        pending = await services.reviews.list(merchant_id="merchant-1", status=ReviewStatus.PENDING)
        assert [c.transaction_reference for c in pending] == ["TXN_B"]
        assert await services.reviews.list(merchant_id="merchant-2") == []


class TestSqlReviewRepository:
    @pytest.mark.asyncio
    async def test_resolve_on_non_pending_case_returns_none(self, mock_db_session):
        update_result = MagicMock()
        update_result.scalar_one_or_none.return_value = None
        existing = MagicMock()
        existing.scalar_one_or_none.return_value = SimpleNamespace(
            case_id="rev_1",
            transaction_reference="TXN_001",
            merchant_id="merchant-1",
            risk_score=55,
            risk_level="medium",
            factors=[],
            status="approved",
            reviewer_id="analyst-1",
            reviewer_note=None,
            created_at=NOW,
            resolved_at=NOW,
        )
        mock_db_session.execute.side_effect = [update_result, existing]

        repository = SqlReviewRepository(make_session_factory(mock_db_session))
        result = await repository.resolve("rev_1", ReviewStatus.DENIED, None, None, NOW)
        assert result is None
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resolve_unknown_case(self, mock_db_session):
        missing = MagicMock()
        missing.scalar_one_or_none.return_value = None
        mock_db_session.execute.return_value = missing

        repository = SqlReviewRepository(make_session_factory(mock_db_session))
        with pytest.raises(NotFoundError):
            await repository.resolve("rev_x", ReviewStatus.APPROVED, None, None, NOW)

    @pytest.mark.asyncio
    async def test_reopen_is_conditional_on_status(self, mock_db_session):
        repository = SqlReviewRepository(make_session_factory(mock_db_session))
        await repository.reopen("rev_1", ReviewStatus.APPROVED)

        (stmt,), _ = mock_db_session.execute.call_args
        params = stmt.compile().params
        assert params["case_id_1"] == "rev_1"
        assert params["status_1"] == "approved"
        assert params["status"] == "pending"
        mock_db_session.commit.assert_awaited_once()

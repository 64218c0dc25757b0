"""Transaction mutations and the refund ledger.

Every monetary mutation is read, apply, versioned write. A version conflict is
retried once against a fresh read so that the guard on ``remaining_amount``
always sees the latest totals; a second conflict surfaces as
ConcurrencyError.
"""

import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from riskgate.shared.errors import (
    ConcurrencyError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)

from .models import (
    REVERSIBLE_STATUSES,
    InitiatedBy,
    Refund,
    RefundStatus,
    RefundType,
    Transaction,
    TransactionStatus,
)
from .repository import RefundRepository, TransactionRepository

logger = structlog.get_logger()

T = TypeVar("T", Transaction, Refund)

FRAUD_FAILURE_REASON = "fraud_detected"

# Gate actions as plain strings; the fraud domain's FraudAction compares equal
ACTION_BLOCK = "block"
ACTION_REVIEW = "review"
ACTION_FLAG = "flag"

MAX_ATTEMPTS = 2


async def _mutate(
    entity: str,
    reference: str,
    load: Callable[[str], Awaitable[T]],
    save: Callable[[T], Awaitable[T]],
    change: Callable[[T], object],
) -> T:
    for attempt in range(1, MAX_ATTEMPTS + 1):
        current = await load(reference)
        change(current)
        try:
            return await save(current)
        except ConcurrencyError:
            if attempt == MAX_ATTEMPTS:
                logger.warning("version_conflict", entity=entity, reference=reference)
                raise
            logger.info("version_conflict_retry", entity=entity, reference=reference)
    raise AssertionError("unreachable")


class LedgerService:
    """All transaction state changes go through here."""

    def __init__(self, transactions: TransactionRepository) -> None:
        self._transactions = transactions

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        created = await self._transactions.add(transaction)
        logger.info(
            "transaction_recorded",
            reference=created.reference,
            merchant_id=created.merchant_id,
            amount=created.amount,
            currency=created.currency,
        )
        return created

    async def get_transaction(self, reference: str) -> Transaction:
        return await self._transactions.get(reference)

    async def list_transactions(self, merchant_id: str | None = None) -> list[Transaction]:
        return await self._transactions.list(merchant_id=merchant_id)

    async def mark_as_processed(
        self,
        reference: str,
        status: TransactionStatus,
        gateway_response: dict | None = None,
    ) -> Transaction:
        tx = await self._update(
            reference, lambda t: t.mark_as_processed(status, gateway_response)
        )
        logger.info("transaction_status_updated", reference=reference, status=tx.status.value)
        return tx

    async def add_refund(self, reference: str, amount: int) -> Transaction:
        tx = await self._update(reference, lambda t: t.add_refund(amount))
        logger.info(
            "transaction_refunded",
            reference=reference,
            amount=amount,
            refunded_amount=tx.refunded_amount,
            remaining_amount=tx.remaining_amount,
            status=tx.status.value,
        )
        return tx

    async def add_chargeback(self, reference: str, amount: int) -> Transaction:
        tx = await self._update(reference, lambda t: t.add_chargeback(amount))
        logger.warning(
            "transaction_chargeback",
            reference=reference,
            amount=amount,
            chargeback_amount=tx.chargeback_amount,
            remaining_amount=tx.remaining_amount,
        )
        return tx

    async def cancel(self, reference: str, reason: str | None = None) -> Transaction:
        tx = await self._update(reference, lambda t: t.cancel(reason))
        logger.info("transaction_cancelled", reference=reference, reason=reason)
        return tx

    async def apply_fraud_action(
        self, reference: str, action: str, fraud_score: int
    ) -> Transaction:
        """Move a pending, unscreened transaction according to a gate decision."""

        def change(tx: Transaction) -> None:
            # Each transaction is screened once
            if tx.status != TransactionStatus.PENDING or tx.held_for_review:
                raise InvalidStateTransitionError("transaction", tx.status.value, "screened")
            tx.fraud_score = fraud_score
            if action == ACTION_BLOCK:
                tx.mark_as_processed(TransactionStatus.FAILED)
                tx.failure_reason = FRAUD_FAILURE_REASON
            elif action == ACTION_REVIEW:
                tx.held_for_review = True
            else:
                tx.mark_as_processed(TransactionStatus.PROCESSING)
                tx.flagged = action == ACTION_FLAG

        tx = await self._update(reference, change)
        logger.info(
            "fraud_action_applied",
            reference=reference,
            action=str(action),
            fraud_score=fraud_score,
            status=tx.status.value,
        )
        return tx

    async def release_held(self, reference: str) -> Transaction:
        def change(tx: Transaction) -> None:
            if not tx.held_for_review:
                raise ValidationError(f"Transaction '{reference}' is not held for review")
            tx.mark_as_processed(TransactionStatus.PROCESSING)
            tx.held_for_review = False

        tx = await self._update(reference, change)
        logger.info("held_transaction_released", reference=reference)
        return tx

    async def reject_held(self, reference: str, reason: str) -> Transaction:
        def change(tx: Transaction) -> None:
            if not tx.held_for_review:
                raise ValidationError(f"Transaction '{reference}' is not held for review")
            tx.mark_as_processed(TransactionStatus.FAILED)
            tx.failure_reason = reason
            tx.held_for_review = False

        tx = await self._update(reference, change)
        logger.info("held_transaction_rejected", reference=reference, reason=reason)
        return tx

    async def _update(self, reference: str, change: Callable[[Transaction], object]) -> Transaction:
        return await _mutate(
            "transaction", reference, self._transactions.get, self._transactions.save, change
        )


class RefundService:
    """Refund lifecycle on top of the ledger.

    A refund is requested against the remaining amount minus whatever is
    already outstanding, may need approval, and credits the transaction only
    when it completes. Completion first claims the refund with a versioned
    write so that a second completion fails instead of crediting twice.
    """

    def __init__(
        self,
        ledger: LedgerService,
        refunds: RefundRepository,
        approval_threshold: int,
    ) -> None:
        self._ledger = ledger
        self._refunds = refunds
        self._approval_threshold = approval_threshold

    async def request_refund(
        self,
        transaction_reference: str,
        amount: int,
        reason: str,
        initiated_by: InitiatedBy,
        refund_type: RefundType | None = None,
    ) -> Refund:
        tx = await self._ledger.get_transaction(transaction_reference)
        if amount <= 0:
            raise InvalidAmountError("Refund amount must be positive")
        if tx.status not in REVERSIBLE_STATUSES:
            raise InvalidStateTransitionError("transaction", tx.status.value, "refund")

        outstanding = sum(
            r.amount
            for r in await self._refunds.list_by_transaction(transaction_reference)
            if r.is_outstanding
        )
        available = tx.remaining_amount - outstanding
        if amount > available:
            raise InvalidAmountError(
                f"Refund amount exceeds remaining balance ({amount} > {available})"
            )

        if refund_type == RefundType.FULL and amount != tx.amount:
            raise ValidationError("A full refund must equal the transaction amount")
        if refund_type is None:
            refund_type = RefundType.FULL if amount == tx.amount else RefundType.PARTIAL

        refund = Refund(
            reference=f"RFD_{uuid.uuid4().hex[:16].upper()}",
            transaction_reference=transaction_reference,
            merchant_id=tx.merchant_id,
            amount=amount,
            currency=tx.currency,
            reason=reason,
            type=refund_type,
            requires_approval=amount >= self._approval_threshold,
            initiated_by=initiated_by,
        )
        await self._refunds.add(refund)
        logger.info(
            "refund_requested",
            refund_reference=refund.reference,
            transaction_reference=transaction_reference,
            amount=amount,
            type=refund_type.value,
            requires_approval=refund.requires_approval,
            initiated_by=initiated_by.user_id,
        )
        return refund

    async def get(self, reference: str) -> Refund:
        return await self._refunds.get(reference)

    async def list_by_transaction(self, transaction_reference: str) -> list[Refund]:
        return await self._refunds.list_by_transaction(transaction_reference)

    async def approve(self, reference: str, approver_id: str, notes: str | None = None) -> Refund:
        refund = await self._update(reference, lambda r: r.approve(approver_id, notes))
        logger.info("refund_approved", refund_reference=reference, approved_by=approver_id)
        return refund

    async def cancel(self, reference: str, reason: str | None = None) -> Refund:
        refund = await self._update(reference, lambda r: r.cancel(reason))
        logger.info("refund_cancelled", refund_reference=reference, reason=reason)
        return refund

    async def mark_as_processed(
        self,
        reference: str,
        status: RefundStatus,
        gateway_response: dict | None = None,
        failure_reason: str | None = None,
    ) -> Refund:
        status = RefundStatus(status)
        claimed = await self._update(
            reference, lambda r: r.mark_as_processed(status, gateway_response, failure_reason)
        )
        if status != RefundStatus.COMPLETED:
            logger.info("refund_status_updated", refund_reference=reference, status=status.value)
            return claimed

        try:
            await self._ledger.add_refund(claimed.transaction_reference, claimed.amount)
        except (ValidationError, ConcurrencyError) as exc:
            # The credit was rejected, so the completion never took effect
            claimed.status = RefundStatus.FAILED
            claimed.failure_reason = str(exc)
            await self._refunds.save(claimed)
            logger.warning(
                "refund_credit_rejected",
                refund_reference=reference,
                transaction_reference=claimed.transaction_reference,
                amount=claimed.amount,
                error=str(exc),
            )
            raise

        logger.info(
            "refund_completed",
            refund_reference=reference,
            transaction_reference=claimed.transaction_reference,
            amount=claimed.amount,
        )
        return claimed

    async def _update(self, reference: str, change: Callable[[Refund], object]) -> Refund:
        return await _mutate("refund", reference, self._refunds.get, self._refunds.save, change)

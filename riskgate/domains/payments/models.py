"""Transaction and refund state machines.

Both models mutate in place and raise domain errors on illegal moves; the
repositories in ``repository`` persist them with an optimistic version check.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from riskgate.shared.errors import (
    InvalidAmountError,
    InvalidStateTransitionError,
    ValidationError,
)


class TransactionStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CHARGEBACK = "chargeback"
    DISPUTED = "disputed"


class RefundStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundType(StrEnum):
    FULL = "full"
    PARTIAL = "partial"


class InitiatorType(StrEnum):
    MERCHANT = "merchant"
    ADMIN = "admin"
    SYSTEM = "system"


_PROCESSING_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
            TransactionStatus.EXPIRED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset(
        {
            TransactionStatus.SUCCESS,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
            TransactionStatus.EXPIRED,
        }
    ),
    TransactionStatus.SUCCESS: frozenset({TransactionStatus.DISPUTED}),
    TransactionStatus.PARTIALLY_REFUNDED: frozenset({TransactionStatus.DISPUTED}),
    TransactionStatus.DISPUTED: frozenset({TransactionStatus.SUCCESS}),
}

# Statuses in which money has settled and can be reversed. Refunded and
# chargeback are terminal.
REVERSIBLE_STATUSES = frozenset(
    {
        TransactionStatus.SUCCESS,
        TransactionStatus.PARTIALLY_REFUNDED,
        TransactionStatus.DISPUTED,
    }
)

CANCELLABLE_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.PROCESSING})


class Transaction(BaseModel):
    reference: str
    merchant_id: str
    customer_email: str
    amount: int = Field(gt=0)
    currency: str = "NGN"
    status: TransactionStatus = TransactionStatus.PENDING
    fees: int = Field(default=0, ge=0)
    refunded_amount: int = 0
    chargeback_amount: int = 0
    fraud_score: int | None = None
    ip_address: str | None = None
    flagged: bool = False
    held_for_review: bool = False
    failure_reason: str | None = None
    cancellation_reason: str | None = None
    gateway_response: dict | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    processed_at: datetime | None = None
    expires_at: datetime | None = None
    refunded_at: datetime | None = None
    chargeback_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 1

    @property
    def remaining_amount(self) -> int:
        return self.amount - self.refunded_amount - self.chargeback_amount

    def mark_as_processed(
        self,
        status: TransactionStatus,
        gateway_response: dict | None = None,
        now: datetime | None = None,
    ) -> "Transaction":
        status = TransactionStatus(status)
        if gateway_response is not None:
            self.gateway_response = gateway_response

        if status == self.status:
            return self

        allowed = _PROCESSING_TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidStateTransitionError("transaction", self.status.value, status.value)

        now = now or datetime.now(UTC)
        if self.status == TransactionStatus.DISPUTED and status == TransactionStatus.SUCCESS:
            # A resolved dispute returns to whatever the totals say
            self.status = self._settled_status()
        else:
            self.status = status
        if status == TransactionStatus.SUCCESS and self.processed_at is None:
            self.processed_at = now
        return self

    def add_refund(self, amount: int, now: datetime | None = None) -> "Transaction":
        self._check_reversal(amount, "refund")
        self.refunded_amount += amount
        self.refunded_at = now or datetime.now(UTC)
        self.status = self._settled_status()
        return self

    def add_chargeback(self, amount: int, now: datetime | None = None) -> "Transaction":
        self._check_reversal(amount, "chargeback")
        self.chargeback_amount += amount
        self.chargeback_at = now or datetime.now(UTC)
        self.status = TransactionStatus.CHARGEBACK
        return self

    def cancel(self, reason: str | None = None, now: datetime | None = None) -> "Transaction":
        if self.status not in CANCELLABLE_STATUSES:
            raise InvalidStateTransitionError(
                "transaction", self.status.value, TransactionStatus.CANCELLED.value
            )
        self.status = TransactionStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_at = now or datetime.now(UTC)
        self.held_for_review = False
        return self

    def _check_reversal(self, amount: int, kind: str) -> None:
        if amount <= 0:
            raise InvalidAmountError(f"{kind.capitalize()} amount must be positive")
        if self.status not in REVERSIBLE_STATUSES:
            raise InvalidStateTransitionError("transaction", self.status.value, kind)
        if amount > self.remaining_amount:
            raise InvalidAmountError(
                f"{kind.capitalize()} amount exceeds remaining balance "
                f"({amount} > {self.remaining_amount})"
            )

    def _settled_status(self) -> TransactionStatus:
        if self.chargeback_amount > 0:
            return TransactionStatus.CHARGEBACK
        if self.refunded_amount >= self.amount:
            return TransactionStatus.REFUNDED
        if self.refunded_amount > 0:
            return TransactionStatus.PARTIALLY_REFUNDED
        return TransactionStatus.SUCCESS


class InitiatedBy(BaseModel):
    user_id: str
    user_type: InitiatorType = InitiatorType.MERCHANT
    ip_address: str | None = None


class ApprovalInfo(BaseModel):
    approved_by: str
    approved_at: datetime
    notes: str | None = None


_REFUND_TRANSITIONS: dict[RefundStatus, frozenset[RefundStatus]] = {
    RefundStatus.PENDING: frozenset(
        {
            RefundStatus.PROCESSING,
            RefundStatus.COMPLETED,
            RefundStatus.FAILED,
            RefundStatus.CANCELLED,
        }
    ),
    RefundStatus.PROCESSING: frozenset({RefundStatus.COMPLETED, RefundStatus.FAILED}),
}


class Refund(BaseModel):
    reference: str
    transaction_reference: str
    merchant_id: str
    amount: int = Field(gt=0)
    currency: str = "NGN"
    reason: str
    status: RefundStatus = RefundStatus.PENDING
    type: RefundType = RefundType.PARTIAL
    requires_approval: bool = False
    initiated_by: InitiatedBy
    approval_info: ApprovalInfo | None = None
    failure_reason: str | None = None
    gateway_response: dict | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    processed_at: datetime | None = None
    version: int = 1

    @property
    def is_outstanding(self) -> bool:
        """Still holds a claim on the transaction's remaining amount."""
        return self.status in (RefundStatus.PENDING, RefundStatus.PROCESSING)

    def approve(
        self, approver_id: str, notes: str | None = None, now: datetime | None = None
    ) -> "Refund":
        if self.status != RefundStatus.PENDING:
            raise InvalidStateTransitionError("refund", self.status.value, "approved")
        if self.approval_info is not None:
            raise ValidationError(f"Refund {self.reference} is already approved")
        self.approval_info = ApprovalInfo(
            approved_by=approver_id, approved_at=now or datetime.now(UTC), notes=notes
        )
        return self

    def mark_as_processed(
        self,
        status: RefundStatus,
        gateway_response: dict | None = None,
        failure_reason: str | None = None,
        now: datetime | None = None,
    ) -> "Refund":
        status = RefundStatus(status)
        if status == self.status and status != RefundStatus.COMPLETED:
            return self
        if status not in _REFUND_TRANSITIONS.get(self.status, frozenset()):
            raise InvalidStateTransitionError("refund", self.status.value, status.value)
        if (
            status == RefundStatus.COMPLETED
            and self.requires_approval
            and self.approval_info is None
        ):
            raise ValidationError(f"Refund {self.reference} requires approval before completion")

        self.status = status
        self.processed_at = now or datetime.now(UTC)
        if gateway_response is not None:
            self.gateway_response = gateway_response
        if failure_reason is not None:
            self.failure_reason = failure_reason
        return self

    def cancel(self, reason: str | None = None) -> "Refund":
        if self.status != RefundStatus.PENDING:
            raise InvalidStateTransitionError(
                "refund", self.status.value, RefundStatus.CANCELLED.value
            )
        self.status = RefundStatus.CANCELLED
        if reason:
            self.failure_reason = reason
        return self

"""Pydantic models for the fraud domain."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudAction(StrEnum):
    ALLOW = "allow"
    FLAG = "flag"
    REVIEW = "review"
    BLOCK = "block"

    @property
    def severity(self) -> int:
        return _ACTION_SEVERITY[self]


_ACTION_SEVERITY = {
    FraudAction.ALLOW: 0,
    FraudAction.FLAG: 1,
    FraudAction.REVIEW: 2,
    FraudAction.BLOCK: 3,
}


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


# Names a rule predicate may reference
RULE_CONTEXT_FIELDS = frozenset(
    {
        "amount",
        "currency",
        "hour",
        "weekday",
        "ip_address",
        "customer_email",
        "merchant_id",
        "is_new_customer",
        "failed_attempts",
    }
)


class TransactionAttempt(BaseModel):
    reference: str | None = None
    amount: int = Field(ge=0)
    currency: str = "NGN"
    customer_email: str
    merchant_id: str
    ip_address: str | None = None
    created_at: datetime | None = None
    is_new_customer: bool = False
    failed_attempts: int = Field(default=0, ge=0)

    def rule_context(self) -> dict:
        """Flat snapshot of the attempt that rule predicates evaluate against."""
        created = self.created_at or datetime.now(UTC)
        return {
            "amount": self.amount,
            "currency": self.currency,
            "hour": created.hour,
            "weekday": created.weekday(),
            "ip_address": self.ip_address,
            "customer_email": self.customer_email,
            "merchant_id": self.merchant_id,
            "is_new_customer": self.is_new_customer,
            "failed_attempts": self.failed_attempts,
        }


class SignalResult(BaseModel):
    """Outcome of one scoring input (a rule or a detector)."""

    name: str
    factor: str
    triggered: bool
    weight: int = 0
    degraded: bool = False
    evidence: dict = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    score: int = Field(ge=0, le=100)
    level: RiskLevel
    factors: list[str] = []
    recommendations: list[str] = []
    signals: list[SignalResult] = []
    rule_set_version: int = 0


class MerchantFraudSettings(BaseModel):
    enabled: bool = True
    block_threshold: int = Field(default=70, ge=0)
    review_threshold: int = Field(default=50, ge=0)
    flag_threshold: int = Field(default=30, ge=0)


class GateDecision(BaseModel):
    action: FraudAction
    reason: str | None = None
    is_fraudulent: bool = False
    flagged: bool = False


class FraudAnalysis(BaseModel):
    is_fraudulent: bool
    risk_score: RiskAssessment
    flagged: bool
    action: FraudAction
    reason: str | None = None
    review_case_id: str | None = None


class ReviewCase(BaseModel):
    case_id: str
    transaction_reference: str
    merchant_id: str
    risk_score: int
    risk_level: RiskLevel
    factors: list[str] = []
    status: ReviewStatus = ReviewStatus.PENDING
    reviewer_id: str | None = None
    reviewer_note: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None


class DecisionRecord(BaseModel):
    transaction_reference: str | None = None
    merchant_id: str
    customer_email: str
    amount: int
    currency: str
    action: FraudAction
    risk_score: int
    risk_level: RiskLevel
    factors: list[str] = []
    recommendations: list[str] = []
    created_at: datetime


class RiskFactorCount(BaseModel):
    factor: str
    count: int


class FraudStatistics(BaseModel):
    merchant_id: str
    total_transactions: int = 0
    flagged_transactions: int = 0
    review_transactions: int = 0
    blocked_transactions: int = 0
    fraud_rate: float = 0.0
    average_risk_score: float = 0.0
    top_risk_factors: list[RiskFactorCount] = []

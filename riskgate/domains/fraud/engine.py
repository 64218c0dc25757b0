"""Fraud engine: score an attempt, gate it, and record what was decided."""

from datetime import UTC, datetime

import structlog

from riskgate.domains.payments.ledger import LedgerService
from riskgate.domains.payments.models import Transaction, TransactionStatus
from riskgate.shared.errors import InvalidStateTransitionError, NotFoundError

from .config import EventSettings
from .decision import DecisionGate
from .events import publish_decision
from .merchant_settings import MerchantSettingsProvider
from .models import (
    DecisionRecord,
    FraudAction,
    FraudAnalysis,
    GateDecision,
    RiskAssessment,
    TransactionAttempt,
)
from .reviews import ReviewService
from .rules.registry import RuleRegistry
from .scorer import RiskScorer
from .statistics import DecisionLog

logger = structlog.get_logger()


class FraudEngine:
    """Orchestrates one evaluation.

    Merchant settings are read fresh and the rule set is pinned to a single
    snapshot before scoring starts, so a concurrent rule edit never mixes
    into an evaluation already in flight.
    """

    def __init__(
        self,
        scorer: RiskScorer,
        registry: RuleRegistry,
        merchant_settings: MerchantSettingsProvider,
        reviews: ReviewService,
        decisions: DecisionLog,
        ledger: LedgerService,
        events: EventSettings,
        producer=None,
        gate: DecisionGate | None = None,
    ) -> None:
        self._scorer = scorer
        self._registry = registry
        self._merchant_settings = merchant_settings
        self._reviews = reviews
        self._decisions = decisions
        self._ledger = ledger
        self._events = events
        self._producer = producer
        self._gate = gate or DecisionGate()

    async def analyze_transaction(self, attempt: TransactionAttempt) -> FraudAnalysis:
        assessment, decision = await self._evaluate(attempt)

        case_id = None
        if decision.action == FraudAction.REVIEW:
            case_id = await self._hold_for_review(attempt, assessment)

        return await self._conclude(attempt, assessment, decision, case_id)

    async def screen_transaction(
        self,
        reference: str,
        is_new_customer: bool = False,
        failed_attempts: int = 0,
    ) -> tuple[FraudAnalysis, Transaction]:
        """Analyze a recorded pending transaction and apply the gate's action to it.

        The action is written to the ledger before a case is opened or the
        decision recorded. Of two concurrent screenings only the first write
        lands; the other fails with InvalidStateTransitionError and leaves
        nothing behind.
        """
        tx = await self._ledger.get_transaction(reference)
        if tx.status != TransactionStatus.PENDING or tx.held_for_review:
            raise InvalidStateTransitionError("transaction", tx.status.value, "screened")

        attempt = TransactionAttempt(
            reference=tx.reference,
            amount=tx.amount,
            currency=tx.currency,
            customer_email=tx.customer_email,
            merchant_id=tx.merchant_id,
            ip_address=tx.ip_address,
            created_at=tx.created_at,
            is_new_customer=is_new_customer,
            failed_attempts=failed_attempts,
        )
        assessment, decision = await self._evaluate(attempt)
        updated = await self._ledger.apply_fraud_action(
            reference, decision.action, assessment.score
        )

        case_id = None
        if decision.action == FraudAction.REVIEW:
            case = await self._reviews.open_case(reference, tx.merchant_id, assessment)
            case_id = case.case_id

        analysis = await self._conclude(attempt, assessment, decision, case_id)
        return analysis, updated

    async def _evaluate(
        self, attempt: TransactionAttempt
    ) -> tuple[RiskAssessment, GateDecision]:
        settings = await self._merchant_settings.get(attempt.merchant_id)
        rule_set = self._registry.snapshot()

        assessment = await self._scorer.assess(attempt, rule_set)
        return assessment, self._gate.decide(assessment, settings)

    async def _hold_for_review(
        self, attempt: TransactionAttempt, assessment: RiskAssessment
    ) -> str | None:
        """Hold the recorded transaction, if any, and open a case for it."""
        if not attempt.reference:
            logger.warning(
                "review_case_skipped_no_reference",
                merchant_id=attempt.merchant_id,
                risk_score=assessment.score,
            )
            return None

        try:
            await self._ledger.apply_fraud_action(
                attempt.reference, FraudAction.REVIEW, assessment.score
            )
        except NotFoundError:
            # Not recorded in the ledger; the case stands on its own
            pass
        except InvalidStateTransitionError as exc:
            logger.warning(
                "review_case_skipped_transaction_not_holdable",
                reference=attempt.reference,
                merchant_id=attempt.merchant_id,
                status=exc.current,
            )
            return None

        case = await self._reviews.open_case(attempt.reference, attempt.merchant_id, assessment)
        return case.case_id

    async def _conclude(
        self,
        attempt: TransactionAttempt,
        assessment: RiskAssessment,
        decision: GateDecision,
        case_id: str | None,
    ) -> FraudAnalysis:
        record = DecisionRecord(
            transaction_reference=attempt.reference,
            merchant_id=attempt.merchant_id,
            customer_email=attempt.customer_email,
            amount=attempt.amount,
            currency=attempt.currency,
            action=decision.action,
            risk_score=assessment.score,
            risk_level=assessment.level,
            factors=list(assessment.factors),
            recommendations=list(assessment.recommendations),
            created_at=datetime.now(UTC),
        )
        await self._decisions.record(record)
        await publish_decision(record, self._producer, self._events, review_case_id=case_id)

        logger.info(
            "transaction_analyzed",
            reference=attempt.reference,
            merchant_id=attempt.merchant_id,
            risk_score=assessment.score,
            risk_level=assessment.level.value,
            action=decision.action.value,
            factors=assessment.factors,
            review_case_id=case_id,
        )

        return FraudAnalysis(
            is_fraudulent=decision.is_fraudulent,
            risk_score=assessment,
            flagged=decision.flagged,
            action=decision.action,
            reason=decision.reason,
            review_case_id=case_id,
        )

"""Risk scoring: rules and detectors fan out, weights are summed and clamped."""

import asyncio
from datetime import UTC, datetime

import structlog

from .detectors import Detector
from .models import RiskAssessment, RiskLevel, SignalResult, TransactionAttempt
from .rules import RuleSet

logger = structlog.get_logger()

MAX_SCORE = 100


def classify_risk_level(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


_LEVEL_RECOMMENDATIONS = {
    RiskLevel.CRITICAL: ["Block transaction immediately", "Flag customer for review"],
    RiskLevel.HIGH: ["Review transaction manually", "Request additional verification"],
    RiskLevel.MEDIUM: ["Monitor transaction closely", "Consider additional verification"],
    RiskLevel.LOW: ["Proceed with normal processing"],
}


class RiskScorer:
    """Produces a RiskAssessment for one transaction attempt.

    The enabled rules and the three detectors are independent, so they are
    awaited together and joined before the score is computed. Factor order is
    fixed (rules in rule-set order, then velocity, amount, geography) no
    matter which input finishes first.
    """

    def __init__(
        self,
        velocity: Detector,
        amount_anomaly: Detector,
        geographic_anomaly: Detector,
    ) -> None:
        self._detectors = (velocity, amount_anomaly, geographic_anomaly)

    async def assess(
        self,
        attempt: TransactionAttempt,
        rule_set: RuleSet,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(UTC)

        rule_signals, *detector_signals = await asyncio.gather(
            self._evaluate_rules(attempt, rule_set),
            *(self._evaluate_detector(d, attempt, rule_set, now) for d in self._detectors),
        )

        signals = [*rule_signals, *(s for s in detector_signals if s is not None)]
        triggered = [s for s in signals if s.triggered]

        score = min(sum(s.weight for s in triggered), MAX_SCORE)
        level = classify_risk_level(score)

        assessment = RiskAssessment(
            score=score,
            level=level,
            factors=[s.factor for s in triggered],
            recommendations=list(_LEVEL_RECOMMENDATIONS[level]),
            signals=signals,
            rule_set_version=rule_set.version,
        )

        logger.info(
            "risk_assessed",
            merchant_id=attempt.merchant_id,
            reference=attempt.reference,
            score=score,
            level=level.value,
            triggered_count=len(triggered),
            degraded=[s.name for s in signals if s.degraded],
            rule_set_version=rule_set.version,
        )
        return assessment

    async def _evaluate_rules(
        self, attempt: TransactionAttempt, rule_set: RuleSet
    ) -> list[SignalResult]:
        context = attempt.rule_context()
        results: list[SignalResult] = []
        for rule in rule_set.enabled_rules:
            try:
                hit = rule.matches(context)
            except Exception:
                logger.exception("rule_evaluation_error", rule_id=rule.id)
                hit = False
            results.append(
                SignalResult(
                    name=rule.id,
                    factor=rule.name,
                    triggered=hit,
                    weight=rule.weight if hit else 0,
                )
            )
        return results

    async def _evaluate_detector(
        self,
        detector: Detector,
        attempt: TransactionAttempt,
        rule_set: RuleSet,
        now: datetime,
    ) -> SignalResult | None:
        setting = rule_set.detector(detector.detector_id)
        if setting is None or not setting.enabled:
            return None
        return await detector.evaluate(attempt, setting, now)

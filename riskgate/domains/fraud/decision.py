"""Maps a risk score to an action using merchant thresholds."""

import structlog

from .models import FraudAction, GateDecision, MerchantFraudSettings, RiskAssessment

logger = structlog.get_logger()

_REASONS = {
    FraudAction.BLOCK: "High risk score detected",
    FraudAction.REVIEW: "Suspicious activity detected",
    FraudAction.FLAG: "Moderate risk detected",
}


class DecisionGate:
    """Each threshold is compared on its own and the most severe hit wins.

    Merchants can store thresholds in any order; a misordered configuration
    is logged but never silently re-ranked.
    """

    def decide(
        self,
        assessment: RiskAssessment,
        settings: MerchantFraudSettings,
    ) -> GateDecision:
        if not settings.enabled:
            return GateDecision(action=FraudAction.ALLOW)

        if not (
            settings.block_threshold >= settings.review_threshold >= settings.flag_threshold
        ):
            logger.warning(
                "fraud_thresholds_misordered",
                block_threshold=settings.block_threshold,
                review_threshold=settings.review_threshold,
                flag_threshold=settings.flag_threshold,
            )

        score = assessment.score
        hits = {
            FraudAction.BLOCK: score >= settings.block_threshold,
            FraudAction.REVIEW: score >= settings.review_threshold,
            FraudAction.FLAG: score >= settings.flag_threshold,
        }
        action = next(
            (a for a in (FraudAction.BLOCK, FraudAction.REVIEW, FraudAction.FLAG) if hits[a]),
            FraudAction.ALLOW,
        )

        return GateDecision(
            action=action,
            reason=_REASONS.get(action),
            is_fraudulent=action == FraudAction.BLOCK,
            flagged=action in (FraudAction.REVIEW, FraudAction.BLOCK),
        )

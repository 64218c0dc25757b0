"""Unit tests for the decision gate."""

import pytest

from riskgate.domains.fraud.decision import DecisionGate
from riskgate.domains.fraud.models import (
    FraudAction,
    MerchantFraudSettings,
    RiskAssessment,
)
from riskgate.domains.fraud.scorer import classify_risk_level

GATE = DecisionGate()
DEFAULTS = MerchantFraudSettings()


def _assessment(score: int) -> RiskAssessment:
    return RiskAssessment(score=score, level=classify_risk_level(score))


class TestDecisionGate:
    @pytest.mark.parametrize(
        ("score", "action", "reason"),
        [
            (0, FraudAction.ALLOW, None),
            (29, FraudAction.ALLOW, None),
            (30, FraudAction.FLAG, "Moderate risk detected"),
            (50, FraudAction.REVIEW, "Suspicious activity detected"),
            (55, FraudAction.REVIEW, "Suspicious activity detected"),
            (70, FraudAction.BLOCK, "High risk score detected"),
            (100, FraudAction.BLOCK, "High risk score detected"),
        ],
    )
    def test_default_thresholds(self, score, action, reason):
        decision = GATE.decide(_assessment(score), DEFAULTS)
        assert decision.action == action
        assert decision.reason == reason

    def test_flags_follow_action(self):
        assert not GATE.decide(_assessment(30), DEFAULTS).flagged
        review = GATE.decide(_assessment(50), DEFAULTS)
        assert review.flagged and not review.is_fraudulent
        block = GATE.decide(_assessment(90), DEFAULTS)
        assert block.flagged and block.is_fraudulent

    def test_disabled_merchant_always_allows(self):
        settings = MerchantFraudSettings(enabled=False)
        decision = GATE.decide(_assessment(100), settings)
        assert decision.action == FraudAction.ALLOW
        assert not decision.flagged

    def test_monotonic_in_score(self):
        settings = MerchantFraudSettings(block_threshold=80, review_threshold=45, flag_threshold=20)
        severities = [GATE.decide(_assessment(s), settings).action.severity for s in range(101)]
        assert severities == sorted(severities)

    def test_misordered_thresholds_pick_most_severe_hit(self):
        # Block below review: a score over both is blocked, never reviewed
        settings = MerchantFraudSettings(block_threshold=40, review_threshold=60, flag_threshold=30)
        assert GATE.decide(_assessment(65), settings).action == FraudAction.BLOCK
        assert GATE.decide(_assessment(45), settings).action == FraudAction.BLOCK
        assert GATE.decide(_assessment(35), settings).action == FraudAction.FLAG

    def test_zero_thresholds_block_everything(self):
        settings = MerchantFraudSettings(block_threshold=0, review_threshold=0, flag_threshold=0)
        assert GATE.decide(_assessment(0), settings).action == FraudAction.BLOCK

"""Fraud rule package.

Exports the rule descriptor types, the registry, and ``build_default_rule_set``
which assembles the stock rules plus the built-in detector settings.
"""

from ..config import FraudConfig, default_config
from .base import DetectorSetting, RiskRule, RuleOperator, RuleSet
from .expressions import RuleExpression, compile_expression
from .registry import RuleRegistry

# Built-in detector ids
VELOCITY = "velocity"
AMOUNT_ANOMALY = "amount_anomaly"
GEOGRAPHIC_ANOMALY = "geographic_anomaly"


def build_default_rule_set(config: FraudConfig | None = None) -> RuleSet:
    cfg = config or default_config
    rules = (
        RiskRule(
            id="high_amount",
            name="High Transaction Amount",
            description="Transaction amount is unusually high",
            weight=20,
            field="amount",
            operator=RuleOperator.GT,
            threshold=cfg.rules.high_amount_min,
        ),
        RiskRule(
            id="multiple_failed_attempts",
            name="Multiple Failed Attempts",
            description="Multiple failed payment attempts from same source",
            weight=25,
            field="failed_attempts",
            operator=RuleOperator.GTE,
            threshold=cfg.rules.failed_attempts_min,
        ),
        RiskRule(
            id="unusual_time",
            name="Unusual Transaction Time",
            description="Transaction at unusual hours",
            weight=15,
            expression="hour < 6 or hour > 23",
        ),
        RiskRule(
            id="new_customer_high_amount",
            name="New Customer High Amount",
            description="New customer with high transaction amount",
            weight=30,
            expression=f"amount > {cfg.rules.new_customer_amount_min} and is_new_customer",
        ),
        RiskRule(
            id="suspicious_ip",
            name="Suspicious IP Address",
            description="Transaction from suspicious IP address",
            weight=20,
            field="ip_address",
            operator=RuleOperator.IN,
            threshold=list(cfg.rules.suspicious_ips),
        ),
    )
    detectors = (
        DetectorSetting(
            id=VELOCITY, name="High velocity transactions", weight=cfg.weights.velocity
        ),
        DetectorSetting(
            id=AMOUNT_ANOMALY, name="Amount anomaly detected", weight=cfg.weights.amount_anomaly
        ),
        DetectorSetting(
            id=GEOGRAPHIC_ANOMALY, name="Geographic anomaly", weight=cfg.weights.geographic_anomaly
        ),
    )
    return RuleSet(version=1, rules=rules, detectors=detectors)


__all__ = [
    "AMOUNT_ANOMALY",
    "GEOGRAPHIC_ANOMALY",
    "VELOCITY",
    "DetectorSetting",
    "RiskRule",
    "RuleExpression",
    "RuleOperator",
    "RuleRegistry",
    "RuleSet",
    "build_default_rule_set",
    "compile_expression",
]

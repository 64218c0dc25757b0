"""Fraud risk-decision domain."""

from .decision import DecisionGate
from .engine import FraudEngine
from .models import (
    FraudAction,
    FraudAnalysis,
    FraudStatistics,
    MerchantFraudSettings,
    ReviewCase,
    ReviewStatus,
    RiskAssessment,
    RiskLevel,
    TransactionAttempt,
)
from .reviews import ReviewService
from .rules import RuleRegistry, RuleSet, build_default_rule_set
from .scorer import RiskScorer
from .statistics import get_fraud_statistics

__all__ = [
    "DecisionGate",
    "FraudAction",
    "FraudAnalysis",
    "FraudEngine",
    "FraudStatistics",
    "MerchantFraudSettings",
    "ReviewCase",
    "ReviewService",
    "ReviewStatus",
    "RiskAssessment",
    "RiskLevel",
    "RiskScorer",
    "RuleRegistry",
    "RuleSet",
    "TransactionAttempt",
    "build_default_rule_set",
    "get_fraud_statistics",
]

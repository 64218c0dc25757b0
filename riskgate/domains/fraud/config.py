"""Fraud engine configuration with sensible defaults."""

import os
from dataclasses import dataclass, field
from enum import StrEnum


class FailureMode(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class VelocityThresholds:
    window_seconds: int = 3600
    max_per_window: int = 5
    timeout_seconds: float = 0.5


@dataclass
class AnomalyThresholds:
    amount_window_hours: int = 24
    amount_avg_multiplier: float = 3.0
    amount_max_multiplier: float = 1.5
    geo_window_hours: int = 24
    geo_max_distinct_locations: int = 2
    timeout_seconds: float = 1.0


@dataclass
class DetectorWeights:
    velocity: int = 30
    amount_anomaly: int = 25
    geographic_anomaly: int = 20


@dataclass
class RuleDefaults:
    high_amount_min: int = 1_000_000
    new_customer_amount_min: int = 500_000
    failed_attempts_min: int = 3
    suspicious_ips: tuple[str, ...] = ()


@dataclass
class FailurePolicy:
    # Behaviour when a detector's backing query fails or times out
    mode: FailureMode = FailureMode.OPEN
    fail_closed_weight: int = 10


@dataclass
class MerchantDefaults:
    enabled: bool = True
    block_threshold: int = 70
    review_threshold: int = 50
    flag_threshold: int = 30


@dataclass
class RefundSettings:
    # Refunds at or above this amount need approval before they can complete
    approval_threshold: int = 500_000


@dataclass
class EventSettings:
    kafka_topic: str = "riskgate.fraud.decisions"
    publish_actions: tuple[str, ...] = ("review", "block")


@dataclass
class FraudConfig:
    velocity: VelocityThresholds = field(default_factory=VelocityThresholds)
    anomaly: AnomalyThresholds = field(default_factory=AnomalyThresholds)
    weights: DetectorWeights = field(default_factory=DetectorWeights)
    rules: RuleDefaults = field(default_factory=RuleDefaults)
    failure: FailurePolicy = field(default_factory=FailurePolicy)
    merchant_defaults: MerchantDefaults = field(default_factory=MerchantDefaults)
    refunds: RefundSettings = field(default_factory=RefundSettings)
    events: EventSettings = field(default_factory=EventSettings)

    @classmethod
    def from_env(cls) -> "FraudConfig":
        """Load config with env var overrides. Env vars use FRAUD_ prefix."""
        config = cls()

        # Velocity overrides
        if v := os.getenv("FRAUD_VELOCITY_WINDOW_SECONDS"):
            config.velocity.window_seconds = int(v)
        if v := os.getenv("FRAUD_VELOCITY_MAX_PER_WINDOW"):
            config.velocity.max_per_window = int(v)

        # Anomaly overrides
        if v := os.getenv("FRAUD_AMOUNT_WINDOW_HOURS"):
            config.anomaly.amount_window_hours = int(v)
        if v := os.getenv("FRAUD_GEO_WINDOW_HOURS"):
            config.anomaly.geo_window_hours = int(v)
        if v := os.getenv("FRAUD_DETECTOR_TIMEOUT_SECONDS"):
            config.anomaly.timeout_seconds = float(v)

        # Detector weights
        if v := os.getenv("FRAUD_VELOCITY_WEIGHT"):
            config.weights.velocity = int(v)
        if v := os.getenv("FRAUD_AMOUNT_ANOMALY_WEIGHT"):
            config.weights.amount_anomaly = int(v)
        if v := os.getenv("FRAUD_GEO_ANOMALY_WEIGHT"):
            config.weights.geographic_anomaly = int(v)

        # Rules
        if v := os.getenv("FRAUD_SUSPICIOUS_IPS"):
            config.rules.suspicious_ips = tuple(ip.strip() for ip in v.split(",") if ip.strip())

        # Failure policy
        if v := os.getenv("FRAUD_DETECTOR_FAILURE_MODE"):
            config.failure.mode = FailureMode(v.lower())
        if v := os.getenv("FRAUD_FAIL_CLOSED_WEIGHT"):
            config.failure.fail_closed_weight = int(v)

        # Refunds
        if v := os.getenv("FRAUD_REFUND_APPROVAL_THRESHOLD"):
            config.refunds.approval_threshold = int(v)

        # Events
        if v := os.getenv("FRAUD_DECISION_KAFKA_TOPIC"):
            config.events.kafka_topic = v

        return config


# Module-level default instance
default_config = FraudConfig()

"""Built-in detectors: velocity, amount anomaly, geographic anomaly."""

from .anomaly import AmountAnomalyDetector, GeographicAnomalyDetector
from .base import Detector
from .velocity import (
    InMemoryVelocityStore,
    PostgresVelocityStore,
    RedisVelocityStore,
    VelocityCounter,
    VelocityDetector,
    VelocityStore,
    velocity_key,
)

__all__ = [
    "AmountAnomalyDetector",
    "Detector",
    "GeographicAnomalyDetector",
    "InMemoryVelocityStore",
    "PostgresVelocityStore",
    "RedisVelocityStore",
    "VelocityCounter",
    "VelocityDetector",
    "VelocityStore",
    "velocity_key",
]

"""Statistical anomaly detectors over trailing-window history."""

from datetime import datetime, timedelta

from ..config import AnomalyThresholds, FailurePolicy
from ..history import HistoryProvider
from ..models import TransactionAttempt
from .base import Detector


class AmountAnomalyDetector(Detector):
    """Compares the amount with the merchant's recent successful transactions.

    Triggers when the amount exceeds ``avg * 3`` or ``max * 1.5`` over the
    trailing window. No history means no anomaly.
    """

    detector_id = "amount_anomaly"

    def __init__(
        self,
        history: HistoryProvider,
        thresholds: AnomalyThresholds,
        failure: FailurePolicy,
    ) -> None:
        super().__init__(timeout_seconds=thresholds.timeout_seconds, failure=failure)
        self._history = history
        self._thresholds = thresholds

    async def detect(self, attempt: TransactionAttempt, now: datetime) -> tuple[bool, dict]:
        since = now - timedelta(hours=self._thresholds.amount_window_hours)
        stats = await self._history.merchant_amount_stats(attempt.merchant_id, since)

        if stats.sample_size == 0 or stats.avg_amount is None or stats.max_amount is None:
            return False, {"sample_size": 0}

        avg_limit = stats.avg_amount * self._thresholds.amount_avg_multiplier
        max_limit = stats.max_amount * self._thresholds.amount_max_multiplier
        triggered = attempt.amount > avg_limit or attempt.amount > max_limit

        return triggered, {
            "amount": attempt.amount,
            "sample_size": stats.sample_size,
            "avg_amount": round(stats.avg_amount, 2),
            "max_amount": stats.max_amount,
            "avg_limit": round(avg_limit, 2),
            "max_limit": round(max_limit, 2),
        }


class GeographicAnomalyDetector(Detector):
    """Triggers when a customer shows up from too many distinct IPs in the window."""

    detector_id = "geographic_anomaly"

    def __init__(
        self,
        history: HistoryProvider,
        thresholds: AnomalyThresholds,
        failure: FailurePolicy,
    ) -> None:
        super().__init__(timeout_seconds=thresholds.timeout_seconds, failure=failure)
        self._history = history
        self._thresholds = thresholds

    async def detect(self, attempt: TransactionAttempt, now: datetime) -> tuple[bool, dict]:
        since = now - timedelta(hours=self._thresholds.geo_window_hours)
        locations = await self._history.customer_locations(attempt.customer_email, since)
        # The attempt being scored may not be recorded yet
        if attempt.ip_address:
            locations = locations | {attempt.ip_address}

        limit = self._thresholds.geo_max_distinct_locations
        return len(locations) > limit, {
            "distinct_locations": len(locations),
            "limit": limit,
            "window_hours": self._thresholds.geo_window_hours,
        }

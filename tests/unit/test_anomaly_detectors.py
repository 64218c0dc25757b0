"""Unit tests for the amount and geographic anomaly detectors."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from riskgate.domains.fraud.config import AnomalyThresholds, FailureMode, FailurePolicy
from riskgate.domains.fraud.detectors import AmountAnomalyDetector, GeographicAnomalyDetector
from riskgate.domains.fraud.history import (
    AmountStats,
    InMemoryHistoryProvider,
    SqlHistoryProvider,
)
from riskgate.domains.fraud.rules import AMOUNT_ANOMALY, GEOGRAPHIC_ANOMALY, DetectorSetting
from riskgate.shared.errors import DependencyUnavailable
from tests.conftest import NOW, make_attempt, make_session_factory

AMOUNT_SETTING = DetectorSetting(id=AMOUNT_ANOMALY, name="Amount anomaly detected", weight=25)
GEO_SETTING = DetectorSetting(id=GEOGRAPHIC_ANOMALY, name="Geographic anomaly", weight=20)


def _history(stats: AmountStats | None = None, locations: set[str] | None = None):
    history = MagicMock()
    history.merchant_amount_stats = AsyncMock(return_value=stats or AmountStats())
    history.customer_locations = AsyncMock(return_value=locations or set())
    return history


def _tx(**kwargs):
    defaults = {
        "merchant_id": "merchant-1",
        "customer_email": "ada@example.com",
        "status": "success",
        "amount": 10_000,
        "ip_address": "10.0.0.1",
        "created_at": NOW - timedelta(hours=1),
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class TestAmountAnomaly:
    @pytest.mark.asyncio
    async def test_no_history_is_not_anomalous(self):
        detector = AmountAnomalyDetector(_history(), AnomalyThresholds(), FailurePolicy())
        result = await detector.evaluate(make_attempt(amount=10_000_000), AMOUNT_SETTING, NOW)
        assert not result.triggered
        assert result.evidence["sample_size"] == 0

    @pytest.mark.asyncio
    async def test_exceeds_three_times_average(self):
        stats = AmountStats(sample_size=10, avg_amount=10_000, max_amount=100_000)
        detector = AmountAnomalyDetector(_history(stats), AnomalyThresholds(), FailurePolicy())
        result = await detector.evaluate(make_attempt(amount=30_001), AMOUNT_SETTING, NOW)
        assert result.triggered
        assert result.weight == 25
        assert result.factor == "Amount anomaly detected"

    @pytest.mark.asyncio
    async def test_exceeds_one_and_a_half_times_max(self):
        stats = AmountStats(sample_size=2, avg_amount=90_000, max_amount=100_000)
        detector = AmountAnomalyDetector(_history(stats), AnomalyThresholds(), FailurePolicy())
        assert (
            await detector.evaluate(make_attempt(amount=150_001), AMOUNT_SETTING, NOW)
        ).triggered
        assert not (
            await detector.evaluate(make_attempt(amount=150_000), AMOUNT_SETTING, NOW)
        ).triggered

    @pytest.mark.asyncio
    async def test_window_is_trailing(self):
        history = _history()
        detector = AmountAnomalyDetector(history, AnomalyThresholds(), FailurePolicy())
        await detector.evaluate(make_attempt(), AMOUNT_SETTING, NOW)
        history.merchant_amount_stats.assert_awaited_once_with(
            "merchant-1", NOW - timedelta(hours=24)
        )

    @pytest.mark.asyncio
    async def test_history_outage_fails_open(self):
        history = _history()
        history.merchant_amount_stats.side_effect = DependencyUnavailable("down")
        detector = AmountAnomalyDetector(history, AnomalyThresholds(), FailurePolicy())
        result = await detector.evaluate(make_attempt(), AMOUNT_SETTING, NOW)
        assert not result.triggered
        assert result.degraded

    @pytest.mark.asyncio
    async def test_history_outage_fails_closed(self):
        history = _history()
        history.merchant_amount_stats.side_effect = DependencyUnavailable("down")
        policy = FailurePolicy(mode=FailureMode.CLOSED, fail_closed_weight=40)
        detector = AmountAnomalyDetector(history, AnomalyThresholds(), policy)
        result = await detector.evaluate(make_attempt(), AMOUNT_SETTING, NOW)
        assert result.triggered
        # Penalty never exceeds the detector's own weight
        assert result.weight == 25


class TestGeographicAnomaly:
    @pytest.mark.asyncio
    async def test_current_ip_counts_toward_distinct_locations(self):
        history = _history(locations={"1.1.1.1", "2.2.2.2"})
        detector = GeographicAnomalyDetector(history, AnomalyThresholds(), FailurePolicy())
        result = await detector.evaluate(make_attempt(ip_address="3.3.3.3"), GEO_SETTING, NOW)
        assert result.triggered
        assert result.evidence["distinct_locations"] == 3

    @pytest.mark.asyncio
    async def test_repeat_ip_is_not_anomalous(self):
        history = _history(locations={"1.1.1.1", "2.2.2.2"})
        detector = GeographicAnomalyDetector(history, AnomalyThresholds(), FailurePolicy())
        result = await detector.evaluate(make_attempt(ip_address="1.1.1.1"), GEO_SETTING, NOW)
        assert not result.triggered


class TestInMemoryHistory:
    @pytest.mark.asyncio
    async def test_amount_stats_only_count_recent_successes(self):
        source = [
            _tx(amount=10_000),
            _tx(amount=30_000),
            _tx(amount=999_999, status="failed"),
            _tx(amount=999_999, created_at=NOW - timedelta(days=3)),
            _tx(amount=999_999, merchant_id="other"),
        ]
        history = InMemoryHistoryProvider(lambda: source)
        stats = await history.merchant_amount_stats("merchant-1", NOW - timedelta(hours=24))
        assert stats.sample_size == 2
        assert stats.avg_amount == 20_000
        assert stats.max_amount == 30_000

    @pytest.mark.asyncio
    async def test_locations_are_distinct_and_non_null(self):
        source = [_tx(ip_address="1.1.1.1"), _tx(ip_address="1.1.1.1"), _tx(ip_address=None)]
        history = InMemoryHistoryProvider(lambda: source)
        locations = await history.customer_locations("ada@example.com", NOW - timedelta(hours=24))
        assert locations == {"1.1.1.1"}


class TestSqlHistory:
    @pytest.mark.asyncio
    async def test_empty_aggregate(self, mock_db_session):
        result = MagicMock()
        result.one.return_value = SimpleNamespace(cnt=0, avg_amount=None, max_amount=None)
        mock_db_session.execute.return_value = result

        history = SqlHistoryProvider(make_session_factory(mock_db_session))
        stats = await history.merchant_amount_stats("merchant-1", NOW)
        assert stats.sample_size == 0

    @pytest.mark.asyncio
    async def test_aggregate_values(self, mock_db_session):
        result = MagicMock()
        result.one.return_value = SimpleNamespace(cnt=3, avg_amount=20_000.0, max_amount=40_000)
        mock_db_session.execute.return_value = result

        history = SqlHistoryProvider(make_session_factory(mock_db_session))
        stats = await history.merchant_amount_stats("merchant-1", NOW)
        assert stats == AmountStats(sample_size=3, avg_amount=20_000.0, max_amount=40_000)

    @pytest.mark.asyncio
    async def test_query_failure_is_dependency_unavailable(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
        history = SqlHistoryProvider(make_session_factory(mock_db_session))
        with pytest.raises(DependencyUnavailable):
            await history.customer_locations("ada@example.com", NOW)

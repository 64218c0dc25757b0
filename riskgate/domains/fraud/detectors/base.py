"""Base class for the built-in detectors (velocity, amount, geography)."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime

import structlog

from riskgate.shared.errors import DependencyUnavailable

from ..config import FailureMode, FailurePolicy
from ..models import SignalResult, TransactionAttempt
from ..rules.base import DetectorSetting

logger = structlog.get_logger()


class Detector(ABC):
    """A scoring input backed by a store query.

    Subclasses implement :meth:`detect`. :meth:`evaluate` bounds it with a
    timeout and applies the failure policy when the backing store is
    unavailable: ``open`` reports the detector as not triggered, ``closed``
    reports it triggered with a capped penalty weight.
    """

    detector_id: str

    def __init__(self, timeout_seconds: float, failure: FailurePolicy) -> None:
        self._timeout = timeout_seconds
        self._failure = failure

    @abstractmethod
    async def detect(self, attempt: TransactionAttempt, now: datetime) -> tuple[bool, dict]:
        """Return (triggered, evidence)."""
        ...

    async def evaluate(
        self,
        attempt: TransactionAttempt,
        setting: DetectorSetting,
        now: datetime,
    ) -> SignalResult:
        try:
            triggered, evidence = await asyncio.wait_for(
                self.detect(attempt, now), timeout=self._timeout
            )
        except (DependencyUnavailable, TimeoutError) as exc:
            return self._degraded(setting, exc)

        return SignalResult(
            name=self.detector_id,
            factor=setting.name,
            triggered=triggered,
            weight=setting.weight if triggered else 0,
            evidence=evidence,
        )

    def _degraded(self, setting: DetectorSetting, exc: Exception) -> SignalResult:
        reason = "timeout" if isinstance(exc, TimeoutError) else "dependency_unavailable"
        logger.warning(
            "detector_unavailable",
            detector=self.detector_id,
            reason=reason,
            failure_mode=self._failure.mode.value,
            error=str(exc),
        )
        if self._failure.mode == FailureMode.CLOSED:
            return SignalResult(
                name=self.detector_id,
                factor=f"{setting.name} check unavailable",
                triggered=True,
                weight=min(self._failure.fail_closed_weight, setting.weight),
                degraded=True,
                evidence={"reason": reason},
            )
        return SignalResult(
            name=self.detector_id,
            factor=setting.name,
            triggered=False,
            degraded=True,
            evidence={"reason": reason},
        )

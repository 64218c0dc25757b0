"""Single-writer registry that publishes versioned rule set snapshots."""

import asyncio

import pydantic
import structlog

from riskgate.shared.errors import NotFoundError, ValidationError

from .base import DetectorSetting, RiskRule, RuleSet

logger = structlog.get_logger()

_DETECTOR_MUTABLE_FIELDS = {"weight", "enabled"}


def _build_rule(data: dict) -> RiskRule:
    try:
        return RiskRule.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid rule definition: {exc.errors()[0]['msg']}") from exc


def _build_detector(data: dict) -> DetectorSetting:
    try:
        return DetectorSetting.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid detector setting: {exc.errors()[0]['msg']}") from exc


class RuleRegistry:
    """Holds the current RuleSet.

    Readers call :meth:`snapshot` and keep the returned object for the whole
    evaluation; it is immutable, so later admin changes never leak into an
    evaluation already in flight. Writers serialize on a lock and swap in a
    new snapshot with the version bumped.
    """

    def __init__(self, rule_set: RuleSet) -> None:
        self._current = rule_set
        self._lock = asyncio.Lock()

    def snapshot(self) -> RuleSet:
        return self._current

    async def add_rule(self, data: dict) -> RuleSet:
        rule = _build_rule(data)
        async with self._lock:
            current = self._current
            if current.rule(rule.id) or current.detector(rule.id):
                raise ValidationError(f"Rule '{rule.id}' already exists")
            new = self._publish(current, rules=(*current.rules, rule))
        logger.info("fraud_rule_added", rule_id=rule.id, name=rule.name, version=new.version)
        return new

    async def update_rule(self, rule_id: str, updates: dict) -> RuleSet:
        async with self._lock:
            current = self._current
            updates = {k: v for k, v in updates.items() if k != "id"}

            if detector := current.detector(rule_id):
                unsupported = set(updates) - _DETECTOR_MUTABLE_FIELDS
                if unsupported:
                    raise ValidationError(
                        f"Detector '{rule_id}' only accepts weight/enabled updates"
                    )
                replacement = _build_detector({**detector.model_dump(), **updates})
                detectors = tuple(
                    replacement if d.id == rule_id else d for d in current.detectors
                )
                new = self._publish(current, detectors=detectors)
            elif rule := current.rule(rule_id):
                replacement = _build_rule({**rule.model_dump(), **updates})
                rules = tuple(replacement if r.id == rule_id else r for r in current.rules)
                new = self._publish(current, rules=rules)
            else:
                raise NotFoundError(f"Rule '{rule_id}' not found")

        logger.info(
            "fraud_rule_updated", rule_id=rule_id, fields=sorted(updates), version=new.version
        )
        return new

    async def toggle_rule(self, rule_id: str, enabled: bool) -> RuleSet:
        return await self.update_rule(rule_id, {"enabled": enabled})

    async def remove_rule(self, rule_id: str) -> RuleSet:
        async with self._lock:
            current = self._current
            if current.detector(rule_id):
                raise ValidationError(f"Built-in detector '{rule_id}' cannot be removed")
            if not current.rule(rule_id):
                raise NotFoundError(f"Rule '{rule_id}' not found")
            new = self._publish(
                current, rules=tuple(r for r in current.rules if r.id != rule_id)
            )
        logger.info("fraud_rule_removed", rule_id=rule_id, version=new.version)
        return new

    def _publish(
        self,
        current: RuleSet,
        rules: tuple[RiskRule, ...] | None = None,
        detectors: tuple[DetectorSetting, ...] | None = None,
    ) -> RuleSet:
        new = RuleSet(
            version=current.version + 1,
            rules=current.rules if rules is None else rules,
            detectors=current.detectors if detectors is None else detectors,
        )
        self._current = new
        return new

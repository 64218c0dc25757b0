"""Data-driven rule descriptors and the versioned rule set they live in."""

import operator
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models import RULE_CONTEXT_FIELDS
from .expressions import compile_expression


class RuleOperator(StrEnum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NOT_IN = "not_in"


_OPERATORS = {
    RuleOperator.GT: operator.gt,
    RuleOperator.GTE: operator.ge,
    RuleOperator.LT: operator.lt,
    RuleOperator.LTE: operator.le,
    RuleOperator.EQ: operator.eq,
    RuleOperator.NE: operator.ne,
    RuleOperator.IN: lambda value, threshold: value in threshold,
    RuleOperator.NOT_IN: lambda value, threshold: value not in threshold,
}


class RiskRule(BaseModel):
    """A named, weighted predicate.

    The predicate is either a single comparison (``field`` ``operator``
    ``threshold``) or, for conditions that combine several fields, a
    sandboxed ``expression``. Exactly one of the two forms must be given.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    weight: int = Field(gt=0)
    enabled: bool = True
    field: str | None = None
    operator: RuleOperator | None = None
    threshold: Any = None
    expression: str | None = None

    @model_validator(mode="after")
    def _check_predicate(self) -> "RiskRule":
        if self.expression is not None:
            if self.field is not None or self.operator is not None:
                raise ValueError("A rule takes either an expression or a field comparison")
            compile_expression(self.expression)
            return self

        if self.field is None or self.operator is None:
            raise ValueError("A rule needs field and operator, or an expression")
        if self.field not in RULE_CONTEXT_FIELDS:
            raise ValueError(f"Unknown rule field: {self.field}")
        if self.operator in (RuleOperator.IN, RuleOperator.NOT_IN) and not isinstance(
            self.threshold, (list, tuple, set, frozenset)
        ):
            raise ValueError(f"Operator '{self.operator}' needs a list threshold")
        return self

    def matches(self, context: dict) -> bool:
        if self.expression is not None:
            return compile_expression(self.expression).evaluate(context)
        value = context.get(self.field)
        return bool(_OPERATORS[self.operator](value, self.threshold))


class DetectorSetting(BaseModel):
    """Weight and switch for one of the built-in detectors."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    weight: int = Field(gt=0)
    enabled: bool = True


class RuleSet(BaseModel):
    """Immutable snapshot of every scoring input's configuration."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    rules: tuple[RiskRule, ...] = ()
    detectors: tuple[DetectorSetting, ...] = ()

    def rule(self, rule_id: str) -> RiskRule | None:
        return next((r for r in self.rules if r.id == rule_id), None)

    def detector(self, detector_id: str) -> DetectorSetting | None:
        return next((d for d in self.detectors if d.id == detector_id), None)

    @property
    def enabled_rules(self) -> tuple[RiskRule, ...]:
        return tuple(r for r in self.rules if r.enabled)

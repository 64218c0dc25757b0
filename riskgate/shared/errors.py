"""Error taxonomy shared by the fraud engine and the payment ledger."""


class RiskGateError(Exception):
    """Base class for all domain errors."""

    code = "riskgate_error"


class ValidationError(RiskGateError, ValueError):
    """The request is invalid for the current state of the entity."""

    code = "validation_error"


class InvalidAmountError(ValidationError):
    """A refund or chargeback amount is non-positive or exceeds the remaining balance."""

    code = "invalid_amount"


class InvalidStateTransitionError(ValidationError):
    code = "invalid_state_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class ConcurrencyError(RiskGateError):
    """An optimistic version check failed; the entity changed underneath us."""

    code = "concurrency_conflict"


class DependencyUnavailable(RiskGateError):
    """A backing store (history queries, velocity store) could not be reached."""

    code = "dependency_unavailable"


class ConfigurationError(RiskGateError):
    """Merchant fraud settings are missing or malformed."""

    code = "configuration_error"


class NotFoundError(RiskGateError, LookupError):
    code = "not_found"

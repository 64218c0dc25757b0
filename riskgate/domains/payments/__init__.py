"""Payment ledger domain: transaction state machine and refunds."""

from .ledger import LedgerService, RefundService
from .models import (
    InitiatedBy,
    InitiatorType,
    Refund,
    RefundStatus,
    RefundType,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "InitiatedBy",
    "InitiatorType",
    "LedgerService",
    "Refund",
    "RefundService",
    "RefundStatus",
    "RefundType",
    "Transaction",
    "TransactionStatus",
]

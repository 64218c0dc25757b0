"""Transaction ledger endpoints: record, screen, and gateway callbacks."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from riskgate.api.dependencies import Services, get_request_id, get_services
from riskgate.domains.fraud.models import FraudAction
from riskgate.domains.payments.models import Transaction, TransactionStatus

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


class CreateTransactionRequest(BaseModel):
    reference: str | None = None
    merchant_id: str
    customer_email: str
    amount: int = Field(gt=0)
    currency: str = "NGN"
    fees: int = Field(default=0, ge=0)
    ip_address: str | None = None
    expires_at: datetime | None = None


class ScreenRequest(BaseModel):
    is_new_customer: bool = False
    failed_attempts: int = Field(default=0, ge=0)


class StatusUpdateRequest(BaseModel):
    status: TransactionStatus
    gateway_response: dict | None = None


class AmountRequest(BaseModel):
    amount: int


class CancelRequest(BaseModel):
    reason: str | None = None


def _payload(tx: Transaction) -> dict:
    return {**tx.model_dump(mode="json"), "remaining_amount": tx.remaining_amount}


@router.post("", status_code=201)
async def create_transaction(
    body: CreateTransactionRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    tx = Transaction(
        reference=body.reference or f"TXN_{uuid.uuid4().hex[:16].upper()}",
        **body.model_dump(exclude={"reference"}),
    )
    return _payload(await services.ledger.create_transaction(tx))


@router.get("")
async def list_transactions(
    merchant_id: str | None = Query(default=None),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    transactions = await services.ledger.list_transactions(merchant_id=merchant_id)
    return {"count": len(transactions), "transactions": [_payload(t) for t in transactions]}


@router.get("/{reference}")
async def get_transaction(
    reference: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _payload(await services.ledger.get_transaction(reference))


@router.post("/{reference}/screen")
async def screen_transaction(
    reference: str,
    body: ScreenRequest | None = None,
    services: Services = Depends(get_services),  # noqa: B008
    request_id: str = Depends(get_request_id),
):
    """Run the fraud check for a pending transaction.

    The payer sees a generic decline on block; a held transaction looks the
    same as one still being processed.
    """
    body = body or ScreenRequest()
    analysis, tx = await services.engine.screen_transaction(
        reference, is_new_customer=body.is_new_customer, failed_attempts=body.failed_attempts
    )

    if analysis.action == FraudAction.BLOCK:
        return JSONResponse(
            status_code=403,
            content={
                "error": "transaction_declined",
                "message": "Transaction declined",
                "request_id": request_id,
            },
        )
    if analysis.action == FraudAction.REVIEW:
        return JSONResponse(
            status_code=202,
            content={"reference": tx.reference, "status": tx.status.value},
        )
    return {"reference": tx.reference, "status": tx.status.value}


@router.post("/{reference}/status")
async def update_status(
    reference: str,
    body: StatusUpdateRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    tx = await services.ledger.mark_as_processed(reference, body.status, body.gateway_response)
    return _payload(tx)


@router.post("/{reference}/chargebacks")
async def add_chargeback(
    reference: str,
    body: AmountRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _payload(await services.ledger.add_chargeback(reference, body.amount))


@router.post("/{reference}/cancel")
async def cancel_transaction(
    reference: str,
    body: CancelRequest | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    body = body or CancelRequest()
    return _payload(await services.ledger.cancel(reference, body.reason))

"""Refund ledger endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from riskgate.api.dependencies import Services, get_services
from riskgate.domains.payments.models import InitiatedBy, Refund, RefundStatus, RefundType

router = APIRouter(prefix="/api/v1/refunds", tags=["refunds"])


class RefundRequest(BaseModel):
    transaction_reference: str
    amount: int
    reason: str
    initiated_by: InitiatedBy
    type: RefundType | None = None


class ApproveRequest(BaseModel):
    approver_id: str
    notes: str | None = None


class ProcessRequest(BaseModel):
    status: RefundStatus
    gateway_response: dict | None = None
    failure_reason: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


def _payload(refund: Refund) -> dict:
    return refund.model_dump(mode="json")


@router.post("", status_code=201)
async def request_refund(
    body: RefundRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    refund = await services.refunds.request_refund(
        body.transaction_reference,
        body.amount,
        body.reason,
        body.initiated_by,
        refund_type=body.type,
    )
    return _payload(refund)


@router.get("/transaction/{transaction_reference}")
async def list_refunds_for_transaction(
    transaction_reference: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    refunds = await services.refunds.list_by_transaction(transaction_reference)
    return {
        "transaction_reference": transaction_reference,
        "count": len(refunds),
        "refunds": [_payload(r) for r in refunds],
    }


@router.get("/{reference}")
async def get_refund(
    reference: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _payload(await services.refunds.get(reference))


@router.post("/{reference}/approve")
async def approve_refund(
    reference: str,
    body: ApproveRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _payload(await services.refunds.approve(reference, body.approver_id, body.notes))


@router.post("/{reference}/process")
async def process_refund(
    reference: str,
    body: ProcessRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    refund = await services.refunds.mark_as_processed(
        reference, body.status, body.gateway_response, body.failure_reason
    )
    return _payload(refund)


@router.post("/{reference}/cancel")
async def cancel_refund(
    reference: str,
    body: CancelRequest | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    body = body or CancelRequest()
    return _payload(await services.refunds.cancel(reference, body.reason))

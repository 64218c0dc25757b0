"""Fraud analysis, rule administration, merchant settings, reviews, statistics."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from riskgate.api.dependencies import Services, get_services
from riskgate.domains.fraud.models import ReviewCase, ReviewStatus, TransactionAttempt
from riskgate.domains.fraud.rules import RuleSet
from riskgate.domains.fraud.statistics import get_fraud_statistics
from riskgate.shared.errors import ConfigurationError, ValidationError

router = APIRouter(prefix="/api/v1/fraud", tags=["fraud"])


class ToggleRequest(BaseModel):
    enabled: bool


class ReviewResolution(BaseModel):
    reviewer_id: str | None = None
    note: str | None = None


def _rule_set_payload(rule_set: RuleSet) -> dict:
    return {
        "version": rule_set.version,
        "rules": [r.model_dump(mode="json") for r in rule_set.rules],
        "detectors": [d.model_dump(mode="json") for d in rule_set.detectors],
    }


def _case_payload(case: ReviewCase) -> dict:
    return case.model_dump(mode="json")


@router.post("/analyze")
async def analyze_transaction(
    attempt: TransactionAttempt,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    analysis = await services.engine.analyze_transaction(attempt)
    return analysis.model_dump(mode="json")


@router.get("/rules")
async def list_rules(services: Services = Depends(get_services)) -> dict:  # noqa: B008
    """Current rule set snapshot: rules, built-in detectors and version."""
    return _rule_set_payload(services.registry.snapshot())


@router.post("/rules", status_code=201)
async def add_rule(
    rule: dict[str, Any],
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _rule_set_payload(await services.registry.add_rule(rule))


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    updates: dict[str, Any],
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _rule_set_payload(await services.registry.update_rule(rule_id, updates))


@router.post("/rules/{rule_id}/toggle")
async def toggle_rule(
    rule_id: str,
    body: ToggleRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _rule_set_payload(await services.registry.toggle_rule(rule_id, body.enabled))


@router.delete("/rules/{rule_id}")
async def remove_rule(
    rule_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _rule_set_payload(await services.registry.remove_rule(rule_id))


@router.get("/settings/{merchant_id}")
async def get_merchant_settings(
    merchant_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    settings = await services.merchant_settings.get(merchant_id)
    return {"merchant_id": merchant_id, **settings.model_dump()}


@router.put("/settings/{merchant_id}")
async def save_merchant_settings(
    merchant_id: str,
    body: dict[str, Any],
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    try:
        settings = await services.merchant_settings.save(merchant_id, body)
    except ConfigurationError as exc:
        # Bad request body rather than a stored misconfiguration
        raise ValidationError(str(exc)) from exc
    return {"merchant_id": merchant_id, **settings.model_dump()}


@router.get("/statistics/{merchant_id}")
async def fraud_statistics(
    merchant_id: str,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    stats = await get_fraud_statistics(services.decisions, merchant_id, start=start, end=end)
    return stats.model_dump(mode="json")


@router.get("/reviews")
async def list_reviews(
    merchant_id: str | None = Query(default=None),
    status: ReviewStatus | None = Query(default=None),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    cases = await services.reviews.list(merchant_id=merchant_id, status=status)
    return {"count": len(cases), "reviews": [_case_payload(c) for c in cases]}


@router.get("/reviews/{case_id}")
async def get_review(
    case_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    return _case_payload(await services.reviews.get(case_id))


@router.post("/reviews/{case_id}/approve")
async def approve_review(
    case_id: str,
    body: ReviewResolution | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    body = body or ReviewResolution()
    case = await services.reviews.approve(case_id, reviewer_id=body.reviewer_id, note=body.note)
    return _case_payload(case)


@router.post("/reviews/{case_id}/deny")
async def deny_review(
    case_id: str,
    body: ReviewResolution | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    body = body or ReviewResolution()
    case = await services.reviews.deny(case_id, reviewer_id=body.reviewer_id, note=body.note)
    return _case_payload(case)

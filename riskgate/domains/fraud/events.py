"""Kafka publishing of review and block decisions."""

import json

import structlog

from .config import EventSettings
from .models import DecisionRecord

logger = structlog.get_logger()


async def publish_decision(
    decision: DecisionRecord,
    producer,
    settings: EventSettings,
    review_case_id: str | None = None,
) -> None:
    """Publish a decision for downstream consumers.

    Args:
        decision: The persisted decision record.
        producer: An aiokafka AIOKafkaProducer instance, or None when Kafka is off.
        settings: Topic and the actions worth publishing.
        review_case_id: Case opened for a review decision, if any.
    """
    if decision.action.value not in settings.publish_actions:
        return
    if producer is None:
        logger.debug("kafka_producer_not_available", reference=decision.transaction_reference)
        return

    payload = {
        **decision.model_dump(mode="json"),
        "review_case_id": review_case_id,
    }

    try:
        await producer.send_and_wait(
            settings.kafka_topic,
            value=json.dumps(payload).encode("utf-8"),
            key=decision.merchant_id.encode("utf-8"),
        )
        logger.info(
            "decision_published_to_kafka",
            reference=decision.transaction_reference,
            action=decision.action.value,
            topic=settings.kafka_topic,
        )
    except Exception:
        logger.exception(
            "decision_publish_failed",
            reference=decision.transaction_reference,
            topic=settings.kafka_topic,
        )

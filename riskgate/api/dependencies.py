"""Service wiring and FastAPI dependency providers."""

from dataclasses import dataclass

from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.domains.fraud.config import FraudConfig
from riskgate.domains.fraud.detectors import (
    AmountAnomalyDetector,
    GeographicAnomalyDetector,
    InMemoryVelocityStore,
    PostgresVelocityStore,
    RedisVelocityStore,
    VelocityDetector,
    VelocityStore,
)
from riskgate.domains.fraud.engine import FraudEngine
from riskgate.domains.fraud.history import (
    HistoryProvider,
    InMemoryHistoryProvider,
    SqlHistoryProvider,
)
from riskgate.domains.fraud.merchant_settings import (
    InMemoryMerchantSettingsProvider,
    MerchantSettingsProvider,
    SqlMerchantSettingsProvider,
)
from riskgate.domains.fraud.reviews import (
    InMemoryReviewRepository,
    ReviewRepository,
    ReviewService,
    SqlReviewRepository,
)
from riskgate.domains.fraud.rules import RuleRegistry, build_default_rule_set
from riskgate.domains.fraud.scorer import RiskScorer
from riskgate.domains.fraud.statistics import DecisionLog, InMemoryDecisionLog, SqlDecisionLog
from riskgate.domains.payments.ledger import LedgerService, RefundService
from riskgate.domains.payments.repository import (
    InMemoryRefundRepository,
    InMemoryTransactionRepository,
    RefundRepository,
    SqlRefundRepository,
    SqlTransactionRepository,
    TransactionRepository,
)


@dataclass
class Services:
    engine: FraudEngine
    registry: RuleRegistry
    merchant_settings: MerchantSettingsProvider
    reviews: ReviewService
    decisions: DecisionLog
    ledger: LedgerService
    refunds: RefundService


def _assemble(
    config: FraudConfig,
    velocity_store: VelocityStore,
    history: HistoryProvider,
    merchant_settings: MerchantSettingsProvider,
    review_repository: ReviewRepository,
    decisions: DecisionLog,
    transactions: TransactionRepository,
    refund_repository: RefundRepository,
    producer=None,
) -> Services:
    registry = RuleRegistry(build_default_rule_set(config))
    scorer = RiskScorer(
        velocity=VelocityDetector(velocity_store, config.velocity, config.failure),
        amount_anomaly=AmountAnomalyDetector(history, config.anomaly, config.failure),
        geographic_anomaly=GeographicAnomalyDetector(history, config.anomaly, config.failure),
    )
    ledger = LedgerService(transactions)
    reviews = ReviewService(review_repository, ledger)
    engine = FraudEngine(
        scorer=scorer,
        registry=registry,
        merchant_settings=merchant_settings,
        reviews=reviews,
        decisions=decisions,
        ledger=ledger,
        events=config.events,
        producer=producer,
    )
    return Services(
        engine=engine,
        registry=registry,
        merchant_settings=merchant_settings,
        reviews=reviews,
        decisions=decisions,
        ledger=ledger,
        refunds=RefundService(ledger, refund_repository, config.refunds.approval_threshold),
    )


def build_velocity_store(
    backend: str,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: Redis | None = None,
) -> VelocityStore:
    if backend == "memory":
        return InMemoryVelocityStore()
    if backend == "redis":
        if redis_client is None:
            raise ValueError("Redis velocity backend needs a redis client")
        return RedisVelocityStore(redis_client)
    if backend == "postgres":
        if session_factory is None:
            raise ValueError("Postgres velocity backend needs a session factory")
        return PostgresVelocityStore(session_factory)
    raise ValueError(f"Unknown velocity backend: {backend}")


def build_sql_services(
    config: FraudConfig,
    session_factory: async_sessionmaker[AsyncSession],
    velocity_store: VelocityStore,
    producer=None,
) -> Services:
    return _assemble(
        config,
        velocity_store=velocity_store,
        history=SqlHistoryProvider(session_factory),
        merchant_settings=SqlMerchantSettingsProvider(session_factory, config.merchant_defaults),
        review_repository=SqlReviewRepository(session_factory),
        decisions=SqlDecisionLog(session_factory),
        transactions=SqlTransactionRepository(session_factory),
        refund_repository=SqlRefundRepository(session_factory),
        producer=producer,
    )


def build_in_memory_services(
    config: FraudConfig,
    velocity_store: VelocityStore | None = None,
    merchant_documents: dict[str, dict] | None = None,
    producer=None,
) -> Services:
    """Everything in-process: single-worker deployments and tests."""
    transactions = InMemoryTransactionRepository()
    return _assemble(
        config,
        velocity_store=velocity_store or InMemoryVelocityStore(),
        history=InMemoryHistoryProvider(transactions.all),
        merchant_settings=InMemoryMerchantSettingsProvider(
            config.merchant_defaults, merchant_documents
        ),
        review_repository=InMemoryReviewRepository(),
        decisions=InMemoryDecisionLog(),
        transactions=transactions,
        refund_repository=InMemoryRefundRepository(),
        producer=producer,
    )


def get_services(request: Request) -> Services:
    """Provide the services built at startup."""
    return request.app.state.services


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")

"""Per-merchant fraud thresholds, read fresh on every evaluation."""

from datetime import UTC, datetime
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import MerchantFraudSettingsDB
from riskgate.shared.errors import ConfigurationError, DependencyUnavailable

from .config import MerchantDefaults
from .models import MerchantFraudSettings

logger = structlog.get_logger()

THRESHOLD_KEYS = ("block_threshold", "review_threshold", "flag_threshold")


def _coerce_threshold(merchant_id: str, key: str, value) -> int:
    if value is None:
        raise ConfigurationError(f"Merchant {merchant_id}: '{key}' is missing")
    if isinstance(value, bool):
        raise ConfigurationError(f"Merchant {merchant_id}: '{key}' must be numeric")
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Merchant {merchant_id}: '{key}' must be numeric") from exc
    else:
        raise ConfigurationError(f"Merchant {merchant_id}: '{key}' must be numeric")
    if number < 0 or number != number:
        raise ConfigurationError(f"Merchant {merchant_id}: '{key}' must be a non-negative number")
    return int(number)


def _coerce_enabled(merchant_id: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigurationError(f"Merchant {merchant_id}: 'enabled' must be true or false")


def parse_merchant_settings(
    merchant_id: str,
    raw: dict | None,
    defaults: MerchantDefaults,
) -> MerchantFraudSettings:
    """Validate stored settings. No stored document means platform defaults."""
    if raw is None:
        return MerchantFraudSettings(
            enabled=defaults.enabled,
            block_threshold=defaults.block_threshold,
            review_threshold=defaults.review_threshold,
            flag_threshold=defaults.flag_threshold,
        )
    thresholds = {key: _coerce_threshold(merchant_id, key, raw.get(key)) for key in THRESHOLD_KEYS}
    enabled = _coerce_enabled(merchant_id, raw.get("enabled", True))
    return MerchantFraudSettings(enabled=enabled, **thresholds)


class MerchantSettingsProvider(Protocol):
    async def get(self, merchant_id: str) -> MerchantFraudSettings: ...

    async def save(self, merchant_id: str, raw: dict) -> MerchantFraudSettings: ...


class SqlMerchantSettingsProvider:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        defaults: MerchantDefaults,
    ) -> None:
        self._session_factory = session_factory
        self._defaults = defaults

    async def get(self, merchant_id: str) -> MerchantFraudSettings:
        stmt = select(MerchantFraudSettingsDB.settings).where(
            MerchantFraudSettingsDB.merchant_id == merchant_id
        )
        try:
            async with self._session_factory() as session:
                raw = (await session.execute(stmt)).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise DependencyUnavailable("Merchant settings store unavailable") from exc
        return parse_merchant_settings(merchant_id, raw, self._defaults)

    async def save(self, merchant_id: str, raw: dict) -> MerchantFraudSettings:
        current = await self.get(merchant_id)
        merged = {**current.model_dump(), **raw}
        parsed = parse_merchant_settings(merchant_id, merged, self._defaults)
        document = parsed.model_dump()
        stmt = (
            pg_insert(MerchantFraudSettingsDB)
            .values(merchant_id=merchant_id, settings=document)
            .on_conflict_do_update(
                index_elements=[MerchantFraudSettingsDB.merchant_id],
                set_={"settings": document, "updated_at": datetime.now(UTC)},
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
        logger.info("merchant_fraud_settings_saved", merchant_id=merchant_id, **document)
        return parsed


class InMemoryMerchantSettingsProvider:
    def __init__(
        self, defaults: MerchantDefaults, documents: dict[str, dict] | None = None
    ) -> None:
        self._defaults = defaults
        self._documents: dict[str, dict] = dict(documents or {})

    async def get(self, merchant_id: str) -> MerchantFraudSettings:
        return parse_merchant_settings(
            merchant_id, self._documents.get(merchant_id), self._defaults
        )

    async def save(self, merchant_id: str, raw: dict) -> MerchantFraudSettings:
        current = await self.get(merchant_id)
        parsed = parse_merchant_settings(
            merchant_id, {**current.model_dump(), **raw}, self._defaults
        )
        self._documents[merchant_id] = parsed.model_dump()
        return parsed

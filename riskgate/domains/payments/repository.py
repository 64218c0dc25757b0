"""Persistence for transactions and refunds with optimistic version checks.

``save`` writes only if the stored version still equals the version the
caller read, then bumps it. A mismatch raises ConcurrencyError so the
service layer can re-read and retry.
"""

from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.db.models import RefundDB, TransactionDB
from riskgate.shared.errors import ConcurrencyError, NotFoundError, ValidationError

from .models import Refund, Transaction


class TransactionRepository(Protocol):
    async def add(self, transaction: Transaction) -> Transaction: ...

    async def get(self, reference: str) -> Transaction: ...

    async def save(self, transaction: Transaction) -> Transaction: ...

    async def list(self, merchant_id: str | None = None) -> list[Transaction]: ...


class RefundRepository(Protocol):
    async def add(self, refund: Refund) -> Refund: ...

    async def get(self, reference: str) -> Refund: ...

    async def save(self, refund: Refund) -> Refund: ...

    async def list_by_transaction(self, transaction_reference: str) -> list[Refund]: ...


class InMemoryTransactionRepository:
    """Process-local store. Hands out copies so callers never share state."""

    def __init__(self) -> None:
        self._items: dict[str, Transaction] = {}

    async def add(self, transaction: Transaction) -> Transaction:
        if transaction.reference in self._items:
            raise ValidationError(f"Transaction '{transaction.reference}' already exists")
        self._items[transaction.reference] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def get(self, reference: str) -> Transaction:
        stored = self._items.get(reference)
        if stored is None:
            raise NotFoundError(f"Transaction '{reference}' not found")
        return stored.model_copy(deep=True)

    async def save(self, transaction: Transaction) -> Transaction:
        stored = self._items.get(transaction.reference)
        if stored is None:
            raise NotFoundError(f"Transaction '{transaction.reference}' not found")
        if stored.version != transaction.version:
            raise ConcurrencyError(
                f"Transaction '{transaction.reference}' changed "
                f"(expected version {transaction.version}, found {stored.version})"
            )
        updated = transaction.model_copy(update={"version": transaction.version + 1}, deep=True)
        self._items[transaction.reference] = updated
        return updated.model_copy(deep=True)

    # Defined before ``list`` so the annotation still sees the builtin
    def all(self) -> list[Transaction]:
        return list(self._items.values())

    async def list(self, merchant_id: str | None = None) -> list[Transaction]:
        return [
            t.model_copy(deep=True)
            for t in self._items.values()
            if merchant_id is None or t.merchant_id == merchant_id
        ]


class InMemoryRefundRepository:
    def __init__(self) -> None:
        self._items: dict[str, Refund] = {}

    async def add(self, refund: Refund) -> Refund:
        if refund.reference in self._items:
            raise ValidationError(f"Refund '{refund.reference}' already exists")
        self._items[refund.reference] = refund.model_copy(deep=True)
        return refund.model_copy(deep=True)

    async def get(self, reference: str) -> Refund:
        stored = self._items.get(reference)
        if stored is None:
            raise NotFoundError(f"Refund '{reference}' not found")
        return stored.model_copy(deep=True)

    async def save(self, refund: Refund) -> Refund:
        stored = self._items.get(refund.reference)
        if stored is None:
            raise NotFoundError(f"Refund '{refund.reference}' not found")
        if stored.version != refund.version:
            raise ConcurrencyError(
                f"Refund '{refund.reference}' changed "
                f"(expected version {refund.version}, found {stored.version})"
            )
        updated = refund.model_copy(update={"version": refund.version + 1}, deep=True)
        self._items[refund.reference] = updated
        return updated.model_copy(deep=True)

    async def list_by_transaction(self, transaction_reference: str) -> list[Refund]:
        return sorted(
            (
                r.model_copy(deep=True)
                for r in self._items.values()
                if r.transaction_reference == transaction_reference
            ),
            key=lambda r: r.created_at,
        )


def _transaction_values(transaction: Transaction) -> dict:
    return transaction.model_dump(exclude={"reference", "version"})


def _refund_values(refund: Refund) -> dict:
    values = refund.model_dump(exclude={"reference", "version"})
    # JSONB columns need JSON-safe nested documents
    values["initiated_by"] = refund.initiated_by.model_dump(mode="json")
    values["approval_info"] = (
        refund.approval_info.model_dump(mode="json") if refund.approval_info else None
    )
    return values


class SqlTransactionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, transaction: Transaction) -> Transaction:
        row = TransactionDB(
            reference=transaction.reference,
            version=transaction.version,
            **_transaction_values(transaction),
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ValidationError(
                    f"Transaction '{transaction.reference}' already exists"
                ) from exc
        return transaction

    async def get(self, reference: str) -> Transaction:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(TransactionDB).where(TransactionDB.reference == reference)
                )
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Transaction '{reference}' not found")
            return Transaction.model_validate(row, from_attributes=True)

    async def save(self, transaction: Transaction) -> Transaction:
        stmt = (
            update(TransactionDB)
            .where(
                TransactionDB.reference == transaction.reference,
                TransactionDB.version == transaction.version,
            )
            .values(**_transaction_values(transaction), version=transaction.version + 1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                raise ConcurrencyError(
                    f"Transaction '{transaction.reference}' changed or does not exist"
                )
            await session.commit()
        return transaction.model_copy(update={"version": transaction.version + 1})

    async def list(self, merchant_id: str | None = None) -> list[Transaction]:
        stmt = select(TransactionDB).order_by(TransactionDB.created_at.desc())
        if merchant_id:
            stmt = stmt.where(TransactionDB.merchant_id == merchant_id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Transaction.model_validate(r, from_attributes=True) for r in rows]


class SqlRefundRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, refund: Refund) -> Refund:
        row = RefundDB(reference=refund.reference, version=refund.version, **_refund_values(refund))
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ValidationError(f"Refund '{refund.reference}' already exists") from exc
        return refund

    async def get(self, reference: str) -> Refund:
        async with self._session_factory() as session:
            row = (
                await session.execute(select(RefundDB).where(RefundDB.reference == reference))
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Refund '{reference}' not found")
            return Refund.model_validate(row, from_attributes=True)

    async def save(self, refund: Refund) -> Refund:
        stmt = (
            update(RefundDB)
            .where(RefundDB.reference == refund.reference, RefundDB.version == refund.version)
            .values(**_refund_values(refund), version=refund.version + 1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                raise ConcurrencyError(f"Refund '{refund.reference}' changed or does not exist")
            await session.commit()
        return refund.model_copy(update={"version": refund.version + 1})

    async def list_by_transaction(self, transaction_reference: str) -> list[Refund]:
        stmt = (
            select(RefundDB)
            .where(RefundDB.transaction_reference == transaction_reference)
            .order_by(RefundDB.created_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Refund.model_validate(r, from_attributes=True) for r in rows]

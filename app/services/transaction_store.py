"""SQLAlchemy-backed transaction store used by the detector and the writer.

Writes go to ``ledger_transactions`` whose unique constraint on
``(account_id, channel, dedupe_key)`` is the final arbiter of duplicates.
Lookups are bounded by the caller: reference lookups take a chunk of keys,
proximity lookups take one date and an amount window.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import LedgerTransaction, session_scope
from app.core.models import CanonicalTransaction, DedupeScope


def to_record(txn: CanonicalTransaction, account_id: str, job_id: str | None) -> dict[str, Any]:
    """Flatten a canonical transaction into a ledger row."""
    return {
        "account_id": account_id,
        "channel": txn.channel,
        "date": txn.date,
        "description": txn.description,
        "amount": txn.amount,
        "direction": txn.direction.value,
        "external_reference": txn.external_reference or None,
        "dedupe_key": txn.dedupe_key,
        "import_job_id": job_id,
    }


class TransactionStore:
    """Insert and look up ledger transactions scoped to an account and channel."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Bind the store to a session factory."""
        self.session_factory = session_factory

    def bulk_insert(self, records: Sequence[dict[str, Any]]) -> int:
        """Insert all records in one transaction; any failure rolls back the whole batch."""
        if not records:
            return 0
        with session_scope(self.session_factory) as session:
            session.execute(insert(LedgerTransaction), list(records))
        return len(records)

    def insert_one(self, record: dict[str, Any]) -> None:
        """Insert a single record in its own transaction."""
        with session_scope(self.session_factory) as session:
            session.execute(insert(LedgerTransaction), [record])

    def find_existing_references(self, account_id: str, references: Sequence[str]) -> set[str]:
        """Return which external references already exist for the account."""
        if not references:
            return set()
        stmt = select(LedgerTransaction.external_reference).where(
            LedgerTransaction.account_id == account_id,
            LedgerTransaction.external_reference.in_(list(references)),
        )
        with session_scope(self.session_factory) as session:
            return {row[0] for row in session.execute(stmt)}

    def find_existing_keys(self, scope: DedupeScope, keys: Sequence[str]) -> set[str]:
        """Return which dedupe keys already exist in the account/channel scope."""
        if not keys:
            return set()
        stmt = select(LedgerTransaction.dedupe_key).where(
            LedgerTransaction.account_id == scope.account_id,
            LedgerTransaction.channel == scope.channel,
            LedgerTransaction.dedupe_key.in_(list(keys)),
        )
        with session_scope(self.session_factory) as session:
            return {row[0] for row in session.execute(stmt)}

    def find_amounts_on_date(self, scope: DedupeScope, on: date, low: Decimal, high: Decimal) -> list[Decimal]:
        """Return amounts of existing records on a date within an amount window."""
        stmt = select(LedgerTransaction.amount).where(
            LedgerTransaction.account_id == scope.account_id,
            LedgerTransaction.date == on,
            LedgerTransaction.amount >= low,
            LedgerTransaction.amount <= high,
        )
        if not scope.cross_channel:
            stmt = stmt.where(LedgerTransaction.channel == scope.channel)
        with session_scope(self.session_factory) as session:
            return [Decimal(str(amount)) for amount in session.scalars(stmt)]

    def count(self, account_id: str, channel: str | None = None) -> int:
        """Count committed rows for an account (and optionally a channel)."""
        stmt = select(func.count()).select_from(LedgerTransaction).where(LedgerTransaction.account_id == account_id)
        if channel is not None:
            stmt = stmt.where(LedgerTransaction.channel == channel)
        with session_scope(self.session_factory) as session:
            return session.execute(stmt).scalar_one()

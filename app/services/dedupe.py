"""Two-phase duplicate detection against already-persisted ledger rows.

Phase 1 (exact reference) looks up every non-empty external reference, and
every derived key of rows that carry no reference, in chunks of bounded size.

Phase 2 (proximity) handles what is left: candidates are grouped by date and,
per date, existing amounts within a small tolerance are fetched with a single
windowed query. This catches the same economic event arriving through two
channels (automatic feed vs. manual file) where no shared reference exists.
Whether that window spans every channel of the account is controlled by
``DedupeScope.cross_channel``.

The detector is an optimization and an operator aid; the table's unique
constraint remains the correctness guarantee.
"""

import bisect
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from app.core.models import CanonicalTransaction, DedupeScope
from app.core.settings import Settings, get_settings
from app.core.utils import chunked, get_logger
from app.services.transaction_store import TransactionStore

logger = get_logger("ledger-import.dedupe")

# Padding for the SQL amount window; the exact tolerance check runs in Python.
WINDOW_SLACK = Decimal("0.005")


class DuplicateDetector:
    """Partition candidate transactions into new and already-persisted ones."""

    def __init__(self, store: TransactionStore, settings: Settings | None = None) -> None:
        """Bind the detector to a store and its tuning settings."""
        settings = settings or get_settings()
        self.store = store
        self.lookup_chunk_size = settings.dedupe_lookup_chunk_size
        self.tolerance = Decimal(str(settings.dedupe_amount_tolerance))

    def partition(
        self, candidates: Sequence[CanonicalTransaction], scope: DedupeScope
    ) -> tuple[list[CanonicalTransaction], list[CanonicalTransaction]]:
        """Return ``(new, duplicates)`` preserving candidate order."""
        duplicate_idx = self._exact_phase(candidates, scope)
        remaining = [i for i in range(len(candidates)) if i not in duplicate_idx]
        duplicate_idx |= self._proximity_phase(candidates, remaining, scope)

        new = [txn for i, txn in enumerate(candidates) if i not in duplicate_idx]
        duplicates = [txn for i, txn in enumerate(candidates) if i in duplicate_idx]
        logger.info(
            f"Dedupe for account={scope.account_id} channel={scope.channel}: "
            f"{len(new)} new, {len(duplicates)} duplicates of {len(candidates)}"
        )
        return new, duplicates

    def _exact_phase(self, candidates: Sequence[CanonicalTransaction], scope: DedupeScope) -> set[int]:
        references = sorted({txn.external_reference for txn in candidates if txn.external_reference})
        derived = sorted({txn.dedupe_key for txn in candidates if not txn.external_reference})

        existing_refs: set[str] = set()
        for chunk in chunked(references, self.lookup_chunk_size):
            existing_refs |= self.store.find_existing_references(scope.account_id, chunk)
        existing_keys: set[str] = set()
        for chunk in chunked(derived, self.lookup_chunk_size):
            existing_keys |= self.store.find_existing_keys(scope, chunk)

        matched = set()
        for i, txn in enumerate(candidates):
            if txn.external_reference:
                if txn.external_reference in existing_refs:
                    matched.add(i)
            elif txn.dedupe_key in existing_keys:
                matched.add(i)
        logger.debug(f"Exact phase matched {len(matched)} of {len(candidates)}")
        return matched

    def _proximity_phase(
        self, candidates: Sequence[CanonicalTransaction], indexes: Sequence[int], scope: DedupeScope
    ) -> set[int]:
        by_date: dict[date, list[int]] = defaultdict(list)
        for i in indexes:
            by_date[candidates[i].date].append(i)

        matched: set[int] = set()
        for on, group in sorted(by_date.items()):
            amounts = [candidates[i].amount for i in group]
            low = min(amounts) - self.tolerance - WINDOW_SLACK
            high = max(amounts) + self.tolerance + WINDOW_SLACK
            existing = sorted(self.store.find_amounts_on_date(scope, on, low, high))
            if not existing:
                continue
            for i in group:
                if self._within_tolerance(candidates[i].amount, existing):
                    matched.add(i)
        logger.debug(f"Proximity phase matched {len(matched)} of {len(indexes)}")
        return matched

    def _within_tolerance(self, amount: Decimal, existing: list[Decimal]) -> bool:
        pos = bisect.bisect_left(existing, amount - self.tolerance)
        return pos < len(existing) and existing[pos] <= amount + self.tolerance

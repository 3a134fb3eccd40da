"""
Exchange rate history tracking.

Keeps a bounded, in-memory log of every rate the service has seen, either
fetched from the rate source or set manually, for audit and analysis.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Tuple

import pandas as pd

from pricecore.models import RateHistoryEntry, RateTable, utcnow

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ["base_currency", "target_currency", "rate", "timestamp", "source"]


class RateHistoryStore:
    """
    Bounded store of rate history entries.

    Oldest entries are dropped once max_entries is reached.
    """

    DEFAULT_MAX_ENTRIES = 1000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        """
        Initialize the history store.

        Args:
            max_entries: Maximum entries retained.
        """
        if max_entries <= 0:
            raise ValueError(f"Invalid history limit: {max_entries}. Must be positive.")
        self.max_entries = max_entries
        self._entries: Deque[RateHistoryEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: RateHistoryEntry) -> None:
        """Append a single entry."""
        with self._lock:
            self._entries.append(entry)

    def record_table(self, table: RateTable) -> int:
        """
        Log every non-base rate in a table.

        Args:
            table: Rate table, typically just fetched.

        Returns:
            Number of entries recorded.
        """
        timestamp = table.fetched_at_datetime if table.fetched_at > 0 else utcnow()
        entries = [
            RateHistoryEntry(
                base_currency=table.base_currency,
                target_currency=code,
                rate=rate,
                timestamp=timestamp,
                source=table.source,
            )
            for code, rate in sorted(table.rates.items())
            if code != table.base_currency
        ]
        with self._lock:
            self._entries.extend(entries)

        logger.debug(f"Recorded {len(entries)} rates from {table.source} in history")
        return len(entries)

    def delete_pair(self, base_currency: str, target_currency: str) -> bool:
        """
        Remove every entry for a currency pair.

        Returns:
            True if anything was removed.
        """
        base, target = base_currency.upper(), target_currency.upper()
        with self._lock:
            kept = [e for e in self._entries if not (e.base_currency == base and e.target_currency == target)]
            removed = len(self._entries) - len(kept)
            self._entries = deque(kept, maxlen=self.max_entries)

        if removed:
            logger.info(f"Deleted {removed} history entries for {base}/{target}")
        return removed > 0

    def query(
        self,
        base_currency: Optional[str] = None,
        target_currency: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[RateHistoryEntry], int]:
        """
        Get rate history with optional filters.

        Args:
            base_currency: Filter by base currency.
            target_currency: Filter by target currency.
            start: Only entries at or after this time.
            end: Only entries at or before this time.
            limit: Maximum entries to return.
            offset: Entries to skip (for paging).

        Returns:
            Tuple of (entries, most recent first; total matching entries).
        """
        with self._lock:
            entries = list(self._entries)

        if base_currency:
            entries = [e for e in entries if e.base_currency == base_currency.upper()]
        if target_currency:
            entries = [e for e in entries if e.target_currency == target_currency.upper()]
        if start:
            entries = [e for e in entries if e.timestamp >= start]
        if end:
            entries = [e for e in entries if e.timestamp <= end]

        # Later insertions first among equal timestamps
        entries.reverse()
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        total = len(entries)
        return entries[offset:offset + limit], total

    def to_dataframe(self, **filters) -> pd.DataFrame:
        """
        Export filtered history as a DataFrame.

        Accepts the same filters as query(), without paging.
        """
        entries, _ = self.query(limit=self.max_entries, **filters)
        records = [entry.to_dict() for entry in entries]
        return pd.DataFrame(records, columns=HISTORY_COLUMNS)

    def clear(self) -> int:
        """
        Clear all history.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} history entries")
        return count

"""
Exchange rate cache.

Serves the current RateTable and refreshes it from a RateSource:
- TTL-based staleness (default: 1 hour)
- Single in-flight refresh shared by every concurrent caller
- Optional background refresh on a fixed interval
- Manual rate overrides

Tables are immutable; every change installs a new table by reference swap.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional

from pricecore.errors import InvalidRateInputError, RateNotFoundError, RateSourceUnavailableError
from pricecore.models import RateTable, to_decimal
from pricecore.pricing.fx_provider import RateSource

logger = logging.getLogger(__name__)

RateListener = Callable[[RateTable], None]


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetch_rates: whether a new table was installed, and the table."""

    updated: bool
    table: RateTable


class _Flight:
    """A refresh in progress that other callers can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.table: Optional[RateTable] = None
        self.error: Optional[RateSourceUnavailableError] = None


class RateCache:
    """
    Cache holding the current exchange rate table.

    Attributes:
        source: External rate source.
        base_currency: Currency all cached rates are expressed against.
        ttl_seconds: Age after which the table is stale.
        refresh_interval_seconds: Background refresh interval (0 = disabled).
    """

    DEFAULT_TTL = 60 * 60  # 1 hour

    def __init__(
        self,
        source: RateSource,
        base_currency: str = "USD",
        ttl_seconds: int = DEFAULT_TTL,
        initial_table: Optional[RateTable] = None,
        refresh_interval_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the rate cache.

        Args:
            source: Rate source used on refresh.
            base_currency: Base currency for the cached table.
            ttl_seconds: Staleness threshold in seconds.
            initial_table: Table served until the first refresh. Its
                fetched_at decides whether it counts as fresh.
            refresh_interval_seconds: Interval for start_periodic_refresh().
            clock: Returns the current unix time.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"Invalid TTL: {ttl_seconds}. Must be positive.")

        self.source = source
        self.base_currency = base_currency.upper()
        self.ttl_seconds = ttl_seconds
        self.refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock

        if initial_table is not None and initial_table.base_currency != self.base_currency:
            raise ValueError(
                f"Initial table base {initial_table.base_currency} does not match cache base {self.base_currency}"
            )
        self._table: RateTable = initial_table or RateTable(
            base_currency=self.base_currency, rates={}, fetched_at=0.0, source="empty"
        )

        self._lock = threading.Lock()
        self._flight: Optional[_Flight] = None
        self._listeners: List[RateListener] = []

        # Stats tracking
        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._failures = 0

        self._stop_refresh = threading.Event()
        self._refresh_thread: Optional[threading.Thread] = None

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def current_table(self) -> RateTable:
        """The installed table, without checking staleness."""
        return self._table

    def is_fresh(self) -> bool:
        """Check whether the installed table is younger than the TTL."""
        return self._is_fresh(self._table)

    def _is_fresh(self, table: RateTable) -> bool:
        return self._clock() - table.fetched_at < self.ttl_seconds

    def get_rates(self) -> RateTable:
        """
        Get the current rate table, refreshing it first if stale.

        A failed refresh is logged and the stale table is returned.

        Returns:
            RateTable: Current (or last known) rates.
        """
        table = self._table
        if self._is_fresh(table):
            with self._lock:
                self._hits += 1
            return table

        with self._lock:
            self._misses += 1
        try:
            table, _ = self._refresh(force=False)
        except RateSourceUnavailableError as e:
            logger.warning(f"Failed to refresh rates, using cached rates: {e.message}")
            return self._table
        return table

    def fetch_rates(self, force: bool = False) -> FetchResult:
        """
        Fetch rates from the source unless the cache is still valid.

        Args:
            force: Fetch even if the cached table is fresh.

        Returns:
            FetchResult: updated is False when the cached table was served.

        Raises:
            RateSourceUnavailableError: If the fetch fails. The previous
                table stays installed.
        """
        table = self._table
        if not force and self._is_fresh(table):
            logger.debug("Using cached rates (cache still valid)")
            return FetchResult(updated=False, table=table)

        table, updated = self._refresh(force=force)
        return FetchResult(updated=updated, table=table)

    # =========================================================================
    # Refresh coordination
    # =========================================================================

    def _refresh(self, force: bool) -> tuple[RateTable, bool]:
        """
        Refresh the table, joining a refresh already in flight if there is one.

        Returns:
            Tuple of (table, updated).

        Raises:
            RateSourceUnavailableError: If the shared fetch failed.
        """
        with self._lock:
            # Another caller may have finished a refresh since our staleness check
            if not force and self._is_fresh(self._table):
                return self._table, False

            flight = self._flight
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flight = flight

        if not leader:
            logger.debug("Rate refresh already in progress, waiting for it")
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.table, True

        try:
            table = self._fetch_table()
            flight.table = table
        except RateSourceUnavailableError as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()

        self._notify(table)
        return table, True

    def _fetch_table(self) -> RateTable:
        """Call the source and install the resulting table."""
        with self._lock:
            self._fetches += 1
        logger.info(f"Fetching exchange rates (base={self.base_currency})")
        try:
            quote = self.source.fetch(self.base_currency)
            table = RateTable(
                base_currency=self.base_currency,
                rates=quote.rates,
                fetched_at=self._clock(),
                source=quote.source,
            )
        except RateSourceUnavailableError as e:
            with self._lock:
                self._failures += 1
            logger.error(f"Error fetching exchange rates: {e.message}")
            raise
        except Exception as e:
            with self._lock:
                self._failures += 1
            logger.error(f"Unexpected error fetching exchange rates: {e}")
            raise RateSourceUnavailableError(f"Failed to fetch exchange rates: {e}") from e

        with self._lock:
            self._table = table

        logger.info(f"Exchange rates updated: {len(table.rates)} rates from {table.source}")
        return table

    def add_listener(self, callback: RateListener) -> None:
        """Register a callable invoked with each newly fetched table."""
        self._listeners.append(callback)

    def _notify(self, table: RateTable) -> None:
        for callback in list(self._listeners):
            try:
                callback(table)
            except Exception as e:
                logger.error(f"Rate listener {callback!r} failed: {e}", exc_info=True)

    # =========================================================================
    # Background refresh
    # =========================================================================

    def start_periodic_refresh(self, interval_seconds: Optional[int] = None) -> None:
        """
        Start refreshing rates in a background thread.

        Background refreshes share the in-flight marker with on-demand ones,
        and their failures are logged without replacing the current table.

        Args:
            interval_seconds: Refresh interval; defaults to refresh_interval_seconds.
        """
        interval = interval_seconds if interval_seconds is not None else self.refresh_interval_seconds
        if interval <= 0:
            raise ValueError(f"Invalid refresh interval: {interval}. Must be positive.")

        if self._refresh_thread and self._refresh_thread.is_alive():
            return

        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop,
            args=(interval,),
            daemon=True,
            name="RateCacheRefresh",
        )
        self._refresh_thread.start()
        logger.info(f"Started periodic rate refresh every {interval}s")

    def stop_periodic_refresh(self, timeout: float = 5.0) -> None:
        """Stop the background refresh thread, if running."""
        if not self._refresh_thread:
            return
        self._stop_refresh.set()
        self._refresh_thread.join(timeout=timeout)
        self._refresh_thread = None
        logger.info("Stopped periodic rate refresh")

    @property
    def is_refreshing_periodically(self) -> bool:
        return bool(self._refresh_thread and self._refresh_thread.is_alive())

    def _refresh_loop(self, interval: float) -> None:
        while not self._stop_refresh.wait(interval):
            try:
                self._refresh(force=True)
            except RateSourceUnavailableError as e:
                logger.error(f"Periodic rate refresh failed, keeping existing rates: {e.message}")

    # =========================================================================
    # Manual overrides
    # =========================================================================

    def set_rate(self, base: str, target: str, rate: Any, source: str = "manual") -> RateTable:
        """
        Manually set an exchange rate.

        The rate means "units of target per one unit of base". When base is
        not the cache's base currency the rate is re-expressed through the
        base before storing.

        Args:
            base: Base currency of the given rate.
            target: Target currency of the given rate.
            rate: Exchange rate; must be positive.
            source: Provenance recorded on the new table.

        Returns:
            RateTable: The newly installed table.

        Raises:
            InvalidRateInputError: If base equals target or rate is not positive.
            RateNotFoundError: If base is not the cache base and has no rate.
        """
        base, target = base.upper(), target.upper()
        if base == target:
            raise InvalidRateInputError(
                "Base currency and target currency must be different",
                details={"base_currency": base, "target_currency": target},
            )
        try:
            value = to_decimal(rate)
        except ValueError as e:
            raise InvalidRateInputError(f"Invalid rate: {rate!r}", details={"rate": str(rate)}) from e
        if not value.is_finite() or value <= 0:
            raise InvalidRateInputError(f"Rate must be a positive number, got {rate}", details={"rate": str(rate)})

        with self._lock:
            current = self._table
            if base == self.base_currency:
                table = current.with_rate(target, value, source)
            elif target == self.base_currency:
                table = current.with_rate(base, Decimal(1) / value, source)
            else:
                base_rate = current.rate_for(base)
                if base_rate is None:
                    raise RateNotFoundError(base)
                table = current.with_rate(target, value * base_rate, source)
            self._table = table

        logger.info(f"Rate manually updated: {base}/{target} = {value}")
        return table

    def delete_rate(self, base: str, target: str) -> RateTable:
        """
        Remove a rate from the table.

        Only rates expressed against the cache's base currency can be removed.

        Returns:
            RateTable: The newly installed table.

        Raises:
            InvalidRateInputError: If base is not the cache base or target is the base.
            RateNotFoundError: If target has no rate.
        """
        base, target = base.upper(), target.upper()
        if base != self.base_currency or target == self.base_currency:
            raise InvalidRateInputError(
                f"Cannot delete rate for {base}/{target}",
                details={"base_currency": base, "target_currency": target},
            )

        with self._lock:
            current = self._table
            if target not in current:
                raise RateNotFoundError(target)
            table = current.without_rate(target, "manual")
            self._table = table

        logger.info(f"Rate manually deleted: {base}/{target}")
        return table

    # =========================================================================
    # Introspection
    # =========================================================================

    def metadata(self) -> dict[str, Any]:
        """Describe the installed table and when it will next be refreshed."""
        table = self._table
        next_update = None
        if table.fetched_at > 0:
            next_update = datetime.fromtimestamp(table.fetched_at + self.ttl_seconds, tz=timezone.utc).isoformat()
        return {
            "base_currency": table.base_currency,
            "source": table.source,
            "fetched_at": table.fetched_at_datetime.isoformat() if table.fetched_at > 0 else None,
            "next_update": next_update,
            "rate_count": len(table.rates),
            "is_fresh": self._is_fresh(table),
        }

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            hits, misses, fetches, failures = self._hits, self._misses, self._fetches, self._failures
        total_requests = hits + misses
        hit_rate = (hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "hits": hits,
            "misses": misses,
            "hit_rate_pct": round(hit_rate, 1),
            "fetches": fetches,
            "fetch_failures": failures,
            "ttl_seconds": self.ttl_seconds,
        }

"""
Currency registry.

Holds the currencies the service can price in, exactly one of which is the
default. Exchange rates stored on Currency records are relative to the
default currency and are kept current from fetched rate tables.
"""

import logging
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pricecore.errors import CurrencyNotFoundError, InvalidCurrencyOperationError
from pricecore.models import Currency, RateTable, to_decimal, utcnow

logger = logging.getLogger(__name__)


class CurrencyRegistry:
    """
    In-memory currency store.

    Records are replaced, never mutated, so a reader holding a Currency sees
    a consistent record.
    """

    def __init__(self, currencies: Optional[List[Currency]] = None):
        self._currencies: Dict[str, Currency] = {}
        self._lock = threading.Lock()

        for currency in currencies or []:
            self._currencies[currency.code] = currency

        defaults = [c.code for c in self._currencies.values() if c.is_default]
        if len(defaults) > 1:
            raise InvalidCurrencyOperationError(
                f"Only one default currency is allowed, got {', '.join(sorted(defaults))}",
                details={"defaults": sorted(defaults)},
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_default(self) -> Currency:
        """
        Get the default currency.

        Raises:
            CurrencyNotFoundError: If no default currency is set.
        """
        for currency in self._currencies.values():
            if currency.is_default:
                return currency
        raise CurrencyNotFoundError("default")

    def get_by_code(self, code: str) -> Optional[Currency]:
        return self._currencies.get(code.upper())

    def list_currencies(self, active_only: bool = False) -> List[Currency]:
        """All currencies, default first then by code."""
        currencies = [c for c in self._currencies.values() if c.is_active or not active_only]
        return sorted(currencies, key=lambda c: (not c.is_default, c.code))

    # =========================================================================
    # Writes
    # =========================================================================

    def ensure_default(self, code: str) -> Currency:
        """
        Make sure a default currency exists, creating `code` as default if not.

        An existing default is left untouched, even if it differs from `code`.
        """
        with self._lock:
            for currency in self._currencies.values():
                if currency.is_default:
                    return currency

            code = code.upper()
            existing = self._currencies.get(code)
            if existing is not None:
                currency = replace(existing, is_default=True, is_active=True, exchange_rate=Decimal(1))
            else:
                currency = Currency(code=code, is_default=True, exchange_rate=Decimal(1), rate_last_updated=utcnow())
            self._currencies[code] = currency

        logger.info(f"Default currency set up: {code}")
        return currency

    def upsert_currency(self, code: str, **fields: Any) -> Currency:
        """
        Create a currency or update its fields.

        The default flag is changed only through set_default_currency, and the
        default currency's exchange rate always stays 1.

        Args:
            code: Currency code.
            **fields: Currency attributes to set (name, symbol, exchange_rate,
                is_active, decimal_places, display_format).

        Returns:
            Currency: The stored record.
        """
        code = code.upper()
        fields.pop("code", None)
        fields.pop("is_default", None)
        if "exchange_rate" in fields:
            try:
                rate = to_decimal(fields["exchange_rate"])
            except ValueError as e:
                raise InvalidCurrencyOperationError(
                    f"Invalid exchange rate: {fields['exchange_rate']!r}",
                    details={"code": code},
                ) from e
            if not rate.is_finite() or rate <= 0:
                raise InvalidCurrencyOperationError(
                    f"Exchange rate must be positive, got {fields['exchange_rate']}",
                    details={"code": code},
                )
            fields["exchange_rate"] = rate
            fields.setdefault("rate_last_updated", utcnow())

        with self._lock:
            existing = self._currencies.get(code)
            if existing is None:
                currency = Currency(code=code, **fields)
                logger.info(f"Created currency {code}")
            else:
                if existing.is_default:
                    fields.pop("exchange_rate", None)
                    fields.pop("rate_last_updated", None)
                    if fields.get("is_active") is False:
                        raise InvalidCurrencyOperationError(
                            "Cannot deactivate the default currency", details={"code": code}
                        )
                currency = replace(existing, **fields)
            self._currencies[code] = currency

        return currency

    def set_default_currency(self, code: str, table: Optional[RateTable] = None) -> Currency:
        """
        Make a currency the default.

        Args:
            code: Currency code to promote.
            table: Optional rate table used to re-express the other
                currencies' rates against the new default.

        Returns:
            Currency: The new default.

        Raises:
            CurrencyNotFoundError: If the code is unknown.
        """
        code = code.upper()
        with self._lock:
            target = self._currencies.get(code)
            if target is None:
                raise CurrencyNotFoundError(code)

            for other in list(self._currencies.values()):
                if other.is_default and other.code != code:
                    self._currencies[other.code] = replace(other, is_default=False)

            currency = replace(
                target, is_default=True, is_active=True, exchange_rate=Decimal(1), rate_last_updated=utcnow()
            )
            self._currencies[code] = currency

        logger.info(f"Default currency changed to {code}")
        if table is not None:
            self.apply_rate_table(table)
        return currency

    def delete_currency(self, code: str) -> Currency:
        """
        Delete a currency.

        Raises:
            CurrencyNotFoundError: If the code is unknown.
            InvalidCurrencyOperationError: If it is the default currency.
        """
        code = code.upper()
        with self._lock:
            currency = self._currencies.get(code)
            if currency is None:
                raise CurrencyNotFoundError(code)
            if currency.is_default:
                raise InvalidCurrencyOperationError("Cannot delete the default currency", details={"code": code})
            del self._currencies[code]

        logger.info(f"Deleted currency {code}")
        return currency

    def apply_rate_table(self, table: RateTable) -> int:
        """
        Update exchange rates of active non-default currencies from a table.

        Rates are re-expressed against the default currency when the table
        has a different base.

        Returns:
            Number of currencies updated.
        """
        default = self.get_default()
        default_rate = table.rate_for(default.code)
        if default_rate is None:
            logger.warning(f"Rate table has no rate for default currency {default.code}, skipping update")
            return 0

        now = utcnow()
        updated = 0

        with self._lock:
            for currency in list(self._currencies.values()):
                if currency.is_default or not currency.is_active:
                    continue
                table_rate = table.rate_for(currency.code)
                if table_rate is None:
                    logger.warning(f"No exchange rate found for {currency.code}")
                    continue
                rate = table_rate / default_rate
                self._currencies[currency.code] = replace(currency, exchange_rate=rate, rate_last_updated=now)
                updated += 1

        logger.info(f"Updated exchange rates for {updated} currencies")
        return updated

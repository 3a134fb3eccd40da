"""
Exceptions for the price resolution engine.

Provides a single hierarchy so callers (REST handlers, the CLI) can map
failures to status codes without knowing which layer raised them.
"""

from typing import Any, Dict, Optional


class PricingError(Exception):
    """Base exception for pricing engine errors."""

    status_code: int = 500
    error_code: str = "PRICING_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for a response body."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class PriceNotFoundError(PricingError):
    """Raised when no price record is reachable for a product."""

    status_code = 404
    error_code = "PRICE_NOT_FOUND"

    def __init__(self, product_id: str, currency: Optional[str] = None):
        details = {"product_id": product_id}
        if currency:
            details["currency"] = currency
        super().__init__(f"No pricing found for product {product_id}", details)
        self.product_id = product_id


class RateNotFoundError(PricingError):
    """Raised when a currency is absent from the rate table."""

    status_code = 422
    error_code = "RATE_NOT_FOUND"

    def __init__(self, currency: str):
        super().__init__(
            f"Currency rate not found for {currency}",
            details={"currency": currency},
        )
        self.currency = currency


class RateSourceUnavailableError(PricingError):
    """Raised when the external rate source fails or times out."""

    status_code = 502
    error_code = "RATE_SOURCE_UNAVAILABLE"

    def __init__(self, message: str, source: str = "rates-api"):
        super().__init__(message, details={"source": source})
        self.source = source


class InvalidRateInputError(PricingError):
    """Raised when a manual rate change is rejected."""

    status_code = 400
    error_code = "INVALID_RATE_INPUT"


class CurrencyNotFoundError(PricingError):
    """Raised when a currency code is not registered."""

    status_code = 404
    error_code = "CURRENCY_NOT_FOUND"

    def __init__(self, code: str):
        super().__init__(
            f"Currency with code {code} not found",
            details={"code": code},
        )
        self.code = code


class InvalidCurrencyOperationError(PricingError):
    """Raised when a currency change would break registry invariants."""

    status_code = 400
    error_code = "INVALID_CURRENCY_OPERATION"


class DuplicatePriceError(PricingError):
    """Raised when a product price already exists for the same key."""

    status_code = 409
    error_code = "DUPLICATE_PRICE"


class SeedDataError(PricingError):
    """Raised when seed data files are missing or malformed."""

    status_code = 400
    error_code = "SEED_DATA_ERROR"

    def __init__(self, message: str, path: Optional[str] = None, missing_columns: Optional[list] = None):
        details = {}
        if path:
            details["path"] = path
        if missing_columns:
            details["missing_columns"] = missing_columns
        super().__init__(message, details)


class ConfigurationError(PricingError):
    """Raised when configuration is missing or invalid."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"

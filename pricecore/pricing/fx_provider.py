"""
FX rate provider module.

Retrieves exchange rate quotes from an external rates API or from the
configured default rates. Providers only fetch; caching lives in rate_cache.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pricecore.errors import RateSourceUnavailableError
from pricecore.models import to_decimal
from pricecore.utils.config_loader import AppConfig, get_api_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateQuote:
    """
    Rates returned by a source, relative to the requested base currency.

    Attributes:
        rates: Currency code to rate.
        source: Name of the source that produced the rates.
    """

    rates: Mapping[str, Decimal]
    source: str


class RateSource(Protocol):
    """External collaborator that produces exchange rate quotes."""

    def fetch(self, base_currency: str) -> RateQuote:
        """Fetch rates relative to base_currency. May raise RateSourceUnavailableError."""
        ...


class StaticRateSource:
    """
    Rate source serving a fixed set of rates.

    Used when no rates API is configured, and to seed the cache before the
    first live fetch.
    """

    def __init__(self, rates: Mapping[str, Any], base_currency: str = "USD", source: str = "default") -> None:
        self.base_currency = base_currency.upper()
        self.rates = {code.upper(): to_decimal(rate) for code, rate in rates.items()}
        self.source = source

    def fetch(self, base_currency: str) -> RateQuote:
        """
        Return the configured rates, rebased onto base_currency if needed.

        Raises:
            RateSourceUnavailableError: If base_currency has no configured rate.
        """
        base_currency = base_currency.upper()
        if base_currency == self.base_currency:
            return RateQuote(rates=dict(self.rates), source=self.source)

        pivot = self.rates.get(base_currency)
        if pivot is None:
            raise RateSourceUnavailableError(
                f"No default rate configured for base currency {base_currency}",
                source=self.source,
            )
        rebased = {code: rate / pivot for code, rate in self.rates.items()}
        return RateQuote(rates=rebased, source=self.source)


class HttpRateSource:
    """
    Rate source backed by a JSON rates API.

    Expects a response body of the form {"rates": {"EUR": 0.85, ...}}.

    Attributes:
        api_url: Endpoint to query.
        api_key: Optional API key sent as a bearer token.
        timeout: Request timeout in seconds.
        session: Requests session with retry logic.
    """

    def __init__(self, api_url: str, api_key: str | None = None, timeout: float = 10.0) -> None:
        """
        Initialize the HTTP rate source.

        Args:
            api_url: Rates endpoint URL.
            api_key: Optional API key.
            timeout: Request timeout in seconds; a timeout counts as a failed fetch.
        """
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """
        Create a requests session with retry logic.

        Returns:
            requests.Session: Configured session object.
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def fetch(self, base_currency: str) -> RateQuote:
        """
        Fetch live rates from the rates API.

        Args:
            base_currency: Currency the rates should be expressed against.

        Returns:
            RateQuote: Parsed rates.

        Raises:
            RateSourceUnavailableError: On timeout, transport or HTTP error,
                or an unusable payload.
        """
        logger.info(f"Fetching exchange rates from {self.api_url} (base={base_currency})")

        try:
            response = self.session.get(
                self.api_url,
                params={"base": base_currency},
                headers=self._get_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()

        except requests.exceptions.Timeout as e:
            raise RateSourceUnavailableError(
                f"Rates request timed out after {self.timeout}s", source=self.api_url
            ) from e

        except requests.exceptions.ConnectionError as e:
            raise RateSourceUnavailableError(f"Connection error fetching rates: {e}", source=self.api_url) from e

        except requests.exceptions.HTTPError as e:
            raise RateSourceUnavailableError(f"HTTP error from rates API: {e}", source=self.api_url) from e

        except requests.exceptions.RequestException as e:
            raise RateSourceUnavailableError(f"Rates request failed: {e}", source=self.api_url) from e

        except ValueError as e:
            raise RateSourceUnavailableError(f"Rates API returned invalid JSON: {e}", source=self.api_url) from e

        rates = self._parse_rates(payload)
        logger.info(f"Fetched {len(rates)} exchange rates from {self.api_url}")
        return RateQuote(rates=rates, source=self.api_url)

    def _parse_rates(self, payload: Any) -> dict[str, Decimal]:
        """
        Validate and convert the rates section of a payload.

        Raises:
            RateSourceUnavailableError: If rates are missing or not positive numbers.
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
            raise RateSourceUnavailableError("Rates API response has no 'rates' object", source=self.api_url)

        rates: dict[str, Decimal] = {}
        for code, value in payload["rates"].items():
            try:
                rate = to_decimal(value)
            except ValueError as e:
                raise RateSourceUnavailableError(f"Invalid rate for {code}: {value!r}", source=self.api_url) from e
            if not rate.is_finite() or rate <= 0:
                raise RateSourceUnavailableError(f"Non-positive rate for {code}: {value!r}", source=self.api_url)
            rates[str(code).upper()] = rate

        if not rates:
            raise RateSourceUnavailableError("Rates API returned no rates", source=self.api_url)
        return rates


def build_rate_source(config: AppConfig) -> RateSource:
    """
    Pick a rate source from configuration.

    Returns an HttpRateSource when rates.api_url is set, otherwise a
    StaticRateSource over rates.default_rates.
    """
    rates_config = config.rates
    if rates_config.api_url:
        logger.info(f"Using HTTP rate source: {rates_config.api_url}")
        return HttpRateSource(
            rates_config.api_url,
            api_key=get_api_key(config),
            timeout=rates_config.timeout_seconds,
        )

    logger.info("No rates API configured, using default rates")
    return StaticRateSource(rates_config.default_rates, base_currency=rates_config.base_currency)

"""
Seed data loader.

Loads currencies, price lists, product prices and quantity tiers from a
directory of CSV files into the in-memory repositories.
"""

import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from pricecore.errors import DuplicatePriceError, InvalidCurrencyOperationError, SeedDataError
from pricecore.models import Currency, PriceList, ProductPrice, TierPrice
from pricecore.storage.currency_registry import CurrencyRegistry
from pricecore.storage.repositories import InMemoryPriceListRepository

logger = logging.getLogger(__name__)

CURRENCIES_FILE = "currencies.csv"
PRICE_LISTS_FILE = "price_lists.csv"
PRODUCT_PRICES_FILE = "product_prices.csv"
TIERS_FILE = "tiers.csv"

REQUIRED_COLUMNS = {
    CURRENCIES_FILE: ["code"],
    PRICE_LISTS_FILE: ["id", "name", "currency"],
    PRODUCT_PRICES_FILE: ["id", "price_list_id", "product_id", "base_price"],
    TIERS_FILE: ["product_price_id", "min_quantity", "price"],
}

TRUE_VALUES = {"1", "true", "yes", "y"}
FALSE_VALUES = {"0", "false", "no", "n"}


def read_seed_file(file_path: Path) -> pd.DataFrame:
    """
    Read a seed CSV as strings and check its required columns.

    Empty cells come back as empty strings.

    Raises:
        SeedDataError: If the file is missing, unreadable, or lacks columns.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise SeedDataError(f"Seed file not found: {file_path}", path=str(file_path))

    logger.debug(f"Reading seed file: {file_path}")
    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SeedDataError(f"Could not parse {file_path.name}: {e}", path=str(file_path)) from e

    df.columns = [str(col).strip() for col in df.columns]
    required = REQUIRED_COLUMNS.get(file_path.name, [])
    missing = [col for col in required if col not in df.columns]
    if missing:
        logger.error(f"Missing required columns in {file_path.name}: {missing}")
        logger.debug(f"Available columns: {list(df.columns)}")
        raise SeedDataError(
            f"{file_path.name} is missing required columns: {', '.join(missing)}",
            path=str(file_path),
            missing_columns=missing,
        )

    logger.info(f"Loaded {len(df)} rows from {file_path.name}")
    return df


# =============================================================================
# Cell parsers
# =============================================================================


def _text(row: Dict[str, Any], column: str) -> Optional[str]:
    value = str(row.get(column, "") or "").strip()
    return value or None


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    lowered = value.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean: {value!r}")


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    return int(value)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp as aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    return pd.to_datetime(value, utc=True).to_pydatetime()


def _build_rows(df: pd.DataFrame, file_path: Path, build: Callable[[Dict[str, Any]], Any]) -> List[Any]:
    """Apply a row builder, turning bad cells into SeedDataError with the row number."""
    built = []
    for index, row in enumerate(df.to_dict(orient="records"), start=2):
        try:
            built.append(build(row))
        except (ValueError, TypeError, ArithmeticError) as e:
            raise SeedDataError(f"{file_path.name} row {index}: {e}", path=str(file_path)) from e
    return built


# =============================================================================
# Row builders
# =============================================================================


def _currency_from_row(row: Dict[str, Any]) -> Currency:
    code = _text(row, "code")
    if code is None:
        raise ValueError("currency code is empty")
    return Currency(
        code=code,
        name=_text(row, "name") or "",
        symbol=_text(row, "symbol") or "",
        exchange_rate=_text(row, "exchange_rate") or "1",
        is_default=_parse_bool(_text(row, "is_default"), False),
        is_active=_parse_bool(_text(row, "is_active"), True),
        decimal_places=_parse_int(_text(row, "decimal_places"), 2),
        display_format=_text(row, "display_format"),
    )


def _price_list_from_row(row: Dict[str, Any]) -> PriceList:
    return PriceList(
        id=_text(row, "id") or "",
        name=_text(row, "name") or "",
        currency=(_text(row, "currency") or "").upper(),
        customer_group_id=_text(row, "customer_group_id"),
        active=_parse_bool(_text(row, "active"), True),
        priority=_parse_int(_text(row, "priority"), 0),
        start_date=_parse_datetime(_text(row, "start_date")),
        end_date=_parse_datetime(_text(row, "end_date")),
        description=_text(row, "description") or "",
    )


def _tier_from_row(row: Dict[str, Any]) -> Tuple[str, TierPrice]:
    min_quantity = int(_text(row, "min_quantity") or "")
    if min_quantity < 1:
        raise ValueError(f"min_quantity must be at least 1, got {min_quantity}")
    tier = TierPrice(min_quantity=min_quantity, price=_text(row, "price") or "", name=_text(row, "name"))
    return _text(row, "product_price_id") or "", tier


def load_seed_directory(seed_dir: Path) -> Tuple[InMemoryPriceListRepository, CurrencyRegistry]:
    """
    Load every seed file in a directory.

    Expects currencies.csv, price_lists.csv and product_prices.csv, and
    optionally tiers.csv.

    Args:
        seed_dir: Directory containing the seed CSV files.

    Returns:
        Tuple of (price list repository, currency registry).

    Raises:
        SeedDataError: If a file is missing, a column is missing, or a
            value cannot be parsed.
    """
    seed_dir = Path(seed_dir)
    if not seed_dir.is_dir():
        raise SeedDataError(f"Seed directory not found: {seed_dir}", path=str(seed_dir))

    logger.info(f"Loading seed data from: {seed_dir}")

    # 1. Currencies
    currencies_path = seed_dir / CURRENCIES_FILE
    currencies = _build_rows(read_seed_file(currencies_path), currencies_path, _currency_from_row)
    try:
        registry = CurrencyRegistry(currencies)
    except InvalidCurrencyOperationError as e:
        raise SeedDataError(e.message, path=str(currencies_path)) from e

    # 2. Price lists
    lists_path = seed_dir / PRICE_LISTS_FILE
    repository = InMemoryPriceListRepository()
    for price_list in _build_rows(read_seed_file(lists_path), lists_path, _price_list_from_row):
        if not price_list.id or not price_list.currency:
            raise SeedDataError(f"{lists_path.name}: price list without id or currency", path=str(lists_path))
        repository.add_price_list(price_list)

    # 3. Tiers (optional), grouped by product price id
    tiers_by_price: Dict[str, List[TierPrice]] = defaultdict(list)
    tiers_path = seed_dir / TIERS_FILE
    if tiers_path.exists():
        for price_id, tier in _build_rows(read_seed_file(tiers_path), tiers_path, _tier_from_row):
            tiers_by_price[price_id].append(tier)

    # 4. Product prices
    prices_path = seed_dir / PRODUCT_PRICES_FILE

    def product_price_from_row(row: Dict[str, Any]) -> ProductPrice:
        price_id = _text(row, "id") or ""
        currency = _text(row, "currency")
        return ProductPrice(
            id=price_id,
            price_list_id=_text(row, "price_list_id") or "",
            product_id=_text(row, "product_id") or "",
            base_price=_text(row, "base_price") or "",
            variant_id=_text(row, "variant_id"),
            sale_price=_text(row, "sale_price"),
            sale_start_date=_parse_datetime(_text(row, "sale_start_date")),
            sale_end_date=_parse_datetime(_text(row, "sale_end_date")),
            tiered_prices=tuple(tiers_by_price.get(price_id, ())),
            active=_parse_bool(_text(row, "active"), True),
            currency=currency.upper() if currency else None,
        )

    for record in _build_rows(read_seed_file(prices_path), prices_path, product_price_from_row):
        try:
            repository.add_product_price(record)
        except (ValueError, DuplicatePriceError) as e:
            raise SeedDataError(f"{prices_path.name}: {e}", path=str(prices_path)) from e

    orphan_tiers = set(tiers_by_price) - {p.id for p in repository.product_prices.values()}
    if orphan_tiers:
        logger.warning(f"Ignoring tiers for unknown product prices: {sorted(orphan_tiers)}")

    logger.info(
        f"Seed data loaded: {len(registry.list_currencies())} currencies, "
        f"{len(repository.price_lists)} price lists, {len(repository.product_prices)} product prices"
    )
    return repository, registry

"""
CLI entry point for the price resolution engine.

Loads configuration and seed data, wires the engine, and answers price and
exchange rate queries from the command line.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from pricecore.errors import ConfigurationError, RateSourceUnavailableError, SeedDataError
from pricecore.models import PriceOptions, PriceResult
from pricecore.pricing.pricing_engine import PriceResolutionEngine, build_engine
from pricecore.storage.seed_loader import load_seed_directory
from pricecore.utils.config_loader import AppConfig, load_config, load_env
from pricecore.utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_MISSING_PRICE = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Price resolution and currency conversion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m pricecore.main quote SKU-100 --quantity 12 --currency EUR
    python -m pricecore.main quote SKU-100 SKU-200 --group vip --format
    python -m pricecore.main rates --refresh
        """,
    )

    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file",
    )

    parser.add_argument(
        "--seed-dir", "-s",
        type=Path,
        help="Directory with seed CSV files (default: from config)",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    quote = subparsers.add_parser("quote", help="Resolve product prices")
    quote.add_argument("product_ids", nargs="+", metavar="PRODUCT_ID", help="Products to price")
    quote.add_argument("--quantity", "-q", type=int, default=1, help="Units per product (default: 1)")
    quote.add_argument("--currency", help="Target currency (default: system default currency)")
    quote.add_argument(
        "--group", "-g",
        dest="groups",
        action="append",
        default=[],
        help="Customer group id; repeat for several groups",
    )
    quote.add_argument("--format", dest="format_price", action="store_true", help="Print formatted prices")

    rates = subparsers.add_parser("rates", help="Show the current exchange rates")
    rates.add_argument("--refresh", action="store_true", help="Fetch rates from the source first")

    return parser.parse_args(argv)


def build_from_config(config: AppConfig, seed_dir: Optional[Path] = None) -> PriceResolutionEngine:
    """
    Build an engine over the seed data directory.

    Args:
        config: Application configuration.
        seed_dir: Seed directory override.

    Raises:
        SeedDataError: If the seed data cannot be loaded.
    """
    seed_path = Path(seed_dir or config.paths.seed_dir)
    price_lists, currencies = load_seed_directory(seed_path)
    return build_engine(config, price_lists=price_lists, currencies=currencies)


def describe_result(product_id: str, result: PriceResult) -> str:
    """One-line summary of a resolved price."""
    price = result.price if isinstance(result.price, str) else f"{result.price} {result.currency}"
    parts = [f"{product_id}: {price}"]
    if result.on_sale:
        parts.append(f"sale -{result.discount_percentage}%")
    if result.applied_tier is not None:
        tier_name = result.applied_tier.name or f"{result.applied_tier.quantity}+"
        parts.append(f"tier {tier_name}")
    parts.append(f"list {result.price_list_id}")
    return " | ".join(parts)


def run_quote(engine: PriceResolutionEngine, args: argparse.Namespace) -> int:
    """
    Resolve and print prices for the requested products.

    Returns:
        int: EXIT_MISSING_PRICE if any product had no price, else EXIT_OK.
    """
    options = PriceOptions(
        currency=args.currency,
        customer_group_ids=args.groups,
        format_price=args.format_price,
        decimals=engine.config.decimals,
        locale=engine.config.locale,
    )
    results = engine.resolve_many(args.product_ids, quantity=args.quantity, options=options)

    exit_code = EXIT_OK
    for product_id in args.product_ids:
        result = results.get(product_id)
        if result is None:
            print(f"{product_id}: no price found")
            exit_code = EXIT_MISSING_PRICE
        else:
            print(describe_result(product_id, result))
    return exit_code


def run_rates(engine: PriceResolutionEngine, args: argparse.Namespace) -> int:
    """
    Print the current exchange rate table.

    Returns:
        int: Exit code.
    """
    if args.refresh:
        try:
            result = engine.force_refresh()
        except RateSourceUnavailableError as e:
            logger.error(f"Rate refresh failed: {e.message}")
            print(f"\n✗ Rate refresh failed: {e.message}")
            return 1
        print(f"Rates refreshed from {result.table.source}")

    snapshot = engine.current_rates()
    table, metadata = snapshot["table"], snapshot["metadata"]

    print("\n" + "=" * 40)
    print(f"EXCHANGE RATES (base {table['base_currency']})")
    print("=" * 40)
    for code, rate in table["rates"].items():
        print(f"  {code}: {rate:.6f}")
    print(f"\n  Source: {metadata['source']}")
    print(f"  Fetched at: {metadata['fetched_at'] or 'never'}")
    print(f"  Next update: {metadata['next_update'] or 'on next use'}")
    print("=" * 40 + "\n")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        int: Exit code.
    """
    load_env()
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigurationError, yaml.YAMLError) as e:
        print(f"\n✗ Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        configure_logging(config, verbose=args.verbose)
    except ConfigurationError as e:
        print(f"\n✗ Configuration error: {e.message}")
        return EXIT_CONFIG_ERROR

    try:
        engine = build_from_config(config, args.seed_dir)
    except SeedDataError as e:
        logger.error(f"Seed data error: {e.message} {e.details}")
        print(f"\n✗ Seed data error: {e.message}")
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "quote":
            return run_quote(engine, args)
        return run_rates(engine, args)
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        return 130
    except ValueError as e:
        print(f"\n✗ Error: {e}")
        return EXIT_MISSING_PRICE
    finally:
        engine.close()


if __name__ == "__main__":
    sys.exit(main())

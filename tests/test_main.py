"""
Tests for the command line interface.
"""

import logging

import pytest

from pricecore.main import EXIT_CONFIG_ERROR, EXIT_MISSING_PRICE, EXIT_OK, main, parse_args


@pytest.fixture(autouse=True)
def restore_root_logger(monkeypatch):
    for name in ("PRICING_DEFAULT_CURRENCY", "RATES_API_URL", "RATES_CACHE_TTL", "RATES_UPDATE_INTERVAL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def cli_args(tmp_path, seed_dir):
    """Global arguments pointing at a missing config file and the seed fixture."""
    return ["--config", str(tmp_path / "missing.yaml"), "--seed-dir", str(seed_dir)]


def test_parse_quote_args():
    args = parse_args(["quote", "SKU-1", "SKU-2", "-q", "3", "--currency", "EUR", "-g", "vip", "-g", "b2b", "--format"])

    assert args.command == "quote"
    assert args.product_ids == ["SKU-1", "SKU-2"]
    assert args.quantity == 3
    assert args.groups == ["vip", "b2b"]
    assert args.format_price is True


def test_quote(cli_args, capsys):
    assert main(cli_args + ["quote", "SKU-100"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "SKU-100: 90.00 USD" in out
    assert "list retail-usd" in out


def test_quote_with_tier_and_conversion(cli_args, capsys):
    assert main(cli_args + ["quote", "SKU-100", "-q", "12", "--currency", "EUR"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "SKU-100: 68.00 EUR" in out
    assert "tier Bulk 10+" in out


def test_missing_price(cli_args, capsys):
    assert main(cli_args + ["quote", "SKU-100", "SKU-404"]) == EXIT_MISSING_PRICE

    out = capsys.readouterr().out
    assert "SKU-404: no price found" in out
    assert "SKU-100: 90.00 USD" in out


def test_invalid_quantity(cli_args, capsys):
    assert main(cli_args + ["quote", "SKU-100", "-q", "0"]) == EXIT_MISSING_PRICE
    assert "Error" in capsys.readouterr().out


def test_bad_seed_dir(tmp_path, capsys):
    code = main(["--config", str(tmp_path / "missing.yaml"), "--seed-dir", str(tmp_path / "nope"), "quote", "SKU-100"])

    assert code == EXIT_CONFIG_ERROR
    assert "Seed data error" in capsys.readouterr().out


def test_invalid_config(tmp_path, seed_dir, capsys):
    config = tmp_path / "bad.yaml"
    config.write_text("rates:\n  ttl_seconds: -5\n", encoding="utf-8")

    assert main(["--config", str(config), "--seed-dir", str(seed_dir), "rates"]) == EXIT_CONFIG_ERROR
    assert "Configuration error" in capsys.readouterr().out


def test_rates(cli_args, capsys):
    assert main(cli_args + ["rates", "--refresh"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "EXCHANGE RATES (base USD)" in out
    assert "EUR: 0.850000" in out


def test_invalid_log_level(tmp_path, seed_dir, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("logging:\n  level: LOUD\n", encoding="utf-8")

    assert main(["--config", str(config), "--seed-dir", str(seed_dir), "rates"]) == EXIT_CONFIG_ERROR
    assert "Unknown log level" in capsys.readouterr().out

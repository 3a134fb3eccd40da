"""
Tests for the in-memory price list repository.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from pricecore.errors import DuplicatePriceError
from pricecore.models import PriceList, ProductPrice
from pricecore.storage.repositories import InMemoryPriceListRepository

NOW = datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)


class TestWrites:
    """Tests for adding records."""

    def test_duplicate_price_rejected(self, repository: InMemoryPriceListRepository) -> None:
        with pytest.raises(DuplicatePriceError) as exc_info:
            repository.add_product_price(
                ProductPrice(id="dup", price_list_id="retail-usd", product_id="SKU-100", base_price="1")
            )
        assert exc_info.value.status_code == 409

    def test_variant_is_part_of_the_key(self, repository: InMemoryPriceListRepository) -> None:
        repository.add_product_price(
            ProductPrice(id="v", price_list_id="retail-usd", product_id="SKU-100", variant_id="red", base_price="1")
        )
        assert ("retail-usd", "SKU-100", "red") in repository.product_prices

    def test_unknown_price_list(self, repository: InMemoryPriceListRepository) -> None:
        with pytest.raises(ValueError):
            repository.add_product_price(ProductPrice(id="x", price_list_id="nope", product_id="p", base_price="1"))


class TestReads:
    """Tests for the lookups the engine uses."""

    def test_inactive_prices_never_returned(self, repository: InMemoryPriceListRepository) -> None:
        repository.add_product_price(
            ProductPrice(id="off", price_list_id="retail-usd", product_id="SKU-OFF", base_price="1", active=False)
        )
        assert repository.find_product_price("retail-usd", "SKU-OFF") is None
        assert repository.find_product_prices(["retail-usd"], ["SKU-OFF"]) == {}

    def test_product_level_record_preferred(self, repository: InMemoryPriceListRepository) -> None:
        repository.add_product_price(
            ProductPrice(id="v", price_list_id="retail-usd", product_id="SKU-100", variant_id="red", base_price="1")
        )
        assert repository.find_product_price("retail-usd", "SKU-100").id == "pp-1"
        assert repository.find_product_prices(["retail-usd"], ["SKU-100"])[("retail-usd", "SKU-100")].id == "pp-1"

    def test_variant_only_record_found(self, repository: InMemoryPriceListRepository) -> None:
        repository.add_product_price(
            ProductPrice(id="v", price_list_id="retail-usd", product_id="SKU-700", variant_id="red", base_price="1")
        )
        assert repository.find_product_price("retail-usd", "SKU-700").id == "v"

    def test_batched_lookup(self, repository: InMemoryPriceListRepository) -> None:
        found = repository.find_product_prices(["retail-usd", "vip-usd"], ["SKU-100", "SKU-200", "SKU-300"])
        assert set(found) == {("retail-usd", "SKU-100"), ("vip-usd", "SKU-100"), ("retail-usd", "SKU-200")}

    def test_find_active_filters(self, repository: InMemoryPriceListRepository) -> None:
        repository.add_price_list(
            PriceList(id="expired", name="Old", currency="USD", end_date=NOW - timedelta(days=1))
        )
        ids = {pl.id for pl in repository.find_active("USD", {"vip"}, NOW)}
        assert ids == {"retail-usd", "vip-usd"}

    def test_customer_price_lists(self, repository: InMemoryPriceListRepository) -> None:
        assert [pl.id for pl in repository.get_customer_price_lists(["vip"], NOW)] == ["vip-usd"]
        assert repository.get_customer_price_lists([], NOW) == []

    def test_list_price_lists_by_priority(self, repository: InMemoryPriceListRepository) -> None:
        assert [pl.id for pl in repository.list_price_lists()] == ["vip-usd", "retail-usd", "retail-eur"]

    def test_reads_while_prices_are_added(self, repository: InMemoryPriceListRepository) -> None:
        errors = []
        done = threading.Event()

        def writer():
            try:
                for i in range(2000):
                    repository.add_product_price(
                        ProductPrice(id=f"w{i}", price_list_id="retail-usd", product_id=f"SKU-W{i}", base_price="1")
                    )
                    if i % 10 == 0:
                        repository.add_price_list(PriceList(id=f"list-{i}", name=f"List {i}", currency="USD"))
            finally:
                done.set()

        def reader():
            try:
                while not done.is_set():
                    repository.find_product_price("retail-usd", "SKU-MISSING")
                    repository.find_product_prices(["retail-usd"], ["SKU-100", "SKU-W1"])
                    repository.find_active("USD", ["vip"], NOW)
                    repository.list_price_lists()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert errors == []
        assert repository.find_product_price("retail-usd", "SKU-W1999").id == "w1999"

import threading
import time
from datetime import datetime, timezone

import pytest

from aksnodes.pricing import (
    PricingError,
    PricingProvider,
    categorize_prices,
    process_page,
)
from aksnodes.pricing_client import Item, ProductsPricePage

STATIC = {
    "eastus": {"Standard_D1": 0.077, "Standard_D2": 0.154},
    "westus2": {"Standard_D1": 0.08},
}


class FakePricingAPI:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    def get_products_price_pages(self, filters, page_handler):
        self.calls.append([str(f) for f in filters])
        if self.error is not None:
            raise self.error
        page_handler(ProductsPricePage(items=list(self.items)))


def product_price(name, price):
    return Item(arm_sku_name=name, retail_price=price, sku_name=name, product_name="Virtual Machines D Series")


def spot_product_price(name, price):
    return Item(arm_sku_name=name, retail_price=price, sku_name=name + " Spot", product_name="Virtual Machines D Series")


def test_static_on_demand_data_when_api_fails():
    api = FakePricingAPI(error=RuntimeError("failed"))
    provider = PricingProvider(api, "", static_prices=STATIC)
    provider.update_pricing()
    price = provider.on_demand_price("Standard_D1")
    assert price is not None and price > 0
    assert provider.on_demand_last_updated() == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_region_specific_static_prices():
    provider = PricingProvider(FakePricingAPI(), "westus2", static_prices=STATIC)
    assert provider.on_demand_price("Standard_D1") == 0.08
    assert provider.on_demand_price("Standard_D2") is None
    assert provider.spot_price("Standard_D1") == 0.08


def test_updates_on_demand_pricing_from_api():
    api = FakePricingAPI(items=[product_price("Standard_D1", 1.20), product_price("Standard_D14", 1.23)])
    provider = PricingProvider(api, "", static_prices=STATIC)
    before = datetime.now(timezone.utc)
    provider.update_pricing()
    assert provider.on_demand_last_updated() >= before
    assert provider.on_demand_price("Standard_D1") == 1.20
    assert provider.on_demand_price("Standard_D14") == 1.23
    # spot stays on the static defaults since no spot prices came back
    assert provider.spot_price("Standard_D1") == 0.077


def test_updates_spot_pricing_from_api():
    api = FakePricingAPI(items=[spot_product_price("Standard_D1", 1.10), spot_product_price("Standard_D14", 1.13)])
    provider = PricingProvider(api, "", static_prices=STATIC)
    before = datetime.now(timezone.utc)
    provider.update_pricing()
    assert provider.spot_last_updated() >= before
    assert provider.spot_price("Standard_D1") == 1.10
    assert provider.spot_price("Standard_D14") == 1.13
    assert provider.on_demand_price("Standard_D1") == 0.077


def test_filters_sent_to_api():
    api = FakePricingAPI()
    provider = PricingProvider(api, "westus2", static_prices=STATIC)
    provider.update_pricing()
    assert api.calls == [
        [
            "priceType eq 'Consumption'",
            "currencyCode eq 'USD'",
            "serviceFamily eq 'Compute'",
            "serviceName eq 'Virtual Machines'",
            "armRegionName eq 'westus2'",
        ]
    ]


def test_process_page_skips_windows_and_low_priority():
    prices = set()
    handler = process_page(prices)
    linux = product_price("Standard_D1", 1.0)
    windows = Item(arm_sku_name="Standard_D1", retail_price=2.0, product_name="Virtual Machines D Series Windows")
    low = Item(arm_sku_name="Standard_D1", retail_price=0.5, meter_name="D1 Low Priority")
    handler(ProductsPricePage(items=[linux, windows, low]))
    assert prices == {linux}


def test_categorize_prices():
    on_demand, spot = categorize_prices(
        [product_price("Standard_D1", 1.0), spot_product_price("Standard_D1", 0.3)]
    )
    assert on_demand == {"Standard_D1": 1.0}
    assert spot == {"Standard_D1": 0.3}


def test_empty_updates_raise():
    provider = PricingProvider(FakePricingAPI(), "", static_prices=STATIC)
    with pytest.raises(PricingError, match="no on-demand pricing found") as err:
        provider.update_on_demand_pricing({})
    assert err.value.last_on_demand_update_time == datetime(1970, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(PricingError, match="no spot pricing found"):
        provider.update_spot_pricing({})


def test_instance_types_union():
    provider = PricingProvider(FakePricingAPI(), "", static_prices=STATIC)
    provider.update_spot_pricing({"Standard_D2": 0.1, "Standard_E4": 0.2})
    assert sorted(provider.instance_types()) == ["Standard_D1", "Standard_D2", "Standard_E4"]


def test_reset_restores_static_on_demand():
    provider = PricingProvider(FakePricingAPI(), "", static_prices=STATIC)
    provider.update_on_demand_pricing({"Standard_X": 9.0})
    assert provider.on_demand_price("Standard_D1") is None
    provider.reset()
    assert provider.on_demand_price("Standard_D1") == 0.077
    assert provider.on_demand_price("Standard_X") is None
    assert provider.on_demand_last_updated() == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_start_performs_initial_update_and_stop():
    api = FakePricingAPI(items=[product_price("Standard_D1", 1.5)])
    provider = PricingProvider(api, "", static_prices=STATIC)
    provider.start(threading.Event())
    deadline = time.monotonic() + 5
    while provider.on_demand_price("Standard_D1") != 1.5 and time.monotonic() < deadline:
        time.sleep(0.01)
    provider.stop()
    assert provider.on_demand_price("Standard_D1") == 1.5
    assert len(api.calls) == 1


def test_start_twice_raises():
    provider = PricingProvider(FakePricingAPI(), "", static_prices=STATIC)
    provider.start(threading.Event())
    try:
        with pytest.raises(RuntimeError):
            provider.start(threading.Event())
    finally:
        provider.stop()
"""On-demand and spot VM prices for a region, refreshed from the retail prices API."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Protocol

from .pricing_client import ComparisonOperator, Filter, Item, ProductsPricePage

logger = logging.getLogger(__name__)

# How often prices are refreshed after the initial update on startup, in seconds.
PRICING_UPDATE_PERIOD = 12 * 60 * 60

DEFAULT_REGION = "eastus"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_START_POLL_INTERVAL = 0.1


class PricingAPI(Protocol):
    """Anything that can page through retail prices matching some filters."""

    def get_products_price_pages(
        self,
        filters: Iterable[Filter],
        page_handler: Callable[[ProductsPricePage], None],
    ) -> None: ...


class PricingError(Exception):
    """A price update failed; existing prices are kept.

    Carries the times the prices in use were last updated.
    """

    def __init__(
        self,
        message: str,
        last_on_demand_update_time: datetime | None = None,
        last_spot_update_time: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.last_on_demand_update_time = last_on_demand_update_time
        self.last_spot_update_time = last_spot_update_time


def _format_time(moment: datetime | None) -> str:
    return moment.isoformat() if moment is not None else "never"


def process_page(prices: set[Item]) -> Callable[[ProductsPricePage], None]:
    """A page handler collecting Linux, non-low-priority price items into prices."""

    def handle(page: ProductsPricePage) -> None:
        for item in page.items:
            if item.product_name.endswith(" Windows"):
                continue
            # Low priority is a different product from spot.
            if item.meter_name.endswith(" Low Priority"):
                continue
            prices.add(item)

    return handle


def categorize_prices(prices: Iterable[Item]) -> tuple[dict[str, float], dict[str, float]]:
    """Split price items into on-demand and spot prices keyed by ARM SKU name."""
    on_demand: dict[str, float] = {}
    spot: dict[str, float] = {}
    for item in prices:
        target = spot if item.sku_name.endswith(" Spot") else on_demand
        target[item.arm_sku_name] = item.retail_price
    return on_demand, spot


class PricingProvider:
    """Serves the last known prices for a region.

    Starts from static prices (for the region, else for eastus) and keeps
    them whenever an update fails. Spot prices default to the on-demand
    ones until a spot update succeeds.
    """

    def __init__(
        self,
        pricing_api: PricingAPI,
        region: str,
        static_prices: Mapping[str, Mapping[str, float]] | None = None,
        initial_update_time: datetime = _EPOCH,
    ) -> None:
        self._api = pricing_api
        self.region = region
        self._static_prices = static_prices or {}
        self._initial_update_time = initial_update_time
        self._lock = threading.Lock()
        static = self._static_for_region()
        self._on_demand_prices: dict[str, float] = static
        self._on_demand_update_time = initial_update_time
        self._spot_prices: dict[str, float] = dict(static)
        self._spot_update_time = initial_update_time
        self._last_logged: dict[str, dict[str, float]] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _static_for_region(self) -> dict[str, float]:
        prices = self._static_prices.get(self.region)
        if prices is None:
            prices = self._static_prices.get(DEFAULT_REGION, {})
        return dict(prices)

    def instance_types(self) -> list[str]:
        """Every instance type with a known on-demand or spot price."""
        with self._lock:
            return list(dict.fromkeys([*self._on_demand_prices, *self._spot_prices]))

    def on_demand_last_updated(self) -> datetime:
        """When on-demand prices were last updated."""
        with self._lock:
            return self._on_demand_update_time

    def spot_last_updated(self) -> datetime:
        """When spot prices were last updated."""
        with self._lock:
            return self._spot_update_time

    def on_demand_price(self, instance_type: str) -> float | None:
        """The last known on-demand price, or None if unknown."""
        with self._lock:
            return self._on_demand_prices.get(instance_type)

    def spot_price(self, instance_type: str) -> float | None:
        """The last known spot price, or None if unknown."""
        with self._lock:
            return self._spot_prices.get(instance_type)

    def _filters(self) -> list[Filter]:
        return [
            Filter("priceType", ComparisonOperator.EQUALS, "Consumption"),
            Filter("currencyCode", ComparisonOperator.EQUALS, "USD"),
            Filter("serviceFamily", ComparisonOperator.EQUALS, "Compute"),
            Filter("serviceName", ComparisonOperator.EQUALS, "Virtual Machines"),
            Filter("armRegionName", ComparisonOperator.EQUALS, self.region),
        ]

    def _fetch_pricing(self, page_handler: Callable[[ProductsPricePage], None]) -> None:
        with self._lock:
            try:
                self._api.get_products_price_pages(self._filters(), page_handler)
            except Exception as exc:
                raise PricingError(
                    str(exc), self._on_demand_update_time, self._spot_update_time
                ) from exc

    def update_pricing(self) -> None:
        """Fetch current prices; on failure log it and keep the existing ones."""
        prices: set[Item] = set()
        try:
            self._fetch_pricing(process_page(prices))
        except PricingError as err:
            logger.error(
                "error fetching updated pricing for region %s, %s, using existing pricing "
                "data, on-demand: %s, spot: %s",
                self.region,
                err,
                _format_time(err.last_on_demand_update_time),
                _format_time(err.last_spot_update_time),
            )
            return

        on_demand, spot = categorize_prices(prices)
        try:
            self.update_on_demand_pricing(on_demand)
        except PricingError as err:
            logger.error(
                "error updating on-demand pricing for region %s, %s, using existing pricing "
                "data from %s",
                self.region,
                err,
                _format_time(err.last_on_demand_update_time),
            )
        try:
            self.update_spot_pricing(spot)
        except PricingError as err:
            logger.error(
                "error updating spot pricing for region %s, %s, using existing pricing "
                "data from %s",
                self.region,
                err,
                _format_time(err.last_spot_update_time),
            )

    def _log_if_changed(self, key: str, prices: dict[str, float], kind: str) -> None:
        if self._last_logged.get(key) != prices:
            self._last_logged[key] = dict(prices)
            logger.info(
                "updated %s pricing for region %s (instance-type-count=%d)",
                kind,
                self.region,
                len(prices),
            )

    def update_on_demand_pricing(self, prices: Mapping[str, float]) -> None:
        """Replace on-demand prices; raise PricingError if prices is empty."""
        with self._lock:
            if not prices:
                raise PricingError(
                    "no on-demand pricing found",
                    last_on_demand_update_time=self._on_demand_update_time,
                )
            self._on_demand_prices = dict(prices)
            self._on_demand_update_time = datetime.now(timezone.utc)
            self._log_if_changed("on-demand-prices", self._on_demand_prices, "on-demand")

    def update_spot_pricing(self, prices: Mapping[str, float]) -> None:
        """Replace spot prices; raise PricingError if prices is empty."""
        with self._lock:
            if not prices:
                raise PricingError(
                    "no spot pricing found", last_spot_update_time=self._spot_update_time
                )
            self._spot_prices = dict(prices)
            self._spot_update_time = datetime.now(timezone.utc)
            self._log_if_changed("spot-prices", self._spot_prices, "spot")

    def liveness_probe(self) -> None:
        """Check that the provider's lock is not held forever."""
        with self._lock:
            pass

    def reset(self) -> None:
        """Go back to the static on-demand prices."""
        static = self._static_for_region()
        with self._lock:
            self._on_demand_prices = static
            self._on_demand_update_time = self._initial_update_time

    def start(self, start_event: threading.Event | None = None) -> None:
        """Update now in the background, then periodically once start_event is set."""
        if self._thread is not None:
            raise RuntimeError("pricing updates already started")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(start_event,), name="pricing-updates", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop background updates and wait for them to finish."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()

    def _run(self, start_event: threading.Event | None) -> None:
        self.update_pricing()
        startup = time.monotonic()
        if start_event is not None:
            while not start_event.wait(_START_POLL_INTERVAL):
                if self._stop_event.is_set():
                    return
        if self._stop_event.is_set():
            return
        # If waiting to start took longer than a period, refresh before polling.
        if time.monotonic() - startup > PRICING_UPDATE_PERIOD:
            self.update_pricing()
        while not self._stop_event.wait(PRICING_UPDATE_PERIOD):
            self.update_pricing()
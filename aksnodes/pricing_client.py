"""Client for the Azure retail prices API."""

from __future__ import annotations

import json
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

API_VERSION = "2021-10-01-preview"
PRICING_URL = "https://prices.azure.com/api/retail/prices?api-version=" + API_VERSION

Fetcher = Callable[[str], "tuple[int, bytes]"]


class PricingAPIError(Exception):
    """Raised when the pricing API cannot be queried or its answer understood."""


class ComparisonOperator(str, Enum):
    """Filter comparison operators understood by the pricing API."""

    EQUALS = "eq"


@dataclass(frozen=True)
class Filter:
    """A single OData-style filter expression."""

    field: str
    operator: ComparisonOperator
    value: str

    def __str__(self) -> str:
        operator = self.operator.value if isinstance(self.operator, Enum) else self.operator
        return f"{self.field} {operator} '{self.value}'"


_TIME_RE = re.compile(r"^(?P<base>[^.]*?)(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})?$")


def _parse_time(text: Any) -> datetime | None:
    if text is None or text == "":
        return None
    if not isinstance(text, str):
        raise ValueError(f"invalid timestamp {text!r}")
    match = _TIME_RE.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    normalized = match.group("base")
    frac = match.group("frac")
    if frac:
        normalized += "." + frac[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz:
        normalized += "+00:00" if tz == "Z" else tz
    return datetime.fromisoformat(normalized)


@dataclass(frozen=True)
class Item:
    """One price entry returned by the pricing API."""

    currency_code: str = ""
    tier_minimum_units: float = 0.0
    retail_price: float = 0.0
    unit_price: float = 0.0
    arm_region_name: str = ""
    location: str = ""
    effective_start_date: datetime | None = None
    meter_id: str = ""
    meter_name: str = ""
    product_id: str = ""
    sku_id: str = ""
    availability_id: Any = field(default=None, compare=False)
    product_name: str = ""
    sku_name: str = ""
    service_name: str = ""
    service_id: str = ""
    service_family: str = ""
    unit_of_measure: str = ""
    type: str = ""
    is_primary_meter_region: bool = False
    arm_sku_name: str = ""
    effective_end_date: datetime | None = None
    reservation_term: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Item:
        """Build an item from its decoded JSON object."""
        return cls(
            currency_code=data.get("currencyCode", ""),
            tier_minimum_units=float(data.get("tierMinimumUnits", 0) or 0),
            retail_price=float(data.get("retailPrice", 0) or 0),
            unit_price=float(data.get("unitPrice", 0) or 0),
            arm_region_name=data.get("armRegionName", ""),
            location=data.get("location", ""),
            effective_start_date=_parse_time(data.get("effectiveStartDate")),
            meter_id=data.get("meterId", ""),
            meter_name=data.get("meterName", ""),
            product_id=data.get("productId", ""),
            sku_id=data.get("skuId", ""),
            availability_id=data.get("availabilityId"),
            product_name=data.get("productName", ""),
            sku_name=data.get("skuName", ""),
            service_name=data.get("serviceName", ""),
            service_id=data.get("serviceId", ""),
            service_family=data.get("serviceFamily", ""),
            unit_of_measure=data.get("unitOfMeasure", ""),
            type=data.get("type", ""),
            is_primary_meter_region=bool(data.get("isPrimaryMeterRegion", False)),
            arm_sku_name=data.get("armSkuName", ""),
            effective_end_date=_parse_time(data.get("effectiveEndDate")),
            reservation_term=data.get("reservationTerm", ""),
        )


@dataclass
class ProductsPricePage:
    """One page of results from the pricing API."""

    billing_currency: str = ""
    customer_entity_id: str = ""
    customer_entity_type: str = ""
    items: list[Item] = field(default_factory=list)
    next_page_link: str = ""
    count: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ProductsPricePage:
        """Build a page from its decoded JSON object."""
        return cls(
            billing_currency=data.get("BillingCurrency", ""),
            customer_entity_id=data.get("CustomerEntityId", ""),
            customer_entity_type=data.get("CustomerEntityType", ""),
            items=[Item.from_json(item) for item in data.get("Items") or []],
            next_page_link=data.get("NextPageLink") or "",
            count=int(data.get("Count", 0) or 0),
        )


def _urllib_fetch(url: str) -> tuple[int, bytes]:
    try:
        with urllib.request.urlopen(url) as response:
            return response.status, response.read()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read()


class PricingClient:
    """Fetches price pages, following the API's next-page links."""

    def __init__(self, fetch: Fetcher | None = None, base_url: str = PRICING_URL) -> None:
        self._fetch = fetch or _urllib_fetch
        self._base_url = base_url

    def build_url(self, filters: Iterable[Filter]) -> str:
        """Return the first-page URL for the given filters."""
        expressions = [str(f) for f in filters]
        if not expressions:
            return self._base_url
        escaped = urllib.parse.quote_plus(" and ".join(expressions), safe="")
        return f"{self._base_url}&$filter={escaped}"

    def iter_pages(self, filters: Iterable[Filter]) -> Iterator[ProductsPricePage]:
        """Yield every page of results for the given filters."""
        next_url = self.build_url(filters)
        while next_url:
            try:
                status, body = self._fetch(next_url)
            except OSError as exc:
                raise PricingAPIError(str(exc)) from exc
            if status != 200:
                raise PricingAPIError(f"got a non-200 status code: {status}")
            try:
                page = ProductsPricePage.from_json(json.loads(body))
            except (ValueError, TypeError, AttributeError) as exc:
                raise PricingAPIError(f"decoding pricing page: {exc}") from exc
            yield page
            next_url = page.next_page_link

    def get_products_price_pages(
        self,
        filters: Iterable[Filter],
        page_handler: Callable[[ProductsPricePage], None],
    ) -> None:
        """Call page_handler with every page of results for the given filters."""
        for page in self.iter_pages(filters):
            page_handler(page)
"""Listing the instance types a region offers, filtered to what AKS supports."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, MutableMapping
from typing import Any, Protocol

from cachetools import TTLCache

from .gpu import is_mariner_enabled_gpu_sku, is_nvidia_enabled_sku
from .instancetype import (
    CAPACITY_TYPE_ON_DEMAND,
    CAPACITY_TYPE_SPOT,
    InstanceType,
    KubeletConfiguration,
    Offering,
    _max_ephemeral_os_disk_size_gb,
    new_instance_type,
)
from .sku import SKU

logger = logging.getLogger(__name__)

INSTANCE_TYPES_CACHE_KEY = "types"
INSTANCE_TYPES_CACHE_TTL = 23 * 60 * 60  # seconds

RESTRICTED_VM_SIZES: frozenset[str] = frozenset(
    {
        "Standard_A0",
        "Standard_A1",
        "Standard_A1_v2",
        "Standard_B1s",
        "Standard_B1ms",
        "Standard_F1",
        "Standard_F1s",
        "Basic_A0",
        "Basic_A1",
        "Basic_A2",
        "Basic_A3",
        "Basic_A4",
    }
)

ZONAL_REGIONS: frozenset[str] = frozenset(
    {
        # Americas
        "brazilsouth",
        "canadacentral",
        "centralus",
        "eastus",
        "eastus2",
        "southcentralus",
        "usgovvirginia",
        "westus2",
        "westus3",
        # Europe
        "francecentral",
        "italynorth",
        "germanywestcentral",
        "norwayeast",
        "northeurope",
        "uksouth",
        "westeurope",
        "swedencentral",
        "switzerlandnorth",
        "polandcentral",
        # Middle East
        "qatarcentral",
        "uaenorth",
        "israelcentral",
        # Africa
        "southafricanorth",
        # Asia Pacific
        "australiaeast",
        "centralindia",
        "japaneast",
        "koreacentral",
        "southeastasia",
        "eastasia",
        "chinanorth3",
    }
)


class PriceSource(Protocol):
    """Anything that knows on-demand and spot prices by SKU name."""

    def on_demand_price(self, instance_type: str) -> Any: ...

    def spot_price(self, instance_type: str) -> Any: ...


class UnavailableOfferings(Protocol):
    """Anything that remembers offerings that recently failed to launch."""

    def is_unavailable(self, instance_type: str, zone: str, capacity_type: str) -> bool: ...


def _price(result: Any) -> tuple[float, bool]:
    """Accept either a (price, found) pair or a price that is None when unknown."""
    if isinstance(result, tuple):
        price, found = result
        return float(price), bool(found)
    if result is None:
        return 0.0, False
    return float(result), True


def max_ephemeral_os_disk_size_gb(sku: SKU | None) -> float:
    """The largest ephemeral OS disk, in GB: the larger of the cached and the temp disk."""
    return _max_ephemeral_os_disk_size_gb(sku)


def has_zonal_support(region: str) -> bool:
    """True if the region has availability zones."""
    return region in ZONAL_REGIONS


def instance_type_zones(sku: SKU, region: str) -> frozenset[str]:
    """The zone labels a node of this SKU may carry; "" stands for a non-zonal offering."""
    if has_zonal_support(region):
        return frozenset(f"{region}-{zone}" for zone in sku.availability_zones(region))
    return frozenset({""})


class InstanceTypeProvider:
    """Lists instance types for a region, caching the filtered SKUs."""

    def __init__(
        self,
        region: str,
        sku_source: Callable[[], Iterable[SKU]],
        pricing: PriceSource,
        unavailable_offerings: UnavailableOfferings | None = None,
        cache: MutableMapping[str, dict[str, SKU]] | None = None,
    ) -> None:
        self.region = region
        self._sku_source = sku_source
        self._pricing = pricing
        self._unavailable = unavailable_offerings
        self._cache = (
            cache if cache is not None else TTLCache(maxsize=1, ttl=INSTANCE_TYPES_CACHE_TTL)
        )
        self._lock = threading.Lock()

    def list(
        self,
        kubelet_config: KubeletConfiguration | None,
        os_disk_size_gb: int,
        vm_memory_overhead_percent: float,
    ) -> list[InstanceType]:
        """All instance types for the region, each with its offerings."""
        with self._lock:
            skus = self._instance_type_skus()
            result = []
            for sku in skus.values():
                zones = instance_type_zones(sku, self.region)
                instance_type = new_instance_type(
                    sku,
                    kubelet_config,
                    self.create_offerings(sku, zones),
                    os_disk_size_gb,
                    vm_memory_overhead_percent,
                )
                if not instance_type.offerings:
                    continue
                result.append(instance_type)
            return result

    def create_offerings(self, sku: SKU, zones: Iterable[str]) -> list[Offering]:
        """A spot and an on-demand offering for each zone."""
        offerings = []
        for zone in sorted(zones):
            on_demand_price, on_demand_ok = _price(self._pricing.on_demand_price(sku.name))
            spot_price, spot_ok = _price(self._pricing.spot_price(sku.name))
            available_on_demand = on_demand_ok and not self._is_unavailable(
                sku.name, zone, CAPACITY_TYPE_ON_DEMAND
            )
            available_spot = spot_ok and not self._is_unavailable(
                sku.name, zone, CAPACITY_TYPE_SPOT
            )
            offerings.append(Offering(zone, CAPACITY_TYPE_SPOT, spot_price, available_spot))
            offerings.append(
                Offering(zone, CAPACITY_TYPE_ON_DEMAND, on_demand_price, available_on_demand)
            )
        return offerings

    def is_supported(self, sku: SKU) -> bool:
        """True if AKS supports the SKU, judged by its properties."""
        return (
            self._has_minimum_cpu(sku)
            and self._has_minimum_memory(sku)
            and sku.name not in RESTRICTED_VM_SIZES
            and not self._is_unsupported_gpu(sku)
            and sku.vm_size.cpus_constrained is None
            and not self._is_confidential(sku)
        )

    def _is_unavailable(self, instance_type: str, zone: str, capacity_type: str) -> bool:
        if self._unavailable is None:
            return False
        return self._unavailable.is_unavailable(instance_type, zone, capacity_type)

    def _instance_type_skus(self) -> dict[str, SKU]:
        cached = self._cache.get(INSTANCE_TYPES_CACHE_KEY)
        if cached is not None:
            return cached
        skus = list(self._sku_source())
        logger.debug("Discovered %d SKUs", len(skus))
        instance_types = {
            sku.name: sku
            for sku in skus
            if not sku.has_location_restriction(self.region) and self.is_supported(sku)
        }
        logger.debug("%d SKUs remaining after filtering", len(instance_types))
        self._cache[INSTANCE_TYPES_CACHE_KEY] = instance_types
        return instance_types

    @staticmethod
    def _has_minimum_cpu(sku: SKU) -> bool:
        return sku.vcpus is not None and sku.vcpus >= 2

    @staticmethod
    def _has_minimum_memory(sku: SKU) -> bool:
        return sku.memory_gib is not None and sku.memory_gib >= 3.5

    @staticmethod
    def _is_unsupported_gpu(sku: SKU) -> bool:
        return (
            sku.gpus is not None
            and sku.gpus > 0
            and not (is_nvidia_enabled_sku(sku.name) or is_mariner_enabled_gpu_sku(sku.name))
        )

    @staticmethod
    def _is_confidential(sku: SKU) -> bool:
        # Confidential VMs (DC, EC) are not supported yet.
        return sku.size.startswith("DC") or sku.size.startswith("EC")
"""Discovering the cluster load balancers' backend pools that new VMs should join."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, MutableMapping
from dataclasses import dataclass, field
from typing import Protocol

from cachetools import TTLCache

logger = logging.getLogger(__name__)

SLB_NAME = "kubernetes"
SLB_NAME_IPV6 = "kubernetes-ipv6"

# Created by the cloud provider when the first internal LoadBalancer Service
# appears, so it may not exist yet when nodes are launched.
INTERNAL_SLB_NAME = "kubernetes-internal"

SLB_OUTBOUND_BACKEND_POOL_NAME = "aksOutboundBackendPool"
SLB_OUTBOUND_BACKEND_POOL_NAME_IPV6 = "aksOutboundBackendPool-ipv6"
SLB_INBOUND_BACKEND_POOL_NAME = "kubernetes"
SLB_INBOUND_BACKEND_POOL_NAME_IPV6 = "kubernetes-ipv6"

LOAD_BALANCERS_CACHE_KEY = "LoadBalancers"
# How often the load balancers are re-read; a new internal LB is noticed this late at most.
LOAD_BALANCERS_CACHE_TTL = 2 * 60 * 60  # seconds


@dataclass(frozen=True)
class BackendAddress:
    """An address in a backend pool; ip_address is None when not reported."""

    ip_address: str | None = None


@dataclass(frozen=True)
class BackendAddressPool:
    """A load balancer backend pool.

    addresses is None when the pool carries no properties at all.
    """

    id: str | None = None
    name: str | None = None
    addresses: tuple[BackendAddress, ...] | None = ()


@dataclass(frozen=True)
class LoadBalancer:
    """A load balancer; backend_address_pools is None when it carries no properties."""

    name: str | None = None
    id: str = ""
    backend_address_pools: tuple[BackendAddressPool, ...] | None = ()


@dataclass(frozen=True)
class BackendAddressPools:
    """Backend pool IDs to attach to a VM's primary NIC."""

    ipv4_pool_ids: list[str] = field(default_factory=list)
    # Always empty for now: IPv6 pools would need a non-primary NIC.
    ipv6_pool_ids: list[str] = field(default_factory=list)


class LoadBalancersAPI(Protocol):
    """Lists the load balancers of a resource group, page by page."""

    def list_pages(self, resource_group: str) -> Iterable[Iterable[LoadBalancer]]: ...


def is_cluster_load_balancer(lb: LoadBalancer) -> bool:
    """True for the cluster's public or internal standard load balancer."""
    name = (lb.name or "").casefold()
    return name in (SLB_NAME.casefold(), INTERNAL_SLB_NAME.casefold())


def is_backend_address_pool_applicable(pool: BackendAddressPool) -> bool:
    """True if a VM should be placed into the pool.

    IPv6 pools and IP-based pools (NodeIP mode) are skipped.
    """
    if pool.addresses is None or pool.name is None:
        return False
    name = pool.name.casefold()
    if name in (
        SLB_OUTBOUND_BACKEND_POOL_NAME_IPV6.casefold(),
        SLB_INBOUND_BACKEND_POOL_NAME_IPV6.casefold(),
    ):
        return False
    return not any(address.ip_address for address in pool.addresses)


class LoadBalancerProvider:
    """Serves the cluster load balancers' backend pools, cached between reads."""

    def __init__(
        self,
        api: LoadBalancersAPI,
        resource_group: str,
        cache: MutableMapping[str, list[LoadBalancer]] | None = None,
    ) -> None:
        self._api = api
        self.resource_group = resource_group
        self._cache = (
            cache if cache is not None else TTLCache(maxsize=1, ttl=LOAD_BALANCERS_CACHE_TTL)
        )
        self._lock = threading.Lock()

    def load_balancer_backend_pools(self) -> BackendAddressPools:
        """The IPv4 backend pool IDs of the cluster load balancers, in listing order."""
        ipv4_pool_ids = [
            pool.id or ""
            for lb in self._load_balancers()
            for pool in lb.backend_address_pools or ()
            if is_backend_address_pool_applicable(pool)
        ]
        logger.debug("Returning %d IPv4 backend pools: %s", len(ipv4_pool_ids), ipv4_pool_ids)
        return BackendAddressPools(ipv4_pool_ids=ipv4_pool_ids)

    def _load_balancers(self) -> list[LoadBalancer]:
        with self._lock:
            cached = self._cache.get(LOAD_BALANCERS_CACHE_KEY)
            if cached is not None:
                return cached
            lbs = self._load_from_azure()
            self._cache[LOAD_BALANCERS_CACHE_KEY] = lbs
            return lbs

    def _load_from_azure(self) -> list[LoadBalancer]:
        logger.info("Querying load balancers in resource group %s", self.resource_group)
        lbs: list[LoadBalancer] = []
        try:
            for page in self._api.list_pages(self.resource_group):
                lbs.extend(page)
        except Exception as exc:
            raise RuntimeError(f"failed to get next loadbalancer page: {exc}") from exc
        result = [lb for lb in lbs if is_cluster_load_balancer(lb)]
        logger.info("Found %d load balancers of interest", len(result))
        return result
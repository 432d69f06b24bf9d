import pytest

from aksnodes.instancetype import CAPACITY_TYPE_ON_DEMAND, CAPACITY_TYPE_SPOT, KubeletConfiguration
from aksnodes.instancetypes import (
    RESTRICTED_VM_SIZES,
    InstanceTypeProvider,
    has_zonal_support,
    instance_type_zones,
    max_ephemeral_os_disk_size_gb,
)
from aksnodes.sku import SKU, VMSize

REGION = "westus2"


def make_sku(
    name="Standard_D2_v2",
    size="D2_v2",
    vcpus=2,
    memory_gib=7.0,
    gpus=None,
    zones=("1", "2", "3"),
    location=REGION,
    cpus_constrained=None,
    restricted_locations=(),
    **kwargs,
):
    return SKU(
        name=name,
        size=size,
        vm_size=VMSize(family="D", series="Dv2", version="v2", cpus_constrained=cpus_constrained),
        location=location,
        vcpus=vcpus,
        memory_gib=memory_gib,
        gpus=gpus,
        zones={location: frozenset(zones)},
        restricted_locations=frozenset(restricted_locations),
        **kwargs,
    )


class FakePricing:
    def __init__(self, on_demand=None, spot=None):
        self.on_demand = on_demand or {}
        self.spot = spot or {}

    def on_demand_price(self, instance_type):
        return self.on_demand.get(instance_type)

    def spot_price(self, instance_type):
        return self.spot.get(instance_type)


class FakeUnavailable:
    def __init__(self):
        self.entries = set()

    def mark(self, name, zone, capacity_type):
        self.entries.add((name, zone, capacity_type))

    def is_unavailable(self, instance_type, zone, capacity_type):
        return (instance_type, zone, capacity_type) in self.entries


def priced(*names):
    return FakePricing({n: 1.0 for n in names}, {n: 0.5 for n in names})


def provider_for(skus, pricing=None, unavailable=None, region=REGION):
    calls = []

    def source():
        calls.append(1)
        return list(skus)

    pricing = pricing or priced(*(s.name for s in skus))
    return InstanceTypeProvider(region, source, pricing, unavailable), calls


def test_zonal_support():
    assert has_zonal_support("westus2")
    assert has_zonal_support("eastus")
    assert not has_zonal_support("westus")


def test_instance_type_zones_zonal():
    sku = make_sku(zones=("1", "2"))
    assert instance_type_zones(sku, REGION) == {"westus2-1", "westus2-2"}


def test_instance_type_zones_non_zonal():
    sku = make_sku(location="westus")
    assert instance_type_zones(sku, "westus") == {""}


def test_max_ephemeral_disk_zero_and_none():
    assert max_ephemeral_os_disk_size_gb(None) == 0
    assert max_ephemeral_os_disk_size_gb(make_sku()) == 0


def test_max_ephemeral_disk_takes_larger_source():
    cached_only = make_sku(max_cached_disk_bytes=1_600_000_000_000)
    both = make_sku(max_cached_disk_bytes=1_600_000_000_000, max_resource_volume_mb=1)
    assert max_ephemeral_os_disk_size_gb(cached_only) == 1600
    assert max_ephemeral_os_disk_size_gb(both) == max_ephemeral_os_disk_size_gb(cached_only)


@pytest.mark.parametrize(
    "sku",
    [
        make_sku(name="Standard_A0", size="A0"),
        make_sku(vcpus=1),
        make_sku(vcpus=None),
        make_sku(memory_gib=3.0),
        make_sku(name="Standard_M8-2ms", size="M8-2ms", cpus_constrained="2"),
        make_sku(name="Standard_DC8s_v3", size="DC8s_v3"),
        make_sku(name="Standard_EC8s_v5", size="EC8s_v5"),
        make_sku(name="Standard_NV4as_v4", size="NV4as_v4", gpus=1),
    ],
)
def test_unsupported_skus(sku):
    provider, _ = provider_for([sku])
    assert provider.is_supported(sku) is False


@pytest.mark.parametrize(
    "sku",
    [
        make_sku(),
        make_sku(name="Standard_NC24ads_A100_v4", size="NC24ads_A100_v4", vcpus=24, gpus=1),
        make_sku(name="Standard_NC6s_v3", size="NC6s_v3", vcpus=6, gpus=1),
    ],
)
def test_supported_skus(sku):
    provider, _ = provider_for([sku])
    assert provider.is_supported(sku) is True


def test_create_offerings_spot_and_on_demand_per_zone():
    sku = make_sku()
    unavailable = FakeUnavailable()
    unavailable.mark(sku.name, "westus2-1", CAPACITY_TYPE_SPOT)
    provider, _ = provider_for([sku], unavailable=unavailable)
    offerings = provider.create_offerings(sku, {"westus2-1", "westus2-2"})
    assert len(offerings) == 4
    by_key = {(o.zone, o.capacity_type): o for o in offerings}
    assert by_key[("westus2-1", CAPACITY_TYPE_SPOT)].available is False
    assert by_key[("westus2-1", CAPACITY_TYPE_ON_DEMAND)].available is True
    assert by_key[("westus2-2", CAPACITY_TYPE_SPOT)].available is True
    assert by_key[("westus2-2", CAPACITY_TYPE_ON_DEMAND)].price == 1.0
    assert by_key[("westus2-2", CAPACITY_TYPE_SPOT)].price == 0.5


def test_create_offerings_unpriced_is_unavailable():
    sku = make_sku()
    provider, _ = provider_for([sku], pricing=FakePricing())
    offerings = provider.create_offerings(sku, {"westus2-1"})
    assert [o.available for o in offerings] == [False, False]


def test_list_filters_restricted_constrained_and_confidential():
    skus = [
        make_sku(),
        make_sku(name="Standard_A1_v2", size="A1_v2"),
        make_sku(name="Standard_M8-2ms", size="M8-2ms", cpus_constrained="2"),
        make_sku(name="Standard_DC8s_v3", size="DC8s_v3"),
        make_sku(name="Standard_D4_v2", size="D4_v2", restricted_locations=[REGION]),
    ]
    provider, _ = provider_for(skus)
    names = [it.name for it in provider.list(KubeletConfiguration(), 128, 0.0)]
    assert names == ["Standard_D2_v2"]
    assert not any(name in RESTRICTED_VM_SIZES for name in names)


def test_list_caches_skus():
    provider, calls = provider_for([make_sku()])
    first = provider.list(KubeletConfiguration(), 128, 0.0)
    second = provider.list(KubeletConfiguration(), 128, 0.0)
    assert len(calls) == 1
    assert [it.name for it in first] == [it.name for it in second]


def test_list_keeps_sku_with_all_offerings_unavailable():
    d2 = make_sku()
    d4 = make_sku(name="Standard_D4_v2", size="D4_v2", vcpus=8, memory_gib=28.0)
    unavailable = FakeUnavailable()
    for zone in ("1", "2", "3"):
        for capacity_type in (CAPACITY_TYPE_SPOT, CAPACITY_TYPE_ON_DEMAND):
            unavailable.mark("Standard_D2_v2", f"{REGION}-{zone}", capacity_type)
    provider, _ = provider_for([d2, d4], unavailable=unavailable)
    types = {it.name: it for it in provider.list(KubeletConfiguration(), 128, 0.0)}
    assert set(types) == {"Standard_D2_v2", "Standard_D4_v2"}
    assert types["Standard_D2_v2"].available_offerings() == []
    assert len(types["Standard_D4_v2"].available_offerings()) == 6


def test_list_non_zonal_region_uses_empty_zone():
    sku = make_sku(location="westus")
    provider, _ = provider_for([sku], region="westus")
    (instance_type,) = provider.list(None, 128, 0.0)
    assert {o.zone for o in instance_type.offerings} == {""}
    assert len(instance_type.offerings) == 2


def test_list_capacity_uses_disk_size():
    provider, _ = provider_for([make_sku()])
    (instance_type,) = provider.list(KubeletConfiguration(), 128, 0.0)
    assert instance_type.capacity["cpu"].value() == 2
    assert instance_type.capacity["memory"].value() == 7 * 1024 * 1024 * 1024
    assert instance_type.capacity["ephemeral-storage"].value() == 128_000_000_000
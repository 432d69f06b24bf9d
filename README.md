# aksnodes

Building blocks for choosing and launching Azure Kubernetes Service (AKS)
nodes. The package turns VM SKU descriptions into schedulable instance types,
keeps on-demand and spot prices for a region, picks the load balancer backend
pools a new VM should join, and assembles launch templates.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `aksnodes.gpu`: `is_nvidia_enabled_sku` and `is_mariner_enabled_gpu_sku`
  tell whether a VM size (case-insensitive, with an optional `_Promo` suffix)
  has NVIDIA driver support; `get_gpu_driver_version` picks the driver a size
  needs.
- `aksnodes.vmutils`: `get_vm_name` extracts the VM name from a provider ID
  and raises `ValueError` if it is not a VM provider ID;
  `resource_id_to_provider_id` prefixes `azure://` and lower-cases the resource
  group; `mk_vm_id` builds a VM resource ID.
- `aksnodes.pricing_client`: `PricingClient` queries the Azure retail prices
  API over HTTP, following next-page links, and raises `PricingAPIError` on
  failure. `Filter`, `Item` and `ProductsPricePage` describe the request and
  the answer. A custom fetch function can be passed in place of the network.
- `aksnodes.pricing`: `PricingProvider` holds the last known on-demand and spot
  prices for a region. It starts from static prices you give it (for the
  region, else for `eastus`), keeps them whenever an update fails, and can
  refresh in a background thread with `start()` / `stop()`. Failed updates
  raise or log `PricingError`.
- `aksnodes.quantity`: `Quantity`, resource amounts in Kubernetes notation
  (`"100m"`, `"750Mi"`, `"1e3"`).
- `aksnodes.sku`: `SKU` and `VMSize`, the description of a VM SKU and its
  capabilities, zones and restrictions.
- `aksnodes.instancetype`: `new_instance_type` builds an `InstanceType` with
  requirements, capacity, offerings and overhead; `kube_reserved_resources`,
  `system_reserved_resources` and `eviction_threshold` compute the overhead;
  `TaxBrackets` is the bracketed calculation behind the reservations.
- `aksnodes.instancetypes`: `InstanceTypeProvider` filters SKUs to those AKS
  supports (at least 2 vCPUs and 3.5 GiB, not restricted, not constrained-CPU,
  not confidential, no unsupported GPU), caches them for 23 hours, and lists
  instance types with a spot and an on-demand offering per zone.
- `aksnodes.loadbalancer`: `LoadBalancerProvider` returns the IPv4 backend
  pool IDs of the cluster's `kubernetes` and `kubernetes-internal` load
  balancers, skipping IPv6 and IP-based pools, cached for 2 hours.
- `aksnodes.launchtemplate`: `create_launch_template` and `merge_tags` build a
  `Template`; tag keys have `/` replaced by `_` and a cluster tag is added.

## Examples

```python
from aksnodes.gpu import is_nvidia_enabled_sku, get_gpu_driver_version
from aksnodes.instancetype import kube_reserved_resources

is_nvidia_enabled_sku("Standard_NC6s_v3_Promo")     # True
get_gpu_driver_version("standard_nv6ads_a10_v5")    # "grid-510.73.08"

reserved = kube_reserved_resources(2, 8.0)
str(reserved["cpu"]), str(reserved["memory"])       # ("100m", "1843Mi")
```

```python
from aksnodes.vmutils import get_vm_name, mk_vm_id

vm_id = mk_vm_id("my-rg", "aks-node-1")
get_vm_name("azure://" + vm_id)                     # "aks-node-1"
```

```python
from aksnodes.launchtemplate import create_launch_template

template = create_launch_template("#!/bin/bash", "image-id", {"team/owner": "infra"}, "my-cluster")
template.tags  # {"team_owner": "infra", "karpenter.azure.com_cluster": "my-cluster"}
```

```python
from aksnodes.pricing import PricingProvider
from aksnodes.pricing_client import PricingClient

provider = PricingProvider(PricingClient(), "westus2",
                           static_prices={"eastus": {"Standard_D2_v3": 0.096}})
provider.on_demand_price("Standard_D2_v3")          # 0.096, from the eastus fallback
provider.start()                                    # fetch now, then every 12 hours
provider.stop()
```

## What it does not do

The package has no command-line program and runs no controller. It does not
list SKUs from Azure, create or delete VMs, or read load balancers itself:
`InstanceTypeProvider` takes a function returning `SKU` objects, and
`LoadBalancerProvider` takes an object with a `list_pages(resource_group)`
method. It ships no static price table; `PricingProvider` uses the static
prices it is given. Rendering node bootstrap scripts is left to the caller:
`create_launch_template` accepts a string or an object with a `script()` method.
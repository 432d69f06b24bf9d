"""Building schedulable instance types from Azure VM SKUs."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from .gpu import is_nvidia_enabled_sku
from .quantity import BINARY_SI, DECIMAL_SI, Quantity
from .sku import SKU

MEMORY_AVAILABLE = "memory.available"
DEFAULT_MEMORY_AVAILABLE = "750Mi"

DEFAULT_MAX_PODS = 110

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_EPHEMERAL_STORAGE = "ephemeral-storage"
RESOURCE_PODS = "pods"
RESOURCE_NVIDIA_GPU = "nvidia.com/gpu"

CAPACITY_TYPE_SPOT = "spot"
CAPACITY_TYPE_ON_DEMAND = "on-demand"

LABEL_INSTANCE_TYPE = "node.kubernetes.io/instance-type"
LABEL_ARCH = "kubernetes.io/arch"
LABEL_OS = "kubernetes.io/os"
LABEL_TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
LABEL_TOPOLOGY_REGION = "topology.kubernetes.io/region"
LABEL_CAPACITY_TYPE = "karpenter.sh/capacity-type"

_AZURE_PREFIX = "karpenter.k8s.azure/"
LABEL_SKU_NAME = _AZURE_PREFIX + "sku-name"
LABEL_SKU_FAMILY = _AZURE_PREFIX + "sku-family"
LABEL_SKU_VERSION = _AZURE_PREFIX + "sku-version"
LABEL_SKU_CPU = _AZURE_PREFIX + "sku-cpu"
LABEL_SKU_MEMORY = _AZURE_PREFIX + "sku-memory"
LABEL_SKU_ACCELERATOR = _AZURE_PREFIX + "sku-accelerator"
LABEL_SKU_GPU_NAME = _AZURE_PREFIX + "sku-gpu-name"
LABEL_SKU_GPU_MANUFACTURER = _AZURE_PREFIX + "sku-gpu-manufacturer"
LABEL_SKU_GPU_COUNT = _AZURE_PREFIX + "sku-gpu-count"
LABEL_SKU_STORAGE_EPHEMERAL_OS_MAX_SIZE = _AZURE_PREFIX + "sku-storage-ephemeralos-maxsize"
LABEL_SKU_STORAGE_PREMIUM_CAPABLE = _AZURE_PREFIX + "sku-storage-premium-capable"
LABEL_SKU_ENCRYPTION_AT_HOST_SUPPORTED = _AZURE_PREFIX + "sku-encryptionathost-capable"
LABEL_SKU_ACCELERATED_NETWORKING = _AZURE_PREFIX + "sku-networking-accelerated"
LABEL_SKU_HYPERV_GENERATION = _AZURE_PREFIX + "sku-hyperv-generation"

SKU_FEATURE_TO_LABEL: Mapping[str, str] = {
    "a": _AZURE_PREFIX + "sku-cpu-amd",
    "d": _AZURE_PREFIX + "sku-storage-local",
    "i": _AZURE_PREFIX + "sku-isolated",
    "l": _AZURE_PREFIX + "sku-memory-low",
    "m": _AZURE_PREFIX + "sku-memory-high",
    "p": _AZURE_PREFIX + "sku-cpu-arm",
    "t": _AZURE_PREFIX + "sku-memory-tiny",
}

HYPERV_GENERATION_V1 = "1"
HYPERV_GENERATION_V2 = "2"
MANUFACTURER_NVIDIA = "nvidia"

AZURE_TO_KUBE_ARCHITECTURES: Mapping[str, str] = {"x64": "amd64", "Arm64": "arm64"}

_MEBIBYTE = 1024 * 1024
_GIGABYTE = 1_000_000_000


@dataclass(frozen=True)
class TaxBrackets:
    """A bracketed tax: each (upper_bound, rate) applies from the previous bound upwards.

    The first bracket's lower bound is 0; rates are fractions (0.5 for 50%).
    """

    brackets: tuple[tuple[float, float], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "brackets", tuple((float(u), float(r)) for u, r in self.brackets))

    def calculate(self, amount: float) -> float:
        """Tax owed on amount (memory in GiB or CPU in cores)."""
        tax = 0.0
        lower = 0.0
        for upper_bound, rate in self.brackets:
            if lower > amount:
                continue
            upper = min(upper_bound, amount)
            tax += (upper - lower) * rate
            lower = upper_bound
        return tax


_RESERVED_MEMORY_TAX_GI = TaxBrackets(
    ((4, 0.25), (8, 0.20), (16, 0.10), (128, 0.06), (math.inf, 0.02))
)
_RESERVED_CPU_TAX_VCPU = TaxBrackets(((1, 0.06), (2, 0.04), (4, 0.02), (math.inf, 0.01)))


@dataclass(frozen=True)
class KubeletConfiguration:
    """The kubelet settings that affect an instance type's capacity."""

    max_pods: int | None = None
    pods_per_core: int | None = None


@dataclass(frozen=True)
class Offering:
    """A way to buy an instance type: a zone and capacity type with a price."""

    zone: str
    capacity_type: str
    price: float
    available: bool


@dataclass(frozen=True)
class InstanceTypeOverhead:
    """Resources held back from pods on a node."""

    kube_reserved: Mapping[str, Quantity]
    system_reserved: Mapping[str, Quantity]
    eviction_threshold: Mapping[str, Quantity]


@dataclass(frozen=True)
class InstanceType:
    """A schedulable instance type.

    Each requirement maps a label to its allowed values; an empty set means
    the label must not exist.
    """

    name: str
    requirements: Mapping[str, frozenset[str]]
    offerings: tuple[Offering, ...]
    capacity: Mapping[str, Quantity]
    overhead: InstanceTypeOverhead
    extra: Mapping[str, str] = field(default_factory=dict)

    def available_offerings(self) -> list[Offering]:
        """The offerings that can currently be bought."""
        return [offering for offering in self.offerings if offering.available]


def kube_reserved_resources(vcpus: int, memory_gib: float) -> dict[str, Quantity]:
    """CPU and memory reserved for Kubernetes daemons, as AKS computes them."""
    reserved_memory_mi = int(1024 * _RESERVED_MEMORY_TAX_GI.calculate(memory_gib))
    reserved_cpu_milli = int(1000 * _RESERVED_CPU_TAX_VCPU.calculate(float(vcpus)))
    return {
        RESOURCE_CPU: Quantity(Decimal(reserved_cpu_milli).scaleb(-3), DECIMAL_SI),
        RESOURCE_MEMORY: Quantity(Decimal(reserved_memory_mi * _MEBIBYTE), BINARY_SI),
    }


def system_reserved_resources() -> dict[str, Quantity]:
    """AKS reserves nothing for the system; only CPU and memory are listed."""
    return {RESOURCE_CPU: Quantity(), RESOURCE_MEMORY: Quantity()}


def eviction_threshold() -> dict[str, Quantity]:
    """The default hard eviction threshold."""
    return {RESOURCE_MEMORY: Quantity.parse(DEFAULT_MEMORY_AVAILABLE)}


def _vcpus(sku: SKU) -> int:
    if sku.vcpus is None:
        raise ValueError(f"SKU {sku.name} does not report its vCPU count")
    return sku.vcpus


def _memory_gib(sku: SKU) -> float:
    # The capability is named in GB but is in fact GiB.
    if sku.memory_gib is None:
        raise ValueError(f"SKU {sku.name} does not report its memory")
    return sku.memory_gib


def _memory_mib(sku: SKU) -> int:
    return int(_memory_gib(sku) * 1024)


def _gpu_nvidia_count(sku: SKU) -> int:
    if sku.gpus is None or not is_nvidia_enabled_sku(sku.name):
        return 0
    return sku.gpus


def _max_ephemeral_os_disk_size_gb(sku: SKU | None) -> float:
    """The larger of the cached disk and the temp disk, in GB."""
    if sku is None:
        return 0.0
    resource_volume_bytes = sku.max_resource_volume_mb * _MEBIBYTE
    max_disk_bytes = max(float(sku.max_cached_disk_bytes), float(resource_volume_bytes))
    if max_disk_bytes == 0:
        return 0.0
    return max_disk_bytes / _GIGABYTE


def _format_float(value: float) -> str:
    """Shortest decimal form, with an exponent from 1e6 upwards or below 1e-4."""
    if value == 0:
        return "0"
    normalized = Decimal(repr(value)).normalize()
    sign, digits, _ = normalized.as_tuple()
    exponent = normalized.adjusted()
    prefix = "-" if sign else ""
    if exponent < -4 or exponent >= 6:
        mantissa = str(digits[0])
        if len(digits) > 1:
            mantissa += "." + "".join(str(d) for d in digits[1:])
        exp_sign = "-" if exponent < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exponent):02d}"
    return format(normalized, "f")


def _architecture(architecture: str) -> str:
    return AZURE_TO_KUBE_ARCHITECTURES.get(architecture, architecture)


def _compute_requirements(sku: SKU, offerings: Iterable[Offering]) -> dict[str, frozenset[str]]:
    vm_size = sku.vm_size
    available = [offering for offering in offerings if offering.available]
    requirements: dict[str, set[str]] = {
        LABEL_INSTANCE_TYPE: {sku.name},
        LABEL_ARCH: {_architecture(sku.cpu_architecture)},
        LABEL_OS: {"linux"},
        LABEL_TOPOLOGY_ZONE: {offering.zone for offering in available},
        LABEL_TOPOLOGY_REGION: {sku.location},
        LABEL_CAPACITY_TYPE: {offering.capacity_type for offering in available},
        LABEL_SKU_CPU: {str(_vcpus(sku))},
        LABEL_SKU_MEMORY: {str(_memory_mib(sku))},
        LABEL_SKU_GPU_COUNT: {str(_gpu_nvidia_count(sku))},
        LABEL_SKU_GPU_MANUFACTURER: set(),
        LABEL_SKU_GPU_NAME: set(),
        LABEL_SKU_NAME: {sku.name},
        LABEL_SKU_FAMILY: {vm_size.family},
        LABEL_SKU_ACCELERATOR: set(),
        LABEL_SKU_VERSION: set(),
        LABEL_SKU_STORAGE_EPHEMERAL_OS_MAX_SIZE: set(),
        LABEL_SKU_STORAGE_PREMIUM_CAPABLE: set(),
        LABEL_SKU_ENCRYPTION_AT_HOST_SUPPORTED: set(),
        LABEL_SKU_ACCELERATED_NETWORKING: set(),
        LABEL_SKU_HYPERV_GENERATION: set(),
    }
    for label in SKU_FEATURE_TO_LABEL.values():
        requirements.setdefault(label, set())

    for feature in vm_size.additive_features:
        label = SKU_FEATURE_TO_LABEL.get(feature)
        if label is not None:
            requirements[label].add("true")
    if sku.premium_io:
        requirements[LABEL_SKU_STORAGE_PREMIUM_CAPABLE].add("true")
    if sku.encryption_at_host:
        requirements[LABEL_SKU_ENCRYPTION_AT_HOST_SUPPORTED].add("true")
    # Dlds_v5 claims ephemeral OS disk support but does not have it.
    if sku.ephemeral_os_disk and vm_size.series != "Dlds_v5":
        requirements[LABEL_SKU_STORAGE_EPHEMERAL_OS_MAX_SIZE].add(
            _format_float(_max_ephemeral_os_disk_size_gb(sku))
        )
    if sku.accelerated_networking:
        requirements[LABEL_SKU_ACCELERATED_NETWORKING].add("true")
    if "V1" in sku.hyperv_generations:
        requirements[LABEL_SKU_HYPERV_GENERATION].add(HYPERV_GENERATION_V1)
    if "V2" in sku.hyperv_generations:
        requirements[LABEL_SKU_HYPERV_GENERATION].add(HYPERV_GENERATION_V2)
    if is_nvidia_enabled_sku(sku.name):
        requirements[LABEL_SKU_GPU_MANUFACTURER].add(MANUFACTURER_NVIDIA)
        if vm_size.accelerator_type is not None:
            requirements[LABEL_SKU_GPU_NAME].add(vm_size.accelerator_type)
    if vm_size.accelerator_type is not None:
        requirements[LABEL_SKU_ACCELERATOR].add(vm_size.accelerator_type)

    # The version label drops the "v" prefix; sizes without a version are "1".
    version = vm_size.version
    if not version:
        requirements[LABEL_SKU_VERSION].add("1")
    elif version[0] in "vV":
        requirements[LABEL_SKU_VERSION].add(version[1:])

    return {label: frozenset(values) for label, values in requirements.items()}


def _pods(sku: SKU, kubelet_config: KubeletConfiguration | None) -> Quantity:
    if kubelet_config is not None and kubelet_config.max_pods is not None:
        count = kubelet_config.max_pods
    else:
        count = DEFAULT_MAX_PODS
    if kubelet_config is not None and (kubelet_config.pods_per_core or 0) > 0:
        count = min(kubelet_config.pods_per_core * _vcpus(sku), count)
    return Quantity.parse(str(count))


def _memory(sku: SKU, vm_memory_overhead_percent: float) -> Quantity:
    memory = Quantity.parse(f"{int(_memory_gib(sku))}Gi")
    overhead_mi = math.ceil(float(memory.value()) * vm_memory_overhead_percent / 1024 / 1024)
    return memory - Quantity.parse(f"{overhead_mi}Mi")


def compute_capacity(
    sku: SKU,
    kubelet_config: KubeletConfiguration | None,
    os_disk_size_gb: int,
    vm_memory_overhead_percent: float,
) -> dict[str, Quantity]:
    """The resources a node of this SKU provides."""
    return {
        RESOURCE_CPU: Quantity.parse(str(_vcpus(sku))),
        RESOURCE_MEMORY: _memory(sku, vm_memory_overhead_percent),
        RESOURCE_EPHEMERAL_STORAGE: Quantity(Decimal(int(os_disk_size_gb)).scaleb(9), DECIMAL_SI),
        RESOURCE_PODS: _pods(sku, kubelet_config),
        RESOURCE_NVIDIA_GPU: Quantity.parse(str(_gpu_nvidia_count(sku))),
    }


def new_instance_type(
    sku: SKU,
    kubelet_config: KubeletConfiguration | None,
    offerings: Iterable[Offering],
    os_disk_size_gb: int,
    vm_memory_overhead_percent: float,
) -> InstanceType:
    """Build the instance type for a SKU in its location."""
    offerings = tuple(offerings)
    return InstanceType(
        name=sku.name,
        requirements=_compute_requirements(sku, offerings),
        offerings=offerings,
        capacity=compute_capacity(sku, kubelet_config, os_disk_size_gb, vm_memory_overhead_percent),
        overhead=InstanceTypeOverhead(
            kube_reserved=kube_reserved_resources(_vcpus(sku), _memory_gib(sku)),
            system_reserved=system_reserved_resources(),
            eviction_threshold=eviction_threshold(),
        ),
    )
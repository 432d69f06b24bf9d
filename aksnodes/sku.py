"""Descriptions of Azure VM SKUs as used to build instance types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class VMSize:
    """The parts of a VM size name such as ``NC24ads_A100_v4``."""

    family: str
    series: str = ""
    version: str = ""
    accelerator_type: str | None = None
    additive_features: tuple[str, ...] = ()
    cpus_constrained: str | None = None


def _by_location(mapping: Mapping[str, frozenset[str]], region: str) -> set[str]:
    wanted = region.lower()
    found: set[str] = set()
    for location, values in mapping.items():
        if location.lower() == wanted:
            found.update(values)
    return found


@dataclass
class SKU:
    """A VM SKU offered in a location, with its capabilities.

    Capabilities that the SKU does not report are None.
    """

    name: str
    size: str
    vm_size: VMSize
    location: str
    vcpus: int | None = None
    memory_gib: float | None = None
    gpus: int | None = None
    cpu_architecture: str = "x64"
    premium_io: bool = False
    encryption_at_host: bool = False
    ephemeral_os_disk: bool = False
    accelerated_networking: bool = False
    hyperv_generations: frozenset[str] = frozenset()
    max_cached_disk_bytes: int = 0
    max_resource_volume_mb: int = 0
    zones: Mapping[str, frozenset[str]] = field(default_factory=dict)
    restricted_zones: Mapping[str, frozenset[str]] = field(default_factory=dict)
    restricted_locations: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        self.hyperv_generations = frozenset(self.hyperv_generations)
        self.restricted_locations = frozenset(self.restricted_locations)
        self.zones = {loc: frozenset(z) for loc, z in self.zones.items()}
        self.restricted_zones = {loc: frozenset(z) for loc, z in self.restricted_zones.items()}

    def availability_zones(self, region: str) -> frozenset[str]:
        """Zones in the region where the SKU is offered and not restricted."""
        return frozenset(
            _by_location(self.zones, region) - _by_location(self.restricted_zones, region)
        )

    def has_location_restriction(self, region: str) -> bool:
        """True if the SKU is restricted in the whole region."""
        wanted = region.lower()
        return any(location.lower() == wanted for location in self.restricted_locations)
"""GPU SKU support tables and driver selection for Azure VM sizes."""

from __future__ import annotations

NVIDIA_470_CUDA_DRIVER_VERSION = "cuda-470.82.01"
NVIDIA_510_CUDA_DRIVER_VERSION = "cuda-510.47.03"
NVIDIA_525_CUDA_DRIVER_VERSION = "cuda-525.85.12"
NVIDIA_510_GRID_DRIVER_VERSION = "grid-510.73.08"

# Only add a size here once an agreement with NVIDIA covers that specific GPU.
NVIDIA_ENABLED_SKUS: frozenset[str] = frozenset(
    {
        # M60
        "standard_nv6",
        "standard_nv12",
        "standard_nv12s_v3",
        "standard_nv24",
        "standard_nv24s_v3",
        "standard_nv24r",
        "standard_nv48s_v3",
        # P40
        "standard_nd6s",
        "standard_nd12s",
        "standard_nd24s",
        "standard_nd24rs",
        # P100
        "standard_nc6s_v2",
        "standard_nc12s_v2",
        "standard_nc24s_v2",
        "standard_nc24rs_v2",
        # V100
        "standard_nc6s_v3",
        "standard_nc12s_v3",
        "standard_nc24s_v3",
        "standard_nc24rs_v3",
        "standard_nd40s_v3",
        "standard_nd40rs_v2",
        # T4
        "standard_nc4as_t4_v3",
        "standard_nc8as_t4_v3",
        "standard_nc16as_t4_v3",
        "standard_nc64as_t4_v3",
        # A100 40GB
        "standard_nd96asr_v4",
        "standard_nd112asr_a100_v4",
        "standard_nd120asr_a100_v4",
        # A100 80GB
        "standard_nd96amsr_a100_v4",
        "standard_nd112amsr_a100_v4",
        "standard_nd120amsr_a100_v4",
        # A100 PCIE 80GB
        "standard_nc24ads_a100_v4",
        "standard_nc48ads_a100_v4",
        "standard_nc96ads_a100_v4",
        "standard_ncads_a100_v4",
        # A10
        "standard_nc8ads_a10_v4",
        "standard_nc16ads_a10_v4",
        "standard_nc32ads_a10_v4",
        # A10, GRID only
        "standard_nv6ads_a10_v5",
        "standard_nv12ads_a10_v5",
        "standard_nv18ads_a10_v5",
        "standard_nv36ads_a10_v5",
        "standard_nv36adms_a10_v5",
        "standard_nv72ads_a10_v5",
        # A100
        "standard_nd96ams_v4",
        "standard_nd96ams_a100_v4",
    }
)

# GPU sizes currently enabled and validated for Mariner.
MARINER_NVIDIA_ENABLED_SKUS: frozenset[str] = frozenset(
    {
        # V100
        "standard_nc6s_v3",
        "standard_nc12s_v3",
        "standard_nc24s_v3",
        "standard_nc24rs_v3",
        "standard_nd40s_v3",
        "standard_nd40rs_v2",
        # T4
        "standard_nc4as_t4_v3",
        "standard_nc8as_t4_v3",
        "standard_nc16as_t4_v3",
        "standard_nc64as_t4_v3",
    }
)

# Sizes that need a "converged" driver supporting both CUDA and GRID workloads;
# plain CUDA drivers fail to install on them.
CONVERGED_GPU_DRIVER_SIZES: frozenset[str] = frozenset(
    {
        "standard_nv6ads_a10_v5",
        "standard_nv12ads_a10_v5",
        "standard_nv18ads_a10_v5",
        "standard_nv36ads_a10_v5",
        "standard_nv72ads_a10_v5",
        "standard_nv36adms_a10_v5",
        "standard_nc8ads_a10_v4",
        "standard_nc16ads_a10_v4",
        "standard_nc32ads_a10_v4",
    }
)


def _normalize(vm_size: str) -> str:
    return vm_size.lower().removesuffix("_promo")


def is_nvidia_enabled_sku(vm_size: str) -> bool:
    """Return True if the VM size has NVIDIA driver support."""
    return _normalize(vm_size) in NVIDIA_ENABLED_SKUS


def is_mariner_enabled_gpu_sku(vm_size: str) -> bool:
    """Return True if the VM size is a GPU size validated for Mariner."""
    return _normalize(vm_size) in MARINER_NVIDIA_ENABLED_SKUS


def _is_standard_nc_v1(size: str) -> bool:
    lowered = size.lower()
    return lowered.startswith("standard_nc") and "_v" not in lowered


def _use_grid_drivers(size: str) -> bool:
    return size.lower() in CONVERGED_GPU_DRIVER_SIZES


def get_gpu_driver_version(size: str) -> str:
    """Pick the GPU driver version to install for a VM size."""
    if _use_grid_drivers(size):
        return NVIDIA_510_GRID_DRIVER_VERSION
    if _is_standard_nc_v1(size):
        return NVIDIA_470_CUDA_DRIVER_VERSION
    return NVIDIA_525_CUDA_DRIVER_VERSION
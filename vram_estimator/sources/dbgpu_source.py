"""GPU memory size and architecture from dbgpu (TechPowerUp database)."""

import logging

from dbgpu import GPUDatabase

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Catalog GPU id → dbgpu specification key (slug), i.e. db.specifications[key]
# ---------------------------------------------------------------------------
GPU_ID_TO_DBGPU_KEY: dict[str, str] = {
    "rtx5090": "geforce-rtx-5090",
    "rtx4090": "geforce-rtx-4090",
    "rtx3090": "geforce-rtx-3090",
    "rtx6000": "rtx-6000-ada-generation",
    "h200": "h200-sxm-141gb",
    "h100-80gb": "h100-sxm5-80gb",
    "a100-80gb": "a100-sxm4-80gb",
    "l40s": "l40s",
    "l4": "l4",
    "v100-16gb": "tesla-v100-sxm2-16gb",
}

# dbgpu architecture → catalog architecture names
ARCH_NORMALIZATION: dict[str, str] = {
    "Blackwell 2.0": "Blackwell",
    "Blackwell Ultra": "Blackwell",
}


def fetch_gpu_specs(gpu_ids: list[str] | None = None) -> dict[str, dict]:
    """Look up memory and architecture for catalog GPUs.

    Returns ``{gpu_id: {"memory_gb": ..., "architecture": ...}}``, suitable
    for ``Catalog.with_gpu_updates(specs=...)``.

    Raises KeyError if a GPU has no dbgpu mapping or is missing from dbgpu.
    """
    if gpu_ids is None:
        gpu_ids = list(GPU_ID_TO_DBGPU_KEY)

    specs_map = GPUDatabase.default().specifications
    results: dict[str, dict] = {}

    for gpu_id in gpu_ids:
        if gpu_id not in GPU_ID_TO_DBGPU_KEY:
            raise KeyError(f"GPU '{gpu_id}' has no dbgpu mapping. Update GPU_ID_TO_DBGPU_KEY.")
        dbgpu_key = GPU_ID_TO_DBGPU_KEY[gpu_id]
        if dbgpu_key not in specs_map:
            raise KeyError(
                f"GPU '{gpu_id}' not found in dbgpu (key='{dbgpu_key}'). "
                f"Update GPU_ID_TO_DBGPU_KEY or upgrade dbgpu."
            )

        gpu = specs_map[dbgpu_key]
        arch = ARCH_NORMALIZATION.get(gpu.architecture, gpu.architecture)
        update = {"architecture": arch}
        if gpu.memory_size_gb:
            update["memory_gb"] = round(gpu.memory_size_gb, 1)
        results[gpu_id] = update

        logger.debug("  %s: mem=%s GB, arch=%s", gpu_id, update.get("memory_gb"), arch)

    logger.info("Fetched specs for %d GPUs from dbgpu", len(results))
    return results

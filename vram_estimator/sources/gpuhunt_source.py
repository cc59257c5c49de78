"""Refresh catalog cloud prices from gpuhunt's on-demand offerings."""

import logging
from datetime import UTC, datetime

from gpuhunt import Catalog

from vram_estimator.errors import FormatBreakingChange

logger = logging.getLogger(__name__)

# Catalog GPU id -> (gpuhunt gpu_name, gpu_memory in GB)
GPU_ID_TO_GPUHUNT: dict[str, tuple[str, float]] = {
    "rtx5090": ("RTX5090", 32),
    "rtx4090": ("RTX4090", 24),
    "rtx4080": ("RTX4080", 16),
    "rtx3090": ("RTX3090", 24),
    "rtx3080": ("RTX3080", 10),
    "rtx6000": ("RTX6000Ada", 48),
    "h200": ("H200", 141),
    "h100-80gb": ("H100", 80),
    "a100-80gb": ("A100", 80),
    "l40s": ("L40S", 48),
    "l4": ("L4", 24),
    "t4": ("T4", 16),
    "v100-16gb": ("V100", 16),
    "v100-32gb": ("V100", 32),
}

_EXPECTED_ATTRS = ("gpu_name", "gpu_memory", "gpu_count", "price", "provider")


def cheapest_single_gpu_prices(items) -> dict[str, float]:
    """Lowest hourly price per catalog GPU among single-GPU offerings."""
    wanted = {value: gpu_id for gpu_id, value in GPU_ID_TO_GPUHUNT.items()}
    best: dict[str, float] = {}
    for item in items:
        if item.gpu_count != 1:
            continue
        gpu_id = wanted.get((item.gpu_name, item.gpu_memory))
        if gpu_id is None:
            continue
        if gpu_id not in best or item.price < best[gpu_id]:
            best[gpu_id] = item.price
    return best


def fetch_cloud_prices() -> tuple[dict[str, float], dict]:
    """Query gpuhunt and return (prices by catalog GPU id, source_metadata)."""
    catalog = Catalog(balance_resources=False, auto_reload=True)
    logger.info("Querying gpuhunt catalog for NVIDIA on-demand offerings")

    items = catalog.query(
        gpu_vendor="nvidia",
        spot=False,
        min_gpu_count=1,
    )

    # Validate gpuhunt result format to detect breaking API changes early
    if items:
        first = items[0]
        missing = [a for a in _EXPECTED_ATTRS if not hasattr(first, a)]
        if missing:
            raise FormatBreakingChange(
                source="gpuhunt",
                details=(
                    f"Query results are missing expected attributes: {missing}. "
                    f"The gpuhunt Catalog API may have changed."
                ),
            )

    prices = cheapest_single_gpu_prices(items)
    logger.info("Found cloud prices for %d/%d catalog GPUs", len(prices), len(GPU_ID_TO_GPUHUNT))

    source_metadata = {
        "service_name": "gpuhunt",
        "service_url": "https://github.com/dstackai/gpuhunt",
        "description": "Cheapest on-demand single-GPU offering across all providers and regions.",
        "currency": "USD",
        "updated_at": datetime.now(UTC).isoformat(),
    }
    return prices, source_metadata

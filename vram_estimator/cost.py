"""Ownership and rental cost of running a catalog GPU for a number of hours."""

from __future__ import annotations

import logging
import math

from vram_estimator.catalog import GPU
from vram_estimator.errors import InvalidConfiguration
from vram_estimator.results import CostAnalysis

logger = logging.getLogger(__name__)

# Hourly on-demand rates per provider, USD
CLOUD_PRICING: dict[str, dict[str, float]] = {
    "aws": {
        "rtx4090": 2.5,
        "rtx4080": 1.8,
        "rtx3090": 1.5,
        "rtx3080": 1.2,
        "a100-80gb": 4.5,
        "h100-80gb": 8.0,
        "v100-32gb": 2.8,
        "v100-16gb": 2.0,
    },
    "gcp": {
        "rtx4090": 2.3,
        "rtx4080": 1.6,
        "rtx3090": 1.4,
        "rtx3080": 1.1,
        "a100-80gb": 4.2,
        "h100-80gb": 7.5,
        "v100-32gb": 2.6,
        "v100-16gb": 1.9,
    },
    "azure": {
        "rtx4090": 2.7,
        "rtx4080": 1.9,
        "rtx3090": 1.6,
        "rtx3080": 1.3,
        "a100-80gb": 4.8,
        "h100-80gb": 8.5,
        "v100-32gb": 3.0,
        "v100-16gb": 2.2,
    },
}

PROVIDERS = ("local", *CLOUD_PRICING)

DEPRECIATION_HOURS = 3 * 365 * 24
MONTHLY_ELECTRICITY_USD = 100.0
MAINTENANCE_PER_HOUR = 0.10
STORAGE_PER_HOUR = 0.10
NETWORK_PER_HOUR = 0.05


def hourly_cloud_rate(gpu: GPU, provider: str) -> float:
    """Provider rate for *gpu*, falling back to the catalog cloud price."""
    rate = CLOUD_PRICING[provider].get(gpu.id, gpu.cloud_price_usd_per_hour)
    if rate is None:
        raise InvalidConfiguration(f"No {provider} price known for GPU '{gpu.id}'")
    return rate


def analyze_cost(gpu: GPU, hours: float, provider: str = "local") -> CostAnalysis:
    if not math.isfinite(hours) or hours < 0:
        raise InvalidConfiguration(f"hours must be a finite number >= 0 (got {hours})")
    provider = provider.lower()
    if provider not in PROVIDERS:
        raise InvalidConfiguration(
            f"Unknown provider '{provider}'", details=[f"provider must be one of {list(PROVIDERS)}"]
        )

    if provider == "local":
        depreciation = gpu.price_usd / DEPRECIATION_HOURS
        electricity = MONTHLY_ELECTRICITY_USD / (30 * 24)
        hourly_rate = depreciation + electricity + MAINTENANCE_PER_HOUR
        costs = {
            "depreciation": depreciation * hours,
            "electricity": electricity * hours,
            "maintenance": MAINTENANCE_PER_HOUR * hours,
        }
    else:
        compute = hourly_cloud_rate(gpu, provider)
        hourly_rate = compute + STORAGE_PER_HOUR + NETWORK_PER_HOUR
        costs = {
            "compute": compute * hours,
            "storage": STORAGE_PER_HOUR * hours,
            "network": NETWORK_PER_HOUR * hours,
        }

    total = math.fsum(costs.values())
    logger.debug("Cost of %s on %s for %.1fh: $%.2f", gpu.id, provider, hours, total)
    return CostAnalysis(
        gpu_id=gpu.id,
        provider=provider,
        hours=hours,
        hourly_rate=hourly_rate,
        costs=costs,
        total=total,
    )

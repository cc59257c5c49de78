"""Rank catalog GPUs against a memory requirement, budget and use case."""

from __future__ import annotations

import logging
import math
from enum import Enum

from vram_estimator.catalog import GPU, Catalog
from vram_estimator.config import MAX_MULTI_GPU
from vram_estimator.errors import InvalidConfiguration
from vram_estimator.formulas import assess_memory_usage
from vram_estimator.results import GPURecommendation

logger = logging.getLogger(__name__)


class UseCase(Enum):
    INFERENCE = "inference"
    TRAINING = "training"
    DEVELOPMENT = "development"


# Utilization the tightness score peaks at; leaves headroom for spikes
TARGET_UTILIZATION = 0.8
HIGH_UTILIZATION = 0.9

TIGHTNESS_WEIGHT = 0.4
VALUE_WEIGHT = 0.35
AFFINITY_WEIGHT = 0.25

# Score divisor grows by this much for every GPU beyond the first
MULTI_GPU_PENALTY = 0.1

# Affinity given when the use case cannot be scored for a GPU
NEUTRAL_AFFINITY = 0.5


def parse_use_case(value: UseCase | str) -> UseCase:
    try:
        return UseCase(value.lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidConfiguration(
            f"Unknown use case '{value}'",
            details=[f"use_case must be one of {[u.value for u in UseCase]}"],
        ) from None


def units_needed(required_gb: float, usable_gb: float, multi_gpu: bool, max_gpus: int) -> int | None:
    """Smallest GPU count whose combined usable memory covers *required_gb*.

    Returns None when no allowed count is enough.
    """
    if required_gb <= usable_gb:
        return 1
    if not multi_gpu:
        return None
    count = math.ceil(required_gb / usable_gb)
    return count if count <= max_gpus else None


def tightness_score(utilization: float) -> float:
    """1.0 at the target utilization, falling off linearly to either side."""
    return max(0.0, 1.0 - abs(utilization - TARGET_UTILIZATION) / TARGET_UTILIZATION)


def _ratio(best: float, value: float) -> float:
    if value <= 0:
        return 1.0
    return min(1.0, best / value)


def _affinity(gpu: GPU, use_case: UseCase, catalog: Catalog) -> float:
    if use_case is UseCase.TRAINING:
        best = max(g.compute_capability_value for g in catalog.gpus)
        return gpu.compute_capability_value / best if best > 0 else NEUTRAL_AFFINITY

    if use_case is UseCase.INFERENCE:
        # Serving is usually rented by the hour
        if gpu.cloud_price_usd_per_hour is None:
            return NEUTRAL_AFFINITY
        priced = [g.cloud_price_usd_per_hour for g in catalog.gpus if g.cloud_price_usd_per_hour]
        return _ratio(min(priced), gpu.cloud_price_usd_per_hour) if priced else NEUTRAL_AFFINITY

    priced = [g.price_usd for g in catalog.gpus if g.price_usd > 0]
    return _ratio(min(priced), gpu.price_usd) if priced else NEUTRAL_AFFINITY


def _suggestions(required_gb: float, gpu: GPU, use_case: UseCase, max_gpus: int) -> list[str]:
    suggestions = ["Enable quantization (INT8 or INT4) to shrink model weights"]
    count = math.ceil(required_gb / gpu.usable_memory_gb)
    if count <= max_gpus:
        suggestions.append(f"Use {count}x {gpu.name} with model parallelism")
    else:
        suggestions.append("Use multiple GPUs with model or tensor parallelism")
    suggestions.append("Reduce batch size or sequence length")
    if use_case is UseCase.TRAINING:
        suggestions.append("Enable gradient checkpointing to cut activation memory")
    return suggestions


def recommend(
    required_vram_gb: float,
    budget_usd: float | None,
    use_case: UseCase | str,
    multi_gpu: bool,
    catalog: Catalog,
    max_gpus: int = MAX_MULTI_GPU,
) -> list[GPURecommendation]:
    """Score every catalog GPU and return them best first.

    The fit score blends how close the GPU runs to ``TARGET_UTILIZATION``,
    its price per usable GB (scaled down when over budget) and a use-case
    affinity, then divides by a penalty per extra GPU.  GPUs that cannot hold
    the requirement score 0 and are still returned with warnings.  When no
    single GPU in the catalog holds the requirement, every entry also carries
    suggestions for shrinking it or splitting it across GPUs.  Ties are
    broken by ascending total price.
    """
    if not math.isfinite(required_vram_gb) or required_vram_gb < 0:
        raise InvalidConfiguration(f"required_vram_gb must be a finite number >= 0 (got {required_vram_gb})")
    if budget_usd is not None and (not math.isfinite(budget_usd) or budget_usd < 0):
        raise InvalidConfiguration(f"budget_usd must be a finite number >= 0 (got {budget_usd})")
    if max_gpus < 1:
        raise InvalidConfiguration(f"max_gpus must be >= 1 (got {max_gpus})")
    use_case = parse_use_case(use_case)

    fits: dict[str, int | None] = {
        gpu.id: units_needed(required_vram_gb, gpu.usable_memory_gb, multi_gpu, max_gpus)
        for gpu in catalog.gpus
    }

    # Workarounds are only offered when no GPU holds the requirement on its own
    single_gpu_fits = any(
        units_needed(required_vram_gb, gpu.usable_memory_gb, False, 1) == 1 for gpu in catalog.gpus
    )

    cost_per_gb = [
        gpu.price_usd / gpu.usable_memory_gb for gpu in catalog.gpus if fits[gpu.id] is not None
    ]
    best_cost_per_gb = min(cost_per_gb) if cost_per_gb else 0.0

    recommendations = []
    for gpu in catalog.gpus:
        usable = gpu.usable_memory_gb
        units = fits[gpu.id]
        suitable = units is not None
        count = units or 1
        total_price = gpu.price_usd * count
        utilization = required_vram_gb / (usable * count)

        warnings = []
        if usable < required_vram_gb:
            warnings.append(
                f"Insufficient memory: {usable:.1f} GB usable per GPU, {required_vram_gb:.1f} GB required"
            )
        if budget_usd is not None and total_price > budget_usd:
            warnings.append(f"Over budget: ${total_price:,.0f} exceeds ${budget_usd:,.0f}")
        if suitable and utilization > HIGH_UTILIZATION:
            warnings.append(f"High memory utilization ({utilization:.0%}); little headroom left")

        suggestions = [] if single_gpu_fits else _suggestions(required_vram_gb, gpu, use_case, max_gpus)

        if suitable:
            budget_factor = 1.0
            if budget_usd is not None and total_price > budget_usd:
                budget_factor = budget_usd / total_price
            value = _ratio(best_cost_per_gb, gpu.price_usd / usable) * budget_factor
            score = (
                TIGHTNESS_WEIGHT * tightness_score(utilization)
                + VALUE_WEIGHT * value
                + AFFINITY_WEIGHT * _affinity(gpu, use_case, catalog)
            ) / (1 + MULTI_GPU_PENALTY * (count - 1))
        else:
            score = 0.0

        recommendations.append(
            GPURecommendation(
                gpu=gpu,
                fit_score=score,
                suitable=suitable,
                gpu_count=count,
                usable_vram_gb=usable,
                utilization=utilization,
                total_price_usd=total_price,
                warnings=tuple(warnings),
                suggestions=tuple(suggestions),
                assessment=assess_memory_usage(required_vram_gb, usable * count),
            )
        )

    recommendations.sort(key=lambda r: (-r.fit_score, r.total_price_usd, r.gpu.id))
    logger.debug(
        "Recommended for %.2f GB: %d of %d GPUs suitable",
        required_vram_gb,
        sum(r.suitable for r in recommendations),
        len(recommendations),
    )
    return recommendations

"""Closed-form memory formulas shared by every calculator.

These are analytical approximations built from architectural parameters,
not measurements: framework memory fragmentation, CUDA context and kernel
workspaces are not modelled.  Sizes are reported in GiB (bytes / 1024³).
"""

from __future__ import annotations

import math

from vram_estimator.errors import InvalidConfiguration
from vram_estimator.precision import PrecisionType, bytes_per_parameter
from vram_estimator.results import (
    BreakdownEntry,
    MemoryBreakdown,
    MemoryBucket,
    MemoryComponent,
    MemoryUsageAssessment,
)

BYTES_PER_GB = 1024**3

# LoRA adapter size is normalized against this hidden size rather than the
# model's own.  Kept for compatibility with published estimates; see
# lora_param_count.
LORA_REFERENCE_HIDDEN_SIZE = 4096


def _check_non_negative(**values: float) -> None:
    bad = [
        f"{name} must be a finite number >= 0 (got {value})"
        for name, value in values.items()
        if not math.isfinite(value) or value < 0
    ]
    if bad:
        raise InvalidConfiguration("Invalid input to memory formula", details=bad)


def bytes_to_gb(num_bytes: float) -> float:
    return num_bytes / BYTES_PER_GB


def params_to_gb(params_b: float, bytes_per_param: float) -> float:
    """Memory for *params_b* billion parameters stored at *bytes_per_param*."""
    return bytes_to_gb(params_b * 1e9 * bytes_per_param)


# ---------------------------------------------------------------------------
# Activations and KV cache
# ---------------------------------------------------------------------------


def activation_memory_gb(
    batch_size: int,
    sequence_length: int,
    hidden_size: int,
    num_layers: int,
    precision: PrecisionType | str,
) -> float:
    """Stored transformer activations for one forward pass.

    Attention: Q/K/V projections (3·b·s·h) plus the b·s² score matrix.
    FFN: two linear layers over a 4·h intermediate (8·b·s·h).
    """
    _check_non_negative(
        batch_size=batch_size,
        sequence_length=sequence_length,
        hidden_size=hidden_size,
        num_layers=num_layers,
    )
    bpp = bytes_per_parameter(precision)
    tokens = batch_size * sequence_length
    attention = tokens * hidden_size * 3 + batch_size * sequence_length**2
    ffn = tokens * hidden_size * 8
    return bytes_to_gb((attention + ffn) * num_layers * bpp)


def kv_cache_memory_gb(
    batch_size: int,
    sequence_length: int,
    hidden_size: int,
    num_layers: int,
    num_heads: int,
    precision: PrecisionType | str,
) -> float:
    """Key and value tensors for every cached token in every layer.

    *num_heads* does not change the result for full multi-head attention
    (heads × head_dim == hidden_size); it is validated so callers passing a
    catalog record get the same checks as every other field.
    """
    _check_non_negative(
        batch_size=batch_size,
        sequence_length=sequence_length,
        hidden_size=hidden_size,
        num_layers=num_layers,
        num_heads=num_heads,
    )
    bpp = bytes_per_parameter(precision)
    return bytes_to_gb(batch_size * sequence_length * hidden_size * num_layers * 2 * bpp)


def lora_param_count(base_params_b: float, rank: int) -> float:
    """Estimated LoRA adapter parameters, in billions.

    Uses ``base · 2r / 4096`` whatever the model's real hidden size is, so
    models wider or narrower than 4096 get the same adapter fraction.
    """
    _check_non_negative(base_params_b=base_params_b, rank=rank)
    return base_params_b * (2 * rank) / LORA_REFERENCE_HIDDEN_SIZE


# ---------------------------------------------------------------------------
# Breakdown assembly
# ---------------------------------------------------------------------------


def assemble_breakdown(
    components: list[MemoryComponent],
    metadata: dict | None = None,
) -> MemoryBreakdown:
    """Sum *components* into the five buckets and build percentage rows.

    Rows keep the order of *components* and are never filtered, zero rows
    included.  When the total is zero every percentage is reported as 0.
    """
    buckets = {bucket: 0.0 for bucket in MemoryBucket}
    for component in components:
        buckets[component.bucket] += component.value_gb

    total = math.fsum(buckets.values())

    rows = tuple(
        BreakdownEntry(
            label=c.label,
            value_gb=c.value_gb,
            percentage=(c.value_gb / total * 100) if total > 0 else 0.0,
            bucket=c.bucket,
        )
        for c in components
    )

    return MemoryBreakdown(
        model_params=buckets[MemoryBucket.MODEL_PARAMS],
        gradients=buckets[MemoryBucket.GRADIENTS],
        optimizer=buckets[MemoryBucket.OPTIMIZER],
        activations=buckets[MemoryBucket.ACTIVATIONS],
        kv_cache=buckets[MemoryBucket.KV_CACHE],
        total=total,
        breakdown=rows,
        metadata=dict(metadata or {}),
    )


def standard_components(
    model_params: float,
    optimizer: float,
    gradients: float,
    activations: float,
    kv_cache: float,
) -> list[MemoryComponent]:
    """The five rows shared by the training, inference and fine-tuning modes."""
    return [
        MemoryComponent("Model Weights", model_params, MemoryBucket.MODEL_PARAMS),
        MemoryComponent("Optimizer States", optimizer, MemoryBucket.OPTIMIZER),
        MemoryComponent("Gradients", gradients, MemoryBucket.GRADIENTS),
        MemoryComponent("Activations", activations, MemoryBucket.ACTIVATIONS),
        MemoryComponent("KV Cache", kv_cache, MemoryBucket.KV_CACHE),
    ]


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


def format_memory_size(size_gb: float) -> str:
    if size_gb < 1:
        return f"{size_gb * 1024:.1f} MB"
    if size_gb < 1024:
        return f"{size_gb:.1f} GB"
    return f"{size_gb / 1024:.1f} TB"


def assess_memory_usage(required_gb: float, available_gb: float) -> MemoryUsageAssessment:
    """Classify how much of *available_gb* a workload needing *required_gb* uses."""
    if available_gb <= 0:
        raise InvalidConfiguration(f"Available memory must be > 0 (got {available_gb})")

    rate = required_gb / available_gb * 100
    if rate <= 70:
        return MemoryUsageAssessment(rate, "optimal", "Memory utilization is healthy")
    if rate <= 90:
        return MemoryUsageAssessment(rate, "warning", "Memory utilization is high, consider optimizing")
    return MemoryUsageAssessment(rate, "critical", "Not enough memory to run reliably")

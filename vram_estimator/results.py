"""Computed result value objects returned by calculators and the recommender."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from vram_estimator.catalog import GPU


class MemoryBucket(Enum):
    """The five top-level parts every breakdown row is accounted under."""

    MODEL_PARAMS = "model_params"
    GRADIENTS = "gradients"
    OPTIMIZER = "optimizer"
    ACTIVATIONS = "activations"
    KV_CACHE = "kv_cache"


@dataclass(frozen=True)
class MemoryComponent:
    """A named memory term produced by a calculator before assembly."""

    label: str
    value_gb: float
    bucket: MemoryBucket


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    value_gb: float
    percentage: float
    bucket: MemoryBucket


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class MemoryBreakdown:
    model_params: float
    gradients: float
    optimizer: float
    activations: float
    kv_cache: float
    total: float
    breakdown: tuple[BreakdownEntry, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view so a returned result cannot be edited in place
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    def to_dict(self) -> dict:
        data = {
            "model_params": self.model_params,
            "gradients": self.gradients,
            "optimizer": self.optimizer,
            "activations": self.activations,
            "kv_cache": self.kv_cache,
            "total": self.total,
        }
        data["breakdown"] = [
            {
                "label": entry.label,
                "value_gb": entry.value_gb,
                "percentage": entry.percentage,
                "bucket": entry.bucket.value,
            }
            for entry in self.breakdown
        ]
        data["metadata"] = _thaw(self.metadata)
        return data


@dataclass(frozen=True)
class MemoryUsageAssessment:
    utilization_rate: float  # percent of available memory
    status: str  # "optimal" | "warning" | "critical"
    message: str


@dataclass(frozen=True)
class GPURecommendation:
    gpu: GPU
    fit_score: float
    suitable: bool
    gpu_count: int  # units needed (1 when a single GPU fits or nothing fits)
    usable_vram_gb: float  # per unit
    utilization: float  # required / (usable * gpu_count)
    total_price_usd: float
    warnings: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    assessment: MemoryUsageAssessment | None = None

    def to_dict(self) -> dict:
        return {
            "gpu": self.gpu.model_dump(mode="json"),
            "fit_score": self.fit_score,
            "suitable": self.suitable,
            "gpu_count": self.gpu_count,
            "usable_vram_gb": self.usable_vram_gb,
            "utilization": self.utilization,
            "total_price_usd": self.total_price_usd,
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
            "memory_status": self.assessment.status if self.assessment else None,
        }


@dataclass(frozen=True)
class CostAnalysis:
    gpu_id: str
    provider: str
    hours: float
    hourly_rate: float
    costs: dict[str, float]
    total: float

"""Optimization advice for a computed breakdown, optionally against a target GPU.

Rules look at the workload config and the breakdown it produced and return
``Suggestion`` records ordered high priority first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from vram_estimator.catalog import GPU
from vram_estimator.precision import OptimizerType, PrecisionType
from vram_estimator.results import MemoryBreakdown
from vram_estimator.workloads import (
    CNNConfig,
    FineTuningConfig,
    FineTuningMethod,
    InferenceConfig,
    ModalityConfig,
    MoEConfig,
    MultimodalConfig,
    NLPConfig,
    WorkloadConfig,
)

logger = logging.getLogger(__name__)


class SuggestionKind(Enum):
    MEMORY = "memory"
    PERFORMANCE = "performance"
    COST = "cost"
    STABILITY = "stability"


class Priority(Enum):
    HIGH = 3
    MEDIUM = 2
    LOW = 1


# Percent of the target GPU's memory
CRITICAL_UTILIZATION = 95
HIGH_UTILIZATION = 85

LONG_SEQUENCE = 4096
HIGH_IMAGE_RESOLUTION = 512
MANY_ACTIVE_EXPERTS = 4
LARGE_CNN_BATCH = 256
MIN_CAPACITY_FACTOR = 1.0

# Totals above this need a data-center card
HIGH_END_GB = 40

# Activations above this share of the total are worth recomputing
ACTIVATION_SHARE = 0.5


@dataclass(frozen=True)
class Suggestion:
    kind: SuggestionKind
    priority: Priority
    title: str
    description: str
    impact: str
    steps: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "priority": self.priority.name.lower(),
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "steps": list(self.steps),
        }


def _memory(config: WorkloadConfig, breakdown: MemoryBreakdown, target: GPU | None) -> list[Suggestion]:
    suggestions = []

    if target is not None:
        utilization = breakdown.total / target.memory_gb * 100
        if utilization > CRITICAL_UTILIZATION:
            suggestions.append(
                Suggestion(
                    SuggestionKind.MEMORY,
                    Priority.HIGH,
                    "Not enough GPU memory",
                    f"Needs {breakdown.total:.1f} GB, more than the {target.memory_gb:.0f} GB of {target.name}",
                    "The workload will not run",
                    (
                        "Halve the batch size",
                        "Enable gradient checkpointing",
                        "Quantize the weights to INT4",
                        "Move to a GPU with more memory",
                    ),
                )
            )
        elif utilization > HIGH_UTILIZATION:
            suggestions.append(
                Suggestion(
                    SuggestionKind.MEMORY,
                    Priority.MEDIUM,
                    "Memory utilization is high",
                    f"{utilization:.1f}% of {target.name} is in use",
                    "Out-of-memory errors are likely on spikes",
                    (
                        "Reduce the batch size",
                        "Use gradient accumulation",
                        "Train in mixed precision",
                        "Offload optimizer state to CPU",
                    ),
                )
            )

    if getattr(config, "sequence_length", 0) > LONG_SEQUENCE:
        suggestions.append(
            Suggestion(
                SuggestionKind.MEMORY,
                Priority.MEDIUM,
                "Long sequences",
                f"{config.sequence_length} tokens per sample inflate activation memory",
                "Activations dominate memory",
                (
                    "Cut the sequence length to 2048 or 4096",
                    "Use sequence parallelism",
                    "Enable gradient checkpointing",
                ),
            )
        )

    if isinstance(config, (MultimodalConfig, ModalityConfig)) and config.image_resolution > HIGH_IMAGE_RESOLUTION:
        suggestions.append(
            Suggestion(
                SuggestionKind.MEMORY,
                Priority.MEDIUM,
                "High image resolution",
                f"{config.image_resolution}px images produce many patches per sample",
                "Image features dominate memory",
                (
                    "Lower the resolution to 336 or 448",
                    "Use a larger patch size",
                    "Cache image features",
                ),
            )
        )

    if isinstance(config, MoEConfig) and config.num_active_experts > MANY_ACTIVE_EXPERTS:
        suggestions.append(
            Suggestion(
                SuggestionKind.MEMORY,
                Priority.MEDIUM,
                "Many active experts",
                f"{config.num_active_experts} experts run for every token",
                "Expert activations dominate memory",
                (
                    "Route each token to 2-4 experts",
                    "Use expert parallelism",
                    "Offload idle experts",
                ),
            )
        )

    if isinstance(config, CNNConfig) and config.batch_size > LARGE_CNN_BATCH:
        suggestions.append(
            Suggestion(
                SuggestionKind.MEMORY,
                Priority.LOW,
                "Large batch",
                f"A batch of {config.batch_size} keeps many feature maps alive",
                "Feature maps dominate memory",
                (
                    "Recompute feature maps in the backward pass",
                    "Split the batch with data parallelism",
                ),
            )
        )

    if (
        getattr(config, "gradient_checkpointing", True) is False
        and breakdown.total > 0
        and breakdown.activations / breakdown.total > ACTIVATION_SHARE
    ):
        suggestions.append(
            Suggestion(
                SuggestionKind.MEMORY,
                Priority.MEDIUM,
                "Enable gradient checkpointing",
                f"Activations are {breakdown.activations / breakdown.total:.0%} of the total",
                "Activation memory drops to about a third",
                ("Set gradient_checkpointing", "Expect roughly 30% slower steps"),
            )
        )

    return suggestions


def _performance(config: WorkloadConfig) -> list[Suggestion]:
    suggestions = []

    if getattr(config, "optimizer", None) is OptimizerType.SGD:
        suggestions.append(
            Suggestion(
                SuggestionKind.PERFORMANCE,
                Priority.LOW,
                "Optimizer choice",
                "AdamW usually converges faster on large models",
                "Faster convergence for two extra FP32 moments",
                ("Switch to AdamW", "Lower the learning rate", "Add warmup steps"),
            )
        )

    trains = not isinstance(config, InferenceConfig) and getattr(config, "phase", "training") != "inference"
    if trains and config.precision is PrecisionType.FP32:
        suggestions.append(
            Suggestion(
                SuggestionKind.PERFORMANCE,
                Priority.MEDIUM,
                "Train in mixed precision",
                "FP32 weights and activations double memory and slow every step",
                "Roughly half the weight and activation memory",
                ("Enable automatic mixed precision", "Prefer BF16 on Ampere or newer"),
            )
        )

    return suggestions


def _cost(config: WorkloadConfig, breakdown: MemoryBreakdown) -> list[Suggestion]:
    suggestions = []

    if breakdown.total > HIGH_END_GB:
        suggestions.append(
            Suggestion(
                SuggestionKind.COST,
                Priority.MEDIUM,
                "Needs a high-end GPU",
                f"{breakdown.total:.1f} GB is beyond consumer cards",
                "Lower hardware cost",
                (
                    "Use QLoRA to quantize the base model",
                    "Offload to CPU",
                    "Split the model across several GPUs",
                    "Rent cloud GPUs by the hour",
                ),
            )
        )

    full = (isinstance(config, FineTuningConfig) and config.method is FineTuningMethod.FULL) or (
        isinstance(config, NLPConfig) and not config.lora_target_modules
    )
    if full:
        suggestions.append(
            Suggestion(
                SuggestionKind.COST,
                Priority.HIGH,
                "Use parameter-efficient fine-tuning",
                "Every weight carries gradients and optimizer state",
                "Cuts gradient and optimizer memory by orders of magnitude",
                (
                    "Fine-tune with LoRA instead",
                    "Use a LoRA rank of 16-32",
                    "Adapt only the attention projections",
                    "Quantize the frozen base",
                ),
            )
        )

    return suggestions


def _stability(config: WorkloadConfig) -> list[Suggestion]:
    if isinstance(config, MoEConfig) and config.expert_capacity_factor < MIN_CAPACITY_FACTOR:
        return [
            Suggestion(
                SuggestionKind.STABILITY,
                Priority.MEDIUM,
                "Expert capacity below 1.0",
                "Tokens routed past an expert's capacity are dropped",
                "Uneven expert load and noisier training",
                (
                    "Raise expert_capacity_factor to 1.0-1.25",
                    "Add a load-balancing loss",
                    "Monitor the routing distribution",
                ),
            )
        ]
    return []


def advise(
    config: WorkloadConfig,
    breakdown: MemoryBreakdown,
    target_gpu: GPU | None = None,
) -> list[Suggestion]:
    """Suggestions for *config* and its *breakdown*, highest priority first."""
    suggestions = [
        *_memory(config, breakdown, target_gpu),
        *_performance(config),
        *_cost(config, breakdown),
        *_stability(config),
    ]
    suggestions.sort(key=lambda s: -s.priority.value)
    logger.debug("%d suggestions for %s", len(suggestions), config.kind)
    return suggestions

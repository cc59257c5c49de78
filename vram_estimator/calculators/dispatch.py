"""Select the calculator for a workload config by its type."""

from __future__ import annotations

from collections.abc import Callable

from vram_estimator.calculators.advanced import (
    calculate_cnn,
    calculate_moe,
    calculate_multimodal,
    calculate_nlp,
)
from vram_estimator.calculators.modality import calculate_modality
from vram_estimator.calculators.modes import (
    calculate_fine_tuning,
    calculate_grpo,
    calculate_inference,
    calculate_training,
)
from vram_estimator.errors import UnsupportedModelType
from vram_estimator.results import MemoryBreakdown
from vram_estimator.workloads import (
    WORKLOAD_TYPES,
    CNNConfig,
    FineTuningConfig,
    GRPOConfig,
    InferenceConfig,
    MoEConfig,
    ModalityConfig,
    MultimodalConfig,
    NLPConfig,
    TrainingConfig,
    WorkloadConfig,
)

CALCULATORS: dict[type, Callable[..., MemoryBreakdown]] = {
    TrainingConfig: calculate_training,
    InferenceConfig: calculate_inference,
    FineTuningConfig: calculate_fine_tuning,
    GRPOConfig: calculate_grpo,
    ModalityConfig: calculate_modality,
    NLPConfig: calculate_nlp,
    MultimodalConfig: calculate_multimodal,
    MoEConfig: calculate_moe,
    CNNConfig: calculate_cnn,
}

_missing = set(WORKLOAD_TYPES) - set(CALCULATORS)
if _missing:
    raise RuntimeError(f"No calculator registered for {sorted(t.__name__ for t in _missing)}")

# Request "mode" tags and the advanced "modelType" tags, mapped to config types
MODE_TYPES: dict[str, type] = {
    "training": TrainingConfig,
    "inference": InferenceConfig,
    "finetuning": FineTuningConfig,
    "grpo": GRPOConfig,
    "modality": ModalityConfig,
}

ADVANCED_MODEL_TYPES: dict[str, type] = {
    "nlp": NLPConfig,
    "multimodal": MultimodalConfig,
    "moe": MoEConfig,
    "cnn": CNNConfig,
}


def calculate(config: WorkloadConfig) -> MemoryBreakdown:
    """Run the calculator registered for *config*'s type."""
    try:
        calculator = CALCULATORS[type(config)]
    except KeyError:
        raise UnsupportedModelType(type(config).__name__) from None
    return calculator(config)


def config_type_for(mode: str, model_type: str | None = None) -> type:
    """Resolve request tags to a workload config type.

    ``mode="advanced"`` requires *model_type*; the advanced types are also
    accepted directly as *mode*.
    """
    key = str(mode).lower()
    if key == "advanced":
        if model_type is None:
            raise UnsupportedModelType("advanced (modelType missing)")
        key = str(model_type).lower()
        if key not in ADVANCED_MODEL_TYPES:
            raise UnsupportedModelType(model_type)
        return ADVANCED_MODEL_TYPES[key]

    if key in MODE_TYPES:
        return MODE_TYPES[key]
    if key in ADVANCED_MODEL_TYPES:
        return ADVANCED_MODEL_TYPES[key]
    raise UnsupportedModelType(mode)

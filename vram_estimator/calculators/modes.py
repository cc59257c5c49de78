"""Training, inference, fine-tuning and GRPO memory calculators.

Each calculator takes one validated workload config and returns a
``MemoryBreakdown`` with the five standard rows, zero rows included.
"""

from __future__ import annotations

import logging

from vram_estimator.errors import UnsupportedMethod
from vram_estimator.formulas import (
    activation_memory_gb,
    assemble_breakdown,
    kv_cache_memory_gb,
    lora_param_count,
    params_to_gb,
    standard_components,
)
from vram_estimator.precision import (
    OPTIMIZER_STATE_PRECISION,
    bytes_per_parameter,
    optimizer_moments,
    quantization_ratio,
)
from vram_estimator.results import MemoryBreakdown
from vram_estimator.workloads import (
    FineTuningConfig,
    FineTuningMethod,
    GRPOConfig,
    InferenceConfig,
    TrainingConfig,
)

logger = logging.getLogger(__name__)

# Fraction of activation memory kept when recomputing in the backward pass
CHECKPOINTING_FACTOR = 0.3

# Inference keeps roughly a tenth of the training activations alive
INFERENCE_ACTIVATION_FACTOR = 0.1

# Fixed activation heuristics for fine-tuning, in GB
FINE_TUNING_ACTIVATIONS_GB: dict[FineTuningMethod, float] = {
    FineTuningMethod.FULL: 2.0,
    FineTuningMethod.LORA: 1.0,
    FineTuningMethod.QLORA: 0.8,
    FineTuningMethod.PREFIX: 1.4,
}

# Prefix tuning and GRPO's PEFT adapters train about 1% of the weights
PEFT_TRAINABLE_FRACTION = 0.01

# Adam moments kept per adapter weight, always in FP32
ADAPTER_OPTIMIZER_MOMENTS = 2


def _optimizer_gb(trainable_params_b: float, optimizer) -> float:
    fp32 = bytes_per_parameter(OPTIMIZER_STATE_PRECISION)
    return params_to_gb(trainable_params_b, fp32 * optimizer_moments(optimizer))


def calculate_training(config: TrainingConfig) -> MemoryBreakdown:
    bpp = bytes_per_parameter(config.precision)
    model_gb = params_to_gb(config.model_params, bpp)

    activations = activation_memory_gb(
        config.batch_size,
        config.sequence_length,
        config.hidden_size,
        config.num_layers,
        config.precision,
    )
    if config.gradient_checkpointing:
        activations *= CHECKPOINTING_FACTOR

    components = standard_components(
        model_params=model_gb,
        optimizer=_optimizer_gb(config.model_params, config.optimizer),
        gradients=model_gb,
        activations=activations,
        kv_cache=0.0,
    )
    return assemble_breakdown(
        components,
        {
            "mode": "training",
            "optimizer": config.optimizer.value,
            "gradient_checkpointing": config.gradient_checkpointing,
        },
    )


def calculate_inference(config: InferenceConfig) -> MemoryBreakdown:
    bpp = bytes_per_parameter(config.precision)
    model_gb = params_to_gb(config.model_params, bpp) * quantization_ratio(config.quantization)

    kv_cache = (
        kv_cache_memory_gb(
            config.batch_size,
            config.sequence_length,
            config.hidden_size,
            config.num_layers,
            config.num_heads,
            config.precision,
        )
        * config.kv_cache_ratio
    )
    activations = (
        activation_memory_gb(
            config.batch_size,
            config.sequence_length,
            config.hidden_size,
            config.num_layers,
            config.precision,
        )
        * INFERENCE_ACTIVATION_FACTOR
    )

    components = standard_components(
        model_params=model_gb,
        optimizer=0.0,
        gradients=0.0,
        activations=activations,
        kv_cache=kv_cache,
    )
    return assemble_breakdown(
        components,
        {"mode": "inference", "quantization": config.quantization.value},
    )


def calculate_fine_tuning(config: FineTuningConfig) -> MemoryBreakdown:
    """Memory for Full, LoRA, QLoRA and Prefix fine-tuning.

    Full fine-tuning trains every weight with FP32 optimizer moments.  The
    adapter methods freeze the base model and train a small set of extra
    parameters whose gradients are held at working precision and whose two
    Adam moments are held in FP32.  QLoRA additionally quantizes the frozen
    base.
    """
    method = config.method
    bpp = bytes_per_parameter(config.precision)
    base_gb = params_to_gb(config.model_params, bpp)

    if method is FineTuningMethod.FULL:
        trainable_b = config.model_params
        model_gb = base_gb
        gradients = base_gb
        optimizer = _optimizer_gb(trainable_b, config.optimizer)
    elif method in (FineTuningMethod.LORA, FineTuningMethod.QLORA, FineTuningMethod.PREFIX):
        if method is FineTuningMethod.PREFIX:
            trainable_b = config.model_params * PEFT_TRAINABLE_FRACTION
        else:
            trainable_b = lora_param_count(config.model_params, config.lora_rank)

        model_gb = base_gb
        if method is FineTuningMethod.QLORA:
            model_gb *= quantization_ratio(config.quantization)

        gradients = params_to_gb(trainable_b, bpp)
        fp32 = bytes_per_parameter(OPTIMIZER_STATE_PRECISION)
        optimizer = params_to_gb(trainable_b, fp32 * ADAPTER_OPTIMIZER_MOMENTS)
    else:
        raise UnsupportedMethod(method)

    components = standard_components(
        model_params=model_gb,
        optimizer=optimizer,
        gradients=gradients,
        activations=FINE_TUNING_ACTIVATIONS_GB[method],
        kv_cache=0.0,
    )

    trainable_ratio = trainable_b / config.model_params if config.model_params > 0 else 0.0
    logger.debug(
        "%s fine-tuning: %.4fB of %.2fB params trainable", method.value, trainable_b, config.model_params
    )
    metadata = {
        "mode": "finetuning",
        "method": method.value,
        "trainable_params_b": trainable_b,
        "total_params_b": config.model_params,
        "trainable_ratio": trainable_ratio,
    }
    if method in (FineTuningMethod.LORA, FineTuningMethod.QLORA):
        # alpha only rescales the adapter update; it does not change memory
        metadata["lora_rank"] = config.lora_rank
        metadata["lora_alpha"] = config.lora_alpha
        metadata["lora_scaling"] = config.lora_alpha / config.lora_rank
    return assemble_breakdown(components, metadata)


def calculate_grpo(config: GRPOConfig) -> MemoryBreakdown:
    """GRPO over a quantized base with PEFT adapters.

    Every prompt is expanded into ``num_generations`` completions that are
    scored together, so activations scale with the group size.
    """
    bpp = bytes_per_parameter(config.precision)
    model_gb = params_to_gb(config.model_params, bpp) * quantization_ratio(config.quantization)

    trainable_b = config.model_params * PEFT_TRAINABLE_FRACTION
    fp32 = bytes_per_parameter(OPTIMIZER_STATE_PRECISION)
    # 8-bit optimizers pack both Adam moments into one FP32-sized buffer
    moments = 1 if config.use_8bit_optimizer else 2
    optimizer = params_to_gb(trainable_b, fp32 * moments)
    gradients = params_to_gb(trainable_b, bpp)

    sft_activations = activation_memory_gb(
        config.batch_size,
        config.sequence_length,
        config.hidden_size,
        config.num_layers,
        config.precision,
    )
    multiplier = config.num_generations * (
        CHECKPOINTING_FACTOR if config.gradient_checkpointing else 1.0
    )

    components = standard_components(
        model_params=model_gb,
        optimizer=optimizer,
        gradients=gradients,
        activations=sft_activations * multiplier,
        kv_cache=0.0,
    )
    return assemble_breakdown(
        components,
        {
            "mode": "grpo",
            "group_size": config.num_generations,
            "sft_activations_gb": sft_activations,
            "activation_multiplier": multiplier,
            "trainable_params_b": trainable_b,
            "total_params_b": config.model_params,
        },
    )

"""Architecture-specific calculators: NLP, multimodal, mixture-of-experts, CNN.

These break memory into finer named components than the mode calculators
(embedding layers, routers, feature maps, ...).  Every component is
accounted under one of the five breakdown buckets so downstream consumers
see the same ``MemoryBreakdown`` shape whatever the architecture.
Each result carries its ``optimization_suggestions`` in its metadata.
"""

from __future__ import annotations

from vram_estimator.formulas import assemble_breakdown, bytes_to_gb
from vram_estimator.precision import (
    OPTIMIZER_STATE_PRECISION,
    QuantizationType,
    bytes_per_parameter,
    optimizer_moments,
    quantization_ratio,
)
from vram_estimator.results import MemoryBreakdown, MemoryBucket, MemoryComponent
from vram_estimator.workloads import CNNConfig, MoEConfig, MultimodalConfig, NLPConfig

PARAMS, GRADS, OPTIM, ACTS, KV = (
    MemoryBucket.MODEL_PARAMS,
    MemoryBucket.GRADIENTS,
    MemoryBucket.OPTIMIZER,
    MemoryBucket.ACTIVATIONS,
    MemoryBucket.KV_CACHE,
)

# Stored activations per token per layer, in units of hidden size, counting
# the forward and backward pass.
NLP_ACTIVATION_MULTIPLIER = 6

IMAGE_CHANNELS = 3


def _training_state(trainable_params: float, precision, optimizer) -> list[MemoryComponent]:
    """Gradients at working precision plus FP32 optimizer moments.

    *trainable_params* is a raw count, not billions.
    """
    bpp = bytes_per_parameter(precision)
    fp32 = bytes_per_parameter(OPTIMIZER_STATE_PRECISION)
    return [
        MemoryComponent(
            "Optimizer States",
            bytes_to_gb(trainable_params * fp32 * optimizer_moments(optimizer)),
            OPTIM,
        ),
        MemoryComponent("Gradients", bytes_to_gb(trainable_params * bpp), GRADS),
    ]


# ---------------------------------------------------------------------------
# NLP transformer
# ---------------------------------------------------------------------------

_LORA_MODULE_DIMS = {
    "q_proj": ("hidden", "hidden"),
    "k_proj": ("hidden", "hidden"),
    "v_proj": ("hidden", "hidden"),
    "o_proj": ("hidden", "hidden"),
    "gate_proj": ("hidden", "intermediate"),
    "up_proj": ("hidden", "intermediate"),
    "down_proj": ("intermediate", "hidden"),
}

# Position encodings with learned weights; rope and alibi are computed
_LEARNED_POSITION_ENCODINGS = {"absolute", "relative"}


def nlp_lora_params(config: NLPConfig) -> int:
    """Adapter parameters: ``r · (d_in + d_out)`` per target module per layer."""
    dims = {"hidden": config.hidden_size, "intermediate": config.intermediate_size}
    per_layer = 0
    for module in config.lora_target_modules:
        d_in, d_out = _LORA_MODULE_DIMS[module]
        per_layer += config.lora_rank * (dims[d_in] + dims[d_out])
    return per_layer * config.num_layers


def calculate_nlp(config: NLPConfig) -> MemoryBreakdown:
    h, n_layers = config.hidden_size, config.num_layers
    bpp = bytes_per_parameter(config.precision)
    b, s = config.batch_size, config.sequence_length
    max_len = config.max_generation_length or s

    embedding = config.vocab_size * h
    attention = n_layers * 4 * h * h
    ffn = n_layers * 2 * h * config.intermediate_size
    counted = embedding + attention + ffn
    # The nominal size wins when it exceeds what the shape accounts for
    total_params = max(counted, config.model_params * 1e9)
    remaining = total_params - counted

    lora_params = nlp_lora_params(config)
    full_fine_tuning = not config.lora_target_modules
    trainable = total_params if full_fine_tuning else lora_params
    # Only a frozen base can be stored quantized
    q_ratio = 1.0 if full_fine_tuning else quantization_ratio(config.quantization)
    base_bytes = bpp * q_ratio

    position = max_len * h if config.position_encoding in _LEARNED_POSITION_ENCODINGS else 0

    components = [
        MemoryComponent("Embedding Layer", bytes_to_gb(embedding * base_bytes), PARAMS),
        MemoryComponent("Attention Layers", bytes_to_gb(attention * base_bytes), PARAMS),
        MemoryComponent("FFN Layers", bytes_to_gb(ffn * base_bytes), PARAMS),
        MemoryComponent("Other Weights", bytes_to_gb(remaining * base_bytes), PARAMS),
        MemoryComponent("LoRA Adapters", bytes_to_gb(lora_params * bpp), PARAMS),
        MemoryComponent("Position Encoding", bytes_to_gb(position * bpp), PARAMS),
        *_training_state(trainable, config.precision, config.optimizer),
        MemoryComponent(
            "Activations",
            bytes_to_gb(b * s * h * n_layers * NLP_ACTIVATION_MULTIPLIER * bpp),
            ACTS,
        ),
        MemoryComponent(
            "Attention Scores",
            bytes_to_gb(b * config.num_heads * s * s * n_layers * bpp),
            ACTS,
        ),
        MemoryComponent("KV Cache", bytes_to_gb(2 * b * max_len * h * n_layers * bpp), KV),
    ]

    suggestions = nlp_suggestions(config, sum(c.value_gb for c in components))
    return assemble_breakdown(
        components,
        {
            "model_type": "nlp",
            "total_params": total_params,
            "trainable_params": trainable,
            "lora_params": lora_params,
            "optimization_suggestions": suggestions,
        },
    )


def nlp_suggestions(config: NLPConfig, total_gb: float) -> list[str]:
    suggestions = []
    if total_gb > 40 and config.quantization is QuantizationType.NONE:
        suggestions.append("Use QLoRA: quantize the frozen base model to 4 bits")
    if config.batch_size > 8:
        suggestions.append("Reduce batch size and compensate with gradient accumulation")
    if config.sequence_length > 4096:
        suggestions.append("Reduce sequence length; attention scores grow quadratically with it")
    if config.lora_rank > 64:
        suggestions.append("Lower the LoRA rank; ranks above 64 rarely improve quality")
    return suggestions


# ---------------------------------------------------------------------------
# Multimodal (vision encoder + text encoder + fusion)
# ---------------------------------------------------------------------------

ENCODER_LAYERS = 12
TEXT_VOCAB_SIZE = 50000
# Share of the nominal model size assumed for each encoder
VISION_SHARE = 0.3
TEXT_SHARE = 0.5


def _encoder_trainable(params: float, adapter: float, frozen: bool, lora: bool) -> float:
    if lora:
        return adapter
    if frozen:
        return 0.0
    return params


def calculate_multimodal(config: MultimodalConfig) -> MemoryBreakdown:
    bpp = bytes_per_parameter(config.precision)
    b, s, r = config.batch_size, config.sequence_length, config.lora_rank
    d_vision, d_text = config.vision_feature_dim, config.text_feature_dim
    d_fusion = max(d_vision, d_text)
    num_patches = (config.image_resolution // config.patch_size) ** 2
    nominal = config.model_params * 1e9

    patch_embedding = config.patch_size**2 * IMAGE_CHANNELS * d_vision
    vision = max(patch_embedding + ENCODER_LAYERS * 4 * d_vision**2, nominal * VISION_SHARE)
    text = max(TEXT_VOCAB_SIZE * d_text + ENCODER_LAYERS * 4 * d_text**2, nominal * TEXT_SHARE)
    fusion = d_vision * d_fusion * 4 + d_text * d_fusion * 4 + d_fusion * d_fusion * 4

    # Adapters on the four attention projections of every encoder layer
    vision_adapter = ENCODER_LAYERS * 4 * r * 2 * d_vision if config.lora_vision_encoder else 0
    text_adapter = ENCODER_LAYERS * 4 * r * 2 * d_text if config.lora_text_encoder else 0
    fusion_adapter = 4 * r * 2 * d_fusion if config.lora_fusion_layer else 0
    adapters = vision_adapter + text_adapter + fusion_adapter

    trainable = (
        _encoder_trainable(vision, vision_adapter, config.freeze_vision_encoder, config.lora_vision_encoder)
        + _encoder_trainable(text, text_adapter, config.freeze_text_encoder, config.lora_text_encoder)
        + _encoder_trainable(fusion, fusion_adapter, False, config.lora_fusion_layer)
    )

    alignment = config.cross_modal_alignment_weight * b * (num_patches + s) * d_fusion
    contrastive = config.image_text_contrast_weight * (b * b + 2 * b * d_fusion)

    components = [
        MemoryComponent("Vision Encoder", bytes_to_gb(vision * bpp), PARAMS),
        MemoryComponent("Text Encoder", bytes_to_gb(text * bpp), PARAMS),
        MemoryComponent("Fusion Layer", bytes_to_gb(fusion * bpp), PARAMS),
        MemoryComponent("LoRA Adapters", bytes_to_gb(adapters * bpp), PARAMS),
        *_training_state(trainable, config.precision, config.optimizer),
        MemoryComponent("Image Features", bytes_to_gb(b * num_patches * d_vision * bpp), ACTS),
        MemoryComponent("Text Features", bytes_to_gb(b * s * d_text * bpp), ACTS),
        MemoryComponent(
            "Cross-Modal Attention",
            bytes_to_gb(b * config.num_heads * s * num_patches * bpp),
            ACTS,
        ),
        MemoryComponent(
            "Image Preprocessing",
            bytes_to_gb(b * config.image_resolution**2 * IMAGE_CHANNELS * bpp * 2),
            ACTS,
        ),
        MemoryComponent("Modal Alignment", bytes_to_gb(alignment * bpp), ACTS),
        MemoryComponent("Contrastive Learning", bytes_to_gb(contrastive * bpp), ACTS),
    ]

    return assemble_breakdown(
        components,
        {
            "model_type": "multimodal",
            "num_patches": num_patches,
            "trainable_params": trainable,
            "optimization_suggestions": multimodal_suggestions(config),
        },
    )


def multimodal_suggestions(config: MultimodalConfig) -> list[str]:
    suggestions = []
    if config.image_resolution > 512:
        suggestions.append("Reduce image resolution; patch count grows with its square")
    if config.batch_size > 16:
        suggestions.append("Use a smaller batch with gradient accumulation")
    vision_trained = not (config.freeze_vision_encoder or config.lora_vision_encoder)
    text_trained = not (config.freeze_text_encoder or config.lora_text_encoder)
    if vision_trained and text_trained:
        suggestions.append("Freeze or LoRA-adapt at least one encoder")
    return suggestions


# ---------------------------------------------------------------------------
# Mixture of experts
# ---------------------------------------------------------------------------

# Bytes per routing index and per load-balance counter
ROUTING_INDEX_BYTES = 4


def moe_param_split(config: MoEConfig) -> tuple[float, float]:
    """Return ``(shared_params, params_per_expert)`` as raw counts.

    Attention weights (``4·h²`` per layer) are shared by every token; the
    rest of the nominal size is split evenly across the experts.
    """
    total = config.model_params * 1e9
    shared = min(total, config.num_layers * 4 * config.hidden_size**2)
    return shared, (total - shared) / config.num_experts


def calculate_moe(config: MoEConfig) -> MemoryBreakdown:
    """All experts are stored, only the top-K are trained and activated.

    The dispatch buffer holds ``capacity_factor · tokens · K`` hidden vectors
    per layer for the token-to-expert all-to-all.
    """
    bpp = bytes_per_parameter(config.precision)
    stored_bytes = bpp * quantization_ratio(config.quantization)
    b, s, h, n_layers = config.batch_size, config.sequence_length, config.hidden_size, config.num_layers
    e, k = config.num_experts, config.num_active_experts
    tokens = b * s

    shared, per_expert = moe_param_split(config)
    router = h * e * n_layers
    active = shared + k * per_expert + router

    attention_acts = (tokens * h * 3 + b * s * s) * n_layers
    expert_acts = tokens * h * 8 * k * n_layers

    components = [
        MemoryComponent("Shared Weights", bytes_to_gb(shared * stored_bytes), PARAMS),
        MemoryComponent("Expert Weights", bytes_to_gb(per_expert * e * stored_bytes), PARAMS),
        MemoryComponent("Router", bytes_to_gb(router * bpp), PARAMS),
        *_training_state(active, config.precision, config.optimizer),
        MemoryComponent("Attention Activations", bytes_to_gb(attention_acts * bpp), ACTS),
        MemoryComponent("Expert Activations", bytes_to_gb(expert_acts * bpp), ACTS),
        MemoryComponent(
            "Token Dispatch Buffer",
            bytes_to_gb(config.expert_capacity_factor * tokens * k * h * n_layers * bpp),
            ACTS,
        ),
        MemoryComponent("Routing Probabilities", bytes_to_gb(tokens * e * n_layers * bpp), ACTS),
        MemoryComponent(
            "Expert Assignments", bytes_to_gb(tokens * k * n_layers * ROUTING_INDEX_BYTES), ACTS
        ),
        MemoryComponent("Load Balance Statistics", bytes_to_gb(e * n_layers * ROUTING_INDEX_BYTES), ACTS),
    ]

    total = sum(c.value_gb for c in components)
    return assemble_breakdown(
        components,
        {
            "model_type": "moe",
            "total_params_b": config.model_params,
            "active_params_b": active / 1e9,
            "params_per_expert_b": per_expert / 1e9,
            "optimization_suggestions": moe_suggestions(config, total),
        },
    )


def moe_suggestions(config: MoEConfig, total_gb: float) -> list[str]:
    suggestions = []
    if config.num_active_experts > 4:
        suggestions.append("Route each token to fewer experts (lower top-K)")
    if config.expert_capacity_factor > 1.5:
        suggestions.append("Lower the expert capacity factor to shrink dispatch buffers")
    if config.num_experts > 64 or total_gb > 80:
        suggestions.append("Shard experts across GPUs with expert parallelism")
    return suggestions


# ---------------------------------------------------------------------------
# CNN
# ---------------------------------------------------------------------------

NUM_STAGES = 5
MAX_CHANNELS = 2048
CONV_SHARE = 0.8
FC_SHARE = 0.2
# gamma, beta, running mean, running variance
BATCH_NORM_TENSORS = 4


def cnn_layer_schedule(config: CNNConfig) -> list[tuple[int, int]]:
    """Per-layer ``(resolution, channels)`` over ``NUM_STAGES`` stages.

    A stride-2 stem halves the input, then each stage halves resolution and
    doubles channels (capped at ``MAX_CHANNELS``).
    """
    per_stage = max(1, -(-config.num_layers // NUM_STAGES))
    schedule = []
    for layer in range(config.num_layers):
        stage = layer // per_stage
        resolution = max(1, config.input_image_size // (2 ** (stage + 1)))
        channels = min(MAX_CHANNELS, config.base_channels * 2**stage)
        schedule.append((resolution, channels))
    return schedule


def calculate_cnn(config: CNNConfig) -> MemoryBreakdown:
    bpp = bytes_per_parameter(config.precision)
    b, size = config.batch_size, config.input_image_size
    nominal = config.model_params * 1e9
    schedule = cnn_layer_schedule(config)

    conv = nominal * CONV_SHARE
    fc = nominal * FC_SHARE
    batch_norm = sum(BATCH_NORM_TENSORS * channels for _, channels in schedule)

    frozen_conv = conv * config.frozen_layers / config.num_layers
    trainable = conv - frozen_conv + fc
    if not config.freeze_batch_norm:
        # Running statistics are buffers; only gamma and beta train
        trainable += batch_norm / 2

    feature_maps = size * size * IMAGE_CHANNELS + sum(r * r * c for r, c in schedule)
    # im2col unfolds the largest feature map into k² columns
    workspace = max(r * r * c for r, c in schedule) * config.kernel_size**2
    augmentation = size * size * IMAGE_CHANNELS * 2 if config.data_augmentation else 0

    components = [
        MemoryComponent("Convolution Layers", bytes_to_gb(conv * bpp), PARAMS),
        MemoryComponent("Fully Connected Layers", bytes_to_gb(fc * bpp), PARAMS),
        MemoryComponent("Batch Normalization", bytes_to_gb(batch_norm * bpp), PARAMS),
        *_training_state(trainable, config.precision, config.optimizer),
        MemoryComponent("Feature Maps", bytes_to_gb(b * feature_maps * bpp), ACTS),
        MemoryComponent("Convolution Workspace", bytes_to_gb(b * workspace * bpp), ACTS),
        MemoryComponent("Data Augmentation", bytes_to_gb(b * augmentation * bpp), ACTS),
    ]

    return assemble_breakdown(
        components,
        {
            "model_type": "cnn",
            "trainable_params": trainable,
            "final_resolution": schedule[-1][0],
            "optimization_suggestions": cnn_suggestions(config),
        },
    )


def cnn_suggestions(config: CNNConfig) -> list[str]:
    suggestions = []
    if config.input_image_size > 384:
        suggestions.append("Reduce input image size; feature maps grow with its square")
    if config.batch_size > 128:
        suggestions.append("Reduce batch size; feature maps dominate CNN memory")
    if config.frozen_layers < min(10, config.num_layers):
        suggestions.append("Freeze more early convolution layers")
    return suggestions

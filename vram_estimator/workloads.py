"""Validated workload configurations.

One pydantic model per calculation variant.  Each carries a literal ``kind``
tag and is frozen, so a config can be handed to a worker thread and back
without anything mutating it.  Payload keys may be camelCase (as the JSON
boundary sends them) or snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from vram_estimator.errors import UnsupportedMethod
from vram_estimator.precision import (
    DEFAULT_PRECISION,
    OptimizerType,
    PrecisionType,
    QuantizationType,
    parse_precision,
    parse_quantization,
)

# Architecture defaults used when a request gives neither explicit fields nor
# a catalog model id (a Llama-7B-shaped transformer).
DEFAULT_HIDDEN_SIZE = 4096
DEFAULT_NUM_LAYERS = 32
DEFAULT_NUM_HEADS = 32


class FineTuningMethod(Enum):
    FULL = "Full"
    LORA = "LoRA"
    QLORA = "QLoRA"
    PREFIX = "Prefix"


class Modality(Enum):
    """Input streams a multimodal model consumes alongside (or instead of) text."""

    TEXT_IMAGE = "text-image"
    TEXT_AUDIO = "text-audio"
    TEXT_VIDEO = "text-video"
    AUDIO_VIDEO = "audio-video"
    TEXT_AUDIO_VIDEO = "text-audio-video"

    def has(self, stream: str) -> bool:
        return stream in self.value.split("-")


ModalityPhase = Literal["training", "finetuning", "inference"]
LoRATargetModule = Literal["q_proj", "k_proj", "v_proj", "o_proj", "gate_proj", "up_proj", "down_proj"]
PositionEncoding = Literal["rope", "absolute", "relative", "alibi"]


class _Workload(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        allow_inf_nan=False,
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    precision: PrecisionType = Field(
        DEFAULT_PRECISION, description="Working precision of weights and activations"
    )

    @field_validator("precision", mode="before")
    @classmethod
    def validate_precision(cls, value):
        return parse_precision(value)


class _TransformerShape(_Workload):
    """Fields shared by the transformer-based variants."""

    model_params: float = Field(ge=0, description="Parameter count in billions")
    hidden_size: int = Field(DEFAULT_HIDDEN_SIZE, ge=0)
    num_layers: int = Field(DEFAULT_NUM_LAYERS, ge=0)
    num_heads: int = Field(DEFAULT_NUM_HEADS, ge=0)


def _parse_optimizer(value):
    # Lookup errors surface as ValueError so pydantic reports them per field
    if isinstance(value, OptimizerType):
        return value
    return OptimizerType(value)


# ---------------------------------------------------------------------------
# Mode workloads
# ---------------------------------------------------------------------------


class TrainingConfig(_TransformerShape):
    kind: Literal["training"] = "training"
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    optimizer: OptimizerType = OptimizerType.ADAMW
    gradient_checkpointing: bool = False

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)


class InferenceConfig(_TransformerShape):
    kind: Literal["inference"] = "inference"
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    quantization: QuantizationType = QuantizationType.NONE
    kv_cache_ratio: float = Field(1.0, ge=0, le=1, description="Fraction of the KV cache retained")

    @field_validator("quantization", mode="before")
    @classmethod
    def validate_quantization(cls, value):
        return parse_quantization(value)


class FineTuningConfig(_TransformerShape):
    kind: Literal["finetuning"] = "finetuning"
    method: FineTuningMethod = FineTuningMethod.LORA
    lora_rank: int = Field(16, gt=0)
    lora_alpha: int = Field(32, gt=0)
    quantization: QuantizationType = QuantizationType.NONE
    optimizer: OptimizerType = OptimizerType.ADAMW

    @field_validator("method", mode="before")
    @classmethod
    def validate_method(cls, value):
        if isinstance(value, FineTuningMethod):
            return value
        for method in FineTuningMethod:
            if isinstance(value, str) and method.value.lower() == value.lower():
                return method
        raise UnsupportedMethod(value)

    @field_validator("quantization", mode="before")
    @classmethod
    def validate_quantization(cls, value):
        return parse_quantization(value)

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)

    @model_validator(mode="before")
    @classmethod
    def default_qlora_quantization(cls, data):
        # QLoRA without an explicit quantization means the usual 4-bit base
        if isinstance(data, dict) and "quantization" not in data:
            method = data.get("method")
            if method is FineTuningMethod.QLORA or str(method).lower() == "qlora":
                return {**data, "quantization": QuantizationType.INT4}
        return data

    @model_validator(mode="after")
    def check_qlora_quantized(self):
        if self.method is FineTuningMethod.QLORA and self.quantization is QuantizationType.NONE:
            raise ValueError("QLoRA requires a quantized base model (quantization must not be None)")
        return self


class GRPOConfig(_TransformerShape):
    """Group relative policy optimization over a PEFT-adapted, quantized base."""

    kind: Literal["grpo"] = "grpo"
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    num_generations: int = Field(4, ge=1, description="Completions sampled per prompt (group size)")
    quantization: QuantizationType = QuantizationType.INT4
    use_8bit_optimizer: bool = False
    gradient_checkpointing: bool = False

    @field_validator("quantization", mode="before")
    @classmethod
    def validate_quantization(cls, value):
        return parse_quantization(value)


# ---------------------------------------------------------------------------
# Advanced architecture workloads
# ---------------------------------------------------------------------------


class NLPConfig(_TransformerShape):
    kind: Literal["nlp"] = "nlp"
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    vocab_size: int = Field(32000, ge=0)
    intermediate_size: int = Field(11008, ge=0)
    optimizer: OptimizerType = OptimizerType.ADAMW
    quantization: QuantizationType = QuantizationType.NONE
    lora_rank: int = Field(16, gt=0)
    lora_target_modules: tuple[LoRATargetModule, ...] = Field(
        ("q_proj", "v_proj"), description="Empty means full fine-tuning"
    )
    position_encoding: PositionEncoding = "rope"
    max_generation_length: int = Field(0, ge=0, description="0 means sequence_length")

    @field_validator("quantization", mode="before")
    @classmethod
    def validate_quantization(cls, value):
        return parse_quantization(value)

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)


class MultimodalConfig(_Workload):
    """Vision encoder + text encoder + fusion layer fine-tuning."""

    kind: Literal["multimodal"] = "multimodal"
    model_params: float = Field(ge=0, description="Parameter count in billions")
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    image_resolution: int = Field(224, ge=1)
    patch_size: int = Field(14, ge=1)
    vision_feature_dim: int = Field(1024, ge=1)
    text_feature_dim: int = Field(768, ge=1)
    num_heads: int = Field(12, ge=0)
    optimizer: OptimizerType = OptimizerType.ADAMW
    freeze_vision_encoder: bool = False
    freeze_text_encoder: bool = False
    lora_vision_encoder: bool = False
    lora_text_encoder: bool = False
    lora_fusion_layer: bool = False
    lora_rank: int = Field(16, gt=0)
    cross_modal_alignment_weight: float = Field(0.5, ge=0, le=1)
    image_text_contrast_weight: float = Field(0.5, ge=0, le=1)

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)

    @field_validator("patch_size")
    @classmethod
    def check_patch_size(cls, value, info):
        resolution = info.data.get("image_resolution")
        if resolution is not None and value > resolution:
            raise ValueError(f"patch_size ({value}) larger than image_resolution ({resolution})")
        return value


class ModalityConfig(_TransformerShape):
    """A transformer fed text, image, audio and video tokens in one sequence."""

    kind: Literal["modality"] = "modality"
    phase: ModalityPhase = "training"
    modality: Modality = Modality.TEXT_IMAGE
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(0, ge=0, description="Text tokens per sample")
    image_resolution: int = Field(224, ge=1)
    patch_size: int = Field(14, ge=1)
    num_images: int = Field(1, ge=0, description="Images per sample")
    audio_window_seconds: float = Field(30.0, gt=0)
    video_frame_rate: float = Field(25.0, gt=0)
    video_length_seconds: float = Field(10.0, gt=0)

    @field_validator("modality", mode="before")
    @classmethod
    def validate_modality(cls, value):
        if isinstance(value, str):
            return Modality(value.lower())
        return value

    @model_validator(mode="after")
    def check_streams(self):
        if self.modality.has("text") and self.sequence_length < 1:
            raise ValueError(f"{self.modality.value} requires sequence_length >= 1")
        if self.patch_size > self.image_resolution:
            raise ValueError(
                f"patch_size ({self.patch_size}) larger than image_resolution ({self.image_resolution})"
            )
        return self


class MoEConfig(_TransformerShape):
    kind: Literal["moe"] = "moe"
    batch_size: int = Field(ge=1)
    sequence_length: int = Field(ge=1)
    num_experts: int = Field(8, ge=1)
    num_active_experts: int = Field(2, ge=1, description="Top-K experts per token")
    expert_capacity_factor: float = Field(1.25, gt=0)
    optimizer: OptimizerType = OptimizerType.ADAMW
    quantization: QuantizationType = QuantizationType.NONE

    @field_validator("quantization", mode="before")
    @classmethod
    def validate_quantization(cls, value):
        return parse_quantization(value)

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)

    @model_validator(mode="after")
    def check_active_experts(self):
        if self.num_active_experts > self.num_experts:
            raise ValueError(
                f"num_active_experts ({self.num_active_experts}) exceeds num_experts ({self.num_experts})"
            )
        return self


class CNNConfig(_Workload):
    kind: Literal["cnn"] = "cnn"
    model_params: float = Field(ge=0, description="Parameter count in billions")
    batch_size: int = Field(ge=1)
    input_image_size: int = Field(224, ge=1)
    kernel_size: int = Field(3, ge=1)
    num_layers: int = Field(20, ge=1, description="Convolutional depth")
    base_channels: int = Field(64, ge=1)
    frozen_layers: int = Field(0, ge=0)
    freeze_batch_norm: bool = False
    data_augmentation: bool = True
    optimizer: OptimizerType = OptimizerType.ADAMW

    @field_validator("optimizer", mode="before")
    @classmethod
    def validate_optimizer(cls, value):
        return _parse_optimizer(value)

    @model_validator(mode="after")
    def check_frozen_layers(self):
        if self.frozen_layers > self.num_layers:
            raise ValueError(f"frozen_layers ({self.frozen_layers}) exceeds num_layers ({self.num_layers})")
        return self


WorkloadConfig = Union[
    TrainingConfig,
    InferenceConfig,
    FineTuningConfig,
    GRPOConfig,
    NLPConfig,
    ModalityConfig,
    MultimodalConfig,
    MoEConfig,
    CNNConfig,
]

WORKLOAD_TYPES: tuple[type[_Workload], ...] = (
    TrainingConfig,
    InferenceConfig,
    FineTuningConfig,
    GRPOConfig,
    NLPConfig,
    ModalityConfig,
    MultimodalConfig,
    MoEConfig,
    CNNConfig,
)

"""Memory for a single transformer over interleaved text, image, audio and video tokens.

Every modality is tokenized into the same sequence, so activation memory is
driven by the combined length:

- image: ``(resolution // patch)²`` patches per image
- audio: one patch per ``AUDIO_PATCH_MS`` of spectrogram
- video: frames × patches per frame
"""

from __future__ import annotations

import logging
import math

from vram_estimator.calculators.modes import PEFT_TRAINABLE_FRACTION
from vram_estimator.formulas import assemble_breakdown, bytes_to_gb, params_to_gb
from vram_estimator.precision import OPTIMIZER_STATE_PRECISION, bytes_per_parameter
from vram_estimator.results import MemoryBreakdown, MemoryBucket, MemoryComponent
from vram_estimator.workloads import ModalityConfig

logger = logging.getLogger(__name__)

AUDIO_PATCH_MS = 80

ADAM_MOMENTS = 2


def sequence_lengths(config: ModalityConfig) -> dict[str, int]:
    """Tokens contributed by each stream the modality includes."""
    patches_per_frame = (config.image_resolution // config.patch_size) ** 2
    lengths = {"text": 0, "image": 0, "audio": 0, "video": 0}
    if config.modality.has("text"):
        lengths["text"] = config.sequence_length
    if config.modality.has("image"):
        lengths["image"] = patches_per_frame * config.num_images
    if config.modality.has("audio"):
        lengths["audio"] = math.floor(config.audio_window_seconds * 1000 / AUDIO_PATCH_MS)
    if config.modality.has("video"):
        frames = math.floor(config.video_frame_rate * config.video_length_seconds)
        lengths["video"] = frames * patches_per_frame
    return lengths


def calculate_modality(config: ModalityConfig) -> MemoryBreakdown:
    bpp = bytes_per_parameter(config.precision)

    if config.phase == "training":
        trainable_b = config.model_params
    elif config.phase == "finetuning":
        trainable_b = config.model_params * PEFT_TRAINABLE_FRACTION
    else:
        trainable_b = 0.0

    fp32 = bytes_per_parameter(OPTIMIZER_STATE_PRECISION)
    components = [
        MemoryComponent("Model Weights", params_to_gb(config.model_params, bpp), MemoryBucket.MODEL_PARAMS),
        MemoryComponent("Optimizer States", params_to_gb(trainable_b, fp32 * ADAM_MOMENTS), MemoryBucket.OPTIMIZER),
        MemoryComponent("Gradients", params_to_gb(trainable_b, bpp), MemoryBucket.GRADIENTS),
    ]

    lengths = sequence_lengths(config)
    per_token = config.batch_size * config.hidden_size * config.num_layers * bpp
    for stream, length in lengths.items():
        if length > 0:
            components.append(
                MemoryComponent(
                    f"{stream.capitalize()} Activations",
                    bytes_to_gb(length * per_token),
                    MemoryBucket.ACTIVATIONS,
                )
            )
    components.append(MemoryComponent("KV Cache", 0.0, MemoryBucket.KV_CACHE))

    total_length = sum(lengths.values())
    logger.debug("%s %s: %d tokens per sample", config.modality.value, config.phase, total_length)
    return assemble_breakdown(
        components,
        {
            "mode": "modality",
            "phase": config.phase,
            "modality": config.modality.value,
            "total_sequence_length": total_length,
            **{f"{stream}_sequence_length": length for stream, length in lengths.items()},
            "trainable_params_b": trainable_b,
        },
    )

"""Tests for the training, inference, fine-tuning and GRPO calculators."""

import pytest
from pydantic import ValidationError

from vram_estimator.calculators.modes import (
    CHECKPOINTING_FACTOR,
    FINE_TUNING_ACTIVATIONS_GB,
    calculate_fine_tuning,
    calculate_grpo,
    calculate_inference,
    calculate_training,
)
from vram_estimator.errors import InvalidPrecision, UnsupportedMethod
from vram_estimator.formulas import activation_memory_gb
from vram_estimator.precision import PrecisionType, QuantizationType
from vram_estimator.workloads import (
    FineTuningConfig,
    FineTuningMethod,
    GRPOConfig,
    InferenceConfig,
    TrainingConfig,
)


def _training(**overrides):
    fields = {"model_params": 7, "precision": "FP16", "batch_size": 1, "sequence_length": 512}
    return TrainingConfig(**{**fields, **overrides})


def _inference(**overrides):
    fields = {"model_params": 7, "precision": "FP16", "batch_size": 1, "sequence_length": 2048}
    return InferenceConfig(**{**fields, **overrides})


def _fine_tuning(**overrides):
    fields = {"model_params": 7, "precision": "FP16"}
    return FineTuningConfig(**{**fields, **overrides})


# ===================================================================
# Training
# ===================================================================


class TestTraining:
    def test_seven_billion_fp16_adamw(self):
        result = calculate_training(_training())
        assert result.model_params == pytest.approx(13.04, abs=0.01)
        assert result.gradients == pytest.approx(13.04, abs=0.01)
        assert result.optimizer == pytest.approx(52.15, abs=0.01)
        assert result.kv_cache == 0

    def test_optimizer_dominates(self):
        result = calculate_training(_training())
        assert result.optimizer > result.model_params + result.gradients

    def test_sgd_keeps_half_the_state(self):
        adamw = calculate_training(_training())
        sgd = calculate_training(_training(optimizer="SGD"))
        assert sgd.optimizer == pytest.approx(adamw.optimizer / 2)

    def test_gradient_checkpointing_scales_activations(self):
        plain = calculate_training(_training())
        checkpointed = calculate_training(_training(gradient_checkpointing=True))
        assert checkpointed.activations == pytest.approx(plain.activations * CHECKPOINTING_FACTOR)

    def test_total_is_sum_of_buckets(self):
        r = calculate_training(_training(batch_size=4))
        assert r.total == pytest.approx(r.model_params + r.gradients + r.optimizer + r.activations + r.kv_cache)
        assert sum(e.percentage for e in r.breakdown) == pytest.approx(100)

    def test_zero_params_gives_zero_percentages(self):
        r = calculate_training(_training(model_params=0, hidden_size=0, num_layers=0))
        assert r.total == 0
        assert all(e.percentage == 0 for e in r.breakdown)

    def test_idempotent(self):
        config = _training()
        assert calculate_training(config) == calculate_training(config)


class TestDefaultPrecision:
    def test_missing_precision_is_fp32(self):
        config = TrainingConfig(model_params=1, batch_size=1, sequence_length=1)
        assert config.precision is PrecisionType.FP32

    def test_bad_precision_raises(self):
        with pytest.raises(InvalidPrecision):
            _training(precision="FP12")


# ===================================================================
# Inference
# ===================================================================


class TestInference:
    def test_int4_weights(self):
        result = calculate_inference(_inference(quantization="INT4"))
        assert result.model_params == pytest.approx(1.63, abs=0.01)

    def test_no_training_state(self):
        result = calculate_inference(_inference())
        assert result.optimizer == 0
        assert result.gradients == 0
        assert result.kv_cache > 0

    def test_kv_cache_ratio(self):
        full = calculate_inference(_inference())
        half = calculate_inference(_inference(kv_cache_ratio=0.5))
        assert half.kv_cache == pytest.approx(full.kv_cache / 2)

    def test_null_quantization(self):
        config = _inference(quantization=None)
        assert config.quantization is QuantizationType.NONE

    def test_kv_cache_ratio_out_of_range(self):
        with pytest.raises(ValidationError):
            _inference(kv_cache_ratio=1.5)


# ===================================================================
# Fine-tuning
# ===================================================================


class TestFineTuning:
    def test_full_fine_tuning_matches_training_state(self):
        result = calculate_fine_tuning(_fine_tuning(method="Full"))
        assert result.model_params == pytest.approx(13.04, abs=0.01)
        assert result.gradients == pytest.approx(13.04, abs=0.01)
        assert result.optimizer == pytest.approx(52.15, abs=0.01)
        assert result.activations == FINE_TUNING_ACTIVATIONS_GB[FineTuningMethod.FULL]
        assert result.metadata["trainable_ratio"] == 1

    def test_lora_trains_adapters_only(self):
        result = calculate_fine_tuning(_fine_tuning(method="LoRA", lora_rank=16))
        assert result.metadata["trainable_params_b"] == pytest.approx(7 * 32 / 4096)
        assert result.gradients < 0.2

    def test_adapter_optimizer_state_is_fp32(self):
        result = calculate_fine_tuning(_fine_tuning(method="LoRA", lora_rank=16))
        # Two FP32 moments per adapter weight against FP16 gradients
        assert result.optimizer == pytest.approx(0.4075, abs=1e-4)
        assert result.optimizer == pytest.approx(4 * result.gradients)

    def test_lora_alpha_reported_without_changing_memory(self):
        low = calculate_fine_tuning(_fine_tuning(method="QLoRA", lora_rank=16, lora_alpha=16))
        high = calculate_fine_tuning(_fine_tuning(method="QLoRA", lora_rank=16, lora_alpha=64))
        assert high.total == low.total
        assert high.metadata["lora_alpha"] == 64
        assert high.metadata["lora_scaling"] == 4.0

    def test_full_has_no_lora_fields(self):
        assert "lora_alpha" not in calculate_fine_tuning(_fine_tuning(method="Full")).metadata

    def test_adapter_optimizer_ignores_working_precision(self):
        fp16 = calculate_fine_tuning(_fine_tuning(method="LoRA"))
        fp32 = calculate_fine_tuning(_fine_tuning(method="LoRA", precision="FP32"))
        assert fp16.optimizer == pytest.approx(fp32.optimizer)
        assert fp32.optimizer == pytest.approx(2 * fp32.gradients)

    def test_qlora_shrinks_base_only(self):
        lora = calculate_fine_tuning(_fine_tuning(method="LoRA"))
        qlora = calculate_fine_tuning(_fine_tuning(method="QLoRA"))
        assert qlora.model_params < lora.model_params
        assert qlora.gradients == lora.gradients
        assert qlora.optimizer == lora.optimizer

    def test_qlora_defaults_to_int4(self):
        config = _fine_tuning(method="QLoRA")
        assert config.quantization is QuantizationType.INT4
        result = calculate_fine_tuning(config)
        assert result.model_params == pytest.approx(13.04 * 0.125, abs=0.01)

    def test_qlora_without_quantization_is_rejected(self):
        with pytest.raises(ValidationError):
            _fine_tuning(method="QLoRA", quantization="None")

    def test_prefix_trains_one_percent(self):
        result = calculate_fine_tuning(_fine_tuning(method="prefix"))
        assert result.metadata["method"] == "Prefix"
        assert result.metadata["trainable_params_b"] == pytest.approx(0.07)

    def test_unknown_method_raises(self):
        with pytest.raises(UnsupportedMethod):
            _fine_tuning(method="Adapter")


class TestLoraHiddenSizeNormalization:
    """Adapter size is normalized to a 4096 hidden size, not the model's own."""

    def test_adapter_memory_ignores_hidden_size(self):
        narrow = calculate_fine_tuning(_fine_tuning(hidden_size=2048))
        wide = calculate_fine_tuning(_fine_tuning(hidden_size=4096))
        assert narrow.gradients == wide.gradients
        assert narrow.metadata["trainable_params_b"] == wide.metadata["trainable_params_b"]

    def test_differs_from_shape_based_count(self):
        # r·(h + h) per projection; a 2048-wide model really has half the
        # adapter params per module that the normalized count assumes
        result = calculate_fine_tuning(_fine_tuning(hidden_size=2048, lora_rank=16))
        normalized = result.metadata["trainable_params_b"]
        assert normalized == pytest.approx(7 * 2 * 16 / 4096)
        assert normalized != pytest.approx(7 * 2 * 16 / 2048)


# ===================================================================
# GRPO
# ===================================================================


class TestGRPO:
    def _config(self, **overrides):
        fields = {
            "model_params": 7,
            "precision": "BF16",
            "batch_size": 2,
            "sequence_length": 1024,
            "num_generations": 8,
        }
        return GRPOConfig(**{**fields, **overrides})

    def test_activations_scale_with_group_size(self):
        result = calculate_grpo(self._config())
        sft = activation_memory_gb(2, 1024, 4096, 32, "BF16")
        assert result.metadata["sft_activations_gb"] == pytest.approx(sft)
        assert result.activations == pytest.approx(sft * 8)

    def test_checkpointing(self):
        result = calculate_grpo(self._config(gradient_checkpointing=True))
        assert result.metadata["activation_multiplier"] == pytest.approx(8 * CHECKPOINTING_FACTOR)

    def test_int4_base_by_default(self):
        result = calculate_grpo(self._config())
        assert result.model_params == pytest.approx(13.04 * 0.125, abs=0.01)

    def test_8bit_optimizer_halves_state(self):
        plain = calculate_grpo(self._config())
        packed = calculate_grpo(self._config(use_8bit_optimizer=True))
        assert packed.optimizer == pytest.approx(plain.optimizer / 2)

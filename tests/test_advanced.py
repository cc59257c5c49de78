"""Tests for the NLP, multimodal, MoE and CNN calculators."""

import pytest
from pydantic import ValidationError

from vram_estimator.calculators.advanced import (
    calculate_cnn,
    calculate_moe,
    calculate_multimodal,
    calculate_nlp,
    cnn_layer_schedule,
    moe_param_split,
    nlp_lora_params,
)
from vram_estimator.workloads import CNNConfig, MoEConfig, MultimodalConfig, NLPConfig


def _rows(breakdown) -> dict[str, float]:
    return {entry.label: entry.value_gb for entry in breakdown.breakdown}


def _assert_consistent(breakdown):
    total = (
        breakdown.model_params
        + breakdown.gradients
        + breakdown.optimizer
        + breakdown.activations
        + breakdown.kv_cache
    )
    assert breakdown.total == pytest.approx(total)
    assert sum(e.percentage for e in breakdown.breakdown) == pytest.approx(100)


# ===================================================================
# NLP
# ===================================================================


class TestNLP:
    def _config(self, **overrides):
        fields = {"model_params": 7, "precision": "FP16", "batch_size": 1, "sequence_length": 2048}
        return NLPConfig(**{**fields, **overrides})

    def test_lora_params_for_q_and_v(self):
        # rank 16 · (4096 + 4096) · 2 modules · 32 layers
        assert nlp_lora_params(self._config()) == 16 * 8192 * 2 * 32

    def test_ffn_targets_use_intermediate_size(self):
        config = self._config(lora_target_modules=["down_proj"])
        assert nlp_lora_params(config) == 16 * (11008 + 4096) * 32

    def test_breakdown_is_consistent(self):
        result = calculate_nlp(self._config())
        _assert_consistent(result)
        assert result.kv_cache > 0
        assert result.metadata["model_type"] == "nlp"

    def test_quantization_applies_to_frozen_base(self):
        plain = _rows(calculate_nlp(self._config()))
        quantized = _rows(calculate_nlp(self._config(quantization="INT4")))
        assert quantized["Embedding Layer"] == pytest.approx(plain["Embedding Layer"] * 0.125)
        assert quantized["LoRA Adapters"] == plain["LoRA Adapters"]

    def test_full_fine_tuning_ignores_quantization(self):
        plain = calculate_nlp(self._config(lora_target_modules=[]))
        quantized = calculate_nlp(self._config(lora_target_modules=[], quantization="INT4"))
        assert quantized.model_params == plain.model_params
        assert plain.metadata["trainable_params"] == plain.metadata["total_params"]

    def test_position_encoding(self):
        rope = _rows(calculate_nlp(self._config()))
        absolute = _rows(calculate_nlp(self._config(position_encoding="absolute")))
        assert rope["Position Encoding"] == 0
        assert absolute["Position Encoding"] > 0

    def test_unknown_target_module_rejected(self):
        with pytest.raises(ValidationError):
            self._config(lora_target_modules=["lm_head"])

    def test_suggestions(self):
        result = calculate_nlp(self._config(batch_size=16, sequence_length=8192, lora_rank=128))
        suggestions = result.metadata["optimization_suggestions"]
        assert any("batch size" in s for s in suggestions)
        assert any("sequence length" in s for s in suggestions)
        assert any("LoRA rank" in s for s in suggestions)


# ===================================================================
# Multimodal
# ===================================================================


class TestMultimodal:
    def _config(self, **overrides):
        fields = {"model_params": 1, "precision": "FP16", "batch_size": 4, "sequence_length": 77}
        return MultimodalConfig(**{**fields, **overrides})

    def test_patch_count(self):
        result = calculate_multimodal(self._config())
        assert result.metadata["num_patches"] == (224 // 14) ** 2
        _assert_consistent(result)

    def test_freezing_vision_encoder_cuts_training_state(self):
        trained = calculate_multimodal(self._config())
        frozen = calculate_multimodal(self._config(freeze_vision_encoder=True))
        assert frozen.optimizer < trained.optimizer
        assert frozen.model_params == trained.model_params

    def test_lora_on_encoders(self):
        frozen = calculate_multimodal(self._config(freeze_vision_encoder=True, freeze_text_encoder=True))
        lora = calculate_multimodal(self._config(lora_vision_encoder=True, lora_text_encoder=True))
        assert _rows(lora)["LoRA Adapters"] > 0
        assert lora.optimizer > frozen.optimizer
        assert lora.metadata["optimization_suggestions"] == ()

    def test_contrastive_weight(self):
        off = _rows(calculate_multimodal(self._config(image_text_contrast_weight=0)))
        assert off["Contrastive Learning"] == 0

    def test_patch_larger_than_image_rejected(self):
        with pytest.raises(ValidationError):
            self._config(image_resolution=16, patch_size=32)


# ===================================================================
# Mixture of experts
# ===================================================================


class TestMoE:
    def _config(self, **overrides):
        fields = {
            "model_params": 47,
            "precision": "BF16",
            "batch_size": 1,
            "sequence_length": 1024,
            "hidden_size": 4096,
            "num_layers": 32,
        }
        return MoEConfig(**{**fields, **overrides})

    def test_param_split(self):
        shared, per_expert = moe_param_split(self._config())
        assert shared == 32 * 4 * 4096**2
        assert per_expert == pytest.approx((47e9 - shared) / 8)

    def test_active_params_for_top2(self):
        config = self._config()
        shared, per_expert = moe_param_split(config)
        result = calculate_moe(config)
        router = 4096 * 8 * 32
        assert result.metadata["active_params_b"] == pytest.approx((shared + 2 * per_expert + router) / 1e9)
        assert 12 < result.metadata["active_params_b"] < 14
        _assert_consistent(result)

    def test_all_experts_stored(self):
        rows = _rows(calculate_moe(self._config()))
        weights = rows["Shared Weights"] + rows["Expert Weights"] + rows["Router"]
        assert weights == pytest.approx(47e9 * 2 / 1024**3, rel=1e-3)

    def test_quantization_leaves_router(self):
        plain = _rows(calculate_moe(self._config()))
        quantized = _rows(calculate_moe(self._config(quantization="INT4")))
        assert quantized["Expert Weights"] == pytest.approx(plain["Expert Weights"] * 0.125)
        assert quantized["Router"] == plain["Router"]

    def test_capacity_factor_scales_dispatch_buffer(self):
        base = _rows(calculate_moe(self._config()))
        doubled = _rows(calculate_moe(self._config(expert_capacity_factor=2.5)))
        assert doubled["Token Dispatch Buffer"] == pytest.approx(base["Token Dispatch Buffer"] * 2)

    def test_more_active_than_total_rejected(self):
        with pytest.raises(ValidationError):
            self._config(num_experts=4, num_active_experts=8)


# ===================================================================
# CNN
# ===================================================================


class TestCNN:
    def _config(self, **overrides):
        fields = {"model_params": 0.025, "precision": "FP32", "batch_size": 32}
        return CNNConfig(**{**fields, **overrides})

    def test_layer_schedule(self):
        schedule = cnn_layer_schedule(self._config())
        assert len(schedule) == 20
        assert schedule[0] == (112, 64)
        assert schedule[-1] == (7, 1024)

    def test_breakdown(self):
        result = calculate_cnn(self._config())
        _assert_consistent(result)
        assert result.kv_cache == 0
        assert result.metadata["final_resolution"] == 7

    def test_frozen_layers_cut_optimizer(self):
        trained = calculate_cnn(self._config())
        frozen = calculate_cnn(self._config(frozen_layers=10))
        assert frozen.optimizer < trained.optimizer
        assert frozen.model_params == trained.model_params

    def test_augmentation_row_kept_when_disabled(self):
        rows = _rows(calculate_cnn(self._config(data_augmentation=False)))
        assert rows["Data Augmentation"] == 0

    def test_too_many_frozen_layers_rejected(self):
        with pytest.raises(ValidationError):
            self._config(frozen_layers=21)

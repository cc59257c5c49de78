"""Tests for optimization advice on computed breakdowns."""

import pytest

from vram_estimator.advisor import Priority, SuggestionKind, advise
from vram_estimator.calculators.dispatch import calculate
from vram_estimator.catalog import GPU
from vram_estimator.workloads import (
    CNNConfig,
    FineTuningConfig,
    InferenceConfig,
    ModalityConfig,
    MoEConfig,
    NLPConfig,
    TrainingConfig,
)


def _gpu(memory_gb: float) -> GPU:
    return GPU(
        id="card",
        name="Card",
        memory_gb=memory_gb,
        price_usd=1000,
        architecture="Ada Lovelace",
        compute_capability="8.9",
    )


def _advise(config, target=None):
    return advise(config, calculate(config), target)


def _titles(suggestions) -> list[str]:
    return [s.title for s in suggestions]


class TestTargetGpu:
    def test_full_fine_tuning_overflows_80gb(self):
        config = FineTuningConfig(model_params=7, precision="FP16", method="Full")
        suggestions = _advise(config, _gpu(80))
        assert "Not enough GPU memory" in _titles(suggestions)
        assert "Use parameter-efficient fine-tuning" in _titles(suggestions)
        assert "Needs a high-end GPU" in _titles(suggestions)

    def test_high_utilization(self):
        # LoRA on a 7B FP16 base needs about 14.5 GB
        config = FineTuningConfig(model_params=7, precision="FP16", method="LoRA")
        suggestions = _advise(config, _gpu(16))
        titles = _titles(suggestions)
        assert "Memory utilization is high" in titles
        assert "Not enough GPU memory" not in titles

    def test_roomy_gpu(self):
        config = FineTuningConfig(model_params=7, precision="FP16", method="LoRA")
        titles = _titles(_advise(config, _gpu(24)))
        assert "Memory utilization is high" not in titles
        assert "Not enough GPU memory" not in titles

    def test_without_target(self):
        config = FineTuningConfig(model_params=7, precision="FP16", method="LoRA")
        assert _advise(config) == []


class TestWorkloadRules:
    def test_long_sequence(self):
        config = TrainingConfig(
            model_params=1, precision="FP16", batch_size=1, sequence_length=8192, gradient_checkpointing=True
        )
        assert "Long sequences" in _titles(_advise(config))

    def test_checkpointing_when_activations_dominate(self):
        fields = {"model_params": 1, "precision": "FP16", "batch_size": 8, "sequence_length": 2048}
        assert "Enable gradient checkpointing" in _titles(_advise(TrainingConfig(**fields)))
        checkpointed = TrainingConfig(**fields, gradient_checkpointing=True)
        assert "Enable gradient checkpointing" not in _titles(_advise(checkpointed))

    def test_sgd(self):
        config = TrainingConfig(model_params=1, precision="FP16", batch_size=1, sequence_length=128, optimizer="SGD")
        suggestion = next(s for s in _advise(config) if s.title == "Optimizer choice")
        assert suggestion.kind is SuggestionKind.PERFORMANCE
        assert suggestion.priority is Priority.LOW

    def test_fp32_training_but_not_inference(self):
        training = TrainingConfig(model_params=1, precision="FP32", batch_size=1, sequence_length=128)
        inference = InferenceConfig(model_params=1, precision="FP32", batch_size=1, sequence_length=128)
        assert "Train in mixed precision" in _titles(_advise(training))
        assert "Train in mixed precision" not in _titles(_advise(inference))

    def test_modality_inference_skips_mixed_precision(self):
        config = ModalityConfig(
            model_params=1, precision="FP32", batch_size=1, sequence_length=128, phase="inference"
        )
        assert "Train in mixed precision" not in _titles(_advise(config))

    def test_high_image_resolution(self):
        config = ModalityConfig(model_params=1, precision="FP16", batch_size=1, sequence_length=128, image_resolution=672)
        assert "High image resolution" in _titles(_advise(config))

    def test_moe_rules(self):
        config = MoEConfig(
            model_params=47,
            precision="FP16",
            batch_size=1,
            sequence_length=512,
            num_active_experts=6,
            expert_capacity_factor=0.8,
        )
        suggestions = _advise(config)
        assert "Many active experts" in _titles(suggestions)
        stability = [s for s in suggestions if s.kind is SuggestionKind.STABILITY]
        assert [s.title for s in stability] == ["Expert capacity below 1.0"]

    def test_large_cnn_batch(self):
        config = CNNConfig(model_params=0.025, precision="FP16", batch_size=512)
        suggestion = next(s for s in _advise(config) if s.title == "Large batch")
        assert suggestion.priority is Priority.LOW

    def test_nlp_full_fine_tuning(self):
        config = NLPConfig(model_params=7, precision="FP16", batch_size=1, sequence_length=512, lora_target_modules=())
        assert "Use parameter-efficient fine-tuning" in _titles(_advise(config))


class TestOrdering:
    def test_high_priority_first(self):
        config = FineTuningConfig(model_params=7, precision="FP32", method="Full", optimizer="SGD")
        priorities = [s.priority.value for s in _advise(config, _gpu(24))]
        assert priorities == sorted(priorities, reverse=True)
        assert priorities[0] == Priority.HIGH.value

    def test_to_dict(self):
        config = FineTuningConfig(model_params=7, precision="FP16", method="Full")
        data = _advise(config)[0].to_dict()
        assert data["priority"] == "high"
        assert data["kind"] == "cost"
        assert isinstance(data["steps"], list)


@pytest.mark.parametrize("memory_gb", [1, 1000])
def test_advice_never_mutates_breakdown(memory_gb):
    config = FineTuningConfig(model_params=7, precision="FP16", method="Full")
    breakdown = calculate(config)
    before = breakdown.to_dict()
    advise(config, breakdown, _gpu(memory_gb))
    assert breakdown.to_dict() == before

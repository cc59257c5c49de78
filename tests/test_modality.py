"""Tests for the mixed text/image/audio/video sequence calculator."""

import pytest
from pydantic import ValidationError

from vram_estimator.calculators.modality import calculate_modality, sequence_lengths
from vram_estimator.workloads import Modality, ModalityConfig


def _config(**overrides):
    fields = {"model_params": 7, "precision": "FP16", "batch_size": 1, "sequence_length": 2048}
    return ModalityConfig(**{**fields, **overrides})


def _rows(breakdown) -> dict[str, float]:
    return {entry.label: entry.value_gb for entry in breakdown.breakdown}


class TestSequenceLengths:
    def test_text_image(self):
        assert sequence_lengths(_config()) == {"text": 2048, "image": 256, "audio": 0, "video": 0}

    def test_several_images(self):
        lengths = sequence_lengths(_config(image_resolution=336, num_images=2))
        assert lengths["image"] == 2 * 24**2

    def test_audio_window(self):
        # 30 s at one patch per 80 ms
        assert sequence_lengths(_config(modality="text-audio"))["audio"] == 375

    def test_video_frames(self):
        lengths = sequence_lengths(_config(modality="text-video"))
        assert lengths["video"] == 25 * 10 * 256
        assert lengths["image"] == 0

    def test_audio_video_has_no_text(self):
        lengths = sequence_lengths(_config(modality="audio-video", sequence_length=0))
        assert lengths["text"] == 0
        assert lengths["audio"] == 375


class TestCalculateModality:
    def test_training_state(self):
        result = calculate_modality(_config())
        assert result.model_params == pytest.approx(13.04, abs=0.01)
        assert result.gradients == pytest.approx(13.04, abs=0.01)
        assert result.optimizer == pytest.approx(52.15, abs=0.01)

    def test_activations_follow_total_sequence(self):
        result = calculate_modality(_config())
        # (2048 + 256) tokens · 4096 · 32 layers · 2 bytes
        assert result.activations == pytest.approx(0.5625)
        rows = _rows(result)
        assert rows["Text Activations"] == pytest.approx(0.5)
        assert rows["Image Activations"] == pytest.approx(0.0625)
        assert "Audio Activations" not in rows
        assert result.metadata["total_sequence_length"] == 2304

    def test_finetuning_trains_one_percent(self):
        result = calculate_modality(_config(phase="finetuning"))
        assert result.metadata["trainable_params_b"] == pytest.approx(0.07)
        assert result.optimizer == pytest.approx(0.5215, abs=1e-4)

    def test_inference_has_no_training_state(self):
        result = calculate_modality(_config(phase="inference"))
        assert result.optimizer == 0
        assert result.gradients == 0
        assert result.kv_cache == 0
        assert result.activations == pytest.approx(0.5625)

    def test_video_dominates(self):
        image = calculate_modality(_config(phase="inference"))
        video = calculate_modality(_config(phase="inference", modality="text-video"))
        assert video.activations > 20 * image.activations

    def test_rows_sum_to_total(self):
        result = calculate_modality(_config(modality="text-audio-video", batch_size=2))
        assert sum(e.value_gb for e in result.breakdown) == pytest.approx(result.total)
        assert sum(e.percentage for e in result.breakdown) == pytest.approx(100)


class TestValidation:
    def test_modality_is_case_insensitive(self):
        assert _config(modality="Text-Audio").modality is Modality.TEXT_AUDIO

    def test_unknown_modality(self):
        with pytest.raises(ValidationError):
            _config(modality="text-smell")

    def test_text_needs_tokens(self):
        with pytest.raises(ValidationError, match="sequence_length"):
            _config(modality="text-audio", sequence_length=0)

    def test_patch_larger_than_image(self):
        with pytest.raises(ValidationError, match="patch_size"):
            _config(image_resolution=16, patch_size=32)

    def test_unknown_phase(self):
        with pytest.raises(ValidationError):
            _config(phase="distillation")

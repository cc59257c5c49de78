"""Build catalog model records from HuggingFace config.json + API metadata."""

import logging
import time

import httpx

from vram_estimator.catalog import ModelInfo
from vram_estimator.config import HF_TOKEN

logger = logging.getLogger(__name__)

# Catalog model id -> HuggingFace repo id, for the models that can be refreshed
MODEL_ID_TO_HF_ID: dict[str, str] = {
    "qwen2.5-0.5b": "Qwen/Qwen2.5-0.5B",
    "qwen2.5-7b": "Qwen/Qwen2.5-7B",
    "qwen2.5-14b": "Qwen/Qwen2.5-14B",
    "llama-2-7b": "meta-llama/Llama-2-7b-hf",
    "llama-3.1-8b": "meta-llama/Llama-3.1-8B",
    "mistral-7b": "mistralai/Mistral-7B-v0.1",
    "mixtral-8x7b": "mistralai/Mixtral-8x7B-v0.1",
    "deepseek-moe-16b": "deepseek-ai/deepseek-moe-16b-base",
    "deepseek-coder-6.7b": "deepseek-ai/deepseek-coder-6.7b-base",
    "gemma-2b": "google/gemma-2b",
    "phi-3-mini": "microsoft/Phi-3-mini-4k-instruct",
    "yi-6b": "01-ai/Yi-6B",
    "codellama-7b": "codellama/CodeLlama-7b-hf",
}

# config.json keys holding the routed expert count, by model family
_EXPERT_COUNT_KEYS = ("num_local_experts", "n_routed_experts", "num_experts")


def _headers() -> dict[str, str]:
    if HF_TOKEN:
        return {"Authorization": f"Bearer {HF_TOKEN}"}
    return {}


def fetch_hf_config(hf_id: str) -> dict | None:
    """Fetch a HuggingFace model config.json."""
    url = f"https://huggingface.co/{hf_id}/raw/main/config.json"
    try:
        response = httpx.get(url, headers=_headers(), timeout=30.0, follow_redirects=True)
        response.raise_for_status()
        config = response.json()
        logger.info("Fetched config.json for %s", hf_id)
        return config
    except httpx.HTTPError as e:
        logger.debug("No config.json available for %s: %s", hf_id, e)
        return None


def fetch_hf_param_count(hf_id: str) -> float | None:
    """Total parameter count in billions from safetensors metadata, if published."""
    url = f"https://huggingface.co/api/models/{hf_id}"
    try:
        response = httpx.get(url, headers=_headers(), timeout=30.0, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.debug("Could not fetch HF API metadata for %s: %s", hf_id, e)
        return None

    per_dtype = (response.json().get("safetensors") or {}).get("parameters") or {}
    if not per_dtype:
        return None
    params_b = round(sum(per_dtype.values()) / 1e9, 2)
    logger.info("HF API param count for %s: %.2fB", hf_id, params_b)
    return params_b


def resolve_text_config(config: dict) -> dict:
    """Unwrap multimodal configs that nest the language model under ``text_config``."""
    text_config = config.get("text_config")
    if "hidden_size" not in config and isinstance(text_config, dict):
        return text_config
    return config


def _require_int(config: dict, key: str, hf_id: str) -> int:
    value = config.get(key)
    if value is None:
        raise ValueError(f"Missing '{key}' in config for {hf_id}")
    return int(value)


def _expert_ffn_params(config: dict) -> tuple[int, int, int]:
    """Return ``(num_experts, top_k, params_per_expert_per_layer)``; zeros for dense models."""
    num_experts = next((int(config[k]) for k in _EXPERT_COUNT_KEYS if config.get(k)), 0)
    if not num_experts:
        return 0, 0, 0
    hidden = int(config["hidden_size"])
    intermediate = int(config.get("moe_intermediate_size") or config.get("intermediate_size") or 4 * hidden)
    top_k = int(config.get("num_experts_per_tok") or 2)
    return num_experts, top_k, 3 * hidden * intermediate


def estimate_params_b(config: dict) -> float:
    """Llama-style parameter estimate from the config shape, in billions.

    Embedding and output head ``2·V·H`` plus, per layer, ``4·H²`` attention
    and a gated FFN of ``3·H·I`` (once per expert for MoE models).
    """
    hidden = int(config["hidden_size"])
    layers = int(config["num_hidden_layers"])
    vocab = int(config.get("vocab_size", 0))
    intermediate = int(config.get("intermediate_size") or 4 * hidden)

    num_experts, _, expert_params = _expert_ffn_params(config)
    ffn = num_experts * expert_params if num_experts else 3 * hidden * intermediate
    total = 2 * vocab * hidden + layers * (4 * hidden * hidden + ffn)
    return round(total / 1e9, 2)


def model_info_from_config(
    model_id: str,
    name: str,
    config: dict,
    params_b: float | None = None,
    hf_id: str = "",
) -> ModelInfo:
    """Build a ``ModelInfo`` from a config.json dict.

    *params_b* (the published safetensors count) wins over the config-based
    estimate when given.
    """
    effective = resolve_text_config(config)
    hidden = _require_int(effective, "hidden_size", hf_id or model_id)
    layers = _require_int(effective, "num_hidden_layers", hf_id or model_id)
    heads = _require_int(effective, "num_attention_heads", hf_id or model_id)
    vocab = _require_int(effective, "vocab_size", hf_id or model_id)

    if params_b is None:
        params_b = estimate_params_b(effective)

    num_experts, top_k, expert_params = _expert_ffn_params(effective)
    model_type = str(effective.get("model_type", ""))
    active_params_b = None
    if num_experts:
        architecture = "moe"
        idle = layers * (num_experts - top_k) * expert_params
        active_params_b = round(max(params_b - idle / 1e9, 0.0), 2)
    elif model_type.startswith("chatglm") or model_type == "glm":
        architecture = "glm"
    else:
        architecture = "transformer"

    return ModelInfo(
        id=model_id,
        name=name,
        params_b=params_b,
        architecture=architecture,
        hidden_size=hidden,
        num_layers=layers,
        num_heads=heads,
        vocab_size=vocab,
        active_params_b=active_params_b,
    )


def fetch_model(model_id: str, hf_id: str, name: str | None = None) -> ModelInfo:
    """Fetch one model from HuggingFace.

    Raises:
        RuntimeError: If config.json is unavailable.
        ValueError: If the config lacks a required architecture field.
    """
    config = fetch_hf_config(hf_id)
    if not config:
        raise RuntimeError(f"No config.json available for {hf_id}")

    params_b = fetch_hf_param_count(hf_id)
    return model_info_from_config(model_id, name or hf_id.split("/")[-1], config, params_b, hf_id)


def fetch_models(
    model_map: dict[str, str] | None = None,
    names: dict[str, str] | None = None,
    delay: float = 1.0,
) -> list[ModelInfo]:
    """Fetch every model in *model_map* (catalog id -> HF repo id).

    *names* optionally supplies display names by catalog id.

    Raises:
        RuntimeError: If any model could not be fetched.
    """
    if model_map is None:
        model_map = MODEL_ID_TO_HF_ID
    names = names or {}

    results = []
    failed = []
    total = len(model_map)

    for i, (model_id, hf_id) in enumerate(model_map.items(), 1):
        logger.info("Fetching model %d/%d: %s (%s)", i, total, model_id, hf_id)
        try:
            info = fetch_model(model_id, hf_id, names.get(model_id))
            results.append(info)
            logger.info(
                "  -> %s: %.2fB params, h=%d, L=%d, %s",
                info.id,
                info.params_b,
                info.hidden_size,
                info.num_layers,
                info.architecture,
            )
        except (RuntimeError, ValueError) as e:
            failed.append(model_id)
            logger.warning("  -> Failed to fetch %s: %s", model_id, e)

        if i < total:
            time.sleep(delay)

    logger.info("Successfully fetched %d/%d models", len(results), total)

    if failed:
        raise RuntimeError(f"Failed to fetch {len(failed)}/{total} models: {', '.join(failed)}")

    return results

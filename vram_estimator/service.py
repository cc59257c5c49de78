"""JSON-shaped request/response boundary.

``handle_request`` and ``handle_recommendation`` never raise for a bad
request: every ``EstimationError`` becomes a structured error response, so a
caller serving many requests keeps running after a rejected one.
"""

from __future__ import annotations

import copy
import logging
from concurrent.futures import Executor, Future

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from vram_estimator.advisor import advise
from vram_estimator.calculators.dispatch import calculate, config_type_for
from vram_estimator.catalog import Catalog, ModelInfo
from vram_estimator.config import MAX_MULTI_GPU
from vram_estimator.errors import EstimationError, InvalidConfiguration
from vram_estimator.recommend import recommend
from vram_estimator.results import MemoryBreakdown
from vram_estimator.workloads import WorkloadConfig

logger = logging.getLogger(__name__)

# Request keys that select or enrich a calculation rather than configure it
_CONTROL_KEYS = {
    "mode": ("mode",),
    "model_type": ("modelType", "model_type"),
    "model_id": ("modelId", "model_id"),
    "recommend": ("recommend",),
    "advise": ("advise",),
}


class RecommendationRequest(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        allow_inf_nan=False,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    required_vram: float = Field(ge=0, description="Memory to fit, in GB")
    budget: float | None = Field(None, ge=0, description="Maximum total price in USD")
    use_case: str = "inference"
    multi_gpu: bool = False
    max_gpus: int = Field(MAX_MULTI_GPU, ge=1)


def _format_validation_error(error: ValidationError) -> list[str]:
    lines = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "request"
        lines.append(f"{loc}: {err['msg']}")
    return lines


def _pop_control(data: dict, name: str):
    value = None
    for key in _CONTROL_KEYS[name]:
        if key in data:
            value = data.pop(key)
    return value


def model_defaults(model: ModelInfo) -> dict:
    """Workload fields a catalog model supplies when referenced by id."""
    return {
        "model_params": model.params_b,
        "hidden_size": model.hidden_size,
        "num_layers": model.num_layers,
        "num_heads": model.num_heads,
        "vocab_size": model.vocab_size,
    }


def build_config(payload: dict, catalog: Catalog | None = None) -> WorkloadConfig:
    """Validate *payload* into the workload config its ``mode`` selects.

    With ``modelId`` the catalog fills any architecture field the payload
    leaves out; explicit fields always win.
    """
    if not isinstance(payload, dict):
        raise InvalidConfiguration("Request must be a JSON object")

    data = dict(payload)
    mode = _pop_control(data, "mode")
    model_type = _pop_control(data, "model_type")
    model_id = _pop_control(data, "model_id")
    _pop_control(data, "recommend")
    _pop_control(data, "advise")

    if mode is None:
        raise InvalidConfiguration("Missing required field 'mode'")
    config_type = config_type_for(mode, model_type)

    if model_id is not None:
        if catalog is None:
            raise InvalidConfiguration(f"Cannot resolve modelId '{model_id}' without a catalog")
        model = catalog.get_model(model_id)
        fields = config_type.model_fields
        given = {
            name
            for name, info in fields.items()
            if name in data or (info.alias is not None and info.alias in data)
        }
        for name, value in model_defaults(model).items():
            if name in fields and name not in given:
                data[name] = value
        logger.debug("Resolved modelId '%s' for %s", model_id, config_type.__name__)

    try:
        return config_type.model_validate(data)
    except ValidationError as e:
        raise InvalidConfiguration(
            f"Invalid {config_type.__name__}", details=_format_validation_error(e)
        ) from None


def _advice(block, config: WorkloadConfig, breakdown: MemoryBreakdown, catalog: Catalog) -> list[dict]:
    """Suggestions for ``advise: true`` or ``advise: {"targetGpu": id}``."""
    target = None
    if isinstance(block, dict):
        unknown = set(block) - {"targetGpu", "target_gpu"}
        if unknown:
            raise InvalidConfiguration(
                "Invalid advice request", details=[f"unknown field '{k}'" for k in sorted(unknown)]
            )
        gpu_id = block.get("targetGpu", block.get("target_gpu"))
        if gpu_id is not None:
            target = catalog.get_gpu(gpu_id)
    elif not isinstance(block, bool):
        raise InvalidConfiguration("'advise' must be true or a JSON object")
    return [s.to_dict() for s in advise(config, breakdown, target)]


def _recommendations(block: dict, required_vram: float | None, catalog: Catalog) -> list[dict]:
    if not isinstance(block, dict):
        raise InvalidConfiguration("'recommend' must be a JSON object")
    data = dict(block)
    if required_vram is not None:
        data.pop("requiredVram", None)
        data["required_vram"] = required_vram

    try:
        request = RecommendationRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidConfiguration(
            "Invalid recommendation request", details=_format_validation_error(e)
        ) from None

    ranked = recommend(
        request.required_vram,
        request.budget,
        request.use_case,
        request.multi_gpu,
        catalog,
        max_gpus=request.max_gpus,
    )
    return [r.to_dict() for r in ranked]


def handle_request(payload: dict, catalog: Catalog) -> dict:
    """Compute a memory breakdown for *payload*.

    ``recommend`` adds ranked GPUs for the computed total and ``advise`` adds
    optimization suggestions, optionally against ``advise.targetGpu``.
    """
    try:
        config = build_config(payload, catalog)
        breakdown = calculate(config)
        result = {"kind": config.kind, **breakdown.to_dict()}
        if payload.get("recommend") is not None:
            result["recommendations"] = _recommendations(payload["recommend"], breakdown.total, catalog)
        if payload.get("advise"):
            result["advice"] = _advice(payload["advise"], config, breakdown, catalog)
        return {"status": "ok", "result": result}
    except EstimationError as e:
        logger.info("Rejected request: %s", e)
        return {"status": "error", "error": e.to_dict()}


def handle_recommendation(payload: dict, catalog: Catalog) -> dict:
    """Rank GPUs for ``{requiredVram, budget?, useCase, multiGpu}``."""
    try:
        return {"status": "ok", "result": _recommendations(payload, None, catalog)}
    except EstimationError as e:
        logger.info("Rejected recommendation request: %s", e)
        return {"status": "error", "error": e.to_dict()}


def submit_request(executor: Executor, payload: dict, catalog: Catalog) -> Future:
    """Run ``handle_request`` on *executor* with a private copy of *payload*."""
    return executor.submit(handle_request, copy.deepcopy(payload), catalog)

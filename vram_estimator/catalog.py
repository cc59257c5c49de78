"""Static model and GPU reference data.

The catalog is loaded once into an immutable ``Catalog`` and handed to the
calculators, the recommender and the request boundary explicitly; there is
no module-level instance.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vram_estimator.config import DATA_DIR, DEFAULT_UTILIZATION_RATE
from vram_estimator.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


class ModelInfo(BaseModel):
    """Architecture record for a known model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    params_b: float = Field(gt=0, description="Total parameter count in billions")
    architecture: str = Field(description="transformer, glm, moe, ...")
    hidden_size: int = Field(gt=0)
    num_layers: int = Field(gt=0)
    num_heads: int = Field(gt=0)
    vocab_size: int = Field(gt=0)
    active_params_b: float | None = Field(None, description="Active params for MoE models")


class GPU(BaseModel):
    """GPU specification and pricing."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    memory_gb: float = Field(gt=0)
    price_usd: float = Field(ge=0)
    cloud_price_usd_per_hour: float | None = Field(None, ge=0)
    architecture: str
    compute_capability: str
    utilization_rate: float = Field(
        DEFAULT_UTILIZATION_RATE,
        gt=0,
        le=1,
        description="Fraction of nominal memory usable after framework overhead",
    )

    @property
    def usable_memory_gb(self) -> float:
        return self.memory_gb * self.utilization_rate

    @property
    def compute_capability_value(self) -> float:
        return float(self.compute_capability)


@dataclass(frozen=True)
class Catalog:
    models: tuple[ModelInfo, ...]
    gpus: tuple[GPU, ...]

    def get_model(self, model_id: str) -> ModelInfo:
        for model in self.models:
            if model.id == model_id:
                return model
        raise InvalidConfiguration(f"Unknown model id '{model_id}'")

    def get_gpu(self, gpu_id: str) -> GPU:
        for gpu in self.gpus:
            if gpu.id == gpu_id:
                return gpu
        raise InvalidConfiguration(f"Unknown GPU id '{gpu_id}'")

    def models_by_category(self) -> dict[str, list[ModelInfo]]:
        """Group models by parameter count: small ≤3B, medium ≤15B, large ≤50B."""
        return {
            "small": [m for m in self.models if m.params_b <= 3],
            "medium": [m for m in self.models if 3 < m.params_b <= 15],
            "large": [m for m in self.models if 15 < m.params_b <= 50],
            "xlarge": [m for m in self.models if m.params_b > 50],
        }

    def gpus_by_price_range(self) -> dict[str, list[GPU]]:
        return {
            "budget": [g for g in self.gpus if g.price_usd <= 1000],
            "mid": [g for g in self.gpus if 1000 < g.price_usd <= 5000],
            "high": [g for g in self.gpus if 5000 < g.price_usd <= 20000],
            "enterprise": [g for g in self.gpus if g.price_usd > 20000],
        }

    def with_gpu_updates(
        self,
        cloud_prices: dict[str, float] | None = None,
        specs: dict[str, dict] | None = None,
    ) -> "Catalog":
        """Return a new catalog with refreshed GPU prices and specs.

        *cloud_prices* maps GPU id → hourly price; *specs* maps GPU id →
        ``{"memory_gb": ..., "architecture": ...}``.  GPUs not mentioned are
        carried over unchanged.
        """
        cloud_prices = cloud_prices or {}
        specs = specs or {}
        gpus = []
        for gpu in self.gpus:
            update: dict = {}
            if gpu.id in cloud_prices:
                update["cloud_price_usd_per_hour"] = cloud_prices[gpu.id]
            if gpu.id in specs:
                update.update(specs[gpu.id])
            gpus.append(gpu.model_copy(update=update) if update else gpu)
        return Catalog(models=self.models, gpus=tuple(gpus))

    def with_models(self, refreshed: list[ModelInfo]) -> "Catalog":
        """Return a new catalog where *refreshed* replace models with the same id."""
        by_id = {m.id: m for m in refreshed}
        models = tuple(by_id.get(m.id, m) for m in self.models)
        return Catalog(models=models, gpus=self.gpus)


def _read_records(path: Path, record_type: type[BaseModel]) -> list:
    try:
        raw = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise RuntimeError(f"Could not read catalog file {path}: {e}") from e

    try:
        return [record_type.model_validate(item) for item in raw]
    except ValidationError as e:
        raise RuntimeError(f"Invalid record in catalog file {path}: {e}") from e


def load_catalog(data_dir: Path | None = None) -> Catalog:
    """Load ``models.json`` and ``gpus.json`` from *data_dir*."""
    if data_dir is None:
        data_dir = DATA_DIR

    models = _read_records(data_dir / "models.json", ModelInfo)
    gpus = _read_records(data_dir / "gpus.json", GPU)
    logger.debug("Loaded catalog from %s: %d models, %d GPUs", data_dir, len(models), len(gpus))
    return Catalog(models=tuple(models), gpus=tuple(gpus))

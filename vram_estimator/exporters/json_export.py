"""Write the catalog and estimation results to JSON files."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from vram_estimator.catalog import Catalog
from vram_estimator.config import EXPORT_DIR

logger = logging.getLogger(__name__)


def export_gpus(catalog: Catalog, output_dir: Path | None = None) -> Path:
    """Export catalog GPUs to gpus.json, adding a computed usable_memory_gb."""
    if output_dir is None:
        output_dir = EXPORT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    rows = []
    for gpu in catalog.gpus:
        row = gpu.model_dump()
        row["usable_memory_gb"] = round(gpu.usable_memory_gb, 2)
        rows.append(row)
    rows.sort(key=lambda r: (r["memory_gb"], r["id"]))

    path = output_dir / "gpus.json"
    path.write_text(json.dumps(rows, indent=2))
    logger.info("Exported %d GPUs to %s", len(rows), path)
    return path


def export_models(catalog: Catalog, output_dir: Path | None = None) -> Path:
    """Export catalog models to models.json."""
    if output_dir is None:
        output_dir = EXPORT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    rows = [m.model_dump() for m in catalog.models]
    rows.sort(key=lambda r: (r["params_b"], r["id"]))

    path = output_dir / "models.json"
    path.write_text(json.dumps(rows, indent=2))
    logger.info("Exported %d models to %s", len(rows), path)
    return path


def export_metadata(
    output_dir: Path | None = None,
    sources: dict[str, dict] | None = None,
) -> Path:
    """Export run metadata (and the refresh sources, if any) to metadata.json."""
    if output_dir is None:
        output_dir = EXPORT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    metadata: dict = {"updated_at": datetime.now(UTC).isoformat()}
    if sources:
        metadata["sources"] = sources
    path = output_dir / "metadata.json"
    path.write_text(json.dumps(metadata, indent=2) + "\n")
    logger.info("Exported metadata to %s", path)
    return path


def export_catalog(
    catalog: Catalog,
    output_dir: Path | None = None,
    sources: dict[str, dict] | None = None,
) -> dict[str, Path]:
    """Export models, GPUs and metadata; the result is loadable by ``load_catalog``."""
    return {
        "gpus": export_gpus(catalog, output_dir),
        "models": export_models(catalog, output_dir),
        "metadata": export_metadata(output_dir, sources),
    }


def export_result(result: dict, path: Path) -> Path:
    """Write one request's response dict to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result, indent=2) + "\n")
    logger.info("Exported result to %s", path)
    return path

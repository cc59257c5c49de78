"""Ready-made workload requests grouped by mode and audience.

Each preset carries a request payload that ``service.handle_request`` accepts
as is, plus the catalog GPUs it is meant for.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from vram_estimator.config import PACKAGE_DATA_DIR
from vram_estimator.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

PresetCategory = Literal["beginner", "professional", "enterprise", "research"]

PRESET_CATEGORIES: tuple[str, ...] = ("beginner", "professional", "enterprise", "research")


class Preset(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    category: PresetCategory
    tags: tuple[str, ...] = ()
    recommended_gpus: tuple[str, ...] = ()
    request: dict

    @property
    def mode(self) -> str:
        return str(self.request["mode"]).lower()

    def matches(self, query: str) -> bool:
        needle = query.lower()
        return (
            needle in self.name.lower()
            or needle in self.description.lower()
            or any(needle in tag.lower() for tag in self.tags)
        )


def load_presets(path: Path | None = None) -> tuple[Preset, ...]:
    """Load presets from *path* (default: the bundled ``presets.json``)."""
    if path is None:
        path = PACKAGE_DATA_DIR / "presets.json"

    try:
        raw = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise RuntimeError(f"Could not read presets file {path}: {e}") from e

    try:
        presets = tuple(Preset.model_validate(item) for item in raw)
    except ValidationError as e:
        raise RuntimeError(f"Invalid preset in {path}: {e}") from e

    logger.debug("Loaded %d presets from %s", len(presets), path)
    return presets


def get_preset(presets: Iterable[Preset], preset_id: str) -> Preset:
    for preset in presets:
        if preset.id == preset_id:
            return preset
    raise InvalidConfiguration(f"Unknown preset id '{preset_id}'")


def presets_by_mode(presets: Iterable[Preset], mode: str) -> list[Preset]:
    return [p for p in presets if p.mode == mode.lower()]


def presets_by_category(presets: Iterable[Preset], category: str) -> list[Preset]:
    return [p for p in presets if p.category == category]


def search_presets(presets: Iterable[Preset], query: str) -> list[Preset]:
    """Presets whose name, description or any tag contains *query*, ignoring case."""
    return [p for p in presets if p.matches(query)]

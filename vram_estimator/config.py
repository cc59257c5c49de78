"""Environment variable loading and configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def get_env(key: str, default: str | None = None) -> str:
    """Get an environment variable or raise if missing and no default."""
    value = os.getenv(key, default)
    if value is None:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


# Paths
PACKAGE_DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR = Path(get_env("VRAM_DATA_DIR", str(PACKAGE_DATA_DIR)))
EXPORT_DIR = Path(get_env("VRAM_EXPORT_DIR", str(_PROJECT_ROOT / "export")))

# Recommendation defaults
DEFAULT_UTILIZATION_RATE = float(get_env("VRAM_UTILIZATION_RATE", "0.9"))
MAX_MULTI_GPU = int(get_env("VRAM_MAX_MULTI_GPU", "8"))

# HuggingFace access token (optional, only needed for gated repos)
HF_TOKEN = os.getenv("HF_TOKEN")

"""
Global configuration for the Topic Trend Engine.

Stage tunables live in tuning.py (loaded from YAML). This module only
holds environment-driven settings and defaults.

Values can be set in the process environment or a local .env file.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# ── Paths ──
PROJECT_ROOT = Path(__file__).parent


def get_settings_path() -> Optional[Path]:
    """
    Resolve the YAML tuning file from the environment.

    Returns:
        Path to the settings file, or None when TOPIC_TRENDS_SETTINGS is unset.
    """
    value = os.getenv("TOPIC_TRENDS_SETTINGS", "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


# ── Tuning file ──
SETTINGS_PATH = get_settings_path()

# ── Parallelism ──
# Per-topic detection and impact work is fanned out over a thread pool.
MAX_WORKERS = max(_int_env("TOPIC_TRENDS_MAX_WORKERS", 4), 1)

# ── Event impact ──
# Percent change (absolute) at which an event counts as having an impact.
SIGNIFICANCE_THRESHOLD = _float_env("TOPIC_TRENDS_IMPACT_THRESHOLD", 10.0)

# ── Logging ──
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# plantnode/config_store.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Any

from .settings import (
    DEFAULT_DRY_RAW,
    DEFAULT_WET_RAW,
    DEFAULT_LOWER_PCT,
    DEFAULT_UPPER_PCT,
)

logger = logging.getLogger(__name__)

# Project root = one level up from the package
BASE_DIR = Path(__file__).resolve().parents[1]
CONFIG_DIR = BASE_DIR / "config"
CALIBRATION_FILE = CONFIG_DIR / "calibration.json"

DEFAULT_CALIBRATION: Dict[str, Any] = {
    "moisture": {
        "dry_raw": DEFAULT_DRY_RAW,
        "wet_raw": DEFAULT_WET_RAW,
        "lower_pct": DEFAULT_LOWER_PCT,
        "upper_pct": DEFAULT_UPPER_PCT,
    }
}


def _defaults() -> Dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_CALIBRATION))


def load_calibration() -> Dict[str, Any]:
    """
    Persisted sensor tuning merged over the defaults.

    A missing or corrupted file falls back to the defaults so the node can
    always boot.
    """
    data = _defaults()
    if not CALIBRATION_FILE.exists():
        return data
    try:
        with CALIBRATION_FILE.open("r", encoding="utf-8") as f:
            stored = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable %s: %s", CALIBRATION_FILE, e)
        return data
    if isinstance(stored, dict):
        data["moisture"].update(stored.get("moisture") or {})
    return data


def save_calibration(data: Dict[str, Any]) -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    tmp = CALIBRATION_FILE.with_suffix(CALIBRATION_FILE.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    tmp.replace(CALIBRATION_FILE)


def set_moisture_calibration(dry_raw: int, wet_raw: int) -> Dict[str, Any]:
    data = load_calibration()
    data["moisture"].update({"dry_raw": int(dry_raw), "wet_raw": int(wet_raw)})
    save_calibration(data)
    return data


def set_moisture_thresholds(lower_pct: int, upper_pct: int) -> Dict[str, Any]:
    data = load_calibration()
    data["moisture"].update({"lower_pct": int(lower_pct), "upper_pct": int(upper_pct)})
    save_calibration(data)
    return data

# plantnode/master_log.py
from __future__ import annotations

from pathlib import Path
from datetime import datetime
from typing import Any, Dict
import csv
import logging

logger = logging.getLogger(__name__)

# Paths for logging
ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "data"
MASTER_LOG_FILE = DATA_DIR / "master.csv"

# Master CSV schema: all event rows share these columns.
COLUMNS = [
    "timestamp",            # ISO 8601 string with timezone
    "event_type",           # e.g. pump_state, moisture_sample, upload, telemetry
    "source",               # module.function that logged the event

    # Pump-related fields
    "pump_state",           # idle / watering / soaking
    "on_seconds",
    "soak_seconds",

    # Sensor-related fields
    "raw",
    "moisture_pct",
    "dry_raw",
    "wet_raw",
    "lower_pct",
    "upper_pct",

    # Upload / telemetry fields
    "image_bytes",
    "path",                 # local snapshot file
    "url",
    "reason",
    "field",
    "ok",

    # Generic text field for extra info
    "note",
]


def log_event(event_type: str, **kwargs: Any) -> None:
    """
    Append one row to master.csv, writing the header first if the file is new.

    Keys outside COLUMNS are dropped and None values are left blank. The
    timestamp defaults to the current local time.
    """
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    new_file = not MASTER_LOG_FILE.exists()

    row: Dict[str, Any] = {k: v for k, v in kwargs.items() if v is not None}
    row.setdefault("timestamp", datetime.now().astimezone().isoformat())
    row["event_type"] = event_type

    with MASTER_LOG_FILE.open("a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=COLUMNS, restval="", extrasaction="ignore")
        if new_file:
            writer.writeheader()
        writer.writerow(row)


def record(event_type: str, **kwargs: Any) -> None:
    """
    log_event() for the control paths: a full disk or a locked file is
    reported through the logger and never interrupts watering or uploads.
    """
    try:
        log_event(event_type, **kwargs)
    except (OSError, csv.Error) as e:
        logger.warning("Failed to log %s to %s: %s", event_type, MASTER_LOG_FILE.name, e)

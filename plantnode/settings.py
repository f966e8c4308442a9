import os
from pathlib import Path
from typing import Dict, Optional

# GPIO chip index
CHIP = 0  # usually /dev/gpiochip0

# Output pin map (BCM numbering)
OUTPUT_PINS: Dict[str, int] = {
    "pump_relay": 23,   # HIGH = pump on
    "status_led": 24,
}

# Moisture sensor defaults (ADS1115, 12-bit scaled)
DEFAULT_ADDR     = 0x48
DEFAULT_GAIN     = 1        # ±4.096 V
DEFAULT_CHANNEL  = 0
DEFAULT_DRY_RAW  = 4095     # reading in air -> 0 %
DEFAULT_WET_RAW  = 1300     # reading in water -> 100 %
DEFAULT_LOWER_PCT = 30      # start watering below this
DEFAULT_UPPER_PCT = 35
DEFAULT_SAMPLING_S = 5.0

# Pump cycle defaults
DEFAULT_ON_S   = 1.0
DEFAULT_SOAK_S = 20.0

# Status LED
DEFAULT_BLINK_S = 0.5

# Control loop
TICK_SECONDS = 0.05
CAPTURE_INTERVAL_S = float(os.environ.get("PLANTNODE_CAPTURE_INTERVAL_S", "600"))

# Camera
CAMERA_INDEX = 0            # /dev/video0
CAMERA_RESOLUTION = (800, 600)
JPEG_QUALITY = 90
WARMUP_FRAMES = 5

# Local copy of every captured JPEG, one folder per day; unset disables it
SNAPSHOT_DIR: Optional[Path] = (
    Path(os.environ["PLANTNODE_SNAPSHOT_DIR"]) if os.environ.get("PLANTNODE_SNAPSHOT_DIR") else None
)

# Upload relay (Google Apps Script web app)
UPLOAD_URL = os.environ.get("PLANTNODE_UPLOAD_URL", "")
UPLOAD_TIMEOUT_S = 30.0

# Telemetry (ThingSpeak)
THINGSPEAK_HOST = os.environ.get("PLANTNODE_THINGSPEAK_HOST", "api.thingspeak.com")
THINGSPEAK_KEY = os.environ.get("PLANTNODE_THINGSPEAK_KEY", "")
FIELD_IMAGE_URL = 1
FIELD_MOISTURE = 2

# API
APP_HOST = "0.0.0.0"
APP_PORT = 8000

LOG_LEVEL = os.environ.get("PLANTNODE_LOG_LEVEL", "INFO")

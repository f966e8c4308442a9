# plantnode/sensors.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .settings import (
    DEFAULT_ADDR,
    DEFAULT_GAIN,
    DEFAULT_CHANNEL,
    DEFAULT_DRY_RAW,
    DEFAULT_WET_RAW,
    DEFAULT_LOWER_PCT,
    DEFAULT_UPPER_PCT,
    DEFAULT_SAMPLING_S,
)
from . import master_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MoistureReading:
    percentage: int
    timestamp: float


def _trunc_div(num: int, den: int) -> int:
    """Integer division rounding toward zero, like C."""
    q = abs(num) // abs(den)
    return q if (num >= 0) == (den > 0) else -q


def raw_to_percent(raw: int, dry_raw: int, wet_raw: int) -> int:
    """
    Map a raw ADC value from [dry_raw, wet_raw] onto [0, 100] and clamp.

    Works for either calibration direction; values past the calibration
    bounds saturate at 0 or 100.
    """
    pct = _trunc_div((int(raw) - dry_raw) * 100, wet_raw - dry_raw)
    return max(0, min(100, pct))


def open_adc_reader(
    addr: int = DEFAULT_ADDR,
    gain: int = DEFAULT_GAIN,
    channel: int = DEFAULT_CHANNEL,
) -> Callable[[], int]:
    """
    Return a zero-arg callable reading one ADS1115 channel.

    AnalogIn.value is left-aligned to 16 bits; it is shifted down to the
    12-bit scale the calibration constants are expressed in.
    """
    # board refuses to import on anything but a supported SBC
    import board
    import busio
    import adafruit_ads1x15.ads1115 as ADS
    from adafruit_ads1x15.analog_in import AnalogIn

    i2c = busio.I2C(board.SCL, board.SDA)
    ads = ADS.ADS1115(i2c, address=addr)
    ads.gain = gain
    chan = AnalogIn(ads, channel)

    def read() -> int:
        return chan.value >> 4

    return read


class MoistureSensor:
    """
    Debounced soil-moisture sensor.

    read_moisture() only touches the ADC once per sampling period; in
    between it returns the cached percentage so a single control tick
    never sees two different values.
    """

    def __init__(
        self,
        read_raw: Callable[[], int],
        sampling_period: float = DEFAULT_SAMPLING_S,
        dry_raw: int = DEFAULT_DRY_RAW,
        wet_raw: int = DEFAULT_WET_RAW,
        lower_pct: int = DEFAULT_LOWER_PCT,
        upper_pct: int = DEFAULT_UPPER_PCT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._read_raw = read_raw
        self._clock = clock
        self._lock = threading.Lock()
        self._sampling_period = 0.0
        self._last: Optional[MoistureReading] = None
        # 100 % until the first sample so power-up never triggers watering
        self._cached_pct = 100
        self._last_raw: Optional[int] = None

        self.set_sampling_period(sampling_period)
        self.set_calibration(dry_raw, wet_raw)
        self.set_thresholds(lower_pct, upper_pct)

    # ---------- configuration ----------

    def set_sampling_period(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("sampling period must be >= 0")
        with self._lock:
            self._sampling_period = float(seconds)

    @property
    def sampling_period(self) -> float:
        return self._sampling_period

    def set_calibration(self, dry_raw: int, wet_raw: int) -> None:
        if dry_raw == wet_raw:
            raise ValueError("dry_raw and wet_raw must differ")
        with self._lock:
            self._dry_raw = int(dry_raw)
            self._wet_raw = int(wet_raw)

    def get_calibration(self) -> tuple[int, int]:
        return self._dry_raw, self._wet_raw

    def set_thresholds(self, lower_pct: int, upper_pct: int) -> None:
        if not 0 <= lower_pct <= upper_pct <= 100:
            raise ValueError("thresholds must satisfy 0 <= lower <= upper <= 100")
        with self._lock:
            self._lower_pct = int(lower_pct)
            self._upper_pct = int(upper_pct)

    def set_lower_moisture(self, lower_pct: int) -> None:
        self.set_thresholds(lower_pct, self._upper_pct)

    def set_upper_moisture(self, upper_pct: int) -> None:
        self.set_thresholds(self._lower_pct, upper_pct)

    @property
    def lower_moisture(self) -> int:
        return self._lower_pct

    @property
    def upper_moisture(self) -> int:
        return self._upper_pct

    # ---------- reading ----------

    def read_moisture(self) -> int:
        with self._lock:
            now = self._clock()
            if self._last is not None and now - self._last.timestamp < self._sampling_period:
                return self._cached_pct

            raw = self._read_raw()
            pct = raw_to_percent(raw, self._dry_raw, self._wet_raw)
            self._last = MoistureReading(percentage=pct, timestamp=now)
            self._cached_pct = pct
            self._last_raw = raw

        logger.debug("Raw ADC: %d, mapped moisture: %d%%", raw, pct)
        return pct

    @property
    def last_reading(self) -> Optional[MoistureReading]:
        return self._last

    def is_moisture_low(self) -> bool:
        return self.read_moisture() < self._lower_pct

    def is_moisture_high(self) -> bool:
        return self.read_moisture() > self._upper_pct

    def snapshot(self) -> dict:
        """Current reading plus tuning, for the API and the event log."""
        pct = self.read_moisture()
        last = self._last
        return {
            "moisture_pct": pct,
            "raw": self._last_raw,
            "timestamp": last.timestamp if last else None,
            "dry_raw": self._dry_raw,
            "wet_raw": self._wet_raw,
            "lower_pct": self._lower_pct,
            "upper_pct": self._upper_pct,
            "sampling_period": self._sampling_period,
            "low": pct < self._lower_pct,
            "high": pct > self._upper_pct,
        }

    def log_sample(self) -> None:
        snap = self.snapshot()
        master_log.record(
            "moisture_sample",
            source="sensors.MoistureSensor.log_sample",
            raw=snap["raw"],
            moisture_pct=snap["moisture_pct"],
            dry_raw=snap["dry_raw"],
            wet_raw=snap["wet_raw"],
            lower_pct=snap["lower_pct"],
            upper_pct=snap["upper_pct"],
        )

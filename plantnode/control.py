# plantnode/control.py
from __future__ import annotations

import logging
import os
import queue
from collections import deque
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional

import requests

from .settings import (
    OUTPUT_PINS,
    TICK_SECONDS,
    CAPTURE_INTERVAL_S,
    UPLOAD_URL,
    UPLOAD_TIMEOUT_S,
    SNAPSHOT_DIR,
    THINGSPEAK_HOST,
    THINGSPEAK_KEY,
    FIELD_IMAGE_URL,
    FIELD_MOISTURE,
    DEFAULT_SAMPLING_S,
    DEFAULT_ON_S,
    DEFAULT_SOAK_S,
    LOG_LEVEL,
)
from .sensors import MoistureSensor
from .pumps import PumpController, PumpCycleConfig, PumpState
from .indicator import BlinkingLed
from .uploads import ImageSource, UploadFailure, UploadResult, UploadSuccess, upload_from_source
from . import config_store, master_log, telemetry

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class UploadOutcome:
    """What one capture job produced, handed back to the control loop."""
    result: Optional[UploadResult]
    moisture_pct: Optional[int]
    published: bool = False
    error: Optional[str] = None
    finished_at: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "moisture_pct": self.moisture_pct,
            "published": self.published,
            "finished_at": self.finished_at,
            "error": self.error,
        }
        if isinstance(self.result, UploadSuccess):
            out.update({"ok": True, "url": self.result.url})
        elif isinstance(self.result, UploadFailure):
            out.update({
                "ok": False,
                "reason": self.result.reason.value,
                "message": self.result.message,
                "raw_payload": self.result.raw_payload,
            })
        else:
            out["ok"] = False
        return out


class UploadWorker:
    """
    Runs the capture -> upload -> telemetry chain off the control loop.

    A single-slot queue feeds one daemon thread, so at most one upload is
    ever in flight; submit() refuses new work until the current job is done.
    Results come back through `results` for the loop to drain.
    """

    def __init__(
        self,
        source: ImageSource,
        endpoint: str,
        channel_key: str = THINGSPEAK_KEY,
        telemetry_host: str = THINGSPEAK_HOST,
        session: Optional[requests.Session] = None,
        timeout: float = UPLOAD_TIMEOUT_S,
        snapshot_dir: Optional[Path] = SNAPSHOT_DIR,
    ):
        self.source = source
        self.endpoint = endpoint
        self.channel_key = channel_key
        self.telemetry_host = telemetry_host
        self.session = session
        self.timeout = timeout
        self.snapshot_dir = snapshot_dir
        self.results: "queue.Queue[UploadOutcome]" = queue.Queue()
        self._jobs: "queue.Queue[Any]" = queue.Queue(maxsize=1)
        self._busy = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.last_outcome: Optional[UploadOutcome] = None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="plantnode-uploader", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        thread, self._thread = self._thread, None
        if thread is None or not thread.is_alive():
            return
        try:
            # waits for the slot while a job is still queued
            self._jobs.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Upload worker still busy after %ss, not waiting for it", timeout)
            return
        thread.join(timeout)

    def submit(self, moisture_pct: Optional[int] = None) -> bool:
        if not self._busy.acquire(blocking=False):
            logger.info("Upload still in flight, capture skipped")
            return False
        try:
            self._jobs.put_nowait(moisture_pct)
        except queue.Full:
            self._busy.release()
            return False
        return True

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            if job is _STOP:
                return
            try:
                outcome = self.run_job(job)
            except Exception as e:
                logger.exception("Upload job crashed")
                outcome = UploadOutcome(result=None, moisture_pct=job, error=str(e))
                self.last_outcome = outcome
            finally:
                self._busy.release()
            self.results.put(outcome)

    def run_job(self, moisture_pct: Optional[int]) -> UploadOutcome:
        """One capture/upload/publish pass. Never raises."""
        if not self.endpoint:
            logger.warning("PLANTNODE_UPLOAD_URL not set, skipping upload")
            outcome = UploadOutcome(result=None, moisture_pct=moisture_pct, error="no upload endpoint")
            self.last_outcome = outcome
            return outcome

        try:
            result = upload_from_source(
                self.endpoint,
                self.source,
                session=self.session,
                timeout=self.timeout,
                snapshot_dir=self.snapshot_dir,
            )
        except Exception as e:
            # camera faults include cv2.error, which is not a RuntimeError
            logger.error("Capture failed: %r", e)
            outcome = UploadOutcome(result=None, moisture_pct=moisture_pct, error=str(e))
            self.last_outcome = outcome
            return outcome

        published = False
        if self.channel_key:
            fields: Dict[int, Any] = {}
            if isinstance(result, UploadSuccess):
                fields[FIELD_IMAGE_URL] = result.url
            if moisture_pct is not None:
                fields[FIELD_MOISTURE] = moisture_pct
            if fields:
                published = telemetry.publish_fields(
                    fields, self.channel_key, host=self.telemetry_host, session=self.session
                )

        outcome = UploadOutcome(result=result, moisture_pct=moisture_pct, published=published)
        self.last_outcome = outcome
        return outcome


class PlantNode:
    """
    One control tick per call: moisture decides whether a watering cycle is
    requested, the pump advances its timers, the LED reflects the cycle and
    a capture is queued every `capture_interval` seconds.
    """

    def __init__(
        self,
        sensor: MoistureSensor,
        pump: PumpController,
        led: Optional[BlinkingLed] = None,
        uploader: Optional[UploadWorker] = None,
        capture_interval: float = CAPTURE_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sensor = sensor
        self.pump = pump
        self.led = led
        self.uploader = uploader
        self.capture_interval = capture_interval
        self._clock = clock
        self._last_capture: Optional[float] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_flag = threading.Event()
        self.outcomes: Deque[UploadOutcome] = deque(maxlen=20)

    def tick(self) -> Dict[str, Any]:
        moisture = self.sensor.read_moisture()
        started = False
        if moisture < self.sensor.lower_moisture and self.pump.is_idle:
            started = self.pump.start()

        state = self.pump.tick()

        if self.led is not None:
            if state is PumpState.IDLE:
                if self.led.enabled:
                    self.led.stop()
            else:
                self.led.start()
                self.led.update()

        queued = False
        if self.uploader is not None:
            now = self._clock()
            if self._last_capture is None or now - self._last_capture >= self.capture_interval:
                queued = self.uploader.submit(moisture)
                if queued:
                    self._last_capture = now
            self._drain_outcomes()

        return {
            "moisture_pct": moisture,
            "pump_state": state.value,
            "cycle_started": started,
            "capture_queued": queued,
        }

    def _drain_outcomes(self) -> None:
        while True:
            try:
                outcome = self.uploader.results.get_nowait()
            except queue.Empty:
                return
            self.outcomes.append(outcome)

    def capture_now(self) -> bool:
        if self.uploader is None:
            return False
        queued = self.uploader.submit(self.sensor.read_moisture())
        if queued:
            self._last_capture = self._clock()
        return queued

    def run_forever(self, tick_seconds: float = TICK_SECONDS) -> None:
        while not self._stop_flag.is_set():
            try:
                self.tick()
            except (OSError, RuntimeError) as e:
                # keep the pump timers alive through a transient I/O error
                logger.error("Control tick failed: %s", e)
            self._stop_flag.wait(tick_seconds)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        if self.uploader is not None:
            self.uploader.start()
        if os.environ.get("PLANTNODE_DISABLE_LOOP") == "1":
            logger.info("Control loop disabled via PLANTNODE_DISABLE_LOOP=1")
            return
        self._stop_flag.clear()
        self._thread = threading.Thread(target=self.run_forever, name="plantnode-control", daemon=True)
        self._thread.start()
        logger.info("Control loop started")

    def stop(self) -> None:
        self._stop_flag.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        self.pump.stop()
        if self.led is not None:
            self.led.stop()
        if self.uploader is not None:
            self.uploader.stop(timeout=UPLOAD_TIMEOUT_S)


def build_node() -> PlantNode:
    """Wire the real hardware from settings and the persisted calibration."""
    # hardware modules only load on the device
    from .gpio import DigitalOutput
    from .sensors import open_adc_reader
    from .camera import CameraImageSource

    tuning = config_store.load_calibration()["moisture"]
    sensor = MoistureSensor(
        open_adc_reader(),
        sampling_period=DEFAULT_SAMPLING_S,
        dry_raw=tuning["dry_raw"],
        wet_raw=tuning["wet_raw"],
        lower_pct=tuning["lower_pct"],
        upper_pct=tuning["upper_pct"],
    )
    pump = PumpController(
        DigitalOutput(OUTPUT_PINS["pump_relay"]),
        PumpCycleConfig(on_duration=DEFAULT_ON_S, soak_duration=DEFAULT_SOAK_S),
    )
    led = BlinkingLed(DigitalOutput(OUTPUT_PINS["status_led"]))
    uploader = UploadWorker(CameraImageSource(), UPLOAD_URL)

    master_log.record(
        "node_start",
        source="control.build_node",
        dry_raw=tuning["dry_raw"],
        wet_raw=tuning["wet_raw"],
        lower_pct=tuning["lower_pct"],
        upper_pct=tuning["upper_pct"],
        on_seconds=DEFAULT_ON_S,
        soak_seconds=DEFAULT_SOAK_S,
    )
    return PlantNode(sensor, pump, led=led, uploader=uploader)


def main() -> None:
    from .logs import setup_logging

    setup_logging(LOG_LEVEL)
    node = build_node()
    if node.uploader is not None:
        node.uploader.start()
    try:
        node.run_forever()
    except KeyboardInterrupt:
        logger.info("Stopping control loop...")
    finally:
        node.stop()


if __name__ == "__main__":
    main()

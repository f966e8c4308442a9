# plantnode/camera.py
from __future__ import annotations

import logging
import time
from typing import Optional, Tuple

import cv2

from .settings import CAMERA_INDEX, CAMERA_RESOLUTION, JPEG_QUALITY, WARMUP_FRAMES

logger = logging.getLogger(__name__)


class CameraImageSource:
    """
    JPEG snapshots from a V4L2 camera.

    acquire() hands out one encoded frame; release() gives it back. Only one
    frame is outstanding at a time, mirroring a single camera frame buffer.
    """

    def __init__(
        self,
        device_index: int = CAMERA_INDEX,
        resolution: Tuple[int, int] = CAMERA_RESOLUTION,
        jpeg_quality: int = JPEG_QUALITY,
        warmup_frames: int = WARMUP_FRAMES,
    ):
        self.device_index = device_index
        self.resolution = resolution
        self.jpeg_quality = jpeg_quality
        self.warmup_frames = warmup_frames
        self._cap: Optional[cv2.VideoCapture] = None
        self._outstanding: Optional[bytes] = None

    def _open(self) -> cv2.VideoCapture:
        if self._cap is not None and self._cap.isOpened():
            return self._cap
        cap = cv2.VideoCapture(self.device_index, cv2.CAP_V4L2)
        if not cap.isOpened():
            raise RuntimeError(f"Could not open /dev/video{self.device_index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        self._cap = cap
        return cap

    def acquire(self) -> Tuple[bytes, int]:
        if self._outstanding is not None:
            raise RuntimeError("previous frame was not released")
        cap = self._open()

        # auto exposure settles over the first frames
        for _ in range(self.warmup_frames):
            cap.read()

        ok, frame = cap.read()
        if not ok or frame is None:
            time.sleep(0.05)
            ok, frame = cap.read()
        if not ok or frame is None:
            raise RuntimeError("read() failed: no valid frame returned")

        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise RuntimeError("JPEG encoding failed")
        data = buf.tobytes()
        self._outstanding = data
        logger.debug("Captured %dx%d frame, %d bytes", frame.shape[1], frame.shape[0], len(data))
        return data, len(data)

    def release(self, data: bytes) -> None:
        if data is self._outstanding:
            self._outstanding = None

    def close(self) -> None:
        self._outstanding = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None

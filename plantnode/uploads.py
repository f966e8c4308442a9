# plantnode/uploads.py
"""
Image upload to Google Drive through a Google Apps Script web app.

The script answers a POST of the base64 image with a 302 to a one-shot
result URL; that URL returns {"status": "success", "url": ...} or
{"status": "error", "message": ...}. Every call is independent: one POST,
at most one redirect hop, no retry. Failures come back as values.
"""
from __future__ import annotations

import base64
import enum
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Tuple, Union

import requests
from requests.compat import urljoin

from .settings import UPLOAD_TIMEOUT_S
from . import master_log

logger = logging.getLogger(__name__)

REDIRECT_CODES = (301, 302)

_HEX = "0123456789ABCDEF"


def percent_encode(value: str) -> str:
    """
    Escape every byte of the UTF-8 encoding that is not an ASCII letter or
    digit as %XX (uppercase hex). '&' -> '%26', '=' -> '%3D', 'a1' -> 'a1'.
    """
    out = []
    for b in value.encode("utf-8"):
        if (48 <= b <= 57) or (65 <= b <= 90) or (97 <= b <= 122):
            out.append(chr(b))
        else:
            out.append("%" + _HEX[b >> 4] + _HEX[b & 0xF])
    return "".join(out)


class FailureReason(str, enum.Enum):
    TRANSIENT_NETWORK = "transient_network"    # connection failure, timeout
    PROTOCOL_ERROR = "protocol_error"          # unexpected status, extra redirect
    MALFORMED_RESPONSE = "malformed_response"  # bad JSON, missing field
    APPLICATION_ERROR = "application_error"    # server said status != success


@dataclass(frozen=True)
class UploadSuccess:
    url: str

    ok = True


@dataclass(frozen=True)
class UploadFailure:
    reason: FailureReason
    message: Optional[str] = None
    raw_payload: Optional[str] = None
    status_code: Optional[int] = None

    ok = False


UploadResult = Union[UploadSuccess, UploadFailure]


class ImageSource(Protocol):
    def acquire(self) -> Tuple[bytes, int]: ...

    def release(self, data: bytes) -> None: ...


def _parse_result(body: str) -> UploadResult:
    try:
        doc = json.loads(body)
    except ValueError as e:
        return UploadFailure(
            FailureReason.MALFORMED_RESPONSE,
            message=f"invalid JSON: {e}",
            raw_payload=body,
            status_code=200,
        )
    if not isinstance(doc, dict):
        return UploadFailure(
            FailureReason.MALFORMED_RESPONSE,
            message="response is not a JSON object",
            raw_payload=body,
            status_code=200,
        )

    message = doc.get("message")
    if message is not None:
        message = str(message)

    if "status" not in doc:
        return UploadFailure(
            FailureReason.MALFORMED_RESPONSE,
            message=message or "missing 'status' field",
            raw_payload=body,
            status_code=200,
        )
    if doc["status"] != "success":
        return UploadFailure(
            FailureReason.APPLICATION_ERROR,
            message=message,
            raw_payload=body,
            status_code=200,
        )

    url = doc.get("url")
    if not isinstance(url, str) or not url:
        return UploadFailure(
            FailureReason.MALFORMED_RESPONSE,
            message="missing 'url' field",
            raw_payload=body,
            status_code=200,
        )
    return UploadSuccess(percent_encode(url))


def upload_image(
    endpoint: str,
    image_bytes: bytes,
    length: int,
    session: Optional[requests.Session] = None,
    timeout: float = UPLOAD_TIMEOUT_S,
) -> UploadResult:
    """
    POST one image and return the percent-encoded Drive link on success.

    Only the first `length` bytes of `image_bytes` are sent, so a frame
    buffer larger than the JPEG it holds is fine.
    """
    if length < 0 or length > len(image_bytes):
        raise ValueError(f"length {length} outside buffer of {len(image_bytes)} bytes")

    encoded = base64.b64encode(memoryview(image_bytes)[:length]).decode("ascii")
    http = session or requests.Session()

    try:
        resp = http.post(
            endpoint,
            data=encoded,
            headers={"Content-Type": "text/plain"},
            timeout=timeout,
            allow_redirects=False,
        )
        try:
            if resp.status_code in REDIRECT_CODES:
                location = resp.headers.get("Location")
                if not location:
                    return UploadFailure(
                        FailureReason.PROTOCOL_ERROR,
                        message=f"HTTP {resp.status_code} without Location header",
                        raw_payload=resp.text,
                        status_code=resp.status_code,
                    )
                location = urljoin(endpoint, location)
                logger.info("Upload redirected to %s", location)
                resp.close()
                resp = http.get(location, timeout=timeout, allow_redirects=False)

            body = resp.text
            if resp.status_code in REDIRECT_CODES:
                return UploadFailure(
                    FailureReason.PROTOCOL_ERROR,
                    message="more than one redirect",
                    raw_payload=body,
                    status_code=resp.status_code,
                )
            if resp.status_code != 200:
                return UploadFailure(
                    FailureReason.PROTOCOL_ERROR,
                    message=f"HTTP {resp.status_code}",
                    raw_payload=body,
                    status_code=resp.status_code,
                )
            return _parse_result(body)
        finally:
            resp.close()
    except requests.RequestException as e:
        return UploadFailure(FailureReason.TRANSIENT_NETWORK, message=str(e))
    finally:
        if session is None:
            http.close()


def save_snapshot(
    directory: Path,
    image_bytes: bytes,
    length: int,
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Write the JPEG to directory/YYYY-MM-DD/snapshot_YYYYMMDD_HHMMSS_ffffff.jpg.

    Returns the path, or None if the write failed.
    """
    ts = now or datetime.now()
    day_dir = Path(directory) / ts.strftime("%Y-%m-%d")
    path = day_dir / f"snapshot_{ts.strftime('%Y%m%d_%H%M%S_%f')}.jpg"
    try:
        day_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(bytes(memoryview(image_bytes)[:length]))
    except OSError as e:
        logger.warning("Could not save snapshot to %s: %s", path, e)
        return None
    logger.debug("Snapshot saved: %s", path)
    return path


def latest_snapshot(directory: Path) -> Optional[Path]:
    """Newest file written by save_snapshot(), or None."""
    files = sorted(Path(directory).glob("*/snapshot_*.jpg"), key=lambda p: p.name)
    return files[-1] if files else None


def upload_from_source(
    endpoint: str,
    source: ImageSource,
    session: Optional[requests.Session] = None,
    timeout: float = UPLOAD_TIMEOUT_S,
    snapshot_dir: Optional[Path] = None,
) -> UploadResult:
    """
    Grab one frame from `source`, upload it, and hand the frame back,
    whatever the outcome. Exactly one acquire()/release() pair per call.

    With `snapshot_dir` set, the frame is also kept on disk before it goes
    out, so a failed upload still leaves the image behind.
    """
    data, length = source.acquire()
    snapshot = None
    try:
        if snapshot_dir is not None:
            snapshot = save_snapshot(snapshot_dir, data, length)
        result = upload_image(endpoint, data, length, session=session, timeout=timeout)
    finally:
        source.release(data)

    if isinstance(result, UploadSuccess):
        logger.info("Image uploaded (%d bytes): %s", length, result.url)
        master_log.record(
            "upload",
            source="uploads.upload_from_source",
            image_bytes=length,
            path=snapshot,
            url=result.url,
            ok=True,
        )
    else:
        logger.warning(
            "Image upload failed [%s]: %s | payload=%r",
            result.reason.value, result.message, result.raw_payload,
        )
        master_log.record(
            "upload",
            source="uploads.upload_from_source",
            image_bytes=length,
            path=snapshot,
            reason=result.reason.value,
            ok=False,
            note=result.message,
        )
    return result

# plantnode/telemetry.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import requests

from .settings import THINGSPEAK_HOST
from .uploads import percent_encode
from . import master_log

logger = logging.getLogger(__name__)


def build_update_url(fields: Mapping[int, Any], channel_key: str, host: str = THINGSPEAK_HOST) -> str:
    """
    http://{host}/update?api_key={key}&field{N}={value}... with every value
    percent-encoded.
    """
    if not fields:
        raise ValueError("at least one field is required")
    parts = [f"http://{host}/update?api_key={channel_key}"]
    for index in sorted(fields):
        if not 1 <= int(index) <= 8:
            raise ValueError(f"field index must be 1..8, got {index}")
        parts.append(f"field{int(index)}={percent_encode(str(fields[index]))}")
    return "&".join(parts)


def publish_fields(
    fields: Mapping[int, Any],
    channel_key: str,
    host: str = THINGSPEAK_HOST,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> bool:
    """
    Push one channel update. Fire-and-forget: any HTTP answer counts as
    delivered. Network errors and invalid fields are logged and reported
    as False.
    """
    http = session or requests
    try:
        url = build_update_url(fields, channel_key, host)
        resp = http.get(url, timeout=timeout)
    except (ValueError, requests.RequestException) as e:
        logger.error("Error on telemetry update: %s", e)
        master_log.record(
            "telemetry",
            source="telemetry.publish_fields",
            field=",".join(str(i) for i in sorted(fields)),
            ok=False,
            note=str(e),
        )
        return False

    try:
        body = resp.text.strip()
        if not 200 <= resp.status_code < 300:
            logger.warning("Telemetry update answered HTTP %d: %s", resp.status_code, body)
        elif body == "0":
            # ThingSpeak answers entry id 0 when it drops the update (rate limit, bad key)
            logger.warning("Telemetry update not stored (entry id 0)")
        else:
            logger.info("Telemetry update response: %d, entry %s", resp.status_code, body)
    finally:
        resp.close()

    master_log.record(
        "telemetry",
        source="telemetry.publish_fields",
        field=",".join(str(i) for i in sorted(fields)),
        ok=True,
        note=f"http={resp.status_code}",
    )
    return True


def publish(
    value: Any,
    channel_key: str,
    field_index: int,
    host: str = THINGSPEAK_HOST,
    session: Optional[requests.Session] = None,
) -> bool:
    """Send a single value (e.g. an uploaded image URL) to one channel field."""
    return publish_fields({field_index: value}, channel_key, host=host, session=session)

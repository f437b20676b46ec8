"""A logger that writes entries as Stackdriver structured JSON records."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Callable

from cloudkit.requestlog import Entry, Logger

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def format_latency(latency: timedelta) -> str:
    """Format a duration as seconds with nine decimals and an ``s`` suffix."""
    micros = (latency.days * 86400 + latency.seconds) * 1_000_000 + latency.microseconds
    sign = "-" if micros < 0 else ""
    seconds, frac = divmod(abs(micros), 1_000_000)
    return f"{sign}{seconds}.{frac:06d}000s"


def _timestamp(t: datetime) -> tuple[int, int]:
    delta = t.astimezone(timezone.utc) - _EPOCH
    return delta.days * 86400 + delta.seconds, delta.microseconds * 1000


def _encode(record: dict) -> str:
    text = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    for ch, escaped in _JSON_ESCAPES.items():
        text = text.replace(ch, escaped)
    return text + "\n"


class StackdriverLogger(Logger):
    """Writes one JSON record per entry, suitable for Stackdriver Logging.

    Concurrent calls produce whole, sequential records. Write failures are
    passed to ``on_error``.
    """

    def __init__(self, stream: BinaryIO, on_error: Callable[[Exception], object]) -> None:
        self._stream = stream
        self._on_error = on_error
        self._lock = threading.Lock()

    def log(self, entry: Entry) -> None:
        """Write the record for ``entry``."""
        seconds, nanos = _timestamp(entry.received_time + entry.latency)
        record = {
            "httpRequest": {
                "requestMethod": entry.request_method,
                "requestUrl": entry.request_url,
                "requestSize": str(entry.request_header_size + entry.request_body_size),
                "status": entry.status,
                "responseSize": str(entry.response_header_size + entry.response_body_size),
                "userAgent": entry.user_agent,
                "remoteIp": entry.remote_ip,
                "referer": entry.referer,
                "latency": format_latency(entry.latency),
            },
            "timestamp": {"seconds": seconds, "nanos": nanos},
        }
        data = _encode(record).encode("utf-8")
        try:
            with self._lock:
                self._stream.write(data)
        except Exception as err:
            self._on_error(err)
"""A logger that writes entries in the Combined Log Format."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import BinaryIO, Callable

from cloudkit.requestlog import Entry, Logger

_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    '"': '\\"',
    "\\": "\\\\",
}


def _quote(s: str) -> str:
    out = ['"']
    for ch in s:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif ord(ch) < 0x80:
            out.append(f"\\x{ord(ch):02x}")
        elif ord(ch) < 0x10000:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(f"\\U{ord(ch):08x}")
    out.append('"')
    return "".join(out)


def _format_time(t: datetime) -> str:
    if t.tzinfo is None or t.utcoffset() is None:
        t = t.astimezone()
    offset = t.utcoffset()
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, mins = divmod(abs(minutes), 60)
    return (
        f"{t.day:02d}/{_MONTHS[t.month - 1]}/{t.year:04d}:"
        f"{t.hour:02d}:{t.minute:02d}:{t.second:02d} {sign}{hours:02d}{mins:02d}"
    )


def format_entry(entry: Entry) -> str:
    """Format ``entry`` as one Combined Log Format line, newline included."""
    remote = entry.remote_ip or "-"
    return (
        f"{remote} - - [{_format_time(entry.received_time)}] "
        f'"{entry.request_method} {entry.request_url} {entry.proto}" '
        f"{entry.status} {entry.response_body_size} "
        f"{_quote(entry.referer)} {_quote(entry.user_agent)}\n"
    )


class NCSALogger(Logger):
    """Writes entries to a binary stream in the Combined Log Format.

    Concurrent calls produce whole, sequential lines. Write failures are
    passed to ``on_error``.
    """

    def __init__(self, stream: BinaryIO, on_error: Callable[[Exception], object]) -> None:
        self._stream = stream
        self._on_error = on_error
        self._lock = threading.Lock()

    def log(self, entry: Entry) -> None:
        """Write one line for ``entry``."""
        line = format_entry(entry).encode("utf-8")
        try:
            with self._lock:
                self._stream.write(line)
        except Exception as err:
            self._on_error(err)
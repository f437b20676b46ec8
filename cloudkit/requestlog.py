"""WSGI middleware that records information about each request it serves."""

from __future__ import annotations

import abc
import ipaddress
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import quote

_StartResponse = Callable[..., Any]
_DRAIN_CHUNK = 64 * 1024


@dataclass
class Entry:
    """Information about a completed HTTP request."""

    received_time: datetime
    request_method: str = ""
    request_url: str = ""
    request_header_size: int = 0
    request_body_size: int = 0
    user_agent: str = ""
    referer: str = ""
    proto: str = ""
    remote_ip: str = ""
    server_ip: str = ""
    status: int = 0
    response_header_size: int = 0
    response_body_size: int = 0
    latency: timedelta = timedelta(0)


class Logger(abc.ABC):
    """Receives entries; ``log`` must be safe to call from several threads.

    ``log`` must not keep the entry after it returns.
    """

    @abc.abstractmethod
    def log(self, entry: Entry) -> None:
        """Record one entry."""


def _header_size(headers: Iterable[tuple[str, str]]) -> int:
    size = 2  # the CRLF ending the header block
    for name, value in headers:
        size += len(f"{name}: {value}\r\n".encode("latin-1", "replace"))
    return size


def _request_headers(environ: dict) -> list[tuple[str, str]]:
    headers = []
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            if key == "HTTP_HOST":
                continue
            raw = key[5:]
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH") and value:
            raw = key
        else:
            continue
        name = "-".join(part.capitalize() for part in raw.split("_"))
        headers.append((name, str(value)))
    return headers


def _request_url(environ: dict) -> str:
    path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    url = quote(path, safe="/:@!$&'()*+,;=~", encoding="latin-1", errors="replace")
    url = url or "/"
    query = environ.get("QUERY_STRING", "")
    if query:
        url += "?" + query
    return url


def _strip_brackets(host: str) -> str:
    if host.startswith("[") and host.endswith("]"):
        return host[1:-1]
    return host


def _server_ip(environ: dict) -> str:
    name = _strip_brackets(environ.get("SERVER_NAME", ""))
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return ""
    return name


class _CountingInput:
    """Wraps ``wsgi.input`` and counts the bytes read through it."""

    def __init__(self, stream: Any) -> None:
        self._stream = stream
        self.count = 0
        self.error: BaseException | None = None
        self.eof = False

    def _track(self, method: str, size: int, *args: Any) -> Any:
        if self.error is not None:
            raise self.error
        try:
            data = getattr(self._stream, method)(*args)
        except Exception as err:
            self.error = err
            raise
        if isinstance(data, list):
            self.count += sum(len(line) for line in data)
            if not data:
                self.eof = True
        else:
            self.count += len(data)
            if not data and size != 0:
                self.eof = True
        return data

    def read(self, size: int = -1) -> bytes:
        if size is None:
            size = -1
        return self._track("read", size, size)

    def readline(self, size: int = -1) -> bytes:
        if size is None:
            size = -1
        return self._track("readline", size, size)

    def readlines(self, hint: int = -1) -> list[bytes]:
        return self._track("readlines", hint, hint)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            line = self.readline()
            if not line:
                return
            yield line

    def drain(self, content_length: int | None) -> None:
        """Read what the application left unread, up to ``content_length``."""
        if self._stream is None or self.error is not None or self.eof:
            return
        if content_length is None:
            return
        remaining = content_length - self.count
        try:
            while remaining > 0:
                chunk = self.read(min(remaining, _DRAIN_CHUNK))
                if not chunk:
                    break
                remaining -= len(chunk)
        except Exception:
            pass


class _ResponseStats:
    """Wraps ``start_response`` and records the status and sizes."""

    def __init__(self, start_response: _StartResponse) -> None:
        self._start_response = start_response
        self.code = 0
        self.header_size = 0
        self.body_size = 0

    def start_response(
        self, status: str, headers: list[tuple[str, str]], exc_info: Any = None
    ) -> Callable[[bytes], Any]:
        if exc_info is None:
            write = self._start_response(status, headers)
        else:
            write = self._start_response(status, headers, exc_info)
        if self.code == 0:
            self.code = int(status.split(None, 1)[0])
            self.header_size = _header_size(headers)

        def counting_write(data: bytes) -> Any:
            result = write(data)
            self.body_size += len(data)
            return result

        return counting_write

    def sizes(self) -> tuple[int, int]:
        if self.code == 0:
            return _header_size([]), 0
        return self.header_size, self.body_size


class _LoggedResponse:
    """The application's response; logs the entry once the server closes it."""

    def __init__(
        self, result: Iterable[bytes], stats: _ResponseStats, finish: Callable[[], None]
    ) -> None:
        self._result = result
        self._stats = stats
        self._finish = finish
        self._done = False

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._result:
            self._stats.body_size += len(chunk)
            yield chunk

    def close(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            self._finish()


def _content_length(environ: dict) -> int | None:
    try:
        return int(environ.get("CONTENT_LENGTH", ""))
    except ValueError:
        return None


class Handler:
    """Calls a WSGI application and hands an :class:`Entry` to a logger.

    The entry is logged when the response is closed. Any request body the
    application leaves unread is consumed, up to the declared length.
    """

    def __init__(self, logger: Logger, app: Callable[..., Iterable[bytes]]) -> None:
        self._logger = logger
        self._app = app

    def __call__(self, environ: dict, start_response: _StartResponse) -> Iterable[bytes]:
        start = time.monotonic()
        entry = Entry(
            received_time=datetime.now().astimezone(),
            request_method=environ.get("REQUEST_METHOD", ""),
            request_url=_request_url(environ),
            request_header_size=_header_size(_request_headers(environ)),
            user_agent=environ.get("HTTP_USER_AGENT", ""),
            referer=environ.get("HTTP_REFERER", ""),
            proto=environ.get("SERVER_PROTOCOL", ""),
            remote_ip=_strip_brackets(environ.get("REMOTE_ADDR", "")),
            server_ip=_server_ip(environ),
        )
        body = _CountingInput(environ.get("wsgi.input"))
        inner_environ = dict(environ)
        inner_environ["wsgi.input"] = body
        stats = _ResponseStats(start_response)
        result = self._app(inner_environ, stats.start_response)

        def finish() -> None:
            entry.latency = timedelta(seconds=time.monotonic() - start)
            body.drain(_content_length(environ))
            entry.request_body_size = body.count
            entry.status = stats.code or 200
            entry.response_header_size, entry.response_body_size = stats.sizes()
            self._logger.log(entry)

        return _LoggedResponse(result, stats, finish)
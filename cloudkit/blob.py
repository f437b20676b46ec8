"""Reading, writing and deleting objects in a bucket through a back end."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from cloudkit import driver
from cloudkit.driver import ErrorKind

_SNIFF_LEN = 512


class BlobError(Exception):
    """An error from a bucket operation, carrying the back end's error kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.GENERIC) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return self.message


def _wrap(err: Exception) -> BlobError:
    kind = getattr(err, "kind", ErrorKind.GENERIC)
    if not isinstance(kind, ErrorKind):
        kind = ErrorKind.GENERIC
    return BlobError(str(err), kind)


def is_not_exist(err: BaseException) -> bool:
    """Return whether ``err`` reports that an object does not exist."""
    return isinstance(err, BlobError) and err.kind is ErrorKind.NOT_FOUND


# ---------------------------------------------------------------------------
# Content sniffing (WHATWG MIME sniffing, as used for HTTP responses)

_WS = b"\t\n\x0c\r "
_Sig = Callable[[bytes, int], "str | None"]


def _html_sig(pattern: bytes) -> _Sig:
    def match(data: bytes, start: int) -> str | None:
        data = data[start:]
        if len(data) < len(pattern) + 1:
            return None
        for got, want in zip(data, pattern):
            if ord("A") <= want <= ord("Z"):
                got &= 0xDF
            if got != want:
                return None
        if data[len(pattern)] not in b" >":
            return None
        return "text/html; charset=utf-8"

    return match


def _masked_sig(
    mask: bytes, pattern: bytes, content_type: str, skip_ws: bool = False
) -> _Sig:
    def match(data: bytes, start: int) -> str | None:
        if skip_ws:
            data = data[start:]
        if len(data) < len(pattern):
            return None
        if all((d & m) == p for d, m, p in zip(data, mask, pattern)):
            return content_type
        return None

    return match


def _exact_sig(signature: bytes, content_type: str) -> _Sig:
    def match(data: bytes, start: int) -> str | None:
        return content_type if data.startswith(signature) else None

    return match


def _mp4_sig(data: bytes, start: int) -> str | None:
    if len(data) < 12:
        return None
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0:
        return None
    if data[4:8] != b"ftyp":
        return None
    for pos in range(8, box_size, 4):
        if pos == 12:
            continue
        if data[pos : pos + 3] == b"mp4":
            return "video/mp4"
    return None


_BINARY_BYTES = frozenset(
    [*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)]
)


def _text_sig(data: bytes, start: int) -> str | None:
    if any(b in _BINARY_BYTES for b in data[start:]):
        return None
    return "text/plain; charset=utf-8"


_SIGNATURES: list[_Sig] = [
    *(
        _html_sig(tag)
        for tag in (
            b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME",
            b"<H1", b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE",
            b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P", b"<!--",
        )
    ),
    _masked_sig(b"\xff" * 5, b"<?xml", "text/xml; charset=utf-8", skip_ws=True),
    _exact_sig(b"%PDF-", "application/pdf"),
    _exact_sig(b"%!PS-Adobe-", "application/postscript"),
    _masked_sig(b"\xff\xff\x00\x00", b"\xfe\xff\x00\x00", "text/plain; charset=utf-16be"),
    _masked_sig(b"\xff\xff\x00\x00", b"\xff\xfe\x00\x00", "text/plain; charset=utf-16le"),
    _masked_sig(b"\xff\xff\xff\x00", b"\xef\xbb\xbf\x00", "text/plain; charset=utf-8"),
    _exact_sig(b"GIF87a", "image/gif"),
    _exact_sig(b"GIF89a", "image/gif"),
    _exact_sig(b"\x89PNG\r\n\x1a\n", "image/png"),
    _exact_sig(b"\xff\xd8\xff", "image/jpeg"),
    _exact_sig(b"BM", "image/bmp"),
    _masked_sig(
        b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff\xff\xff",
        b"RIFF\x00\x00\x00\x00WEBPVP",
        "image/webp",
    ),
    _exact_sig(b"\x00\x00\x01\x00", "image/vnd.microsoft.icon"),
    _masked_sig(
        b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff",
        b"RIFF\x00\x00\x00\x00WAVE",
        "audio/wave",
    ),
    _masked_sig(
        b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff",
        b"FORM\x00\x00\x00\x00AIFF",
        "audio/aiff",
    ),
    _masked_sig(b"\xff\xff\xff\xff", b".snd", "audio/basic"),
    _masked_sig(b"\xff" * 5, b"OggS\x00", "application/ogg"),
    _masked_sig(b"\xff" * 8, b"MThd\x00\x00\x00\x06", "audio/midi"),
    _masked_sig(b"\xff" * 3, b"ID3", "audio/mpeg"),
    _masked_sig(
        b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff",
        b"RIFF\x00\x00\x00\x00AVI ",
        "video/avi",
    ),
    _exact_sig(b"\x1a\x45\xdf\xa3", "video/webm"),
    _exact_sig(b"Rar \x1a\x07\x00", "application/x-rar-compressed"),
    _exact_sig(b"PK\x03\x04", "application/zip"),
    _exact_sig(b"\x1f\x8b\x08", "application/x-gzip"),
    _mp4_sig,
    _text_sig,
]


def detect_content_type(data: bytes) -> str:
    """Guess the MIME type of ``data`` from at most its first 512 bytes.

    Falls back to ``application/octet-stream`` when nothing matches.
    """
    data = bytes(data[:_SNIFF_LEN])
    start = len(data) - len(data.lstrip(_WS))
    for signature in _SIGNATURES:
        content_type = signature(data, start)
        if content_type:
            return content_type
    return "application/octet-stream"


# ---------------------------------------------------------------------------
# Media type parsing and formatting

_TSPECIALS = frozenset('()<>@,;:\\"/[]?=')


def _is_token_char(c: str) -> bool:
    return " " < c < "\x7f" and c not in _TSPECIALS


def _is_token(s: str) -> bool:
    return bool(s) and all(_is_token_char(c) for c in s)


def _consume_token(v: str) -> tuple[str, str]:
    end = next((i for i, c in enumerate(v) if not _is_token_char(c)), len(v))
    return v[:end], v[end:]


def _consume_value(v: str) -> tuple[str, str]:
    if not v:
        return "", v
    if v[0] != '"':
        return _consume_token(v)
    out: list[str] = []
    chars = iter(enumerate(v[1:], 1))
    for i, c in chars:
        if c == '"':
            return "".join(out), v[i + 1 :]
        if c == "\\" and i + 1 < len(v) and v[i + 1] in _TSPECIALS:
            out.append(v[i + 1])
            next(chars)
            continue
        if c in "\r\n":
            return "", v
        out.append(c)
    return "", v


def _consume_media_param(v: str) -> tuple[str, str, str]:
    rest = v.lstrip()
    if not rest.startswith(";"):
        return "", "", v
    rest = rest[1:].lstrip()
    param, rest = _consume_token(rest)
    param = param.lower()
    if not param:
        return "", "", v
    rest = rest.lstrip()
    if not rest.startswith("="):
        return "", "", v
    rest = rest[1:].lstrip()
    value, after = _consume_value(rest)
    if value == "" and after == rest:
        return "", "", v
    return param, value, after


def _check_media_type(v: str) -> None:
    major, rest = _consume_token(v)
    if not major:
        raise ValueError("mime: no media type")
    if not rest:
        return
    if not rest.startswith("/"):
        raise ValueError("mime: expected slash after first token")
    sub, rest = _consume_token(rest[1:])
    if not sub:
        raise ValueError("mime: expected token after slash")
    if rest:
        raise ValueError("mime: unexpected content after media subtype")


def _parse_media_type(v: str) -> tuple[str, dict[str, str]]:
    base = v.split(";", 1)[0]
    media_type = base.strip().lower()
    _check_media_type(media_type)
    params: dict[str, str] = {}
    v = v[len(base) :]
    while v:
        v = v.lstrip()
        if not v:
            break
        key, value, rest = _consume_media_param(v)
        if not key:
            if rest.strip() == ";":
                break
            raise ValueError("mime: invalid media parameter")
        if key in params:
            raise ValueError("mime: duplicate parameter name")
        params[key] = value
        v = rest
    return media_type, params


def _format_media_type(media_type: str, params: dict[str, str]) -> str:
    major, slash, sub = media_type.partition("/")
    if slash:
        if not (_is_token(major) and _is_token(sub)):
            return ""
    elif not _is_token(media_type):
        return ""
    parts = [media_type.lower()]
    for key in sorted(params):
        if not _is_token(key):
            return ""
        value = params[key]
        if not _is_token(value):
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            value = f'"{escaped}"'
        parts.append(f"{key.lower()}={value}")
    return "; ".join(parts)


def _normalize_content_type(content_type: str) -> str:
    formatted = _format_media_type(*_parse_media_type(content_type))
    if not formatted:
        raise ValueError(f"mime: cannot format media type {content_type!r}")
    return formatted


# ---------------------------------------------------------------------------
# Public API


@dataclass(frozen=True)
class WriterOptions:
    """Options for :meth:`Bucket.new_writer`.

    ``buffer_size`` is the largest part written in one request (zero selects
    a default, negative disables buffering where supported). ``content_type``
    is the object's MIME type; when empty it is detected from the content.
    """

    buffer_size: int = 0
    content_type: str = ""


class Reader:
    """Reads an object; close it when done, or use it as a context manager."""

    def __init__(self, reader: driver.Reader) -> None:
        self._reader = reader

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left if ``size`` is negative."""
        return self._reader.read(size)

    def close(self) -> None:
        """Close the underlying reader."""
        self._reader.close()

    def content_type(self) -> str:
        """The MIME type of the object."""
        return self._reader.attrs().content_type

    def size(self) -> int:
        """The size of the whole object in bytes."""
        return self._reader.attrs().size

    def mod_time(self) -> datetime | None:
        """The modification time of the object, or None if unknown."""
        return self._reader.attrs().mod_time

    def __enter__(self) -> Reader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class Writer:
    """Writes an object; the object is complete only once closed.

    When no content type was given, up to 512 bytes are buffered to detect
    it before the back end's writer is opened.
    """

    def __init__(
        self,
        bucket: driver.Bucket,
        key: str,
        options: driver.WriterOptions | None,
        writer: driver.Writer | None = None,
    ) -> None:
        self._bucket = bucket
        self._key = key
        self._options = options
        self._writer = writer
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        """Write ``data``; failures may only surface from :meth:`close`."""
        if self._writer is not None:
            return self._writer.write(data)
        if not self._buffer and len(data) >= _SNIFF_LEN:
            return self._open(bytes(data))
        self._buffer.extend(data)
        if len(self._buffer) >= _SNIFF_LEN:
            self._open(bytes(self._buffer))
        return len(data)

    def close(self) -> None:
        """Flush buffered data and complete the write."""
        if self._writer is None:
            self._open(bytes(self._buffer))
        assert self._writer is not None
        self._writer.close()

    def _open(self, data: bytes) -> int:
        content_type = detect_content_type(data)
        self._writer = self._bucket.new_typed_writer(
            self._key, content_type, self._options
        )
        self._buffer = bytearray()
        self._options = None
        return self._writer.write(data)

    def __enter__(self) -> Writer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class Bucket:
    """Read, write and delete operations on the objects of a storage back end."""

    def __init__(self, driver: driver.Bucket) -> None:
        self._driver = driver

    def new_reader(self, key: str) -> Reader:
        """Open a reader over the whole object at ``key``."""
        return self.new_range_reader(key, 0, -1)

    def new_range_reader(self, key: str, offset: int, length: int) -> Reader:
        """Open a reader over at most ``length`` bytes starting at ``offset``.

        A ``length`` of zero reads only the metadata; a negative ``length``
        reads to the end. Back-end failures raise :class:`BlobError`; use
        :func:`is_not_exist` to detect a missing object.
        """
        if offset < 0:
            raise ValueError("new blob range reader: offset must be non-negative")
        try:
            reader = self._driver.new_range_reader(key, offset, length)
        except Exception as err:
            raise _wrap(err) from err
        return Reader(reader)

    def new_writer(self, key: str, options: WriterOptions | None = None) -> Writer:
        """Open a writer that creates or replaces the object at ``key``.

        An invalid ``options.content_type`` raises ValueError.
        """
        driver_options = None
        if options is not None:
            driver_options = driver.WriterOptions(buffer_size=options.buffer_size)
            if options.content_type:
                content_type = _normalize_content_type(options.content_type)
                writer = self._driver.new_typed_writer(
                    key, content_type, driver_options
                )
                return Writer(self._driver, key, None, writer)
        return Writer(self._driver, key, driver_options)

    def delete(self, key: str) -> None:
        """Delete the object at ``key``; a missing object raises :class:`BlobError`."""
        try:
            self._driver.delete(key)
        except Exception as err:
            raise _wrap(err) from err
"""A bucket back end that stores objects as files under a local directory.

Meant for local development, not production. Keys may only contain ASCII
letters, digits, slashes, periods, spaces, underscores and dashes. Repeated
slashes, a leading ``./`` or ``../``, and the sequence ``/./`` are rejected,
so that every key maps onto exactly one file inside the directory.
"""

from __future__ import annotations

import json
import os
import posixpath
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

from cloudkit import blob, driver
from cloudkit.driver import DriverError, ErrorKind, ObjectAttrs

ATTRS_EXT = ".attrs"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"
_ATTR_CONTENT_TYPE = "user.content_type"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FileBlobError(DriverError):
    """A failure concerning one object of a file bucket."""

    def __init__(
        self, relpath: str, message: str, kind: ErrorKind = ErrorKind.GENERIC
    ) -> None:
        super().__init__(message, kind)
        self.relpath = relpath

    def __str__(self) -> str:
        return f"fileblob: object {self.relpath}: {self.message}"


def _set_attrs(path: str, content_type: str) -> None:
    """Store the object's attributes as JSON beside it in ``path.attrs``."""
    with open(path + ATTRS_EXT, "w", encoding="utf-8") as f:
        json.dump({_ATTR_CONTENT_TYPE: content_type}, f)
        f.write("\n")


def _get_attrs(path: str) -> str:
    """Return the content type stored in ``path.attrs``, or the default if absent."""
    try:
        with open(path + ATTRS_EXT, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return _DEFAULT_CONTENT_TYPE
    if not isinstance(data, dict):
        raise ValueError("attributes file does not hold a JSON object")
    return str(data.get(_ATTR_CONTENT_TYPE, ""))


def _is_valid_char(c: str) -> bool:
    return (
        "A" <= c <= "Z"
        or "a" <= c <= "z"
        or "0" <= c <= "9"
        or c in "/. _-"
    )


def resolve_path(key: str) -> str:
    """Convert ``key`` into a relative filesystem path.

    Raises ValueError for keys that are not allowed.
    """
    for c in key:
        if not _is_valid_char(c):
            raise ValueError(f"contains invalid character {c!r}")
    if posixpath.normpath(key) != key:
        raise ValueError("not a clean slash-separated path")
    if key.startswith("/"):
        raise ValueError("starts with a slash")
    if key == ".":
        raise ValueError('invalid path "."')
    if key.startswith("../"):
        raise ValueError('starts with "../"')
    return os.path.join(*key.split("/"))


def new_bucket(directory: str | os.PathLike[str]) -> blob.Bucket:
    """Open a bucket that reads and writes files under an existing directory."""
    directory = os.fspath(directory)
    st = os.stat(directory)
    if not os.path.isdir(directory) or st is None:
        raise NotADirectoryError(f"open file bucket: {directory} is not a directory")
    return blob.Bucket(FileBucket(directory))


class _FileReader(driver.Reader):
    def __init__(
        self,
        size: int,
        mod_time: datetime,
        content_type: str,
        file: BinaryIO | None = None,
        limit: int | None = None,
    ) -> None:
        self._file = file
        self._remaining = limit
        self._attrs = ObjectAttrs(size=size, content_type=content_type, mod_time=mod_time)

    def read(self, size: int = -1) -> bytes:
        if self._file is None:
            return b""
        if self._remaining is None:
            return self._file.read(size)
        if size < 0 or size > self._remaining:
            size = self._remaining
        data = self._file.read(size)
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        if self._file is not None:
            self._file.close()

    def attrs(self) -> ObjectAttrs:
        return self._attrs


class _FileWriter(driver.Writer):
    def __init__(self, file: BinaryIO, path: str, content_type: str) -> None:
        self._file = file
        self._path = path
        self._content_type = content_type

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def close(self) -> None:
        try:
            _set_attrs(self._path, self._content_type)
        except OSError as err:
            raise DriverError(f"write blob attributes: {err}") from err
        finally:
            self._file.close()


class FileBucket(driver.Bucket):
    """Stores each object as a file under ``directory``."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = os.fspath(directory)

    def _path(self, action: str, key: str, reserved_msg: str) -> tuple[str, str]:
        try:
            relpath = resolve_path(key)
        except ValueError as err:
            raise DriverError(f"{action} file blob {key}: {err}") from err
        path = os.path.join(self.directory, relpath)
        if path.endswith(ATTRS_EXT):
            raise DriverError(
                f"{action} file blob {key}: extension {ATTRS_EXT!r} {reserved_msg}"
            )
        return relpath, path

    def new_range_reader(self, key: str, offset: int, length: int) -> driver.Reader:
        relpath, path = self._path("open", key, "cannot be directly read")
        try:
            st = os.stat(path)
        except FileNotFoundError as err:
            raise FileBlobError(relpath, str(err), ErrorKind.NOT_FOUND) from err
        except OSError as err:
            raise DriverError(f"open file blob {key}: {err}") from err
        try:
            content_type = _get_attrs(path)
        except (OSError, ValueError) as err:
            raise DriverError(f"open file attributes {key}: {err}") from err
        mod_time = _EPOCH + timedelta(microseconds=st.st_mtime_ns // 1000)
        if length == 0:
            return _FileReader(st.st_size, mod_time, content_type)
        try:
            f = open(path, "rb")
        except OSError as err:
            raise DriverError(f"open file blob {key}: {err}") from err
        if offset > 0:
            try:
                f.seek(offset)
            except OSError as err:
                f.close()
                raise DriverError(f"open file blob {key}: {err}") from err
        limit = length if length > 0 else None
        return _FileReader(st.st_size, mod_time, content_type, f, limit)

    def new_typed_writer(
        self, key: str, content_type: str, options: driver.WriterOptions | None
    ) -> driver.Writer:
        _, path = self._path("open", key, "is reserved and cannot be used")
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            f = open(path, "wb")
        except OSError as err:
            raise DriverError(f"open file blob {key}: {err}") from err
        return _FileWriter(f, path, content_type)

    def delete(self, key: str) -> None:
        relpath, path = self._path("delete", key, "cannot be directly deleted")
        try:
            os.remove(path)
        except FileNotFoundError as err:
            raise FileBlobError(relpath, str(err), ErrorKind.NOT_FOUND) from err
        except OSError as err:
            raise DriverError(f"delete file blob {key}: {err}") from err
        try:
            os.remove(path + ATTRS_EXT)
        except FileNotFoundError:
            pass
        except OSError as err:
            raise DriverError(f"delete file blob {key}: {err}") from err
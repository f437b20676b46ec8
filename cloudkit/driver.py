"""Interfaces that blob storage back ends implement for :mod:`cloudkit.blob`."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from datetime import datetime


class ErrorKind(enum.Enum):
    """The kind of failure a back end reports."""

    GENERIC = 0
    NOT_FOUND = 1


class DriverError(Exception):
    """An error raised by a back end that carries an :class:`ErrorKind`.

    Errors of any other type are treated as :attr:`ErrorKind.GENERIC`.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.GENERIC) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ObjectAttrs:
    """Metadata of a stored object."""

    size: int
    content_type: str
    mod_time: datetime | None = None


@dataclass(frozen=True)
class WriterOptions:
    """Options a back end may honour when writing.

    ``buffer_size`` is the largest part written in a single request, if the
    back end supports it; zero selects the back end's default.
    """

    buffer_size: int = 0


class Reader(abc.ABC):
    """Reads an object from a bucket."""

    @abc.abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left if ``size`` is negative."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the resources held by the reader."""

    @abc.abstractmethod
    def attrs(self) -> ObjectAttrs | None:
        """Return the object's metadata; the same values on every call."""


class Writer(abc.ABC):
    """Writes an object to a bucket."""

    @abc.abstractmethod
    def write(self, data: bytes) -> int:
        """Write ``data`` and return the number of bytes accepted."""

    @abc.abstractmethod
    def close(self) -> None:
        """Finish the write; the object becomes available afterwards."""


class Bucket(abc.ABC):
    """Read, write and delete operations on the objects of one bucket."""

    @abc.abstractmethod
    def new_range_reader(self, key: str, offset: int, length: int) -> Reader:
        """Open a reader over at most ``length`` bytes starting at ``offset``.

        A ``length`` of zero reads only the metadata; a negative ``length``
        reads to the end. A missing object raises a :class:`DriverError`
        whose kind is :attr:`ErrorKind.NOT_FOUND`.
        """

    @abc.abstractmethod
    def new_typed_writer(
        self, key: str, content_type: str, options: WriterOptions | None
    ) -> Writer:
        """Open a writer that creates or replaces the object at ``key``.

        ``content_type`` is the MIME type of the object and must not be empty.
        """

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Delete the object at ``key``.

        A missing object raises a :class:`DriverError` whose kind is
        :attr:`ErrorKind.NOT_FOUND`.
        """
"""Health check WSGI handlers."""

from __future__ import annotations

import abc
from typing import Callable, Iterable

_StartResponse = Callable[..., object]


class Checker(abc.ABC):
    """A resource whose health can be checked; safe to call from any thread."""

    @abc.abstractmethod
    def check_health(self) -> None:
        """Return if the resource is healthy; raise an exception otherwise."""


def _respond(start_response: _StartResponse, status: str, body: bytes) -> list[bytes]:
    start_response(
        status,
        [
            ("Content-Length", str(len(body))),
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
        ],
    )
    return [body]


class Handler:
    """A WSGI application reporting the aggregate health of its checkers.

    With no checkers it is always healthy.
    """

    def __init__(self) -> None:
        self._checkers: list[Checker] = []

    def add(self, checker: Checker) -> None:
        """Add a checker to the handler."""
        self._checkers.append(checker)

    def __call__(self, environ: dict, start_response: _StartResponse) -> Iterable[bytes]:
        for checker in self._checkers:
            try:
                checker.check_health()
            except Exception:
                return _respond(start_response, "500 Internal Server Error", b"unhealthy")
        return _respond(start_response, "200 OK", b"ok")


def handle_live(environ: dict, start_response: _StartResponse) -> Iterable[bytes]:
    """A WSGI application answering liveness checks with 200 at once."""
    return _respond(start_response, "200 OK", b"ok")
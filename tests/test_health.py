import threading
from wsgiref.util import setup_testing_defaults

from cloudkit.health import Checker, Handler, handle_live


class _Checker(Checker):
    def __init__(self, err=None):
        self._lock = threading.Lock()
        self._err = err

    def set(self, err):
        with self._lock:
            self._err = err

    def check_health(self):
        with self._lock:
            if self._err is not None:
                raise self._err


def _environ():
    environ = {}
    setup_testing_defaults(environ)
    return environ


def _call(app):
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(app(_environ(), start_response))
    return captured["status"], captured["headers"], body


def test_new_handler_is_healthy():
    status, headers, body = _call(Handler())
    assert status == "200 OK"
    assert body == b"ok"
    assert headers["Content-Length"] == "2"
    assert headers["Content-Type"] == "text/plain; charset=utf-8"
    assert headers["X-Content-Type-Options"] == "nosniff"


def test_checker_transitions():
    c1 = _Checker(RuntimeError("checker 1 down"))
    c2 = _Checker(RuntimeError("checker 2 down"))
    h = Handler()
    h.add(c1)
    h.add(c2)

    status, headers, body = _call(h)
    assert status.startswith("500")
    assert body == b"unhealthy"
    assert headers["Content-Length"] == "9"

    c1.set(None)
    status, _, _ = _call(h)
    assert status.startswith("500")

    c2.set(None)
    status, _, body = _call(h)
    assert status == "200 OK"
    assert body == b"ok"


def test_handle_live():
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(handle_live(_environ(), start_response))
    assert captured["status"] == "200 OK"
    assert body == b"ok"
    assert captured["headers"]["Content-Length"] == "2"
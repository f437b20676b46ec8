"""A health check that waits for a SQL database to answer a ping."""

from __future__ import annotations

import threading
from typing import Callable

from cloudkit.health import Checker

_INITIAL_WAIT = 0.25
_MAX_WAIT = 30.0


class SQLChecker(Checker):
    """Pings a database in the background until a ping succeeds or it is stopped.

    ``ping`` is called with no arguments and must raise if the database is
    unreachable. Waits between failed pings start at 250 ms and double up to
    30 seconds.
    """

    def __init__(self, ping: Callable[[], object]) -> None:
        self._ping = ping
        self._healthy = False
        self._cancel = threading.Event()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        wait = _INITIAL_WAIT
        try:
            while not self._cancel.is_set():
                try:
                    self._ping()
                except Exception:
                    pass
                else:
                    self._healthy = True
                    return
                if self._cancel.wait(wait):
                    return
                wait = min(wait * 2, _MAX_WAIT)
        finally:
            self._stopped.set()

    def check_health(self) -> None:
        """Return once a ping has succeeded; raise RuntimeError otherwise."""
        if not self._stopped.is_set():
            raise RuntimeError("still pinging database")
        if not self._healthy:
            raise RuntimeError("ping stopped before becoming healthy")

    def stop(self) -> None:
        """Stop any ongoing ping and wait for the pinging to finish."""
        self._cancel.set()
        self._stopped.wait()
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from jobworker.errors import CancellationError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Abort signal scoped to one job attempt.

    Set from another thread (deadline timer, signal handler); observed by the
    step executor between spawns and while waiting on the child process.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout elapses. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self._reason or "cancelled")


@contextmanager
def deadline(minutes: Optional[float], token: Optional[CancellationToken] = None) -> Iterator[CancellationToken]:
    """
    Arm a timer that cancels `token` after `minutes`.

    The timer is always disarmed on exit. `minutes` of None or <= 0 yields a
    token that only fires if cancelled explicitly.
    """
    token = token or CancellationToken()
    timer: Optional[threading.Timer] = None

    if minutes is not None and minutes > 0:
        seconds = minutes * 60.0

        def _expire() -> None:
            logger.warning(f"Job deadline of {minutes:g} minute(s) exceeded, cancelling")
            token.cancel(f"Job timed out after {minutes:g} minute(s)")

        timer = threading.Timer(seconds, _expire)
        timer.daemon = True
        timer.start()

    try:
        yield token
    finally:
        if timer is not None:
            timer.cancel()

"""Poll-mode failover: keep trying to take over a slot held by another instance."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

from ..errors import SlotInUse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollCoordinator(Generic[T]):
    """Retries ``acquire`` while the slot is in use elsewhere.

    ``wait(seconds)`` must return True when the wait was interrupted by a
    shutdown request (``threading.Event.wait`` semantics). ``poll_duration`` of
    None polls until shutdown.
    """

    def __init__(
        self,
        acquire: Callable[[], T],
        *,
        poll_interval: float = 1.0,
        poll_duration: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if poll_duration is not None and poll_duration < 0:
            raise ValueError("poll_duration must not be negative")
        self._acquire = acquire
        self._poll_interval = poll_interval
        self._poll_duration = poll_duration
        self._clock = clock
        self._wait = wait or threading.Event().wait
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    def run(self) -> Optional[T]:
        """Return the acquired resource, or None if shutdown interrupted polling."""
        started = self._clock()
        while True:
            self._attempts += 1
            try:
                acquired = self._acquire()
            except SlotInUse as exc:
                remaining = self._remaining(started)
                if remaining is not None and remaining <= 0:
                    logger.error(
                        "slot still in use after %.1fs of polling (%d attempts)",
                        self._poll_duration,
                        self._attempts,
                    )
                    raise
                logger.info("%s - polling again", exc)
                delay = self._poll_interval
                if remaining is not None:
                    delay = min(delay, remaining)
                if self._wait(delay):
                    logger.info("shutdown requested while polling for the slot")
                    return None
                continue
            if self._attempts > 1:
                logger.info("slot acquired after %d attempts", self._attempts)
            return acquired

    def _remaining(self, started: float) -> Optional[float]:
        if self._poll_duration is None:
            return None
        return self._poll_duration - (self._clock() - started)


__all__ = ["PollCoordinator"]

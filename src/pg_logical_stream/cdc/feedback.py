"""Standby status updates: when to send them and what they carry."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .positions import FeedbackSnapshot, SessionState
from .protocol import ReplicationChannel, StatusUpdate

logger = logging.getLogger(__name__)

MIN_WAIT_SECONDS = 0.3
MAX_WAIT_SECONDS = 60.0


class FeedbackSender:
    """Sends status updates on a timer, on target changes and on request.

    ``status_interval`` forces an update that often regardless of progress (0
    disables it). ``feedback_interval`` is the longest a changed confirm target
    may wait before being reported.
    """

    def __init__(
        self,
        channel: ReplicationChannel,
        state: SessionState,
        *,
        status_interval: float = 5.0,
        feedback_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if status_interval < 0:
            raise ValueError("status_interval must not be negative")
        if feedback_interval < 0:
            raise ValueError("feedback_interval must not be negative")
        self._channel = channel
        self._state = state
        self._status_interval = status_interval
        self._feedback_interval = feedback_interval
        self._clock = clock
        self._sent = 0

    @property
    def updates_sent(self) -> int:
        return self._sent

    def is_due(self, now: float, snapshot: Optional[FeedbackSnapshot] = None) -> bool:
        snap = snapshot or self._state.snapshot()
        if snap.feedback_requested:
            return True
        elapsed = None if snap.last_sent_at is None else now - snap.last_sent_at
        if snap.confirm_target != snap.last_sent_target and (
            elapsed is None or elapsed >= self._feedback_interval
        ):
            return True
        if self._status_interval > 0 and (
            elapsed is None or elapsed >= self._status_interval
        ):
            return True
        return False

    def timeout(self, now: float) -> float:
        """Seconds the session loop may block before the next update is due."""
        snap = self._state.snapshot()
        if snap.feedback_requested:
            return 0.0
        elapsed = 0.0 if snap.last_sent_at is None else now - snap.last_sent_at
        wait = MAX_WAIT_SECONDS
        if snap.confirm_target != snap.last_sent_target:
            wait = min(wait, self._feedback_interval - elapsed)
        if self._status_interval > 0:
            wait = min(wait, self._status_interval - elapsed)
        return min(max(wait, MIN_WAIT_SECONDS), MAX_WAIT_SECONDS)

    def maybe_send(self, now: Optional[float] = None) -> bool:
        """Send an update if one is due; returns True when something was sent."""
        current = self._clock() if now is None else now
        snapshot = self._state.snapshot()
        if not self.is_due(current, snapshot):
            return False
        self._send(snapshot, current)
        return True

    def send_now(self) -> None:
        """Send an update unconditionally with the current positions."""
        self._send(self._state.snapshot(), self._clock())

    def _send(self, snapshot: FeedbackSnapshot, now: float) -> None:
        update = StatusUpdate(
            write_lsn=max(snapshot.received_lsn, snapshot.confirm_target),
            flush_lsn=snapshot.confirm_target,
        )
        logger.debug("Sending feedback: %s", update.describe())
        self._channel.send_status(update)
        self._state.mark_sent(snapshot, now)
        self._sent += 1


__all__ = ["FeedbackSender", "MAX_WAIT_SECONDS", "MIN_WAIT_SECONDS"]

"""Stream positions (LSNs) and the shared, lock-guarded session state."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Optional

from ..errors import MalformedControlCommand

INVALID_LSN = 0

_HALF_MASK = 0xFFFFFFFF
_LSN_PATTERN = re.compile(r"^([0-9A-Fa-f]{1,8})/([0-9A-Fa-f]{1,8})$")


def lsn_to_str(value: int) -> str:
    """Render a 64-bit LSN in PostgreSQL's ``HI/LO`` hexadecimal form."""
    if value < 0 or value >> 64:
        raise ValueError(f"LSN out of range: {value}")
    return f"{value >> 32:X}/{value & _HALF_MASK:X}"


def str_to_lsn(text: str) -> int:
    """Parse ``HI/LO`` hexadecimal text into an integer LSN."""
    match = _LSN_PATTERN.match(text.strip())
    if match is None:
        raise ValueError(f"invalid LSN: {text!r}")
    upper, lower = match.groups()
    return (int(upper, 16) << 32) | int(lower, 16)


class AckMode(str, Enum):
    """How the confirm target advances."""

    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class FeedbackSnapshot:
    """Consistent view of the fields the feedback sender needs."""

    received_lsn: int
    confirm_target: int
    last_sent_target: int
    last_sent_at: Optional[float]
    feedback_requested: bool
    request_seq: int


class SessionState:
    """Positions and flags shared by the stream loop, control listener and signals.

    Position mutations happen under a single lock. The confirm target is never
    ahead of the received position and never moves backwards. The shutdown
    flag takes no lock so signal handlers can set it.
    """

    def __init__(
        self,
        *,
        ack_mode: AckMode = AckMode.MANUAL,
        start_lsn: int = INVALID_LSN,
    ) -> None:
        self.ack_mode = ack_mode
        self._lock = Lock()
        self._received_lsn = start_lsn
        self._confirm_target = INVALID_LSN
        self._last_sent_target = INVALID_LSN
        self._last_sent_at: Optional[float] = None
        self._requested_seq = 0
        self._served_seq = 0
        self._control_closed = False
        self._control_error: Optional[str] = None
        self._shutdown_reason: Optional[str] = None
        self._shutdown = False

    # ------------------------------------------------------------------ reads
    @property
    def received_lsn(self) -> int:
        with self._lock:
            return self._received_lsn

    @property
    def confirm_target(self) -> int:
        with self._lock:
            return self._confirm_target

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown

    @property
    def shutdown_reason(self) -> Optional[str]:
        return self._shutdown_reason

    @property
    def control_closed(self) -> bool:
        with self._lock:
            return self._control_closed

    @property
    def control_error(self) -> Optional[str]:
        """Why command input failed, or None if it simply reached EOF."""
        with self._lock:
            return self._control_error

    def snapshot(self) -> FeedbackSnapshot:
        with self._lock:
            return FeedbackSnapshot(
                received_lsn=self._received_lsn,
                confirm_target=self._confirm_target,
                last_sent_target=self._last_sent_target,
                last_sent_at=self._last_sent_at,
                feedback_requested=self._requested_seq != self._served_seq,
                request_seq=self._requested_seq,
            )

    # -------------------------------------------------------------- mutations
    def record_received(self, end_lsn: int) -> int:
        """Advance the received position; in automatic mode the target follows."""
        with self._lock:
            if end_lsn > self._received_lsn:
                self._received_lsn = end_lsn
            if self.ack_mode is AckMode.AUTO:
                self._confirm_target = max(self._confirm_target, self._received_lsn)
            return self._received_lsn

    def request_ack(self, lsn: int) -> bool:
        """Move the confirm target to ``lsn`` and ask for an immediate status update.

        Returns False when ``lsn`` is not ahead of the current target (no-op).
        """
        with self._lock:
            if lsn > self._received_lsn:
                raise MalformedControlCommand(
                    f"acknowledge position {lsn_to_str(lsn)} is ahead of "
                    f"received position {lsn_to_str(self._received_lsn)}"
                )
            if lsn <= self._confirm_target:
                return False
            self._confirm_target = lsn
            self._requested_seq += 1
            return True

    def request_feedback(self) -> None:
        with self._lock:
            self._requested_seq += 1

    def request_shutdown(self, reason: str) -> None:
        """Safe to call from a signal handler: takes no lock."""
        if self._shutdown_reason is None:
            self._shutdown_reason = reason
        self._shutdown = True

    def mark_control_closed(self, error: Optional[str] = None) -> None:
        with self._lock:
            self._control_closed = True
            if error is not None and self._control_error is None:
                self._control_error = error

    def mark_sent(self, snapshot: FeedbackSnapshot, sent_at: float) -> None:
        """Record a status update built from ``snapshot``.

        Requests that arrived after the snapshot was taken stay pending.
        """
        with self._lock:
            self._last_sent_target = snapshot.confirm_target
            self._last_sent_at = sent_at
            if snapshot.request_seq > self._served_seq:
                self._served_seq = snapshot.request_seq


__all__ = [
    "AckMode",
    "FeedbackSnapshot",
    "INVALID_LSN",
    "SessionState",
    "lsn_to_str",
    "str_to_lsn",
]

"""Session loop: read the replication stream, frame records, send feedback.

The loop runs on the main thread and is the only user of the replication
channel and the data output. The control listener and signal handlers talk to
it through ``SessionState`` and wake it up through a ``Waker``.
"""

from __future__ import annotations

import logging
import select
import time
from typing import Callable, Optional

from .control import closed_channel_error
from .feedback import FeedbackSender
from .framing import OutputFramer
from .positions import SessionState, lsn_to_str
from .protocol import PrimaryKeepalive, ReplicationChannel, WireMessage, XLogData
from .records import ChangeDecoder
from .waker import Waker

logger = logging.getLogger(__name__)

# Messages handled between two feedback checks while the server keeps sending.
MAX_BATCH = 1000


class ReplicationSession:
    """Single-owner loop over one replication channel."""

    def __init__(
        self,
        channel: ReplicationChannel,
        state: SessionState,
        framer: OutputFramer,
        decoder: ChangeDecoder,
        feedback: FeedbackSender,
        *,
        waker: Optional[Waker] = None,
        clock: Callable[[], float] = time.monotonic,
        select_fn: Callable = select.select,
        max_batch: int = MAX_BATCH,
    ) -> None:
        self._channel = channel
        self._state = state
        self._framer = framer
        self._decoder = decoder
        self._feedback = feedback
        self._waker = waker
        self._clock = clock
        self._select = select_fn
        self._max_batch = max_batch
        self._records = 0
        self._keepalives = 0

    @property
    def records_received(self) -> int:
        return self._records

    @property
    def keepalives_received(self) -> int:
        return self._keepalives

    def run(self) -> None:
        """Stream until shutdown is requested.

        Returns normally after a graceful shutdown (final status update sent).
        Raises ``ControlChannelClosed`` when command input ends without ``q``
        (``ControlChannelError`` when it could not be read);
        ``StreamClosed``, ``ProtocolError`` and ``OutputError`` propagate from
        the channel, the decoder and the framer.
        """
        logger.info(
            "streaming started (ack mode %s, start position %s)",
            self._state.ack_mode.value,
            lsn_to_str(self._state.received_lsn),
        )
        while True:
            if self._state.shutdown_requested:
                self._finish()
                return
            if self._state.control_closed:
                self._framer.flush()
                raise closed_channel_error(self._state)

            idle = self._drain()
            self._feedback.maybe_send(self._clock())
            if idle and not self._state.shutdown_requested:
                self._framer.flush()
                self._wait(self._feedback.timeout(self._clock()))

    def _drain(self) -> bool:
        """Handle every buffered message; True once the channel has none left."""
        for _ in range(self._max_batch):
            message = self._channel.read_message()
            if message is None:
                return True
            self._handle(message)
            if self._state.shutdown_requested:
                return False
        return False

    def _handle(self, message: WireMessage) -> None:
        if isinstance(message, PrimaryKeepalive):
            self._keepalives += 1
            logger.debug(
                "keepalive: server end %s%s",
                lsn_to_str(message.wal_end),
                ", reply requested" if message.reply_requested else "",
            )
            if message.reply_requested:
                self._state.request_feedback()
            return
        self._handle_data(message)

    def _handle_data(self, message: XLogData) -> None:
        record = self._decoder.decode(message.payload)
        self._state.record_received(message.end_lsn)
        self._framer.write(message.data_start, message.payload, record)
        self._records += 1

    def _wait(self, timeout: float) -> None:
        watched = [self._channel]
        if self._waker is not None:
            watched.append(self._waker)
        readable, _, _ = self._select(watched, [], [], timeout)
        if self._waker is not None and self._waker in readable:
            self._waker.drain()

    def _finish(self) -> None:
        self._framer.flush()
        self._feedback.send_now()
        logger.info(
            "streaming stopped (%s): received %s, confirmed %s",
            self._state.shutdown_reason or "shutdown",
            lsn_to_str(self._state.received_lsn),
            lsn_to_str(self._state.confirm_target),
        )


__all__ = ["ReplicationSession"]

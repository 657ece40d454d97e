"""Replication wire messages and the channel they travel over.

In COPY-both mode the server sends two kinds of messages: XLogData carrying a
plugin payload, and primary keepalives carrying the server's end of WAL. The
client answers with standby status updates. ``ReplicationChannel`` is the seam
between the session loop and the driver; ``Psycopg2ReplicationChannel`` is the
production implementation, tests substitute in-memory channels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Union

import psycopg2

from ..errors import ProtocolError, StreamClosed
from .positions import INVALID_LSN, lsn_to_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XLogData:
    """Data message: ``payload`` starts at ``data_start``; ``wal_end`` is the server's end."""

    data_start: int
    wal_end: int
    payload: bytes = field(repr=False)
    send_time: Optional[datetime] = None

    @property
    def end_lsn(self) -> int:
        return max(self.data_start, self.wal_end)


@dataclass(frozen=True)
class PrimaryKeepalive:
    """Keepalive carrying the server's current end of WAL."""

    wal_end: int
    reply_requested: bool = False


@dataclass(frozen=True)
class StatusUpdate:
    """Standby status update sent back to the server."""

    write_lsn: int
    flush_lsn: int
    apply_lsn: int = INVALID_LSN
    reply_requested: bool = False

    def describe(self) -> str:
        return (
            f"write_LSN={lsn_to_str(self.write_lsn)} "
            f"flush_LSN={lsn_to_str(self.flush_lsn)}"
        )


WireMessage = Union[XLogData, PrimaryKeepalive]


class ReplicationChannel(Protocol):
    """Bidirectional replication stream owned by a single session loop."""

    def fileno(self) -> int: ...

    def read_message(self) -> Optional[WireMessage]:
        """Return the next message without blocking, or None if none is buffered."""
        ...

    def send_status(self, update: StatusUpdate) -> None: ...

    def close(self) -> None: ...


class Psycopg2ReplicationChannel:
    """Channel backed by a psycopg2 ``ReplicationCursor`` in COPY-both mode.

    psycopg2 parses the COPY framing itself and answers keepalives that request
    a reply. A keepalive is surfaced here whenever the cursor's ``wal_end``
    advances without a data message.
    """

    def __init__(self, cursor) -> None:
        self._cursor = cursor
        self._last_wal_end = INVALID_LSN

    @property
    def connection(self):
        return self._cursor.connection

    def fileno(self) -> int:
        return self._cursor.fileno()

    def read_message(self) -> Optional[WireMessage]:
        try:
            message = self._cursor.read_message()
        except psycopg2.InterfaceError as exc:
            raise StreamClosed(f"replication stream closed: {exc}") from exc
        except psycopg2.DatabaseError as exc:
            if self.connection.closed or isinstance(exc, psycopg2.OperationalError):
                raise StreamClosed(f"replication stream closed: {exc}") from exc
            raise ProtocolError(f"failed to receive replication data: {exc}") from exc

        if message is None:
            if self.connection.closed:
                raise StreamClosed("replication stream closed by server")
            wal_end = int(self._cursor.wal_end or INVALID_LSN)
            if wal_end > self._last_wal_end:
                self._last_wal_end = wal_end
                return PrimaryKeepalive(wal_end=wal_end)
            return None

        wal_end = int(message.wal_end)
        if wal_end > self._last_wal_end:
            self._last_wal_end = wal_end
        payload = message.payload
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return XLogData(
            data_start=int(message.data_start),
            wal_end=wal_end,
            payload=bytes(payload),
            send_time=message.send_time,
        )

    def send_status(self, update: StatusUpdate) -> None:
        try:
            self._cursor.send_feedback(
                write_lsn=update.write_lsn,
                flush_lsn=update.flush_lsn,
                apply_lsn=update.apply_lsn,
                reply=update.reply_requested,
                force=True,
            )
        except (psycopg2.InterfaceError, psycopg2.OperationalError) as exc:
            raise StreamClosed(
                f"failed to send a standby status update: {exc}"
            ) from exc
        except psycopg2.DatabaseError as exc:
            raise ProtocolError(
                f"failed to send a standby status update: {exc}"
            ) from exc

    def close(self) -> None:
        try:
            self._cursor.close()
        except psycopg2.Error as exc:
            logger.debug("ignoring error while closing replication cursor: %s", exc)
        connection = self.connection
        if not connection.closed:
            connection.close()


__all__ = [
    "PrimaryKeepalive",
    "Psycopg2ReplicationChannel",
    "ReplicationChannel",
    "StatusUpdate",
    "WireMessage",
    "XLogData",
]

"""Logical replication streaming: slot handling, feedback, control and framing."""

from .control import AckCommand, ControlChannelListener, QuitCommand, parse_command
from .failover import PollCoordinator
from .feedback import FeedbackSender
from .framing import OutputFramer, encode_frame
from .positions import (
    INVALID_LSN,
    AckMode,
    SessionState,
    lsn_to_str,
    str_to_lsn,
)
from .protocol import (
    PrimaryKeepalive,
    Psycopg2ReplicationChannel,
    ReplicationChannel,
    StatusUpdate,
    XLogData,
)
from .records import (
    Begin,
    ChangeRecord,
    ColumnValue,
    Commit,
    Delete,
    Insert,
    Message,
    Opaque,
    OpaqueDecoder,
    Truncate,
    Update,
    Wal2JsonDecoder,
    decoder_for,
)
from .session import ReplicationSession
from .slot import SlotInfo, SlotManager
from .waker import Waker

__all__ = [
    "AckCommand",
    "AckMode",
    "Begin",
    "ChangeRecord",
    "ColumnValue",
    "Commit",
    "ControlChannelListener",
    "Delete",
    "FeedbackSender",
    "INVALID_LSN",
    "Insert",
    "Message",
    "Opaque",
    "OpaqueDecoder",
    "OutputFramer",
    "PollCoordinator",
    "PrimaryKeepalive",
    "Psycopg2ReplicationChannel",
    "QuitCommand",
    "ReplicationChannel",
    "ReplicationSession",
    "SessionState",
    "SlotInfo",
    "SlotManager",
    "StatusUpdate",
    "Truncate",
    "Update",
    "Waker",
    "Wal2JsonDecoder",
    "XLogData",
    "decoder_for",
    "encode_frame",
    "lsn_to_str",
    "parse_command",
    "str_to_lsn",
]

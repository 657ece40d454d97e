"""Error taxonomy and process exit codes for the logical stream client."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit statuses; numbering is stable for callers scripting the CLI."""

    SUCCESS = 0
    INVALID_ARGS = 1
    INIT_FAILED = 2
    STREAM_CLOSED = 3
    CONTROL_CHANNEL_CLOSED = 4
    PROTOCOL_ERROR = 5
    CONTROL_ERROR = 6
    SYSTEM_ERROR = 7
    SLOT_NOT_FOUND = 8
    SLOT_IN_USE = 9


class StreamError(RuntimeError):
    """Base class for failures that terminate a replication session."""

    exit_code: ExitCode = ExitCode.SYSTEM_ERROR


class ConnectionFailed(StreamError):
    """Raised when the replication connection cannot be established or used."""

    exit_code = ExitCode.INIT_FAILED


class SlotNotFound(StreamError):
    """Raised when the replication slot does not exist on the server."""

    exit_code = ExitCode.SLOT_NOT_FOUND


class SlotAlreadyExists(StreamError):
    """Raised when creating a slot that is already present."""

    exit_code = ExitCode.INIT_FAILED


class SlotCreateFailed(StreamError):
    """Raised when the server rejects slot creation for any other reason."""

    exit_code = ExitCode.INIT_FAILED


class SlotInUse(StreamError):
    """Raised when another session holds the slot."""

    exit_code = ExitCode.SLOT_IN_USE


class ProtocolError(StreamError):
    """Raised on malformed replication data; the stream is never resynchronised."""

    exit_code = ExitCode.PROTOCOL_ERROR


class StreamClosed(StreamError):
    """Raised when the server ends the replication stream."""

    exit_code = ExitCode.STREAM_CLOSED


class ControlChannelClosed(StreamError):
    """Raised when the command input reaches EOF without a quit command."""

    exit_code = ExitCode.CONTROL_CHANNEL_CLOSED


class ControlChannelError(StreamError):
    """Raised when the command input cannot be read."""

    exit_code = ExitCode.CONTROL_ERROR


class OutputError(StreamError):
    """Raised when frames cannot be written to the data output."""

    exit_code = ExitCode.SYSTEM_ERROR


class MalformedControlCommand(ValueError):
    """Raised for a command line that cannot be applied; recovered by the listener."""


__all__ = [
    "ConnectionFailed",
    "ControlChannelClosed",
    "ControlChannelError",
    "ExitCode",
    "MalformedControlCommand",
    "OutputError",
    "ProtocolError",
    "SlotAlreadyExists",
    "SlotCreateFailed",
    "SlotInUse",
    "SlotNotFound",
    "StreamClosed",
    "StreamError",
]

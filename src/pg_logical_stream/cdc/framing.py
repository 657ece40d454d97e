"""Length-prefixed frames written to the data output.

Each record becomes ``w <LSN> <len>\\n`` followed by ``len`` bytes: the payload
and its terminating newline. Readers can consume a frame with one header line
read and one exact-size read, without scanning the payload.
"""

from __future__ import annotations

import os
from collections import defaultdict
from typing import BinaryIO, Dict, Optional

from ..errors import OutputError
from .positions import lsn_to_str
from .records import ChangeRecord

OUTPUT_BUFFER_SIZE = 32 * 1024


def encode_frame(position: int, payload: bytes) -> bytes:
    body = payload + b"\n"
    header = f"w {lsn_to_str(position)} {len(body)}\n".encode("ascii")
    return header + body


class OutputFramer:
    """Writes frames in the order records are received."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._frames = 0
        self._actions: Dict[str, int] = defaultdict(int)

    @classmethod
    def for_fd(
        cls, fd: int, *, buffer_size: int = OUTPUT_BUFFER_SIZE
    ) -> "OutputFramer":
        """Wrap an inherited file descriptor without taking ownership of it."""
        try:
            stream = os.fdopen(fd, "wb", buffering=buffer_size, closefd=False)
        except OSError as exc:
            raise OutputError(f"invalid output file descriptor {fd}: {exc}") from exc
        return cls(stream)

    @property
    def frames_written(self) -> int:
        return self._frames

    def action_counts(self) -> Dict[str, int]:
        return dict(self._actions)

    def write(
        self,
        position: int,
        payload: bytes,
        record: Optional[ChangeRecord] = None,
    ) -> None:
        try:
            self._stream.write(encode_frame(position, payload))
        except (OSError, ValueError) as exc:
            raise OutputError(f"failed to write data to output: {exc}") from exc
        self._frames += 1
        if record is not None:
            self._actions[record.action] += 1

    def flush(self) -> None:
        try:
            self._stream.flush()
        except (OSError, ValueError) as exc:
            raise OutputError(f"failed to flush data output: {exc}") from exc


__all__ = ["OUTPUT_BUFFER_SIZE", "OutputFramer", "encode_frame"]

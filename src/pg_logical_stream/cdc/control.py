"""Operator command channel (``F <LSN>`` and ``q``) read on a background thread."""

from __future__ import annotations

import logging
import os
import select
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..errors import (
    ControlChannelClosed,
    ControlChannelError,
    MalformedControlCommand,
    StreamError,
)
from .positions import SessionState, lsn_to_str, str_to_lsn
from .waker import Waker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AckCommand:
    lsn: int


@dataclass(frozen=True)
class QuitCommand:
    pass


ControlCommand = Union[AckCommand, QuitCommand]


def parse_command(line: str) -> Optional[ControlCommand]:
    """Parse one command line; blank lines and ``#`` comments yield None."""
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    if text == "q":
        return QuitCommand()
    if text.startswith("F"):
        parts = text.split()
        if len(parts) != 2 or parts[0] != "F":
            raise MalformedControlCommand(f"invalid F command: {text!r}")
        try:
            return AckCommand(lsn=str_to_lsn(parts[1]))
        except ValueError as exc:
            raise MalformedControlCommand(f"invalid F command: {text!r}") from exc
    raise MalformedControlCommand(f"invalid command: {text!r}")


def closed_channel_error(state: SessionState) -> StreamError:
    """Exception to end the stream with once the command input is gone."""
    if state.control_error is not None:
        return ControlChannelError(
            f"failed to read command input: {state.control_error}"
        )
    return ControlChannelClosed("command input closed without a quit command")


class ControlChannelListener:
    """Reads line commands from ``fd`` and applies them to the session state.

    ``notify`` is invoked after every state change so the stream loop can wake
    up. EOF before a quit command marks the control channel as closed.
    """

    def __init__(
        self,
        fd: int,
        state: SessionState,
        *,
        notify: Callable[[], None],
        chunk_size: int = 4096,
    ) -> None:
        self._fd = fd
        self._state = state
        self._notify = notify
        self._chunk_size = chunk_size
        self._buffer = b""
        self._stop = Waker()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._quit_received = False

    @property
    def quit_received(self) -> bool:
        return self._quit_received

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("control listener already started")
        self._thread = threading.Thread(
            target=self.run,
            name="control-listener",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stopping.set()
        self._stop.wake()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if self._thread is None or not self._thread.is_alive():
            self._stop.close()

    def run(self) -> None:
        while not self._stopping.is_set():
            readable, _, _ = select.select([self._fd, self._stop], [], [])
            if self._stopping.is_set():
                return
            if self._fd not in readable:
                continue
            try:
                chunk = os.read(self._fd, self._chunk_size)
            except BlockingIOError:
                continue
            except OSError as exc:
                logger.error("failed to read command input: %s", exc)
                self._close_channel(error=str(exc))
                return
            if not chunk:
                if self._buffer:
                    self._apply_line(self._buffer)
                    self._buffer = b""
                if not self._quit_received:
                    logger.warning("command input closed without a quit command")
                    self._close_channel()
                return
            if self.feed(chunk):
                return

    def feed(self, chunk: bytes) -> bool:
        """Consume raw bytes; returns True once a quit command has been applied."""
        self._buffer += chunk
        while b"\n" in self._buffer:
            line, self._buffer = self._buffer.split(b"\n", 1)
            if self._apply_line(line):
                return True
        return False

    def _apply_line(self, raw: bytes) -> bool:
        line = raw.decode("utf-8", errors="replace")
        try:
            command = parse_command(line)
        except MalformedControlCommand as exc:
            logger.warning("%s - ignored", exc)
            return False
        if command is None:
            return False
        if isinstance(command, QuitCommand):
            logger.info("quit command received")
            self._quit_received = True
            self._state.request_shutdown("quit command")
            self._notify()
            return True
        try:
            advanced = self._state.request_ack(command.lsn)
        except MalformedControlCommand as exc:
            logger.warning("%s - ignored", exc)
            return False
        if advanced:
            logger.debug("acknowledge requested up to %s", lsn_to_str(command.lsn))
            self._notify()
        else:
            logger.debug(
                "acknowledge request %s is not ahead of the confirm target - no-op",
                lsn_to_str(command.lsn),
            )
        return False

    def _close_channel(self, error: Optional[str] = None) -> None:
        self._state.mark_control_closed(error)
        self._notify()


__all__ = [
    "AckCommand",
    "ControlChannelListener",
    "ControlCommand",
    "QuitCommand",
    "closed_channel_error",
    "parse_command",
]

"""Self-pipe used to interrupt a blocking ``select`` from another thread or a signal."""

from __future__ import annotations

import socket


class Waker:
    def __init__(self) -> None:
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)

    def fileno(self) -> int:
        return self._reader.fileno()

    def wake(self) -> None:
        try:
            self._writer.send(b"\0")
        except OSError:
            # Buffer full or already closed; a pending byte is enough to wake.
            pass

    def drain(self) -> None:
        while True:
            try:
                if not self._reader.recv(4096):
                    return
            except OSError:  # BlockingIOError once drained
                return

    def close(self) -> None:
        self._reader.close()
        self._writer.close()


__all__ = ["Waker"]

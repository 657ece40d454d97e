"""Streaming client for PostgreSQL logical replication slots."""

from .errors import ExitCode, StreamError


def main(argv=None) -> int:
    """Entrypoint proxy that defers importing the service until needed."""

    from .service import main as _service_main

    return _service_main(argv)


__all__ = ["ExitCode", "StreamError", "main"]

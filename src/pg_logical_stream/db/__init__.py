"""psycopg2 helpers for replication-mode connections."""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple

import psycopg2
from psycopg2 import Error, OperationalError, errors, sql
from psycopg2.extras import REPLICATION_LOGICAL
from psycopg2.extras import (
    LogicalReplicationConnection as _LogicalReplicationConnection,
)

_MASKED_KEYS = {"password"}


class LogicalReplicationConnection(_LogicalReplicationConnection):
    """Logical replication connection with helper constructor."""

    @classmethod
    def connect(cls, params: Mapping[str, str]) -> "LogicalReplicationConnection":
        # replication=database is added by the psycopg2 connection class.
        return psycopg2.connect(connection_factory=cls, **dict(params))


def connect(*args, **kwargs):
    """Create a regular (non-replication) psycopg2 connection."""

    conn = psycopg2.connect(*args, **kwargs)
    conn.autocommit = True
    return conn


def parse_param(key_eq_value: str) -> Tuple[str, Optional[str]]:
    """Split ``KEY[=VALUE]``; a missing ``=`` yields a None value."""
    key, sep, value = key_eq_value.partition("=")
    key = key.strip()
    if not key:
        raise ValueError(f"missing parameter name in {key_eq_value!r}")
    return key, (value if sep else None)


def describe_params(params: Iterable[Tuple[str, Optional[str]]]) -> List[str]:
    """Render parameters as ``key=value`` lines for diagnostics, masking secrets."""
    lines: List[str] = []
    for key, value in params:
        if value is None:
            lines.append(key)
        elif key in _MASKED_KEYS:
            lines.append(f"{key}=********")
        else:
            lines.append(f"{key}={value}")
    return lines


__all__ = [
    "Error",
    "LogicalReplicationConnection",
    "OperationalError",
    "REPLICATION_LOGICAL",
    "connect",
    "describe_params",
    "errors",
    "parse_param",
    "sql",
]

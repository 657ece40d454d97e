"""Decoded change records produced by the output plugin.

Payloads are decoded exactly once, at the stream reader boundary, into one of
the record classes below. Downstream code dispatches on the class, never on the
raw ``action`` field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from ..errors import ProtocolError


@dataclass(frozen=True)
class ColumnValue:
    """Single column of a row image; ``value`` may be None for any type."""

    name: str
    type: Optional[str]
    value: object = None


@dataclass(frozen=True)
class Begin:
    action: ClassVar[str] = "B"

    xid: Optional[int] = None
    lsn: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class Commit:
    action: ClassVar[str] = "C"

    xid: Optional[int] = None
    lsn: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class Insert:
    action: ClassVar[str] = "I"

    schema: str
    table: str
    columns: Tuple[ColumnValue, ...] = ()


@dataclass(frozen=True)
class Update:
    action: ClassVar[str] = "U"

    schema: str
    table: str
    columns: Tuple[ColumnValue, ...] = ()
    identity: Tuple[ColumnValue, ...] = ()


@dataclass(frozen=True)
class Delete:
    action: ClassVar[str] = "D"

    schema: str
    table: str
    identity: Tuple[ColumnValue, ...] = ()


@dataclass(frozen=True)
class Truncate:
    action: ClassVar[str] = "T"

    schema: str
    table: str


@dataclass(frozen=True)
class Message:
    action: ClassVar[str] = "M"

    transactional: bool
    prefix: str
    content: str


@dataclass(frozen=True)
class Opaque:
    """Payload of a plugin that does not emit one JSON object per record."""

    action: ClassVar[str] = "?"

    text: str


ChangeRecord = Union[Begin, Commit, Insert, Update, Delete, Truncate, Message, Opaque]


class ChangeDecoder(Protocol):
    """Decoder translating raw plugin output into a change record."""

    def decode(self, payload: bytes) -> ChangeRecord: ...


def _column_values(raw: object, *, key: str) -> Tuple[ColumnValue, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ProtocolError(f"'{key}' must be a list, got {type(raw).__name__}")
    columns: List[ColumnValue] = []
    for entry in raw:
        if not isinstance(entry, dict) or "name" not in entry:
            raise ProtocolError(f"malformed entry in '{key}': {entry!r}")
        columns.append(
            ColumnValue(
                name=str(entry["name"]),
                type=entry.get("type"),
                value=entry.get("value"),
            )
        )
    return tuple(columns)


def _relation(item: Mapping[str, Any]) -> Tuple[str, str]:
    schema = item.get("schema")
    table = item.get("table")
    if not isinstance(schema, str) or not isinstance(table, str):
        raise ProtocolError(
            f"record '{item.get('action')}' is missing schema/table: {dict(item)!r}"
        )
    return schema, table


class Wal2JsonDecoder:
    """Decoder for wal2json ``format-version=2``: one JSON object per record."""

    def decode(self, payload: bytes) -> ChangeRecord:
        try:
            item = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError(
                f"replication payload is not valid JSON: {exc}"
            ) from exc
        if not isinstance(item, dict):
            raise ProtocolError(
                f"replication payload must be a JSON object, got {type(item).__name__}"
            )

        action = item.get("action")
        if action == "B":
            return Begin(
                xid=item.get("xid"),
                lsn=item.get("nextlsn") or item.get("lsn"),
                timestamp=item.get("timestamp"),
            )
        if action == "C":
            return Commit(
                xid=item.get("xid"),
                lsn=item.get("nextlsn") or item.get("lsn"),
                timestamp=item.get("timestamp"),
            )
        if action == "I":
            schema, table = _relation(item)
            return Insert(
                schema=schema,
                table=table,
                columns=_column_values(item.get("columns"), key="columns"),
            )
        if action == "U":
            schema, table = _relation(item)
            return Update(
                schema=schema,
                table=table,
                columns=_column_values(item.get("columns"), key="columns"),
                identity=_column_values(item.get("identity"), key="identity"),
            )
        if action == "D":
            schema, table = _relation(item)
            return Delete(
                schema=schema,
                table=table,
                identity=_column_values(item.get("identity"), key="identity"),
            )
        if action == "T":
            schema, table = _relation(item)
            return Truncate(schema=schema, table=table)
        if action == "M":
            return Message(
                transactional=bool(item.get("transactional", False)),
                prefix=str(item.get("prefix", "")),
                content=str(item.get("content", "")),
            )
        raise ProtocolError(f"unrecognized record action {action!r}")


class OpaqueDecoder:
    """Decoder for plugins whose output is passed through unparsed."""

    def decode(self, payload: bytes) -> ChangeRecord:
        return Opaque(text=payload.decode("utf-8", errors="replace"))


def decoder_for(plugin_options: Sequence[Tuple[str, Optional[str]]]) -> ChangeDecoder:
    """Pick a decoder from the plugin options the stream is started with."""
    options: Dict[str, Optional[str]] = dict(plugin_options)
    if options.get("format-version") == "2":
        return Wal2JsonDecoder()
    return OpaqueDecoder()


__all__ = [
    "Begin",
    "ChangeDecoder",
    "ChangeRecord",
    "ColumnValue",
    "Commit",
    "Delete",
    "Insert",
    "Message",
    "Opaque",
    "OpaqueDecoder",
    "Truncate",
    "Update",
    "Wal2JsonDecoder",
    "decoder_for",
]

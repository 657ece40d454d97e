"""Replication slot lifecycle over a replication-mode psycopg2 connection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, Tuple

import psycopg2

from ..db import REPLICATION_LOGICAL, LogicalReplicationConnection, errors, sql
from ..errors import (
    ConnectionFailed,
    SlotAlreadyExists,
    SlotCreateFailed,
    SlotInUse,
    SlotNotFound,
)
from .positions import INVALID_LSN, lsn_to_str, str_to_lsn
from .protocol import Psycopg2ReplicationChannel

logger = logging.getLogger(__name__)

ConnectFn = Callable[[Mapping[str, str]], object]


@dataclass(frozen=True)
class SlotInfo:
    slot_name: str
    plugin: Optional[str]
    active: bool
    confirmed_flush_lsn: Optional[int]


def _sqlstate(exc: psycopg2.Error) -> str:
    return getattr(exc, "pgcode", None) or "?"


def _error_text(exc: psycopg2.Error) -> str:
    return (getattr(exc, "pgerror", None) or str(exc)).strip()


class SlotManager:
    """Opens the replication connection, provisions the slot and starts streaming."""

    def __init__(
        self,
        slot_name: str,
        connection_params: Sequence[Tuple[str, str]],
        *,
        plugin: str = "test_decoding",
        plugin_options: Sequence[Tuple[str, Optional[str]]] = (),
        status_interval: float = 10.0,
        connect_fn: Optional[ConnectFn] = None,
    ) -> None:
        if not slot_name:
            raise ValueError("slot_name must be provided")
        self.slot_name = slot_name
        self._params = dict(connection_params)
        self._plugin = plugin
        self._plugin_options = tuple(plugin_options)
        self._status_interval = status_interval
        self._connect_fn = connect_fn or LogicalReplicationConnection.connect
        self._conn = None
        self._cursor = None

    def __enter__(self) -> "SlotManager":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def connect(self) -> None:
        if self._conn is not None and not self._conn.closed:
            return
        try:
            self._conn = self._connect_fn(self._params)
        except psycopg2.Error as exc:
            raise ConnectionFailed(
                f"Connection to database failed: {_error_text(exc)}"
            ) from exc
        self._cursor = self._conn.cursor()
        self._identify_system()

    def close(self) -> None:
        if self._cursor is not None:
            try:
                self._cursor.close()
            except psycopg2.Error as exc:
                logger.debug("ignoring error while closing cursor: %s", exc)
            self._cursor = None
        if self._conn is not None:
            if not self._conn.closed:
                logger.debug("Closing connection")
                self._conn.close()
            self._conn = None

    def _require_cursor(self):
        if self._cursor is None:
            self.connect()
        return self._cursor

    def _identify_system(self) -> None:
        cursor = self._cursor
        logger.debug("> IDENTIFY_SYSTEM")
        try:
            cursor.execute("IDENTIFY_SYSTEM")
            row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise ConnectionFailed(f"IDENTIFY_SYSTEM: {_error_text(exc)}") from exc
        if row is not None and cursor.description is not None:
            names = [column[0] for column in cursor.description]
            for name, value in zip(names, row):
                logger.debug("System status: %s=%s", name, value)
        logger.debug("System status: libpq=%s", psycopg2.extensions.libpq_version())

    # ------------------------------------------------------------------ slots
    def ensure_slot(self, create: bool, *, if_not_exists: bool = True) -> bool:
        """Create the slot when ``create`` is set; returns True if it was created."""
        if not create:
            return False
        cursor = self._require_cursor()
        logger.debug(
            "> CREATE_REPLICATION_SLOT %s LOGICAL %s", self.slot_name, self._plugin
        )
        try:
            cursor.create_replication_slot(
                self.slot_name,
                slot_type=REPLICATION_LOGICAL,
                output_plugin=self._plugin,
            )
        except errors.DuplicateObject as exc:
            if if_not_exists:
                logger.info("replication slot %s already exists", self.slot_name)
                return False
            raise SlotAlreadyExists(
                f"replication slot {self.slot_name} already exists"
            ) from exc
        except psycopg2.Error as exc:
            raise SlotCreateFailed(
                f"Failed to create a replication slot ({_sqlstate(exc)}): "
                f"{_error_text(exc)}"
            ) from exc
        logger.info(
            "created replication slot %s with plugin %s", self.slot_name, self._plugin
        )
        return True

    def drop_slot(self) -> None:
        cursor = self._require_cursor()
        logger.debug("> DROP_REPLICATION_SLOT %s", self.slot_name)
        try:
            cursor.drop_replication_slot(self.slot_name)
        except errors.UndefinedObject as exc:
            raise SlotNotFound(
                f"replication slot {self.slot_name} does not exist"
            ) from exc
        except errors.ObjectInUse as exc:
            raise SlotInUse(f"replication slot {self.slot_name} is in use") from exc
        except psycopg2.Error as exc:
            raise ConnectionFailed(
                f"Failed to drop replication slot ({_sqlstate(exc)}): "
                f"{_error_text(exc)}"
            ) from exc
        logger.info("dropped replication slot %s", self.slot_name)

    def describe_slot(self) -> Optional[SlotInfo]:
        """Read the slot row from ``pg_replication_slots``; None when absent."""
        cursor = self._require_cursor()
        try:
            cursor.execute(
                "SELECT slot_name, plugin, active, confirmed_flush_lsn::text"
                "  FROM pg_replication_slots WHERE slot_name = %s",
                (self.slot_name,),
            )
            row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise ConnectionFailed(
                f"Failed to check status of replication slot: {_error_text(exc)}"
            ) from exc
        if row is None:
            return None
        name, plugin, active, confirmed = row
        return SlotInfo(
            slot_name=name,
            plugin=plugin,
            active=bool(active),
            confirmed_flush_lsn=str_to_lsn(confirmed) if confirmed else None,
        )

    # -------------------------------------------------------------- streaming
    def build_start_command(self, start_position: Optional[int] = None) -> sql.Composed:
        start = INVALID_LSN if start_position is None else start_position
        command = sql.SQL("START_REPLICATION SLOT {} LOGICAL {}").format(
            sql.Identifier(self.slot_name), sql.SQL(lsn_to_str(start))
        )
        if not self._plugin_options:
            return command
        options = []
        for key, value in self._plugin_options:
            if value is None:
                options.append(sql.Identifier(key))
            else:
                options.append(
                    sql.SQL("{} {}").format(sql.Identifier(key), sql.Literal(value))
                )
        return command + sql.SQL(" (") + sql.SQL(", ").join(options) + sql.SQL(")")

    def start_streaming(
        self, start_position: Optional[int] = None
    ) -> Psycopg2ReplicationChannel:
        """Issue START_REPLICATION; None resumes from the slot's confirmed position."""
        cursor = self._require_cursor()
        command = self.build_start_command(start_position)
        logger.debug(
            "> START_REPLICATION SLOT %s LOGICAL %s",
            self.slot_name,
            lsn_to_str(start_position or INVALID_LSN),
        )
        try:
            cursor.start_replication_expert(
                command,
                decode=False,
                status_interval=self._status_interval,
            )
        except errors.ObjectInUse as exc:
            logger.debug("Replication slot is in use: %s", _error_text(exc))
            raise SlotInUse(
                f"replication slot {self.slot_name} is in use by another session"
            ) from exc
        except errors.UndefinedObject as exc:
            logger.debug("Replication slot does not exist: %s", _error_text(exc))
            raise SlotNotFound(
                f"replication slot {self.slot_name} does not exist"
            ) from exc
        except psycopg2.Error as exc:
            raise ConnectionFailed(
                f"Failed to start replication ({_sqlstate(exc)}): {_error_text(exc)}"
            ) from exc
        logger.debug("Replication started")
        return Psycopg2ReplicationChannel(cursor)

    def acquire(
        self, *, create: bool = False, start_position: Optional[int] = None
    ) -> Psycopg2ReplicationChannel:
        """Connect and start streaming, creating a missing slot when allowed."""
        self.connect()
        try:
            return self.start_streaming(start_position)
        except SlotNotFound:
            if not create:
                raise
        self.ensure_slot(True)
        return self.start_streaming(start_position)


__all__ = ["SlotInfo", "SlotManager"]

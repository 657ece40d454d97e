import psycopg2
import pytest
from psycopg2 import errors, sql

from pg_logical_stream.cdc.protocol import Psycopg2ReplicationChannel
from pg_logical_stream.cdc.slot import SlotInfo, SlotManager
from pg_logical_stream.errors import (
    ConnectionFailed,
    SlotAlreadyExists,
    SlotCreateFailed,
    SlotInUse,
    SlotNotFound,
)


class FakeCursor:
    def __init__(self, *, start_errors=(), create_error=None, drop_error=None):
        self.start_errors = list(start_errors)
        self.create_error = create_error
        self.drop_error = drop_error
        self.slot_row = None
        self.calls = []
        self.description = None
        self._row = None
        self.connection = None

    def execute(self, query, params=None):
        self.calls.append(("execute", query, params))
        if query == "IDENTIFY_SYSTEM":
            self.description = [("systemid",), ("timeline",), ("xlogpos",), ("dbname",)]
            self._row = ("7001", 1, "0/16B3748", "postgres")
        else:
            self.description = [("slot_name",), ("plugin",), ("active",), ("lsn",)]
            self._row = self.slot_row

    def fetchone(self):
        return self._row

    def create_replication_slot(self, slot_name, slot_type=None, output_plugin=None):
        self.calls.append(("create", slot_name, output_plugin))
        if self.create_error is not None:
            raise self.create_error

    def start_replication_expert(self, command, decode=False, status_interval=10):
        self.calls.append(("start", command, decode))
        if self.start_errors:
            error = self.start_errors.pop(0)
            if error is not None:
                raise error

    def drop_replication_slot(self, slot_name):
        self.calls.append(("drop", slot_name))
        if self.drop_error is not None:
            raise self.drop_error

    def close(self):
        self.calls.append(("close",))

    def call_names(self):
        return [call[0] for call in self.calls]


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        cursor.connection = self
        self.closed = 0

    def cursor(self):
        return self._cursor

    def close(self):
        self.closed = 1


def _manager(cursor: FakeCursor, **kwargs):
    opened = []

    def connect_fn(params):
        opened.append(params)
        return FakeConnection(cursor)

    manager = SlotManager(
        "s1",
        [("host", "db"), ("application_name", "stream-test")],
        connect_fn=connect_fn,
        **kwargs,
    )
    return manager, opened


def _leaves(composed):
    for part in composed.seq:
        if isinstance(part, sql.Composed):
            yield from _leaves(part)
        else:
            yield part


@pytest.mark.unit
def test_connect_identifies_system_with_given_parameters():
    cursor = FakeCursor()
    manager, opened = _manager(cursor)

    manager.connect()
    manager.connect()

    assert opened == [{"host": "db", "application_name": "stream-test"}]
    assert cursor.calls[0] == ("execute", "IDENTIFY_SYSTEM", None)


@pytest.mark.unit
def test_connect_failure_is_reported_as_connection_failed():
    def refuse(params):
        raise psycopg2.OperationalError("could not connect to server")

    manager = SlotManager("s1", [], connect_fn=refuse)

    with pytest.raises(ConnectionFailed, match="could not connect"):
        manager.connect()


@pytest.mark.unit
def test_acquire_returns_channel_for_existing_slot():
    cursor = FakeCursor()
    manager, _ = _manager(cursor)

    channel = manager.acquire()

    assert isinstance(channel, Psycopg2ReplicationChannel)
    assert cursor.call_names() == ["execute", "start"]
    assert cursor.calls[-1][2] is False  # payload stays bytes


@pytest.mark.unit
def test_acquire_without_create_reports_missing_slot():
    cursor = FakeCursor(start_errors=[errors.UndefinedObject("slot does not exist")])
    manager, _ = _manager(cursor)

    with pytest.raises(SlotNotFound):
        manager.acquire(create=False)
    assert "create" not in cursor.call_names()


@pytest.mark.unit
def test_acquire_creates_missing_slot_and_retries():
    cursor = FakeCursor(start_errors=[errors.UndefinedObject("slot does not exist")])
    manager, _ = _manager(cursor, plugin="wal2json")

    manager.acquire(create=True)

    assert cursor.call_names() == ["execute", "start", "create", "start"]
    assert ("create", "s1", "wal2json") in cursor.calls


@pytest.mark.unit
def test_start_maps_slot_in_use_and_other_errors():
    busy = FakeCursor(start_errors=[errors.ObjectInUse("slot is active")])
    manager, _ = _manager(busy)
    with pytest.raises(SlotInUse):
        manager.start_streaming()

    broken = FakeCursor(start_errors=[psycopg2.ProgrammingError("syntax error")])
    manager, _ = _manager(broken)
    with pytest.raises(ConnectionFailed):
        manager.start_streaming()


@pytest.mark.unit
def test_ensure_slot_handles_existing_slots():
    duplicate = errors.DuplicateObject("slot already exists")

    cursor = FakeCursor(create_error=duplicate)
    manager, _ = _manager(cursor)
    assert manager.ensure_slot(True) is False
    with pytest.raises(SlotAlreadyExists):
        manager.ensure_slot(True, if_not_exists=False)

    untouched = FakeCursor()
    manager, _ = _manager(untouched)
    assert manager.ensure_slot(False) is False
    assert untouched.calls == []


@pytest.mark.unit
def test_ensure_slot_reports_other_create_failures():
    cursor = FakeCursor(create_error=errors.UndefinedFile("plugin not found"))
    manager, _ = _manager(cursor)

    with pytest.raises(SlotCreateFailed):
        manager.ensure_slot(True)


@pytest.mark.unit
def test_drop_slot_maps_missing_slot():
    cursor = FakeCursor(drop_error=errors.UndefinedObject("slot does not exist"))
    manager, _ = _manager(cursor)

    with pytest.raises(SlotNotFound):
        manager.drop_slot()


@pytest.mark.unit
def test_describe_slot_reads_catalog_row():
    cursor = FakeCursor()
    manager, _ = _manager(cursor)

    assert manager.describe_slot() is None

    cursor.slot_row = ("s1", "wal2json", True, "0/16B3748")
    assert manager.describe_slot() == SlotInfo(
        slot_name="s1",
        plugin="wal2json",
        active=True,
        confirmed_flush_lsn=0x16B3748,
    )
    assert cursor.calls[-1][2] == ("s1",)


@pytest.mark.unit
def test_start_command_carries_position_and_plugin_options():
    manager = SlotManager(
        "s1",
        [],
        plugin_options=[("format-version", "2"), ("include-lsn", None)],
    )

    leaves = list(_leaves(manager.build_start_command(0x16B3748)))

    assert sql.Identifier("s1") in leaves
    assert sql.SQL("0/16B3748") in leaves
    assert sql.Identifier("format-version") in leaves
    assert sql.Literal("2") in leaves
    assert sql.Identifier("include-lsn") in leaves

    plain = list(_leaves(SlotManager("s1", []).build_start_command()))
    assert sql.SQL("0/0") in plain
    assert not any(isinstance(leaf, sql.Literal) for leaf in plain)


@pytest.mark.unit
def test_close_releases_connection():
    cursor = FakeCursor()
    manager, _ = _manager(cursor)
    manager.connect()
    connection = cursor.connection

    manager.close()

    assert connection.closed
    assert cursor.call_names()[-1] == "close"

"""Command line interface for the logical stream client."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .cdc.positions import AckMode
from .config import WAL2JSON1_OPTIONS, WAL2JSON2_OPTIONS, Settings, load_settings
from .db import parse_param
from .errors import ExitCode


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(
            int(ExitCode.INVALID_ARGS),
            f"{self.prog}: error: {message}\nUse --help option to show usage.\n",
        )


def _plugin_option(text: str) -> Tuple[str, Optional[str]]:
    try:
        return parse_param(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _connection_param(text: str) -> Tuple[str, str]:
    key, value = _plugin_option(text)
    if value is None:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    return key, value


def _seconds(text: str) -> float:
    try:
        value = float(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {text!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError(f"seconds must not be negative: {text!r}")
    return value


def _positive_seconds(text: str) -> float:
    value = _seconds(text)
    if value == 0:
        raise argparse.ArgumentTypeError(f"seconds must be positive: {text!r}")
    return value


def _fd(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid file descriptor: {text!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid file descriptor: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    # -h is the database host, so help lives on -?.
    parser = _ArgumentParser(
        prog="pg-logical-stream",
        description="Stream changes from a PostgreSQL logical replication slot",
        add_help=False,
    )
    parser.add_argument("-?", "--help", action="help", help="show usage")
    parser.add_argument(
        "-v", "--verbose", action="store_true", default=None,
        help="show verbose messages",
    )

    slot = parser.add_argument_group("replication slot")
    slot.add_argument("-S", "--slot", help="name of the logical replication slot")
    slot.add_argument(
        "-c", "--create-slot", action="store_true", default=None,
        help="create the replication slot if it does not exist, using --plugin",
    )
    slot.add_argument(
        "--drop-slot", action="store_true",
        help="drop the replication slot and exit",
    )
    slot.add_argument(
        "-P", "--plugin",
        help="output plugin for a new replication slot (default: test_decoding)",
    )
    slot.add_argument(
        "-o", "--option", dest="options", action="append", default=[],
        type=_plugin_option, metavar="KEY[=VALUE]",
        help="pass option KEY with optional VALUE to the output plugin",
    )
    slot.add_argument(
        "-j", "--wal2json1", dest="preset", action="store_const",
        const=WAL2JSON1_OPTIONS,
        help="same as -o format-version=1 -o include-lsn=true -P wal2json",
    )
    slot.add_argument(
        "-J", "--wal2json2", dest="preset", action="store_const",
        const=WAL2JSON2_OPTIONS,
        help="same as -o format-version=2 -P wal2json",
    )

    feedback = parser.add_argument_group("acknowledgment")
    feedback.add_argument(
        "-A", "--auto-ack", dest="ack_mode", action="store_const",
        const=AckMode.AUTO,
        help="acknowledge every received record automatically",
    )
    feedback.add_argument(
        "-N", "--manual-ack", dest="ack_mode", action="store_const",
        const=AckMode.MANUAL,
        help="acknowledge only positions sent as 'F <LSN>' on the command input "
        "(default)",
    )
    feedback.add_argument(
        "-s", "--status-interval", type=_seconds, metavar="SECS",
        help="time between status updates sent to the server (default: 5)",
    )
    feedback.add_argument(
        "-F", "--feedback-interval", type=_seconds, metavar="SECS",
        help="maximum delay before an acknowledged position is reported "
        "(default: 0)",
    )

    poll = parser.add_argument_group("poll mode")
    poll.add_argument(
        "-L", "--poll-mode", action="store_true", default=None,
        help="wait until the replication slot becomes available",
    )
    poll.add_argument(
        "-i", "--poll-interval", type=_positive_seconds, metavar="SECS",
        help="interval between attempts to acquire the slot (default: 1)",
    )
    poll.add_argument(
        "-u", "--poll-duration", type=_seconds, metavar="SECS",
        help="maximum time to wait for the slot (default: no limit)",
    )

    io = parser.add_argument_group("input and output")
    io.add_argument(
        "-D", "--fd", dest="output_fd", type=_fd, metavar="N",
        help="write frames to file descriptor N instead of 1 (stdout)",
    )
    io.add_argument(
        "--command-fd", type=_fd, metavar="N",
        help="read commands from file descriptor N instead of 0 (stdin)",
    )

    conn = parser.add_argument_group("connection options")
    conn.add_argument("-d", "--dbname", help="database name to connect to")
    conn.add_argument(
        "-h", "--host", help="database server host or socket directory"
    )
    conn.add_argument("-p", "--port", help="database server port")
    conn.add_argument("-U", "--username", help="database user name")
    conn.add_argument(
        "-m", "--param", dest="params", action="append", default=[],
        type=_connection_param, metavar="KEY=VALUE",
        help="connection parameter (connect_timeout, application_name, etc.)",
    )
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    """Overlay parsed arguments on top of environment-derived settings."""
    options: List[Tuple[str, Optional[str]]] = list(base.plugin_options)
    plugin = base.plugin
    if args.preset is not None:
        options.extend(args.preset)
        plugin = "wal2json"
    options.extend(args.options)
    if args.plugin:
        plugin = args.plugin

    params = list(base.connection_params)
    for key, value in (
        ("dbname", args.dbname),
        ("host", args.host),
        ("port", args.port),
        ("user", args.username),
    ):
        if value is not None:
            params.append((key, value))
    params.extend(args.params)

    overrides = {
        "slot_name": args.slot,
        "create_slot": args.create_slot,
        "ack_mode": args.ack_mode,
        "status_interval": args.status_interval,
        "feedback_interval": args.feedback_interval,
        "poll_mode": args.poll_mode,
        "poll_interval": args.poll_interval,
        "poll_duration": args.poll_duration,
        "output_fd": args.output_fd,
        "command_fd": args.command_fd,
        "verbose": args.verbose,
    }
    return replace(
        base,
        plugin=plugin,
        plugin_options=tuple(options),
        connection_params=tuple(params),
        drop_slot=bool(args.drop_slot),
        **{key: value for key, value in overrides.items() if value is not None},
    )


def parse_settings(
    argv: Optional[Sequence[str]] = None, base: Optional[Settings] = None
) -> Settings:
    """Parse ``argv`` into settings; exits with INVALID_ARGS on bad input."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if base is None:
        try:
            base = load_settings()
        except ValueError as exc:
            parser.error(f"invalid environment setting: {exc}")
    settings = settings_from_args(args, base)
    if not settings.slot_name:
        parser.error("--slot option is required")
    return settings


"""Runtime configuration for the logical stream client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from .cdc.positions import AckMode

Param = Tuple[str, Optional[str]]

WAL2JSON1_OPTIONS: Tuple[Param, ...] = (
    ("format-version", "1"),
    ("include-lsn", "true"),
)
WAL2JSON2_OPTIONS: Tuple[Param, ...] = (("format-version", "2"),)


@dataclass(frozen=True)
class Settings:
    """Immutable container for client configuration."""

    slot_name: str = ""
    create_slot: bool = False
    drop_slot: bool = False
    plugin: str = "test_decoding"
    plugin_options: Tuple[Param, ...] = ()
    ack_mode: AckMode = AckMode.MANUAL
    status_interval: float = 5.0
    feedback_interval: float = 0.0
    poll_mode: bool = False
    poll_interval: float = 1.0
    poll_duration: Optional[float] = None
    output_fd: int = 1
    command_fd: int = 0
    verbose: bool = False
    # Passed to libpq as-is; libpq also honours PGHOST, PGUSER, ...
    connection_params: Tuple[Tuple[str, str], ...] = ()


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", ""}


def _as_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None or not value.strip():
        return default
    return float(value)


def _coerce_ack_mode(value: Optional[str]) -> AckMode:
    if value is None:
        return AckMode.MANUAL
    normalized = value.strip().lower()
    if normalized in {"auto", "automatic"}:
        return AckMode.AUTO
    return AckMode.MANUAL


def _split_params(value: Optional[str]) -> Tuple[Param, ...]:
    """Parse ``key=value,key2`` into (key, value) pairs; a bare key has no value."""
    if not value:
        return ()
    params = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, raw = entry.partition("=")
        params.append((key.strip(), raw.strip() if sep else None))
    return tuple(params)


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    slot_name = os.getenv("PGSTREAM_SLOT", "").strip()
    create_slot = _as_bool(os.getenv("PGSTREAM_CREATE_SLOT"), False)
    plugin = os.getenv("PGSTREAM_PLUGIN", "test_decoding").strip()
    plugin_options = _split_params(os.getenv("PGSTREAM_PLUGIN_OPTIONS"))
    ack_mode = _coerce_ack_mode(os.getenv("PGSTREAM_ACK_MODE"))
    status_interval = _as_float(os.getenv("PGSTREAM_STATUS_INTERVAL"), 5.0)
    feedback_interval = _as_float(os.getenv("PGSTREAM_FEEDBACK_INTERVAL"), 0.0)
    poll_mode = _as_bool(os.getenv("PGSTREAM_POLL_MODE"), False)
    poll_interval = _as_float(os.getenv("PGSTREAM_POLL_INTERVAL"), 1.0)
    poll_duration = _as_float(os.getenv("PGSTREAM_POLL_DURATION"), None)
    output_fd = int(os.getenv("PGSTREAM_OUTPUT_FD", "1"))
    command_fd = int(os.getenv("PGSTREAM_COMMAND_FD", "0"))
    verbose = _as_bool(os.getenv("PGSTREAM_VERBOSE"), False)

    for name, value in (
        ("PGSTREAM_STATUS_INTERVAL", status_interval),
        ("PGSTREAM_FEEDBACK_INTERVAL", feedback_interval),
        ("PGSTREAM_POLL_DURATION", poll_duration),
        ("PGSTREAM_OUTPUT_FD", output_fd),
        ("PGSTREAM_COMMAND_FD", command_fd),
    ):
        if value is not None and value < 0:
            raise ValueError(f"{name} must not be negative: {value}")
    if poll_interval <= 0:
        raise ValueError(f"PGSTREAM_POLL_INTERVAL must be positive: {poll_interval}")

    return Settings(
        slot_name=slot_name,
        create_slot=create_slot,
        plugin=plugin or "test_decoding",
        plugin_options=plugin_options,
        ack_mode=ack_mode,
        status_interval=status_interval,
        feedback_interval=feedback_interval,
        poll_mode=poll_mode,
        poll_interval=poll_interval,
        poll_duration=poll_duration,
        output_fd=output_fd,
        command_fd=command_fd,
        verbose=verbose,
    )


__all__ = [
    "Settings",
    "WAL2JSON1_OPTIONS",
    "WAL2JSON2_OPTIONS",
    "load_settings",
]

"""Process runtime: wires the slot, session, control listener and signals."""

from __future__ import annotations

import logging
import select
import signal
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from .cdc.control import ControlChannelListener, closed_channel_error
from .cdc.failover import PollCoordinator
from .cdc.feedback import FeedbackSender
from .cdc.framing import OutputFramer
from .cdc.positions import SessionState, lsn_to_str
from .cdc.protocol import ReplicationChannel
from .cdc.records import decoder_for
from .cdc.session import ReplicationSession
from .cdc.slot import SlotManager
from .cdc.waker import Waker
from .cli import parse_settings
from .config import Settings
from .db import describe_params
from .errors import ExitCode, OutputError, StreamError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

ManagerFactory = Callable[[Settings], SlotManager]


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)


def build_slot_manager(settings: Settings) -> SlotManager:
    return SlotManager(
        settings.slot_name,
        settings.connection_params,
        plugin=settings.plugin,
        plugin_options=settings.plugin_options,
    )


def log_settings(settings: Settings) -> None:
    """Echo the resolved options at debug level (passwords masked)."""
    logger.debug("slot: %s", settings.slot_name)
    logger.debug("plugin: %s", settings.plugin)
    logger.debug("ack mode: %s", settings.ack_mode.value)
    logger.debug(
        "status interval: %.3fs, feedback interval: %.3fs",
        settings.status_interval,
        settings.feedback_interval,
    )
    if settings.poll_mode:
        logger.debug(
            "poll mode: interval %.3fs, duration %s",
            settings.poll_interval,
            "unbounded"
            if settings.poll_duration is None
            else f"{settings.poll_duration:.3f}s",
        )
    for line in describe_params(settings.plugin_options):
        logger.debug("plugin option: %s", line)
    for line in describe_params(settings.connection_params):
        logger.debug("connection parameter: %s", line)


class StreamRuntime:
    """Owns every resource of one streaming process and maps failures to exit codes."""

    def __init__(
        self,
        settings: Settings,
        *,
        manager_factory: Optional[ManagerFactory] = None,
        framer: Optional[OutputFramer] = None,
    ) -> None:
        self.settings = settings
        self.state = SessionState(ack_mode=settings.ack_mode)
        self.waker = Waker()
        self._manager = (manager_factory or build_slot_manager)(settings)
        self._framer = framer
        self._channel: Optional[ReplicationChannel] = None
        self._listener: Optional[ControlChannelListener] = None
        self._session: Optional[ReplicationSession] = None

    def request_shutdown(self, reason: str) -> None:
        self.state.request_shutdown(reason)
        self.waker.wake()

    def _on_signal(self, signum, frame) -> None:
        self.request_shutdown(f"signal {signal.Signals(signum).name}")

    @contextmanager
    def signal_handlers(self) -> Iterator[None]:
        previous = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous.append((signum, signal.signal(signum, self._on_signal)))
        try:
            yield
        finally:
            for signum, handler in previous:
                signal.signal(signum, handler)

    def run(self) -> ExitCode:
        try:
            return self._run()
        except StreamError as exc:
            self._log_failure(exc)
            return exc.exit_code
        except OSError:
            logger.exception("system error on slot %s", self.settings.slot_name)
            return ExitCode.SYSTEM_ERROR
        finally:
            self.close()

    def _run(self) -> ExitCode:
        settings = self.settings
        log_settings(settings)
        if self._framer is None and not settings.drop_slot:
            self._framer = OutputFramer.for_fd(settings.output_fd)

        self._manager.connect()
        if settings.drop_slot:
            self._manager.drop_slot()
            return ExitCode.SUCCESS

        info = self._manager.describe_slot()
        if info is not None:
            logger.info(
                "slot %s (plugin %s, %s) confirmed up to %s",
                info.slot_name,
                info.plugin,
                "active" if info.active else "inactive",
                lsn_to_str(info.confirmed_flush_lsn or 0),
            )

        self._listener = ControlChannelListener(
            settings.command_fd, self.state, notify=self.waker.wake
        )
        self._listener.start()

        channel = self._acquire()
        if channel is None:
            if self.state.control_closed and not self.state.shutdown_requested:
                raise closed_channel_error(self.state)
            return ExitCode.SUCCESS
        self._channel = channel

        feedback = FeedbackSender(
            channel,
            self.state,
            status_interval=settings.status_interval,
            feedback_interval=settings.feedback_interval,
        )
        self._session = ReplicationSession(
            channel,
            self.state,
            self._framer,
            decoder_for(settings.plugin_options),
            feedback,
            waker=self.waker,
        )
        self._session.run()
        return ExitCode.SUCCESS

    def _acquire(self) -> Optional[ReplicationChannel]:
        settings = self.settings

        def acquire() -> ReplicationChannel:
            return self._manager.acquire(create=settings.create_slot)

        if not settings.poll_mode:
            return acquire()
        coordinator = PollCoordinator(
            acquire,
            poll_interval=settings.poll_interval,
            poll_duration=settings.poll_duration,
            wait=self._wait_for_slot,
        )
        return coordinator.run()

    def _wait_for_slot(self, seconds: float) -> bool:
        """Sleep between poll attempts; True once polling should stop."""
        if not self._interrupted():
            readable, _, _ = select.select([self.waker], [], [], seconds)
            if readable:
                self.waker.drain()
        return self._interrupted()

    def _interrupted(self) -> bool:
        return self.state.shutdown_requested or self.state.control_closed

    def _log_failure(self, exc: StreamError) -> None:
        logger.error(
            "%s (slot %s, received %s, confirmed %s, exit %s)",
            exc,
            self.settings.slot_name,
            lsn_to_str(self.state.received_lsn),
            lsn_to_str(self.state.confirm_target),
            exc.exit_code.name,
        )

    def close(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        if self._framer is not None:
            try:
                self._framer.flush()
            except OutputError as exc:
                logger.debug("output flush on close failed: %s", exc)
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        self._manager.close()
        self.waker.close()
        if self._session is not None:
            logger.debug(
                "records: %d, keepalives: %d, frames by action: %s",
                self._session.records_received,
                self._session.keepalives_received,
                self._framer.action_counts() if self._framer else {},
            )


def run_stream(settings: Settings) -> ExitCode:
    runtime = StreamRuntime(settings)
    with runtime.signal_handlers():
        return runtime.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint used by both python -m and the console script hook."""
    settings = parse_settings(argv)
    configure_logging(settings.verbose)
    return int(run_stream(settings))


__all__ = [
    "LOG_FORMAT",
    "StreamRuntime",
    "build_slot_manager",
    "configure_logging",
    "log_settings",
    "main",
    "run_stream",
]

import pytest

from pg_logical_stream.cdc.feedback import (
    MAX_WAIT_SECONDS,
    MIN_WAIT_SECONDS,
    FeedbackSender,
)
from pg_logical_stream.cdc.positions import AckMode, SessionState


class RecordingChannel:
    def __init__(self) -> None:
        self.updates = []

    def send_status(self, update) -> None:
        self.updates.append(update)


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _sender(state, **kwargs):
    channel = RecordingChannel()
    clock = FakeClock()
    sender = FeedbackSender(channel, state, clock=clock, **kwargs)
    return sender, channel, clock


@pytest.mark.unit
def test_first_update_is_due_immediately_and_then_on_interval():
    state = SessionState()
    sender, channel, clock = _sender(state, status_interval=5.0)

    assert sender.maybe_send() is True
    assert sender.maybe_send() is False

    clock.now += 4.0
    assert sender.maybe_send() is False
    clock.now += 1.0
    assert sender.maybe_send() is True
    assert len(channel.updates) == 2
    assert sender.updates_sent == 2


@pytest.mark.unit
def test_update_reports_write_progress_and_confirmed_flush():
    state = SessionState()
    sender, channel, _ = _sender(state)
    state.record_received(0x300)
    state.request_ack(0x200)

    sender.maybe_send()

    update = channel.updates[-1]
    assert update.write_lsn == 0x300
    assert update.flush_lsn == 0x200
    assert update.apply_lsn == 0


@pytest.mark.unit
def test_changed_target_is_sent_right_away_without_feedback_interval():
    state = SessionState(ack_mode=AckMode.AUTO)
    sender, channel, clock = _sender(state, status_interval=0.0)
    state.record_received(10)
    sender.maybe_send()

    clock.now += 0.01
    state.record_received(20)

    assert sender.is_due(clock.now) is True
    sender.maybe_send()
    assert channel.updates[-1].flush_lsn == 20


@pytest.mark.unit
def test_feedback_interval_delays_target_changes():
    state = SessionState(ack_mode=AckMode.AUTO)
    sender, channel, clock = _sender(
        state, status_interval=0.0, feedback_interval=2.0
    )
    sender.send_now()
    state.record_received(10)

    clock.now += 1.0
    assert sender.maybe_send() is False
    assert sender.timeout(clock.now) == pytest.approx(1.0)

    clock.now += 1.0
    assert sender.maybe_send() is True
    assert channel.updates[-1].flush_lsn == 10


@pytest.mark.unit
def test_request_makes_update_due_regardless_of_timers():
    state = SessionState()
    sender, channel, clock = _sender(
        state, status_interval=60.0, feedback_interval=60.0
    )
    sender.send_now()
    state.request_feedback()

    assert sender.timeout(clock.now) == 0.0
    assert sender.maybe_send() is True
    assert sender.timeout(clock.now) == pytest.approx(60.0)
    assert len(channel.updates) == 2


@pytest.mark.unit
def test_timeout_is_clamped():
    state = SessionState()
    sender, _, clock = _sender(state, status_interval=5.0)
    sender.send_now()

    clock.now += 4.875
    assert sender.timeout(clock.now) == MIN_WAIT_SECONDS

    clock.now += 2.0
    assert sender.timeout(clock.now) == MIN_WAIT_SECONDS

    idle, _, idle_clock = _sender(SessionState(), status_interval=0.0)
    idle.send_now()
    assert idle.timeout(idle_clock.now) == MAX_WAIT_SECONDS


@pytest.mark.unit
def test_negative_intervals_are_rejected():
    with pytest.raises(ValueError):
        FeedbackSender(RecordingChannel(), SessionState(), status_interval=-1)
    with pytest.raises(ValueError):
        FeedbackSender(RecordingChannel(), SessionState(), feedback_interval=-1)

"""Capture lifecycle tests for SpeakPrep."""

import json

import pytest

from speakprep.core.errors import DeviceUnavailable, EmptyCapture, SessionBusy
from speakprep.core.log import PracticeLogger
from speakprep.core.recording import CaptureController, CompletionGate, SessionStatus


def _assert_idle(controller):
    session = controller.session
    assert session.status is SessionStatus.IDLE
    assert session.elapsed_seconds == 0
    assert session.amplitude == 0
    assert session.chunks == ()
    assert session.artifact is None


def _move_to(state, controller, source, scheduler):
    """Drive a fresh controller into *state*."""
    if state is SessionStatus.IDLE:
        return
    controller.start()
    if state is SessionStatus.CAPTURING:
        source.last.encoder.emit(b"ab")
        scheduler.advance(2)
        return
    if state is SessionStatus.STOPPING:
        source.flush_fires = False
        source.last.encoder.emit(b"ab")
        controller.stop()
        return
    if state is SessionStatus.READY:
        source.last.encoder.emit(b"ab")
    controller.stop()


def test_start_requests_processed_audio(controller, source):
    """start() opens one stream with echo cancellation, noise suppression and auto-gain."""
    session = controller.start()

    assert session.status is SessionStatus.CAPTURING
    assert session.elapsed_seconds == 0
    assert session.chunks == ()
    assert session.session_id
    constraints = source.last.constraints
    assert constraints.echo_cancellation
    assert constraints.noise_suppression
    assert constraints.auto_gain
    assert source.last.encoder.active
    assert source.last.level_tap is not None


def test_stop_assembles_chunks_in_arrival_order(controller, source):
    controller.start()
    encoder = source.last.encoder
    for chunk in (b"one", b"-two-", b"three"):
        encoder.emit(chunk)

    assert controller.stop() is SessionStatus.READY
    session = controller.session
    assert session.artifact is not None
    assert session.artifact.data == b"one-two-three"
    assert session.artifact.size == sum(len(c) for c in (b"one", b"-two-", b"three"))
    assert source.last.released
    assert source.last.level_tap.closed


def test_empty_chunks_are_ignored(controller, source):
    controller.start()
    source.last.encoder.emit(b"")
    source.last.encoder.emit(b"xy")

    assert controller.session.chunks == (b"xy",)


def test_stop_without_data_fails(controller, source):
    controller.start()

    assert controller.stop() is SessionStatus.FAILED
    session = controller.session
    assert session.artifact is None
    assert isinstance(session.last_error, EmptyCapture)


@pytest.mark.parametrize("state", [SessionStatus.IDLE, SessionStatus.READY, SessionStatus.FAILED])
def test_stop_outside_capture_is_noop(state, controller, source, scheduler):
    _move_to(state, controller, source, scheduler)
    before = controller.session

    assert controller.stop() is state
    assert controller.session == before


def test_stop_while_stopping_is_noop(controller, source, scheduler):
    _move_to(SessionStatus.STOPPING, controller, source, scheduler)

    assert controller.stop() is SessionStatus.STOPPING
    assert source.last.encoder.stop_calls == 1


def test_elapsed_counts_whole_seconds_while_capturing(controller, source, scheduler):
    controller.start()
    scheduler.advance(3.5)
    assert controller.session.elapsed_seconds == 3

    source.last.encoder.emit(b"data")
    controller.stop()
    scheduler.advance(10)
    assert controller.session.elapsed_seconds == 3

    controller.reset()
    scheduler.advance(10)
    assert controller.session.elapsed_seconds == 0


def test_time_limit_stops_capture(controller, source, scheduler):
    controller.start(time_limit=90)
    source.last.encoder.emit(b"answer")

    scheduler.advance(89)
    assert controller.status is SessionStatus.CAPTURING

    scheduler.advance(1)
    session = controller.session
    assert session.elapsed_seconds == 90
    assert session.status is SessionStatus.READY

    scheduler.advance(5)
    assert controller.session.elapsed_seconds == 90


def test_host_driven_auto_stop(controller, source, scheduler):
    controller.start()
    scheduler.advance(89)
    assert controller.auto_stop(90) is False

    scheduler.advance(1)
    assert controller.auto_stop(90) is True
    assert controller.status in (SessionStatus.READY, SessionStatus.FAILED)


def test_second_start_releases_first_session(controller, source):
    controller.start()
    first = source.last
    first.encoder.emit(b"old")

    controller.start()

    assert first.released
    assert not first.encoder.active
    assert first.level_tap.closed
    assert source.live_streams == [source.last]
    assert controller.session.chunks == ()

    # late data from the superseded encoder is dropped
    first.encoder.emit(b"stale")
    assert controller.session.chunks == ()


def test_start_after_ready_discards_artifact(controller, source):
    controller.start()
    source.last.encoder.emit(b"first take")
    controller.stop()
    old_artifact = controller.session.artifact

    controller.start()

    assert old_artifact.revoked
    assert controller.session.artifact is None
    assert controller.get_artifact() is None


def test_start_rejected_when_not_superseding(source, scheduler):
    controller = CaptureController(source, scheduler=scheduler, supersede=False)
    controller.start()

    with pytest.raises(SessionBusy):
        controller.start()
    assert len(source.streams) == 1
    assert controller.status is SessionStatus.CAPTURING


def test_device_unavailable_leaves_idle(controller, source):
    source.deny = True

    with pytest.raises(DeviceUnavailable):
        controller.start()

    assert controller.status is SessionStatus.IDLE
    assert isinstance(controller.session.last_error, DeviceUnavailable)

    source.deny = False
    assert controller.start().status is SessionStatus.CAPTURING


def test_fallback_resolves_when_flush_never_fires(controller, source, scheduler):
    source.flush_fires = False
    controller.start()
    encoder = source.last.encoder
    encoder.emit(b"kept")

    assert controller.stop() is SessionStatus.STOPPING
    scheduler.advance(2.9)
    assert controller.status is SessionStatus.STOPPING

    scheduler.advance(0.2)
    assert controller.status is SessionStatus.READY
    assert controller.session.artifact.data == b"kept"

    # the late notification and late data lose the race
    encoder.emit(b"late")
    encoder.fire_stop()
    assert controller.session.artifact.data == b"kept"
    assert controller.status is SessionStatus.READY


def test_fallback_without_data_fails(controller, source, scheduler):
    source.flush_fires = False
    controller.start()
    controller.stop()

    scheduler.advance(3)

    assert controller.status is SessionStatus.FAILED
    assert controller.session.artifact is None


def test_flush_cancels_fallback(controller, source, scheduler):
    controller.start()
    source.last.encoder.emit(b"x")
    controller.stop()

    assert controller.status is SessionStatus.READY
    assert scheduler.pending == []


def test_encoder_stop_error_resolves_immediately(controller, source):
    source.fail_encoder_stop = True
    controller.start()
    source.last.encoder.emit(b"partial")

    assert controller.stop() is SessionStatus.READY
    assert source.last.released


@pytest.mark.parametrize("state", list(SessionStatus))
def test_reset_from_any_state(state, controller, source, scheduler):
    _move_to(state, controller, source, scheduler)

    controller.reset()

    _assert_idle(controller)
    assert source.live_streams == []
    assert scheduler.pending == []


def test_reset_releases_everything_despite_failures(controller, source, scheduler):
    controller.start()
    source.last.encoder.emit(b"abc")
    source.fail_encoder_stop = True
    source.fail_tracks = True

    controller.clear()

    _assert_idle(controller)
    assert source.last.level_tap.closed
    assert scheduler.pending == []
    failed = [f.resource for f in controller.release_failures]
    assert failed == ["encoder", "device stream"]


def test_reset_blocks_stale_callbacks(controller, source, scheduler):
    source.flush_fires = False
    controller.start()
    encoder = source.last.encoder
    encoder.emit(b"abc")
    controller.stop()

    controller.reset()
    encoder.emit(b"def")
    encoder.fire_stop()
    scheduler.advance(10)

    _assert_idle(controller)


def test_amplitude_sampled_only_while_capturing(controller, source, scheduler):
    source.level = 0.42
    controller.start()
    assert controller.session.amplitude == 0

    scheduler.advance(0.1)
    assert controller.session.amplitude == pytest.approx(0.42)

    source.level = 1.7
    scheduler.advance(0.1)
    assert controller.session.amplitude == 1.0

    source.last.encoder.emit(b"x")
    controller.stop()
    assert controller.session.amplitude == 0
    scheduler.advance(1)
    assert controller.session.amplitude == 0


def test_get_artifact_snapshot(controller, source):
    assert controller.get_artifact() is None

    controller.start()
    assert controller.get_artifact() is None
    source.last.encoder.emit(b"12")
    partial = controller.get_artifact()
    assert partial.data == b"12"
    assert partial.sample_rate == 16000
    assert controller.status is SessionStatus.CAPTURING

    source.last.encoder.emit(b"34")
    controller.stop()
    assert controller.get_artifact() is controller.session.artifact
    assert controller.get_artifact().data == b"1234"


def test_wait_returns_after_resolution(controller, source, scheduler):
    source.flush_fires = False
    controller.start()
    controller.stop()

    assert controller.wait(timeout=0.01) is SessionStatus.STOPPING
    scheduler.advance(3)
    assert controller.wait(timeout=0.01) is SessionStatus.FAILED


def test_begin_upload_guard(controller):
    assert controller.begin_upload() is True
    assert controller.begin_upload() is False
    assert controller.session.uploading

    controller.set_uploading(False)
    assert controller.begin_upload() is True

    controller.reset()
    assert controller.session.uploading is False


def test_completion_gate_first_wins():
    gate = CompletionGate()

    assert gate.close("flush") is True
    assert gate.close("fallback") is False
    assert gate.winner == "flush"


def test_practice_log_records_capture(tmp_path, source, scheduler):
    log_path = tmp_path / "practice.jsonl"
    controller = CaptureController(
        source, scheduler=scheduler, practice_logger=PracticeLogger(log_path)
    )
    controller.start(question_serial=7)
    source.last.encoder.emit(b"abcd")
    scheduler.advance(2)
    controller.stop()

    start, end = [json.loads(line) for line in log_path.read_text().splitlines()]
    assert start["event"] == "start"
    assert start["question_serial"] == 7
    assert start["device_name"] == "Fake Mic"
    assert end["event"] == "end"
    assert end["status"] == "ready"
    assert end["resolved_by"] == "flush"
    assert end["chunk_count"] == 1
    assert end["byte_count"] == 4
    assert end["elapsed_seconds"] == 2
    assert end["session_id"] == start["session_id"]


def test_stop_while_encoder_starts_releases_everything(controller, source, scheduler):
    source.on_encoder_start = controller.stop

    controller.start()
    encoder = source.last.encoder
    scheduler.advance(5)

    assert controller.status is SessionStatus.FAILED
    assert not encoder.active
    assert source.live_streams == []
    assert source.last.level_tap.closed
    assert scheduler.pending == []


def test_stop_while_microphone_opens_is_noop(controller, source, scheduler):
    source.on_level_tap = controller.stop

    controller.start()
    source.last.encoder.emit(b"ok")

    assert controller.status is SessionStatus.CAPTURING
    assert controller.stop() is SessionStatus.READY


def test_reset_while_microphone_opens(controller, source, scheduler):
    source.on_level_tap = controller.reset

    session = controller.start()
    scheduler.advance(5)

    assert session.status is SessionStatus.IDLE
    _assert_idle(controller)
    assert source.live_streams == []
    assert source.last.level_tap.closed
    assert not source.last.encoder.active
    assert scheduler.pending == []


def test_release_failures_cleared_by_next_start(controller, source):
    controller.start()
    source.fail_tracks = True
    controller.reset()
    assert [f.resource for f in controller.release_failures] == ["device stream"]

    source.fail_tracks = False
    controller.start()

    assert controller.release_failures == []

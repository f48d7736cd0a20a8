"""
Tests for the stability gate, schedulers and the auto-capture session.
"""
import threading
import time

import pytest

from error_handlers import CameraInitError, CaptureEncodeError, SessionBusyError
from layer3_auto_capture import (
    CaptureConfig,
    CaptureSession,
    SessionState,
    StabilityGate,
    ThreadScheduler,
)

from conftest import FakeVideoSource

PERIOD = 0.2


def fired_at(gate, scores):
    return [i for i, score in enumerate(scores) if gate.feed(score)]


class StopDuringCaptureSource(FakeVideoSource):
    """Stops the session from inside the n-th draw."""

    def __init__(self, frame, stop_on_draw):
        super().__init__(frame=frame)
        self.stop_on_draw = stop_on_draw
        self.session = None

    def draw_into(self, surface):
        if self.draw_calls + 1 == self.stop_on_draw:
            self.session.stop()
        return super().draw_into(surface)


class TestStabilityGate:
    """Test threshold + run-length gate."""

    def test_reset_by_low_score(self):
        """[60, 60, 30, 60, 60] fires once, after the last frame."""
        gate = StabilityGate(threshold=50, required_stable_frames=2)
        assert fired_at(gate, [60, 60, 30, 60, 60]) == [4]

    def test_scripted_sequence_fires_after_fourth_frame(self):
        gate = StabilityGate(threshold=50, required_stable_frames=2)
        assert fired_at(gate, [20, 45, 55, 58, 100]) == [3]

    def test_score_equal_to_threshold_is_stable(self):
        gate = StabilityGate(threshold=50, required_stable_frames=2, warmup_frames=0)
        assert fired_at(gate, [50, 50]) == [1]

    def test_score_below_threshold_is_not_stable(self):
        gate = StabilityGate(threshold=50, required_stable_frames=2, warmup_frames=0)
        assert fired_at(gate, [49, 50, 49, 50]) == []

    def test_count_grows_then_resets(self):
        gate = StabilityGate(threshold=50, required_stable_frames=5, warmup_frames=0)
        counts = []
        for score in [60, 70, 80, 10, 90]:
            gate.feed(score)
            counts.append(gate.stable_frame_count)
        assert counts == [1, 2, 3, 0, 1]

    def test_reset_restores_warmup(self):
        gate = StabilityGate(threshold=50, required_stable_frames=1)
        assert not gate.feed(90)
        assert gate.feed(90)
        gate.reset()
        assert gate.warming_up
        assert not gate.feed(90)


class TestCaptureConfig:
    """Test capture configuration validation."""

    def test_defaults(self):
        config = CaptureConfig()
        assert config.sampling_period == 0.2
        assert config.clarity_threshold == 50
        assert config.required_stable_frames == 2
        assert config.pre_capture_delay == 0.5
        assert config.roi.bounds(100, 100) == (20, 20, 60, 60)

    @pytest.mark.parametrize("overrides", [
        {'sampling_period': 0},
        {'clarity_threshold': 101},
        {'required_stable_frames': 0},
        {'pre_capture_delay': -1},
        {'jpeg_quality': 0},
        {'roi_offset': 0.3, 'roi_size': 0.8},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            CaptureConfig(**overrides)


@pytest.fixture
def events():
    return {'updates': [], 'captured': [], 'errors': []}


@pytest.fixture
def build_session(make_source, scripted_scorer, checkerboard_frame, manual_scheduler, events):
    def build(scores=None, source=None, **config):
        source = source or make_source(frame=checkerboard_frame)
        session = CaptureSession(
            source,
            config=CaptureConfig(**config),
            scheduler=manual_scheduler,
            on_clarity_update=events['updates'].append,
            on_captured=events['captured'].append,
            on_error=events['errors'].append
        )
        if scores is not None:
            session.scorer = scripted_scorer(scores)
        return session
    return build


class TestCaptureSession:
    """Test the capture-session state machine."""

    def test_starts_idle(self, build_session):
        session = build_session()
        assert session.state is SessionState.IDLE
        assert not session.is_active

    def test_scripted_sequence_captures_once(self, build_session, manual_scheduler, events):
        """[20, 45, 55, 58, 100] captures right after the 4th frame."""
        session = build_session([20, 45, 55, 58, 100], pre_capture_delay=0)
        assert session.start()

        manual_scheduler.advance(PERIOD * 3)
        assert events['captured'] == []
        assert session.state is SessionState.SAMPLING

        manual_scheduler.advance(PERIOD)
        assert len(events['captured']) == 1
        assert session.scorer.calls == 4
        assert session.state is SessionState.IDLE

        manual_scheduler.advance(PERIOD * 5)
        assert len(events['captured']) == 1
        assert session.scorer.calls == 4

    def test_low_score_resets_run(self, build_session, manual_scheduler, events):
        session = build_session([60, 60, 30, 60, 60], pre_capture_delay=0)
        session.start()

        manual_scheduler.advance(PERIOD * 4)
        assert events['captured'] == []

        manual_scheduler.advance(PERIOD)
        assert len(events['captured']) == 1

    def test_pre_capture_delay(self, build_session, manual_scheduler, events):
        """Sampling stops on entering CAPTURING; the still follows the delay."""
        session = build_session([20, 60, 60], pre_capture_delay=0.5)
        session.start()

        manual_scheduler.advance(PERIOD * 3)
        assert session.state is SessionState.CAPTURING
        assert manual_scheduler.active_timers == 0
        assert events['updates'][-1].status == 'capturing'
        assert events['captured'] == []

        manual_scheduler.advance(0.5)
        assert len(events['captured']) == 1
        assert session.scorer.calls == 3

    def test_captured_image_is_jpeg(self, build_session, manual_scheduler, events, checkerboard_frame):
        session = build_session([20, 60, 60], pre_capture_delay=0)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        image = events['captured'][0]
        assert image.data[:2] == b'\xff\xd8'
        assert image.content_type == 'image/jpeg'
        assert (image.height, image.width) == checkerboard_frame.shape[:2]
        assert image.mode == 'auto'
        assert image.score == 60

    def test_stop_cancels_ticks(self, build_session, manual_scheduler):
        """No scoring after stop()."""
        session = build_session([10] * 10)
        session.start()
        manual_scheduler.advance(PERIOD * 2)
        draws = session.video_source.draw_calls

        session.stop()
        manual_scheduler.advance(PERIOD * 5)

        assert session.scorer.calls == 2
        assert session.video_source.draw_calls == draws
        assert manual_scheduler.active_timers == 0
        assert session.state is SessionState.IDLE

    def test_start_twice_keeps_one_timer(self, build_session, manual_scheduler):
        session = build_session([10] * 10)
        session.start()
        session.start()

        assert manual_scheduler.active_timers == 1
        manual_scheduler.advance(PERIOD)
        assert session.scorer.calls == 1

    def test_restart_resets_counters(self, build_session, manual_scheduler):
        session = build_session([20, 60, 10, 10], warmup_frames=0, required_stable_frames=3)
        session.start()
        manual_scheduler.advance(PERIOD * 2)
        assert session.stable_frame_count == 1
        assert session.last_score == 60

        session.start()
        assert session.stable_frame_count == 0
        assert session.last_score == 0

    def test_stop_during_pre_capture_delay(self, build_session, manual_scheduler, events):
        session = build_session([20, 60, 60], pre_capture_delay=0.5)
        session.start()
        manual_scheduler.advance(PERIOD * 3)
        assert session.state is SessionState.CAPTURING

        session.stop()
        manual_scheduler.advance(1.0)

        assert events['captured'] == []
        assert session.state is SessionState.IDLE
        assert manual_scheduler.pending == []

    def test_stop_during_capture_is_not_undone(self, build_session, manual_scheduler, events, checkerboard_frame):
        """A capture in flight completes but never re-arms sampling after stop()."""
        source = StopDuringCaptureSource(frame=checkerboard_frame, stop_on_draw=4)
        session = build_session([20, 60, 60], source=source, pre_capture_delay=0, resume_after_capture=True)
        source.session = session
        session.start()

        manual_scheduler.advance(PERIOD * 3)

        assert len(events['captured']) == 1
        assert session.state is SessionState.IDLE
        assert manual_scheduler.active_timers == 0

        manual_scheduler.advance(PERIOD * 3)
        assert session.scorer.calls == 3

    def test_failed_capture_after_stop_stays_idle(self, build_session, manual_scheduler, events,
                                                  checkerboard_frame, monkeypatch):
        import layer3_auto_capture.trigger as trigger
        monkeypatch.setattr(trigger.cv2, 'imencode', lambda *args, **kwargs: (False, None))

        source = StopDuringCaptureSource(frame=checkerboard_frame, stop_on_draw=4)
        session = build_session([20, 60, 60], source=source, pre_capture_delay=0)
        source.session = session
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert isinstance(events['errors'][0], CaptureEncodeError)
        assert session.state is SessionState.IDLE
        assert manual_scheduler.active_timers == 0

    def test_video_not_ready_is_noop(self, build_session, make_source, manual_scheduler, events):
        source = make_source(frame=None)
        session = build_session([90] * 5, source=source)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert session.scorer.calls == 0
        assert events['updates'] == []
        assert events['errors'] == []
        assert session.state is SessionState.SAMPLING

    def test_transient_frame_error_skips_tick(self, build_session, manual_scheduler, events):
        session = build_session([60, 60], warmup_frames=0, pre_capture_delay=0)
        session.start()

        manual_scheduler.advance(PERIOD)
        assert session.stable_frame_count == 1

        session.video_source.fail_next_draws = 1
        manual_scheduler.advance(PERIOD)
        assert session.stable_frame_count == 1
        assert manual_scheduler.active_timers == 1
        assert events['errors'] == []

        manual_scheduler.advance(PERIOD)
        assert len(events['captured']) == 1

    def test_camera_unavailable(self, build_session, make_source, manual_scheduler, events):
        source = make_source(init_error=CameraInitError(0, reason="permission denied"))
        session = build_session(source=source)

        assert not session.start()
        assert session.state is SessionState.IDLE
        assert manual_scheduler.active_timers == 0
        assert events['errors'][0].error_code == 'CAMERA_INIT_FAILED'

    def test_encode_failure_resumes_sampling(self, build_session, manual_scheduler, events, monkeypatch):
        import layer3_auto_capture.trigger as trigger
        monkeypatch.setattr(trigger.cv2, 'imencode', lambda *args, **kwargs: (False, None))

        session = build_session([20, 60, 60, 10], pre_capture_delay=0)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert isinstance(events['errors'][0], CaptureEncodeError)
        assert events['captured'] == []
        assert session.state is SessionState.SAMPLING
        assert manual_scheduler.active_timers == 1

    def test_resume_after_capture(self, build_session, manual_scheduler, events):
        session = build_session([20, 60, 60, 10], pre_capture_delay=0, resume_after_capture=True)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert len(events['captured']) == 1
        assert session.state is SessionState.SAMPLING
        assert manual_scheduler.active_timers == 1

    def test_clarity_updates_emitted(self, build_session, manual_scheduler, events):
        session = build_session([20, 40, 45])
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert [u.clarity for u in events['updates']] == [20, 40, 45]
        assert [u.status for u in events['updates']] == ['analyzing', 'detected', 'detected']
        assert events['updates'][-1].required_stable_frames == 2

    def test_gate_fire_update_is_capturing(self, build_session, manual_scheduler, events):
        """Ticks between threshold and 60 read detected; the gate fire reads capturing."""
        session = build_session([20, 55, 55], pre_capture_delay=0.5)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert [u.status for u in events['updates']] == ['analyzing', 'detected', 'detected', 'capturing']

    def test_real_scorer_auto_captures_checkerboard(self, build_session, manual_scheduler, events):
        session = build_session(pre_capture_delay=0)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        assert len(events['captured']) == 1
        assert events['captured'][0].score > 50


class TestManualCapture:
    """Test the manual capture override."""

    def test_bypasses_gate(self, build_session, manual_scheduler, events):
        session = build_session([10] * 5)
        session.start()
        manual_scheduler.advance(PERIOD)

        image = session.capture_now()

        assert image.mode == 'manual'
        assert events['captured'] == [image]
        assert session.state is SessionState.IDLE
        assert manual_scheduler.active_timers == 0

    def test_from_idle_acquires_camera(self, build_session):
        session = build_session()
        image = session.capture_now()
        assert image.data[:2] == b'\xff\xd8'

    def test_rejected_while_capturing(self, build_session, manual_scheduler):
        session = build_session([20, 60, 60], pre_capture_delay=0.5)
        session.start()
        manual_scheduler.advance(PERIOD * 3)

        with pytest.raises(SessionBusyError):
            session.capture_now()

    def test_camera_unavailable(self, build_session, make_source, events):
        source = make_source(init_error=CameraInitError(0, reason="busy"))
        session = build_session(source=source)

        with pytest.raises(CameraInitError):
            session.capture_now()
        assert session.state is SessionState.IDLE
        assert len(events['errors']) == 1


class TestThreadScheduler:
    """Test the thread-backed scheduler."""

    def test_repeating_timer_stops_on_cancel(self):
        calls = []
        ticked = threading.Event()

        def tick():
            calls.append(time.monotonic())
            if len(calls) >= 3:
                ticked.set()

        handle = ThreadScheduler().call_every(0.01, tick)
        assert ticked.wait(2.0)
        handle.cancel()
        time.sleep(0.05)
        count = len(calls)
        time.sleep(0.05)

        assert len(calls) == count
        assert handle.cancelled

    def test_delayed_call_runs_once(self):
        done = threading.Event()
        ThreadScheduler().call_later(0.01, done.set)
        assert done.wait(2.0)

    def test_cancelled_delayed_call_never_runs(self):
        done = threading.Event()
        handle = ThreadScheduler().call_later(0.05, done.set)
        handle.cancel()
        assert not done.wait(0.15)

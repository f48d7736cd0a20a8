"""
Layer 3 — Auto-Capture Session
Samples the live camera on a fixed timer, scores each frame for clarity and
captures a still once the label has been clear for enough consecutive frames.

States:
    IDLE       camera off, no timer
    SAMPLING   timer running, every tick runs sampler -> scorer -> gate
    CAPTURING  timer stopped, still capture pending or in progress
"""
import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from error_handlers import ScannerError, SessionBusyError
from layer1_capture.sampler import FrameSampler
from layer2_clarity.clarity import ClarityScorer, ClaritySample, RegionOfInterest
from layer2_clarity.status import CAPTURING, classify_status, status_message

from .gate import StabilityGate
from .scheduler import ThreadScheduler
from .trigger import AUTO, MANUAL, CapturedImage, StillCapturer

logger = logging.getLogger(__name__)


@dataclass
class CaptureConfig:
    """Configuration for the auto-capture session."""
    # Sampling
    sampling_period: float = 0.2        # Seconds between samples

    # Stability gate
    clarity_threshold: int = 50         # Minimum score for a stable frame
    required_stable_frames: int = 2     # Consecutive stable frames before capture
    warmup_frames: int = 1              # Scores ignored after (re)arming

    # Capture
    pre_capture_delay: float = 0.5      # Seconds of "capturing" feedback before the still
    jpeg_quality: int = 80
    resume_after_capture: bool = False  # Re-arm sampling instead of going idle

    # Region of interest
    roi_offset: float = 0.2
    roi_size: float = 0.6

    def __post_init__(self):
        if self.sampling_period <= 0:
            raise ValueError(f"sampling_period must be positive, got {self.sampling_period}")
        if not 0 <= self.clarity_threshold <= 100:
            raise ValueError(f"clarity_threshold must be within 0-100, got {self.clarity_threshold}")
        if self.required_stable_frames < 1:
            raise ValueError(f"required_stable_frames must be at least 1, got {self.required_stable_frames}")
        if self.warmup_frames < 0:
            raise ValueError(f"warmup_frames must not be negative, got {self.warmup_frames}")
        if self.pre_capture_delay < 0:
            raise ValueError(f"pre_capture_delay must not be negative, got {self.pre_capture_delay}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be within 1-100, got {self.jpeg_quality}")
        RegionOfInterest(offset=self.roi_offset, size=self.roi_size)

    @property
    def roi(self) -> RegionOfInterest:
        return RegionOfInterest(offset=self.roi_offset, size=self.roi_size)

    def to_dict(self) -> Dict:
        return asdict(self)


class SessionState(str, Enum):
    IDLE = 'idle'
    SAMPLING = 'sampling'
    CAPTURING = 'capturing'


@dataclass(frozen=True)
class ClarityUpdate:
    """Per-tick output for the status display."""
    clarity: int
    status: str
    stable_frames: int
    required_stable_frames: int
    timestamp: float

    @property
    def message(self) -> str:
        return status_message(self.status)

    def to_dict(self) -> Dict:
        return {
            'clarity': self.clarity,
            'status': self.status,
            'message': self.message,
            'stable_frames': self.stable_frames,
            'required_stable_frames': self.required_stable_frames,
            'timestamp': self.timestamp
        }


class CaptureSession:
    """
    Capture-session state machine.

    Callbacks:
        on_clarity_update(ClarityUpdate): every scored tick, and on entering CAPTURING
        on_captured(CapturedImage): once per completed capture
        on_error(ScannerError): camera unavailable, capture failures
    """

    def __init__(
        self,
        video_source,
        config: Optional[CaptureConfig] = None,
        scheduler=None,
        scorer: Optional[ClarityScorer] = None,
        on_clarity_update: Optional[Callable[[ClarityUpdate], None]] = None,
        on_captured: Optional[Callable[[CapturedImage], None]] = None,
        on_error: Optional[Callable[[ScannerError], None]] = None,
    ):
        self.config = config or CaptureConfig()
        self.video_source = video_source
        self.scheduler = scheduler or ThreadScheduler()
        self.scorer = scorer or ClarityScorer(self.config.roi)
        self.sampler = FrameSampler(video_source)
        self.capturer = StillCapturer(video_source, jpeg_quality=self.config.jpeg_quality)
        self.gate = StabilityGate(
            threshold=self.config.clarity_threshold,
            required_stable_frames=self.config.required_stable_frames,
            warmup_frames=self.config.warmup_frames
        )

        self.on_clarity_update = on_clarity_update
        self.on_captured = on_captured
        self.on_error = on_error

        # Request threads and the timer thread both drive the session
        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._timer = None
        self._tick_token: Optional[object] = None
        self._pending_capture = None
        self._capture_token: Optional[object] = None
        self.last_score = 0

        logger.info("CaptureSession initialized")
        logger.debug(f"Config: {self.config}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not SessionState.IDLE

    @property
    def stable_frame_count(self) -> int:
        return self.gate.stable_frame_count

    @property
    def threshold(self) -> int:
        return self.config.clarity_threshold

    @property
    def required_stable_frames(self) -> int:
        return self.config.required_stable_frames

    def snapshot(self) -> Dict:
        """Current session state for status endpoints."""
        with self._lock:
            return {
                'state': self._state.value,
                'is_active': self.is_active,
                'stable_frames': self.stable_frame_count,
                'last_score': self.last_score,
                'threshold': self.threshold,
                'required_stable_frames': self.required_stable_frames
            }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Acquire the video source and start sampling.

        Returns:
            bool: True if sampling is running, False if the camera could not
            be acquired or a capture is in progress
        """
        with self._lock:
            if self._state is SessionState.CAPTURING:
                logger.info("Capture in progress, start ignored")
                return False

            try:
                self.video_source.initialize()
            except ScannerError as e:
                logger.error(f"Camera unavailable: {e.message}")
                self._arm_idle()
                self._emit_error(e)
                return False

            self._arm_sampling()
            logger.info("Sampling started")
            return True

    def stop(self):
        """Stop sampling and drop any pending capture."""
        with self._lock:
            if self._state is not SessionState.IDLE:
                logger.info(f"Stopping session (was {self._state.value})")
            self._arm_idle()

    def capture_now(self) -> CapturedImage:
        """
        Manual capture: bypass the gate and capture immediately.

        Raises:
            SessionBusyError: If a capture is already in progress
            ScannerError: If the camera is unavailable or the capture fails
        """
        with self._lock:
            if self._state is SessionState.CAPTURING:
                raise SessionBusyError(self._state.value)

            if self._state is SessionState.IDLE:
                try:
                    self.video_source.initialize()
                except ScannerError as e:
                    self._emit_error(e)
                    raise

            resume = self._state is SessionState.SAMPLING
            logger.info("Manual capture requested")
            token = self._enter_capturing(self.last_score)
            return self._complete_capture(token, self.last_score, MANUAL, reraise=True, resume_on_failure=resume)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def tick(self) -> Optional[ClaritySample]:
        """
        One pass of sampler -> scorer -> gate.

        Returns:
            ClaritySample or None when the tick was skipped
        """
        with self._lock:
            if self._state is not SessionState.SAMPLING:
                return None

            try:
                frame = self.sampler.sample()
            except Exception as e:
                logger.warning(f"Frame sampling failed, skipping tick: {e}")
                return None

            if frame is None:
                return None

            sample = self.scorer.score(frame)
            self.last_score = sample.score
            ready = self.gate.feed(sample.score)

            self._emit_update(ClarityUpdate(
                clarity=sample.score,
                status=classify_status(sample.score, self.threshold),
                stable_frames=self.required_stable_frames if ready else self.stable_frame_count,
                required_stable_frames=self.required_stable_frames,
                timestamp=sample.timestamp
            ))
            logger.debug(f"Clarity {sample.score} (stable {self.stable_frame_count}/{self.required_stable_frames})")

            if ready:
                logger.info(f"Label clear for {self.required_stable_frames} frames, auto-capturing")
                token = self._enter_capturing(sample.score)
                delay = self.config.pre_capture_delay
                if delay > 0:
                    self._pending_capture = self.scheduler.call_later(
                        delay, lambda: self._complete_capture(token, sample.score, AUTO)
                    )
                else:
                    self._complete_capture(token, sample.score, AUTO)

            return sample

    def _scheduled_tick(self, token):
        # Ticks from a replaced or cancelled timer are dropped
        with self._lock:
            if token is not self._tick_token:
                return
            self.tick()

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._tick_token = None

    def _cancel_pending_capture(self):
        if self._pending_capture is not None:
            self._pending_capture.cancel()
            self._pending_capture = None
        self._capture_token = None

    def _arm_sampling(self):
        self._cancel_timer()
        self._cancel_pending_capture()
        self.gate.reset()
        self.last_score = 0
        self._state = SessionState.SAMPLING

        token = object()
        self._tick_token = token
        self._timer = self.scheduler.call_every(
            self.config.sampling_period, lambda: self._scheduled_tick(token)
        )

    def _arm_idle(self):
        self._cancel_timer()
        self._cancel_pending_capture()
        self.gate.reset()
        self.last_score = 0
        self._state = SessionState.IDLE

    def _enter_capturing(self, score: int) -> object:
        self._cancel_timer()
        self.gate.reset()
        self._state = SessionState.CAPTURING

        token = object()
        self._capture_token = token
        self._emit_update(ClarityUpdate(
            clarity=score,
            status=CAPTURING,
            stable_frames=0,
            required_stable_frames=self.required_stable_frames,
            timestamp=time.time()
        ))
        return token

    def _complete_capture(self, token, score: int, mode: str, reraise: bool = False,
                          resume_on_failure: bool = True) -> Optional[CapturedImage]:
        with self._lock:
            if token is not self._capture_token or self._state is not SessionState.CAPTURING:
                logger.debug("Capture cancelled before it ran")
                return None
            self._pending_capture = None

            try:
                image = self.capturer.capture(score=score, mode=mode)
            except ScannerError as e:
                logger.error(f"Capture failed: {e.message}")
                # A stop() during the capture already left the session idle
                if token is self._capture_token:
                    if resume_on_failure:
                        self._arm_sampling()
                    else:
                        self._arm_idle()
                self._emit_error(e)
                if reraise:
                    raise
                return None

            if token is not self._capture_token:
                # stop() ran while the still was being drawn
                logger.info("Session stopped during capture, not re-arming")
                self._emit_captured(image)
                return image

            self._capture_token = None
            if self.config.resume_after_capture:
                self._arm_sampling()
            else:
                self._arm_idle()

            self._emit_captured(image)
            return image

    def _emit_update(self, update: ClarityUpdate):
        if self.on_clarity_update is not None:
            self.on_clarity_update(update)

    def _emit_captured(self, image: CapturedImage):
        if self.on_captured is not None:
            self.on_captured(image)

    def _emit_error(self, error: ScannerError):
        if self.on_error is not None:
            self.on_error(error)

"""
Layer 3 — Stability Gate
Counts consecutive clear frames and decides when to capture.
"""
import logging

logger = logging.getLogger(__name__)


class StabilityGate:
    """
    Two-stage gate: a frame must score at least `threshold`, and
    `required_stable_frames` such frames must arrive in a row.

    The first `warmup_frames` scores after reset() are not counted; the
    camera's auto-exposure is still settling when sampling is (re)armed.
    """

    def __init__(self, threshold: int = 50, required_stable_frames: int = 2, warmup_frames: int = 1):
        self.threshold = threshold
        self.required_stable_frames = required_stable_frames
        self.warmup_frames = warmup_frames
        self._stable_frame_count = 0
        self._warmup_remaining = warmup_frames

    @property
    def stable_frame_count(self) -> int:
        return self._stable_frame_count

    @property
    def warming_up(self) -> bool:
        return self._warmup_remaining > 0

    def reset(self):
        self._stable_frame_count = 0
        self._warmup_remaining = self.warmup_frames

    def feed(self, score: int) -> bool:
        """
        Record one frame's score.

        Returns:
            bool: True when the run of stable frames reaches the required
            length. The run counter restarts from zero after firing.
        """
        if self._warmup_remaining > 0:
            self._warmup_remaining -= 1
            logger.debug(f"Warm-up frame ignored (score {score})")
            return False

        if score >= self.threshold:
            self._stable_frame_count += 1
        else:
            self._stable_frame_count = 0

        if self._stable_frame_count >= self.required_stable_frames:
            logger.debug(f"Stable for {self._stable_frame_count} frames")
            self._stable_frame_count = 0
            return True
        return False

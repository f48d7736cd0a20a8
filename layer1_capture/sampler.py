"""
Layer 1 — Frame Sampler
Pulls a still frame from the live video source into a reusable RGBA surface.
"""
import logging
from typing import Optional

import cv2
import numpy as np

from error_handlers import FrameCaptureError, ScannerError

logger = logging.getLogger(__name__)


class FrameSampler:
    """
    Owns the drawing surface the clarity scorer reads from.

    The surface is overwritten on every sample and reallocated whenever the
    video resolution changes. Nothing else writes to it.
    """

    def __init__(self, video_source):
        """
        Args:
            video_source: Object exposing frame_size() -> (width, height)
                and draw_into(surface) -> surface
        """
        self.video_source = video_source
        self._surface: Optional[np.ndarray] = None

    @property
    def surface(self) -> Optional[np.ndarray]:
        return self._surface

    def _ensure_surface(self, width: int, height: int) -> np.ndarray:
        if self._surface is None or self._surface.shape[:2] != (height, width):
            logger.debug(f"Allocating {width}x{height} sampling surface")
            self._surface = np.zeros((height, width, 4), dtype=np.uint8)
        return self._surface

    def sample(self) -> Optional[np.ndarray]:
        """
        Capture the current video frame.

        Returns:
            numpy.ndarray: HxWx4 RGBA FrameBuffer, or None when the video
            source is not ready yet (zero width or height)

        Raises:
            FrameCaptureError: If drawing or reading pixels fails
        """
        width, height = self.video_source.frame_size()
        if width <= 0 or height <= 0:
            logger.debug("Video source not ready, skipping sample")
            return None

        surface = self._ensure_surface(width, height)
        try:
            return self.video_source.draw_into(surface)
        except ScannerError:
            raise
        except (cv2.error, ValueError) as e:
            raise FrameCaptureError(reason=str(e))

"""
Layer 3 — Capture Trigger
Freezes the current video frame into a JPEG still.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict

import cv2
import numpy as np

from error_handlers import CaptureEncodeError, FrameCaptureError, ScannerError

logger = logging.getLogger(__name__)

AUTO = 'auto'
MANUAL = 'manual'


@dataclass(frozen=True)
class CapturedImage:
    """Encoded still handed to the identification service."""
    data: bytes
    width: int
    height: int
    score: int
    mode: str
    timestamp: str
    content_type: str = 'image/jpeg'

    @property
    def filename(self) -> str:
        return f"medicine_{self.timestamp}.jpg"

    def to_dict(self) -> Dict:
        """Metadata only; the image bytes are left out."""
        return {
            'filename': self.filename,
            'width': self.width,
            'height': self.height,
            'score': self.score,
            'mode': self.mode,
            'timestamp': self.timestamp,
            'content_type': self.content_type,
            'size_bytes': len(self.data)
        }


class StillCapturer:
    """
    Draws the video frame onto its own fresh surface and encodes it.
    Never touches the sampler's surface.
    """

    def __init__(self, video_source, jpeg_quality: int = 80):
        self.video_source = video_source
        self.jpeg_quality = jpeg_quality

    def capture(self, score: int = 0, mode: str = AUTO) -> CapturedImage:
        """
        Capture and encode the current frame.

        Raises:
            FrameCaptureError: If the video source is not ready or drawing fails
            CaptureEncodeError: If JPEG encoding fails
        """
        width, height = self.video_source.frame_size()
        if width <= 0 or height <= 0:
            raise FrameCaptureError(reason="video source not ready")

        surface = np.zeros((height, width, 4), dtype=np.uint8)
        try:
            self.video_source.draw_into(surface)
        except ScannerError:
            raise
        except (cv2.error, ValueError) as e:
            raise FrameCaptureError(reason=str(e))

        try:
            bgr = cv2.cvtColor(surface, cv2.COLOR_RGBA2BGR)
            ok, buffer = cv2.imencode('.jpg', bgr, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        except cv2.error as e:
            raise CaptureEncodeError(reason=str(e))

        if not ok:
            raise CaptureEncodeError(reason="cv2.imencode returned False")

        image = CapturedImage(
            data=buffer.tobytes(),
            width=width,
            height=height,
            score=score,
            mode=mode,
            timestamp=datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
        )
        logger.info(f"Captured {mode} still {width}x{height} ({len(image.data)} bytes, clarity {score})")
        return image

"""
Layer 2 — Clarity Scoring
Estimates how reader-ready the text on a medicine label is.
Combines edge density, contrast, and local sharpness over the central region
of a frame into a 0-100 clarity score.
"""
import cv2
import numpy as np
import logging
import math
import time
from typing import Dict, Optional, Tuple
from dataclasses import dataclass

from error_handlers import InvalidImageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionOfInterest:
    """Central block of the frame assumed to contain the label."""
    offset: float = 0.2   # Left/top offset as a fraction of width/height
    size: float = 0.6     # Region width/height as a fraction of the frame

    def __post_init__(self):
        if self.offset < 0 or self.size <= 0 or self.offset + self.size > 1:
            raise ValueError(f"Region of interest out of frame: offset={self.offset}, size={self.size}")

    def bounds(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Pixel bounds (x, y, w, h) for a frame of the given size."""
        return (
            int(width * self.offset),
            int(height * self.offset),
            int(width * self.size),
            int(height * self.size),
        )


DEFAULT_ROI = RegionOfInterest()


@dataclass(frozen=True)
class ClaritySample:
    """Score of one sampled frame."""
    score: int
    timestamp: float

    def to_dict(self) -> Dict:
        return {'score': self.score, 'timestamp': self.timestamp}


@dataclass(frozen=True)
class ClarityMetrics:
    """Container for the intermediate clarity metrics."""
    edge_density: float   # Edge hits per 100 visited pixels
    contrast: float       # Mean distance from mid-gray, 0-100
    sharpness: float      # Mean 3x3 neighbourhood std dev, x2
    boosted: bool         # High contrast + edges bonus applied
    score: int            # Final clarity score, 0-100

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            'edge_density': round(self.edge_density, 2),
            'contrast': round(self.contrast, 2),
            'sharpness': round(self.sharpness, 2),
            'boosted': self.boosted,
            'score': self.score
        }


ZERO_METRICS = ClarityMetrics(edge_density=0.0, contrast=0.0, sharpness=0.0, boosted=False, score=0)


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    """Mean of the three colour channels as float64; alpha is ignored."""
    if frame.ndim == 2:
        return frame.astype(np.float64)
    return frame[..., :3].astype(np.float64).mean(axis=2)


class ClarityScorer:
    """
    Handcrafted text-clarity heuristic.

    Pure: assessing a frame never modifies it and keeps no state between
    calls, so the same frame always gets the same score.
    """

    THRESHOLDS = {
        'edge_difference': 20.0,       # Gray step counted as an edge hit
        'boost_min_contrast': 30.0,
        'boost_min_edge_density': 5.0,
    }

    WEIGHTS = {
        'edge_density': 0.4,
        'contrast': 0.3,
        'sharpness': 0.3,
    }

    # Ad hoc bonus for frames that already show strong contrast and edges.
    # Empirical product constant, not derived from the other weights.
    CONTRAST_EDGE_BOOST = 15.0

    MAX_SCORE = 100.0

    def __init__(self, roi: Optional[RegionOfInterest] = None):
        self.roi = roi or DEFAULT_ROI

    def _region(self, gray: np.ndarray) -> np.ndarray:
        height, width = gray.shape[:2]
        x, y, w, h = self.roi.bounds(width, height)
        return np.ascontiguousarray(gray[y:y + h, x:x + w])

    def _edge_density(self, region: np.ndarray, center: np.ndarray) -> float:
        step = self.THRESHOLDS['edge_difference']
        right = np.abs(region[1:-1, 2:] - center)
        bottom = np.abs(region[2:, 1:-1] - center)
        hits = np.count_nonzero(right > step) + np.count_nonzero(bottom > step)
        return hits / center.size * 100

    def _contrast(self, center: np.ndarray) -> float:
        return float(np.mean(np.abs(center - 128.0) / 128.0) * 100)

    def _sharpness(self, region: np.ndarray) -> float:
        """Mean standard deviation of each interior pixel's 3x3 neighbourhood."""
        mean = cv2.boxFilter(region, cv2.CV_64F, (3, 3), normalize=True)
        mean_sq = cv2.boxFilter(region * region, cv2.CV_64F, (3, 3), normalize=True)
        variance = np.clip(mean_sq - mean * mean, 0.0, None)[1:-1, 1:-1]
        return float(np.mean(np.sqrt(variance)) * 2)

    def assess(self, frame: np.ndarray) -> ClarityMetrics:
        """
        Score the region of interest of a frame.

        Args:
            frame: RGBA FrameBuffer (HxWx4), BGR/RGB image (HxWx3) or
                grayscale image (HxW)

        Returns:
            ClarityMetrics: Metrics and final score
        """
        region = self._region(to_grayscale(frame))
        if region.shape[0] < 3 or region.shape[1] < 3:
            # No interior pixels to visit
            return ZERO_METRICS

        center = region[1:-1, 1:-1]
        edge_density = self._edge_density(region, center)
        contrast = self._contrast(center)
        sharpness = self._sharpness(region)

        w = self.WEIGHTS
        clarity = min(
            self.MAX_SCORE,
            w['edge_density'] * edge_density + w['contrast'] * contrast + w['sharpness'] * sharpness
        )

        t = self.THRESHOLDS
        boosted = contrast > t['boost_min_contrast'] and edge_density > t['boost_min_edge_density']
        if boosted:
            clarity = min(self.MAX_SCORE, clarity + self.CONTRAST_EDGE_BOOST)

        # Round half up
        score = int(math.floor(clarity + 0.5))

        return ClarityMetrics(
            edge_density=float(edge_density),
            contrast=contrast,
            sharpness=sharpness,
            boosted=bool(boosted),
            score=score
        )

    def score(self, frame: np.ndarray, timestamp: Optional[float] = None) -> ClaritySample:
        """Score a frame into a ClaritySample."""
        metrics = self.assess(frame)
        return ClaritySample(
            score=metrics.score,
            timestamp=time.time() if timestamp is None else timestamp
        )


def score_region(frame: np.ndarray, roi: Optional[RegionOfInterest] = None) -> ClaritySample:
    """Clarity sample for the region of interest of a frame."""
    return ClarityScorer(roi).score(frame)


def score_image_bytes(data: bytes, roi: Optional[RegionOfInterest] = None) -> ClarityMetrics:
    """
    Decode an encoded image (JPEG, PNG, ...) and assess its clarity.

    Raises:
        InvalidImageError: If the bytes do not decode to an image
    """
    if not data:
        raise InvalidImageError(reason="empty image data")

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise InvalidImageError(reason="cv2.imdecode could not decode the data")

    metrics = ClarityScorer(roi).assess(image)
    logger.debug(f"Uploaded image {image.shape[1]}x{image.shape[0]} clarity: {metrics.to_dict()}")
    return metrics

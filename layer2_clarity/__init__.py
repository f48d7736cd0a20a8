"""
Layer 2 — Clarity
Frame clarity scoring and status bucketing for the live camera view.
"""
from .clarity import (
    ClarityMetrics,
    ClarityScorer,
    ClaritySample,
    RegionOfInterest,
    DEFAULT_ROI,
    score_image_bytes,
    score_region,
)
from .status import classify_status, status_message

__all__ = [
    'ClarityMetrics',
    'ClarityScorer',
    'ClaritySample',
    'RegionOfInterest',
    'DEFAULT_ROI',
    'score_image_bytes',
    'score_region',
    'classify_status',
    'status_message'
]

"""
Layer 2 — Clarity Status
Maps a clarity score to the coarse status shown while the camera is live.
"""
from typing import Dict

ANALYZING = 'analyzing'
DETECTED = 'detected'
ALMOST_READY = 'almost-ready'
CAPTURING = 'capturing'

# Upper bounds (exclusive) of the lower buckets
ANALYZING_BELOW = 30
DETECTED_BELOW = 60

STATUS_MESSAGES: Dict[str, str] = {
    ANALYZING: 'Point the camera at the medicine label',
    DETECTED: 'Label detected, hold steady',
    ALMOST_READY: 'Almost ready, keep the label in focus',
    CAPTURING: 'Capturing...',
}


def classify_status(score: int, threshold: int) -> str:
    """
    Bucket a clarity score, first match wins: <30 analyzing, <60 detected,
    <threshold almost-ready, otherwise capturing.

    With a threshold below 60, scores between the threshold and 60 still
    report detected. The gate-fire update is always labelled capturing by
    the session, whatever the score.
    """
    if score < ANALYZING_BELOW:
        return ANALYZING
    if score < DETECTED_BELOW:
        return DETECTED
    if score < threshold:
        return ALMOST_READY
    return CAPTURING


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, '')

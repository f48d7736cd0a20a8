"""
Layer 1 — Capture
Live video source and per-tick frame sampling.
"""
from .camera import CameraHandler
from .sampler import FrameSampler

__all__ = [
    'CameraHandler',
    'FrameSampler'
]

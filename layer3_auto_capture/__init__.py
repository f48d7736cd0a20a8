"""
Layer 3 — Auto-Capture
Timer-driven clarity sampling, stability gate and still capture for
medicine labels. Captures one still per session once the label is clear.
"""
from .gate import StabilityGate
from .scheduler import ManualScheduler, ThreadScheduler
from .session import CaptureConfig, CaptureSession, ClarityUpdate, SessionState
from .trigger import CapturedImage, StillCapturer

__all__ = [
    'StabilityGate',
    'ManualScheduler',
    'ThreadScheduler',
    'CaptureConfig',
    'CaptureSession',
    'ClarityUpdate',
    'SessionState',
    'CapturedImage',
    'StillCapturer'
]

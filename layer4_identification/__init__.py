"""
Layer 4 — Identification
Hands captured stills to the medicine identification service and keeps a
local copy of each capture and its result.
"""
from .client import MedicineScanClient
from .saver import CaptureSaver

__all__ = [
    'MedicineScanClient',
    'CaptureSaver'
]

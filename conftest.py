"""
Pytest configuration and fixtures for the medicine scanner auto-capture tests.
"""
import pytest
import os
import sys
import tempfile

import numpy as np

# Add the app directory to the path
sys.path.insert(0, os.path.dirname(__file__))

# Keep captured stills out of the working tree when app.py is imported
os.environ.setdefault('SAVE_DIR', os.path.join(tempfile.mkdtemp(), 'captured_medicine'))
os.environ.setdefault('LOG_LEVEL', 'INFO')

from error_handlers import FrameCaptureError  # noqa: E402
from layer2_clarity import ClaritySample  # noqa: E402
from layer3_auto_capture import CaptureConfig, ManualScheduler  # noqa: E402
from layer4_identification import CaptureSaver  # noqa: E402


def to_rgba(gray):
    """Stack a 2D uint8 array into an opaque RGBA frame."""
    gray = np.asarray(gray, dtype=np.uint8)
    alpha = np.full_like(gray, 255)
    return np.dstack([gray, gray, gray, alpha])


def checkerboard(width=100, height=100, block=8):
    yy, xx = np.mgrid[0:height, 0:width]
    return (((yy // block) + (xx // block)) % 2 * 255).astype(np.uint8)


class FakeVideoSource:
    """In-memory stand-in for the camera."""

    def __init__(self, frame=None, init_error=None):
        self.frame = frame
        self.init_error = init_error
        self.opened = False
        self.draw_calls = 0
        self.fail_next_draws = 0
        self.release_calls = 0

    def initialize(self):
        if self.init_error is not None:
            raise self.init_error
        self.opened = True
        return True

    def is_opened(self):
        return self.opened

    def frame_size(self):
        if not self.opened or self.frame is None:
            return (0, 0)
        height, width = self.frame.shape[:2]
        return (width, height)

    def draw_into(self, surface):
        self.draw_calls += 1
        if self.fail_next_draws:
            self.fail_next_draws -= 1
            raise FrameCaptureError(reason="simulated read failure")
        surface[...] = self.frame
        return surface

    def release(self):
        self.release_calls += 1
        self.opened = False


class ScriptedScorer:
    """Returns a fixed sequence of scores, one per scored frame."""

    def __init__(self, scores):
        self.scores = list(scores)
        self.calls = 0

    def score(self, frame):
        score = self.scores[self.calls]
        self.calls += 1
        return ClaritySample(score=score, timestamp=float(self.calls))


class FakeScanClient:
    """Identification client that answers without a network."""

    base_url = 'http://scan-service.test'

    def __init__(self, result=None, error=None):
        self.result = result or {
            'success': True,
            'data': {
                'imageUrl': '/uploads/medicine_test.jpg',
                'medicine': {'name': 'Paracetamol 500mg'}
            }
        }
        self.error = error
        self.healthy = True
        self.uploads = []

    def health_check(self):
        return self.healthy

    def identify(self, image, user_id=None):
        self.uploads.append(image)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def gray_frame():
    """Uniform mid-gray RGBA frame."""
    return to_rgba(np.full((100, 100), 128, dtype=np.uint8))


@pytest.fixture
def checkerboard_frame():
    """0/255 checkerboard RGBA frame (8px blocks)."""
    return to_rgba(checkerboard())


@pytest.fixture
def make_source():
    return FakeVideoSource


@pytest.fixture
def scripted_scorer():
    return ScriptedScorer


@pytest.fixture
def manual_scheduler():
    return ManualScheduler()


@pytest.fixture
def fake_scan_client():
    return FakeScanClient()


@pytest.fixture
def coordinator(checkerboard_frame, manual_scheduler, fake_scan_client, tmp_path):
    """Coordinator wired to an in-memory camera and a manual scheduler."""
    from app import ScannerCoordinator
    return ScannerCoordinator(
        camera=FakeVideoSource(frame=checkerboard_frame),
        client=fake_scan_client,
        saver=CaptureSaver(base_dir=str(tmp_path / 'captured_medicine')),
        config=CaptureConfig(pre_capture_delay=0.5),
        scheduler=manual_scheduler
    )


@pytest.fixture
def app(coordinator, monkeypatch):
    """Create Flask test application."""
    import app as app_module
    monkeypatch.setattr(app_module, 'scanner', coordinator)
    app_module.app.config['TESTING'] = True
    return app_module.app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def checkerboard_png():
    """Checkerboard photo encoded as PNG bytes."""
    import cv2
    ok, buffer = cv2.imencode('.png', checkerboard(200, 200))
    assert ok
    return buffer.tobytes()

"""
Layer 1 — Camera Handler
Live video source for the medicine scanner.
Exposes the native frame size and draws the current frame onto an RGBA surface.
"""
import cv2
import logging
import os
from typing import Optional, Tuple
import numpy as np

from error_handlers import (
    CameraError,
    CameraInitError,
    CameraNotFoundError,
    CameraNotInitializedError,
    FrameCaptureError,
)

logger = logging.getLogger(__name__)


class CameraHandler:
    """
    USB camera handler with V4L2 backend.
    Read-only live feed: nothing in the scanner writes back to the device.
    """

    # Default camera configuration
    DEFAULT_CONFIG = {
        'width': 1280,
        'height': 720,
        'fps': 30,
        'codec': 'MJPG',
        'buffer_size': 1,  # Minimal buffer so samples are close to live
    }

    def __init__(
        self,
        camera_index: int = 0,
        config: Optional[dict] = None
    ):
        """
        Initialize camera handler.

        Args:
            camera_index: V4L2 device index (e.g., 0 for /dev/video0)
            config: Optional configuration override
        """
        self.camera_index = camera_index
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}
        self.camera: Optional[cv2.VideoCapture] = None
        self._is_initialized = False

        # Actual resolution (may differ from requested)
        self.actual_width = 0
        self.actual_height = 0
        self.actual_fps = 0

        logger.info(f"CameraHandler created for /dev/video{camera_index}")

    def _check_device_exists(self) -> bool:
        """Check if camera device file exists."""
        device_path = f"/dev/video{self.camera_index}"
        exists = os.path.exists(device_path)
        if not exists:
            logger.error(f"Camera device not found: {device_path}")
        return exists

    def initialize(self) -> bool:
        """
        Initialize and configure the camera.

        Returns:
            bool: True if successful

        Raises:
            CameraNotFoundError: If camera device doesn't exist
            CameraInitError: If camera fails to open (busy, permission denied)
        """
        if self._is_initialized and self.camera is not None:
            logger.debug("Camera already initialized")
            return True

        if not self._check_device_exists():
            raise CameraNotFoundError(self.camera_index)

        logger.info(f"Initializing camera at /dev/video{self.camera_index}")

        try:
            self.camera = cv2.VideoCapture(self.camera_index, cv2.CAP_V4L2)

            if not self.camera.isOpened():
                raise CameraInitError(
                    self.camera_index,
                    reason="Failed to open camera device"
                )

            self._configure_camera()

            self.actual_width = int(self.camera.get(cv2.CAP_PROP_FRAME_WIDTH))
            self.actual_height = int(self.camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
            self.actual_fps = self.camera.get(cv2.CAP_PROP_FPS)

            self._is_initialized = True

            logger.info(f"Camera initialized: {self.actual_width}x{self.actual_height} @ {self.actual_fps}fps")
            return True

        except CameraError:
            self._discard_capture()
            raise
        except Exception as e:
            logger.error(f"Camera initialization failed: {e}")
            self._discard_capture()
            raise CameraInitError(self.camera_index, reason=str(e))

    def _configure_camera(self):
        """Apply camera configuration settings."""
        cfg = self.config

        fourcc = cv2.VideoWriter_fourcc(*cfg['codec'])
        self.camera.set(cv2.CAP_PROP_FOURCC, fourcc)
        self.camera.set(cv2.CAP_PROP_FRAME_WIDTH, cfg['width'])
        self.camera.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg['height'])
        self.camera.set(cv2.CAP_PROP_FPS, cfg['fps'])
        self.camera.set(cv2.CAP_PROP_BUFFERSIZE, cfg['buffer_size'])

        logger.debug(f"Camera configured: {cfg['width']}x{cfg['height']} @ {cfg['fps']}fps")

    def _discard_capture(self):
        if self.camera is not None:
            self.camera.release()
            self.camera = None

    def frame_size(self) -> Tuple[int, int]:
        """
        Current native frame size as (width, height).
        (0, 0) while the camera is not ready.
        """
        if not self.is_opened():
            return (0, 0)
        width = int(self.camera.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.camera.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return (width, height)

    def get_frame(self) -> np.ndarray:
        """
        Capture a single frame from the camera.

        Returns:
            numpy.ndarray: Raw BGR frame

        Raises:
            CameraNotInitializedError: If camera not initialized
            FrameCaptureError: If frame capture fails
        """
        if not self._is_initialized or self.camera is None:
            raise CameraNotInitializedError()

        ret, frame = self.camera.read()

        if not ret or frame is None:
            raise FrameCaptureError(reason="VideoCapture.read() returned no frame")

        return frame

    def draw_into(self, surface: np.ndarray) -> np.ndarray:
        """
        Draw the current frame onto an RGBA surface of matching size.

        Args:
            surface: HxWx4 uint8 array, overwritten in place

        Returns:
            numpy.ndarray: The surface
        """
        frame = self.get_frame()
        if frame.shape[:2] != surface.shape[:2]:
            raise FrameCaptureError(
                reason=f"frame {frame.shape[1]}x{frame.shape[0]} does not match "
                       f"surface {surface.shape[1]}x{surface.shape[0]}"
            )
        cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA, dst=surface)
        return surface

    def is_opened(self) -> bool:
        """Check if camera is currently open and initialized."""
        return self._is_initialized and self.camera is not None and self.camera.isOpened()

    def release(self):
        """Release camera resources."""
        self._discard_capture()
        self._is_initialized = False
        logger.info("Camera released")

    def __enter__(self):
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()
        return False

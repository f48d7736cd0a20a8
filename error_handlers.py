"""
Error Handling System
Provides consistent error responses across all layers
"""
import logging

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """Base exception for scanner errors"""
    def __init__(self, message, error_code, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert error to JSON-serializable dict"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


# Layer 1 Errors - Camera
class CameraError(ScannerError):
    """Camera-related errors"""
    pass


class CameraNotFoundError(CameraError):
    """Camera device not found"""
    def __init__(self, camera_index):
        super().__init__(
            message=f"Camera not found at /dev/video{camera_index}",
            error_code="CAMERA_NOT_FOUND",
            details={
                "camera_index": camera_index,
                "suggestion": "Check camera connection and device index"
            }
        )


class CameraInitError(CameraError):
    """Camera initialization failed (also covers permission denied)"""
    def __init__(self, camera_index, reason=None):
        super().__init__(
            message=f"Failed to initialize camera at /dev/video{camera_index}",
            error_code="CAMERA_INIT_FAILED",
            details={
                "camera_index": camera_index,
                "reason": reason,
                "suggestion": "Check camera permissions and ensure no other app is using it"
            }
        )


class CameraNotInitializedError(CameraError):
    """Attempting to use camera before initialization"""
    def __init__(self):
        super().__init__(
            message="Camera not initialized. Please start the camera first.",
            error_code="CAMERA_NOT_INITIALIZED",
            details={
                "suggestion": "Call /start_camera endpoint first"
            }
        )


class FrameCaptureError(CameraError):
    """Failed to read or draw a frame"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to capture frame from camera",
            error_code="FRAME_CAPTURE_FAILED",
            details={
                "reason": reason,
                "suggestion": "Check camera connection or restart the camera"
            }
        )


# Layer 2 Errors - Clarity analysis
class ClarityError(ScannerError):
    """Clarity analysis errors"""
    pass


class InvalidImageError(ClarityError):
    """Uploaded image could not be decoded"""
    def __init__(self, reason=None):
        super().__init__(
            message="Could not read image file",
            error_code="INVALID_IMAGE",
            details={
                "reason": reason,
                "suggestion": "Upload a JPEG, PNG, GIF or WebP photo of the medicine label"
            }
        )


# Layer 3 Errors - Auto-capture
class CaptureError(ScannerError):
    """Still capture errors"""
    pass


class CaptureEncodeError(CaptureError):
    """Encoding the captured still failed"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to encode captured image",
            error_code="CAPTURE_ENCODE_FAILED",
            details={
                "reason": reason,
                "suggestion": "Hold the medicine steady, capture will retry automatically"
            }
        )


class SessionBusyError(CaptureError):
    """A capture is already in progress"""
    def __init__(self, state):
        super().__init__(
            message="A capture is already in progress",
            error_code="CAPTURE_IN_PROGRESS",
            details={
                "state": state,
                "suggestion": "Wait for the current capture to finish"
            }
        )


# Layer 4 Errors - Identification
class IdentificationError(ScannerError):
    """Medicine identification service errors"""
    def __init__(self, message, error_code="IDENTIFICATION_FAILED", details=None):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )


class SaveError(ScannerError):
    """File saving errors"""
    pass


class ImageSaveError(SaveError):
    """Failed to save image"""
    def __init__(self, filepath, reason):
        super().__init__(
            message=f"Failed to save image to {filepath}",
            error_code="IMAGE_SAVE_FAILED",
            details={
                "filepath": filepath,
                "reason": str(reason),
                "suggestion": "Check disk space and write permissions"
            }
        )


class JSONSaveError(SaveError):
    """Failed to save JSON"""
    def __init__(self, filepath, reason):
        super().__init__(
            message=f"Failed to save JSON to {filepath}",
            error_code="JSON_SAVE_FAILED",
            details={
                "filepath": filepath,
                "reason": str(reason),
                "suggestion": "Check disk space and write permissions"
            }
        )


# Error response helpers
def handle_error(error, log_message=None):
    """
    Handle error consistently across the application

    Args:
        error: Exception that occurred
        log_message: Optional custom log message

    Returns:
        dict: Error response for JSON serialization
    """
    if log_message:
        logger.error(log_message)

    if isinstance(error, ScannerError):
        # Known scanner error
        logger.error(f"{error.error_code}: {error.message}")
        if error.details:
            logger.debug(f"Error details: {error.details}")
        return error.to_dict()
    else:
        # Unexpected error
        logger.error(f"Unexpected error: {error}")
        logger.exception("Full traceback:")
        return {
            "success": False,
            "error": "An unexpected error occurred",
            "error_code": "UNEXPECTED_ERROR",
            "details": {
                "error_type": type(error).__name__,
                "error_message": str(error)
            }
        }

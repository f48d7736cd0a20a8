"""
Medicine Scanner Auto-Capture Service
Thin coordinator for the layered camera auto-capture system.

Provides REST API for:
- Starting/stopping the camera and the clarity sampling loop
- Live clarity status for the capture screen
- Manual capture and medicine identification of captured stills
- Clarity scoring of uploaded photos
"""
from flask import Flask, jsonify, request
from flask_cors import CORS
from concurrent.futures import ThreadPoolExecutor
import logging
import os
import threading

# Import layers
from layer1_capture import CameraHandler
from layer2_clarity import classify_status, score_image_bytes
from layer3_auto_capture import CaptureConfig, CaptureSession, SessionState
from layer4_identification import CaptureSaver, MedicineScanClient

# Import error handling
from error_handlers import (
    InvalidImageError,
    ScannerError,
    SaveError,
    handle_error
)

# Setup logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'DEBUG').upper(),
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for the browser front end
CORS(app, origins=["*"])

# Uploads larger than this are rejected with 413 before they are read
MAX_UPLOAD_MB = 10
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_MB * 1024 * 1024
ALLOWED_IMAGE_TYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}

# Configuration
CAMERA_INDEX = int(os.environ.get('CAMERA_INDEX', 0))
SCAN_SERVICE_URL = os.environ.get('SCAN_SERVICE_URL', 'http://localhost:3000')
USER_ID = os.environ.get('USER_ID') or None
SAVE_DIR = os.environ.get('SAVE_DIR', "Logs/captured_medicine")


def load_capture_config():
    """Build the capture configuration from environment variables."""
    return CaptureConfig(
        sampling_period=int(os.environ.get('SAMPLING_PERIOD_MS', 200)) / 1000.0,
        clarity_threshold=int(os.environ.get('CLARITY_THRESHOLD', 50)),
        required_stable_frames=int(os.environ.get('REQUIRED_STABLE_FRAMES', 2)),
        pre_capture_delay=int(os.environ.get('PRE_CAPTURE_DELAY_MS', 500)) / 1000.0,
        resume_after_capture=os.environ.get('RESUME_AFTER_CAPTURE', '0') == '1'
    )


class ScannerCoordinator:
    """
    Coordinates the capture pipeline across layers
    Thin wrapper that delegates to layer-specific components
    """

    def __init__(self, camera, client, saver, config=None, scheduler=None, executor=None):
        logger.info("Initializing ScannerCoordinator")

        # Layer 1: Capture
        self.camera = camera

        # Layers 2-3: Clarity sampling and auto-capture
        self.session = CaptureSession(
            camera,
            config=config,
            scheduler=scheduler,
            on_clarity_update=self._on_clarity_update,
            on_captured=self._on_captured,
            on_error=self._on_error
        )

        # Layer 4: Identification
        self.client = client
        self.saver = saver
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="identify")

        self._lock = threading.Lock()
        self.latest_update = None
        self.last_capture = None
        self.last_error = None
        self.pending_identification = None

        logger.info("ScannerCoordinator initialized successfully")

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _on_clarity_update(self, update):
        with self._lock:
            self.latest_update = update

    def _on_error(self, error):
        with self._lock:
            self.last_error = error.to_dict()

    def _on_captured(self, image):
        """Store the still and hand it to the identification service"""
        record = {
            "capture": image.to_dict(),
            "image_path": None,
            "status": "pending",
            "identification": None
        }

        try:
            record["image_path"] = self.saver.save_image(image)["filepath"]
        except SaveError as e:
            logger.warning(f"Could not save captured image: {e.message}")

        with self._lock:
            self.last_capture = record

        if self.session.state is SessionState.IDLE:
            self.camera.release()

        self.pending_identification = self.executor.submit(self._identify, image, record)

    def _identify(self, image, record):
        """Runs on the executor; never blocks the capture session"""
        try:
            result = self.client.identify(image)
            outcome = {"status": "identified", "identification": result.get("data")}
        except Exception as e:
            outcome = {
                "status": "failed",
                "identification": handle_error(e, log_message=f"Identification of {image.filename} failed")
            }

        with self._lock:
            record.update(outcome)

        try:
            self.saver.save_result_json(record, image.timestamp)
        except SaveError as e:
            logger.warning(f"Could not save identification result: {e.message}")

        return record

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start_camera(self):
        """
        Start the camera and the clarity sampling loop

        Returns:
            dict: Success response or error response
        """
        with self._lock:
            self.last_error = None
            self.latest_update = None

        if self.session.start():
            return {"success": True, "session": self.session.snapshot()}

        with self._lock:
            error = self.last_error
        return error or {
            "success": False,
            "error": "A capture is already in progress",
            "error_code": "CAPTURE_IN_PROGRESS"
        }

    def stop_camera(self):
        """Stop sampling and release the camera"""
        self.session.stop()
        self.camera.release()

    def capture(self):
        """
        Manual capture, bypassing the clarity gate

        Returns:
            dict: Success response or error response
        """
        logger.info("Manual capture requested")
        try:
            image = self.session.capture_now()
        except ScannerError as e:
            if not self.session.is_active:
                self.camera.release()
            return handle_error(e)
        return {
            "success": True,
            "capture": image.to_dict()
        }

    def clarity_status(self):
        with self._lock:
            update = self.latest_update
            error = self.last_error
        return {
            "success": True,
            "session": self.session.snapshot(),
            "clarity": update.to_dict() if update else None,
            "error": error
        }

    def last_capture_result(self):
        with self._lock:
            if self.last_capture is None:
                return None
            return dict(self.last_capture)


# Initialize scanner coordinator
logger.info("Starting application initialization")

capture_config = load_capture_config()

scanner = ScannerCoordinator(
    camera=CameraHandler(camera_index=CAMERA_INDEX),
    client=MedicineScanClient(base_url=SCAN_SERVICE_URL, user_id=USER_ID),
    saver=CaptureSaver(base_dir=SAVE_DIR),
    config=capture_config
)


# ============================================================================
# Flask Routes - Capture Screen
# ============================================================================

@app.route('/start_camera', methods=['POST'])
def start_camera():
    """Start camera and clarity sampling"""
    logger.info("Start camera request received")
    result = scanner.start_camera()
    logger.info(f"Camera start result: {result.get('success', False)}")
    return jsonify(result)


@app.route('/stop_camera', methods=['POST'])
def stop_camera():
    """Stop camera"""
    logger.info("Stop camera request received")
    scanner.stop_camera()
    return jsonify({"success": True})


@app.route('/clarity_status', methods=['GET'])
def clarity_status():
    """Latest clarity percentage and status for the capture screen"""
    return jsonify(scanner.clarity_status())


@app.route('/capture', methods=['POST'])
def capture():
    """Manual capture"""
    logger.info("Capture request received from client")
    result = scanner.capture()
    logger.info(f"Sending response to client: {result.get('success', False)}")
    return jsonify(result)


# ============================================================================
# API Endpoints
# ============================================================================

@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for service discovery and load balancers"""
    return jsonify({
        "status": "healthy",
        "service": "medscan-capture",
        "version": "1.0.0"
    })


@app.route("/api/capture/last", methods=["GET"])
def api_last_capture():
    """Metadata and identification result of the most recent capture"""
    record = scanner.last_capture_result()
    if record is None:
        return jsonify({
            "success": False,
            "error": "No capture yet",
            "error_code": "NO_CAPTURE"
        }), 404
    return jsonify({"success": True, **record})


@app.route("/api/clarity", methods=["POST"])
def api_clarity():
    """
    Score the clarity of an uploaded photo.

    Request:
        - multipart/form-data with 'image' field containing the photo
          (JPEG, PNG, GIF or WebP, at most MAX_UPLOAD_MB)

    Response:
        {
            "success": true,
            "clarity": {"score": 72, "edge_density": ..., ...},
            "status": "capturing"
        }
    """
    logger.info("API clarity request received")

    if 'image' not in request.files:
        return jsonify({
            "success": False,
            "error": "No image file provided",
            "error_code": "NO_IMAGE"
        }), 400

    image_file = request.files['image']

    if image_file.filename == '':
        return jsonify({
            "success": False,
            "error": "Empty filename",
            "error_code": "EMPTY_FILENAME"
        }), 400

    if image_file.mimetype not in ALLOWED_IMAGE_TYPES:
        error = InvalidImageError(reason=f"unsupported file type {image_file.mimetype or 'unknown'}")
        return jsonify(handle_error(error)), 400

    try:
        metrics = score_image_bytes(image_file.read(), roi=scanner.session.config.roi)
    except ScannerError as e:
        return jsonify(handle_error(e)), 400

    return jsonify({
        "success": True,
        "clarity": metrics.to_dict(),
        "status": classify_status(metrics.score, scanner.session.threshold)
    })


@app.route("/api/config", methods=["GET"])
def api_config():
    """Effective capture configuration"""
    return jsonify({
        "success": True,
        "config": scanner.session.config.to_dict()
    })


@app.route("/api/status", methods=["GET"])
def api_status():
    """Get service status and capabilities"""
    return jsonify({
        "success": True,
        "camera_available": scanner.camera.is_opened(),
        "session": scanner.session.snapshot(),
        "identification_service": scanner.client.base_url,
        "identification_service_healthy": scanner.client.health_check(),
        "endpoints": {
            "health": "/health",
            "start_camera": "/start_camera",
            "stop_camera": "/stop_camera",
            "clarity_status": "/clarity_status",
            "capture": "/capture",
            "last_capture": "/api/capture/last",
            "clarity": "/api/clarity",
            "config": "/api/config"
        }
    })


@app.errorhandler(413)
def upload_too_large(error):
    """Uploads over MAX_CONTENT_LENGTH"""
    logger.warning(f"Rejected upload larger than {MAX_UPLOAD_MB} MB")
    return jsonify({
        "success": False,
        "error": f"Image exceeds the {MAX_UPLOAD_MB} MB upload limit",
        "error_code": "IMAGE_TOO_LARGE"
    }), 413


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == '__main__':
    logger.info(f"Camera: /dev/video{CAMERA_INDEX}")
    logger.info(f"Identification service: {SCAN_SERVICE_URL}")
    logger.info(f"Capture config: {capture_config}")
    logger.info("Flask server starting")
    app.run(host='0.0.0.0', port=5000, debug=True, threaded=True)

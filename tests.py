"""
Tests for the medicine scanner Flask application.
"""
import io
import json

from error_handlers import CameraInitError, IdentificationError


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_ok(self, client):
        """Test /health returns OK status."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'

    def test_status_lists_endpoints(self, client):
        """Test /api/status includes session and endpoints."""
        data = json.loads(client.get('/api/status').data)
        assert data['session']['state'] == 'idle'
        assert data['camera_available'] is False
        assert data['endpoints']['clarity_status'] == '/clarity_status'
        assert data['identification_service_healthy'] is True

    def test_status_reports_unhealthy_identification_service(self, client, fake_scan_client):
        fake_scan_client.healthy = False
        data = json.loads(client.get('/api/status').data)
        assert data['identification_service_healthy'] is False

    def test_config_endpoint(self, client):
        data = json.loads(client.get('/api/config').data)
        assert data['config']['clarity_threshold'] == 50
        assert data['config']['required_stable_frames'] == 2


class TestCameraLifecycle:
    """Test starting and stopping the capture session."""

    def test_start_camera(self, client):
        data = json.loads(client.post('/start_camera').data)
        assert data['success'] is True
        assert data['session']['state'] == 'sampling'

    def test_start_camera_unavailable(self, client, coordinator):
        """Camera errors come back as error payloads; session stays idle."""
        coordinator.camera.init_error = CameraInitError(0, reason="permission denied")

        data = json.loads(client.post('/start_camera').data)

        assert data['success'] is False
        assert data['error_code'] == 'CAMERA_INIT_FAILED'
        assert coordinator.session.snapshot()['state'] == 'idle'

    def test_stop_camera(self, client, coordinator, manual_scheduler):
        client.post('/start_camera')
        response = client.post('/stop_camera')

        assert json.loads(response.data)['success'] is True
        assert coordinator.session.snapshot()['state'] == 'idle'
        assert not coordinator.camera.is_opened()
        assert manual_scheduler.active_timers == 0


class TestClarityStatus:
    """Test live clarity feedback."""

    def test_no_samples_yet(self, client):
        data = json.loads(client.get('/clarity_status').data)
        assert data['clarity'] is None
        assert data['session']['state'] == 'idle'

    def test_reports_latest_tick(self, client, coordinator, manual_scheduler, gray_frame):
        coordinator.camera.frame = gray_frame
        client.post('/start_camera')
        manual_scheduler.advance(0.2)

        data = json.loads(client.get('/clarity_status').data)
        assert data['clarity']['clarity'] == 0
        assert data['clarity']['status'] == 'analyzing'
        assert data['clarity']['message']


class TestAutoCapture:
    """Test the full auto-capture path through the service."""

    def test_clear_label_is_captured_and_identified(self, client, coordinator, manual_scheduler, fake_scan_client):
        client.post('/start_camera')
        manual_scheduler.advance(0.6)

        data = json.loads(client.get('/clarity_status').data)
        assert data['session']['state'] == 'capturing'
        assert data['clarity']['status'] == 'capturing'

        manual_scheduler.advance(0.5)
        coordinator.pending_identification.result(timeout=5)

        data = json.loads(client.get('/api/capture/last').data)
        assert data['success'] is True
        assert data['status'] == 'identified'
        assert data['capture']['mode'] == 'auto'
        assert data['identification']['medicine']['name'] == 'Paracetamol 500mg'
        assert len(fake_scan_client.uploads) == 1
        assert not coordinator.camera.is_opened()

    def test_identification_failure_recorded(self, client, coordinator, manual_scheduler, fake_scan_client, caplog):
        fake_scan_client.error = IdentificationError("Could not identify medicine")
        client.post('/start_camera')
        manual_scheduler.advance(1.1)
        coordinator.pending_identification.result(timeout=5)

        data = json.loads(client.get('/api/capture/last').data)
        assert data['status'] == 'failed'
        assert data['identification']['error'] == 'Could not identify medicine'
        assert "Identification of medicine_" in caplog.text

    def test_no_capture_yet(self, client):
        response = client.get('/api/capture/last')
        assert response.status_code == 404


class TestManualCapture:
    """Test manual capture endpoint."""

    def test_manual_capture(self, client, coordinator):
        data = json.loads(client.post('/capture').data)

        assert data['success'] is True
        assert data['capture']['mode'] == 'manual'
        assert data['capture']['content_type'] == 'image/jpeg'
        coordinator.pending_identification.result(timeout=5)

    def test_manual_capture_camera_unavailable(self, client, coordinator):
        coordinator.camera.init_error = CameraInitError(0, reason="busy")
        data = json.loads(client.post('/capture').data)
        assert data['success'] is False
        assert data['error_code'] == 'CAMERA_INIT_FAILED'


class TestClarityEndpoint:
    """Test clarity scoring of uploaded photos."""

    def test_requires_image(self, client):
        response = client.post('/api/clarity', data={}, content_type='multipart/form-data')
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'NO_IMAGE'

    def test_rejects_undecodable_image(self, client):
        response = client.post(
            '/api/clarity',
            data={'image': (io.BytesIO(b'not an image'), 'label.jpg')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'INVALID_IMAGE'

    def test_scores_uploaded_photo(self, client, checkerboard_png):
        response = client.post(
            '/api/clarity',
            data={'image': (io.BytesIO(checkerboard_png), 'label.png')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['clarity']['score'] > 50
        assert data['status'] == 'capturing'

    def test_rejects_unsupported_file_type(self, client, checkerboard_png):
        """Only JPEG, PNG, GIF and WebP uploads are scored."""
        response = client.post(
            '/api/clarity',
            data={'image': (io.BytesIO(checkerboard_png), 'label.pdf', 'application/pdf')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400
        data = json.loads(response.data)
        assert data['error_code'] == 'INVALID_IMAGE'
        assert 'application/pdf' in data['details']['reason']

    def test_rejects_upload_over_size_limit(self, client):
        oversized = b'\x89PNG' + b'\0' * (10 * 1024 * 1024)
        response = client.post(
            '/api/clarity',
            data={'image': (io.BytesIO(oversized), 'label.png')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 413
        assert json.loads(response.data)['error_code'] == 'IMAGE_TOO_LARGE'


class TestErrorHandling:
    """Test error handling."""

    def test_missing_endpoint_returns_404(self, client):
        response = client.get('/api/nonexistent')
        assert response.status_code == 404

    def test_method_not_allowed(self, client):
        response = client.get('/capture')
        assert response.status_code == 405

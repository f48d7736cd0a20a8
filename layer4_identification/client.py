"""
Medicine Scan API Client
Sends captured stills to the medicine identification service.

The identification backend is a separate service; this client only frames
the upload and reports failures, it does not interpret the medicine data.
"""

import logging
import os
import requests
from typing import Optional

from error_handlers import IdentificationError

logger = logging.getLogger(__name__)

# Default identification service URL - can be overridden via environment variable
SCAN_SERVICE_URL = os.environ.get('SCAN_SERVICE_URL', 'http://localhost:3000')


class MedicineScanClient:
    """
    Client for the medicine identification service.

    POST /api/medicine/scan  multipart: image, platform, userId (optional)
    Response: {"success": true, "data": {"imageUrl": ..., "medicine": {...}}}
              {"success": false, "message": ...}
    """

    SCAN_PATH = '/api/medicine/scan'

    def __init__(self, base_url: str = None, timeout: int = 30, platform: str = 'web',
                 user_id: Optional[str] = None):
        """
        Initialize identification client.

        Args:
            base_url: Base URL of the service. Defaults to SCAN_SERVICE_URL env var.
            timeout: Request timeout in seconds.
            platform: Platform tag sent with every scan.
            user_id: Optional user id, recorded in the user's scan history.
        """
        self.base_url = (base_url or SCAN_SERVICE_URL).rstrip('/')
        self.timeout = timeout
        self.platform = platform
        self.user_id = user_id
        self.session = requests.Session()
        logger.info(f"Medicine scan client initialized with base URL: {self.base_url}")

    def health_check(self) -> bool:
        """
        Check if the identification service is healthy.

        Returns:
            bool: True if service is healthy, False otherwise.
        """
        try:
            response = self.session.get(
                f"{self.base_url}/health",
                timeout=5
            )
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Identification service health check failed: {e}")
            return False

    def identify(self, image, user_id: Optional[str] = None) -> dict:
        """
        Upload a captured still for identification.

        Args:
            image: CapturedImage (JPEG bytes plus metadata).
            user_id: Overrides the client's default user id.

        Returns:
            dict: Service response with data.imageUrl and data.medicine.

        Raises:
            IdentificationError: If the upload fails or the service rejects it.
        """
        files = {'image': (image.filename, image.data, image.content_type)}
        form = {'platform': self.platform}
        user_id = user_id or self.user_id
        if user_id:
            form['userId'] = user_id

        logger.info(f"Uploading {image.filename} ({len(image.data)} bytes) for identification")

        try:
            response = self.session.post(
                f"{self.base_url}{self.SCAN_PATH}",
                files=files,
                data=form,
                timeout=self.timeout
            )
            result = response.json()
        except requests.RequestException as e:
            logger.error(f"Failed to upload image for identification: {e}")
            raise IdentificationError(
                f"Failed to reach identification service: {e}",
                error_code="IDENTIFICATION_UNAVAILABLE"
            )
        except ValueError as e:
            logger.error(f"Identification service returned invalid JSON: {e}")
            raise IdentificationError(
                "Identification service returned an invalid response",
                details={'status_code': response.status_code}
            )

        if not result.get('success'):
            message = result.get('message') or 'Could not identify medicine'
            raise IdentificationError(
                message,
                details={'status_code': response.status_code}
            )

        logger.info("Medicine identified successfully")
        return result

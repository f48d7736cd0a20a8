"""
Layer 4 — Identification
Component: Capture saver
Responsibility: Save captured stills and identification results for traceability
"""
import os
import json
import logging
from datetime import datetime

from error_handlers import ImageSaveError, JSONSaveError

logger = logging.getLogger(__name__)


class CaptureSaver:
    """Handles saving captured stills and identification results"""

    def __init__(self, base_dir="captured_medicine"):
        """
        Initialize saver

        Args:
            base_dir: Base directory (default: "captured_medicine")

        Directory structure:
            captured_medicine/
            ├── captured_images/  # JPG files
            └── captured_json/    # JSON files
        """
        self.base_dir = base_dir
        self.images_dir = os.path.join(base_dir, "captured_images")
        self.json_dir = os.path.join(base_dir, "captured_json")

        self._ensure_directories()

        logger.info("CaptureSaver initialized")
        logger.debug(f"  Images dir: {self.images_dir}")
        logger.debug(f"  JSON dir: {self.json_dir}")

    def _ensure_directories(self):
        """Create directory structure if it doesn't exist"""
        for directory in [self.base_dir, self.images_dir, self.json_dir]:
            os.makedirs(directory, exist_ok=True)

    def save_image(self, image):
        """
        Save an encoded still to captured_images/

        Args:
            image: CapturedImage

        Returns:
            dict: Contains timestamp, filepath, filename
        """
        filepath = os.path.join(self.images_dir, image.filename)

        logger.info(f"Saving image to: {filepath}")
        try:
            with open(filepath, 'wb') as f:
                f.write(image.data)
        except OSError as e:
            raise ImageSaveError(filepath, e)

        return {
            "timestamp": image.timestamp,
            "filepath": filepath,
            "filename": image.filename
        }

    def save_result_json(self, result_data, timestamp):
        """
        Save identification result to captured_json/

        Args:
            result_data: Dictionary containing the identification result
            timestamp: Timestamp string for filename

        Returns:
            str: Path to saved JSON file
        """
        json_filepath = os.path.join(self.json_dir, f"medicine_{timestamp}.json")

        full_data = {
            **result_data,
            "saved_at": datetime.now().isoformat()
        }

        logger.info(f"Saving JSON to: {json_filepath}")
        try:
            with open(json_filepath, 'w', encoding='utf-8') as f:
                json.dump(full_data, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as e:
            raise JSONSaveError(json_filepath, e)

        return json_filepath

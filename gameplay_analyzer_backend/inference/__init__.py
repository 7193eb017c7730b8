"""
Remote Detection Client

This module provides a client to call the remote GPU detection service
(Modal, RunPod, or other) for single-frame object detection.
"""

import httpx
import base64
import logging
import time
from typing import List, Optional
from enum import Enum
import os

logger = logging.getLogger(__name__)


class DetectorProvider(str, Enum):
    """Supported detection providers."""
    MODAL = "modal"
    RUNPOD = "runpod"
    LOCAL = "local"  # Fallback to local CPU


class DetectorClient:
    """Client for remote GPU detection services."""

    def __init__(
        self,
        provider: DetectorProvider = DetectorProvider.MODAL,
        endpoint_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ):
        """
        Initialize the detection client.

        Args:
            provider: Which GPU provider to use
            endpoint_url: The endpoint URL for the detection service
            api_key: API key for authentication (if required)
            timeout: Request timeout in seconds
            poll_interval: Seconds between RunPod job status polls
        """
        self.provider = provider
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.timeout = timeout
        self.poll_interval = poll_interval

        self._client = httpx.Client(timeout=timeout)

    def detect_frame(self, frame) -> List:
        """
        Run object detection on one BGR frame using the remote GPU.

        Args:
            frame: numpy array (H x W x 3, BGR)

        Returns:
            List of Detection objects
        """
        from pipeline.video import encode_jpeg

        jpeg = encode_jpeg(frame)
        if jpeg is None:
            raise ValueError("Failed to encode frame as JPEG")
        return self.detect_jpeg(jpeg)

    def detect_jpeg(self, jpeg_bytes: bytes) -> List:
        """Run detection on JPEG-encoded image bytes."""
        if self.provider == DetectorProvider.LOCAL:
            raise ValueError("Local provider should not use DetectorClient")
        elif self.provider == DetectorProvider.MODAL:
            return self._detect_modal(jpeg_bytes)
        elif self.provider == DetectorProvider.RUNPOD:
            return self._detect_runpod(jpeg_bytes)
        else:
            raise ValueError(f"Unknown provider: {self.provider}")

    def _detect_modal(self, jpeg_bytes: bytes) -> List:
        """Detect using the Modal GPU endpoint."""
        if not self.endpoint_url:
            raise ValueError(
                "DETECTOR_ENDPOINT_URL is required for Modal provider. "
                "Deploy modal_detector.py and set the endpoint URL."
            )

        image_base64 = base64.b64encode(jpeg_bytes).decode("utf-8")

        logger.debug(f"Sending {len(jpeg_bytes) / 1024:.1f} KB frame to Modal GPU...")

        response = self._client.post(
            self.endpoint_url,
            json={"image_base64": image_base64},
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

        data = response.json()

        if data.get("status") == "error":
            raise RuntimeError(f"Modal detection failed: {data.get('message')}")

        return self._parse_detections(data.get("detections", []))

    def _detect_runpod(self, jpeg_bytes: bytes) -> List:
        """Detect using a RunPod serverless endpoint."""
        if not self.endpoint_url or not self.api_key:
            raise ValueError("endpoint_url and api_key are required for RunPod")

        image_base64 = base64.b64encode(jpeg_bytes).decode("utf-8")

        response = self._client.post(
            self.endpoint_url,
            json={"input": {"image_base64": image_base64}},
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )
        response.raise_for_status()

        data = response.json()

        # RunPod returns async job - poll for result
        if "id" in data and "output" not in data:
            return self._poll_runpod_job(data["id"])

        return self._parse_detections(data.get("output", {}).get("detections", []))

    def _poll_runpod_job(self, job_id: str) -> List:
        """Poll RunPod job until complete."""
        # Extract endpoint ID from URL
        endpoint_id = self.endpoint_url.rstrip('/').split('/')[-1]
        if endpoint_id in ('run', 'runsync'):
            endpoint_id = self.endpoint_url.rstrip('/').split('/')[-2]

        status_url = f"https://api.runpod.ai/v2/{endpoint_id}/status/{job_id}"

        while True:
            response = self._client.get(
                status_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()

            status = data.get("status")
            if status == "COMPLETED":
                return self._parse_detections(data.get("output", {}).get("detections", []))
            elif status == "FAILED":
                raise RuntimeError(f"RunPod job failed: {data.get('error')}")

            logger.info(f"RunPod job {job_id} status: {status}")
            time.sleep(self.poll_interval)

    def _parse_detections(self, raw: list) -> List:
        """Convert wire-format detections to Detection objects."""
        # Import here to avoid circular imports
        from pipeline.schemas import Detection

        return [Detection.model_validate(det) for det in raw]

    def close(self):
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# Singleton instance for the app
_detector_client: Optional[DetectorClient] = None


def get_detector_client() -> DetectorClient:
    """Get or create the detection client singleton."""
    global _detector_client

    if _detector_client is None:
        provider = os.getenv("DETECTOR_PROVIDER", "local")
        endpoint_url = os.getenv("DETECTOR_ENDPOINT_URL")
        api_key = os.getenv("DETECTOR_API_KEY")

        # Sanitize endpoint URL - strip whitespace and newlines
        if endpoint_url:
            endpoint_url = endpoint_url.strip().replace('\n', '').replace('\r', '')

        if provider == "local":
            raise ValueError(
                "DETECTOR_PROVIDER is 'local'. Use create_detector() from detect.py instead."
            )

        _detector_client = DetectorClient(
            provider=DetectorProvider(provider),
            endpoint_url=endpoint_url,
            api_key=api_key,
        )

        logger.info(f"Detection client initialized with provider: {provider}")

    return _detector_client

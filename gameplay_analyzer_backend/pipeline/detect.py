"""Single-frame object detection.

Detection can run either:
1. On a remote GPU via Modal or RunPod (recommended for production)
2. Locally on CPU with ultralytics (slow, for testing only)

The DETECTOR_PROVIDER environment variable controls which is used.
Both return detections in the same wire shape (categories + boundingBox).
"""
import asyncio
import logging
from typing import List, Optional

import numpy as np

from pipeline.schemas import BoundingBox, Category, Detection

logger = logging.getLogger(__name__)


class LocalDetector:
    """ultralytics YOLO running on CPU in a worker thread."""

    def __init__(self, model, score_threshold: float, max_results: int):
        self.model = model
        self.score_threshold = score_threshold
        self.max_results = max_results

    def _predict(self, frame: np.ndarray) -> List[Detection]:
        results = self.model.predict(
            source=frame,
            conf=self.score_threshold,
            max_det=self.max_results,
            device="cpu",
            verbose=False,
        )

        detections = []
        for r in results:
            if r.boxes is None or len(r.boxes) == 0:
                continue

            boxes = r.boxes.xyxy.cpu().numpy()
            confs = r.boxes.conf.cpu().numpy()
            classes = r.boxes.cls.cpu().numpy().astype(int)
            names = r.names or {}

            for box, score, cls_idx in zip(boxes, confs, classes):
                x1, y1, x2, y2 = box
                detections.append(Detection(
                    categories=[Category(
                        category_name=str(names.get(int(cls_idx), "")),
                        score=float(score),
                        index=int(cls_idx),
                    )],
                    bounding_box=BoundingBox(
                        origin_x=float(x1),
                        origin_y=float(y1),
                        width=float(x2 - x1),
                        height=float(y2 - y1),
                    ),
                ))
        return detections

    async def detect(self, frame: np.ndarray) -> List[Detection]:
        return await asyncio.to_thread(self._predict, frame)


class RemoteDetector:
    """Detector backed by a remote GPU endpoint."""

    def __init__(self, client):
        self.client = client

    async def detect(self, frame: np.ndarray) -> List[Detection]:
        return await asyncio.to_thread(self.client.detect_frame, frame)


def create_detector(provider: Optional[str] = None):
    """
    Build the configured detector.

    This is the (blocking) initialization step: for the local provider it
    loads the model weights, for remote providers it validates the endpoint
    configuration.
    """
    from pipeline.config import DETECTOR_PROVIDER

    provider = provider or DETECTOR_PROVIDER

    if provider != "local":
        return _create_remote_detector()
    logger.warning("Using local CPU detection - this will be slow!")
    return _create_local_detector()


def _create_remote_detector() -> RemoteDetector:
    from inference import get_detector_client

    client = get_detector_client()
    if not client.endpoint_url:
        raise ValueError("DETECTOR_ENDPOINT_URL is required for remote detection")
    logger.info(f"Running detection on remote GPU ({client.provider.value})")
    return RemoteDetector(client)


def _create_local_detector() -> LocalDetector:
    """
    Load YOLO weights for CPU inference.

    Requires the `local` extra (ultralytics + torch).
    """
    from pipeline.config import DETECTOR_MODEL_PATH, MAX_RESULTS, SCORE_THRESHOLD

    # Import YOLO lazily to avoid heavy dependency at module import time
    try:
        from ultralytics import YOLO
    except ImportError as e:
        raise RuntimeError(
            "ultralytics is not installed. Either:\n"
            "1. Set DETECTOR_PROVIDER=modal and configure DETECTOR_ENDPOINT_URL, or\n"
            "2. Install the 'local' extra for CPU detection"
        ) from e

    model = YOLO(DETECTOR_MODEL_PATH)
    return LocalDetector(model, SCORE_THRESHOLD, MAX_RESULTS)

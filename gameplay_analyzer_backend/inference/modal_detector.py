"""
Modal GPU inference service for single-frame object detection.

This runs on Modal's serverless GPUs and exposes a web endpoint
that the analyzer backend calls once per annotated window.

Setup:
1. pip install modal
2. modal token new  (authenticate with Modal)
3. modal deploy modal_detector.py  (deploy the service)

The deployed endpoint URL will be printed - use it as DETECTOR_ENDPOINT_URL.
"""

import modal
from typing import List, Dict, Any
import json

# Define the Modal app
app = modal.App("gameplay-frame-detector")

# Define the container image with all dependencies
detector_image = (
    modal.Image.debian_slim(python_version="3.11")
    .pip_install(
        "ultralytics>=8.0.0",
        "torch>=2.0.0",
        "torchvision>=0.15.0",
        "opencv-python-headless>=4.8.0",
        "numpy>=1.24.0",
        "fastapi[standard]",  # Required for web endpoints
    )
)

# Volume holding the trained weights (upload best.pt with `modal volume put`)
model_cache = modal.Volume.from_name("gameplay-detector-weights", create_if_missing=True)

WEIGHTS_PATH = "/model_cache/best.pt"
SCORE_THRESHOLD = 0.5
MAX_RESULTS = 25


@app.cls(
    image=detector_image,
    gpu="T4",  # Use T4 GPU (cheapest, good for inference)
    timeout=120,
    volumes={"/model_cache": model_cache},
    scaledown_window=60,  # Keep warm between windows of one analysis run
)
class FrameDetector:
    """YOLO detector running on GPU."""

    @modal.enter()
    def load_model(self):
        """Load the detector weights when the container starts."""
        from ultralytics import YOLO
        import os

        os.environ["YOLO_CONFIG_DIR"] = "/model_cache"

        self.model = YOLO(WEIGHTS_PATH)
        print("Detector weights loaded successfully")

    @modal.method()
    def detect(self, image_bytes: bytes) -> List[Dict[str, Any]]:
        """
        Run detection on one JPEG-encoded frame.

        Args:
            image_bytes: JPEG bytes

        Returns:
            Detections as {categories: [...], boundingBox: {...}} dicts
        """
        import cv2
        import numpy as np

        frame = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError("Could not decode image")

        results = self.model.predict(
            source=frame,
            conf=SCORE_THRESHOLD,
            max_det=MAX_RESULTS,
            verbose=False,
        )

        detections = []
        for result in results:
            if result.boxes is None or len(result.boxes) == 0:
                continue

            names = result.names or {}
            bboxes = result.boxes.xyxy.cpu().numpy()
            confidences = result.boxes.conf.cpu().numpy()
            classes = result.boxes.cls.cpu().numpy().astype(int)

            for i, cls_idx in enumerate(classes):
                x1, y1, x2, y2 = bboxes[i]
                detections.append({
                    "categories": [{
                        "categoryName": str(names.get(int(cls_idx), "")),
                        "score": float(confidences[i]),
                        "index": int(cls_idx),
                    }],
                    "boundingBox": {
                        "originX": float(x1),
                        "originY": float(y1),
                        "width": float(x2 - x1),
                        "height": float(y2 - y1),
                    },
                })

        return detections

    @modal.fastapi_endpoint(method="POST")
    def detect_endpoint(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Web endpoint for frame detection.

        Accepts {"image_base64": ...} (a base64-encoded JPEG), returns JSON detections.
        """
        import base64

        try:
            image_bytes = base64.b64decode(item.get("image_base64", ""))
            detections = self.detect.local(image_bytes)
            return {
                "status": "success",
                "detections": detections,
                "count": len(detections),
            }
        except Exception as e:
            return {
                "status": "error",
                "message": str(e),
            }


# Local entrypoint for testing
@app.local_entrypoint()
def main(image_path: str = ""):
    """Run detection on a sample image."""
    if not image_path:
        print("Usage: modal run modal_detector.py --image-path <frame.jpg>")
        return

    with open(image_path, "rb") as f:
        image_bytes = f.read()

    print(f"Sending {len(image_bytes)} bytes to Modal...")
    detections = FrameDetector().detect.remote(image_bytes)
    print(f"Got {len(detections)} detections")
    print(json.dumps(detections[:5], indent=2))  # Print first 5

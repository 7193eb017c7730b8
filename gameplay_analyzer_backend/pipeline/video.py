"""Video utilities: metadata, JPEG frame extraction and exact-frame sampling."""
import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import cv2
import numpy as np

from pipeline.config import RESTRICTED_HOSTS

logger = logging.getLogger(__name__)


class FrameSamplingError(RuntimeError):
    """Raised when a frame cannot be produced at the requested time."""


def is_seekable_source(src: str, is_url: bool) -> bool:
    """
    Whether frames can be sampled from this source.

    Local files always can; URLs can unless they point at a streaming host
    that only supports embedded playback (YouTube).
    """
    if not is_url:
        return True
    try:
        host = urlparse(src).hostname or ""
    except ValueError:
        return False
    return host not in RESTRICTED_HOSTS


def get_video_metadata(video_path: str) -> dict:
    """
    Extract video metadata (fps, num_frames, width, height, duration).

    Args:
        video_path: Path (or URL) of the video

    Returns:
        Dict with 'fps', 'num_frames', 'width', 'height', 'duration_seconds'
    """
    cap = cv2.VideoCapture(video_path)

    if not cap.isOpened():
        raise ValueError(f"Failed to open video: {video_path}")

    fps = cap.get(cv2.CAP_PROP_FPS)
    num_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

    cap.release()

    fps_val = fps if fps > 0 else 30
    duration_seconds = num_frames / fps_val if fps_val > 0 else 0

    return {
        'fps': float(fps_val),
        'num_frames': num_frames,
        'width': width,
        'height': height,
        'duration_seconds': round(duration_seconds, 2)
    }


def encode_jpeg(frame: np.ndarray, quality: int = 85) -> Optional[bytes]:
    """Encode a BGR frame as JPEG bytes, or None on failure."""
    success, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        return None
    return buffer.tobytes()


def extract_frame(video_path: str, frame_idx: int) -> Optional[bytes]:
    """
    Extract a single frame from a video and return as JPEG bytes.

    Args:
        video_path: Path to video file
        frame_idx: Frame index to extract (0-based)

    Returns:
        JPEG bytes of the frame, or None if extraction fails
    """
    cap = cv2.VideoCapture(video_path)

    if not cap.isOpened():
        raise ValueError(f"Failed to open video: {video_path}")

    # Seek to frame
    cap.set(cv2.CAP_PROP_POS_FRAMES, frame_idx)

    ret, frame = cap.read()
    cap.release()

    if not ret or frame is None:
        return None

    return encode_jpeg(frame)


class VideoFrameSampler:
    """
    Seek-and-decode access to the frame shown at a given time.

    Holds a single capture (one playback position), so sample_frame calls are
    serialized: each seek completes and its frame is decoded before the next
    seek starts. Use as an async context manager or call close().
    """

    def __init__(self, video_path: str, fps: Optional[float] = None):
        self.video_path = video_path
        self._cap = cv2.VideoCapture(video_path)
        self._lock = asyncio.Lock()
        if fps is None or fps <= 0:
            fps = self._cap.get(cv2.CAP_PROP_FPS) if self._cap.isOpened() else 0
        self.fps = fps if fps and fps > 0 else 30.0

    def frame_index(self, seconds: float) -> int:
        return max(0, int(round(float(seconds) * self.fps)))

    def _read_at(self, frame_idx: int) -> np.ndarray:
        if self._cap is None or not self._cap.isOpened():
            raise FrameSamplingError(f"Video is not open: {self.video_path}")

        self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_idx)
        ret, frame = self._cap.read()

        if not ret or frame is None:
            raise FrameSamplingError(f"No frame decoded at index {frame_idx}")
        if frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
            raise FrameSamplingError("No video dimension")
        return frame

    async def sample_frame(self, seconds: float) -> np.ndarray:
        """Return the BGR frame displayed at `seconds`."""
        frame_idx = self.frame_index(seconds)
        async with self._lock:
            return await asyncio.to_thread(self._read_at, frame_idx)

    def close(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        self.close()

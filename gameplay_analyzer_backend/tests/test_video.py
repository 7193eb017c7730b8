"""Tests for video metadata and exact-frame sampling with a small generated clip."""
import asyncio

import cv2
import numpy as np
import pytest

from pipeline.video import (
    FrameSamplingError,
    VideoFrameSampler,
    encode_jpeg,
    extract_frame,
    get_video_metadata,
    is_seekable_source,
)

FPS = 10
NUM_FRAMES = 20


@pytest.fixture
def tiny_video(tmp_path):
    """20 frames at 10 fps; frame i is filled with gray level i * 10."""
    path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), FPS, (64, 48))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video")
    for i in range(NUM_FRAMES):
        writer.write(np.full((48, 64, 3), i * 10, dtype=np.uint8))
    writer.release()
    return str(path)


def _level(frame):
    return int(round(float(frame.mean())))


def test_is_seekable_source():
    assert is_seekable_source("/data/videos/a.mp4", False)
    assert is_seekable_source("https://cdn.example.com/game.mp4", True)
    assert not is_seekable_source("https://www.youtube.com/watch?v=abc", True)
    assert not is_seekable_source("https://youtu.be/abc", True)


def test_get_video_metadata(tiny_video):
    meta = get_video_metadata(tiny_video)
    assert meta["fps"] == pytest.approx(FPS)
    assert meta["num_frames"] == NUM_FRAMES
    assert (meta["width"], meta["height"]) == (64, 48)
    assert meta["duration_seconds"] == pytest.approx(2.0)


def test_get_video_metadata_missing_file(tmp_path):
    with pytest.raises(ValueError, match="Failed to open video"):
        get_video_metadata(str(tmp_path / "missing.mp4"))


def test_extract_frame_returns_jpeg(tiny_video):
    data = extract_frame(tiny_video, 3)
    assert data[:2] == b"\xff\xd8"


def test_encode_jpeg():
    data = encode_jpeg(np.zeros((8, 8, 3), dtype=np.uint8))
    assert data[:2] == b"\xff\xd8"


class TestVideoFrameSampler:

    def test_samples_exact_frames(self, tiny_video):
        async def go():
            async with VideoFrameSampler(tiny_video) as sampler:
                return [await sampler.sample_frame(t) for t in (0.0, 0.5, 1.2, 0.3)]

        frames = asyncio.run(go())
        levels = [_level(f) for f in frames]
        assert levels == pytest.approx([0, 50, 120, 30], abs=3)

    def test_frame_index_rounds(self, tiny_video):
        sampler = VideoFrameSampler(tiny_video)
        try:
            assert sampler.frame_index(0.44) == 4
            assert sampler.frame_index(0.46) == 5
            assert sampler.frame_index(-1) == 0
        finally:
            sampler.close()

    def test_past_the_end_raises(self, tiny_video):
        async def go():
            async with VideoFrameSampler(tiny_video) as sampler:
                await sampler.sample_frame(100.0)

        with pytest.raises(FrameSamplingError):
            asyncio.run(go())

    def test_unopened_media_raises(self, tmp_path):
        sampler = VideoFrameSampler(str(tmp_path / "missing.mp4"))
        with pytest.raises(FrameSamplingError, match="not open"):
            asyncio.run(sampler.sample_frame(0.0))
        sampler.close()

    def test_closed_sampler_raises(self, tiny_video):
        sampler = VideoFrameSampler(tiny_video)
        sampler.close()
        with pytest.raises(FrameSamplingError):
            asyncio.run(sampler.sample_frame(0.0))

from pathlib import Path
import numpy as np
import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so `pipeline` imports work when tests run
import sys
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pipeline.analysis import LazyDetector
from pipeline.schemas import BoundingBox, Category, Detection
from pipeline.store import AnnotationStore
from app import app, sessions


@pytest.fixture(autouse=True)
def use_temp_dirs(tmp_path, monkeypatch):
    """Redirect data directories to a temporary path for tests."""
    temp_videos = tmp_path / "data" / "videos"
    temp_videos.mkdir(parents=True)

    monkeypatch.setattr("app.VIDEOS_DIR", temp_videos)

    yield


@pytest.fixture(autouse=True)
def clear_sessions():
    """Sessions are process-global; start every test with none."""
    sessions.clear()
    yield
    sessions.clear()


@pytest.fixture(autouse=True)
def reset_detector_client():
    """Reset detection client singleton between tests."""
    import inference
    inference._detector_client = None
    yield
    inference._detector_client = None


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def store():
    return AnnotationStore()


@pytest.fixture
def make_detection():
    """Build a Detection from a label and a vertical position."""
    def _make(label, origin_y, height=20.0, score=0.9, index=None, origin_x=10.0, width=20.0):
        return Detection(
            categories=[Category(category_name=label, score=score, index=index)],
            bounding_box=BoundingBox(origin_x=origin_x, origin_y=origin_y, width=width, height=height),
        )
    return _make


@pytest.fixture
def sample_detections(make_detection):
    # Carrier centered at y=100, one defender above (y=50), one below (y=150)
    return [
        make_detection("BALL_CARRIER", 90, height=20, score=0.95),
        make_detection("DEFENDER", 40, height=20),
        make_detection("DEFENDER", 140, height=20),
        make_detection("ATTACKER", 20, height=20),
    ]


class FakeSampler:
    """Stands in for VideoFrameSampler; remembers every requested time."""

    def __init__(self, src=None, fps=None, fail_at=None):
        self.src = src
        self.fps = fps
        self.fail_at = fail_at
        self.requested = []
        self.closed = False

    async def sample_frame(self, seconds):
        if self.fail_at is not None and len(self.requested) == self.fail_at:
            from pipeline.video import FrameSamplingError
            raise FrameSamplingError(f"No frame decoded at {seconds}")
        self.requested.append(seconds)
        return np.zeros((8, 8, 3), dtype=np.uint8)

    def close(self):
        self.closed = True


class FakeDetector:
    """Returns the same detections for every frame and counts calls."""

    def __init__(self, detections):
        self.detections = detections
        self.calls = 0

    async def detect(self, frame):
        self.calls += 1
        return list(self.detections)


@pytest.fixture
def make_sampler():
    return FakeSampler


@pytest.fixture
def fake_sampler():
    return FakeSampler()


@pytest.fixture
def fake_detector(sample_detections):
    return FakeDetector(sample_detections)


@pytest.fixture
def lazy_fake_detector(fake_detector):
    """LazyDetector wrapping fake_detector, with a count of factory calls."""
    created = []

    def factory():
        created.append(fake_detector)
        return fake_detector

    lazy = LazyDetector(factory)
    lazy.created = created
    return lazy


@pytest.fixture
def sample_video_metadata(monkeypatch):
    def fake_metadata(path):
        return {
            "fps": 30.0,
            "num_frames": 1800,
            "width": 1920,
            "height": 1080,
            "duration_seconds": 60.0
        }
    # Patch both pipeline.video.get_video_metadata and the name imported into app
    monkeypatch.setattr("pipeline.video.get_video_metadata", fake_metadata)
    monkeypatch.setattr("app.get_video_metadata", fake_metadata)
    return fake_metadata


@pytest.fixture
def mock_analysis(monkeypatch, lazy_fake_detector):
    """Route analysis through FakeSampler and the fake detector."""
    samplers = []

    def sampler_factory(src, fps=None):
        sampler = FakeSampler(src, fps)
        samplers.append(sampler)
        return sampler

    monkeypatch.setattr("pipeline.session.VideoFrameSampler", sampler_factory)
    monkeypatch.setattr("app.detector", lazy_fake_detector)
    return samplers


@pytest.fixture
def uploaded_video(client, sample_video_metadata):
    """Upload a fake MP4 and return its video_id."""
    from io import BytesIO
    r = client.post("/videos", files={"file": ("game.mp4", BytesIO(b"fake mp4 data"), "video/mp4")})
    assert r.status_code == 200
    return r.json()["video_id"]


@pytest.fixture
def schema_csv():
    return (
        "TagName,StartTime,EndTime,Modifiers,Down\n"
        "SPIN,0.05,0.07,LEFT,1\n"
        "JUKE,1.10,1.12,,2\n"
        "SPIN,2.00,2.03,RIGHT,3\n"
    )


@pytest.fixture
def mock_modal_response():
    """Sample Modal API response."""
    return {
        "status": "success",
        "detections": [
            {
                "categories": [{"categoryName": "BALL_CARRIER", "score": 0.92, "index": 0}],
                "boundingBox": {"originX": 100.0, "originY": 90.0, "width": 40.0, "height": 20.0}
            },
            {
                "categories": [{"categoryName": "DEFENDER", "score": 0.81, "index": 1}],
                "boundingBox": {"originX": 300.0, "originY": 40.0, "width": 40.0, "height": 20.0}
            }
        ],
        "count": 2
    }

"""Pydantic schemas for annotations, detections and API requests/responses."""
import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from pipeline.timecodes import format_clock


class AnnotationRecord(BaseModel):
    """A tagged time window (or point) on the timeline.

    start_key/end_key are frame-quantized and never change after creation;
    a new record is needed to move an annotation in time.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, frozen=True)
    start_key: float = Field(frozen=True)
    end_key: Optional[float] = Field(default=None, frozen=True)
    tag_name: str = ""
    modifier: str = ""
    down: str = ""

    @computed_field
    @property
    def start_time(self) -> str:
        return format_clock(self.start_key)

    @computed_field
    @property
    def end_time(self) -> str:
        return format_clock(self.end_key) if self.end_key is not None else ""


class Category(BaseModel):
    """One classification candidate attached to a detection."""
    model_config = ConfigDict(populate_by_name=True)

    category_name: str = Field(default="", alias="categoryName")
    score: float = 0.0
    index: Optional[int] = None


class BoundingBox(BaseModel):
    """Axis-aligned box in image pixels, origin at the top-left corner."""
    model_config = ConfigDict(populate_by_name=True)

    origin_x: float = Field(alias="originX")
    origin_y: float = Field(alias="originY")
    width: float
    height: float


class Detection(BaseModel):
    """Single-frame object detection, in the detector's wire shape."""
    model_config = ConfigDict(populate_by_name=True)

    categories: List[Category] = []
    bounding_box: BoundingBox = Field(alias="boundingBox")


class AnalysisState(str, Enum):
    """Lifecycle of an analysis run."""
    IDLE = "idle"
    PREPARING = "preparing"
    SAMPLING = "sampling"
    DONE = "done"
    FAILED = "failed"


class DragHandle(str, Enum):
    """Which selection handle, if any, is being dragged."""
    NONE = "none"
    START = "start"
    END = "end"


# --- Requests ---

class AddAnnotationRequest(BaseModel):
    """Add an annotation window."""
    start: float
    end: Optional[float] = None
    tag: str = ""
    modifier: str = ""
    down: str = ""


class QuickAddRequest(BaseModel):
    """Quick-add at the playhead, by key ("s", "j", "t") or explicit tag."""
    key: Optional[str] = None
    tag: Optional[str] = None


class UpdateAnnotationRequest(BaseModel):
    """Partial update of the mutable annotation fields."""
    tag_name: Optional[str] = None
    modifier: Optional[str] = None
    down: Optional[str] = None


class BulkDeleteRequest(BaseModel):
    """Remove several annotations at once."""
    ids: List[str]


class SelectionUpdateRequest(BaseModel):
    """Set one or both selection bounds."""
    start: Optional[float] = None
    end: Optional[float] = None


class CommitSelectionRequest(BaseModel):
    """Turn the current selection into an annotation."""
    tag: str
    modifier: str = ""
    down: str = ""


class PlayheadRequest(BaseModel):
    """Move the playhead: absolute seek, frame step, or edited time text."""
    seek: Optional[float] = None
    step: Optional[int] = None
    step_ms: Optional[float] = None
    text: Optional[str] = None


class RegisterUrlRequest(BaseModel):
    """Register a remote video URL as the session source."""
    url: str


# --- Responses ---

class VideoCreateResponse(BaseModel):
    """Response after registering a video source."""
    video_id: str
    name: str
    is_url: bool
    analyzable: bool
    fps: Optional[float] = None
    num_frames: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None


class AddAnnotationResponse(BaseModel):
    """Result of an add; added=False means a duplicate start/tag pair."""
    added: bool
    annotation: Optional[AnnotationRecord] = None


class UpdateAnnotationResponse(BaseModel):
    """Result of a partial update."""
    updated: bool
    annotation: AnnotationRecord


class ImportResponse(BaseModel):
    """Summary of a schema CSV import."""
    schema_name: str
    imported: int
    skipped: int
    duplicates: int


class SelectionResponse(BaseModel):
    """Current selection and its conflict status."""
    start: Optional[float] = None
    end: Optional[float] = None
    drag: DragHandle = DragHandle.NONE
    conflict: bool = False


class PlayheadResponse(BaseModel):
    """Current playhead position."""
    current: float
    display: str
    duration: float
    step_ms: float
    accepted: bool = True


class AnalysisResponse(BaseModel):
    """Analysis status and (when available) per-tag counts."""
    state: AnalysisState
    message: str
    started: bool = True
    progress: int = 0
    total: int = 0
    results: Optional[Dict[str, List[int]]] = None


class SessionResponse(BaseModel):
    """Snapshot of a session's source, schema and counts."""
    video_id: str
    name: str
    is_url: bool
    analyzable: bool
    schema_name: Optional[str] = None
    annotation_count: int
    analysis_state: AnalysisState

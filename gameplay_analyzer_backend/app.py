"""FastAPI application for gameplay annotation and analysis."""
import os
import uuid
from pathlib import Path
from typing import Dict, List
import logging

from fastapi import FastAPI, UploadFile, File, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from pipeline.analysis import LazyDetector
from pipeline.csv_codec import (
    MalformedImportError,
    export_analysis_json,
    export_csv,
    export_filename,
    export_json,
)
from pipeline.detect import create_detector
from pipeline.schemas import (
    AddAnnotationRequest,
    AddAnnotationResponse,
    AnalysisResponse,
    AnnotationRecord,
    BulkDeleteRequest,
    CommitSelectionRequest,
    ImportResponse,
    PlayheadRequest,
    PlayheadResponse,
    QuickAddRequest,
    RegisterUrlRequest,
    SelectionResponse,
    SelectionUpdateRequest,
    SessionResponse,
    UpdateAnnotationRequest,
    UpdateAnnotationResponse,
    VideoCreateResponse,
)
from pipeline.session import AnalysisUnavailableError, AnnotationSession
from pipeline.video import get_video_metadata, extract_frame, is_seekable_source

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Configuration from environment variables
MAX_VIDEO_SIZE_MB = int(os.getenv("MAX_VIDEO_SIZE_MB", "500"))
MAX_VIDEO_SIZE = MAX_VIDEO_SIZE_MB * 1024 * 1024  # Convert to bytes
MAX_SCHEMA_SIZE = 5 * 1024 * 1024
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
DATA_DIR = Path(os.getenv("DATA_DIR", "data"))

app = FastAPI(title="Gameplay Video Analyzer API")

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Data directories
VIDEOS_DIR = DATA_DIR / "videos"

# Create directories if they don't exist
VIDEOS_DIR.mkdir(parents=True, exist_ok=True)

# In-memory storage (annotations live only as long as the process;
# export files are the only persistence)
sessions: Dict[str, AnnotationSession] = {}

# Detector is loaded on the first analysis and reused for every session
detector = LazyDetector(create_detector)


# --- Health Check ---
@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok", "detector_loaded": detector.ready}


# --- Helper Functions ---
def validate_video_upload(file: UploadFile, content: bytes) -> None:
    """Validate uploaded video file."""
    # Check file size
    if len(content) > MAX_VIDEO_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {MAX_VIDEO_SIZE_MB}MB"
        )

    # Check file extension
    if not file.filename or not file.filename.lower().endswith(".mp4"):
        raise HTTPException(
            status_code=400,
            detail="Only MP4 video files are accepted"
        )

    # Check MIME type if provided
    if file.content_type and file.content_type not in ["video/mp4", "application/octet-stream"]:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid content type: {file.content_type}. Expected video/mp4"
        )


def get_session(video_id: str) -> AnnotationSession:
    """Look up a session or raise 404."""
    session = sessions.get(video_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return session


def get_annotation(session: AnnotationSession, annotation_id: str) -> AnnotationRecord:
    record = session.store.get(annotation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Annotation not found")
    return record


def selection_response(session: AnnotationSession) -> SelectionResponse:
    sel = session.selection
    return SelectionResponse(
        start=sel.sel_start,
        end=sel.sel_end,
        drag=sel.drag,
        conflict=sel.conflict,
    )


def playhead_response(session: AnnotationSession, accepted: bool = True) -> PlayheadResponse:
    ph = session.playhead
    return PlayheadResponse(
        current=ph.current,
        display=ph.display,
        duration=ph.duration,
        step_ms=ph.step_ms,
        accepted=accepted,
    )


def analysis_response(session: AnnotationSession, started: bool = True) -> AnalysisResponse:
    pipe = session.analysis
    return AnalysisResponse(
        state=pipe.state,
        message=pipe.message,
        started=started,
        progress=pipe.progress,
        total=pipe.total,
        results=session.results,
    )


def session_response(session: AnnotationSession) -> SessionResponse:
    return SessionResponse(
        video_id=session.video_id,
        name=session.name,
        is_url=session.is_url,
        analyzable=session.analyzable,
        schema_name=session.schema_name,
        annotation_count=len(session.store),
        analysis_state=session.analysis.state,
    )


def download(content: str, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- Sources ---
@app.post("/videos", response_model=VideoCreateResponse)
async def upload_video(file: UploadFile = File(...)):
    """
    Upload a video file and open an annotation session for it.

    Returns video_id and the video metadata.
    """
    # Read file content
    content = await file.read()

    # Validate upload
    validate_video_upload(file, content)

    # Generate unique video ID
    video_id = str(uuid.uuid4())

    # Save video file
    video_path = VIDEOS_DIR / f"{video_id}.mp4"
    with open(video_path, "wb") as f:
        f.write(content)

    # Extract metadata
    try:
        metadata = get_video_metadata(str(video_path))
    except Exception as e:
        # Clean up file on error
        video_path.unlink()
        logger.error(f"Failed to process video {video_id}: {e}")
        raise HTTPException(status_code=400, detail="Failed to process video. Ensure it is a valid MP4 file.")

    sessions[video_id] = AnnotationSession(
        video_id=video_id,
        src=str(video_path),
        name=file.filename,
        is_url=False,
        detector=detector,
        metadata=metadata,
    )

    logger.info(f"Uploaded video {video_id}: {metadata['num_frames']} frames at {metadata['fps']} fps")

    return VideoCreateResponse(
        video_id=video_id,
        name=file.filename,
        is_url=False,
        analyzable=True,
        **metadata,
    )


@app.post("/videos/url", response_model=VideoCreateResponse)
async def register_video_url(request: RegisterUrlRequest):
    """
    Register a remote video by URL.

    Streaming hosts (YouTube) can be annotated but not analyzed; for other
    URLs metadata is read directly from the stream.
    """
    url = request.url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required")

    video_id = str(uuid.uuid4())
    analyzable = is_seekable_source(url, True)

    metadata = {}
    if analyzable:
        try:
            metadata = get_video_metadata(url)
        except Exception as e:
            logger.error(f"Failed to open video URL for {video_id}: {e}")
            raise HTTPException(status_code=400, detail="Failed to open video URL")

    sessions[video_id] = AnnotationSession(
        video_id=video_id,
        src=url,
        name=url,
        is_url=True,
        detector=detector,
        metadata=metadata,
    )

    logger.info(f"Registered URL source {video_id} (analyzable={analyzable})")

    return VideoCreateResponse(
        video_id=video_id,
        name=url,
        is_url=True,
        analyzable=analyzable,
        **metadata,
    )


@app.get("/videos/{video_id}", response_model=SessionResponse)
async def get_video(video_id: str):
    """Session overview: source, schema and annotation count."""
    return session_response(get_session(video_id))


@app.delete("/videos/{video_id}")
async def clear_video(video_id: str):
    """Clear the source, dropping its annotations, selection and results."""
    session = get_session(video_id)
    session.clear()
    del sessions[video_id]

    if not session.is_url:
        video_path = Path(session.src)
        if video_path.exists():
            video_path.unlink()

    logger.info(f"Cleared video {video_id}")
    return {"status": "cleared"}


@app.get("/videos/{video_id}/frame/{frame_idx}")
async def get_frame(video_id: str, frame_idx: int):
    """
    Extract and return a single frame from a video as JPEG image.

    Args:
        video_id: Video identifier
        frame_idx: Frame index to extract (0-based)

    Returns:
        JPEG image of the frame
    """
    session = get_session(video_id)
    if not session.analyzable:
        raise HTTPException(status_code=400, detail="Frames are not available for streaming sources")

    num_frames = session.metadata.get("num_frames", 0)

    # Validate frame index
    if frame_idx < 0 or frame_idx >= num_frames:
        raise HTTPException(
            status_code=400,
            detail=f"Frame index must be between 0 and {num_frames - 1}"
        )

    try:
        frame_bytes = extract_frame(session.src, frame_idx)
        if frame_bytes is None:
            raise HTTPException(status_code=500, detail="Failed to extract frame")

        return Response(
            content=frame_bytes,
            media_type="image/jpeg",
            headers={"Cache-Control": "max-age=3600"}
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to extract frame {frame_idx} from video {video_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to extract frame")


# --- Annotations ---
@app.get("/videos/{video_id}/annotations", response_model=List[AnnotationRecord])
async def list_annotations(
    video_id: str,
    q: str = Query("", description="Search over start/end, tag, modifier and down"),
    tag: str = Query("All", description="Exact tag filter; 'All' disables it"),
):
    """Annotations in ascending start time, optionally filtered."""
    session = get_session(video_id)
    return session.store.filter(query=q, tag=tag)


@app.post("/videos/{video_id}/annotations", response_model=AddAnnotationResponse)
async def add_annotation(video_id: str, request: AddAnnotationRequest):
    """
    Add an annotation window.

    A second annotation with the same start instant and tag is dropped
    (added=false), not reported as an error.
    """
    session = get_session(video_id)
    record = session.store.add(
        request.start, request.end, request.tag, request.modifier, request.down
    )
    return AddAnnotationResponse(added=record is not None, annotation=record)


@app.delete("/videos/{video_id}/annotations")
async def clear_annotations(video_id: str):
    """Remove every annotation."""
    session = get_session(video_id)
    session.store.clear()
    return {"status": "cleared"}


@app.post("/videos/{video_id}/annotations/quick", response_model=AddAnnotationResponse)
async def quick_add_annotation(video_id: str, request: QuickAddRequest):
    """Add a point annotation at the playhead, by shortcut key or tag name."""
    session = get_session(video_id)
    at = session.playhead.current

    if request.key:
        record = session.store.quick_add_key(request.key, at)
    elif request.tag and request.tag.strip():
        record = session.store.quick_add(request.tag, at)
    else:
        raise HTTPException(status_code=400, detail="Either key or tag is required")

    return AddAnnotationResponse(added=record is not None, annotation=record)


@app.post("/videos/{video_id}/annotations/bulk-delete")
async def bulk_delete_annotations(video_id: str, request: BulkDeleteRequest):
    """Remove several annotations; unknown ids are ignored."""
    session = get_session(video_id)
    before = len(session.store)
    session.store.remove_many(request.ids)
    return {"deleted": before - len(session.store)}


@app.get("/videos/{video_id}/annotations/tags", response_model=List[str])
async def list_tags(video_id: str):
    """Tag filter options ("All" first)."""
    return get_session(video_id).store.unique_tags()


@app.get("/videos/{video_id}/annotations/export")
async def export_annotations(
    video_id: str,
    fmt: str = Query("csv", alias="format", pattern="^(csv|json)$", description="csv or json"),
):
    """Download every annotation as CSV or JSON."""
    session = get_session(video_id)
    records = session.store.snapshot()
    if fmt == "json":
        return download(export_json(records), export_filename("annotations", "json"), "application/json")
    return download(export_csv(records), export_filename("annotations", "csv"), "text/csv")


@app.patch("/videos/{video_id}/annotations/{annotation_id}", response_model=UpdateAnnotationResponse)
async def update_annotation(video_id: str, annotation_id: str, request: UpdateAnnotationRequest):
    """
    Update tag name, modifier and/or down.

    A rename that would duplicate another annotation at the same instant is
    refused (updated=false); modifier and down always apply.
    """
    session = get_session(video_id)
    get_annotation(session, annotation_id)

    updated = True
    if request.modifier is not None:
        session.store.update_modifier(annotation_id, request.modifier)
    if request.down is not None:
        session.store.update_down(annotation_id, request.down)
    if request.tag_name is not None:
        updated = session.store.update_tag_name(annotation_id, request.tag_name)

    return UpdateAnnotationResponse(
        updated=updated,
        annotation=get_annotation(session, annotation_id),
    )


@app.delete("/videos/{video_id}/annotations/{annotation_id}")
async def delete_annotation(video_id: str, annotation_id: str):
    """Remove one annotation (no-op if it does not exist)."""
    session = get_session(video_id)
    session.store.remove(annotation_id)
    return {"status": "deleted"}


# --- Schema ---
@app.post("/videos/{video_id}/schema", response_model=ImportResponse)
async def load_schema(video_id: str, file: UploadFile = File(...)):
    """
    Import a schema CSV, replacing all current annotations.

    Required columns: TagName, StartTime, EndTime, Modifiers (Down optional).
    A file missing any of them is rejected and the annotations are untouched.
    """
    session = get_session(video_id)
    content = await file.read()

    if len(content) > MAX_SCHEMA_SIZE:
        raise HTTPException(status_code=413, detail="Schema file too large")

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Schema must be UTF-8 text")

    name = file.filename or "schema.csv"
    try:
        report = session.load_schema(name, text)
    except MalformedImportError as e:
        logger.warning(f"Rejected schema {name!r} for video {video_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return ImportResponse(
        schema_name=name,
        imported=report.imported,
        skipped=report.skipped,
        duplicates=report.duplicates,
    )


@app.delete("/videos/{video_id}/schema")
async def clear_schema(video_id: str):
    """Unload the schema; this also clears annotations and results."""
    session = get_session(video_id)
    session.clear_schema()
    return {"status": "cleared"}


# --- Selection & playhead ---
@app.get("/videos/{video_id}/selection", response_model=SelectionResponse)
async def get_selection(video_id: str):
    """Current selection and whether its start conflicts with an annotation."""
    return selection_response(get_session(video_id))


@app.put("/videos/{video_id}/selection", response_model=SelectionResponse)
async def update_selection(video_id: str, request: SelectionUpdateRequest):
    """Mark the selection start and/or end."""
    session = get_session(video_id)
    if request.start is not None:
        session.selection.mark_start(request.start)
    if request.end is not None:
        session.selection.mark_end(request.end)
    return selection_response(session)


@app.delete("/videos/{video_id}/selection", response_model=SelectionResponse)
async def clear_selection(video_id: str):
    session = get_session(video_id)
    session.selection.clear()
    return selection_response(session)


@app.post("/videos/{video_id}/selection/commit", response_model=AddAnnotationResponse)
async def commit_selection(video_id: str, request: CommitSelectionRequest):
    """
    Create an annotation from the current selection.

    Rejected with 409 while the selection start conflicts with an existing
    annotation, and with 400 if the selection or tag is incomplete.
    """
    session = get_session(video_id)
    sel = session.selection

    if sel.range_bounds() is None:
        raise HTTPException(status_code=400, detail="Mark both a start and an end first")
    if not request.tag.strip():
        raise HTTPException(status_code=400, detail="Tag is required")
    if sel.conflict:
        raise HTTPException(status_code=409, detail="Selection start overlaps an existing annotation")

    record = sel.commit(session.store, request.tag, request.modifier, request.down, session.playhead)
    return AddAnnotationResponse(added=record is not None, annotation=record)


@app.post("/videos/{video_id}/playhead", response_model=PlayheadResponse)
async def move_playhead(video_id: str, request: PlayheadRequest):
    """
    Seek, step, or apply an edited time.

    An unparsable time edit leaves the playhead unchanged (accepted=false).
    """
    session = get_session(video_id)
    ph = session.playhead

    if request.step_ms is not None:
        ph.step_ms = request.step_ms

    accepted = True
    if request.text is not None:
        accepted = ph.edit(request.text)
    elif request.seek is not None:
        ph.seek(request.seek)
    elif request.step is not None:
        ph.step(1 if request.step > 0 else -1)

    return playhead_response(session, accepted)


# --- Analysis ---
@app.post("/videos/{video_id}/analyze", response_model=AnalysisResponse)
async def analyze_video(video_id: str):
    """
    Run detection over every annotated window.

    Returns per-tag counts of defenders in front of the ball carrier. A
    request arriving while a run is in flight is ignored (started=false).
    """
    session = get_session(video_id)

    try:
        session.check_analyzable()
    except AnalysisUnavailableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if session.analysis.running:
        return analysis_response(session, started=False)

    logger.info(f"Running analysis on video {video_id}")
    await session.analyze()

    return analysis_response(session)


@app.get("/videos/{video_id}/analysis", response_model=AnalysisResponse)
async def get_analysis(video_id: str):
    """Analysis state, progress and the latest results."""
    return analysis_response(get_session(video_id))


@app.delete("/videos/{video_id}/analysis", response_model=AnalysisResponse)
async def clear_analysis(video_id: str):
    session = get_session(video_id)
    session.clear_results()
    return analysis_response(session)


@app.get("/videos/{video_id}/analysis/export")
async def export_analysis(video_id: str):
    """Download the latest results as analysis_<timestamp>.json."""
    session = get_session(video_id)
    if not session.results:
        raise HTTPException(status_code=404, detail="No analysis results. Run analyze first.")
    return download(
        export_analysis_json(session.results),
        export_filename("analysis", "json"),
        "application/json",
    )

"""Range selection, conflict detection and playhead state.

A selection is an in-progress (start, end) pair on the timeline. Its low
bound is the candidate start of a new annotation; a candidate that falls
inside, or within half a frame of, any existing annotation interval is in
conflict and cannot be committed.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from pipeline.config import DEFAULT_STEP_MS, FPS
from pipeline.schemas import AnnotationRecord, DragHandle
from pipeline.store import AnnotationStore
from pipeline.timecodes import format_playhead, frame_key, parse_clock

logger = logging.getLogger(__name__)

# Half a frame period
CONFLICT_EPS = 1 / FPS / 2


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def is_conflict(candidate_start: float, annotations: Sequence[AnnotationRecord]) -> bool:
    """
    Check a candidate start instant against existing annotation intervals.

    Each interval is compared as [min(start, end), max(start, end)]; a point
    annotation is the zero-width interval at its start. The candidate
    conflicts if it lies strictly inside an interval or within half a frame
    of either bound.
    """
    key = frame_key(candidate_start)
    for a in annotations:
        s = a.start_key
        e = a.end_key if a.end_key is not None else a.start_key
        lo, hi = min(s, e), max(s, e)
        if lo < key < hi:
            return True
        if abs(key - lo) <= CONFLICT_EPS or abs(key - hi) <= CONFLICT_EPS:
            return True
    return False


class Playhead:
    """Current position in the video, with frame stepping and time edits."""

    def __init__(self, duration: float = 0.0, step_ms: float = DEFAULT_STEP_MS):
        self.duration = max(0.0, float(duration or 0.0))
        self.step_ms = step_ms
        self.current = 0.0

    @property
    def display(self) -> str:
        return format_playhead(self.current)

    def seek(self, t: float) -> float:
        upper = self.duration if self.duration > 0 else max(0.0, float(t))
        self.current = _clamp(float(t), 0.0, upper)
        return self.current

    def step(self, direction: int) -> float:
        """Move one step (step_ms) forwards (+1) or backwards (-1)."""
        delta = (float(self.step_ms or 0)) / 1000
        return self.seek(self.current + direction * delta)

    def edit(self, text: str) -> bool:
        """
        Apply a user-typed time.

        Unparsable text leaves the playhead where it was and returns False;
        the display then still shows the last good time.
        """
        parsed = parse_clock(text)
        if parsed is None:
            logger.info(f"Ignored invalid time edit {text!r}")
            return False
        upper = self.duration if self.duration > 0 else parsed
        clamped = _clamp(parsed, 0.0, upper)
        self.seek(round(clamped * 100) / 100)
        return True


class SelectionState:
    """
    In-progress time range plus drag state.

    Both bounds are independently optional (a start may be marked before an
    end). Only one drag handle is active at a time.
    """

    def __init__(self, duration: float = 0.0):
        self.duration = max(0.0, float(duration or 0.0))
        self.sel_start: Optional[float] = None
        self.sel_end: Optional[float] = None
        self.drag = DragHandle.NONE
        self._annotations: List[AnnotationRecord] = []

    # Store subscription target
    def on_snapshot(self, annotations: List[AnnotationRecord]):
        self._annotations = list(annotations)

    def _clamp(self, t: float) -> float:
        upper = self.duration if self.duration > 0 else max(0.0, float(t))
        return _clamp(float(t), 0.0, upper)

    @property
    def has_start(self) -> bool:
        return self.sel_start is not None

    @property
    def has_end(self) -> bool:
        return self.sel_end is not None

    def mark_start(self, t: float):
        self.sel_start = self._clamp(t)

    def mark_end(self, t: float):
        self.sel_end = self._clamp(t)

    def begin_range(self, t: float):
        """Start a fresh range at t and drag its end handle."""
        t = self._clamp(t)
        self.sel_start = t
        self.sel_end = t
        self.drag = DragHandle.END

    def begin_drag(self, handle: DragHandle):
        self.drag = DragHandle(handle)

    def drag_to(self, t: float):
        """Move the active handle; crossing the other bound swaps them."""
        if self.drag == DragHandle.NONE:
            return
        t = self._clamp(t)
        if self.drag == DragHandle.START:
            end = self.sel_end if self.sel_end is not None else t
            if t > end:
                self.sel_start, self.sel_end = end, t
                self.drag = DragHandle.END
            else:
                self.sel_start = t
        else:
            start = self.sel_start if self.sel_start is not None else t
            if t < start:
                self.sel_start, self.sel_end = t, start
                self.drag = DragHandle.START
            else:
                self.sel_end = t

    def end_drag(self):
        self.drag = DragHandle.NONE

    def range_bounds(self) -> Optional[Tuple[float, float]]:
        """(low, high) of the selection, or None while a bound is missing."""
        if self.sel_start is None or self.sel_end is None:
            return None
        return min(self.sel_start, self.sel_end), max(self.sel_start, self.sel_end)

    @property
    def candidate_start(self) -> Optional[float]:
        if self.sel_start is None:
            return None
        if self.sel_end is None:
            return self.sel_start
        return min(self.sel_start, self.sel_end)

    @property
    def conflict(self) -> bool:
        """Whether the candidate start overlaps the latest known annotations."""
        candidate = self.candidate_start
        if candidate is None:
            return False
        return is_conflict(candidate, self._annotations)

    def clear(self):
        self.sel_start = None
        self.sel_end = None
        self.drag = DragHandle.NONE

    def commit(
        self,
        store: AnnotationStore,
        tag: str,
        modifier: str = "",
        down: str = "",
        playhead: Optional[Playhead] = None,
    ) -> Optional[AnnotationRecord]:
        """
        Add the selected range to the store as an annotation.

        Requires both bounds, a non-empty tag and no conflict. On success the
        playhead advances just past the range end and the selection clears.
        """
        bounds = self.range_bounds()
        if bounds is None or not (tag or "").strip() or self.conflict:
            return None
        lo, hi = bounds
        record = store.add(lo, hi, tag, modifier, down)
        if record is None:
            return None

        if playhead is not None:
            delta = max((float(playhead.step_ms or 0)) / 1000, 1 / FPS)
            playhead.seek(hi + delta + 1e-4)

        self.clear()
        return record

"""Annotation store: frame-quantized, conflict-free event timeline.

Records are kept in ascending start_key order (stable, so ties keep insertion
order). At most one record may exist per (start_key, normalized tag) pair;
adds and renames that would break this are silently dropped.

Other components observe the store through subscribe(): every mutation
broadcasts a fresh snapshot to each registered callback.
"""
import logging
from typing import Callable, Iterable, List, Optional

from pipeline.config import QUICK_ADD_KEYS
from pipeline.schemas import AnnotationRecord
from pipeline.timecodes import _is_finite, frame_key

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[AnnotationRecord]], None]


def normalize_tag(tag: Optional[str]) -> str:
    """Comparison form of a tag name: trimmed and lower-cased."""
    return (tag or "").strip().lower()


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class AnnotationStore:
    """In-memory ordered collection of AnnotationRecord."""

    def __init__(self):
        self._records: List[AnnotationRecord] = []
        self._subscribers: List[SnapshotCallback] = []

    def __len__(self) -> int:
        return len(self._records)

    # --- Observation ---

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a callback that receives the snapshot after every change.

        The callback is invoked once immediately with the current state.
        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)
        callback(self.snapshot())

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self):
        snap = self.snapshot()
        for callback in list(self._subscribers):
            callback(snap)

    # --- Queries ---

    def snapshot(self) -> List[AnnotationRecord]:
        """Copies of all records, ascending by start_key."""
        return [r.model_copy() for r in self._records]

    def get(self, annotation_id: str) -> Optional[AnnotationRecord]:
        for r in self._records:
            if r.id == annotation_id:
                return r.model_copy()
        return None

    def has_tag_at_start(self, tag: str, start_key: float, exclude_id: Optional[str] = None) -> bool:
        """True if a record other than exclude_id has this start instant and tag."""
        norm = normalize_tag(tag)
        return any(
            r.id != exclude_id and r.start_key == start_key and normalize_tag(r.tag_name) == norm
            for r in self._records
        )

    def unique_tags(self) -> List[str]:
        """Tag filter options: "All" followed by the distinct non-empty tag names, sorted."""
        tags = {r.tag_name.strip() for r in self._records if r.tag_name.strip()}
        return ["All"] + sorted(tags)

    def filter(self, query: str = "", tag: str = "All") -> List[AnnotationRecord]:
        """
        Snapshot restricted by a tag filter and a free-text search.

        The search is a case-insensitive substring match over the start/end
        clock strings, tag, modifier and down.
        """
        q = (query or "").strip().lower()
        out = []
        for r in self.snapshot():
            if tag and tag != "All" and r.tag_name.strip() != tag:
                continue
            if q:
                hay = f"{r.start_time} {r.end_time} {r.tag_name} {r.modifier} {r.down}".lower()
                if q not in hay:
                    continue
            out.append(r)
        return out

    # --- Mutations ---

    def _insert(self, record: AnnotationRecord):
        self._records.append(record)
        self._records.sort(key=lambda r: r.start_key)
        self._publish()

    def add(
        self,
        start: float,
        end: Optional[float] = None,
        tag: Optional[str] = "",
        modifier: Optional[str] = "",
        down: Optional[str] = "",
    ) -> Optional[AnnotationRecord]:
        """
        Add an annotation window.

        Returns the new record, or None when start is not finite or a record
        with the same start instant and tag already exists.
        """
        if not _is_finite(start):
            return None

        start_key = frame_key(start)
        end_key = frame_key(end) if _is_finite(end) else None
        tag_name = _clean(tag)

        if self.has_tag_at_start(tag_name, start_key):
            logger.debug(f"Dropped duplicate annotation {tag_name!r} at {start_key}")
            return None

        record = AnnotationRecord(
            start_key=start_key,
            end_key=end_key,
            tag_name=tag_name,
            modifier=_clean(modifier),
            down=_clean(down),
        )
        self._insert(record)
        return record.model_copy()

    def quick_add(self, tag: str, at: float) -> Optional[AnnotationRecord]:
        """Add a point annotation (no end) at the given instant."""
        return self.add(at, None, tag)

    def quick_add_key(self, key: str, at: float) -> Optional[AnnotationRecord]:
        """Quick-add using a single-key shortcut; unknown keys are ignored."""
        tag = QUICK_ADD_KEYS.get((key or "").lower())
        if not tag:
            return None
        return self.quick_add(tag, at)

    def _find(self, annotation_id: str) -> Optional[AnnotationRecord]:
        for r in self._records:
            if r.id == annotation_id:
                return r
        return None

    def update_tag_name(self, annotation_id: str, new_name: str) -> bool:
        """Rename a record unless that would duplicate its start/tag pair."""
        record = self._find(annotation_id)
        if record is None:
            return False
        if self.has_tag_at_start(new_name, record.start_key, exclude_id=annotation_id):
            return False
        record.tag_name = new_name if new_name is not None else ""
        self._publish()
        return True

    def update_modifier(self, annotation_id: str, value: str) -> bool:
        record = self._find(annotation_id)
        if record is None:
            return False
        record.modifier = value if value is not None else ""
        self._publish()
        return True

    def update_down(self, annotation_id: str, value: str) -> bool:
        record = self._find(annotation_id)
        if record is None:
            return False
        record.down = value if value is not None else ""
        self._publish()
        return True

    def remove(self, annotation_id: str):
        self.remove_many([annotation_id])

    def remove_many(self, annotation_ids: Iterable[str]):
        """Delete every record whose id is in annotation_ids; unknown ids are ignored."""
        ids = set(annotation_ids)
        kept = [r for r in self._records if r.id not in ids]
        if len(kept) != len(self._records):
            self._records = kept
            self._publish()

    def clear(self):
        """Drop every record."""
        if self._records:
            self._records = []
            self._publish()

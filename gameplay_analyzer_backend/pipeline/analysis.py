"""Per-window detection analysis.

For each annotation (ascending start time) the pipeline samples the exact
frame at the annotation's start instant, runs the detector on it, and reduces
the detections to a single count: the number of defenders positioned in front
of (above, in image coordinates) the ball carrier. Counts are grouped by tag.

Windows are processed strictly one at a time: a frame is fully sampled before
detection starts, and detection finishes before the next seek. A run either
completes and publishes every count, or fails and publishes nothing.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from pipeline.config import (
    ATTACKER_LABELS,
    BALL_CARRIER_LABELS,
    DEFENDER_LABELS,
    load_fallback_labels,
)
from pipeline.schemas import AnalysisState, AnnotationRecord, Detection

logger = logging.getLogger(__name__)

AnalysisResults = Dict[str, List[int]]


class Role(str, Enum):
    """What a detection represents on the field."""
    CARRIER = "carrier"
    DEFENDER = "defender"
    ATTACKER = "attacker"


@dataclass
class LabelRoles:
    """
    Label -> role mapping for a particular detection model.

    fallback_by_index names detections that come back with an empty label but
    a class index; it follows the model's class ordering.
    """
    carrier_labels: FrozenSet[str] = BALL_CARRIER_LABELS
    defender_labels: FrozenSet[str] = DEFENDER_LABELS
    attacker_labels: FrozenSet[str] = ATTACKER_LABELS
    fallback_by_index: Dict[int, str] = field(default_factory=load_fallback_labels)

    def label_of(self, det: Detection) -> str:
        if not det.categories:
            return ""
        category = det.categories[0]
        name = (category.category_name or "").strip()
        if name:
            return name
        if category.index is not None:
            return self.fallback_by_index.get(category.index, "")
        return ""

    def classify(self, det: Detection) -> Optional[Role]:
        label = self.label_of(det)
        if label in self.carrier_labels:
            return Role.CARRIER
        if label in self.defender_labels:
            return Role.DEFENDER
        if label in self.attacker_labels:
            return Role.ATTACKER
        return None


def _score(det: Detection) -> float:
    return det.categories[0].score if det.categories else 0.0


def _vertical_center(det: Detection) -> float:
    bb = det.bounding_box
    return bb.origin_y + bb.height / 2


def count_defenders_in_front(detections: Sequence[Detection], roles: Optional[LabelRoles] = None) -> int:
    """
    Count defenders whose vertical center is above the ball carrier's.

    The carrier is the highest-scoring carrier detection (first one wins
    ties). With no carrier in the frame the count is 0.
    """
    roles = roles or LabelRoles()

    carrier = None
    defenders = []
    for det in detections:
        role = roles.classify(det)
        if role == Role.CARRIER:
            if carrier is None or _score(det) > _score(carrier):
                carrier = det
        elif role == Role.DEFENDER:
            defenders.append(det)

    if carrier is None:
        return 0

    cy = _vertical_center(carrier)
    return sum(1 for d in defenders if _vertical_center(d) < cy)


class LazyDetector:
    """
    Process-lifetime detector, created on first use.

    Creation happens at most once even if several callers wait on it. A
    failed creation is not remembered, so the next call tries again.
    """

    def __init__(self, factory: Callable[[], object]):
        self._factory = factory
        self._detector = None
        self._lock = None

    @property
    def ready(self) -> bool:
        return self._detector is not None

    async def get(self):
        if self._detector is not None:
            return self._detector
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._detector is None:
                logger.info("Loading detector")
                self._detector = await asyncio.to_thread(self._factory)
        return self._detector


class AnalysisPipeline:
    """Runs detection analysis over a snapshot of annotations."""

    def __init__(self, detector: LazyDetector, roles: Optional[LabelRoles] = None):
        self.detector = detector
        self.roles = roles or LabelRoles()
        self.state = AnalysisState.IDLE
        self.message = ""
        self.progress = 0
        self.total = 0
        self._annotations: List[AnnotationRecord] = []

    # Store subscription target
    def on_snapshot(self, annotations: List[AnnotationRecord]):
        self._annotations = list(annotations)

    @property
    def running(self) -> bool:
        return self.state in (AnalysisState.PREPARING, AnalysisState.SAMPLING)

    def _eligible(self, annotations: Sequence[AnnotationRecord]) -> List[AnnotationRecord]:
        rows = [
            a for a in annotations
            if a.start_key is not None and math.isfinite(a.start_key)
        ]
        rows.sort(key=lambda a: a.start_key)
        return rows

    async def run(self, sampler, annotations: Optional[Sequence[AnnotationRecord]] = None) -> Optional[AnalysisResults]:
        """
        Analyze every annotated window.

        Args:
            sampler: object with `async sample_frame(seconds)` returning a frame
            annotations: records to analyze; defaults to the latest store snapshot

        Returns:
            {tag_name: [count, ...]} on success, {} when there is nothing to
            analyze, or None if the run was ignored (already running) or failed.
        """
        if self.running:
            logger.info("Analysis already in progress; ignoring request")
            return None

        self.state = AnalysisState.PREPARING
        self.message = "Preparing…"
        self.progress = 0

        rows = self._eligible(self._annotations if annotations is None else list(annotations))
        self.total = len(rows)
        if not rows:
            self.state = AnalysisState.DONE
            self.message = "No annotated windows found."
            return {}

        try:
            self.message = "Loading detector…"
            detector = await self.detector.get()

            self.state = AnalysisState.SAMPLING
            results: AnalysisResults = {}
            for i, row in enumerate(rows):
                self.progress = i + 1
                self.message = f"Analyzing {i + 1}/{len(rows)}…"

                frame = await sampler.sample_frame(row.start_key)
                detections = await detector.detect(frame)
                count = count_defenders_in_front(detections or [], self.roles)

                results.setdefault(row.tag_name, []).append(count)

        except Exception as e:
            logger.error(f"Analysis failed at window {self.progress}/{self.total}: {e}")
            self.state = AnalysisState.FAILED
            self.message = f"Analysis failed: {e}"
            return None

        self.state = AnalysisState.DONE
        self.message = "Done."
        logger.info(f"Analysis complete: {len(rows)} windows across {len(results)} tags")
        return results

"""Session coordinator: one video source and everything annotated on it.

The session owns the annotation store and registers the selection model and
the analysis pipeline as store subscribers, so both always see the latest
snapshot without polling.
"""
import logging
from typing import Callable, Optional

from pipeline.analysis import AnalysisPipeline, AnalysisResults, LabelRoles, LazyDetector
from pipeline.csv_codec import ImportReport, import_csv
from pipeline.selection import Playhead, SelectionState
from pipeline.store import AnnotationStore
from pipeline.video import VideoFrameSampler, is_seekable_source

logger = logging.getLogger(__name__)


class AnalysisUnavailableError(RuntimeError):
    """Raised when analysis cannot start for this session."""


class AnnotationSession:
    """State for one loaded video: store, selection, playhead, analysis."""

    def __init__(
        self,
        video_id: str,
        src: str,
        name: str,
        is_url: bool,
        detector: LazyDetector,
        metadata: Optional[dict] = None,
        roles: Optional[LabelRoles] = None,
        sampler_factory: Optional[Callable[[str, Optional[float]], object]] = None,
    ):
        self.video_id = video_id
        self.src = src
        self.name = name
        self.is_url = is_url
        self.metadata = metadata or {}
        self.schema_name: Optional[str] = None
        self.results: Optional[AnalysisResults] = None

        duration = self.metadata.get("duration_seconds") or 0.0
        self.store = AnnotationStore()
        self.selection = SelectionState(duration)
        self.playhead = Playhead(duration)
        self.analysis = AnalysisPipeline(detector, roles)
        self._sampler_factory = sampler_factory or VideoFrameSampler

        self.store.subscribe(self.selection.on_snapshot)
        self.store.subscribe(self.analysis.on_snapshot)

    @property
    def analyzable(self) -> bool:
        return is_seekable_source(self.src, self.is_url)

    # --- Schema ---

    def load_schema(self, name: str, text: str) -> ImportReport:
        """Import a schema CSV, replacing every existing annotation."""
        report = import_csv(text, self.store)
        self.schema_name = name
        self.results = None
        logger.info(f"Loaded schema {name!r} into session {self.video_id}")
        return report

    def clear_schema(self):
        self.schema_name = None
        self.store.clear()
        self.results = None

    def clear(self):
        """Reset everything tied to the source (used when it is removed)."""
        self.clear_schema()
        self.selection.clear()

    # --- Analysis ---

    def check_analyzable(self):
        if not self.analyzable:
            raise AnalysisUnavailableError(
                "Streaming sources can be previewed but not analyzed"
            )
        if self.schema_name is None:
            raise AnalysisUnavailableError("Load a schema CSV before analyzing")

    async def analyze(self) -> Optional[AnalysisResults]:
        """
        Run the analysis pipeline over the current annotations.

        Returns the new results, or None when the run was ignored or failed
        (in which case previous results are kept).
        """
        self.check_analyzable()
        if self.analysis.running:
            return None

        sampler = self._sampler_factory(self.src, self.metadata.get("fps"))
        try:
            results = await self.analysis.run(sampler)
        finally:
            close = getattr(sampler, "close", None)
            if close is not None:
                close()

        if results is not None:
            self.results = results
        return results

    def clear_results(self):
        self.results = None


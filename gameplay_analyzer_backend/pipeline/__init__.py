"""
Gameplay Video Analysis Pipeline

This package provides the core annotation and analysis functionality:
- timecodes: Frame quantization, clock formatting and time parsing
- store: In-memory annotation store with (start, tag) uniqueness
- selection: Range selection, overlap conflicts and the playhead
- csv_codec: Schema CSV import and CSV/JSON export
- analysis: Defenders-in-front counting and the per-window analysis run
- session: One video source with its store, selection and analysis
- detect: Local YOLO or remote GPU frame detectors
- schemas: Pydantic models for API request/response validation
- config: Configuration constants
- video: Video metadata and exact-frame sampling
"""

"""CSV / JSON import and export of the annotation timeline.

Export is strict: fixed header, minute-dot-second times, standard CSV quoting.
Import is tolerant: case-insensitive headers in any order, several time
encodings, and bad rows are skipped rather than failing the whole file.
"""
import csv
import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from pipeline.schemas import AnnotationRecord
from pipeline.store import AnnotationStore
from pipeline.timecodes import format_minute_dot_second, parse_schema_time

logger = logging.getLogger(__name__)

EXPORT_HEADER = ["TagName", "StartTime", "EndTime", "Modifiers", "Down"]
REQUIRED_IMPORT_COLUMNS = ("tagname", "starttime", "endtime", "modifiers")


class MalformedImportError(ValueError):
    """Raised when an imported CSV lacks the required header columns."""


@dataclass
class ImportReport:
    """Outcome of an import: rows added, rows skipped as unparsable, duplicates dropped."""
    imported: int = 0
    skipped: int = 0
    duplicates: int = 0


def _export_row(record: AnnotationRecord) -> Dict[str, str]:
    return {
        "TagName": record.tag_name or "",
        "StartTime": format_minute_dot_second(record.start_key),
        "EndTime": format_minute_dot_second(record.end_key) if record.end_key is not None else "",
        "Modifiers": record.modifier or "",
        "Down": record.down or "",
    }


def _sorted(records: Iterable[AnnotationRecord]) -> List[AnnotationRecord]:
    return sorted(records, key=lambda r: r.start_key)


def export_csv(records: Iterable[AnnotationRecord]) -> str:
    """Render records as CSV text, ascending by start time."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_HEADER, lineterminator="\n")
    writer.writeheader()
    for record in _sorted(records):
        writer.writerow(_export_row(record))
    return buf.getvalue().rstrip("\n")


def export_json(records: Iterable[AnnotationRecord]) -> str:
    """Render records as a pretty-printed JSON array with the CSV field names."""
    payload = [_export_row(r) for r in _sorted(records)]
    return json.dumps(payload, indent=2)


def export_analysis_json(results: Dict[str, List[int]]) -> str:
    """Render analysis results ({tag: [counts]}) as pretty-printed JSON."""
    return json.dumps(results, indent=2)


def export_filename(prefix: str, extension: str, timestamp_ms: Optional[int] = None) -> str:
    """e.g. annotations_1712345678901.csv"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{prefix}_{timestamp_ms}.{extension}"


def _read_rows(text: str) -> List[List[str]]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    reader = csv.reader(io.StringIO(normalized))
    rows = []
    try:
        for row in reader:
            cells = [c.strip() for c in row]
            if not any(cells):
                continue
            rows.append(cells)
    except csv.Error as e:
        raise MalformedImportError(f"Unreadable CSV: {e}") from e
    return rows


def _cell(row: List[str], idx: Optional[int]) -> str:
    if idx is None or idx >= len(row):
        return ""
    return row[idx]


def import_csv(text: str, store: AnnotationStore) -> ImportReport:
    """
    Replace the store contents with the annotations in a schema CSV.

    The header must contain TagName, StartTime, EndTime and Modifiers (any
    case, any order); Down is optional. If a required column is missing,
    MalformedImportError is raised before the store is touched.

    Rows with an empty tag or an undecodable start time are skipped. An
    undecodable end time falls back to the start time. Accepted rows go
    through AnnotationStore.add, so quantization and duplicate rules apply.
    """
    rows = _read_rows(text or "")
    if not rows:
        raise MalformedImportError("CSV is empty; expected header TagName, StartTime, EndTime, Modifiers")

    header = [h.lower() for h in rows[0]]
    missing = [col for col in REQUIRED_IMPORT_COLUMNS if col not in header]
    if missing:
        raise MalformedImportError(
            f"CSV missing required headers: TagName, StartTime, EndTime, Modifiers (missing: {', '.join(missing)})"
        )

    idx_tag = header.index("tagname")
    idx_start = header.index("starttime")
    idx_end = header.index("endtime")
    idx_mod = header.index("modifiers")
    idx_down = header.index("down") if "down" in header else None

    store.clear()
    report = ImportReport()

    for row in rows[1:]:
        tag = _cell(row, idx_tag)
        start = parse_schema_time(_cell(row, idx_start))
        if not tag or start is None:
            report.skipped += 1
            continue

        end = parse_schema_time(_cell(row, idx_end))
        if end is None:
            end = start

        added = store.add(start, end, tag, _cell(row, idx_mod), _cell(row, idx_down))
        if added is None:
            report.duplicates += 1
        else:
            report.imported += 1

    logger.info(
        f"Imported {report.imported} annotations "
        f"({report.skipped} skipped, {report.duplicates} duplicates)"
    )
    return report

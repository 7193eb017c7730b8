"""Frame quantization and time string conversion.

Every comparison of "the same instant" in the pipeline goes through
frame_key(); raw float seconds are never compared directly.
"""
import math
import re
from typing import Optional

from pipeline.config import FPS

_SECONDS_RE = re.compile(r"^\d+(\.\d+)?$")
_CLOCK_RE = re.compile(r"^(\d+):(\d{1,2})(?:\.(\d{1,3}))?$")
_DIGITS_RE = re.compile(r"^\d+$")
_OPT_DIGITS_RE = re.compile(r"^\d*$")


def _is_finite(value) -> bool:
    if value is None:
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def frame_key(seconds: Optional[float], fps: float = FPS) -> float:
    """
    Snap a time in seconds to the nearest frame boundary, ties rounding up.

    Non-finite input (None, NaN, inf) maps to 0.0. The result is stable
    under repeated application.
    """
    if not _is_finite(seconds):
        return 0.0
    return math.floor(float(seconds) * fps + 0.5) / fps


def format_clock(seconds: Optional[float]) -> str:
    """Format seconds as MM:SS.HH (hundredths truncated)."""
    if not _is_finite(seconds):
        return "00:00.00"
    total_hundredths = int(math.floor(float(seconds) * 100 + 1e-6))
    minutes = total_hundredths // 6000
    secs = (total_hundredths % 6000) // 100
    hundredths = total_hundredths % 100
    return f"{minutes:02d}:{secs:02d}.{hundredths:02d}"


def format_playhead(seconds: Optional[float]) -> str:
    """Format seconds as MM:SS.HH with hundredths rounded (editable playhead display)."""
    if not _is_finite(seconds):
        return "00:00.00"
    total_hundredths = int(round(float(seconds) * 100))
    minutes = total_hundredths // 6000
    secs = (total_hundredths % 6000) // 100
    hundredths = total_hundredths % 100
    return f"{minutes:02d}:{secs:02d}.{hundredths:02d}"


def format_minute_dot_second(seconds: Optional[float]) -> str:
    """Format seconds as M.SS, the export time encoding (whole seconds only)."""
    if not _is_finite(seconds):
        return "0.00"
    total = int(math.floor(float(seconds) + 1e-9))
    minutes = total // 60
    secs = total % 60
    return f"{minutes}.{secs:02d}"


def parse_clock(text: Optional[str]) -> Optional[float]:
    """
    Parse a user-entered playhead time.

    Accepts plain seconds ("12", "12.5") or M:SS with an optional fraction
    ("1:05", "01:05.25"). Returns None when the text matches neither.
    """
    if text is None:
        return None
    s = str(text).strip()
    if not s:
        return None
    if _SECONDS_RE.match(s):
        return float(s)
    m = _CLOCK_RE.match(s)
    if m:
        minutes = int(m.group(1))
        secs = int(m.group(2))
        frac = float(f"0.{m.group(3)}") if m.group(3) else 0.0
        frac = round(frac * 100) / 100
        return minutes * 60 + secs + frac
    return None


def parse_schema_time(text: Optional[str]) -> Optional[float]:
    """
    Decode a time cell from an imported schema CSV.

    Formats:
        "M.SS"   minutes and seconds split on the point, seconds 0..59
                 (an empty side counts as 0)
        "SS"     exactly two digits: seconds
        "MSS"    exactly three digits: minute + two-digit seconds (<= 59)
        "MMMM"   any other all-digit string: whole minutes

    Returns None for anything else.
    """
    if text is None:
        return None
    s = str(text).strip()
    if not s:
        return None

    if "." in s:
        parts = s.split(".")
        if len(parts) != 2:
            return None
        m_str, s_str = parts
        if not _OPT_DIGITS_RE.match(m_str) or not _OPT_DIGITS_RE.match(s_str):
            return None
        minutes = int(m_str) if m_str else 0
        secs = int(s_str) if s_str else 0
        if secs > 59:
            return None
        return float(minutes * 60 + secs)

    if not _DIGITS_RE.match(s):
        return None

    n = int(s)
    if len(s) == 2:
        return float(n)
    if len(s) == 3:
        minutes, secs = divmod(n, 100)
        if secs > 59:
            return None
        return float(minutes * 60 + secs)
    return float(n * 60)

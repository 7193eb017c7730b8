"""Tests for frame quantization and time string conversion."""
import math

import pytest

from pipeline.timecodes import (
    format_clock,
    format_minute_dot_second,
    format_playhead,
    frame_key,
    parse_clock,
    parse_schema_time,
)


class TestFrameKey:

    def test_snaps_to_nearest_frame(self):
        assert frame_key(1.0) == 1.0
        assert frame_key(0.034) == pytest.approx(1 / 30)
        assert frame_key(0.016) == 0.0

    def test_half_frame_ties_round_up(self):
        assert frame_key(0.15) == pytest.approx(5 / 30)
        assert frame_key(0.45) == pytest.approx(14 / 30)

    def test_is_idempotent(self):
        for t in (0.0, 0.0123, 1.999, 12.3456, 59.98):
            k = frame_key(t)
            assert frame_key(k) == k

    def test_nearby_times_share_a_key(self):
        # Both within half a frame of 2.0
        assert frame_key(2.0 + 0.01) == frame_key(2.0 - 0.01)

    @pytest.mark.parametrize("value", [None, math.nan, math.inf, -math.inf])
    def test_non_finite_maps_to_zero(self, value):
        assert frame_key(value) == 0.0

    def test_custom_fps(self):
        assert frame_key(0.3, fps=10) == pytest.approx(0.3)


class TestFormatting:

    def test_format_clock_truncates_hundredths(self):
        assert format_clock(65.259) == "01:05.25"
        assert format_clock(0) == "00:00.00"

    def test_format_clock_exact_hundredths(self):
        # 0.29 * 100 is 28.999999999999996 in floating point
        assert format_clock(0.29) == "00:00.29"

    def test_format_playhead_rounds(self):
        assert format_playhead(65.259) == "01:05.26"

    def test_format_minute_dot_second(self):
        assert format_minute_dot_second(0) == "0.00"
        assert format_minute_dot_second(5) == "0.05"
        assert format_minute_dot_second(65.9) == "1.05"
        assert format_minute_dot_second(600) == "10.00"

    def test_non_finite_formats_as_zero(self):
        assert format_clock(math.nan) == "00:00.00"
        assert format_minute_dot_second(None) == "0.00"


class TestParseClock:

    def test_plain_seconds(self):
        assert parse_clock("12") == 12.0
        assert parse_clock(" 12.5 ") == 12.5

    def test_minutes_seconds(self):
        assert parse_clock("1:05") == 65.0
        assert parse_clock("01:05.25") == pytest.approx(65.25)

    def test_fraction_rounded_to_hundredths(self):
        assert parse_clock("0:01.256") == pytest.approx(1.26)

    @pytest.mark.parametrize("text", ["", "abc", "1:2:3", "-5", "1:", None])
    def test_invalid(self, text):
        assert parse_clock(text) is None


class TestParseSchemaTime:

    def test_minute_dot_second(self):
        assert parse_schema_time("1.05") == 65.0
        assert parse_schema_time("0.30") == 30.0

    def test_empty_sides_count_as_zero(self):
        assert parse_schema_time(".30") == 30.0
        assert parse_schema_time("2.") == 120.0

    def test_two_digits_are_seconds(self):
        assert parse_schema_time("45") == 45.0

    def test_three_digits_are_minute_and_seconds(self):
        assert parse_schema_time("105") == 65.0

    def test_other_digit_strings_are_minutes(self):
        assert parse_schema_time("5") == 300.0
        assert parse_schema_time("1234") == 1234 * 60.0

    @pytest.mark.parametrize("text", ["1.60", "160", "1.2.3", "-1.05", "a.05", "", "  ", None, "1:05"])
    def test_invalid(self, text):
        assert parse_schema_time(text) is None

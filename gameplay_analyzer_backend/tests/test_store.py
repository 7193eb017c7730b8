"""Tests for the annotation store."""
import math

import pytest

from pipeline.store import AnnotationStore, normalize_tag
from pipeline.timecodes import frame_key


def test_normalize_tag():
    assert normalize_tag("  Spin ") == "spin"
    assert normalize_tag(None) == ""


class TestAdd:

    def test_add_quantizes_and_trims(self, store):
        rec = store.add(1.01, 2.02, "  SPIN ", " LEFT ", " 2 ")
        assert rec is not None
        assert rec.start_key == frame_key(1.01)
        assert rec.end_key == frame_key(2.02)
        assert rec.tag_name == "SPIN"
        assert rec.modifier == "LEFT"
        assert rec.down == "2"
        assert rec.start_time == "00:01.00"

    def test_point_annotation_has_no_end(self, store):
        rec = store.add(3.0, None, "JUKE")
        assert rec.end_key is None
        assert rec.end_time == ""

    @pytest.mark.parametrize("start", [None, math.nan, math.inf])
    def test_non_finite_start_rejected(self, store, start):
        assert store.add(start, 1.0, "SPIN") is None
        assert len(store) == 0

    def test_non_finite_end_becomes_point(self, store):
        rec = store.add(1.0, math.nan, "SPIN")
        assert rec.end_key is None

    def test_duplicate_start_and_tag_dropped(self, store):
        assert store.add(1.0, 2.0, "SPIN") is not None
        # Same frame, tag differs only by case and whitespace
        assert store.add(1.01, 3.0, " spin ") is None
        assert len(store) == 1

    def test_half_frame_tie_shares_key_with_next_frame(self, store):
        # 0.15s is exactly 4.5 frames and rounds up to frame 5, like 0.16s
        assert store.add(0.15, None, "SPIN") is not None
        assert store.add(0.16, None, "SPIN") is None
        assert len(store) == 1

    def test_same_start_different_tag_allowed(self, store):
        store.add(1.0, None, "SPIN")
        assert store.add(1.0, None, "JUKE") is not None
        assert len(store) == 2

    def test_empty_tags_are_deduplicated_too(self, store):
        assert store.add(1.0, None, "") is not None
        assert store.add(1.0, None, "   ") is None

    def test_records_sorted_by_start(self, store):
        store.add(5.0, None, "C")
        store.add(1.0, None, "A")
        store.add(3.0, None, "B")
        assert [r.tag_name for r in store.snapshot()] == ["A", "B", "C"]

    def test_equal_starts_keep_insertion_order(self, store):
        store.add(2.0, None, "FIRST")
        store.add(2.0, None, "SECOND")
        store.add(1.0, None, "EARLIER")
        assert [r.tag_name for r in store.snapshot()] == ["EARLIER", "FIRST", "SECOND"]

    def test_ids_are_unique(self, store):
        a = store.add(1.0, None, "A")
        b = store.add(1.0, None, "B")
        assert a.id != b.id


class TestQuickAdd:

    def test_quick_add_key(self, store):
        rec = store.quick_add_key("s", 4.0)
        assert rec.tag_name == "SPIN"
        assert rec.end_key is None

    def test_quick_add_key_is_case_insensitive(self, store):
        assert store.quick_add_key("J", 1.0).tag_name == "JUKE"
        assert store.quick_add_key("t", 2.0).tag_name == "TACKLE"

    def test_unknown_key_ignored(self, store):
        assert store.quick_add_key("x", 1.0) is None
        assert len(store) == 0


class TestUpdates:

    def test_rename(self, store):
        rec = store.add(1.0, None, "SPIN")
        assert store.update_tag_name(rec.id, "JUKE") is True
        assert store.get(rec.id).tag_name == "JUKE"

    def test_rename_into_duplicate_refused(self, store):
        store.add(1.0, None, "SPIN")
        other = store.add(1.0, None, "JUKE")
        assert store.update_tag_name(other.id, "spin") is False
        assert store.get(other.id).tag_name == "JUKE"

    def test_rename_to_own_tag_allowed(self, store):
        rec = store.add(1.0, None, "SPIN")
        assert store.update_tag_name(rec.id, "Spin") is True

    def test_modifier_and_down(self, store):
        rec = store.add(1.0, None, "SPIN")
        assert store.update_modifier(rec.id, "LEFT")
        assert store.update_down(rec.id, "9")
        updated = store.get(rec.id)
        assert updated.modifier == "LEFT"
        assert updated.down == "9"

    def test_unknown_id(self, store):
        assert store.update_tag_name("missing", "X") is False
        assert store.update_modifier("missing", "X") is False

    def test_snapshot_is_a_copy(self, store):
        store.add(1.0, None, "SPIN")
        snap = store.snapshot()
        snap[0].tag_name = "CHANGED"
        assert store.snapshot()[0].tag_name == "SPIN"


class TestRemoval:

    def test_remove(self, store):
        rec = store.add(1.0, None, "SPIN")
        store.remove(rec.id)
        assert len(store) == 0

    def test_remove_many_ignores_unknown(self, store):
        a = store.add(1.0, None, "A")
        store.add(2.0, None, "B")
        store.remove_many([a.id, "missing"])
        assert [r.tag_name for r in store.snapshot()] == ["B"]

    def test_clear(self, store):
        store.add(1.0, None, "A")
        store.clear()
        assert store.snapshot() == []


class TestQueries:

    def test_unique_tags(self, store):
        store.add(1.0, None, "SPIN")
        store.add(2.0, None, "JUKE")
        store.add(3.0, None, "SPIN")
        store.add(4.0, None, "")
        assert store.unique_tags() == ["All", "JUKE", "SPIN"]

    def test_filter_by_tag(self, store):
        store.add(1.0, None, "SPIN")
        store.add(2.0, None, "JUKE")
        assert [r.tag_name for r in store.filter(tag="JUKE")] == ["JUKE"]
        assert len(store.filter(tag="All")) == 2

    def test_filter_by_query(self, store):
        store.add(1.0, 2.0, "SPIN", "LEFT", "3")
        store.add(65.0, None, "JUKE", "RIGHT")
        assert [r.tag_name for r in store.filter(query="left")] == ["SPIN"]
        assert [r.tag_name for r in store.filter(query="01:05")] == ["JUKE"]
        assert store.filter(query="nothing") == []


class TestSubscribe:

    def test_called_immediately_and_on_change(self, store):
        seen = []
        store.subscribe(lambda snap: seen.append(len(snap)))
        store.add(1.0, None, "SPIN")
        store.add(1.0, None, "SPIN")  # duplicate: no broadcast
        store.clear()
        assert seen == [0, 1, 0]

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda snap: seen.append(len(snap)))
        unsubscribe()
        store.add(1.0, None, "SPIN")
        assert seen == [0]

"""Tests for comparison and timestamp helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from tasksync.schemas.task import TaskDue
from tasksync.services.comparison import (
    ContentThresholds,
    ensure_utc,
    is_significant_content_change,
    is_strictly_after,
    normalize_content,
    set_equal,
    structural_equal,
)


class TestTimestamps:
    """Test timestamp coercion and ordering."""

    def test_naive_datetime_is_treated_as_utc(self):
        value = ensure_utc(datetime(2026, 1, 1, 12, 0))
        assert value.tzinfo == timezone.utc
        assert value.hour == 12

    def test_offset_datetime_is_converted(self):
        value = ensure_utc(datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
        assert value == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_iso_string_with_z_suffix(self):
        assert ensure_utc("2026-01-01T12:00:00Z") == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert ensure_utc(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_missing_values(self):
        assert ensure_utc(None) is None
        assert ensure_utc("") is None

    def test_strictly_after_requires_both_timestamps(self):
        now = datetime.now(timezone.utc)
        assert is_strictly_after(now, None) is False
        assert is_strictly_after(None, now) is False

    def test_equal_timestamps_are_not_after(self):
        now = datetime.now(timezone.utc)
        assert is_strictly_after(now, now) is False

    def test_later_timestamp_is_after(self):
        now = datetime.now(timezone.utc)
        assert is_strictly_after(now + timedelta(seconds=1), now) is True


class TestEquality:
    """Test per-field comparators."""

    def test_labels_compare_as_sets(self):
        assert set_equal(["a", "b"], ["b", "a"])
        assert set_equal(None, [])
        assert not set_equal(["a"], ["a", "b"])

    def test_due_compares_structurally(self):
        left = TaskDue(date="2026-02-01", string="Feb 1")
        right = TaskDue(date="2026-02-01", string="Feb 1")
        assert structural_equal(left, right)
        assert not structural_equal(left, TaskDue(date="2026-02-02", string="Feb 1"))

    def test_due_against_none(self):
        assert not structural_equal(TaskDue(date="2026-02-01"), None)
        assert structural_equal(None, None)


class TestContentSignificance:
    """Test the cosmetic-versus-rewrite heuristic."""

    def test_normalize_content(self):
        assert normalize_content("  Buy   MILK!! ") == "buy milk"

    @pytest.mark.parametrize(
        "old,new",
        [
            ("Buy milk", "buy milk!"),
            ("Call   the bank", "Call the bank."),
            ("Fix sink", "FIX SINK"),
        ],
    )
    def test_cosmetic_edits_are_not_significant(self, old, new):
        assert is_significant_content_change(old, new) is False

    def test_empty_content_is_significant(self):
        assert is_significant_content_change("", "Buy milk") is True
        assert is_significant_content_change("Buy milk", None) is True

    def test_length_change_is_significant(self):
        assert is_significant_content_change(
            "Buy milk",
            "Schedule quarterly tax review with accountant",
        ) is True

    def test_same_length_word_swap_is_significant(self):
        # Length ratio stays in bounds; every word differs
        assert is_significant_content_change("Call mom today", "Pay rent later") is True

    def test_small_word_change_within_threshold(self):
        old = "write the quarterly report for the finance team on monday"
        new = "write the quarterly report for the finance team on tuesday"
        # 2 of 10 distinct words differ: 0.2 <= 0.25
        assert is_significant_content_change(old, new) is False

    def test_thresholds_are_configurable(self):
        old = "write the quarterly report for the finance team on monday"
        new = "write the quarterly report for the finance team on tuesday"
        strict = ContentThresholds(word_change_threshold=0.1)
        assert is_significant_content_change(old, new, strict) is True

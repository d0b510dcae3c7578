"""
Value comparison and timestamp helpers used by reconciliation.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel

from tasksync.config import get_settings

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[Union[datetime, str, int, float]]) -> Optional[datetime]:
    """
    Coerce a timestamp to an aware UTC datetime.

    Accepts datetimes, ISO 8601 strings and epoch milliseconds. Naive values
    are taken to be UTC (SQLite drops tzinfo on the way back).
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_strictly_after(
    changed_at: Optional[datetime],
    classified_at: Optional[datetime],
) -> bool:
    """True when both timestamps exist and changed_at is later."""
    changed_at = ensure_utc(changed_at)
    classified_at = ensure_utc(classified_at)
    if changed_at is None or classified_at is None:
        return False
    return changed_at > classified_at


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def exact_equal(left: Any, right: Any) -> bool:
    return left == right


def set_equal(left: Optional[Iterable], right: Optional[Iterable]) -> bool:
    """Order-insensitive comparison; None and empty are the same set."""
    return set(left or ()) == set(right or ())


def structural_equal(left: Any, right: Any) -> bool:
    """Deep comparison of compound values (models compare by their fields)."""
    return _plain(left) == _plain(right)


def normalize_content(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION.sub("", (text or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class ContentThresholds:
    """Heuristic bounds for telling cosmetic edits from real rewrites."""

    length_ratio_min: float = 0.8
    length_ratio_max: float = 1.2
    word_change_threshold: float = 0.25

    @classmethod
    def from_settings(cls) -> "ContentThresholds":
        settings = get_settings()
        return cls(
            length_ratio_min=settings.content_length_ratio_min,
            length_ratio_max=settings.content_length_ratio_max,
            word_change_threshold=settings.content_word_change_threshold,
        )


def is_significant_content_change(
    old_content: Optional[str],
    new_content: Optional[str],
    thresholds: ContentThresholds = ContentThresholds(),
) -> bool:
    """Decide whether a content edit is substantial enough to reclassify."""
    if not old_content or not new_content:
        return True

    old_norm = normalize_content(old_content)
    new_norm = normalize_content(new_content)

    # Only punctuation/case/whitespace differs
    if old_norm == new_norm:
        return False
    if not old_norm or not new_norm:
        return True

    length_ratio = len(new_norm) / len(old_norm)
    if length_ratio < thresholds.length_ratio_min or length_ratio > thresholds.length_ratio_max:
        return True

    old_words = set(old_norm.split(" "))
    new_words = set(new_norm.split(" "))
    change_ratio = len(old_words ^ new_words) / len(old_words | new_words)
    return change_ratio > thresholds.word_change_threshold

"""
Sync-related Pydantic schemas.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncPhase(str, Enum):
    """Phases of a sync pass. IDLE is the only phase that accepts a new pass."""

    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    RECONCILING = "reconciling"


class SyncResult(BaseModel):
    """Summary of one sync pass."""

    success: bool
    skipped: bool = False
    tasks_count: int = 0
    projects_count: int = 0
    labels_count: int = 0
    new_tasks_count: int = 0
    manual_changes_count: int = 0
    cleared_recommendations_count: int = 0
    failed_tasks_count: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SyncStatus(BaseModel):
    """Current state of the sync engine."""

    phase: SyncPhase
    is_running: bool  # background interval loop active
    is_syncing: bool
    interval_seconds: int
    last_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None


class FieldChange(BaseModel):
    """One drifted field between the last snapshot and the remote task."""

    field: str
    old_value: Any = None
    new_value: Any = None
    changed_manually: bool


class ChangeAnalysis(BaseModel):
    """Result of comparing a remote task against its snapshot and metadata."""

    changed_fields: list[FieldChange] = Field(default_factory=list)
    project_changed_manually: bool = False
    content_changed_manually: bool = False
    labels_changed_manually: bool = False
    significant_content_change: bool = False
    any_changed_manually: bool = False
    needs_reclassify: bool
    reason: str


class ConflictInfo(BaseModel):
    """Task whose current project disagrees with its recommended category."""

    task_id: str
    content: str
    current_project: Optional[str] = None
    current_category: Optional[str] = None
    recommended_category: str
    recommended_project: Optional[str] = None
    classified_at: Optional[datetime] = None
    provider_updated_at: Optional[datetime] = None

"""
Task-related Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ClassifiedField(str, Enum):
    """Metadata fields that carry their own classification timestamp."""

    RECOMMENDED_CATEGORY = "recommended_category"
    TIME_ESTIMATE_MINUTES = "time_estimate_minutes"
    PRIORITY_SCORE = "priority_score"


class ClassificationSource(str, Enum):
    """How the current category assignment came to be."""

    AI = "ai"
    MANUAL = "manual"


class TaskDue(BaseModel):
    """Due-date descriptor as reported by the provider."""

    date: str  # YYYY-MM-DD
    datetime: Optional[str] = None  # ISO 8601
    string: Optional[str] = None  # Natural language
    timezone: Optional[str] = None
    is_recurring: bool = False


class RemoteTask(BaseModel):
    """A task as reported by the remote provider (or created locally)."""

    id: str
    content: str
    description: Optional[str] = ""
    project_id: Optional[str] = None
    parent_id: Optional[str] = None
    priority: int = Field(default=1, ge=1, le=4)
    labels: list[str] = Field(default_factory=list)
    due: Optional[TaskDue] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RemoteProject(BaseModel):
    """A project as reported by the remote provider."""

    id: str
    name: str
    color: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None
    is_favorite: bool = False
    is_inbox_project: bool = False


class RemoteLabel(BaseModel):
    """A label as reported by the remote provider."""

    id: str
    name: str
    color: Optional[str] = None
    order: Optional[int] = None
    is_favorite: bool = False


class CreateTaskInput(BaseModel):
    """Request to create a task."""

    content: str = Field(min_length=1)
    description: Optional[str] = None
    project_id: Optional[str] = None
    parent_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_string: Optional[str] = None
    due_date: Optional[str] = None
    labels: Optional[list[str]] = None


class UpdateTaskInput(BaseModel):
    """Partial update of a task. Only set fields are pushed."""

    content: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_string: Optional[str] = None
    due_date: Optional[str] = None
    labels: Optional[list[str]] = None


class CompleteTaskInput(BaseModel):
    """Optional completion details recorded in task history."""

    actual_duration: Optional[int] = Field(
        default=None,
        ge=0,
        description="Actual time spent, in minutes",
    )
    context: Optional[str] = None


class ClassificationInput(BaseModel):
    """Classification written back by the enrichment pipeline."""

    category: Optional[str] = None
    time_estimate: Optional[str] = None
    time_estimate_minutes: Optional[int] = Field(default=None, ge=0)
    priority_score: Optional[int] = None
    size: Optional[str] = Field(default=None, pattern="^(XS|S|M|L|XL)$")
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ai_reasoning: Optional[str] = None
    needs_supplies: Optional[bool] = None
    can_delegate: Optional[bool] = None
    energy_level: Optional[str] = Field(default=None, pattern="^(low|medium|high)$")


class FieldClassification(BaseModel):
    """A classified value and when it was produced."""

    value: Any
    classified_at: datetime


class TaskMetadataView(BaseModel):
    """Metadata row joined with its per-field classifications."""

    task_id: str
    category: Optional[str] = None
    time_estimate: Optional[str] = None
    size: Optional[str] = None
    ai_confidence: Optional[float] = None
    ai_reasoning: Optional[str] = None
    needs_supplies: bool = False
    can_delegate: bool = False
    energy_level: Optional[str] = None
    classification_source: Optional[ClassificationSource] = None
    recommendation_applied: bool = False
    classifications: dict[str, FieldClassification] = Field(default_factory=dict)

    def classified_value(self, field: ClassifiedField) -> Any:
        entry = self.classifications.get(field.value)
        return entry.value if entry else None

    @property
    def recommended_category(self) -> Optional[str]:
        return self.classified_value(ClassifiedField.RECOMMENDED_CATEGORY)

    @property
    def category_classified_at(self) -> Optional[datetime]:
        entry = self.classifications.get(ClassifiedField.RECOMMENDED_CATEGORY.value)
        return entry.classified_at if entry else None

    @property
    def time_estimate_minutes(self) -> Optional[int]:
        return self.classified_value(ClassifiedField.TIME_ESTIMATE_MINUTES)

    @property
    def priority_score(self) -> Optional[int]:
        return self.classified_value(ClassifiedField.PRIORITY_SCORE)


class SyncedState(BaseModel):
    """Last-synced snapshot of a task."""

    task_state: RemoteTask
    synced_at: datetime


class TaskWithMetadata(RemoteTask):
    """Task joined with its classification metadata (read model)."""

    metadata: Optional[TaskMetadataView] = None

"""
Task reconciliation service.

Detects drift between the provider's current task state and the last synced
snapshot, and decides whether each drift was a manual change made after the
AI last classified the task.

Most recent change wins:
- task changed at the provider AFTER the classification -> manual change
- classification happened at or after the provider update -> AI is current
"""

import logging
from enum import Enum
from typing import Any, Callable, Optional

from tasksync.core.taxonomy import TaxonomyService, get_taxonomy_service
from tasksync.schemas.sync import ChangeAnalysis, ConflictInfo, FieldChange
from tasksync.schemas.task import (
    RemoteProject,
    RemoteTask,
    SyncedState,
    TaskMetadataView,
    TaskWithMetadata,
)
from tasksync.services.comparison import (
    ContentThresholds,
    exact_equal,
    is_significant_content_change,
    is_strictly_after,
    set_equal,
    structural_equal,
)

logger = logging.getLogger(__name__)

REASON_NEVER_CLASSIFIED = "Never classified"
REASON_NO_SYNC_STATE = "No sync state - cannot detect changes"
REASON_NO_CHANGES = "No changes detected"
REASON_CHANGES_BEFORE_CLASSIFICATION = "Changes detected but before AI classification"
REASON_MANUAL_PREFIX = "Manual changes after AI classification"


class ComparedField(str, Enum):
    """Task fields inspected for drift."""

    CONTENT = "content"
    DESCRIPTION = "description"
    PROJECT_ID = "project_id"
    PRIORITY = "priority"
    LABELS = "labels"
    DUE = "due"
    PARENT_ID = "parent_id"
    IS_COMPLETED = "is_completed"


# Every ComparedField must have an entry here
FIELD_COMPARATORS: dict[ComparedField, Callable[[Any, Any], bool]] = {
    ComparedField.CONTENT: exact_equal,
    ComparedField.DESCRIPTION: exact_equal,
    ComparedField.PROJECT_ID: exact_equal,
    ComparedField.PRIORITY: exact_equal,
    ComparedField.LABELS: set_equal,
    ComparedField.DUE: structural_equal,
    ComparedField.PARENT_ID: exact_equal,
    ComparedField.IS_COMPLETED: exact_equal,
}


def _dump(value: Any) -> Any:
    return value.model_dump(mode="json") if hasattr(value, "model_dump") else value


class ReconciliationService:
    """
    Compares remote task state against snapshots and classification metadata.

    detect_changes() is pure: it reads only its arguments and may be called
    repeatedly for inspection.
    """

    def __init__(
        self,
        taxonomy_service: Optional[TaxonomyService] = None,
        thresholds: Optional[ContentThresholds] = None,
    ):
        self._taxonomy_service = taxonomy_service
        self.thresholds = thresholds or ContentThresholds.from_settings()

    @property
    def taxonomy_service(self) -> TaxonomyService:
        if self._taxonomy_service is None:
            self._taxonomy_service = get_taxonomy_service()
        return self._taxonomy_service

    def detect_changes(
        self,
        remote_task: RemoteTask,
        metadata: Optional[TaskMetadataView],
        snapshot: Optional[SyncedState],
    ) -> ChangeAnalysis:
        """
        Compare the provider's task against the last synced snapshot.

        Args:
            remote_task: Task as currently reported by the provider
            metadata: Classification metadata (None if never enriched)
            snapshot: Last synced state (None on first sync)

        Returns:
            ChangeAnalysis with per-field diffs and the reclassify decision
        """
        if metadata is None:
            return ChangeAnalysis(
                needs_reclassify=True,
                reason=REASON_NEVER_CLASSIFIED,
            )

        has_recommendation = metadata.recommended_category is not None

        if snapshot is None:
            return ChangeAnalysis(
                needs_reclassify=not has_recommendation,
                reason=REASON_NO_SYNC_STATE if has_recommendation else REASON_NEVER_CLASSIFIED,
            )

        synced_task = snapshot.task_state
        classified_at = metadata.category_classified_at
        changed_after_classification = is_strictly_after(
            remote_task.updated_at,
            classified_at,
        )

        changed_fields: list[FieldChange] = []
        for field, equal in FIELD_COMPARATORS.items():
            old_value = getattr(synced_task, field.value)
            new_value = getattr(remote_task, field.value)
            if equal(new_value, old_value):
                continue

            changed_fields.append(
                FieldChange(
                    field=field.value,
                    old_value=_dump(old_value),
                    new_value=_dump(new_value),
                    changed_manually=changed_after_classification,
                )
            )

        manual = {change.field for change in changed_fields if change.changed_manually}
        project_changed_manually = ComparedField.PROJECT_ID.value in manual
        content_changed_manually = ComparedField.CONTENT.value in manual
        labels_changed_manually = ComparedField.LABELS.value in manual

        significant_content_change = content_changed_manually and is_significant_content_change(
            synced_task.content,
            remote_task.content,
            self.thresholds,
        )

        needs_reclassify = (
            not has_recommendation
            or project_changed_manually
            or significant_content_change
        )

        return ChangeAnalysis(
            changed_fields=changed_fields,
            project_changed_manually=project_changed_manually,
            content_changed_manually=content_changed_manually,
            labels_changed_manually=labels_changed_manually,
            significant_content_change=significant_content_change,
            any_changed_manually=bool(manual),
            needs_reclassify=needs_reclassify,
            reason=self._explain_reason(changed_fields, has_recommendation),
        )

    @staticmethod
    def _explain_reason(changed_fields: list[FieldChange], has_recommendation: bool) -> str:
        if not has_recommendation:
            return REASON_NEVER_CLASSIFIED

        manual_changes = [change.field for change in changed_fields if change.changed_manually]
        if manual_changes:
            return f"{REASON_MANUAL_PREFIX}: {', '.join(manual_changes)}"
        if changed_fields:
            return REASON_CHANGES_BEFORE_CLASSIFICATION
        return REASON_NO_CHANGES

    def category_from_project(
        self,
        project_id: Optional[str],
        projects: list[RemoteProject],
    ) -> Optional[str]:
        """Category for the project a task is filed under (provider is truth)."""
        project = next((p for p in projects if p.id == project_id), None)
        if project is None:
            return None
        return self.taxonomy_service.category_for_project_name(project.name)

    def project_name_from_category(self, category: str) -> Optional[str]:
        return self.taxonomy_service.project_name_for_category(category)

    def find_conflicts(
        self,
        tasks: list[TaskWithMetadata],
        projects: list[RemoteProject],
    ) -> list[ConflictInfo]:
        """Tasks whose current project disagrees with their recommended category."""
        projects_by_id = {project.id: project for project in projects}
        conflicts = []

        for task in tasks:
            recommended = task.metadata.recommended_category if task.metadata else None
            if not recommended:
                continue

            current_category = self.category_from_project(task.project_id, projects)
            if current_category == recommended:
                continue

            current_project = projects_by_id.get(task.project_id)
            conflicts.append(
                ConflictInfo(
                    task_id=task.id,
                    content=task.content,
                    current_project=current_project.name if current_project else None,
                    current_category=current_category,
                    recommended_category=recommended,
                    recommended_project=self.project_name_from_category(recommended),
                    classified_at=task.metadata.category_classified_at,
                    provider_updated_at=task.updated_at,
                )
            )

        return conflicts

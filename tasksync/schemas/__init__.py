"""
Pydantic schemas for tasks, metadata and sync results.
"""

from tasksync.schemas.task import (
    ClassifiedField,
    ClassificationSource,
    TaskDue,
    RemoteTask,
    RemoteProject,
    RemoteLabel,
    CreateTaskInput,
    UpdateTaskInput,
    CompleteTaskInput,
    ClassificationInput,
    FieldClassification,
    TaskMetadataView,
    SyncedState,
    TaskWithMetadata,
)
from tasksync.schemas.sync import (
    SyncPhase,
    SyncResult,
    SyncStatus,
    FieldChange,
    ChangeAnalysis,
    ConflictInfo,
)

__all__ = [
    "ClassifiedField",
    "ClassificationSource",
    "TaskDue",
    "RemoteTask",
    "RemoteProject",
    "RemoteLabel",
    "CreateTaskInput",
    "UpdateTaskInput",
    "CompleteTaskInput",
    "ClassificationInput",
    "FieldClassification",
    "TaskMetadataView",
    "SyncedState",
    "TaskWithMetadata",
    "SyncPhase",
    "SyncResult",
    "SyncStatus",
    "FieldChange",
    "ChangeAnalysis",
    "ConflictInfo",
]

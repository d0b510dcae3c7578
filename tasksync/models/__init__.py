"""
SQLAlchemy models for the local task store.
"""

from tasksync.models.task import Task, Project, Label
from tasksync.models.metadata import (
    TaskMetadata,
    TaskFieldClassification,
    TaskSnapshot,
    TaskHistory,
)
from tasksync.models.sync import SyncStateEntry

__all__ = [
    "Task",
    "Project",
    "Label",
    "TaskMetadata",
    "TaskFieldClassification",
    "TaskSnapshot",
    "TaskHistory",
    "SyncStateEntry",
]

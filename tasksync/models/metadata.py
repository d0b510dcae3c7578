"""
Classification metadata, last-synced snapshots and completion history.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    String,
    Text,
    Float,
    Integer,
    Boolean,
    ForeignKey,
    DateTime,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tasksync.database import Base, JSONType


class TaskMetadata(Base):
    """AI/manual classification layer, one row per task."""

    __tablename__ = "task_metadata"

    task_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    time_estimate: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # XS, S, M, L, XL
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    needs_supplies: Mapped[bool] = mapped_column(Boolean, default=False)
    can_delegate: Mapped[bool] = mapped_column(Boolean, default=False)
    energy_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # low, medium, high
    classification_source: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )  # ai, manual
    recommendation_applied: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class TaskFieldClassification(Base):
    """
    One classified value per (task, field) with the time it was produced.

    Fields: recommended_category, time_estimate_minutes, priority_score.
    """

    __tablename__ = "task_field_classifications"

    task_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    field_name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    classified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class TaskSnapshot(Base):
    """Last fully-synced remote state of a task. Replaced every pass."""

    __tablename__ = "task_snapshots"

    task_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    task_state: Mapped[dict] = mapped_column(JSONType, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


class TaskHistory(Base):
    """Completion record kept for duration/category learning."""

    __tablename__ = "task_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actual_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_task_history_category", "category"),
    )

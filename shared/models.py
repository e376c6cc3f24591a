"""
Data models for the Team Task Tracker.

This module provides:
- Category and task outcome enumerations
- Pydantic models for push deliveries and API responses
- SQLAlchemy models for teams, categories, task statuses and activity logs
- Conversion helpers between the two
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    Column, String, DateTime, Text, Integer, ForeignKey, Index, UniqueConstraint, Uuid
)
from sqlalchemy.orm import declarative_base, relationship

from shared.avatar import get_team_avatar

Base = declarative_base()

# Every task-bearing category has exactly this many numbered tasks
MAX_TASKS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    """Progress partitions. GLOBAL aggregates the other three."""
    WEB = "Web"
    ANDROID = "Android"
    CORE = "Core"
    GLOBAL = "Global"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["Category"]:
        """Case-insensitive lookup; None for unknown names."""
        if not name:
            return None
        for category in cls:
            if category.value.lower() == name.strip().lower():
                return category
        return None

    @property
    def has_tasks(self) -> bool:
        return self is not Category.GLOBAL


class TaskResultStatus(str, Enum):
    """Outcome of applying one (team, task) completion."""
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskFact:
    """A candidate completion produced by one of the detectors."""
    team: str
    category: Category
    task_number: int


# Pydantic models for inbound deliveries
class PushCommit(BaseModel):
    """One commit of a GitHub push delivery."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Commit hash")
    message: str = Field(default="", description="Commit message")
    added: List[str] = Field(default_factory=list, description="Added file paths")
    modified: List[str] = Field(default_factory=list, description="Modified file paths")
    removed: List[str] = Field(default_factory=list, description="Removed file paths")

    @property
    def changed_files(self) -> List[str]:
        """Added and modified paths; removals never complete a task."""
        return [*self.added, *self.modified]


class PushEvent(BaseModel):
    """The subset of a GitHub push payload the tracker reads."""

    model_config = ConfigDict(extra="ignore")

    ref: str = Field(..., min_length=1, description="Git ref, e.g. refs/heads/web")
    commits: List[PushCommit] = Field(default_factory=list)

    @property
    def head_commit_hash(self) -> Optional[str]:
        """Hash recorded on every TaskStatus created by this delivery."""
        return self.commits[0].id if self.commits else None


# Pydantic models for API responses
class TaskResult(BaseModel):
    """Per-pair outcome reported back to the webhook caller."""

    model_config = ConfigDict(use_enum_values=True)

    team: str
    category: Category
    task: int = Field(..., ge=1, le=MAX_TASKS)
    status: TaskResultStatus
    error: Optional[str] = None


class WebhookResponse(BaseModel):
    """Summary returned for a processed push delivery."""

    success: bool = True
    processed: int = 0
    results: List[TaskResult] = Field(default_factory=list)


class Team(BaseModel):
    """A competing team."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    """One ranked row of a category leaderboard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    avatar: Optional[str] = None
    tasks_completed: int = Field(default=0, ge=0)
    last_active: Optional[datetime] = None

    @computed_field(alias="milestones")
    @property
    def milestones(self) -> List[bool]:
        return get_milestone_array(self.tasks_completed)

    @computed_field(alias="completionPercentage")
    @property
    def completion_percentage(self) -> int:
        return calculate_completion_percentage(self.tasks_completed)


class ActivityTeam(BaseModel):
    name: str


class ActivityEntry(BaseModel):
    """One activity feed record. ``points`` carries the task number."""

    id: int
    category: str
    message: str
    points: int
    timestamp: datetime
    team: ActivityTeam


def get_milestone_array(tasks_completed: int) -> List[bool]:
    """
    Cumulative completion flags, one per task.

    Example:
        >>> get_milestone_array(2)
        [True, True, False]
    """
    return [tasks_completed >= i + 1 for i in range(MAX_TASKS)]


def calculate_completion_percentage(tasks_completed: int) -> int:
    """Completion as a whole percentage, clamped to [0, 100]."""
    if tasks_completed <= 0:
        return 0
    if tasks_completed >= MAX_TASKS:
        return 100
    return round(tasks_completed / MAX_TASKS * 100)


# SQLAlchemy Models for Database
class TeamModel(Base):
    """SQLAlchemy model for teams."""

    __tablename__ = "teams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    avatar = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    categories = relationship("CategoryModel", back_populates="team")
    activities = relationship("ActivityLogModel", back_populates="team")


class CategoryModel(Base):
    """SQLAlchemy model for per-team category progress."""

    __tablename__ = "categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id = Column(Uuid, ForeignKey("teams.id"), nullable=False)
    name = Column(String(20), nullable=False)
    tasks_completed = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    team = relationship("TeamModel", back_populates="categories")

    # Indexes
    __table_args__ = (
        UniqueConstraint("team_id", "name", name="uq_categories_team_name"),
        Index("idx_categories_name_ranking", "name", "tasks_completed", "last_active"),
    )


class TaskStatusModel(Base):
    """SQLAlchemy model for recorded task completions."""

    __tablename__ = "task_statuses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id = Column(Uuid, ForeignKey("teams.id"), nullable=False)
    category = Column(String(20), nullable=False)
    task_number = Column(Integer, nullable=False)
    commit_hash = Column(String(64), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # The idempotency guard
    __table_args__ = (
        UniqueConstraint(
            "team_id", "category", "task_number", name="uq_task_statuses_team_category_task"
        ),
    )


class ActivityLogModel(Base):
    """SQLAlchemy model for the append-only activity feed."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Uuid, ForeignKey("teams.id"), nullable=False)
    category = Column(String(20), nullable=False)
    message = Column(String(255), nullable=False)
    points = Column(Integer, nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Relationships
    team = relationship("TeamModel", back_populates="activities")


class ModelConverter:
    """Utility class for converting SQLAlchemy rows to API models."""

    @staticmethod
    def model_to_team(model: TeamModel) -> Team:
        return Team(
            id=str(model.id),
            name=model.name,
            avatar=model.avatar,
            created_at=model.created_at,
        )

    @staticmethod
    def category_to_leaderboard_entry(model: CategoryModel) -> LeaderboardEntry:
        """Project a category row (with its team loaded) onto a leaderboard entry."""
        return LeaderboardEntry(
            id=str(model.team.id),
            name=model.team.name,
            avatar=get_team_avatar(model.team.name, model.team.avatar),
            tasks_completed=model.tasks_completed,
            last_active=model.last_active,
        )

    @staticmethod
    def model_to_activity(model: ActivityLogModel) -> ActivityEntry:
        return ActivityEntry(
            id=model.id,
            category=model.category,
            message=model.message,
            points=model.points,
            timestamp=model.timestamp,
            team=ActivityTeam(name=model.team.name),
        )


__all__ = [
    'MAX_TASKS', 'Category', 'TaskResultStatus', 'TaskFact',
    'PushCommit', 'PushEvent', 'TaskResult', 'WebhookResponse', 'Team',
    'LeaderboardEntry', 'ActivityTeam', 'ActivityEntry',
    'get_milestone_array', 'calculate_completion_percentage',
    'Base', 'TeamModel', 'CategoryModel', 'TaskStatusModel', 'ActivityLogModel',
    'ModelConverter', 'utcnow',
]

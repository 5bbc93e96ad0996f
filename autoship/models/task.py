# autoship/models/task.py
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship
from ulid import ULID

from .database import Base


def new_id() -> str:
    """26-character, time-ordered identifier"""
    return str(ULID())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskStatus(str, Enum):
    """Task state machine states"""
    RESEARCH = "research"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    DEVELOPING = "developing"
    TESTING = "testing"
    CI_FIXING = "ci_fixing"
    REVIEWING = "reviewing"
    DEPLOYING_STAGING = "deploying_staging"
    OBSERVING_STAGING = "observing_staging"
    DEPLOYING_PRODUCTION = "deploying_production"
    OBSERVING_PRODUCTION = "observing_production"
    SUCCEEDED = "succeeded"        # Terminal
    FAILED = "failed"              # Terminal
    ROLLED_BACK = "rolled_back"    # Terminal


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.ROLLED_BACK}
)


class Stage(str, Enum):
    """Stages that produce StageAttempts (every non-terminal status)"""
    RESEARCH = "research"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    DEVELOPING = "developing"
    TESTING = "testing"
    CI_FIXING = "ci_fixing"
    REVIEWING = "reviewing"
    DEPLOYING_STAGING = "deploying_staging"
    OBSERVING_STAGING = "observing_staging"
    DEPLOYING_PRODUCTION = "deploying_production"
    OBSERVING_PRODUCTION = "observing_production"

    @property
    def status(self) -> TaskStatus:
        return TaskStatus(self.value)

    @classmethod
    def for_status(cls, status: TaskStatus) -> "Stage":
        return cls(status.value)


class AttemptStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _enum_column(enum_cls, length: int):
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class Task(Base):
    """One end-to-end proposed and executed code change

    Counters are monotonic; deployed_at / rolled_back_at are write-once and
    guarded by TaskStore, which is the only writer.
    """
    __tablename__ = "pipeline_tasks"

    id = Column(String(26), primary_key=True, default=new_id)
    intent = Column(Text, nullable=False)
    status = Column(_enum_column(TaskStatus, 30), nullable=False, default=TaskStatus.RESEARCH)
    risk_level = Column(_enum_column(RiskLevel, 10), nullable=True)
    plan = Column(JSON, nullable=True)

    # Version-control correlation, filled progressively
    branch_name = Column(String(255), nullable=True)
    pr_number = Column(Integer, nullable=True)
    pr_url = Column(String(512), nullable=True)
    commit_sha = Column(String(40), nullable=True)

    dev_iterations = Column(Integer, nullable=False, default=0)
    ci_retries = Column(Integer, nullable=False, default=0)

    requested_by = Column(String(255), nullable=True)
    channel = Column(String(100), nullable=True)
    error = Column(Text, nullable=True)

    deployed_at = Column(DateTime, nullable=True)
    rolled_back_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stages = relationship(
        "StageAttempt",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StageAttempt.sequence",
    )

    __table_args__ = (
        Index("ix_pipeline_tasks_status", "status"),
        Index("ix_pipeline_tasks_requested_by_created_at", "requested_by", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "intent": self.intent,
            "status": self.status.value,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "plan": self.plan,
            "branch_name": self.branch_name,
            "pr_number": self.pr_number,
            "pr_url": self.pr_url,
            "commit_sha": self.commit_sha,
            "dev_iterations": self.dev_iterations,
            "ci_retries": self.ci_retries,
            "requested_by": self.requested_by,
            "channel": self.channel,
            "error": self.error,
            "deployed_at": self.deployed_at.isoformat() if self.deployed_at else None,
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class StageAttempt(Base):
    """One execution record for one stage of one Task (append-only)"""
    __tablename__ = "pipeline_task_stages"

    id = Column(String(26), primary_key=True, default=new_id)
    task_id = Column(
        String(26),
        ForeignKey("pipeline_tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)  # Per-task ordinal, ties on started_at
    stage = Column(_enum_column(Stage, 30), nullable=False)
    status = Column(_enum_column(AttemptStatus, 10), nullable=False, default=AttemptStatus.RUNNING)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    output = Column(JSON, nullable=True)

    task = relationship("Task", back_populates="stages")

    __table_args__ = (
        Index("ix_pipeline_task_stages_task_id_stage", "task_id", "stage"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != AttemptStatus.RUNNING

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "sequence": self.sequence,
            "stage": self.stage.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "output": self.output,
        }

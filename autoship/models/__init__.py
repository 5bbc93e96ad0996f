# autoship Models Package
from .database import Base, create_session_factory, init_db
from .task import (
    Task,
    StageAttempt,
    TaskStatus,
    Stage,
    AttemptStatus,
    RiskLevel,
    TERMINAL_STATUSES,
    new_id,
)

__all__ = [
    "Base",
    "create_session_factory",
    "init_db",
    "Task",
    "StageAttempt",
    "TaskStatus",
    "Stage",
    "AttemptStatus",
    "RiskLevel",
    "TERMINAL_STATUSES",
    "new_id",
]

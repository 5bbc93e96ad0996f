# autoship/pipeline/store.py
"""
TaskStore - Task persistence: trigger acceptance, lookups, and purge.

Purge is the explicit referential-integrity rule for StageAttempts: a Task
and all of its attempts are removed together, in one transaction.
"""

import logging
from contextlib import contextmanager
from typing import Optional, List, Iterator

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, sessionmaker

from ..config import PipelineConfig, TriggerScope
from ..errors import ValidationError, TaskNotFound
from ..models.task import Task, StageAttempt, TaskStatus, TERMINAL_STATUSES, new_id

logger = logging.getLogger("autoship.pipeline.store")


class TaskTrigger(BaseModel):
    """Inbound request to start a Task"""
    intent: str = Field(..., min_length=3, max_length=10000)
    requested_by: Optional[str] = Field(default=None, max_length=255)
    channel: Optional[str] = Field(default=None, max_length=100)

    @field_validator("intent")
    @classmethod
    def intent_meaningful(cls, v):
        if len(v.strip()) < 3:
            raise ValueError("Intent must be meaningful (>=3 characters after trimming)")
        return v.strip()


def authorize_trigger(trigger: TaskTrigger, config: PipelineConfig):
    """
    Enforce allowed_triggers.

    Raises:
        ValidationError: If the requester may not create Tasks
    """
    scope = config.allowed_triggers
    if scope == TriggerScope.NONE:
        raise ValidationError("Pipeline triggers are disabled", {"allowed_triggers": scope.value})
    if not trigger.requested_by:
        raise ValidationError("Trigger must name its requester", {"allowed_triggers": scope.value})
    if scope == TriggerScope.OWNER:
        if not config.owner_id:
            raise ValidationError("allowed_triggers=owner but no owner is configured")
        if trigger.requested_by != config.owner_id:
            raise ValidationError(
                f"{trigger.requested_by} is not allowed to trigger the pipeline",
                {"allowed_triggers": scope.value, "requested_by": trigger.requested_by},
            )


class TaskStore:

    def __init__(self, session_factory: sessionmaker, clock):
        self.session_factory = session_factory
        self.clock = clock

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back on any error"""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def create(self, trigger, config: PipelineConfig) -> Task:
        """
        Accept a trigger and persist a fresh Task in the research state.

        Raises:
            ValidationError: Malformed or disallowed trigger
        """
        if isinstance(trigger, dict):
            try:
                trigger = TaskTrigger.model_validate(trigger)
            except PydanticValidationError as e:
                raise ValidationError(f"Malformed trigger: {e.error_count()} error(s)", {"errors": e.errors(include_url=False, include_context=False)})
        authorize_trigger(trigger, config)

        now = self.clock.now()
        with self.transaction() as session:
            task = Task(
                id=new_id(),
                intent=trigger.intent,
                status=TaskStatus.RESEARCH,
                requested_by=trigger.requested_by,
                channel=trigger.channel,
                dev_iterations=0,
                ci_retries=0,
                error=None,
                created_at=now,
                updated_at=now,
            )
            session.add(task)

        logger.info(
            f"Task {task.id} created | requested_by={task.requested_by} | channel={task.channel}"
        )
        return task

    def get(self, task_id: str, session: Optional[Session] = None) -> Task:
        if session is not None:
            task = session.get(Task, task_id)
        else:
            with self.transaction() as own:
                task = own.get(Task, task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def list(
        self,
        status: Optional[TaskStatus] = None,
        requested_by: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Task]:
        with self.transaction() as session:
            query = session.query(Task)
            if status is not None:
                query = query.filter(Task.status == status)
            if requested_by is not None:
                query = query.filter(Task.requested_by == requested_by)
            return query.order_by(Task.created_at.desc(), Task.id.desc()).offset(offset).limit(limit).all()

    def active_ids(self) -> List[str]:
        """Ids of every non-terminal Task, oldest first"""
        with self.transaction() as session:
            rows = (
                session.query(Task.id)
                .filter(Task.status.notin_(list(TERMINAL_STATUSES)))
                .order_by(Task.id)
                .all()
            )
        return [row[0] for row in rows]

    def attempts(self, task_id: str) -> List[StageAttempt]:
        with self.transaction() as session:
            self.get(task_id, session)
            return (
                session.query(StageAttempt)
                .filter(StageAttempt.task_id == task_id)
                .order_by(StageAttempt.sequence)
                .all()
            )

    def purge(self, task_id: str) -> int:
        """
        Delete a Task and all of its StageAttempts.

        Returns:
            Number of StageAttempts removed
        """
        with self.transaction() as session:
            task = self.get(task_id, session)
            removed = (
                session.query(StageAttempt)
                .filter(StageAttempt.task_id == task_id)
                .delete(synchronize_session=False)
            )
            session.delete(task)
        logger.info(f"Task {task_id} purged | stage_attempts={removed}")
        return removed

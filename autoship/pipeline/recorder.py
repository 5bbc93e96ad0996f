# autoship/pipeline/recorder.py
"""
StageRecorder - append-only ledger of StageAttempts.

The ledger is both the audit trail and the resumption cursor: the latest
attempt of a Task says which stage to re-enter after a restart. All methods
take the caller's session so that completing an attempt and moving the Task
commit in the same transaction.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import StageRecordError
from ..models.task import StageAttempt, Stage, AttemptStatus, Task, new_id
from ..payloads import StageOutput, decode_stage_output

logger = logging.getLogger("autoship.pipeline.recorder")


class StageRecorder:

    def open(self, session: Session, task_id: str, stage: Stage, started_at: datetime) -> StageAttempt:
        """
        Append a running attempt for a stage.

        Raises:
            StageRecordError: If the Task already has a running attempt, or
                started_at would precede the previous attempt
        """
        running = self.running(session, task_id)
        if running is not None:
            raise StageRecordError(
                f"Task {task_id} already has a running {running.stage.value} attempt",
                {"task_id": task_id, "attempt_id": running.id},
            )

        previous = self.latest(session, task_id)
        if previous is not None and started_at < previous.started_at:
            started_at = previous.started_at

        sequence = (
            session.query(func.max(StageAttempt.sequence))
            .filter(StageAttempt.task_id == task_id)
            .scalar()
        ) or 0

        attempt = StageAttempt(
            id=new_id(),
            task_id=task_id,
            sequence=sequence + 1,
            stage=Stage(stage),
            status=AttemptStatus.RUNNING,
            started_at=started_at,
        )
        session.add(attempt)
        session.flush()
        logger.debug(f"Opened {attempt.stage.value} attempt #{attempt.sequence} for task {task_id}")
        return attempt

    def complete(
        self,
        session: Session,
        attempt: StageAttempt,
        status: AttemptStatus,
        output: Optional[Dict[str, Any]],
        completed_at: datetime,
    ) -> StageAttempt:
        """
        Close a running attempt. Completed attempts are never mutated.

        Raises:
            StageRecordError: If the attempt is already terminal or status is running
        """
        if status == AttemptStatus.RUNNING:
            raise StageRecordError("Cannot complete an attempt as running", {"attempt_id": attempt.id})
        if attempt.status != AttemptStatus.RUNNING:
            raise StageRecordError(
                f"Attempt {attempt.id} already completed as {attempt.status.value}",
                {"attempt_id": attempt.id},
            )
        attempt.status = status
        attempt.output = output
        attempt.completed_at = max(completed_at, attempt.started_at)
        session.flush()
        logger.debug(
            f"Completed {attempt.stage.value} attempt #{attempt.sequence} "
            f"for task {attempt.task_id} as {status.value}"
        )
        return attempt

    # =========================================================================
    # Queries
    # =========================================================================

    def attempts(self, session: Session, task_id: str, stage: Optional[Stage] = None) -> List[StageAttempt]:
        query = session.query(StageAttempt).filter(StageAttempt.task_id == task_id)
        if stage is not None:
            query = query.filter(StageAttempt.stage == Stage(stage))
        return query.order_by(StageAttempt.sequence).all()

    def latest(self, session: Session, task_id: str, stage: Optional[Stage] = None) -> Optional[StageAttempt]:
        query = session.query(StageAttempt).filter(StageAttempt.task_id == task_id)
        if stage is not None:
            query = query.filter(StageAttempt.stage == Stage(stage))
        return query.order_by(StageAttempt.sequence.desc()).first()

    def running(self, session: Session, task_id: str) -> Optional[StageAttempt]:
        return (
            session.query(StageAttempt)
            .filter(
                StageAttempt.task_id == task_id,
                StageAttempt.status == AttemptStatus.RUNNING,
            )
            .order_by(StageAttempt.sequence.desc())
            .first()
        )

    def output_of(self, attempt: StageAttempt) -> StageOutput:
        """
        Decode a completed attempt's output.

        Raises:
            CollaboratorFailure: If the stored output has an unknown version or shape
        """
        return decode_stage_output(attempt.stage, attempt.output)

    def completed(
        self, session: Session, task_id: str, stage: Optional[Stage] = None
    ) -> List[Tuple[StageAttempt, StageOutput]]:
        """Completed attempts in ledger order, each with its decoded output"""
        return [
            (attempt, self.output_of(attempt))
            for attempt in self.attempts(session, task_id, stage)
            if attempt.status != AttemptStatus.RUNNING
        ]

    def has_override(self, session: Session, task_id: str) -> bool:
        """True if a human override was recorded for the Task"""
        return any(
            attempt.status == AttemptStatus.SUCCEEDED and output.override
            for attempt, output in self.completed(session, task_id, Stage.AWAITING_APPROVAL)
        )

    def blocked_paths(self, session: Session, task_id: str) -> List[str]:
        """Every protected prefix ProtectedPathGuard matched for this Task"""
        matched = set()
        for _, output in self.completed(session, task_id):
            matched.update(getattr(output, "blocked_paths", None) or [])
        return sorted(matched)

    def last_failure_output(self, session: Session, task_id: str, stage: Stage) -> Optional[StageOutput]:
        """
        Output of the stage's latest completed attempt if it failed on its
        own. Interrupted attempts are skipped.
        """
        for attempt, output in reversed(self.completed(session, task_id, stage)):
            if output.interrupted:
                continue
            if attempt.status == AttemptStatus.FAILED and not output.cancelled:
                return output
            return None
        return None

    def find_orphans(self, session: Session) -> List[StageAttempt]:
        """Attempts whose Task no longer exists"""
        return (
            session.query(StageAttempt)
            .outerjoin(Task, StageAttempt.task_id == Task.id)
            .filter(Task.id.is_(None))
            .all()
        )

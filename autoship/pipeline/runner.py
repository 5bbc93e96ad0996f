# autoship/pipeline/runner.py
"""
PipelineRunner - one asyncio worker per Task.

A worker claims its Task, closes any attempt a previous process left
running, steps the Task to a terminal status and releases the claim.
Parked Tasks (awaiting a human decision) keep their worker; a restart
re-enters the approval stage and the decision is requested again.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..config import PipelineConfig
from ..errors import ClaimUnavailable, ValidationError
from ..middleware.correlation import task_id_var
from ..models.task import Task, TaskStatus
from ..payloads import ApprovalDecision
from .claims import InMemoryTaskClaims, new_owner_id
from .state_machine import TaskStateMachine
from .store import TaskStore

logger = logging.getLogger("autoship.pipeline.runner")


class PipelineRunner:

    def __init__(
        self,
        config: PipelineConfig,
        store: TaskStore,
        state_machine: TaskStateMachine,
        claims=None,
        approvals=None,
        owner: Optional[str] = None,
        claim_refresh_seconds: float = 60,
    ):
        self.config = config
        self.store = store
        self.state_machine = state_machine
        self.claims = claims or InMemoryTaskClaims()
        self.approvals = approvals
        self.owner = owner or new_owner_id()
        self.claim_refresh_seconds = claim_refresh_seconds
        self._workers: Dict[str, asyncio.Task] = {}

    # =========================================================================
    # Workers
    # =========================================================================

    def submit(self, trigger) -> Task:
        """Accept a trigger and start driving the new Task"""
        task = self.store.create(trigger, self.config)
        self.start(task.id)
        return task

    def start(self, task_id: str) -> bool:
        """
        Start a worker for the Task unless this runner already has one.

        Returns:
            True if a worker was started
        """
        worker = self._workers.get(task_id)
        if worker is not None and not worker.done():
            return False
        worker = asyncio.create_task(self._work(task_id), name=f"autoship-{task_id}")
        self._workers[task_id] = worker
        worker.add_done_callback(lambda w, tid=task_id: self._forget(tid, w))
        return True

    def _forget(self, task_id: str, worker: asyncio.Task):
        if self._workers.get(task_id) is worker:
            del self._workers[task_id]

    async def _work(self, task_id: str) -> Optional[Task]:
        token = task_id_var.set(task_id)
        try:
            if not await self.claims.acquire(task_id, self.owner):
                logger.info(f"Task {task_id} is claimed by another worker, skipping")
                return None

            heartbeat = asyncio.create_task(self._keep_claim(task_id, asyncio.current_task()))
            try:
                self.state_machine.recover_interrupted(task_id)
                task = await self.state_machine.run(task_id)
                if self.approvals is not None:
                    self.approvals.discard(task_id)
                return task
            except asyncio.CancelledError:
                logger.warning(f"Worker for task {task_id} cancelled")
                raise
            except Exception:
                logger.exception(f"Worker for task {task_id} crashed")
                return None
            finally:
                heartbeat.cancel()
                await self.claims.release(task_id, self.owner)
        finally:
            task_id_var.reset(token)

    async def _keep_claim(self, task_id: str, worker: asyncio.Task):
        """Refresh the claim while the worker runs; stop the worker once it is lost"""
        while True:
            await asyncio.sleep(self.claim_refresh_seconds)
            try:
                held = await self.claims.refresh(task_id, self.owner)
            except Exception as e:
                logger.error(f"Claim refresh failed for task {task_id}: {e}")
                held = False
            if not held:
                logger.error(f"Lost claim on task {task_id}, stopping its worker")
                worker.cancel()
                return

    def is_active(self, task_id: str) -> bool:
        worker = self._workers.get(task_id)
        return worker is not None and not worker.done()

    # =========================================================================
    # Resume
    # =========================================================================

    def resume(self, task_id: str) -> bool:
        """Resume a Task from its stage ledger; a no-op for terminal Tasks"""
        task = self.store.get(task_id)
        if task.is_terminal:
            return False
        return self.start(task_id)

    def resume_all(self) -> List[str]:
        """Start workers for every non-terminal Task"""
        started = [task_id for task_id in self.store.active_ids() if self.start(task_id)]
        logger.info(f"Resumed {len(started)} task(s)")
        return started

    # =========================================================================
    # Operator actions
    # =========================================================================

    def decide(self, task_id: str, decision: ApprovalDecision) -> bool:
        """
        Deliver a human decision to a Task awaiting approval.

        Returns:
            True if a waiting worker received it, False if it was queued

        Raises:
            ValidationError: If the Task is not awaiting approval
        """
        if self.approvals is None:
            raise ValidationError("No approval channel is configured")
        task = self.store.get(task_id)
        if task.status != TaskStatus.AWAITING_APPROVAL:
            raise ValidationError(
                f"Task {task_id} is not awaiting approval",
                {"status": task.status.value},
            )
        delivered = self.approvals.submit(task_id, decision)
        if not delivered:
            self.start(task_id)
        return delivered

    async def cancel(self, task_id: str, actor: str, reason: str) -> Task:
        """
        Stop a Task's worker and compensate under its claim.

        Raises:
            ClaimUnavailable: If a worker in another process owns the Task
        """
        worker = self._workers.get(task_id)
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        if not await self.claims.acquire(task_id, self.owner):
            raise ClaimUnavailable(task_id)
        token = task_id_var.set(task_id)
        try:
            task = await self.state_machine.cancel(task_id, actor, reason)
        finally:
            await self.claims.release(task_id, self.owner)
            task_id_var.reset(token)
        if self.approvals is not None:
            self.approvals.discard(task_id)
        return task

    async def wait(self, task_id: str) -> Task:
        """Wait for this runner's worker on the Task, then return the Task"""
        worker = self._workers.get(task_id)
        if worker is not None:
            await asyncio.wait({worker})
        return self.store.get(task_id)

    async def shutdown(self):
        """Cancel every worker; their running attempts are recovered on resume"""
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        logger.info(f"Runner {self.owner} stopped {len(workers)} worker(s)")

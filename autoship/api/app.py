# autoship/api/app.py
"""
autoship ops API - trigger Tasks, inspect them, decide approvals, cancel.

Responses carry a Task's status and error text, never raw collaborator
exceptions.
"""

import logging
import platform
from typing import Optional, List

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..collaborators import Collaborators, QueuedApprovalClient
from ..config import PipelineConfig
from ..errors import ValidationError, TaskNotFound, ClaimUnavailable
from ..middleware.correlation import CorrelationIdMiddleware
from ..models import create_session_factory, init_db
from ..models.task import TaskStatus
from ..payloads import ApprovalDecision, Decision
from ..pipeline import (
    PipelineRunner,
    RedisTaskClaims,
    InMemoryTaskClaims,
    StageRecorder,
    TaskStateMachine,
    TaskStore,
    TaskTrigger,
)
from ..clock import SystemClock
from .auth import verify_api_key, is_auth_enabled

logger = logging.getLogger("autoship.api")


class DecisionRequest(BaseModel):
    decision: Decision
    actor: Optional[str] = Field(default=None, max_length=255)
    comment: str = Field(default="", max_length=2000)


class CancelRequest(BaseModel):
    actor: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(default="cancelled by operator", max_length=2000)


def build_runner(config: PipelineConfig, collaborators: Collaborators, clock=None) -> PipelineRunner:
    """
    Wire store, recorder, state machine and claims from configuration.

    QueuedApprovalClient delivers decisions inside one process only, so it
    cannot be combined with Redis claims shared by several processes.

    Raises:
        ValueError: If redis_url is set and approvals go through QueuedApprovalClient
    """
    if config.redis_url and isinstance(collaborators.approvals, QueuedApprovalClient):
        raise ValueError(
            "QueuedApprovalClient is in-process; use an approval client shared by "
            "every worker when REDIS_URL is set"
        )
    clock = clock or SystemClock()
    engine, session_factory = create_session_factory(config.database_url)
    init_db(engine)
    store = TaskStore(session_factory, clock)
    state_machine = TaskStateMachine(config, store, StageRecorder(), collaborators, clock=clock)
    if config.redis_url:
        claims = RedisTaskClaims.from_url(config.redis_url)
    else:
        claims = InMemoryTaskClaims()
    approvals = collaborators.approvals if isinstance(collaborators.approvals, QueuedApprovalClient) else None
    return PipelineRunner(config, store, state_machine, claims=claims, approvals=approvals)


def _runner(request: Request) -> PipelineRunner:
    return request.app.state.runner


def create_app(config: PipelineConfig, runner: PipelineRunner, resume_on_startup: bool = True) -> FastAPI:
    app = FastAPI(
        title="autoship",
        description="Autonomous code-change pipeline",
        version="1.0.0",
    )
    app.state.config = config
    app.state.runner = runner
    app.add_middleware(CorrelationIdMiddleware)

    if not is_auth_enabled(config):
        logger.warning("AUTOSHIP_API_KEY not set - authentication DISABLED (development mode only)")

    @app.on_event("startup")
    async def resume_tasks():
        if resume_on_startup:
            runner.resume_all()

    @app.on_event("shutdown")
    async def stop_workers():
        await runner.shutdown()

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health_check():
        claims_healthy = True
        if isinstance(runner.claims, RedisTaskClaims):
            claims_healthy = await runner.claims.ping()
        return {
            "status": "healthy" if claims_healthy else "degraded",
            "platform": platform.system(),
            "timestamp": runner.store.clock.now().isoformat(),
            "owner": runner.owner,
            "claims_healthy": claims_healthy,
            "awaiting_decision": sorted(runner.approvals.pending()) if runner.approvals else [],
        }

    # =========================================================================
    # Tasks
    # =========================================================================

    @app.post("/tasks", status_code=201)
    async def create_task(
        trigger: TaskTrigger,
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        try:
            task = runner.submit(trigger)
        except ValidationError as e:
            raise HTTPException(status_code=403, detail=e.message)
        return task.to_dict()

    @app.get("/tasks")
    async def list_tasks(
        status: Optional[TaskStatus] = None,
        requested_by: Optional[str] = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ) -> List[dict]:
        tasks = runner.store.list(status=status, requested_by=requested_by, limit=limit, offset=offset)
        return [t.to_dict() for t in tasks]

    @app.get("/tasks/{task_id}")
    async def get_task(
        task_id: str,
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        try:
            task = runner.store.get(task_id)
        except TaskNotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        body = task.to_dict()
        body["active"] = runner.is_active(task_id)
        return body

    @app.get("/tasks/{task_id}/stages")
    async def get_task_stages(
        task_id: str,
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        try:
            attempts = runner.store.attempts(task_id)
        except TaskNotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        return [a.to_dict() for a in attempts]

    @app.post("/tasks/{task_id}/decision")
    async def decide_task(
        task_id: str,
        body: DecisionRequest,
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        decision = ApprovalDecision(decision=body.decision, actor=body.actor, comment=body.comment)
        try:
            delivered = runner.decide(task_id, decision)
        except TaskNotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        except ValidationError as e:
            raise HTTPException(status_code=409, detail=e.message)
        return {"task_id": task_id, "decision": body.decision.value, "delivered": delivered}

    @app.post("/tasks/{task_id}/cancel")
    async def cancel_task(
        task_id: str,
        body: CancelRequest,
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        try:
            task = await runner.cancel(task_id, body.actor, body.reason)
        except TaskNotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        except ClaimUnavailable as e:
            raise HTTPException(status_code=409, detail=e.message)
        return task.to_dict()

    # =========================================================================
    # Admin
    # =========================================================================

    @app.post("/admin/resume")
    async def resume_all(
        runner: PipelineRunner = Depends(_runner),
        api_key: str = Depends(verify_api_key),
    ):
        started = runner.resume_all()
        return {"resumed": started, "count": len(started)}

    return app


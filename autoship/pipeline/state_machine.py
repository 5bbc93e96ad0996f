# autoship/pipeline/state_machine.py
"""
Task State Machine - drives a Task through its stages

research → planning → [awaiting_approval] → developing ⇄ testing → ci_fixing
→ reviewing → deploying_staging → observing_staging → deploying_production
→ observing_production → succeeded

Every step opens a running StageAttempt, awaits the stage's collaborator
outside any transaction, then completes the attempt and moves the Task in a
single transaction.
"""

import asyncio
import logging
from typing import Optional, Dict, Set, Any, Callable, Awaitable

from sqlalchemy.orm import Session

from ..collaborators import Collaborators
from ..config import PipelineConfig
from ..errors import (
    PipelineError,
    ApprovalDenied,
    CollaboratorFailure,
    InvalidTransitionError,
    IterationLimitExceeded,
    ProtectedPathViolation,
    TaskCancelled,
)
from ..models.task import Task, StageAttempt, TaskStatus, Stage, AttemptStatus, TERMINAL_STATUSES
from ..payloads import (
    ErrorInfo,
    StageOutput,
    ResearchResult,
    Plan,
    Patch,
    CheckReport,
    PullRequest,
    ReviewState,
    ReviewDecision,
    ApprovalDecision,
    Decision,
    output_type_for,
    decode_plan,
    dump,
)
from ..policy import ProtectedPathGuard, GateDecision, IterationLimiter, evaluate
from .context import StageContext, PriorAttempt, Advance, call_collaborator, expect
from .deployment import DeploymentController, Environment
from .recorder import StageRecorder
from .store import TaskStore

logger = logging.getLogger("autoship.pipeline.state_machine")


# Valid status transitions
VALID_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.RESEARCH: {TaskStatus.PLANNING, TaskStatus.FAILED},
    TaskStatus.PLANNING: {TaskStatus.AWAITING_APPROVAL, TaskStatus.DEVELOPING, TaskStatus.FAILED},
    TaskStatus.AWAITING_APPROVAL: {TaskStatus.DEVELOPING, TaskStatus.FAILED},
    TaskStatus.DEVELOPING: {
        TaskStatus.TESTING,
        TaskStatus.DEVELOPING,
        TaskStatus.AWAITING_APPROVAL,  # Protected path found in an actual patch
        TaskStatus.FAILED,
    },
    TaskStatus.TESTING: {TaskStatus.CI_FIXING, TaskStatus.DEVELOPING, TaskStatus.FAILED},
    TaskStatus.CI_FIXING: {TaskStatus.REVIEWING, TaskStatus.CI_FIXING, TaskStatus.FAILED},
    TaskStatus.REVIEWING: {TaskStatus.DEPLOYING_STAGING, TaskStatus.FAILED},
    TaskStatus.DEPLOYING_STAGING: {
        TaskStatus.OBSERVING_STAGING,
        TaskStatus.DEPLOYING_STAGING,
        TaskStatus.FAILED,
        TaskStatus.ROLLED_BACK,
    },
    TaskStatus.OBSERVING_STAGING: {TaskStatus.DEPLOYING_PRODUCTION, TaskStatus.ROLLED_BACK, TaskStatus.FAILED},
    TaskStatus.DEPLOYING_PRODUCTION: {TaskStatus.OBSERVING_PRODUCTION, TaskStatus.ROLLED_BACK, TaskStatus.FAILED},
    TaskStatus.OBSERVING_PRODUCTION: {TaskStatus.SUCCEEDED, TaskStatus.ROLLED_BACK, TaskStatus.FAILED},
    TaskStatus.SUCCEEDED: set(),    # Terminal
    TaskStatus.FAILED: set(),       # Terminal
    TaskStatus.ROLLED_BACK: set(),  # Terminal
}

assert set(VALID_TRANSITIONS) == set(TaskStatus), "every status needs a transition entry"
assert all(not VALID_TRANSITIONS[s] for s in TERMINAL_STATUSES), "terminal statuses absorb"

# Stages whose collaborator failures are retried, and the budget each retry consumes
RETRY_POLICY: Dict[Stage, tuple] = {
    Stage.DEVELOPING: (TaskStatus.DEVELOPING, IterationLimiter.DEV),
    Stage.TESTING: (TaskStatus.DEVELOPING, IterationLimiter.DEV),
    Stage.CI_FIXING: (TaskStatus.CI_FIXING, IterationLimiter.CI),
    Stage.DEPLOYING_STAGING: (TaskStatus.DEPLOYING_STAGING, IterationLimiter.DEV),
}

# Fields that may be set once and never changed afterwards
WRITE_ONCE_FIELDS = (
    "risk_level",
    "plan",
    "branch_name",
    "pr_number",
    "pr_url",
    "deployed_at",
    "rolled_back_at",
)

_DEPLOY_ENVIRONMENTS = {
    Stage.DEPLOYING_STAGING: Environment.STAGING,
    Stage.DEPLOYING_PRODUCTION: Environment.PRODUCTION,
}


def can_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def transition(task: Task, to_status: TaskStatus, error: Optional[PipelineError] = None):
    """
    Move a Task along one edge of the graph.

    Raises:
        InvalidTransitionError: If the edge does not exist
    """
    from_status = task.status
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(task.id, from_status, to_status)
    task.status = to_status
    if to_status in (TaskStatus.FAILED, TaskStatus.ROLLED_BACK) and error is not None:
        task.error = error.task_error()
    logger.info(
        f"Task {task.id}: {from_status.value} → {to_status.value}"
        + (f" ({error.task_error()})" if error is not None else "")
    )


def initial_output(stage: Stage, config: PipelineConfig) -> StageOutput:
    """Empty output for a new attempt of a stage"""
    model = output_type_for(stage)
    if stage in _DEPLOY_ENVIRONMENTS:
        return model(environment=_DEPLOY_ENVIRONMENTS[stage].value, strategy=config.deploy_strategy.value)
    if stage == Stage.OBSERVING_STAGING:
        return model(environment=Environment.STAGING.value)
    if stage == Stage.OBSERVING_PRODUCTION:
        return model(environment=Environment.PRODUCTION.value)
    return model()


def error_info(error: PipelineError) -> ErrorInfo:
    return ErrorInfo(error_code=error.error_code, message=error.message, context=error.context)


class TaskStateMachine:
    """
    Executes stages for Tasks. Holds no per-Task state; everything lives in
    the store and the stage ledger, so any instance can resume any Task.
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: TaskStore,
        recorder: StageRecorder,
        collaborators: Collaborators,
        deployment: Optional[DeploymentController] = None,
        clock=None,
    ):
        self.config = config
        self.store = store
        self.recorder = recorder
        self.collaborators = collaborators
        self.clock = clock or store.clock
        self.deployment = deployment or DeploymentController(
            config, collaborators.deployer, collaborators.metrics, collaborators.vcs, self.clock
        )
        self.guard = ProtectedPathGuard(config.protected_paths)

    # =========================================================================
    # Driving
    # =========================================================================

    async def run(self, task_id: str) -> Task:
        """Step the Task until it reaches a terminal status"""
        task = self.store.get(task_id)
        while not task.is_terminal:
            task = await self.step(task_id)
        logger.info(f"Task {task_id} finished as {task.status.value}")
        return task

    async def step(self, task_id: str) -> Task:
        """Execute the current stage once and apply its outcome"""
        with self.store.transaction() as session:
            task = self.store.get(task_id, session)
            if task.is_terminal:
                return task
            stage = Stage.for_status(task.status)
            attempt = self.recorder.open(session, task_id, stage, self.clock.now())
            unreadable = None
            try:
                ctx = self._build_context(session, task, attempt)
            except CollaboratorFailure as e:
                unreadable = e
                ctx = StageContext(
                    task_id=task_id,
                    stage=stage,
                    attempt_id=attempt.id,
                    started_at=attempt.started_at,
                    output=initial_output(stage, self.config),
                )

        if unreadable is not None:
            logger.error(f"Task {task_id} has an unreadable stage ledger: {unreadable.message}")
            return self._finish(task_id, ctx, Advance(TaskStatus.FAILED, AttemptStatus.FAILED, unreadable))

        logger.info(f"Task {task_id} entering {stage.value} (attempt {ctx.attempt_id})")
        handler = STAGE_HANDLERS[stage]
        try:
            advance = await handler(self, task, ctx)
        except PipelineError as e:
            advance = self._on_failure(ctx, e)
        except asyncio.CancelledError:
            # Left running on purpose; cancel() or the next resume completes it
            logger.warning(f"Task {task_id} interrupted during {stage.value}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in {stage.value} for task {task_id}")
            advance = Advance(
                TaskStatus.FAILED,
                AttemptStatus.FAILED,
                PipelineError(f"Unexpected {type(e).__name__} in {stage.value}: {e}"),
            )

        return self._finish(task_id, ctx, advance)

    def _on_failure(self, ctx: StageContext, error: PipelineError) -> Advance:
        retry = RETRY_POLICY.get(ctx.stage)
        if retry is not None and isinstance(error, CollaboratorFailure):
            next_status, counter = retry
            logger.warning(f"Task {ctx.task_id} {ctx.stage.value} failed, will retry: {error.message}")
            return Advance(next_status, AttemptStatus.FAILED, error, retry_counter=counter)
        logger.error(f"Task {ctx.task_id} {ctx.stage.value} failed: {error.task_error()}")
        return Advance(TaskStatus.FAILED, AttemptStatus.FAILED, error)

    def _finish(self, task_id: str, ctx: StageContext, advance: Advance) -> Task:
        """Complete the attempt, apply counters and updates, transition; one transaction"""
        with self.store.transaction() as session:
            task = self.store.get(task_id, session)
            attempt = session.get(StageAttempt, ctx.attempt_id)
            now = self.clock.now()

            next_status = advance.next_status
            error = advance.error
            if advance.retry_counter is not None:
                limiter = IterationLimiter.for_task(task, self.config)
                try:
                    if advance.retry_counter == IterationLimiter.DEV:
                        limiter.record_dev_iteration()
                    else:
                        limiter.record_ci_retry()
                except IterationLimitExceeded as exceeded:
                    logger.error(f"Task {task_id} escalated: {exceeded.message}")
                    next_status = TaskStatus.FAILED
                    error = exceeded

            if error is not None:
                ctx.output.error = error_info(error)
            self.recorder.complete(session, attempt, advance.attempt_status, dump(ctx.output), now)
            self._apply_updates(task, ctx.updates)
            transition(task, next_status, error)
            task.updated_at = now
        return task

    def _apply_updates(self, task: Task, updates: Dict[str, Any]):
        for name, value in updates.items():
            if value is None:
                continue
            current = getattr(task, name)
            if name in WRITE_ONCE_FIELDS and current is not None:
                if current != value:
                    logger.warning(f"Task {task.id}: ignoring change to write-once field {name}")
                continue
            setattr(task, name, value)

    # =========================================================================
    # Resumption and cancellation
    # =========================================================================

    def recover_interrupted(self, task_id: str) -> bool:
        """
        Close an attempt left running by a crash or shutdown.

        The stage is re-entered by the next step without consuming budget.

        Returns:
            True if an interrupted attempt was found
        """
        with self.store.transaction() as session:
            attempt = self.recorder.running(session, task_id)
            if attempt is None:
                return False
            output = initial_output(attempt.stage, self.config)
            output.interrupted = True
            self.recorder.complete(session, attempt, AttemptStatus.FAILED, dump(output), self.clock.now())
            logger.warning(f"Task {task_id}: {attempt.stage.value} attempt {attempt.id} was interrupted")
        return True

    async def cancel(self, task_id: str, actor: str, reason: str) -> Task:
        """
        Stop a Task and compensate. The caller must hold the Task's claim and
        have stopped its worker.
        """
        with self.store.transaction() as session:
            task = self.store.get(task_id, session)
            if task.is_terminal:
                return task
            stage = Stage.for_status(task.status)
            attempt = self.recorder.running(session, task_id)
            if attempt is None:
                attempt = self.recorder.open(session, task_id, stage, self.clock.now())
            ctx = self._build_context(session, task, attempt)

        error = TaskCancelled(actor, reason)
        ctx.output.cancelled = True
        logger.warning(f"Cancelling task {task_id} during {stage.value} | actor={actor}")

        rollbacks = await self.deployment.compensate(task, ctx, in_flight=_DEPLOY_ENVIRONMENTS.get(stage))
        next_status = TaskStatus.FAILED
        if rollbacks:
            ctx.output.rollbacks.extend(rollbacks)
            if all(r.succeeded for r in rollbacks):
                next_status = TaskStatus.ROLLED_BACK
                self.deployment.stamp_rollback(task, ctx)

        return self._finish(task_id, ctx, Advance(next_status, AttemptStatus.FAILED, error))

    # =========================================================================
    # Context
    # =========================================================================

    def _build_context(self, session: Session, task: Task, attempt: StageAttempt) -> StageContext:
        """
        Rebuild what the stage needs from the decoded ledger.

        Raises:
            CollaboratorFailure: If an earlier attempt's output cannot be decoded
        """
        earlier = [
            (previous, output)
            for previous, output in self.recorder.completed(session, task.id)
            if previous.id != attempt.id
        ]

        prior = None
        for previous, output in reversed(earlier):
            if not output.interrupted:
                prior = PriorAttempt(previous.stage, previous.status, output)
                break

        research = None
        deployed = []
        known_good = {}
        for previous, output in earlier:
            if previous.status != AttemptStatus.SUCCEEDED:
                continue
            if previous.stage == Stage.RESEARCH:
                research = output.research
            elif previous.stage in _DEPLOY_ENVIRONMENTS:
                env = _DEPLOY_ENVIRONMENTS[previous.stage].value
                if env not in deployed:
                    deployed.append(env)
                known_good[env] = output.previous_artifact

        return StageContext(
            task_id=task.id,
            stage=attempt.stage,
            attempt_id=attempt.id,
            started_at=attempt.started_at,
            output=initial_output(attempt.stage, self.config),
            prior=prior,
            has_override=self.recorder.has_override(session, task.id),
            blocked_paths=self.recorder.blocked_paths(session, task.id),
            research=research,
            deployed_environments=deployed,
            known_good=known_good,
        )

    async def _call(self, name: str, awaitable: Awaitable):
        return await call_collaborator(name, awaitable, self.config.collaborator_timeout_seconds)

    # =========================================================================
    # Stage handlers
    # =========================================================================

    async def _research(self, task: Task, ctx: StageContext) -> Advance:
        result = expect(
            ResearchResult,
            await self._call("planner", self.collaborators.planner.research(task.intent)),
            "planner",
        )
        ctx.output.research = result
        return Advance(TaskStatus.PLANNING)

    async def _planning(self, task: Task, ctx: StageContext) -> Advance:
        research = ctx.research
        if research is None:
            raise CollaboratorFailure("planner", "No research result recorded for this task")
        plan = expect(
            Plan,
            await self._call("planner", self.collaborators.planner.plan(task.intent, research)),
            "planner",
        )
        ctx.output.plan = plan
        ctx.updates["plan"] = dump(plan)
        ctx.updates["risk_level"] = plan.risk_level

        guard = self.guard.check(plan.affected_paths)
        if guard.blocked:
            ctx.output.blocked_paths = list(guard.matched)
            ctx.output.gate = "protected_paths"
            logger.warning(f"Task {task.id} plan touches protected paths: {', '.join(guard.matched)}")
            return Advance(TaskStatus.AWAITING_APPROVAL)

        decision = evaluate(plan.risk_level, self.config.auto_approve_risk)
        ctx.output.gate = decision.value
        logger.info(
            f"Task {task.id} risk={plan.risk_level.value} "
            f"ceiling={self.config.auto_approve_risk.value} → {decision.value}"
        )
        if decision == GateDecision.AUTO_APPROVE:
            return Advance(TaskStatus.DEVELOPING)
        return Advance(TaskStatus.AWAITING_APPROVAL)

    async def _awaiting_approval(self, task: Task, ctx: StageContext) -> Advance:
        if ctx.blocked_paths:
            reason = f"Change touches protected paths: {', '.join(ctx.blocked_paths)}; override required"
        else:
            risk = task.risk_level.value if task.risk_level else "unknown"
            reason = f"Risk {risk} exceeds auto-approve ceiling {self.config.auto_approve_risk.value}"
        ctx.output.reason = reason

        minutes = self.config.approval_timeout_minutes
        try:
            raw = await call_collaborator(
                "approvals",
                self.collaborators.approvals.request_decision(task.id, reason),
                minutes * 60 if minutes else None,
            )
        except CollaboratorFailure as e:
            if isinstance(e.original_error, asyncio.TimeoutError):
                raise ApprovalDenied(f"No decision within {minutes} minutes", {"timeout_minutes": minutes})
            raise
        decision = expect(ApprovalDecision, raw, "approvals")

        ctx.output.decision = decision.decision
        ctx.output.actor = decision.actor
        ctx.output.comment = decision.comment
        logger.info(f"Task {task.id} decision={decision.decision.value} actor={decision.actor}")

        if decision.decision == Decision.REJECT:
            raise ApprovalDenied(
                f"Rejected by {decision.actor or 'approver'}" + (f": {decision.comment}" if decision.comment else ""),
                {"actor": decision.actor},
            )
        if decision.decision == Decision.OVERRIDE:
            ctx.output.override = True
            return Advance(TaskStatus.DEVELOPING)
        if ctx.blocked_paths:
            raise ProtectedPathViolation(
                ctx.blocked_paths,
                f"Approval is not sufficient for protected paths: {', '.join(ctx.blocked_paths)}",
            )
        return Advance(TaskStatus.DEVELOPING)

    async def _developing(self, task: Task, ctx: StageContext) -> Advance:
        plan = decode_plan(task.plan)
        vcs = self.collaborators.vcs

        branch = task.branch_name
        if not branch:
            prefix = self.config.hotfix_prefix if plan.hotfix else self.config.feature_prefix
            branch = f"{prefix}{task.id.lower()}"
            await self._call("vcs", vcs.create_branch(branch, self.config.develop_branch))
            ctx.updates["branch_name"] = branch
            logger.info(f"Task {task.id} branch {branch} created from {self.config.develop_branch}")
        ctx.output.branch = branch

        prior_failure = None
        if ctx.prior is not None and ctx.prior.is_genuine_failure:
            prior_failure = dump(ctx.prior.output)

        patch = expect(
            Patch,
            await self._call(
                "code_generator",
                self.collaborators.code_generator.generate(task.intent, plan, prior_failure),
            ),
            "code_generator",
        )
        ctx.output.patch_summary = patch.summary
        ctx.output.changed_paths = list(patch.changed_paths)

        guard = self.guard.check(patch.changed_paths)
        if guard.blocked:
            ctx.output.blocked_paths = list(guard.matched)
            if not ctx.has_override:
                logger.warning(f"Task {task.id} patch touches protected paths: {', '.join(guard.matched)}")
                return Advance(
                    TaskStatus.AWAITING_APPROVAL,
                    AttemptStatus.FAILED,
                    ProtectedPathViolation(guard.matched),
                )
            ctx.output.override_applied = True
            logger.warning(f"Task {task.id} protected paths allowed by override: {', '.join(guard.matched)}")

        sha = await self._commit(branch, patch, f"{plan.summary}\n\nautoship task {task.id}")
        ctx.output.commit_sha = sha
        ctx.updates["commit_sha"] = sha
        return Advance(TaskStatus.TESTING)

    async def _testing(self, task: Task, ctx: StageContext) -> Advance:
        report = expect(
            CheckReport,
            await self._call("test_runner", self.collaborators.test_runner.run(task.branch_name, task.commit_sha)),
            "test_runner",
        )
        ctx.output.passed = report.passed
        ctx.output.summary = report.summary
        ctx.output.diagnostics = report.diagnostics
        if not report.passed:
            return Advance(
                TaskStatus.DEVELOPING,
                AttemptStatus.FAILED,
                CollaboratorFailure("test_runner", f"Tests failed: {report.summary}", diagnostics=report.diagnostics),
                retry_counter=IterationLimiter.DEV,
            )

        if task.pr_number is None:
            plan = decode_plan(task.plan)
            pr = expect(
                PullRequest,
                await self._call(
                    "vcs",
                    self.collaborators.vcs.open_pull_request(
                        task.branch_name,
                        self.config.develop_branch,
                        plan.summary,
                        f"{task.intent}\n\nautoship task {task.id}",
                    ),
                ),
                "vcs",
            )
            ctx.updates["pr_number"] = pr.number
            ctx.updates["pr_url"] = pr.url
            ctx.output.pr_number = pr.number
            ctx.output.pr_url = pr.url
            logger.info(f"Task {task.id} opened PR #{pr.number}")
        return Advance(TaskStatus.CI_FIXING)

    async def _ci_fixing(self, task: Task, ctx: StageContext) -> Advance:
        sha = task.commit_sha
        with self.store.transaction() as session:
            failure = self.recorder.last_failure_output(session, task.id, Stage.CI_FIXING)

        if failure is not None:
            plan = decode_plan(task.plan)
            patch = expect(
                Patch,
                await self._call(
                    "code_generator",
                    self.collaborators.code_generator.generate(task.intent, plan, dump(failure)),
                ),
                "code_generator",
            )
            guard = self.guard.check(patch.changed_paths)
            if guard.blocked and not ctx.has_override:
                raise ProtectedPathViolation(guard.matched)
            sha = await self._commit(task.branch_name, patch, f"Fix CI: {patch.summary}\n\nautoship task {task.id}")
            ctx.output.fix_commit_sha = sha
            ctx.updates["commit_sha"] = sha

        report = expect(
            CheckReport,
            await self._call("ci", self.collaborators.ci.status(task.branch_name, sha)),
            "ci",
        )
        ctx.output.passed = report.passed
        ctx.output.summary = report.summary
        ctx.output.diagnostics = report.diagnostics
        if not report.passed:
            return Advance(
                TaskStatus.CI_FIXING,
                AttemptStatus.FAILED,
                CollaboratorFailure("ci", f"CI failed: {report.summary}", diagnostics=report.diagnostics),
                retry_counter=IterationLimiter.CI,
            )
        return Advance(TaskStatus.REVIEWING)

    async def _reviewing(self, task: Task, ctx: StageContext) -> Advance:
        if task.pr_number is None:
            raise CollaboratorFailure("vcs", "Task has no pull request to review")
        vcs = self.collaborators.vcs
        review = expect(ReviewDecision, await self._call("vcs", vcs.review_status(task.pr_number)), "vcs")
        ctx.output.reason = review.reason
        if review.state == ReviewState.REJECTED:
            ctx.output.approved = False
            raise ApprovalDenied(
                f"Pull request #{task.pr_number} rejected" + (f": {review.reason}" if review.reason else ""),
                {"pr_number": task.pr_number},
            )

        ctx.output.approved = True
        sha = await self._call("vcs", vcs.merge(task.pr_number))
        if not isinstance(sha, str) or not sha:
            raise CollaboratorFailure("vcs", f"merge of PR #{task.pr_number} returned no commit")
        ctx.output.merge_sha = sha
        ctx.updates["commit_sha"] = sha
        logger.info(f"Task {task.id} PR #{task.pr_number} merged into {self.config.develop_branch}")
        return Advance(TaskStatus.DEPLOYING_STAGING)

    async def _deploying_staging(self, task: Task, ctx: StageContext) -> Advance:
        return await self.deployment.deploy(task, Environment.STAGING, ctx)

    async def _observing_staging(self, task: Task, ctx: StageContext) -> Advance:
        return await self.deployment.observe(task, Environment.STAGING, ctx)

    async def _deploying_production(self, task: Task, ctx: StageContext) -> Advance:
        return await self.deployment.deploy(task, Environment.PRODUCTION, ctx)

    async def _observing_production(self, task: Task, ctx: StageContext) -> Advance:
        return await self.deployment.observe(task, Environment.PRODUCTION, ctx)

    async def _commit(self, branch: str, patch: Patch, message: str) -> str:
        sha = await self._call("vcs", self.collaborators.vcs.commit(branch, patch, message))
        if not isinstance(sha, str) or not sha:
            raise CollaboratorFailure("vcs", f"commit on {branch} returned no sha")
        return sha


StageHandler = Callable[[TaskStateMachine, Task, StageContext], Awaitable[Advance]]

STAGE_HANDLERS: Dict[Stage, StageHandler] = {
    Stage.RESEARCH: TaskStateMachine._research,
    Stage.PLANNING: TaskStateMachine._planning,
    Stage.AWAITING_APPROVAL: TaskStateMachine._awaiting_approval,
    Stage.DEVELOPING: TaskStateMachine._developing,
    Stage.TESTING: TaskStateMachine._testing,
    Stage.CI_FIXING: TaskStateMachine._ci_fixing,
    Stage.REVIEWING: TaskStateMachine._reviewing,
    Stage.DEPLOYING_STAGING: TaskStateMachine._deploying_staging,
    Stage.OBSERVING_STAGING: TaskStateMachine._observing_staging,
    Stage.DEPLOYING_PRODUCTION: TaskStateMachine._deploying_production,
    Stage.OBSERVING_PRODUCTION: TaskStateMachine._observing_production,
}

assert set(STAGE_HANDLERS) == set(Stage), "every stage needs exactly one handler"

# autoship/pipeline/deployment.py
"""
DeploymentController - deploys a Task's change to an environment, watches
the live error rate for the observation window, and rolls back on a breach.

Rollback is a compensating action: a Task that was rolled back is finished
and never re-enters a deploy stage.
"""

import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List

from ..config import PipelineConfig, DeployStrategy
from ..errors import CollaboratorFailure, ObservationThresholdBreach
from ..models.task import TaskStatus, AttemptStatus
from ..payloads import DeployResult, RollbackResult, RollbackInfo, PollSample
from .context import StageContext, Advance, call_collaborator, expect

logger = logging.getLogger("autoship.pipeline.deployment")


class Environment(str, Enum):
    STAGING = "staging"
    PRODUCTION = "production"


class DeploymentController:

    def __init__(self, config: PipelineConfig, deployer, metrics, vcs, clock):
        self.config = config
        self.deployer = deployer
        self.metrics = metrics
        self.vcs = vcs
        self.clock = clock

    # =========================================================================
    # Artifacts
    # =========================================================================

    def branch_for(self, environment: Environment) -> str:
        if environment == Environment.PRODUCTION:
            return self.config.production_branch
        return self.config.develop_branch

    def artifact_for(self, environment: Environment, commit_sha: Optional[str]) -> str:
        """What the deploy strategy ships: a branch revision or an image tag"""
        if not commit_sha:
            raise CollaboratorFailure("deployer", f"No commit to deploy to {environment.value}")
        if self.config.deploy_strategy == DeployStrategy.DOCKER:
            return f"{self.config.docker_image}:{commit_sha[:12]}"
        return f"{self.branch_for(environment)}@{commit_sha}"

    # =========================================================================
    # Deploy
    # =========================================================================

    async def deploy(self, task, environment: Environment, ctx: StageContext) -> Advance:
        """
        Ship the Task's change to an environment.

        Staging failures propagate as CollaboratorFailure so the caller can
        retry under the dev budget. Production failures are terminal and
        compensated here.
        """
        output = ctx.output
        timeout = self.config.collaborator_timeout_seconds

        try:
            commit_sha = task.commit_sha
            if environment == Environment.PRODUCTION:
                commit_sha = await call_collaborator(
                    "vcs",
                    self.vcs.promote(self.config.develop_branch, self.config.production_branch),
                    timeout,
                )
                if not isinstance(commit_sha, str) or not commit_sha:
                    raise CollaboratorFailure("vcs", "promote returned no commit")
                ctx.updates["commit_sha"] = commit_sha

            artifact = self.artifact_for(environment, commit_sha)
            output.artifact = artifact
            logger.info(
                f"Deploying task {task.id} to {environment.value} | "
                f"strategy={self.config.deploy_strategy.value} | artifact={artifact}"
            )

            result = expect(
                DeployResult,
                await call_collaborator(
                    "deployer",
                    self.deployer.deploy(self.config.deploy_strategy.value, environment.value, artifact),
                    timeout,
                ),
                "deployer",
            )
        except CollaboratorFailure as e:
            if environment == Environment.STAGING:
                raise
            logger.error(f"Production deploy failed for task {task.id}: {e.message}")
            return await self._compensate_failed_production(task, ctx, e)

        output.artifact = result.artifact
        output.previous_artifact = result.previous_artifact
        logger.info(f"Task {task.id} deployed to {environment.value} | artifact={result.artifact}")

        if environment == Environment.STAGING:
            return Advance(TaskStatus.OBSERVING_STAGING)

        if task.deployed_at is None:
            ctx.updates["deployed_at"] = self.clock.now()
        return Advance(TaskStatus.OBSERVING_PRODUCTION)

    async def _compensate_failed_production(self, task, ctx: StageContext, error: CollaboratorFailure) -> Advance:
        rollbacks = await self.compensate(task, ctx, in_flight=Environment.PRODUCTION)
        ctx.output.rollbacks.extend(rollbacks)
        # rolled_back only when an earlier deployment of this Task was undone
        if not ctx.deployed_environments or not all(r.succeeded for r in rollbacks):
            return Advance(TaskStatus.FAILED, AttemptStatus.FAILED, error)
        self.stamp_rollback(task, ctx)
        return Advance(TaskStatus.ROLLED_BACK, AttemptStatus.FAILED, error)

    # =========================================================================
    # Observe
    # =========================================================================

    async def observe(self, task, environment: Environment, ctx: StageContext) -> Advance:
        """
        Poll the error rate for the environment's observation window.

        The window is measured on the monotonic clock; the first poll happens
        one poll interval after the window opens.
        """
        output = ctx.output
        window = self.config.observation_windows[environment.value]
        interval = self.config.observation_poll_seconds
        threshold = self.config.error_rate_threshold
        poll_timeout = min(self.config.collaborator_timeout_seconds, interval)
        output.window_seconds = window

        start = self.clock.monotonic()
        deadline = start + window
        consecutive_failures = 0
        breach: Optional[ObservationThresholdBreach] = None

        logger.info(
            f"Observing task {task.id} on {environment.value} | "
            f"window={window}s | interval={interval}s | threshold={threshold}%"
        )

        while True:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                break
            await self.clock.sleep(min(interval, remaining))
            elapsed = round(self.clock.monotonic() - start, 3)

            try:
                rate = float(await call_collaborator(
                    "metrics",
                    self.metrics.error_rate(environment.value, ctx.started_at),
                    poll_timeout,
                ))
                if not math.isfinite(rate):
                    raise ValueError(f"non-finite error rate {rate}")
            except (CollaboratorFailure, TypeError, ValueError) as e:
                consecutive_failures += 1
                output.polls.append(PollSample(elapsed_seconds=elapsed, failed=True))
                logger.warning(
                    f"Error-rate poll failed for task {task.id} on {environment.value} "
                    f"({consecutive_failures}/{self.config.max_metric_failures}): {e}"
                )
                if consecutive_failures > self.config.max_metric_failures:
                    breach = ObservationThresholdBreach(
                        environment.value, None, threshold,
                        f"no error-rate data from {environment.value} for "
                        f"{consecutive_failures} consecutive polls",
                    )
                    break
                continue

            consecutive_failures = 0
            output.polls.append(PollSample(elapsed_seconds=elapsed, error_rate=rate))
            if rate > threshold:
                breach = ObservationThresholdBreach(environment.value, rate, threshold)
                break

        if breach is not None:
            output.breach = True
            logger.warning(f"Observation breach for task {task.id}: {breach.message}")
            return await self._roll_back_after_breach(task, environment, ctx, breach)

        logger.info(f"Task {task.id} stable on {environment.value} after {window}s")
        if environment == Environment.STAGING:
            return Advance(TaskStatus.DEPLOYING_PRODUCTION)

        if task.deployed_at is None:
            ctx.updates["deployed_at"] = self.clock.now()
        return Advance(TaskStatus.SUCCEEDED)

    async def _roll_back_after_breach(
        self, task, environment: Environment, ctx: StageContext, breach: ObservationThresholdBreach
    ) -> Advance:
        info = await self.roll_back(task, environment, ctx.known_good.get(environment.value))
        ctx.output.rollbacks.append(info)
        if not info.succeeded:
            return Advance(TaskStatus.FAILED, AttemptStatus.FAILED, breach)
        self.stamp_rollback(task, ctx)
        return Advance(TaskStatus.ROLLED_BACK, AttemptStatus.FAILED, breach)

    # =========================================================================
    # Rollback
    # =========================================================================

    async def roll_back(self, task, environment: Environment, known_good: Optional[str]) -> RollbackInfo:
        """Revert an environment to its known-good artifact; never raises"""
        revert_migrations = self.config.rollback_migrations
        logger.warning(
            f"Rolling back task {task.id} on {environment.value} | "
            f"to={known_good or 'last-known-good'} | revert_migrations={revert_migrations}"
        )
        try:
            result = expect(
                RollbackResult,
                await call_collaborator(
                    "deployer",
                    self.deployer.rollback(environment.value, known_good, revert_migrations),
                    self.config.collaborator_timeout_seconds,
                ),
                "deployer",
            )
        except CollaboratorFailure as e:
            logger.error(f"Rollback of task {task.id} on {environment.value} failed: {e.message}")
            return RollbackInfo(
                environment=environment.value,
                migration_revert_requested=revert_migrations,
                succeeded=False,
                error=e.message,
            )

        return RollbackInfo(
            environment=environment.value,
            restored_artifact=result.restored_artifact or known_good,
            migration_revert_requested=revert_migrations,
            migrations_reverted=revert_migrations and result.migrations_reverted,
            succeeded=True,
        )

    async def compensate(
        self, task, ctx: StageContext, in_flight: Optional[Environment] = None
    ) -> List[RollbackInfo]:
        """
        Roll back every environment this Task reached, production first.

        in_flight names an environment whose deploy may have been partially
        applied when the attempt stopped.
        """
        reached = {Environment(env) for env in ctx.deployed_environments}
        if in_flight is not None:
            reached.add(in_flight)
        order = [env for env in (Environment.PRODUCTION, Environment.STAGING) if env in reached]

        results = []
        for environment in order:
            results.append(await self.roll_back(task, environment, ctx.known_good.get(environment.value)))
        return results

    def stamp_rollback(self, task, ctx: StageContext):
        """rolled_back_at only exists for a Task that reached production"""
        deployed_at = ctx.updates.get("deployed_at") or task.deployed_at
        if deployed_at is None:
            return
        ctx.updates["rolled_back_at"] = rollback_timestamp(self.clock.now(), deployed_at)


def rollback_timestamp(now: datetime, deployed_at: datetime) -> datetime:
    """rolled_back_at is strictly later than deployed_at"""
    if now > deployed_at:
        return now
    return deployed_at + timedelta(microseconds=1)

# tests/conftest.py
"""
pytest configuration for the autoship test suite
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from autoship.collaborators import Collaborators
from autoship.config import PipelineConfig, TriggerScope
from autoship.models import create_session_factory, init_db
from autoship.models.task import RiskLevel
from autoship.payloads import (
    ResearchResult,
    Plan,
    Patch,
    CheckReport,
    PullRequest,
    ReviewDecision,
    ReviewState,
    DeployResult,
    RollbackResult,
    ApprovalDecision,
    Decision,
)
from autoship.pipeline import StageRecorder, TaskStateMachine, TaskStore

DEV_SHA = "a" * 40
MERGE_SHA = "b" * 40
PROMOTE_SHA = "c" * 40


class FakeClock:
    """Wall and monotonic time that only move when told to"""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self._now = start
        self._monotonic = 1000.0
        self.sleeps = []

    def now(self) -> datetime:
        self._now += timedelta(milliseconds=1)
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float):
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config(tmp_path) -> PipelineConfig:
    return PipelineConfig(
        allowed_triggers=TriggerScope.ALL,
        staging_observation_minutes=1,
        production_observation_minutes=2,
        observation_poll_seconds=30,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory():
    engine, factory = create_session_factory("sqlite://")
    init_db(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory, clock) -> TaskStore:
    return TaskStore(session_factory, clock)


@pytest.fixture
def recorder() -> StageRecorder:
    return StageRecorder()


def low_risk_plan(**overrides) -> Plan:
    fields = dict(
        summary="Add a health check endpoint",
        steps=["add controller", "register route"],
        risk_level=RiskLevel.LOW,
        affected_paths=["app/Http/Controllers/HealthController.php", "routes/web.php"],
    )
    fields.update(overrides)
    return Plan(**fields)


@pytest.fixture
def collaborators() -> Collaborators:
    """Collaborators that take every Task straight to success"""
    planner = AsyncMock()
    planner.research.return_value = ResearchResult(summary="Laravel app with a web router")
    planner.plan.return_value = low_risk_plan()

    code_generator = AsyncMock()
    code_generator.generate.return_value = Patch(
        summary="HealthController and route",
        changed_paths=["app/Http/Controllers/HealthController.php", "routes/web.php"],
    )

    test_runner = AsyncMock()
    test_runner.run.return_value = CheckReport(passed=True, summary="42 passed")

    ci = AsyncMock()
    ci.status.return_value = CheckReport(passed=True, summary="green")

    vcs = AsyncMock()
    vcs.create_branch.return_value = None
    vcs.commit.return_value = DEV_SHA
    vcs.open_pull_request.return_value = PullRequest(number=17, url="https://git.example/pr/17")
    vcs.review_status.return_value = ReviewDecision(state=ReviewState.APPROVED)
    vcs.merge.return_value = MERGE_SHA
    vcs.promote.return_value = PROMOTE_SHA

    deployer = AsyncMock()
    deployer.deploy.side_effect = lambda strategy, environment, artifact: DeployResult(
        artifact=artifact, previous_artifact=f"{environment}-release-41"
    )
    deployer.rollback.side_effect = lambda environment, to_known_good, revert_migrations: RollbackResult(
        restored_artifact=to_known_good, migrations_reverted=revert_migrations
    )

    metrics = AsyncMock()
    metrics.error_rate.return_value = 0.4

    approvals = AsyncMock()
    approvals.request_decision.return_value = ApprovalDecision(decision=Decision.APPROVE, actor="owner")

    return Collaborators(
        planner=planner,
        code_generator=code_generator,
        test_runner=test_runner,
        ci=ci,
        vcs=vcs,
        deployer=deployer,
        metrics=metrics,
        approvals=approvals,
    )


@pytest.fixture
def machine(config, store, recorder, collaborators, clock) -> TaskStateMachine:
    return TaskStateMachine(config, store, recorder, collaborators, clock=clock)


@pytest.fixture
def make_task(store, config):
    def _make(intent: str = "Add a /health endpoint that reports DB status", **trigger):
        payload = {"intent": intent, "requested_by": "owner", "channel": "telegram"}
        payload.update(trigger)
        return store.create(payload, config)
    return _make


def stages_of(store, task_id):
    return [(a.stage.value, a.status.value) for a in store.attempts(task_id)]

# tests/test_api.py
"""
Test suite for the ops API

Tests:
1. Task trigger, listing, inspection
2. Decisions and cancellation over HTTP
3. API key enforcement
4. Correlation id header
"""

import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from autoship.api import build_runner, create_app
from autoship.collaborators import QueuedApprovalClient
from autoship.config import TriggerScope
from autoship.models.task import RiskLevel
from autoship.pipeline import InMemoryTaskClaims, PipelineRunner, RedisTaskClaims

from conftest import low_risk_plan


@pytest.fixture
def runner(config, store, machine, collaborators):
    approvals = QueuedApprovalClient()
    collaborators.approvals = approvals
    return PipelineRunner(
        config, store, machine, claims=InMemoryTaskClaims(), approvals=approvals, owner="worker-api"
    )


@pytest_asyncio.fixture
async def client(config, runner):
    app = create_app(config, runner, resume_on_startup=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await runner.shutdown()


@pytest_asyncio.fixture
async def secured_client(config, runner):
    app = create_app(config.with_overrides(api_key="s3cret-key"), runner, resume_on_startup=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await runner.shutdown()


@pytest.mark.asyncio
class TestTasks:

    async def test_trigger_creates_and_runs_task(self, client, runner):
        res = await client.post("/tasks", json={"intent": "Add a /health endpoint", "requested_by": "owner"})

        assert res.status_code == 201
        body = res.json()
        assert body["status"] == "research"
        result = await runner.wait(body["id"])
        assert result.status.value == "succeeded"

        res = await client.get(f"/tasks/{body['id']}")
        assert res.status_code == 200
        assert res.json()["status"] == "succeeded"
        assert res.json()["active"] is False
        assert res.json()["pr_number"] == 17

    async def test_stage_ledger(self, client, runner, make_task):
        task = make_task()
        runner.start(task.id)
        await runner.wait(task.id)

        res = await client.get(f"/tasks/{task.id}/stages")

        stages = [a["stage"] for a in res.json()]
        assert stages[0] == "research"
        assert stages[-1] == "observing_production"
        assert [a["sequence"] for a in res.json()] == list(range(1, len(stages) + 1))

    async def test_malformed_trigger(self, client, store):
        res = await client.post("/tasks", json={"intent": "", "requested_by": "owner"})

        assert res.status_code == 422
        assert store.list() == []

    async def test_disallowed_trigger(self, client, runner, config):
        runner.config = config.with_overrides(allowed_triggers=TriggerScope.NONE)

        res = await client.post("/tasks", json={"intent": "Add a /health endpoint", "requested_by": "owner"})

        assert res.status_code == 403
        assert res.json()["detail"] == "Pipeline triggers are disabled"

    async def test_list_filters(self, client, make_task):
        make_task("Fix the footer")
        make_task("Fix the header", requested_by="bob")

        res = await client.get("/tasks", params={"requested_by": "bob"})
        assert [t["intent"] for t in res.json()] == ["Fix the header"]

        res = await client.get("/tasks", params={"status": "research", "limit": 1})
        assert len(res.json()) == 1

        res = await client.get("/tasks", params={"status": "exploded"})
        assert res.status_code == 422

    async def test_unknown_task(self, client):
        assert (await client.get("/tasks/01UNKNOWN0000000000000000")).status_code == 404
        assert (await client.get("/tasks/01UNKNOWN0000000000000000/stages")).status_code == 404

    async def test_health(self, client):
        res = await client.get("/health")

        assert res.status_code == 200
        body = res.json()
        assert body["status"] == "healthy"
        assert body["owner"] == "worker-api"
        assert body["awaiting_decision"] == []


@pytest.mark.asyncio
class TestOperatorActions:

    async def test_decision_resumes_parked_task(self, client, runner, make_task, collaborators):
        collaborators.planner.plan.return_value = low_risk_plan(risk_level=RiskLevel.HIGH)
        task = make_task()
        runner.start(task.id)
        for _ in range(2000):
            if runner.approvals.reason_for(task.id):
                break
            await asyncio.sleep(0)

        health = (await client.get("/health")).json()
        assert health["awaiting_decision"] == [task.id]

        res = await client.post(
            f"/tasks/{task.id}/decision",
            json={"decision": "approve", "actor": "owner", "comment": "ship it"},
        )

        assert res.status_code == 200
        assert res.json() == {"task_id": task.id, "decision": "approve", "delivered": True}
        result = await runner.wait(task.id)
        assert result.status.value == "succeeded"

    async def test_decision_for_task_not_waiting(self, client, make_task):
        task = make_task()

        res = await client.post(f"/tasks/{task.id}/decision", json={"decision": "approve"})

        assert res.status_code == 409

    async def test_decision_validation(self, client, make_task):
        task = make_task()

        res = await client.post(f"/tasks/{task.id}/decision", json={"decision": "maybe"})

        assert res.status_code == 422

    async def test_decision_unknown_task(self, client):
        res = await client.post("/tasks/01UNKNOWN0000000000000000/decision", json={"decision": "reject"})
        assert res.status_code == 404

    async def test_cancel(self, client, make_task):
        task = make_task()

        res = await client.post(f"/tasks/{task.id}/cancel", json={"actor": "ops", "reason": "duplicate"})

        assert res.status_code == 200
        assert res.json()["status"] == "failed"
        assert res.json()["error"] == "TaskCancelled: Cancelled by ops: duplicate"

    async def test_cancel_claimed_elsewhere(self, client, runner, make_task):
        task = make_task()
        await runner.claims.acquire(task.id, "worker-other")

        res = await client.post(f"/tasks/{task.id}/cancel", json={"actor": "ops"})

        assert res.status_code == 409

    async def test_cancel_unknown_task(self, client):
        res = await client.post("/tasks/01UNKNOWN0000000000000000/cancel", json={"actor": "ops"})
        assert res.status_code == 404

    async def test_admin_resume(self, client, runner, make_task):
        task = make_task()

        res = await client.post("/admin/resume")

        assert res.json() == {"resumed": [task.id], "count": 1}
        await runner.wait(task.id)


@pytest.mark.asyncio
class TestAuthAndHeaders:

    async def test_missing_key(self, secured_client):
        res = await secured_client.get("/tasks")
        assert res.status_code == 401

    async def test_wrong_key(self, secured_client):
        res = await secured_client.get("/tasks", headers={"X-API-Key": "guess"})
        assert res.status_code == 403

    async def test_valid_key(self, secured_client):
        res = await secured_client.get("/tasks", headers={"X-API-Key": "s3cret-key"})
        assert res.status_code == 200

    async def test_health_needs_no_key(self, secured_client):
        assert (await secured_client.get("/health")).status_code == 200

    async def test_correlation_id_echoed(self, client):
        res = await client.get("/health", headers={"X-Correlation-ID": "corr-from-caller"})
        assert res.headers["X-Correlation-ID"] == "corr-from-caller"

    async def test_correlation_id_minted(self, client):
        res = await client.get("/health")
        assert res.headers["X-Correlation-ID"].startswith("corr-")


class TestBuildRunner:

    def test_wires_in_memory_components(self, config, collaborators):
        runner = build_runner(config.with_overrides(database_url="sqlite://"), collaborators)

        assert isinstance(runner.claims, InMemoryTaskClaims)
        assert runner.approvals is None
        assert runner.store.list() == []

    def test_queued_approvals_are_exposed(self, config, collaborators):
        collaborators.approvals = QueuedApprovalClient()

        runner = build_runner(config.with_overrides(database_url="sqlite://"), collaborators)

        assert runner.approvals is collaborators.approvals
        assert runner.state_machine.collaborators is collaborators

    def test_redis_claims_with_in_process_approvals_refused(self, config, collaborators):
        collaborators.approvals = QueuedApprovalClient()
        shared = config.with_overrides(database_url="sqlite://", redis_url="redis://localhost:6379/0")

        with pytest.raises(ValueError, match="in-process"):
            build_runner(shared, collaborators)

    def test_redis_claims_with_external_approvals(self, config, collaborators):
        shared = config.with_overrides(database_url="sqlite://", redis_url="redis://localhost:6379/0")

        runner = build_runner(shared, collaborators)

        assert isinstance(runner.claims, RedisTaskClaims)
        assert runner.approvals is None

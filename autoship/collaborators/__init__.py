# autoship/collaborators/__init__.py
"""
Interfaces of the external collaborators the orchestrator awaits.

Collaborators report failure by raising; the state machine wraps anything
they raise into CollaboratorFailure.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Protocol, runtime_checkable

from ..payloads import (
    ResearchResult,
    Plan,
    Patch,
    CheckReport,
    PullRequest,
    ReviewDecision,
    DeployResult,
    RollbackResult,
    ApprovalDecision,
)
from .approval import QueuedApprovalClient
from .metrics import HttpMetricsClient


@runtime_checkable
class Planner(Protocol):
    async def research(self, intent: str) -> ResearchResult: ...

    async def plan(self, intent: str, research: ResearchResult) -> Plan: ...


@runtime_checkable
class CodeGenerator(Protocol):
    async def generate(
        self, intent: str, plan: Plan, prior_failure: Optional[Dict[str, Any]]
    ) -> Patch: ...


@runtime_checkable
class TestRunner(Protocol):
    async def run(self, branch: str, commit_sha: str) -> CheckReport: ...


@runtime_checkable
class CIClient(Protocol):
    async def status(self, branch: str, commit_sha: str) -> CheckReport: ...


@runtime_checkable
class VersionControlClient(Protocol):
    async def create_branch(self, name: str, base: str) -> None: ...

    async def commit(self, branch: str, patch: Patch, message: str) -> str: ...

    async def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequest: ...

    async def review_status(self, pr_number: int) -> ReviewDecision: ...

    async def merge(self, pr_number: int) -> str: ...

    async def promote(self, source_branch: str, target_branch: str) -> str: ...


@runtime_checkable
class DeployClient(Protocol):
    async def deploy(self, strategy: str, environment: str, artifact: str) -> DeployResult: ...

    async def rollback(
        self, environment: str, to_known_good: Optional[str], revert_migrations: bool
    ) -> RollbackResult: ...


@runtime_checkable
class MetricsClient(Protocol):
    async def error_rate(self, environment: str, since: datetime) -> float: ...


@runtime_checkable
class ApprovalClient(Protocol):
    async def request_decision(self, task_id: str, reason: str) -> ApprovalDecision: ...


__all__ = [
    "Planner",
    "CodeGenerator",
    "TestRunner",
    "CIClient",
    "VersionControlClient",
    "DeployClient",
    "MetricsClient",
    "ApprovalClient",
    "QueuedApprovalClient",
    "HttpMetricsClient",
]


class Collaborators:
    """The set of collaborators one orchestrator instance talks to"""

    def __init__(
        self,
        planner: Planner,
        code_generator: CodeGenerator,
        test_runner: TestRunner,
        ci: CIClient,
        vcs: VersionControlClient,
        deployer: DeployClient,
        metrics: MetricsClient,
        approvals: ApprovalClient,
    ):
        self.planner = planner
        self.code_generator = code_generator
        self.test_runner = test_runner
        self.ci = ci
        self.vcs = vcs
        self.deployer = deployer
        self.metrics = metrics
        self.approvals = approvals


__all__.append("Collaborators")

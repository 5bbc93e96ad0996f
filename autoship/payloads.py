# autoship/payloads.py
"""
Structured payloads exchanged with collaborators and stored on StageAttempts.

Task.plan and StageAttempt.output are JSON columns; every value written to
them is one of the versioned models below, and every value read back goes
through decode_plan / decode_stage_output, which reject anything they do not
recognise as a CollaboratorFailure.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import CollaboratorFailure
from .models.task import RiskLevel, Stage

PAYLOAD_VERSION = 1


# =============================================================================
# Collaborator results
# =============================================================================

class ResearchResult(BaseModel):
    summary: str
    findings: List[str] = Field(default_factory=list)
    references: List[str] = Field(default_factory=list)


class Plan(BaseModel):
    """Output of the planning stage; risk_level is an opaque classification"""
    model_config = ConfigDict(use_enum_values=False)

    version: int = PAYLOAD_VERSION
    summary: str
    steps: List[str] = Field(default_factory=list)
    risk_level: RiskLevel
    affected_paths: List[str] = Field(default_factory=list)
    hotfix: bool = False

    @field_validator("summary")
    @classmethod
    def summary_meaningful(cls, v):
        if len(v.strip()) < 3:
            raise ValueError("Plan summary must be meaningful (>=3 characters after trimming)")
        return v.strip()


class Patch(BaseModel):
    summary: str
    changed_paths: List[str]
    diff: str = ""


class CheckReport(BaseModel):
    """Result from the test runner or CI"""
    passed: bool
    summary: str = ""
    diagnostics: Dict[str, Any] = Field(default_factory=dict)


class PullRequest(BaseModel):
    number: int
    url: str


class ReviewState(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(BaseModel):
    state: ReviewState
    reason: str = ""


class DeployResult(BaseModel):
    artifact: str
    previous_artifact: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class RollbackResult(BaseModel):
    restored_artifact: Optional[str] = None
    migrations_reverted: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    OVERRIDE = "override"


class ApprovalDecision(BaseModel):
    decision: Decision
    actor: Optional[str] = None
    comment: str = ""


# =============================================================================
# Stage outputs
# =============================================================================

class ErrorInfo(BaseModel):
    error_code: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


class StageOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = PAYLOAD_VERSION
    error: Optional[ErrorInfo] = None
    interrupted: bool = False
    cancelled: bool = False


class ResearchOutput(StageOutput):
    research: Optional[ResearchResult] = None


class PlanningOutput(StageOutput):
    plan: Optional[Plan] = None
    blocked_paths: List[str] = Field(default_factory=list)
    gate: Optional[str] = None


class ApprovalOutput(StageOutput):
    reason: str = ""
    decision: Optional[Decision] = None
    actor: Optional[str] = None
    comment: str = ""
    override: bool = False


class DevelopingOutput(StageOutput):
    branch: Optional[str] = None
    patch_summary: Optional[str] = None
    changed_paths: List[str] = Field(default_factory=list)
    blocked_paths: List[str] = Field(default_factory=list)
    commit_sha: Optional[str] = None
    override_applied: bool = False


class TestingOutput(StageOutput):
    passed: Optional[bool] = None
    summary: str = ""
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None


class CiOutput(StageOutput):
    passed: Optional[bool] = None
    summary: str = ""
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    fix_commit_sha: Optional[str] = None


class ReviewOutput(StageOutput):
    approved: Optional[bool] = None
    reason: str = ""
    merge_sha: Optional[str] = None


class RollbackInfo(BaseModel):
    environment: str
    restored_artifact: Optional[str] = None
    migration_revert_requested: bool = False
    migrations_reverted: bool = False
    succeeded: bool = True
    error: Optional[str] = None


class DeployOutput(StageOutput):
    environment: str
    strategy: str
    artifact: Optional[str] = None
    previous_artifact: Optional[str] = None
    rollbacks: List[RollbackInfo] = Field(default_factory=list)


class PollSample(BaseModel):
    elapsed_seconds: float
    error_rate: Optional[float] = None
    failed: bool = False


class ObservationOutput(StageOutput):
    environment: str
    window_seconds: int = 0
    polls: List[PollSample] = Field(default_factory=list)
    breach: bool = False
    rollbacks: List[RollbackInfo] = Field(default_factory=list)


STAGE_OUTPUT_TYPES: Dict[Stage, Type[StageOutput]] = {
    Stage.RESEARCH: ResearchOutput,
    Stage.PLANNING: PlanningOutput,
    Stage.AWAITING_APPROVAL: ApprovalOutput,
    Stage.DEVELOPING: DevelopingOutput,
    Stage.TESTING: TestingOutput,
    Stage.CI_FIXING: CiOutput,
    Stage.REVIEWING: ReviewOutput,
    Stage.DEPLOYING_STAGING: DeployOutput,
    Stage.OBSERVING_STAGING: ObservationOutput,
    Stage.DEPLOYING_PRODUCTION: DeployOutput,
    Stage.OBSERVING_PRODUCTION: ObservationOutput,
}

assert set(STAGE_OUTPUT_TYPES) == set(Stage), "every stage needs an output type"


def output_type_for(stage) -> Type[StageOutput]:
    try:
        return STAGE_OUTPUT_TYPES[Stage(stage)]
    except (KeyError, ValueError):
        raise CollaboratorFailure("payloads", f"No output type for stage {stage!r}")


def decode_stage_output(stage, data: Optional[Dict[str, Any]]) -> StageOutput:
    """Decode a stored StageAttempt.output; anything unrecognised is a CollaboratorFailure"""
    model = output_type_for(stage)
    stage = Stage(stage).value
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CollaboratorFailure("payloads", f"Output for {stage} is not an object")
    version = data.get("version", PAYLOAD_VERSION)
    if version != PAYLOAD_VERSION:
        raise CollaboratorFailure("payloads", f"Unsupported output version {version!r} for {stage}")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise CollaboratorFailure("payloads", f"Malformed output for {stage}: {e.error_count()} error(s)", e)


def decode_plan(data: Optional[Dict[str, Any]]) -> Plan:
    if not isinstance(data, dict):
        raise CollaboratorFailure("payloads", "Task has no structured plan")
    version = data.get("version", PAYLOAD_VERSION)
    if version != PAYLOAD_VERSION:
        raise CollaboratorFailure("payloads", f"Unsupported plan version {version!r}")
    try:
        return Plan.model_validate(data)
    except PydanticValidationError as e:
        raise CollaboratorFailure("payloads", f"Malformed plan: {e.error_count()} error(s)", e)


def dump(model: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for a JSON column"""
    return model.model_dump(mode="json")

# autoship/errors.py
"""
Pipeline error taxonomy.

Every error carries a stable error_code and a context dict so that the
Task.error field and API responses stay uniform regardless of which
collaborator failed.
"""

from typing import Optional, Dict, Any, Iterable


class PipelineError(Exception):
    """Base error for the orchestration core"""

    error_code = "PIPELINE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def task_error(self) -> str:
        """Text stored on Task.error"""
        return f"{type(self).__name__}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(PipelineError):
    """Malformed or disallowed trigger"""
    error_code = "VALIDATION_ERROR"


class ProtectedPathViolation(PipelineError):
    """A change set touches a protected path"""
    error_code = "PROTECTED_PATH_VIOLATION"

    def __init__(self, matched: Iterable[str], message: Optional[str] = None):
        self.matched = sorted(set(matched))
        super().__init__(
            message or f"Change touches protected paths: {', '.join(self.matched)}",
            {"matched_prefixes": self.matched},
        )


class ApprovalDenied(PipelineError):
    """A human rejected the Task, or no decision arrived in time"""
    error_code = "APPROVAL_DENIED"


class IterationLimitExceeded(PipelineError):
    """A retry budget is exhausted; escalate to a human"""
    error_code = "ITERATION_LIMIT_EXCEEDED"

    def __init__(self, counter: str, limit: int):
        self.counter = counter
        self.limit = limit
        super().__init__(
            f"{counter} budget exhausted (limit {limit})",
            {"counter": counter, "limit": limit},
        )


class CollaboratorFailure(PipelineError):
    """Wraps any error raised by an external collaborator"""
    error_code = "COLLABORATOR_FAILURE"

    def __init__(
        self,
        collaborator: str,
        message: str,
        original_error: Optional[BaseException] = None,
        diagnostics: Optional[Dict[str, Any]] = None,
    ):
        self.collaborator = collaborator
        self.original_error = original_error
        self.diagnostics = diagnostics or {}
        context = {"collaborator": collaborator}
        if original_error is not None:
            context["original_error"] = type(original_error).__name__
        super().__init__(message, context)


class ObservationThresholdBreach(PipelineError):
    """Live error rate crossed the threshold during an observation window"""
    error_code = "OBSERVATION_THRESHOLD_BREACH"

    def __init__(self, environment: str, error_rate: Optional[float], threshold: int, reason: Optional[str] = None):
        self.environment = environment
        self.error_rate = error_rate
        self.threshold = threshold
        if reason is None:
            reason = f"error rate {error_rate}% exceeded {threshold}% on {environment}"
        super().__init__(
            reason,
            {"environment": environment, "error_rate": error_rate, "threshold": threshold},
        )


class InvalidTransitionError(PipelineError):
    """Raised when a status change is not an edge of the transition graph"""
    error_code = "INVALID_TRANSITION"

    def __init__(self, task_id: str, from_status, to_status):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for {task_id}: {from_status.value} → {to_status.value}",
            {"from": from_status.value, "to": to_status.value},
        )


class TaskNotFound(PipelineError):
    error_code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found", {"task_id": task_id})


class ClaimUnavailable(PipelineError):
    """Another worker currently owns the Task"""
    error_code = "CLAIM_UNAVAILABLE"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} is owned by another worker", {"task_id": task_id})


class StageRecordError(PipelineError):
    """Append-only ledger rule violated"""
    error_code = "STAGE_RECORD_ERROR"


class TaskCancelled(PipelineError):
    """An operator cancelled the Task"""
    error_code = "TASK_CANCELLED"

    def __init__(self, actor: str, reason: str):
        self.actor = actor
        self.reason = reason
        super().__init__(f"Cancelled by {actor}: {reason}", {"actor": actor, "reason": reason})

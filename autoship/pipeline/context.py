# autoship/pipeline/context.py
"""
Per-attempt execution context shared by the state machine and the
deployment controller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Awaitable, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import PipelineError, CollaboratorFailure
from ..models.task import Stage, TaskStatus, AttemptStatus
from ..payloads import StageOutput, ResearchResult

logger = logging.getLogger("autoship.pipeline.context")

M = TypeVar("M", bound=BaseModel)


@dataclass
class PriorAttempt:
    """Snapshot of the attempt recorded just before the current one"""
    stage: Stage
    status: AttemptStatus
    output: StageOutput

    @property
    def is_genuine_failure(self) -> bool:
        """Failed on its own, not by interruption or cancellation"""
        return (
            self.status == AttemptStatus.FAILED
            and not self.output.interrupted
            and not self.output.cancelled
        )


@dataclass
class StageContext:
    task_id: str
    stage: Stage
    attempt_id: str
    started_at: datetime
    output: StageOutput
    prior: Optional[PriorAttempt] = None
    has_override: bool = False
    blocked_paths: List[str] = field(default_factory=list)
    research: Optional[ResearchResult] = None
    deployed_environments: List[str] = field(default_factory=list)
    known_good: Dict[str, Optional[str]] = field(default_factory=dict)
    # Task fields to write when the attempt completes, success or not
    updates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Advance:
    """How a finished attempt moves its Task"""
    next_status: TaskStatus
    attempt_status: AttemptStatus = AttemptStatus.SUCCEEDED
    error: Optional[PipelineError] = None
    retry_counter: Optional[str] = None


async def call_collaborator(name: str, awaitable: Awaitable, timeout: Optional[float]):
    """
    Await a collaborator, bounding it in time and normalising its errors.

    Raises:
        CollaboratorFailure: On timeout or any error the collaborator raises
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise CollaboratorFailure(name, f"{name} timed out after {timeout}s", e)
    except CollaboratorFailure:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise CollaboratorFailure(name, str(e) or type(e).__name__, e)


def expect(model: Type[M], value: Any, collaborator: str) -> M:
    """
    Coerce a collaborator result to its payload type.

    Raises:
        CollaboratorFailure: If the result cannot be decoded
    """
    if isinstance(value, model):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        try:
            return model.model_validate(value)
        except PydanticValidationError as e:
            raise CollaboratorFailure(
                collaborator,
                f"{collaborator} returned a malformed {model.__name__}: {e.error_count()} error(s)",
                e,
            )
    raise CollaboratorFailure(
        collaborator,
        f"{collaborator} returned {type(value).__name__}, expected {model.__name__}",
    )

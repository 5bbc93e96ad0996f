# autoship Pipeline Package
from .claims import InMemoryTaskClaims, RedisTaskClaims, new_owner_id
from .context import StageContext, Advance
from .deployment import DeploymentController, Environment
from .recorder import StageRecorder
from .runner import PipelineRunner
from .state_machine import (
    TaskStateMachine,
    VALID_TRANSITIONS,
    STAGE_HANDLERS,
    can_transition,
    transition,
)
from .store import TaskStore, TaskTrigger, authorize_trigger

__all__ = [
    "InMemoryTaskClaims",
    "RedisTaskClaims",
    "new_owner_id",
    "StageContext",
    "Advance",
    "DeploymentController",
    "Environment",
    "StageRecorder",
    "PipelineRunner",
    "TaskStateMachine",
    "VALID_TRANSITIONS",
    "STAGE_HANDLERS",
    "can_transition",
    "transition",
    "TaskStore",
    "TaskTrigger",
    "authorize_trigger",
]

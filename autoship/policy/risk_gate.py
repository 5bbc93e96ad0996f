# autoship/policy/risk_gate.py
"""
RiskGate - decide auto-approval from a risk classification.

Levels are totally ordered none < low < medium < high; a Task is
auto-approved iff its risk is at or below the configured ceiling, and a
"none" ceiling never auto-approves.
"""

from enum import Enum
from typing import Union

from ..config import ApprovalCeiling
from ..models.task import RiskLevel

_ORDER = {
    "none": 0,
    "low": 1,
    "medium": 2,
    "high": 3,
}


class GateDecision(str, Enum):
    AUTO_APPROVE = "auto_approve"
    REQUIRE_HUMAN = "require_human"


def _rank(level: Union[str, Enum]) -> int:
    value = level.value if isinstance(level, Enum) else str(level)
    try:
        return _ORDER[value]
    except KeyError:
        raise ValueError(f"Unknown risk level: {value!r}")


def evaluate(risk_level: RiskLevel, ceiling: ApprovalCeiling) -> GateDecision:
    if _rank(ceiling) == 0:
        return GateDecision.REQUIRE_HUMAN
    if _rank(risk_level) == 0:
        raise ValueError("A task's risk level cannot be 'none'")
    if _rank(risk_level) <= _rank(ceiling):
        return GateDecision.AUTO_APPROVE
    return GateDecision.REQUIRE_HUMAN

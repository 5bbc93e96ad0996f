"""
Policy checks consulted by the state machine: protected paths, risk gate,
iteration budgets.
"""

from .protected_paths import ProtectedPathGuard, GuardResult, check_paths, normalize_path
from .risk_gate import GateDecision, evaluate
from .iteration_limiter import IterationLimiter

__all__ = [
    "ProtectedPathGuard",
    "GuardResult",
    "check_paths",
    "normalize_path",
    "GateDecision",
    "evaluate",
    "IterationLimiter",
]

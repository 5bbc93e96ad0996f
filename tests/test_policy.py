# tests/test_policy.py
"""
Test suite for the policy checks: ProtectedPathGuard, RiskGate,
IterationLimiter
"""

import pytest

from autoship.config import ApprovalCeiling, DEFAULT_PROTECTED_PATHS
from autoship.errors import IterationLimitExceeded
from autoship.models.task import Task, RiskLevel
from autoship.policy import (
    GateDecision,
    IterationLimiter,
    ProtectedPathGuard,
    check_paths,
    evaluate,
    normalize_path,
)


# =============================================================================
# ProtectedPathGuard
# =============================================================================

class TestProtectedPathGuard:

    @pytest.fixture
    def guard(self):
        return ProtectedPathGuard(DEFAULT_PROTECTED_PATHS)

    def test_exact_file_is_blocked(self, guard):
        result = guard.check(["config/clarabot.php"])
        assert result.blocked
        assert result.matched == ("config/clarabot.php",)

    def test_nested_under_directory_is_blocked(self, guard):
        result = guard.check(["app/Providers/AppServiceProvider.php", "scripts/deploy.sh"])
        assert result.matched == ("app/Providers/", "scripts/")

    def test_unrelated_paths_are_allowed(self, guard):
        result = guard.check(["app/Http/Controllers/HealthController.php", "config/app.php"])
        assert result.allowed
        assert result.matched == ()

    def test_prefix_must_end_at_separator(self, guard):
        assert guard.check(["scriptsfoo/run.sh", "config/clarabot.php.bak"]).allowed

    def test_file_prefix_also_matches_as_directory(self):
        result = check_paths(["bootstrap/app.php/cache.php"], ["bootstrap/app.php"])
        assert result.blocked

    def test_directory_itself_is_blocked(self, guard):
        assert guard.check(["scripts"]).blocked

    @pytest.mark.parametrize("raw", [
        "./config/clarabot.php",
        "/config/clarabot.php",
        "config//clarabot.php",
        "config\\clarabot.php",
        "  config/clarabot.php  ",
        "app/../config/clarabot.php",
    ])
    def test_paths_are_normalised_before_matching(self, guard, raw):
        assert guard.check([raw]).blocked

    def test_empty_change_set_is_allowed(self, guard):
        assert guard.check([]).allowed
        assert guard.check(["", "   "]).allowed

    def test_normalize_path_keeps_directory_marker(self):
        assert normalize_path("./app/Providers/") == "app/Providers/"
        assert normalize_path(".") == ""


# =============================================================================
# RiskGate
# =============================================================================

class TestRiskGate:

    @pytest.mark.parametrize("risk,ceiling,expected", [
        (RiskLevel.LOW, ApprovalCeiling.LOW, GateDecision.AUTO_APPROVE),
        (RiskLevel.MEDIUM, ApprovalCeiling.LOW, GateDecision.REQUIRE_HUMAN),
        (RiskLevel.HIGH, ApprovalCeiling.LOW, GateDecision.REQUIRE_HUMAN),
        (RiskLevel.LOW, ApprovalCeiling.MEDIUM, GateDecision.AUTO_APPROVE),
        (RiskLevel.MEDIUM, ApprovalCeiling.MEDIUM, GateDecision.AUTO_APPROVE),
        (RiskLevel.HIGH, ApprovalCeiling.MEDIUM, GateDecision.REQUIRE_HUMAN),
        (RiskLevel.LOW, ApprovalCeiling.NONE, GateDecision.REQUIRE_HUMAN),
    ])
    def test_decision_table(self, risk, ceiling, expected):
        assert evaluate(risk, ceiling) == expected

    def test_accepts_plain_strings(self):
        assert evaluate("low", "medium") == GateDecision.AUTO_APPROVE

    def test_unknown_level_raises(self):
        with pytest.raises(ValueError):
            evaluate("critical", ApprovalCeiling.LOW)


# =============================================================================
# IterationLimiter
# =============================================================================

class TestIterationLimiter:

    def _task(self, dev=0, ci=0):
        return Task(id="01TESTTASK0000000000000000", intent="x", dev_iterations=dev, ci_retries=ci)

    def test_records_until_ceiling(self):
        task = self._task()
        limiter = IterationLimiter(task, max_dev_iterations=2, max_ci_retries=1)

        assert limiter.record_dev_iteration() == 1
        assert limiter.record_dev_iteration() == 2
        assert not limiter.can_retry_dev()
        with pytest.raises(IterationLimitExceeded) as exc:
            limiter.record_dev_iteration()

        assert task.dev_iterations == 2
        assert exc.value.counter == "dev_iterations"
        assert exc.value.limit == 2

    def test_ci_budget_is_separate(self):
        task = self._task(dev=5)
        limiter = IterationLimiter(task, max_dev_iterations=5, max_ci_retries=2)

        assert not limiter.can_retry_dev()
        assert limiter.can_retry_ci()
        limiter.record_ci_retry()
        assert limiter.remaining() == {"dev_iterations": 0, "ci_retries": 1}

    def test_for_task_reads_config(self, config):
        limiter = IterationLimiter.for_task(self._task(), config)
        assert limiter.remaining() == {"dev_iterations": 10, "ci_retries": 2}

    def test_zero_ceiling_never_retries(self):
        limiter = IterationLimiter(self._task(), max_dev_iterations=0, max_ci_retries=0)
        assert not limiter.can_retry_dev()
        assert not limiter.can_retry_ci()
        with pytest.raises(IterationLimitExceeded):
            limiter.record_ci_retry()

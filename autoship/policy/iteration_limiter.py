# autoship/policy/iteration_limiter.py
"""
IterationLimiter - bookkeeping of a Task's retry counters against the
configured ceilings. Counters only ever grow; crossing a ceiling raises
IterationLimitExceeded instead.
"""

import logging
from typing import Dict

from ..errors import IterationLimitExceeded

logger = logging.getLogger("autoship.policy.iteration_limiter")


class IterationLimiter:

    DEV = "dev_iterations"
    CI = "ci_retries"

    def __init__(self, task, max_dev_iterations: int, max_ci_retries: int):
        self.task = task
        self.max_dev_iterations = max_dev_iterations
        self.max_ci_retries = max_ci_retries

    @classmethod
    def for_task(cls, task, config) -> "IterationLimiter":
        return cls(task, config.max_dev_iterations, config.max_ci_retries)

    def can_retry_dev(self) -> bool:
        return (self.task.dev_iterations or 0) < self.max_dev_iterations

    def can_retry_ci(self) -> bool:
        return (self.task.ci_retries or 0) < self.max_ci_retries

    def record_dev_iteration(self) -> int:
        """
        Consume one development iteration.

        Raises:
            IterationLimitExceeded: If the budget is already spent
        """
        if not self.can_retry_dev():
            raise IterationLimitExceeded(self.DEV, self.max_dev_iterations)
        self.task.dev_iterations = (self.task.dev_iterations or 0) + 1
        logger.info(
            f"Task {self.task.id} dev iteration {self.task.dev_iterations}/{self.max_dev_iterations}"
        )
        return self.task.dev_iterations

    def record_ci_retry(self) -> int:
        """
        Consume one CI retry.

        Raises:
            IterationLimitExceeded: If the budget is already spent
        """
        if not self.can_retry_ci():
            raise IterationLimitExceeded(self.CI, self.max_ci_retries)
        self.task.ci_retries = (self.task.ci_retries or 0) + 1
        logger.info(
            f"Task {self.task.id} CI retry {self.task.ci_retries}/{self.max_ci_retries}"
        )
        return self.task.ci_retries

    def remaining(self) -> Dict[str, int]:
        return {
            self.DEV: max(0, self.max_dev_iterations - (self.task.dev_iterations or 0)),
            self.CI: max(0, self.max_ci_retries - (self.task.ci_retries or 0)),
        }

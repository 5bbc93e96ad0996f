# autoship/collaborators/approval.py
"""
In-process ApprovalClient.

A Task waiting for a human parks an asyncio future here; the HTTP API (or
any other front end) resolves it with submit(). Decisions submitted while no
worker is waiting are kept and handed to the next request for that Task.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..payloads import ApprovalDecision

logger = logging.getLogger("autoship.collaborators.approval")


class QueuedApprovalClient:

    def __init__(self):
        self._waiting: Dict[str, asyncio.Future] = {}
        self._reasons: Dict[str, str] = {}
        self._ready: Dict[str, ApprovalDecision] = {}

    async def request_decision(self, task_id: str, reason: str) -> ApprovalDecision:
        if task_id in self._ready:
            return self._ready.pop(task_id)

        future = asyncio.get_running_loop().create_future()
        self._waiting[task_id] = future
        self._reasons[task_id] = reason
        logger.info(f"Task {task_id} awaiting human decision | reason={reason}")
        try:
            return await future
        finally:
            if self._waiting.get(task_id) is future:
                del self._waiting[task_id]
                self._reasons.pop(task_id, None)

    def submit(self, task_id: str, decision: ApprovalDecision) -> bool:
        """
        Deliver a decision.

        Returns:
            True if a waiting Task received it, False if it was queued
        """
        future = self._waiting.get(task_id)
        if future is not None and not future.done():
            future.set_result(decision)
            logger.info(f"Decision {decision.decision.value} delivered to task {task_id}")
            return True
        self._ready[task_id] = decision
        logger.info(f"Decision {decision.decision.value} queued for task {task_id}")
        return False

    def pending(self) -> Dict[str, str]:
        """Task id -> reason for every Task currently waiting"""
        return dict(self._reasons)

    def reason_for(self, task_id: str) -> Optional[str]:
        return self._reasons.get(task_id)

    def discard(self, task_id: str):
        """Forget queued decisions for a Task that reached a terminal state"""
        self._ready.pop(task_id, None)

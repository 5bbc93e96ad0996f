# autoship/clock.py
"""
Time source for the pipeline.

Observation windows are measured on the monotonic clock; persisted
timestamps use naive UTC wall time.
"""

import asyncio
import time
from datetime import datetime

from .models.task import utcnow


class SystemClock:
    """Real wall-clock / monotonic time and asyncio sleeping"""

    def now(self) -> datetime:
        return utcnow()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)

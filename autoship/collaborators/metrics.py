# autoship/collaborators/metrics.py
"""
HTTP MetricsClient - reads the live error rate of an environment from a
metrics service.

Expected endpoint:
    GET {base_url}/error-rate?environment=production&since=2026-01-01T00:00:00
    -> {"error_rate": 1.25}

The rate is a percentage of failed requests since the given time.
"""

import logging
import math
from datetime import datetime
from typing import Optional

import httpx

from ..errors import CollaboratorFailure

logger = logging.getLogger("autoship.collaborators.metrics")


class HttpMetricsClient:

    def __init__(self, base_url: str, timeout: float = 10.0, api_token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_token = api_token
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpMetricsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def error_rate(self, environment: str, since: datetime) -> float:
        """
        Fetch the error rate percentage for an environment.

        Raises:
            CollaboratorFailure: On transport errors or malformed responses
        """
        try:
            client = await self._get_client()
            response = await client.get(
                "/error-rate",
                params={"environment": environment, "since": since.isoformat()},
                timeout=httpx.Timeout(self.timeout),
            )
            response.raise_for_status()
            rate = float(response.json()["error_rate"])
        except httpx.TimeoutException as e:
            raise CollaboratorFailure("metrics", f"Timeout after {self.timeout}s", e)
        except httpx.HTTPStatusError as e:
            raise CollaboratorFailure(
                "metrics",
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                e,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CollaboratorFailure("metrics", f"Malformed error-rate response: {e}", e)
        except httpx.HTTPError as e:
            raise CollaboratorFailure("metrics", str(e), e)

        if not math.isfinite(rate) or rate < 0:
            raise CollaboratorFailure("metrics", f"Invalid error rate {rate}")

        logger.debug(f"error_rate environment={environment} rate={rate}")
        return rate

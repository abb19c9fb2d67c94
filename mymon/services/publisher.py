"""Push metric batches to the Open-Falcon compatible agent."""

import logging
from typing import List, Optional, Sequence

import httpx

from ..utils.errors import PublishError
from ..utils.metrics import MetricRecord


class FalconPublisher:
    """
    HTTP client for the agent's /v1/push endpoint.

    Called from pipeline worker threads, so it uses the synchronous httpx
    client. One client is shared; httpx.Client is safe across threads.
    """

    def __init__(
        self,
        agent_url: str,
        timeout: float = 5.0,
        logger: logging.Logger = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize publisher.

        Args:
            agent_url: Default push URL
            timeout: Request timeout in seconds
            logger: Optional logger instance
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.agent_url = agent_url
        self.logger = (logger or logging.getLogger(__name__)).getChild(self.__class__.__name__)
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def push(self, records: Sequence[MetricRecord], agent_url: Optional[str] = None) -> str:
        """
        Serialize and push a batch.

        Args:
            records: Metric records to send
            agent_url: Per-target URL override

        Returns:
            str: Raw response body from the agent

        Raises:
            PublishError: If the agent is unreachable or answers non-2xx
        """
        if not records:
            return ""

        url = agent_url or self.agent_url
        payload: List[dict] = [record.to_payload() for record in records]

        try:
            response = self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise PublishError(f"Push to {url} timed out: {e}") from e
        except httpx.RequestError as e:
            raise PublishError(f"Push to {url} failed: {e}") from e

        if not response.is_success:
            raise PublishError(
                f"Push to {url} returned HTTP {response.status_code}",
                body=response.text,
                status_code=response.status_code
            )

        self.logger.debug(f"Pushed {len(payload)} metric(s) to {url}")
        return response.text

    def close(self) -> None:
        self._client.close()

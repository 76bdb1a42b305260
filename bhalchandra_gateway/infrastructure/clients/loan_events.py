"""Loan event webhook client with exponential backoff retry logic"""

import asyncio
import logging
import httpx
from typing import Dict, Any
from bhalchandra_gateway.config import settings
from bhalchandra_gateway.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter

logger = logging.getLogger(__name__)


class LoanEventClient:
    """Publishes loan lifecycle events (LOAN_APPROVED, EMI_PAID) to the configured webhook"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.loan_events_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one event, retrying 5xx responses and network failures.

        Backoff is backoff_base * 2^(attempt-1): 1s, 2s, 4s, 8s with defaults.
        Runs as a background task after the loan change is committed, so a
        final failure is logged and re-raised but never rolls anything back.
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    webhook_failure_counter.inc()

                    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code < 500:
                        logger.error(
                            f"Loan event rejected: {e.response.status_code}",
                            extra={"event": payload.get("event"), "loan_id": payload.get("loan_id")},
                        )
                        raise

                    if attempt >= self.max_retries:
                        logger.error(
                            f"Loan event delivery failed after {attempt} attempts: {e}",
                            extra={"event": payload.get("event"), "loan_id": payload.get("loan_id")},
                        )
                        raise

                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

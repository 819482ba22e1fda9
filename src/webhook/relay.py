"""Webhook relay client: forwards normalized messages to the automation endpoint.

One POST per inbound message with a bounded timeout. Failures are reported in
the returned RelayOutcome and logged; the message is then dropped. With
``max_retries`` > 0, network errors, timeouts, 429 and 5xx responses are
retried with exponential backoff capped at 30s.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from src.webhook.models import NormalizedMessage, RelayError, RelayOutcome

logger = logging.getLogger(__name__)

_BACKOFF_CAP_SECONDS = 30


class WebhookRelayClient:
    """Delivers NormalizedMessages to the configured webhook URL."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        max_retries: int = 0,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._max_retries = max_retries
        self.consecutive_failures = 0
        self.last_error: RelayError | None = None

    @property
    def webhook_url(self) -> str:
        return self._webhook_url

    async def relay(self, message: NormalizedMessage) -> RelayOutcome:
        payload = message.to_webhook_payload()
        outcome = await self._post_with_retry(payload)

        if outcome.succeeded:
            self.consecutive_failures = 0
            self.last_error = None
            logger.info(
                "Relayed message %s from %s (attempts=%d)",
                message.message_id, message.sender_id, outcome.attempts,
            )
        else:
            self.consecutive_failures += 1
            self.last_error = outcome.error
            logger.error(
                "Failed to relay message %s to webhook: %s (status=%s, attempts=%d)",
                message.message_id,
                outcome.error.value if outcome.error else "unknown",
                outcome.status_code,
                outcome.attempts,
            )
        return outcome

    async def _post_with_retry(self, payload: dict[str, Any]) -> RelayOutcome:
        outcome = RelayOutcome(succeeded=False, error=RelayError.NETWORK_ERROR)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for attempt in range(1, self._max_retries + 2):
                outcome = await self._post_once(client, payload, attempt)
                if outcome.succeeded or not self._should_retry(outcome):
                    return outcome
                if attempt <= self._max_retries:
                    delay = min(2 ** (attempt - 1), _BACKOFF_CAP_SECONDS)
                    await asyncio.sleep(delay)
        return outcome

    async def _post_once(
        self, client: httpx.AsyncClient, payload: dict[str, Any], attempt: int,
    ) -> RelayOutcome:
        try:
            resp = await client.post(self._webhook_url, json=payload)
        except httpx.TimeoutException:
            return RelayOutcome(succeeded=False, error=RelayError.TIMEOUT, attempts=attempt)
        except httpx.HTTPError as exc:
            logger.debug("Webhook transport error: %s", exc)
            return RelayOutcome(
                succeeded=False, error=RelayError.NETWORK_ERROR, attempts=attempt,
            )

        if not 200 <= resp.status_code < 300:
            logger.debug("Webhook error body: %s", resp.text[:200])
            return RelayOutcome(
                succeeded=False,
                error=RelayError.HTTP_STATUS,
                status_code=resp.status_code,
                attempts=attempt,
            )

        return RelayOutcome(
            succeeded=True,
            raw_response=_parse_body(resp),
            status_code=resp.status_code,
            attempts=attempt,
        )

    @staticmethod
    def _should_retry(outcome: RelayOutcome) -> bool:
        if outcome.error is RelayError.HTTP_STATUS:
            code = outcome.status_code or 0
            return code == 429 or code >= 500
        return True


def _parse_body(resp: httpx.Response) -> Any:
    """JSON body when it parses, the plain text otherwise, None when empty."""
    text = resp.text
    if not text.strip():
        return None
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        return text

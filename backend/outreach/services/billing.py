"""Ledger debit requests to the billing collaborator.

The reconciler decides *whether* to bill (exactly once per sid, guarded by
the ``billing_debits`` table). This module only delivers the request,
retrying transient failures with backoff. Delivery is fire-and-forget
for the caller: failures are logged, never raised.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from outreach.core.config import settings
from outreach.monitoring.metrics import record_billing_debit

logger = structlog.get_logger()


@dataclass(frozen=True)
class DebitRequest:
    """One ledger debit."""

    workspace: uuid.UUID
    amount: int
    note: str
    kind: str = "call"

    def to_dict(self) -> dict[str, Any]:
        return {"workspace": str(self.workspace), "amount": self.amount, "note": self.note}


def call_units(duration: int | None, call_duration: int | None = None) -> int:
    """Billable units for a call: one per started minute.

    Uses the longer of the two durations the provider reports.
    """
    seconds = max(duration or 0, call_duration or 0)
    return math.floor(seconds / 60) + 1


def call_debit_note(sid: str, contact_id: int | None, attempt_id: int | None) -> str:
    return f"Call {sid}, Contact {contact_id}, Outreach Attempt {attempt_id}"


def message_debit_note(sid: str, contact_id: int | None, attempt_id: int | None) -> str:
    return f"Message {sid}, Contact {contact_id}, Outreach Attempt {attempt_id}"


class _TransientBillingError(Exception):
    """5xx response from the billing service."""


class BillingClient:
    """Sends debit requests with retry and exponential backoff."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.BILLING_TIMEOUT, connect=5.0)
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, debit: DebitRequest) -> None:
        response = await self._http().post(settings.BILLING_URL, json=debit.to_dict())
        if response.status_code >= 500:
            raise _TransientBillingError(f"Billing service returned {response.status_code}")
        response.raise_for_status()

    async def debit(self, debit: DebitRequest) -> bool:
        """Deliver a debit request.

        Returns:
            True if the billing service accepted it, False otherwise.
        """
        log = logger.bind(workspace=str(debit.workspace), amount=debit.amount, kind=debit.kind)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.BILLING_MAX_RETRIES),
            wait=wait_exponential(multiplier=settings.RETRY_BACKOFF_FACTOR, max=30),
            retry=retry_if_exception_type((_TransientBillingError, httpx.TransportError)),
            before_sleep=lambda retry_state: log.warning(
                "billing_debit_retry",
                attempt=retry_state.attempt_number,
                wait=getattr(retry_state.next_action, "sleep", None),
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._post(debit)
        except RetryError:
            log.error("billing_debit_failed", reason="retries_exhausted", note=debit.note)
            return False
        except httpx.HTTPError as e:
            log.error("billing_debit_failed", error=str(e), note=debit.note)
            return False

        record_billing_debit(debit.kind)
        log.info("billing_debit_sent", note=debit.note)
        return True


__all__ = [
    "BillingClient",
    "DebitRequest",
    "call_debit_note",
    "call_units",
    "message_debit_note",
]

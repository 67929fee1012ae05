"""Client for the external dialer and messenger services.

Placement is a blocking request from the scheduler's point of view, so it
is bounded by a timeout and a circuit breaker. Failures surface as
``PlacementError`` and are never retried here: the scheduler records the
failure and moves on to the next contact.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any

import httpx
import structlog
from aiobreaker import CircuitBreaker, CircuitBreakerError

from outreach.core.config import settings
from outreach.core.errors import PlacementError

logger = structlog.get_logger()

# Opens after DIALER_CIRCUIT_FAILURE_THRESHOLD failures
# Recovers after DIALER_CIRCUIT_RECOVERY_TIMEOUT seconds
dialer_circuit_breaker = CircuitBreaker(
    fail_max=settings.DIALER_CIRCUIT_FAILURE_THRESHOLD,
    timeout_duration=timedelta(seconds=settings.DIALER_CIRCUIT_RECOVERY_TIMEOUT),
    name="dialer",
)


@dataclass(frozen=True)
class PlacementRequest:
    """Body sent to the dialer or messenger."""

    to: str
    from_: str
    campaign_id: int
    workspace_id: uuid.UUID
    contact_id: int
    queue_id: int
    caller_id: str
    attempt_id: int | None = None
    body: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["from"] = data.pop("from_")
        data["workspace_id"] = str(self.workspace_id)
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class PlacementResult:
    """Provider id returned for a placed call or message."""

    sid: str
    status: str | None = None


class OutboundClient:
    """Places calls and messages through the external services."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.DIALER_TIMEOUT, connect=5.0)
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def place_call(self, request: PlacementRequest) -> PlacementResult:
        return await self._place(settings.DIALER_URL, request, channel="call")

    async def send_message(self, request: PlacementRequest) -> PlacementResult:
        return await self._place(settings.MESSENGER_URL, request, channel="message")

    async def _post(self, url: str, request: PlacementRequest) -> dict[str, Any]:
        """One guarded round trip. Any exception here counts against the circuit."""
        response = await self._http().post(url, json=request.to_dict())
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        return payload

    async def _place(self, url: str, request: PlacementRequest, channel: str) -> PlacementResult:
        """POST a placement request and read back the provider sid.

        Raises:
            PlacementError: On transport errors, error responses, unreadable
                bodies, a missing sid, or while the circuit is open.
        """
        log = logger.bind(
            channel=channel,
            campaign_id=request.campaign_id,
            contact_id=request.contact_id,
            queue_id=request.queue_id,
        )

        try:
            payload = await dialer_circuit_breaker.call_async(self._post, url, request)
        except CircuitBreakerError as e:
            log.error("placement_circuit_open", recovery_in=dialer_circuit_breaker.timeout_duration.total_seconds())
            raise PlacementError("Dialer circuit is open", retryable=True) from e
        except httpx.HTTPStatusError as e:
            log.warning("placement_rejected", status=e.response.status_code, body=e.response.text[:200])
            raise PlacementError(f"Placement rejected with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            log.warning("placement_transport_error", error=str(e))
            raise PlacementError(f"Placement failed: {e}", retryable=True) from e
        except ValueError as e:
            log.warning("placement_unreadable_response", error=str(e))
            raise PlacementError(f"Unreadable placement response: {e}") from e

        sid = payload.get("sid") or payload.get("call_sid") or payload.get("message_sid")
        if payload.get("error") or not sid:
            log.warning("placement_failed", error=payload.get("error"))
            raise PlacementError(str(payload.get("error") or "Provider returned no sid"))

        log.info("placement_succeeded", sid=sid)
        return PlacementResult(sid=str(sid), status=payload.get("status"))


def _state_name() -> str:
    # CircuitBreakerState enum, e.g. "CircuitBreakerState.CLOSED"
    state_str = str(dialer_circuit_breaker.current_state)
    if "." in state_str:
        state_str = state_str.split(".")[-1]
    return state_str.lower()


def get_circuit_state() -> dict[str, str | int]:
    """Get circuit breaker state for monitoring."""
    return {
        "state": _state_name(),
        "fail_count": dialer_circuit_breaker.fail_counter,
        "fail_max": dialer_circuit_breaker.fail_max,
    }


def reset_circuit_breaker() -> None:
    """Reset circuit breaker to closed state."""
    dialer_circuit_breaker.close()
    logger.info("dialer_circuit_reset")


__all__ = [
    "OutboundClient",
    "PlacementRequest",
    "PlacementResult",
    "dialer_circuit_breaker",
    "get_circuit_state",
    "reset_circuit_breaker",
]

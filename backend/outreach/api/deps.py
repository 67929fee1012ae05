"""Shared FastAPI dependencies for the outreach routes."""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException, Request, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from twilio.request_validator import RequestValidator

from outreach.core.config import settings
from outreach.db.redis import get_redis
from outreach.db.session import AsyncSessionLocal
from outreach.services.billing import BillingClient
from outreach.services.outbound import OutboundClient
from outreach.services.realtime import ChangeFeed
from outreach.services.telephony import TelephonyGateway

logger = structlog.get_logger()

_outbound: OutboundClient | None = None
_billing: BillingClient | None = None
_telephony: TelephonyGateway | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request (background tasks)."""
    return AsyncSessionLocal


async def get_feed(redis: Redis = Depends(get_redis)) -> ChangeFeed:
    return ChangeFeed(redis)


def get_outbound() -> OutboundClient:
    global _outbound
    if _outbound is None:
        _outbound = OutboundClient()
    return _outbound


def get_billing() -> BillingClient:
    global _billing
    if _billing is None:
        _billing = BillingClient()
    return _billing


def get_telephony() -> TelephonyGateway:
    global _telephony
    if _telephony is None:
        _telephony = TelephonyGateway()
    return _telephony


async def close_clients() -> None:
    """Close the shared outbound HTTP clients."""
    global _outbound, _billing
    if _outbound is not None:
        await _outbound.aclose()
        _outbound = None
    if _billing is not None:
        await _billing.aclose()
        _billing = None


def _public_url(request: Request) -> str:
    """URL the provider signed, as seen from outside any proxy."""
    url = f"{settings.PUBLIC_URL.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


async def verify_twilio_signature(request: Request) -> None:
    """Reject callbacks whose X-Twilio-Signature does not match.

    Skipped unless VALIDATE_WEBHOOK_SIGNATURES is enabled.
    """
    if not settings.VALIDATE_WEBHOOK_SIGNATURES:
        return
    if not settings.TWILIO_AUTH_TOKEN:
        logger.error("twilio_signature_token_missing")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Signature validation unavailable")

    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    signature = request.headers.get("X-Twilio-Signature", "")
    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    if not validator.validate(_public_url(request), params, signature):
        logger.warning("twilio_signature_invalid", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")


__all__ = [
    "close_clients",
    "get_billing",
    "get_feed",
    "get_outbound",
    "get_session_factory",
    "get_telephony",
    "verify_twilio_signature",
]

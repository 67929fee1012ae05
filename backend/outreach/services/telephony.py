"""Telephony provider gateway for live-call control.

Wraps the synchronous Twilio REST client in a worker thread. Used to end
calls on caller hangup and to redirect answering-machine calls into the
voicemail branch.
"""

from __future__ import annotations

import asyncio

import structlog
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from outreach.core.config import settings

logger = structlog.get_logger()

# Provider error for updating a call that is no longer live
CALL_NOT_IN_PROGRESS = 21220


def _already_ended(error: TwilioRestException) -> bool:
    return error.code == CALL_NOT_IN_PROGRESS or "not in-progress" in str(error.msg).lower()


class TelephonyGateway:
    """Hangup and redirect for live provider calls."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
                raise ValueError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be configured")
            self._client = Client(
                settings.TWILIO_ACCOUNT_SID,
                settings.TWILIO_AUTH_TOKEN,
                http_client=TwilioHttpClient(timeout=settings.TWILIO_TIMEOUT),
            )
        return self._client

    async def hangup(self, call_sid: str) -> bool:
        """End a live call.

        A call the provider reports as already ended counts as success.

        Returns:
            True when the call is no longer live, False if the provider
            request failed for another reason.
        """
        try:
            await asyncio.to_thread(
                lambda: self.client.calls(call_sid).update(status="completed")
            )
        except TwilioRestException as e:
            if _already_ended(e):
                logger.info("hangup_call_already_ended", call_sid=call_sid)
                return True
            logger.warning("hangup_failed", call_sid=call_sid, code=e.code, error=str(e.msg))
            return False

        logger.info("hangup_sent", call_sid=call_sid)
        return True

    async def redirect(self, call_sid: str, twiml: str) -> bool:
        """Replace the instructions of a live call."""
        try:
            await asyncio.to_thread(lambda: self.client.calls(call_sid).update(twiml=twiml))
        except TwilioRestException as e:
            if _already_ended(e):
                logger.info("redirect_call_already_ended", call_sid=call_sid)
            else:
                logger.warning("redirect_failed", call_sid=call_sid, code=e.code, error=str(e.msg))
            return False

        logger.info("call_redirected", call_sid=call_sid)
        return True


__all__ = ["CALL_NOT_IN_PROGRESS", "TelephonyGateway"]

"""Tests for the telephony gateway."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from twilio.base.exceptions import TwilioRestException

from outreach.services import telephony as telephony_module
from outreach.services.telephony import CALL_NOT_IN_PROGRESS, TelephonyGateway


def _gateway(error: Exception | None = None) -> tuple[TelephonyGateway, MagicMock]:
    client = MagicMock()
    if error is not None:
        client.calls.return_value.update.side_effect = error
    return TelephonyGateway(client), client


class TestHangup:
    """Tests for TelephonyGateway.hangup."""

    @pytest.mark.asyncio
    async def test_hangup_completes_call(self) -> None:
        gateway, client = _gateway()

        assert await gateway.hangup("CA1") is True
        client.calls.assert_called_once_with("CA1")
        client.calls.return_value.update.assert_called_once_with(status="completed")

    @pytest.mark.asyncio
    async def test_call_already_ended_counts_as_success(self) -> None:
        error = TwilioRestException(400, "/Calls/CA1", msg="Call is not in-progress", code=CALL_NOT_IN_PROGRESS)
        gateway, _ = _gateway(error)

        assert await gateway.hangup("CA1") is True

    @pytest.mark.asyncio
    async def test_other_provider_errors_fail(self) -> None:
        error = TwilioRestException(404, "/Calls/CA1", msg="Not found", code=20404)
        gateway, _ = _gateway(error)

        assert await gateway.hangup("CA1") is False


class TestRedirect:
    @pytest.mark.asyncio
    async def test_redirect_sends_twiml(self) -> None:
        gateway, client = _gateway()

        assert await gateway.redirect("CA1", "<Response/>") is True
        client.calls.return_value.update.assert_called_once_with(twiml="<Response/>")

    @pytest.mark.asyncio
    async def test_redirect_on_ended_call_fails(self) -> None:
        error = TwilioRestException(400, "/Calls/CA1", msg="Call is not in-progress", code=CALL_NOT_IN_PROGRESS)
        gateway, _ = _gateway(error)

        assert await gateway.redirect("CA1", "<Response/>") is False


class TestClientConfiguration:
    def test_missing_credentials_raise(self) -> None:
        with patch.object(telephony_module.settings, "TWILIO_ACCOUNT_SID", None):
            with pytest.raises(ValueError, match="TWILIO_ACCOUNT_SID"):
                TelephonyGateway().client

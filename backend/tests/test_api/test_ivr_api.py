"""Tests for the IVR TwiML endpoints."""

from typing import Any

import pytest
from httpx import AsyncClient

from outreach.models import Script
from outreach.models.campaign import CampaignType


class TestIvrEndpoints:
    """Test the /ivr routes the provider walks through."""

    @pytest.mark.asyncio
    async def test_entry_returns_twiml(self, test_client: AsyncClient, make_campaign: Any, script: Script) -> None:
        """Test GET /ivr/{campaign_id} redirects to the first block."""
        campaign = await make_campaign(type=CampaignType.ROBOCALL, script_id=script.id)

        response = await test_client.get(f"/api/v1/ivr/{campaign.id}")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert f"/ivr/{campaign.id}/page_1/b1</Redirect>" in response.text

    @pytest.mark.asyncio
    async def test_block_accepts_post(self, test_client: AsyncClient, make_campaign: Any, script: Script) -> None:
        """Test the provider may POST to a block URL."""
        campaign = await make_campaign(type=CampaignType.ROBOCALL, script_id=script.id)

        response = await test_client.post(f"/api/v1/ivr/{campaign.id}/page_1/b1")

        assert response.status_code == 200
        assert "<Gather" in response.text

    @pytest.mark.asyncio
    async def test_response_follows_digits(
        self, test_client: AsyncClient, make_campaign: Any, script: Script
    ) -> None:
        """Test POST .../response routes the pressed digit to its option."""
        campaign = await make_campaign(type=CampaignType.ROBOCALL, script_id=script.id)

        response = await test_client.post(
            f"/api/v1/ivr/{campaign.id}/page_1/b1/response",
            data={"Digits": "1", "CallSid": "CA-unknown"},
        )

        assert response.status_code == 200
        assert f"/ivr/{campaign.id}/page_1/b2</Redirect>" in response.text

    @pytest.mark.asyncio
    async def test_unknown_campaign_still_twiml(self, test_client: AsyncClient) -> None:
        """Test errors are spoken to the callee instead of returned as JSON."""
        response = await test_client.get("/api/v1/ivr/999")

        assert response.status_code == 200
        assert "<Hangup" in response.text

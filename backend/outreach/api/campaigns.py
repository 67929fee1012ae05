"""Campaign control: activation, pausing and script validation."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach.api.deps import get_feed, get_outbound, get_session_factory
from outreach.core.config import settings
from outreach.core.errors import InvalidInputError, NotFoundError
from outreach.db.session import get_db
from outreach.models.campaign import Campaign, CampaignStatus, CampaignType
from outreach.models.script import Script as ScriptRecord
from outreach.services.followups import should_trigger, trigger_next
from outreach.services.ivr import load_script, validate_script
from outreach.services.outbound import OutboundClient
from outreach.services.realtime import ChangeFeed

router = APIRouter(tags=["campaigns"])
logger = structlog.get_logger()


class ActivateRequest(BaseModel):
    """Activation options.

    ``owner_id`` is the account automated campaigns dial on behalf of.
    """

    owner_id: str = "system"


class CampaignStateResponse(BaseModel):
    id: int
    status: str
    is_active: bool
    scheduled: bool = False


class ScriptValidationRequest(BaseModel):
    steps: dict[str, Any] = Field(default_factory=dict)


async def _get_campaign(db: AsyncSession, campaign_id: int) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return campaign


@router.post("/campaigns/{campaign_id}/activate", response_model=CampaignStateResponse)
async def activate_campaign(
    campaign_id: int,
    background_tasks: BackgroundTasks,
    request: ActivateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
    outbound: OutboundClient = Depends(get_outbound),
) -> CampaignStateResponse:
    """Start dialing a campaign.

    Robocall scripts are validated first; an invalid script is rejected
    with 422 and the full list of problems. Automated campaigns start
    placing contacts straight away.
    """
    campaign = await _get_campaign(db, campaign_id)
    if campaign.status == CampaignStatus.COMPLETE or campaign.has_ended():
        raise InvalidInputError(f"Campaign {campaign_id} has already ended")

    if campaign.type == CampaignType.ROBOCALL:
        record = await db.get(ScriptRecord, campaign.script_id) if campaign.script_id else None
        if record is None:
            raise InvalidInputError("Robocall campaigns need a script")
        load_script(record.steps)

    campaign.is_active = True
    campaign.status = CampaignStatus.RUNNING
    await db.commit()
    logger.info("campaign_activated", campaign_id=campaign_id, type=campaign.type)

    scheduled = settings.ENABLE_SCHEDULER and should_trigger(campaign) and not campaign.is_predictive
    if scheduled:
        owner_id = request.owner_id if request else "system"
        background_tasks.add_task(trigger_next, factory, feed, outbound, campaign_id, owner_id)

    return CampaignStateResponse(
        id=campaign.id, status=campaign.status, is_active=campaign.is_active, scheduled=scheduled
    )


@router.post("/campaigns/{campaign_id}/pause", response_model=CampaignStateResponse)
async def pause_campaign(campaign_id: int, db: AsyncSession = Depends(get_db)) -> CampaignStateResponse:
    """Stop handing out contacts. Calls in flight finish normally."""
    campaign = await _get_campaign(db, campaign_id)
    if campaign.status != CampaignStatus.COMPLETE:
        campaign.status = CampaignStatus.PAUSED
    campaign.is_active = False
    await db.commit()
    logger.info("campaign_paused", campaign_id=campaign_id)
    return CampaignStateResponse(id=campaign.id, status=campaign.status, is_active=campaign.is_active)


@router.post("/scripts/validate")
async def validate_script_steps(request: ScriptValidationRequest) -> dict[str, Any]:
    """Check a script graph without saving it."""
    return validate_script(request.steps).to_dict()

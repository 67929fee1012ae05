"""TwiML endpoints that walk automated calls through a campaign script."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.api.deps import verify_twilio_signature
from outreach.db.session import get_db
from outreach.services.ivr.flow import IvrFlow

router = APIRouter(
    prefix="/ivr",
    tags=["ivr"],
    dependencies=[Depends(verify_twilio_signature)],
)

_METHODS = ["GET", "POST"]


def _twiml(xml: str) -> Response:
    return Response(content=xml, media_type="application/xml")


@router.api_route("/{campaign_id}", methods=_METHODS)
async def ivr_entry(campaign_id: int, db: AsyncSession = Depends(get_db)) -> Response:
    """Start of the script: redirect to the first block."""
    return _twiml(await IvrFlow(db).entry(campaign_id))


@router.api_route("/{campaign_id}/{page_id}", methods=_METHODS)
async def ivr_page(campaign_id: int, page_id: str, db: AsyncSession = Depends(get_db)) -> Response:
    return _twiml(await IvrFlow(db).page(campaign_id, page_id))


@router.api_route("/{campaign_id}/{page_id}/{block_id}", methods=_METHODS)
async def ivr_block(
    campaign_id: int, page_id: str, block_id: str, db: AsyncSession = Depends(get_db)
) -> Response:
    return _twiml(await IvrFlow(db).block(campaign_id, page_id, block_id))


@router.post("/{campaign_id}/{page_id}/{block_id}/response")
async def ivr_response(
    campaign_id: int,
    page_id: str,
    block_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Gather result: digits or speech, whichever the caller gave."""
    form = await request.form()
    user_input = form.get("Digits") or form.get("SpeechResult")
    call_sid = form.get("CallSid")
    xml = await IvrFlow(db).respond(
        campaign_id,
        page_id,
        block_id,
        str(call_sid) if call_sid else None,
        str(user_input) if user_input else None,
    )
    await db.commit()
    return _twiml(xml)

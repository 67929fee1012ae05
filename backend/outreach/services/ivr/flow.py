"""Per-callback IVR flow service.

Loads the campaign script, asks the engine for the next location and
renders TwiML. Any failure is answered with the spoken apology and a
hangup so a live call is never left hanging.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.core.errors import InvalidInputError, NotFoundError
from outreach.models.call import Call
from outreach.models.campaign import Campaign
from outreach.models.script import Script as ScriptRecord
from outreach.monitoring.metrics import record_ivr_step
from outreach.services.attempts import AttemptTracker
from outreach.services.ivr.engine import (
    IvrTarget,
    TargetKind,
    find_next_step,
    resolve_target,
)
from outreach.services.ivr.script import Script, load_script
from outreach.services.ivr.twiml import redirect_to, render_block, render_error

logger = structlog.get_logger()


class IvrFlow:
    """Serves one IVR step per provider callback."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.attempts = AttemptTracker(session)

    async def load(self, campaign_id: int) -> tuple[Campaign, Script]:
        campaign = await self.session.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        if campaign.script_id is None:
            raise InvalidInputError(f"Campaign {campaign_id} has no script")
        record = await self.session.get(ScriptRecord, campaign.script_id)
        if record is None:
            raise NotFoundError(f"Script {campaign.script_id} not found")
        return campaign, load_script(record.steps)

    async def entry(self, campaign_id: int) -> str:
        """First block of the first page."""
        try:
            _, script = await self.load(campaign_id)
            location = script.first_location()
            if location is None:
                raise InvalidInputError("Script has no blocks")
            record_ivr_step("entry")
            return str(redirect_to(IvrTarget(TargetKind.BLOCK, *location), campaign_id))
        except Exception:
            logger.exception("ivr_entry_failed", campaign_id=campaign_id)
            record_ivr_step("error")
            return str(render_error())

    async def page(self, campaign_id: int, page_id: str) -> str:
        """Redirect to the first block of a page."""
        try:
            _, script = await self.load(campaign_id)
            page = script.pages.get(page_id)
            if page is None or not page.blocks:
                raise InvalidInputError(f"Page {page_id!r} has no blocks")
            record_ivr_step("page")
            return str(redirect_to(IvrTarget(TargetKind.BLOCK, page_id, page.blocks[0]), campaign_id))
        except Exception:
            logger.exception("ivr_page_failed", campaign_id=campaign_id, page_id=page_id)
            record_ivr_step("error")
            return str(render_error())

    async def block(self, campaign_id: int, page_id: str, block_id: str) -> str:
        """Play a block. Blocks without options advance linearly."""
        try:
            campaign, script = await self.load(campaign_id)
            block = script.blocks.get(block_id)
            if block is None:
                raise InvalidInputError(f"Unknown block {block_id!r}")

            next_target = None
            if not block.options:
                step = find_next_step(script, page_id, block_id)
                next_target = resolve_target(script, step, page_id)

            record_ivr_step("block")
            return str(
                render_block(
                    block,
                    campaign_id,
                    page_id,
                    block_id,
                    campaign.workspace_id,
                    next_target=next_target,
                )
            )
        except Exception:
            logger.exception(
                "ivr_block_failed", campaign_id=campaign_id, page_id=page_id, block_id=block_id
            )
            record_ivr_step("error")
            return str(render_error())

    async def respond(
        self,
        campaign_id: int,
        page_id: str,
        block_id: str,
        call_sid: str | None,
        user_input: str | None,
    ) -> str:
        """Record the caller's answer and redirect to the next location."""
        log = logger.bind(campaign_id=campaign_id, page_id=page_id, block_id=block_id, call_sid=call_sid)
        try:
            _, script = await self.load(campaign_id)
            block = script.blocks.get(block_id)
            if block is None:
                raise InvalidInputError(f"Unknown block {block_id!r}")

            attempt_id = await self._attempt_for_call(call_sid)
            if attempt_id is not None:
                await self.attempts.record_answer(
                    attempt_id, page_id, block.title or block_id, user_input
                )
            else:
                log.warning("ivr_answer_not_recorded", reason="no_linked_attempt")

            step = find_next_step(script, page_id, block_id, user_input)
            target = resolve_target(script, step, page_id)
            log.info("ivr_step_resolved", step=step, target=target.kind)
            record_ivr_step("response")
            return str(redirect_to(target, campaign_id))
        except Exception:
            log.exception("ivr_response_failed")
            record_ivr_step("error")
            return str(render_error())

    async def _attempt_for_call(self, call_sid: str | None) -> int | None:
        if not call_sid:
            return None
        result = await self.session.execute(select(Call.attempt_id).where(Call.sid == call_sid))
        return result.scalar_one_or_none()


__all__ = ["IvrFlow"]

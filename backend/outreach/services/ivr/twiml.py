"""Translate IVR engine decisions into TwiML."""

from __future__ import annotations

import uuid

from twilio.twiml.voice_response import VoiceResponse

from outreach.core.config import settings
from outreach.services.ivr.engine import IvrTarget, TargetKind
from outreach.services.ivr.script import Block, Page


def ivr_url(campaign_id: int, *parts: str) -> str:
    """Absolute callback URL for an IVR location."""
    path = "/".join([str(campaign_id), *parts])
    return f"{settings.PUBLIC_URL.rstrip('/')}{settings.API_V1_PREFIX}/ivr/{path}"


def audio_url(workspace_id: uuid.UUID | str, audio_file: str) -> str:
    """URL of a stored audio file in the workspace's bucket."""
    if audio_file.startswith(("http://", "https://")):
        return audio_file
    return f"{settings.AUDIO_BASE_URL.rstrip('/')}/{workspace_id}/{audio_file}"


def _append_target(response: VoiceResponse, target: IvrTarget | None, campaign_id: int) -> None:
    if target is None or target.kind == TargetKind.HANGUP:
        response.hangup()
    elif target.kind == TargetKind.PAGE:
        response.redirect(ivr_url(campaign_id, str(target.page_id)))
    else:
        response.redirect(ivr_url(campaign_id, str(target.page_id), str(target.block_id)))


def redirect_to(target: IvrTarget, campaign_id: int) -> VoiceResponse:
    """Follow a resolved target with a redirect, or hang up."""
    response = VoiceResponse()
    _append_target(response, target, campaign_id)
    return response


def render_block(
    block: Block,
    campaign_id: int,
    page_id: str,
    block_id: str,
    workspace_id: uuid.UUID | str,
    next_target: IvrTarget | None = None,
) -> VoiceResponse:
    """Play a block and either gather input or move on.

    Blocks with options gather DTMF or speech and post it to the block's
    ``response`` endpoint. Blocks without options continue to
    ``next_target``, hanging up when there is none.
    """
    response = VoiceResponse()
    if block.is_recorded:
        response.play(audio_url(workspace_id, block.audio))
    elif block.audio:
        response.say(block.audio)

    if block.options:
        response.gather(
            action=ivr_url(campaign_id, page_id, block_id, "response"),
            input="dtmf speech",
            speech_timeout="auto",
            speech_model="phone_call",
            action_on_empty_result=True,
        )
        return response

    _append_target(response, next_target, campaign_id)
    return response


def render_voicemail(
    page: Page | None,
    voicemail_file: str | None,
    workspace_id: uuid.UUID | str,
) -> VoiceResponse:
    """Message left on an answering machine.

    A synthetic voicemail page is spoken after a short pause. Otherwise the
    campaign's stored voicemail file is played. Without a voicemail page the
    call is simply ended.
    """
    response = VoiceResponse()
    if page is None:
        response.hangup()
        return response

    if page.speech_type == "synthetic":
        response.pause(length=settings.VOICEMAIL_PAUSE_SECONDS)
        response.say(page.say or "")
    elif voicemail_file:
        response.play(audio_url(workspace_id, voicemail_file))
    response.hangup()
    return response


def render_error(message: str | None = None) -> VoiceResponse:
    """Spoken apology followed by hangup."""
    response = VoiceResponse()
    response.say(message or settings.IVR_ERROR_MESSAGE)
    response.hangup()
    return response


__all__ = [
    "audio_url",
    "ivr_url",
    "redirect_to",
    "render_block",
    "render_error",
    "render_voicemail",
]

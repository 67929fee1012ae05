"""IVR flow engine.

Pure functions over ``(script, page_id, block_id, user_input)``. No state
is kept between steps: every step's location is encoded in the redirect
target, so each provider callback can be served independently.

Target encoding:
    ``hangup``      end the call (``end`` is accepted as an alias)
    ``page:block``  go to that exact block
    ``page_...``    go to the first block of that page
    anything else   a block id in the current page
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from outreach.core.errors import InvalidInputError
from outreach.services.ivr.script import Block, Option, Script

HANGUP = "hangup"
END = "end"
ANY_INPUT = "vx-any"
PAGE_PREFIX = "page_"


class TargetKind(StrEnum):
    HANGUP = "hangup"
    PAGE = "page"
    BLOCK = "block"


@dataclass(frozen=True)
class IvrTarget:
    """Decoded redirect target."""

    kind: TargetKind
    page_id: str | None = None
    block_id: str | None = None


def match_option(block: Block, user_input: str | None) -> Option | None:
    """First option matching the caller's input, in declaration order.

    Values match on exact trimmed text. ``vx-any`` accepts any input longer
    than two characters.
    """
    if not block.options:
        return None
    text = (user_input or "").strip()
    for option in block.options:
        value = option.value.strip()
        if value == text or (value == ANY_INPUT and len(text) > 2):
            return option
    return None


def find_next_block(script: Script, page_id: str, block_id: str) -> tuple[str, str] | None:
    """Linear successor of a block.

    The next block of the same page, else the first block of the next
    page, else None at the end of the script.
    """
    page = script.pages.get(page_id)
    if page is None:
        raise InvalidInputError(f"Unknown page {page_id!r}")

    if block_id in page.blocks:
        index = page.blocks.index(block_id)
        if index < len(page.blocks) - 1:
            return page_id, page.blocks[index + 1]

    page_ids = script.page_ids
    for next_page_id in page_ids[page_ids.index(page_id) + 1 :]:
        next_page = script.pages[next_page_id]
        if next_page.blocks:
            return next_page_id, next_page.blocks[0]
    return None


def find_next_step(
    script: Script,
    page_id: str,
    block_id: str,
    user_input: str | None = None,
) -> str:
    """Decide where the call goes after a block.

    Args:
        script: Parsed script.
        page_id: Page of the block just played.
        block_id: Block just played.
        user_input: DTMF digits or speech transcript, if any.

    Returns:
        A target string: an option's ``next``, ``"page:block"`` for the
        linear successor, or ``"hangup"``.

    Raises:
        InvalidInputError: If the page or block does not exist.
    """
    block = script.blocks.get(block_id)
    if block is None:
        raise InvalidInputError(f"Unknown block {block_id!r}")

    option = match_option(block, user_input)
    if option is not None and option.next:
        return option.next

    location = find_next_block(script, page_id, block_id)
    if location is None:
        return HANGUP
    return f"{location[0]}:{location[1]}"


def resolve_target(script: Script, step: str, current_page_id: str) -> IvrTarget:
    """Decode a target string into a location."""
    if step in (HANGUP, END):
        return IvrTarget(TargetKind.HANGUP)
    if ":" in step:
        page_id, block_id = step.split(":", 1)
        return IvrTarget(TargetKind.BLOCK, page_id, block_id)
    if step.startswith(PAGE_PREFIX) or (step in script.pages and step not in script.blocks):
        return IvrTarget(TargetKind.PAGE, step)
    return IvrTarget(TargetKind.BLOCK, current_page_id, step)


__all__ = [
    "ANY_INPUT",
    "END",
    "HANGUP",
    "IvrTarget",
    "PAGE_PREFIX",
    "TargetKind",
    "find_next_block",
    "find_next_step",
    "match_option",
    "resolve_target",
]

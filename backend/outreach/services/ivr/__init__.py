"""IVR script graph, validator and flow engine."""

from outreach.services.ivr.engine import (
    ANY_INPUT,
    HANGUP,
    IvrTarget,
    TargetKind,
    find_next_block,
    find_next_step,
    match_option,
    resolve_target,
)
from outreach.services.ivr.script import Block, Option, Page, Script, load_script, parse_script
from outreach.services.ivr.validator import ValidationReport, validate_script

__all__ = [
    "ANY_INPUT",
    "HANGUP",
    "Block",
    "IvrTarget",
    "Option",
    "Page",
    "Script",
    "TargetKind",
    "ValidationReport",
    "find_next_block",
    "find_next_step",
    "load_script",
    "match_option",
    "parse_script",
    "resolve_target",
    "validate_script",
]

"""Offline validation of IVR script graphs.

A script must pass before its campaign can be activated. Errors block
activation. Warnings are reported but do not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

TERMINAL_TARGETS = frozenset({"end", "hangup"})


@dataclass
class ValidationReport:
    """Validator output."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


def _target_exists(target: str, pages: dict[str, Any], blocks: dict[str, Any]) -> bool:
    if target in TERMINAL_TARGETS or target in blocks or target in pages:
        return True
    if ":" in target:
        page_id, block_id = target.split(":", 1)
        return page_id in pages and block_id in blocks
    return False


def _block_target(target: str, pages: dict[str, Any], blocks: dict[str, Any]) -> str | None:
    """Block id an option target lands on. A bare page id lands on its first block."""
    if ":" in target:
        target = target.split(":", 1)[1]
    if target in blocks:
        return target
    page = pages.get(target)
    page_blocks = page.get("blocks") if isinstance(page, dict) else None
    if isinstance(page_blocks, list) and page_blocks:
        first = page_blocks[0]
        if isinstance(first, str) and first in blocks:
            return first
    return None


def _find_cycle(pages: dict[str, Any], blocks: dict[str, Any]) -> str | None:
    visited: set[str] = set()
    stack: set[str] = set()

    def visit(block_id: str) -> str | None:
        if block_id in stack:
            return block_id
        if block_id in visited:
            return None
        visited.add(block_id)
        stack.add(block_id)
        options = blocks[block_id].get("options")
        for option in options if isinstance(options, list) else []:
            target = option.get("next") if isinstance(option, dict) else None
            next_block = _block_target(str(target), pages, blocks) if target else None
            if next_block is not None:
                found = visit(next_block)
                if found is not None:
                    return found
        stack.discard(block_id)
        return None

    for block_id in blocks:
        if block_id not in visited:
            found = visit(block_id)
            if found is not None:
                return found
    return None


def validate_script(script: dict[str, Any] | None) -> ValidationReport:
    """Check a raw script document for structural defects.

    Errors:
        missing ``pages`` or ``blocks``; pages without an id or blocks list;
        pages referencing unknown blocks; blocks without an id or type;
        malformed options; option targets that resolve to nothing; any
        option chain that returns to a block already on that chain.

    Warnings:
        missing titles, block ids that differ from their key, and blocks no
        page references.

    Args:
        script: Raw ``{"pages": {...}, "blocks": {...}}`` document.

    Returns:
        ValidationReport with every problem found.
    """
    report = ValidationReport()
    script = script or {}

    pages = script.get("pages")
    blocks = script.get("blocks")
    if not isinstance(pages, dict):
        report.errors.append('Missing "pages" property')
    if not isinstance(blocks, dict):
        report.errors.append('Missing "blocks" property')
    if report.errors:
        return report

    referenced: set[str] = set()
    for page_key, page in pages.items():
        if not isinstance(page, dict):
            report.errors.append(f'Page "{page_key}" is not an object')
            continue
        if not page.get("id"):
            report.errors.append(f'Page "{page_key}" is missing an "id" property')
        if not page.get("title"):
            report.warnings.append(f'Page "{page_key}" is missing a "title" property')
        page_blocks = page.get("blocks")
        if not isinstance(page_blocks, list):
            report.errors.append(f'Page "{page_key}" has invalid or missing "blocks" array')
            continue
        for block_id in page_blocks:
            if not isinstance(block_id, str):
                report.errors.append(f'Page "{page_key}" has a non-string block reference')
                continue
            referenced.add(block_id)
            if block_id not in blocks:
                report.errors.append(f'Page "{page_key}" references non-existent block "{block_id}"')

    for block_key, block in blocks.items():
        if not isinstance(block, dict):
            report.errors.append(f'Block "{block_key}" is not an object')
            continue
        block_id = block.get("id")
        if not block_id:
            report.errors.append(f'Block "{block_key}" is missing an "id" property')
        elif block_id != block_key:
            report.warnings.append(f'Block ID "{block_id}" doesn\'t match its key "{block_key}"')
        if not block.get("type"):
            report.errors.append(f'Block "{block_key}" is missing a "type" property')
        if not block.get("title"):
            report.warnings.append(f'Block "{block_key}" is missing a "title" property')

        options = block.get("options")
        if options is None:
            continue
        if not isinstance(options, list):
            report.errors.append(f'Block "{block_key}" has invalid "options" array')
            continue
        for index, option in enumerate(options):
            if not isinstance(option, dict):
                report.errors.append(f'Option {index} in block "{block_key}" is not an object')
                continue
            target = option.get("next")
            if target is None or target == "":
                continue
            if not _target_exists(str(target), pages, blocks):
                report.errors.append(
                    f'Option {index} in block "{block_key}" references non-existent next block "{target}"'
                )

    for block_key in blocks:
        if block_key not in referenced:
            report.warnings.append(f'Block "{block_key}" is not referenced by any page')

    cycle_at = _find_cycle(pages, {key: value for key, value in blocks.items() if isinstance(value, dict)})
    if cycle_at is not None:
        report.errors.append(
            f'Circular reference detected: circular path detected involving block "{cycle_at}"'
        )

    if not report.is_valid:
        logger.info("script_validation_failed", errors=len(report.errors), warnings=len(report.warnings))
    return report


__all__ = ["ValidationReport", "validate_script"]

"""Household grouping of queue items by street address."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from outreach.services.queue_store import QueueItem

_WHITESPACE = re.compile(r"\s+")


def normalize_address(address: str | None) -> str | None:
    """Build the household key for an address.

    Case and runs of whitespace are ignored. Blank addresses have no key.

    Args:
        address: Raw street address from the contact.

    Returns:
        Normalized key, or None when the address is missing or blank.
    """
    if not address:
        return None
    key = _WHITESPACE.sub(" ", address).strip().casefold()
    return key or None


def household_key(item: QueueItem) -> str | None:
    return normalize_address(item.contact.address if item.contact else None)


def build_household_map(items: Iterable[QueueItem]) -> dict[str, tuple[QueueItem, ...]]:
    """Group queue items by household key, preserving queue order.

    Items without an address are left out of the map. They stay dialable
    in the flat queue but never share a household with anyone.
    """
    groups: dict[str, list[QueueItem]] = {}
    for item in items:
        key = household_key(item)
        if key is None:
            continue
        groups.setdefault(key, []).append(item)
    return {key: tuple(members) for key, members in groups.items()}


__all__ = ["build_household_map", "household_key", "normalize_address"]

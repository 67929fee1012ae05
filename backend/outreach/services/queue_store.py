"""In-memory queue view for one caller of one campaign.

The store is rebuilt copy-on-write on every change event: each update
produces a new sorted tuple and a freshly computed household map, so
readers holding an older snapshot are never affected by later events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from outreach.models.campaign import QueueStatus
from outreach.services.household import build_household_map

logger = structlog.get_logger()


@dataclass(frozen=True)
class QueueContact:
    """Contact fields the queue needs for dialing and grouping."""

    id: int
    phone: str | None = None
    address: str | None = None
    firstname: str | None = None
    surname: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phone": self.phone,
            "address": self.address,
            "firstname": self.firstname,
            "surname": self.surname,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueContact:
        return cls(
            id=int(data["id"]),
            phone=data.get("phone"),
            address=data.get("address"),
            firstname=data.get("firstname"),
            surname=data.get("surname"),
        )


@dataclass(frozen=True)
class QueueItem:
    """A campaign queue row together with its contact."""

    id: int
    campaign_id: int
    contact_id: int
    status: str
    attempts: int = 0
    queue_order: int = 0
    contact: QueueContact | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.attempts, self.queue_order)

    @property
    def is_dialable(self) -> bool:
        return bool(self.contact and self.contact.phone)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "contact_id": self.contact_id,
            "status": self.status,
            "attempts": self.attempts,
            "queue_order": self.queue_order,
            "contact": self.contact.to_dict() if self.contact else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        """Build an item from a ``campaign_queue`` change row."""
        contact_data = data.get("contact")
        contact = QueueContact.from_dict(contact_data) if contact_data else None
        return cls(
            id=int(data["id"]),
            campaign_id=int(data["campaign_id"]),
            contact_id=int(data["contact_id"]),
            status=str(data["status"]),
            attempts=int(data.get("attempts") or 0),
            queue_order=int(data.get("queue_order") or 0),
            contact=contact,
        )


class ChangeKind(StrEnum):
    REMOVED = "removed"
    UPSERTED = "upserted"
    IGNORED = "ignored"


@dataclass(frozen=True)
class QueueChange:
    """What a single event did to the store."""

    kind: ChangeKind
    item_id: int
    next_recipient_changed: bool = False


def sort_queue(items: list[QueueItem] | tuple[QueueItem, ...]) -> tuple[QueueItem, ...]:
    """Order items by attempts then queue_order.

    ``sorted`` is stable, so ties keep their insertion order.
    """
    return tuple(sorted(items, key=lambda item: item.sort_key))


@dataclass
class QueueStore:
    """Ordered queue of dialable items as one caller sees it.

    Args:
        campaign_id: Campaign the queue belongs to.
        caller_id: Caller whose claims are visible in this view.
        predictive: Predictive dial mode. The system assigns recipients
            instead of the caller pulling the queue head.
    """

    campaign_id: int
    caller_id: str
    predictive: bool = False
    _items: tuple[QueueItem, ...] = field(default=(), init=False)
    _households: dict[str, tuple[QueueItem, ...]] = field(default_factory=dict, init=False)
    _next_recipient: QueueItem | None = field(default=None, init=False)

    @property
    def items(self) -> tuple[QueueItem, ...]:
        return self._items

    @property
    def households(self) -> dict[str, tuple[QueueItem, ...]]:
        return self._households

    @property
    def next_recipient(self) -> QueueItem | None:
        return self._next_recipient

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: int) -> QueueItem | None:
        return next((item for item in self._items if item.id == item_id), None)

    def find_by_contact(self, contact_id: int) -> QueueItem | None:
        return next((item for item in self._items if item.contact_id == contact_id), None)

    def load(self, items: list[QueueItem]) -> None:
        """Replace the whole queue with a fresh snapshot."""
        visible: list[QueueItem] = []
        seen_contacts: set[int] = set()
        for item in items:
            if not item.is_dialable or item.contact_id in seen_contacts:
                continue
            if item.status not in (QueueStatus.QUEUED, self.caller_id):
                continue
            seen_contacts.add(item.contact_id)
            visible.append(item)

        self._replace(sort_queue(visible))
        if self.predictive:
            self._next_recipient = next(
                (item for item in self._items if item.status == self.caller_id), None
            )
        else:
            self._next_recipient = self._items[0] if self._items else None

    def _is_removal(self, status: str) -> bool:
        if status == QueueStatus.DEQUEUED:
            return True
        return status not in (QueueStatus.QUEUED, self.caller_id)

    def apply(self, item: QueueItem) -> QueueChange:
        """Merge one ``campaign_queue`` change into the store.

        Returns:
            QueueChange describing whether the item was removed, upserted
            or ignored, and whether the next recipient moved.
        """
        previous_next = self._next_recipient

        if self._is_removal(item.status):
            remaining = tuple(existing for existing in self._items if existing.id != item.id)
            removed = len(remaining) != len(self._items)
            self._replace(remaining)
            if previous_next is not None and previous_next.contact_id == item.contact_id:
                self._next_recipient = self._pick_replacement()
            kind = ChangeKind.REMOVED if removed else ChangeKind.IGNORED
            return QueueChange(kind, item.id, self._next_recipient is not previous_next)

        if not item.is_dialable:
            logger.debug("queue_item_not_dialable", item_id=item.id, contact_id=item.contact_id)
            return QueueChange(ChangeKind.IGNORED, item.id)

        updated = list(self._items)
        position = next((i for i, existing in enumerate(updated) if existing.id == item.id), None)
        if position is not None:
            updated[position] = item
        elif any(existing.contact_id == item.contact_id for existing in updated):
            logger.debug("queue_duplicate_contact_skipped", item_id=item.id, contact_id=item.contact_id)
            return QueueChange(ChangeKind.IGNORED, item.id)
        else:
            updated.append(item)
        self._replace(sort_queue(updated))

        if self.predictive:
            if item.status == self.caller_id:
                self._next_recipient = item
        elif self._next_recipient is None:
            self._next_recipient = self._items[0]
        elif self._next_recipient.id == item.id:
            self._next_recipient = item

        return QueueChange(ChangeKind.UPSERTED, item.id, self._next_recipient is not previous_next)

    def remove(self, item_id: int) -> bool:
        """Drop an item locally, e.g. after the caller dialed it."""
        existing = self.get(item_id)
        if existing is None:
            return False
        self.apply(
            QueueItem(
                id=existing.id,
                campaign_id=existing.campaign_id,
                contact_id=existing.contact_id,
                status=QueueStatus.DEQUEUED,
                attempts=existing.attempts,
                queue_order=existing.queue_order,
                contact=existing.contact,
            )
        )
        return True

    def on_call_linked(self, contact_id: int) -> QueueItem | None:
        """Point the next recipient at the contact a new call was linked to.

        Falls back to the queue head when the contact is no longer queued.
        Only applies to power dial.
        """
        if self.predictive:
            return self._next_recipient
        self._next_recipient = self.find_by_contact(contact_id) or (
            self._items[0] if self._items else None
        )
        return self._next_recipient

    def reset_next_recipient(self) -> None:
        """Forget the current recipient after a hangup."""
        self._next_recipient = None if self.predictive else (self._items[0] if self._items else None)

    def _pick_replacement(self) -> QueueItem | None:
        if self.predictive:
            return None
        uncontacted = next((item for item in self._items if item.attempts == 0), None)
        return uncontacted or (self._items[0] if self._items else None)

    def _replace(self, items: tuple[QueueItem, ...]) -> None:
        self._items = items
        self._households = build_household_map(items)

    def snapshot(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "caller_id": self.caller_id,
            "predictive": self.predictive,
            "items": [item.to_dict() for item in self._items],
            "households": {
                key: [item.id for item in members] for key, members in self._households.items()
            },
            "next_recipient": self._next_recipient.to_dict() if self._next_recipient else None,
        }


__all__ = [
    "ChangeKind",
    "QueueChange",
    "QueueContact",
    "QueueItem",
    "QueueStore",
    "sort_queue",
]

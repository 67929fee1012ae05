"""Unit tests for the per-caller queue store."""

from __future__ import annotations

from dataclasses import replace

from outreach.services.queue_store import ChangeKind, QueueContact, QueueItem, QueueStore

CALLER = "caller-1"


def _item(
    item_id: int,
    status: str = "queued",
    attempts: int = 0,
    queue_order: int | None = None,
    phone: str | None = "default",
    address: str | None = None,
) -> QueueItem:
    return QueueItem(
        id=item_id,
        campaign_id=1,
        contact_id=item_id * 10,
        status=status,
        attempts=attempts,
        queue_order=item_id if queue_order is None else queue_order,
        contact=QueueContact(
            id=item_id * 10,
            phone=f"+1555{item_id:07d}" if phone == "default" else phone,
            address=address,
        ),
    )


class TestLoad:
    """Tests for QueueStore.load."""

    def test_sorted_by_attempts_then_order(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)

        store.load([_item(1, attempts=1), _item(2, queue_order=5), _item(3, queue_order=0)])

        assert [item.id for item in store.items] == [3, 2, 1]
        assert store.next_recipient is not None
        assert store.next_recipient.id == 3

    def test_undialable_and_foreign_items_dropped(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)

        store.load(
            [
                _item(1, phone=None),
                _item(2, status="caller-2"),
                _item(3, status="dequeued"),
                _item(4, status=CALLER),
                _item(5),
            ]
        )

        assert [item.id for item in store.items] == [4, 5]

    def test_duplicate_contacts_dropped(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        first = _item(1)
        duplicate = replace(_item(2), contact_id=first.contact_id)

        store.load([first, duplicate])

        assert len(store) == 1

    def test_predictive_next_recipient_is_own_claim(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER, predictive=True)

        store.load([_item(1), _item(2, status=CALLER)])

        assert store.next_recipient is not None
        assert store.next_recipient.id == 2


class TestApply:
    """Tests for QueueStore.apply."""

    def test_insert_keeps_order(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(3)])

        change = store.apply(_item(2))

        assert change.kind == ChangeKind.UPSERTED
        assert [item.id for item in store.items] == [1, 2, 3]

    def test_update_replaces_in_place(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        store.apply(_item(1, attempts=2))

        assert [item.id for item in store.items] == [2, 1]
        assert store.get(1) is not None
        assert store.get(1).attempts == 2  # type: ignore[union-attr]

    def test_dequeued_is_removed(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        change = store.apply(_item(2, status="dequeued"))

        assert change.kind == ChangeKind.REMOVED
        assert [item.id for item in store.items] == [1]

    def test_claim_by_other_caller_is_removed(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        store.apply(_item(1, status="caller-2"))

        assert [item.id for item in store.items] == [2]

    def test_own_claim_is_kept(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        change = store.apply(_item(1, status=CALLER))

        assert change.kind == ChangeKind.UPSERTED
        assert store.get(1) is not None
        assert store.get(1).status == CALLER  # type: ignore[union-attr]

    def test_duplicate_contact_with_new_id_ignored(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1)])

        change = store.apply(replace(_item(7), contact_id=10))

        assert change.kind == ChangeKind.IGNORED
        assert len(store) == 1

    def test_removal_of_unknown_item_ignored(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1)])

        change = store.apply(_item(9, status="completed"))

        assert change.kind == ChangeKind.IGNORED

    def test_households_rebuilt(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1, address="1 Oak Ln"), _item(2, address="2 Pine Ct")])

        store.apply(_item(3, address="1 oak ln"))
        store.apply(_item(2, status="dequeued", address="2 Pine Ct"))

        assert [item.id for item in store.households["1 oak ln"]] == [1, 3]
        assert "2 pine ct" not in store.households

    def test_snapshots_are_not_mutated(self) -> None:
        """Readers holding an old tuple are unaffected by later events."""
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])
        before = store.items

        store.apply(_item(3))
        store.apply(_item(1, status="dequeued"))

        assert [item.id for item in before] == [1, 2]


class TestNextRecipient:
    """Tests for next recipient tracking."""

    def test_power_replacement_after_removal(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2, attempts=1, queue_order=0), _item(3, attempts=0, queue_order=9)])
        assert store.next_recipient is not None
        assert store.next_recipient.id == 1

        change = store.apply(_item(1, status="dequeued"))

        assert change.next_recipient_changed
        assert store.next_recipient is not None
        assert store.next_recipient.id == 3

    def test_power_replacement_falls_back_to_head(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2, attempts=2), _item(3, attempts=1)])

        store.apply(_item(1, status="dequeued"))

        assert store.next_recipient is not None
        assert store.next_recipient.id == 3

    def test_power_empty_queue_gets_first_insert(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([])
        assert store.next_recipient is None

        store.apply(_item(4))

        assert store.next_recipient is not None
        assert store.next_recipient.id == 4

    def test_predictive_follows_own_claims_only(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER, predictive=True)
        store.load([_item(1), _item(2)])
        assert store.next_recipient is None

        store.apply(_item(2, status=CALLER))
        assert store.next_recipient is not None
        assert store.next_recipient.id == 2

        store.apply(_item(2, status="dequeued"))
        assert store.next_recipient is None

    def test_on_call_linked_points_at_contact(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        linked = store.on_call_linked(20)

        assert linked is not None
        assert linked.id == 2

    def test_reset_after_hangup(self) -> None:
        power = QueueStore(campaign_id=1, caller_id=CALLER)
        power.load([_item(1), _item(2)])
        power.on_call_linked(20)
        predictive = QueueStore(campaign_id=1, caller_id=CALLER, predictive=True)
        predictive.load([_item(1, status=CALLER)])

        power.reset_next_recipient()
        predictive.reset_next_recipient()

        assert power.next_recipient is not None
        assert power.next_recipient.id == 1
        assert predictive.next_recipient is None

    def test_remove_drops_locally(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1), _item(2)])

        assert store.remove(1)
        assert not store.remove(1)
        assert [item.id for item in store.items] == [2]

    def test_snapshot_shape(self) -> None:
        store = QueueStore(campaign_id=1, caller_id=CALLER)
        store.load([_item(1, address="1 Oak Ln")])

        snapshot = store.snapshot()

        assert snapshot["items"][0]["id"] == 1
        assert snapshot["households"] == {"1 oak ln": [1]}
        assert snapshot["next_recipient"]["contact_id"] == 10

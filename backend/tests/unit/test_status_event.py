"""Unit tests for status callback parsing and billing helpers."""

from __future__ import annotations

import pytest

from outreach.core.errors import InvalidInputError
from outreach.services.billing import call_debit_note, call_units, message_debit_note
from outreach.services.reconciler import StatusEvent, is_machine_answer


class TestStatusEvent:
    """Tests for StatusEvent form parsing."""

    def test_call_form_parses_integers_and_link(self) -> None:
        event = StatusEvent.from_call_form(
            {
                "CallSid": "CA1",
                "CallStatus": "completed",
                "Duration": "2",
                "CallDuration": "75",
                "outreach_attempt_id": "12",
                "AnsweredBy": "human",
            }
        )

        assert event.sid == "CA1"
        assert event.status == "completed"
        assert event.duration == 2
        assert event.call_duration == 75
        assert event.attempt_id == 12
        assert event.answered_by == "human"

    def test_call_form_requires_sid(self) -> None:
        with pytest.raises(InvalidInputError, match="CallSid"):
            StatusEvent.from_call_form({"CallStatus": "ringing"})

    def test_malformed_numbers_are_dropped(self) -> None:
        event = StatusEvent.from_call_form({"CallSid": "CA1", "Duration": "abc", "outreach_attempt_id": ""})

        assert event.duration is None
        assert event.attempt_id is None

    def test_call_fields_omit_missing_values(self) -> None:
        """Fields the callback did not carry must not overwrite stored ones."""
        event = StatusEvent.from_call_form({"CallSid": "CA1", "CallStatus": "ringing", "To": "+15551234567"})

        assert event.call_fields() == {"to_number": "+15551234567"}

    def test_message_form_accepts_sms_aliases(self) -> None:
        event = StatusEvent.from_message_form({"SmsSid": "SM1", "SmsStatus": "delivered", "Body": "hi"})

        assert event.sid == "SM1"
        assert event.status == "delivered"
        assert event.body == "hi"

    def test_message_form_requires_sid(self) -> None:
        with pytest.raises(InvalidInputError, match="MessageSid"):
            StatusEvent.from_message_form({"MessageStatus": "sent"})


class TestMachineDetection:
    """Tests for answering machine detection."""

    @pytest.mark.parametrize(
        ("answered_by", "status", "expected"),
        [
            ("machine_start", "in-progress", True),
            ("machine_end_beep", None, True),
            ("machine_end_other", "in-progress", False),
            ("human", "in-progress", False),
            ("machine_start", "completed", False),
            (None, "in-progress", False),
        ],
    )
    def test_is_machine_answer(self, answered_by: str | None, status: str | None, expected: bool) -> None:
        assert is_machine_answer(answered_by, status) is expected


class TestBillingHelpers:
    """Tests for debit amount and note helpers."""

    @pytest.mark.parametrize(
        ("duration", "call_duration", "units"),
        [
            (None, None, 1),
            (0, 0, 1),
            (59, None, 1),
            (60, None, 2),
            (10, 130, 3),
            (185, 20, 4),
        ],
    )
    def test_call_units(self, duration: int | None, call_duration: int | None, units: int) -> None:
        assert call_units(duration, call_duration) == units

    def test_notes(self) -> None:
        assert call_debit_note("CA1", 4, 9) == "Call CA1, Contact 4, Outreach Attempt 9"
        assert message_debit_note("SM1", 4, None) == "Message SM1, Contact 4, Outreach Attempt None"

"""Disposition vocabulary and transition table.

Provider status strings are normalized into the closed ``Disposition`` enum
and every change goes through ``can_transition``. The table only moves
forward: in-flight states advance toward a terminal state and terminal
states never change again, so late or duplicate callbacks are no-ops.
"""

from __future__ import annotations

from enum import StrEnum


class Disposition(StrEnum):
    """Current or terminal outcome of an attempt."""

    IDLE = "idle"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    BUSY = "busy"
    VOICEMAIL = "voicemail"
    CANCELED = "canceled"
    # Message track
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"


IN_FLIGHT: frozenset[Disposition] = frozenset(
    {
        Disposition.INITIATED,
        Disposition.RINGING,
        Disposition.IN_PROGRESS,
        Disposition.IDLE,
        Disposition.QUEUED,
        Disposition.SENDING,
        Disposition.SENT,
    }
)

TERMINAL: frozenset[Disposition] = frozenset(set(Disposition) - IN_FLIGHT)

# Signals that a person or machine picked up
ANSWERED: frozenset[Disposition] = frozenset(
    {Disposition.IN_PROGRESS, Disposition.VOICEMAIL, Disposition.COMPLETED}
)

CALL_BILLABLE: frozenset[Disposition] = frozenset(
    {Disposition.COMPLETED, Disposition.FAILED, Disposition.NO_ANSWER, Disposition.BUSY}
)
MESSAGE_BILLABLE: frozenset[Disposition] = frozenset(
    {Disposition.DELIVERED, Disposition.FAILED, Disposition.UNDELIVERED}
)

TRANSITIONS: dict[Disposition, frozenset[Disposition]] = {
    Disposition.IDLE: frozenset(
        {Disposition.INITIATED, Disposition.RINGING, Disposition.IN_PROGRESS} | TERMINAL
    ),
    Disposition.INITIATED: frozenset({Disposition.RINGING, Disposition.IN_PROGRESS} | TERMINAL),
    Disposition.RINGING: frozenset({Disposition.IN_PROGRESS} | TERMINAL),
    Disposition.IN_PROGRESS: TERMINAL,
    Disposition.QUEUED: frozenset({Disposition.SENDING, Disposition.SENT} | TERMINAL),
    Disposition.SENDING: frozenset({Disposition.SENT} | TERMINAL),
    Disposition.SENT: TERMINAL,
    **{state: frozenset() for state in TERMINAL},
}

# Provider spellings that differ from ours
_ALIASES = {
    "in_progress": Disposition.IN_PROGRESS,
    "inprogress": Disposition.IN_PROGRESS,
    "no_answer": Disposition.NO_ANSWER,
    "noanswer": Disposition.NO_ANSWER,
    "cancelled": Disposition.CANCELED,
    "accepted": Disposition.QUEUED,
    "scheduled": Disposition.QUEUED,
}


def normalize_provider_status(status: str | None) -> Disposition | None:
    """Map a provider status string onto the internal enum.

    Args:
        status: Raw status from a webhook or API response.

    Returns:
        The matching disposition, or None when the status is unknown.
    """
    if not status:
        return None
    value = status.strip().lower()
    try:
        return Disposition(value)
    except ValueError:
        return _ALIASES.get(value)


def parse_disposition(value: str | None) -> Disposition | None:
    """Read a stored disposition column back into the enum."""
    if value is None:
        return None
    try:
        return Disposition(value)
    except ValueError:
        return None


def can_transition(current: Disposition | None, new: Disposition) -> bool:
    """Check whether ``new`` may replace ``current``.

    Anything may be written when no disposition is stored yet. Repeating
    the current state is not a transition.
    """
    if current is None:
        return True
    return new in TRANSITIONS.get(current, frozenset())


def predecessors(new: Disposition) -> frozenset[Disposition]:
    """All stored dispositions from which ``new`` is reachable in one step."""
    return frozenset(state for state, targets in TRANSITIONS.items() if new in targets)


def is_terminal(value: Disposition | str | None) -> bool:
    return parse_disposition(value) in TERMINAL


__all__ = [
    "ANSWERED",
    "CALL_BILLABLE",
    "Disposition",
    "IN_FLIGHT",
    "MESSAGE_BILLABLE",
    "TERMINAL",
    "TRANSITIONS",
    "can_transition",
    "is_terminal",
    "normalize_provider_status",
    "parse_disposition",
    "predecessors",
]

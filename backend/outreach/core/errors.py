"""Error taxonomy for the outreach core.

Each class maps to one failure family the orchestration layer treats
differently: input errors are rejected before anything is written, claim
conflicts are retried by selecting again, placement failures are recorded
on the attempt and skipped, and script defects block campaign activation.
Late or duplicate provider events are not errors at all and never raise.
"""

from __future__ import annotations


class OutreachError(Exception):
    """Base class for all outreach errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(OutreachError):
    """Missing identifiers or malformed payloads."""

    status_code = 400


class NotFoundError(OutreachError):
    """Referenced campaign, contact or attempt does not exist."""

    status_code = 404


class ClaimConflictError(OutreachError):
    """Every claim attempt lost the race to another caller."""

    status_code = 409


class CampaignInactiveError(OutreachError):
    """Campaign is paused, past its end date or otherwise not dialable."""

    status_code = 409


class PlacementError(OutreachError):
    """The dialer or messenger refused or failed to place the request."""

    status_code = 502

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ScriptValidationError(OutreachError):
    """Script graph has dangling references or cycles."""

    status_code = 422

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        super().__init__("; ".join(errors) or "Invalid script")
        self.errors = errors
        self.warnings = warnings or []


__all__ = [
    "CampaignInactiveError",
    "ClaimConflictError",
    "InvalidInputError",
    "NotFoundError",
    "OutreachError",
    "PlacementError",
    "ScriptValidationError",
]

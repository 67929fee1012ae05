"""Database models."""

from outreach.models.billing import BillingDebit
from outreach.models.call import Call, Message
from outreach.models.campaign import Campaign, CampaignQueueItem
from outreach.models.contact import Contact
from outreach.models.outreach_attempt import OutreachAttempt
from outreach.models.script import Script
from outreach.models.workspace import Workspace

__all__ = [
    "BillingDebit",
    "Call",
    "Campaign",
    "CampaignQueueItem",
    "Contact",
    "Message",
    "OutreachAttempt",
    "Script",
    "Workspace",
]

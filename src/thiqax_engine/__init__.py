"""
ThiQaX application engine: eligibility, application lifecycle and
document-expiry notifications for the ThiQaX job platform.

The engine decides whether a job seeker may apply to a posting, advances
applications through their statuses with an append-only history, and derives
exactly-once notification intents for status changes and expiring documents.
"""

__version__ = "0.1.0"

from thiqax_engine.core.engine import ApplicationEngine
from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    Document,
    EligibilityVerdict,
    JobPosting,
    NotificationIntent,
    Profile,
)

__all__ = [
    "ApplicationEngine",
    "Application",
    "ApplicationStatus",
    "Document",
    "EligibilityVerdict",
    "JobPosting",
    "NotificationIntent",
    "Profile",
]

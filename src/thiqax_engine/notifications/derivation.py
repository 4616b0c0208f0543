"""Translate transitions and expiry sweeps into notification intents."""

from datetime import datetime
from typing import Iterable, List, Optional

from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    Document,
    NotificationIntent,
    NotificationType,
    VerificationStatus,
)
from thiqax_engine.eligibility.documents import days_until_expiry

# Statuses entered by a transition; creation emits no intent.
STATUS_MESSAGES = {
    ApplicationStatus.REVIEWING: "Your application is now under review.",
    ApplicationStatus.SHORTLISTED: "Congratulations! You have been shortlisted.",
    ApplicationStatus.INTERVIEW: "You have been selected for an interview.",
    ApplicationStatus.OFFERED: "You have received a job offer.",
    ApplicationStatus.ACCEPTED: "Your job offer acceptance has been recorded.",
    ApplicationStatus.REJECTED: "Your application was not successful.",
    ApplicationStatus.WITHDRAWN: "Your application has been withdrawn.",
}

DOCUMENT_STATUS_TITLES = {
    VerificationStatus.PENDING: "Document Under Review",
    VerificationStatus.VERIFIED: "Document Verified",
    VerificationStatus.REJECTED: "Document Rejected",
}


def transition_dedupe_key(application_id: str, status: ApplicationStatus) -> str:
    return f"{application_id}:{status.value}"


def expiry_dedupe_key(document: Document) -> str:
    """Key for one expiry cycle; the cycle is identified by the current expiry date."""
    cycle = document.expiry_date.isoformat() if document.expiry_date else "none"
    return f"{document.id}:expiry:{cycle}"


def document_status_dedupe_key(document: Document) -> str:
    """Key for one recorded verification decision, identified by the stored version."""
    return f"{document.id}:status:{document.verification_status.value}:{document.version}"


def for_transition(
    application: Application,
    previous_status: Optional[ApplicationStatus] = None
) -> List[NotificationIntent]:
    """One intent telling the job seeker about the application's latest status."""
    latest = application.history[-1] if application.history else None
    note = latest.note if latest else None
    message = STATUS_MESSAGES[application.status]
    if note:
        message = f"{message} {note}"

    return [
        NotificationIntent(
            recipient=application.job_seeker_id,
            type=NotificationType.APPLICATION_STATUS_CHANGE,
            dedupe_key=transition_dedupe_key(application.id, application.status),
            payload={
                "title": "Application Status Updated",
                "message": message,
                "application_id": application.id,
                "job_id": application.job_id,
                "previous_status": previous_status.value if previous_status else None,
                "status": application.status.value,
                "note": note,
                "changed_at": latest.changed_at.isoformat() if latest else None,
            },
        )
    ]


def for_expiring_documents(documents: Iterable[Document], now: datetime) -> List[NotificationIntent]:
    """One intent per document and expiry cycle."""
    intents = []
    for document in documents:
        if document.expiry_date is None:
            continue
        days = days_until_expiry(document, now)
        label = document.name or document.type
        intents.append(
            NotificationIntent(
                recipient=document.owner_id,
                type=NotificationType.DOCUMENT_EXPIRING,
                dedupe_key=expiry_dedupe_key(document),
                payload={
                    "title": "Document Expiring Soon",
                    "message": f'Your document "{label}" will expire in {days} days.',
                    "document_id": document.id,
                    "document_type": document.type,
                    "expiry_date": document.expiry_date.isoformat(),
                    "days_until_expiry": days,
                },
            )
        )
    return intents


def _document_status_message(document: Document, note: Optional[str]) -> str:
    status = document.verification_status
    if status == VerificationStatus.PENDING:
        return f"Your {document.type} document is now being reviewed by our team."
    if status == VerificationStatus.VERIFIED:
        return f"Your {document.type} document has been verified."
    reason = note or "Please check the document details and upload again if needed."
    return f"Your {document.type} document was rejected: {reason}"


def for_document_status(document: Document, note: Optional[str] = None) -> List[NotificationIntent]:
    """One intent telling the owner about a recorded verification decision."""
    status = document.verification_status
    return [
        NotificationIntent(
            recipient=document.owner_id,
            type=NotificationType.DOCUMENT_STATUS_CHANGE,
            dedupe_key=document_status_dedupe_key(document),
            payload={
                "title": DOCUMENT_STATUS_TITLES[status],
                "message": _document_status_message(document, note),
                "document_id": document.id,
                "document_type": document.type,
                "status": status.value,
                "note": note,
                "verified_at": document.verified_at.isoformat() if document.verified_at else None,
            },
        )
    ]

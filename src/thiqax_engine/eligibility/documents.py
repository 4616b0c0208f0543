"""Document verification and expiry tracking."""

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from thiqax_engine.core.errors import InvalidTransitionError
from thiqax_engine.core.models import Document, JobPosting, VerificationStatus, ensure_utc
from thiqax_engine.utils.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# Outcomes a verifier may record; EXPIRED is only ever computed.
RECORDABLE_STATUSES = (
    VerificationStatus.PENDING,
    VerificationStatus.VERIFIED,
    VerificationStatus.REJECTED,
)


def days_until_expiry(document: Document, now: datetime) -> Optional[int]:
    """Whole days left before expiry, rounded up; 0 once expired, None if it never expires."""
    if document.expiry_date is None:
        return None
    remaining = (document.expiry_date - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining / SECONDS_PER_DAY)


class DocumentVerificationTracker:
    """Computes document validity and expiry state against a job's requirements."""

    def __init__(self):
        self.logger = logger.bind(component="document_tracker")

    def required_documents(self, job: JobPosting) -> List[str]:
        """Ordered, de-duplicated document type codes the job asks for."""
        return list(dict.fromkeys(job.required_documents))

    def effective_status(self, document: Document, now: datetime) -> VerificationStatus:
        """Stored status, overridden by EXPIRED once the expiry date has passed."""
        if document.expiry_date is not None and document.expiry_date < now:
            return VerificationStatus.EXPIRED
        return document.verification_status

    def is_valid(self, document: Document, now: datetime) -> bool:
        """Verified and not yet expired."""
        return self.effective_status(document, now) == VerificationStatus.VERIFIED

    def evaluate(
        self,
        documents: Iterable[Document],
        required_types: Sequence[str],
        now: datetime
    ) -> List[str]:
        """
        Return the required types with no valid document, in required order.

        A type is satisfied by any document of that type that is verified and
        whose expiry date is absent or not before ``now``.
        """
        satisfied = {doc.type for doc in documents if self.is_valid(doc, now)}
        return [t for t in dict.fromkeys(required_types) if t not in satisfied]

    def days_until_expiry(self, document: Document, now: datetime) -> Optional[int]:
        return days_until_expiry(document, now)

    def select_expiring(
        self,
        documents: Iterable[Document],
        now: datetime,
        horizon_days: int
    ) -> List[Document]:
        """Documents expiring within ``[now, now + horizon_days]`` not yet notified this cycle."""
        if horizon_days < 0:
            raise ValueError("horizon_days must be non-negative")

        until = now + timedelta(days=horizon_days)
        return [
            doc for doc in documents
            if doc.expiry_date is not None
            and now <= doc.expiry_date <= until
            and not doc.notification_sent
        ]

    def sweep_expirations(
        self,
        documents: Sequence[Document],
        now: datetime,
        horizon_days: int
    ) -> List[str]:
        """
        Return the ids of documents due an expiry notice and mark them notified.

        Marking happens on the given objects, so a second sweep over the same
        documents returns nothing until a document's expiry cycle is renewed.
        """
        expiring = self.select_expiring(documents, now, horizon_days)
        for doc in expiring:
            doc.notification_sent = True

        self.logger.info(
            "Expiration sweep completed",
            scanned=len(documents),
            expiring=len(expiring),
            horizon_days=horizon_days
        )
        return [doc.id for doc in expiring]

    def record_verification(
        self,
        document: Document,
        status: VerificationStatus,
        now: datetime
    ) -> Document:
        """Return a copy of ``document`` carrying a verifier's decision."""
        if status not in RECORDABLE_STATUSES:
            raise InvalidTransitionError(
                "Expired status is computed from the expiry date and cannot be set",
                current=document.verification_status.value,
                target=status.value
            )
        return document.model_copy(update={"verification_status": status, "verified_at": now})

    def renew(self, document: Document, expiry_date: Optional[datetime]) -> Document:
        """Return a copy with a new expiry date, starting a fresh notification cycle."""
        expiry_date = ensure_utc(expiry_date)
        if expiry_date == document.expiry_date:
            return document.model_copy()
        return document.model_copy(update={"expiry_date": expiry_date, "notification_sent": False})

"""Collaborator contracts consumed by the engine."""

from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, runtime_checkable

from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    Document,
    EligibilityVerdict,
    JobPosting,
    NotificationIntent,
    Profile,
)

EligibilityCheck = Callable[[], Awaitable[EligibilityVerdict]]


@runtime_checkable
class JobStore(Protocol):
    async def get_job(self, job_id: str) -> JobPosting:
        """Return the posting or raise NotFoundError."""
        ...


@runtime_checkable
class ProfileStore(Protocol):
    async def get_profile(self, job_seeker_id: str) -> Profile:
        """Return the profile or raise NotFoundError."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    async def get_document(self, document_id: str) -> Document:
        """Return the document or raise NotFoundError."""
        ...

    async def list_documents(self, job_seeker_id: str) -> List[Document]:
        """Documents owned by a job seeker, in upload order."""
        ...

    async def list_all_documents(self) -> List[Document]:
        """Every document, in upload order."""
        ...

    async def update_notification_flag(self, document_id: str, value: bool, expected: bool) -> Document:
        """Set the flag only if it currently equals ``expected``; raise ConflictError otherwise."""
        ...

    async def replace_document(self, document: Document, expected_version: int) -> Document:
        """
        Store ``document`` if the stored copy is still at ``expected_version``,
        bumping the version. Raises ConflictError when another write got there first.
        """
        ...


@runtime_checkable
class ApplicationStore(Protocol):
    async def get(self, application_id: str) -> Application:
        """Return the application or raise NotFoundError."""
        ...

    async def get_by_key(self, job_id: str, job_seeker_id: str) -> Optional[Application]:
        ...

    async def create_atomic(self, application: Application, eligibility_check: EligibilityCheck) -> Application:
        """
        Insert ``application`` if no record exists for its (job, job seeker) pair
        and ``eligibility_check`` passes, as one serialised step.

        Raises ConflictError for a duplicate and IneligibleError for a failed check.
        """
        ...

    async def transition_atomic(
        self,
        application_id: str,
        expected_version: int,
        new_status: ApplicationStatus,
        note: Optional[str],
        changed_at: datetime
    ) -> Application:
        """
        Move the application to ``new_status`` and append history in one step.

        Raises NotFoundError, VersionConflictError or InvalidTransitionError.
        """
        ...

    async def attach_documents(
        self,
        application_id: str,
        expected_version: int,
        document_ids: Sequence[str],
        changed_at: datetime
    ) -> Application:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def send(self, intent: NotificationIntent) -> None:
        """Deliver the intent; idempotent on ``dedupe_key``. Raises UpstreamUnavailableError."""
        ...

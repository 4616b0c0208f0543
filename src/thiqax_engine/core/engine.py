"""Application lifecycle and eligibility engine."""

from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple, Union

from thiqax_engine.config import Settings, settings as default_settings
from thiqax_engine.core.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamUnavailableError,
    VersionConflictError,
)
from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    CompletenessReport,
    Document,
    EligibilityVerdict,
    NotificationIntent,
    StatusChange,
    VerificationStatus,
    utc_now,
)
from thiqax_engine.eligibility.completeness import CompletenessCalculator
from thiqax_engine.eligibility.documents import DocumentVerificationTracker
from thiqax_engine.eligibility.evaluator import EligibilityEvaluator
from thiqax_engine.lifecycle.state_machine import ApplicationStateMachine
from thiqax_engine.notifications import derivation
from thiqax_engine.notifications.dispatcher import NotificationOutbox, deliver
from thiqax_engine.stores.base import (
    ApplicationStore,
    DocumentStore,
    JobStore,
    NotificationDispatcher,
    ProfileStore,
)
from thiqax_engine.utils.logging import get_logger
from thiqax_engine.utils.retry import bounded, retry_async

logger = get_logger(__name__)


class ApplicationEngine:
    """
    Entry point for the apply, check-eligibility, advance-status and
    document-expiry operations.

    The engine holds no application state of its own: every operation reads
    from and writes through the collaborator stores, so separate engine
    instances over the same stores stay consistent.
    """

    def __init__(
        self,
        job_store: JobStore,
        profile_store: ProfileStore,
        document_store: DocumentStore,
        application_store: ApplicationStore,
        dispatcher: NotificationDispatcher,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config or default_settings
        self.clock = clock
        self.job_store = job_store
        self.profile_store = profile_store
        self.document_store = document_store
        self.application_store = application_store
        self.dispatcher = dispatcher
        self.outbox = NotificationOutbox()
        self.logger = logger.bind(component="application_engine")

        timeout = self.config.store_timeout_seconds
        self.calculator = CompletenessCalculator(
            self.config.tracked_profile_fields, self.config.profile_field_weights
        )
        self.tracker = DocumentVerificationTracker()
        self.evaluator = EligibilityEvaluator(
            job_store,
            profile_store,
            document_store,
            self.calculator,
            tracker=self.tracker,
            required_threshold=self.config.completeness_threshold,
            clock=clock,
            timeout=timeout
        )
        self.state_machine = ApplicationStateMachine(
            application_store,
            self.evaluator,
            clock=clock,
            timeout=timeout,
            max_attempts=self.config.max_retries
        )

    async def _read_with_retry(self, fn, operation: str, **log_context):
        return await retry_async(
            fn,
            operation=operation,
            max_attempts=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            **log_context
        )

    async def _deliver(self, intents: Sequence[NotificationIntent]) -> List[NotificationIntent]:
        return await deliver(
            self.dispatcher,
            intents,
            self.outbox,
            timeout=self.config.store_timeout_seconds,
            max_attempts=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay
        )

    async def _owned_documents(self, job_seeker_id: str, document_ids: Sequence[str]) -> List[str]:
        """Validate that every id names a document owned by the job seeker."""
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return ids
        owned = await bounded(
            self.document_store.list_documents(job_seeker_id),
            self.config.store_timeout_seconds,
            "document_store.list_documents"
        )
        known = {doc.id for doc in owned}
        for document_id in ids:
            if document_id not in known:
                raise NotFoundError("document", document_id, details={"job_seeker_id": job_seeker_id})
        return ids

    # Eligibility

    async def check_eligibility(self, job_seeker_id: str, job_id: str) -> EligibilityVerdict:
        """Evaluate whether the job seeker may apply to the job now."""
        return await self._read_with_retry(
            lambda: self.evaluator.evaluate(job_seeker_id, job_id),
            "check_eligibility",
            job_id=job_id,
            job_seeker_id=job_seeker_id
        )

    async def profile_completeness(self, job_seeker_id: str) -> CompletenessReport:
        profile = await self._read_with_retry(
            lambda: bounded(
                self.profile_store.get_profile(job_seeker_id),
                self.config.store_timeout_seconds,
                "profile_store.get_profile"
            ),
            "profile_completeness",
            job_seeker_id=job_seeker_id
        )
        return self.calculator.compute(profile)

    # Applications

    async def submit_application(
        self,
        job_seeker_id: str,
        job_id: str,
        cover_letter: str = "",
        document_ids: Sequence[str] = ()
    ) -> Application:
        """
        Apply to a job.

        Eligibility is re-evaluated atomically with the insert, never taken from
        an earlier verdict.

        Raises:
            ConflictError: already applied
            IneligibleError: the verdict is negative (carried on the exception)
            NotFoundError: job, profile or a referenced document does not exist
            UpstreamUnavailableError: a store failed; nothing was written
        """
        ids = await self._owned_documents(job_seeker_id, document_ids)
        return await self.state_machine.create(job_seeker_id, job_id, cover_letter, ids)

    async def advance_application(
        self,
        application_id: str,
        target_status: Union[ApplicationStatus, str],
        note: Optional[str] = None
    ) -> Application:
        """
        Move an application to ``target_status`` and notify the job seeker.

        The status change and its history entry commit together. Notification
        delivery happens after the commit; intents that cannot be delivered are
        kept in the outbox rather than undoing the transition.
        """
        try:
            target = ApplicationStatus(target_status)
        except ValueError as e:
            raise InvalidTransitionError(f"Unknown application status: {target_status}", cause=e) from e

        application, previous = await self.state_machine.transition(application_id, target, note)
        await self._deliver(derivation.for_transition(application, previous))
        return application

    async def withdraw_application(self, application_id: str, reason: Optional[str] = None) -> Application:
        """Job-seeker-initiated withdrawal."""
        return await self.advance_application(application_id, ApplicationStatus.WITHDRAWN, reason)

    async def attach_documents(self, application_id: str, document_ids: Sequence[str]) -> Application:
        """Link more of the applicant's documents to an open application."""
        for attempt in range(1, self.config.max_retries + 1):
            current = await bounded(
                self.application_store.get(application_id),
                self.config.store_timeout_seconds,
                "application_store.get"
            )
            ids = await self._owned_documents(current.job_seeker_id, document_ids)
            try:
                updated = await bounded(
                    self.application_store.attach_documents(application_id, current.version, ids, self.clock()),
                    self.config.store_timeout_seconds,
                    "application_store.attach_documents"
                )
            except VersionConflictError:
                if attempt == self.config.max_retries:
                    raise
                continue
            self.logger.info(
                "Documents attached to application",
                application_id=application_id,
                document_count=len(updated.documents)
            )
            return updated
        raise RuntimeError("unreachable")

    async def get_application(self, application_id: str) -> Application:
        return await bounded(
            self.application_store.get(application_id),
            self.config.store_timeout_seconds,
            "application_store.get"
        )

    async def get_timeline(self, application_id: str) -> List[StatusChange]:
        """Status history, oldest first."""
        application = await self.get_application(application_id)
        return list(application.history)

    # Documents

    async def _update_document(
        self,
        document_id: str,
        change: Callable[[Document], Document],
        operation: str
    ) -> Tuple[Document, Document]:
        """Read, change and conditionally write a document; returns the states before and after."""
        for attempt in range(1, self.config.max_retries + 1):
            current = await self._read_with_retry(
                lambda: bounded(
                    self.document_store.get_document(document_id),
                    self.config.store_timeout_seconds,
                    "document_store.get_document"
                ),
                operation,
                document_id=document_id
            )
            candidate = change(current)
            try:
                updated = await bounded(
                    self.document_store.replace_document(candidate, current.version),
                    self.config.store_timeout_seconds,
                    "document_store.replace_document"
                )
            except ConflictError:
                self.logger.warning(
                    "Concurrent document update detected, re-reading document",
                    document_id=document_id,
                    attempt=attempt
                )
                if attempt == self.config.max_retries:
                    raise
                continue
            return current, updated
        raise RuntimeError("unreachable")

    async def record_document_verification(
        self,
        document_id: str,
        status: Union[VerificationStatus, str],
        note: Optional[str] = None
    ) -> Document:
        """
        Store a verifier's decision and tell the owner when the status changed.

        Raises:
            InvalidTransitionError: ``status`` is unknown or is the computed EXPIRED status
            NotFoundError: no such document
            ConflictError: the document kept changing underneath every attempt
        """
        try:
            status = VerificationStatus(status)
        except ValueError as e:
            raise InvalidTransitionError(f"Unknown verification status: {status}", cause=e) from e

        now = self.clock()
        before, updated = await self._update_document(
            document_id,
            lambda document: self.tracker.record_verification(document, status, now),
            "record_document_verification"
        )
        self.logger.info(
            "Document verification recorded",
            document_id=document_id,
            previous_status=before.verification_status.value,
            status=updated.verification_status.value
        )
        if before.verification_status != updated.verification_status:
            await self._deliver(derivation.for_document_status(updated, note))
        return updated

    async def renew_document(self, document_id: str, expiry_date: Optional[datetime]) -> Document:
        """Set a new expiry date, opening a new expiry-notice cycle when the date changes."""
        _, updated = await self._update_document(
            document_id,
            lambda document: self.tracker.renew(document, expiry_date),
            "renew_document"
        )
        self.logger.info(
            "Document expiry renewed",
            document_id=document_id,
            expiry_date=updated.expiry_date.isoformat() if updated.expiry_date else None
        )
        return updated

    # Document expiry

    async def _claim(self, document: Document) -> bool:
        try:
            await bounded(
                self.document_store.update_notification_flag(document.id, True, expected=False),
                self.config.store_timeout_seconds,
                "document_store.update_notification_flag"
            )
        except ConflictError:
            self.logger.debug("Expiry notice already claimed", document_id=document.id)
            return False
        except UpstreamUnavailableError as e:
            self.logger.error(
                "Could not claim expiry notice, leaving for next sweep",
                document_id=document.id,
                error=str(e)
            )
            return False
        return True

    async def sweep_document_expirations(self, horizon_days: Optional[int] = None) -> List[NotificationIntent]:
        """
        Emit one expiry intent per document expiring within the horizon that has
        not been notified this cycle.

        Each document is claimed with a conditional write before its intent is
        produced, so overlapping sweeps never notify the same document twice.
        """
        horizon = self.config.expiry_horizon_days if horizon_days is None else horizon_days
        if horizon < 0:
            raise InvalidArgumentError("horizon_days must be non-negative", argument="horizon_days")
        now = self.clock()
        documents = await self._read_with_retry(
            lambda: bounded(
                self.document_store.list_all_documents(),
                self.config.store_timeout_seconds,
                "document_store.list_all_documents"
            ),
            "sweep_document_expirations"
        )

        claimed = []
        for document in self.tracker.select_expiring(documents, now, horizon):
            if await self._claim(document):
                claimed.append(document)

        intents = derivation.for_expiring_documents(claimed, now)
        await self._deliver(intents)

        self.logger.info(
            "Document expiration sweep finished",
            scanned=len(documents),
            notified=len(intents),
            horizon_days=horizon
        )
        return intents

    async def flush_notifications(self) -> int:
        """Retry intents parked in the outbox; returns how many were delivered."""
        pending = self.outbox.pending()
        if not pending:
            return 0
        failed = await self._deliver(pending)
        return len(pending) - len(failed)

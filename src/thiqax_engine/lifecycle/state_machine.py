"""Application status transitions and history bookkeeping."""

from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from thiqax_engine.core.errors import ConflictError, InvalidTransitionError, VersionConflictError
from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    EligibilityVerdict,
    StatusChange,
    ensure_utc,
    utc_now,
)
from thiqax_engine.utils.logging import get_logger, log_application_state
from thiqax_engine.utils.retry import bounded

if TYPE_CHECKING:
    from thiqax_engine.eligibility.evaluator import EligibilityEvaluator
    from thiqax_engine.stores.base import ApplicationStore

logger = get_logger(__name__)

INITIAL_STATUS = ApplicationStatus.APPLIED

TERMINAL_STATUSES: FrozenSet[ApplicationStatus] = frozenset({
    ApplicationStatus.ACCEPTED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.WITHDRAWN,
})

# Forward progression; WITHDRAWN and REJECTED are added for every non-terminal state below.
_FORWARD: Dict[ApplicationStatus, ApplicationStatus] = {
    ApplicationStatus.APPLIED: ApplicationStatus.REVIEWING,
    ApplicationStatus.REVIEWING: ApplicationStatus.SHORTLISTED,
    ApplicationStatus.SHORTLISTED: ApplicationStatus.INTERVIEW,
    ApplicationStatus.INTERVIEW: ApplicationStatus.OFFERED,
    ApplicationStatus.OFFERED: ApplicationStatus.ACCEPTED,
}


def _build_transition_table() -> Dict[ApplicationStatus, FrozenSet[ApplicationStatus]]:
    table = {}
    for status in ApplicationStatus:
        if status in TERMINAL_STATUSES:
            table[status] = frozenset()
            continue
        targets = {ApplicationStatus.WITHDRAWN, ApplicationStatus.REJECTED}
        if status in _FORWARD:
            targets.add(_FORWARD[status])
        table[status] = frozenset(targets)
    return table


TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = _build_transition_table()

NOTE_REQUIRED: FrozenSet[ApplicationStatus] = frozenset({ApplicationStatus.REJECTED})


def is_terminal(status: ApplicationStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_transitions(status: ApplicationStatus) -> List[ApplicationStatus]:
    """Targets reachable from ``status``, in declaration order."""
    return [s for s in ApplicationStatus if s in TRANSITIONS[status]]


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(current: ApplicationStatus, target: ApplicationStatus, note: Optional[str]) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is permitted with ``note``."""
    if is_terminal(current):
        raise InvalidTransitionError(
            f"Application is {current.value} and can no longer change status",
            current=current.value,
            target=target.value
        )
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move application from {current.value} to {target.value}",
            current=current.value,
            target=target.value
        )
    if target in NOTE_REQUIRED and not (note and note.strip()):
        raise InvalidTransitionError(
            f"A note explaining the reason is required to move to {target.value}",
            current=current.value,
            target=target.value
        )


def start_history(changed_at: datetime, note: Optional[str] = None) -> List[StatusChange]:
    """History for a newly created application."""
    return [StatusChange(status=INITIAL_STATUS, changed_at=changed_at, note=note)]


def apply_transition(
    application: Application,
    target: ApplicationStatus,
    note: Optional[str],
    now: datetime
) -> Application:
    """
    Return the next state of ``application`` after moving to ``target``.

    The input is left untouched. The new history entry is never stamped earlier
    than the previous one, so history stays in chronological order even if the
    caller's clock steps backwards.
    """
    validate_transition(application.status, target, note)

    changed_at = ensure_utc(now)
    if application.history and application.history[-1].changed_at > changed_at:
        changed_at = application.history[-1].changed_at

    entry = StatusChange(status=target, changed_at=changed_at, note=note)
    return application.model_copy(
        update={
            "status": target,
            "history": [*application.history, entry],
            "version": application.version + 1,
            "updated_at": changed_at,
        },
        deep=True
    )


class ApplicationStateMachine:
    """
    Owns application creation and status changes against an ApplicationStore.

    Every write goes through the store's atomic primitives: creation re-runs the
    eligibility check inside the store's critical section, and transitions are
    compare-and-swap on the application's version. A lost race is retried
    against the freshly read state, so a second concurrent request is judged by
    the status the first one produced.
    """

    def __init__(
        self,
        store: "ApplicationStore",
        evaluator: "EligibilityEvaluator",
        clock: Callable[[], datetime] = utc_now,
        timeout: Optional[float] = None,
        max_attempts: int = 3
    ):
        self.store = store
        self.evaluator = evaluator
        self.clock = clock
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.logger = logger.bind(component="application_state_machine")

    async def create(
        self,
        job_seeker_id: str,
        job_id: str,
        cover_letter: str = "",
        document_ids: Sequence[str] = ()
    ) -> Application:
        """
        Create an application in the initial status.

        Raises:
            ConflictError: the job seeker already applied to this job
            IneligibleError: the eligibility re-check failed
        """
        existing = await bounded(
            self.store.get_by_key(job_id, job_seeker_id), self.timeout, "application_store.get_by_key"
        )
        if existing is not None:
            self.logger.info("Duplicate application refused", job_id=job_id, job_seeker_id=job_seeker_id)
            raise ConflictError(
                "Already applied",
                details={"job_id": job_id, "job_seeker_id": job_seeker_id, "application_id": existing.id}
            )

        now = self.clock()
        application = Application(
            job_id=job_id,
            job_seeker_id=job_seeker_id,
            status=INITIAL_STATUS,
            cover_letter=cover_letter,
            documents=list(document_ids),
            history=start_history(now, "Application submitted"),
            created_at=now,
            updated_at=now,
        )

        async def recheck() -> EligibilityVerdict:
            return await self.evaluator.evaluate(job_seeker_id, job_id)

        created = await bounded(
            self.store.create_atomic(application, recheck), self.timeout, "application_store.create_atomic"
        )
        self.logger.info("Application created", **log_application_state(created))
        return created

    async def transition(
        self,
        application_id: str,
        target: ApplicationStatus,
        note: Optional[str] = None
    ) -> Tuple[Application, ApplicationStatus]:
        """
        Move an application to ``target``; returns the new state and the status it left.

        Raises:
            NotFoundError: no such application
            InvalidTransitionError: ``target`` is not reachable from the current status
            VersionConflictError: the race was lost on every attempt
        """
        for attempt in range(1, self.max_attempts + 1):
            current = await bounded(self.store.get(application_id), self.timeout, "application_store.get")
            validate_transition(current.status, target, note)

            try:
                updated = await bounded(
                    self.store.transition_atomic(
                        application_id, current.version, target, note, self.clock()
                    ),
                    self.timeout,
                    "application_store.transition_atomic"
                )
            except VersionConflictError as e:
                self.logger.warning(
                    "Concurrent update detected, re-reading application",
                    application_id=application_id,
                    attempt=attempt,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version
                )
                if attempt == self.max_attempts:
                    raise
                continue

            self.logger.info(
                "Application status changed",
                previous_status=current.status.value,
                **log_application_state(updated)
            )
            return updated, current.status

        raise RuntimeError("unreachable")

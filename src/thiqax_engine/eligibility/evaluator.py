"""Eligibility evaluation combining job state, profile completeness and documents."""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional

from thiqax_engine.core.models import (
    Document,
    EligibilityVerdict,
    JobPosting,
    JobStatus,
    Profile,
    utc_now,
)
from thiqax_engine.eligibility.completeness import CompletenessCalculator
from thiqax_engine.eligibility.documents import DocumentVerificationTracker
from thiqax_engine.stores.base import DocumentStore, JobStore, ProfileStore
from thiqax_engine.utils.logging import get_logger
from thiqax_engine.utils.retry import bounded

logger = get_logger(__name__)

REASON_JOB_NOT_ACCEPTING = "Job is not accepting applications"
REASON_JOB_EXPIRED = "Job posting has expired"
REASON_INCOMPLETE_PROFILE = "Incomplete profile"
REASON_MISSING_DOCUMENTS = "Missing required documents"
WARNING_MISSING_SKILLS = "Profile is missing some preferred skills"


def _ordered_union(*groups: List[str]) -> List[str]:
    return list(dict.fromkeys(code for group in groups for code in group))


class EligibilityEvaluator:
    """
    Decides whether a job seeker may apply to a job right now.

    Checks run in a fixed order: job status, job expiry, profile completeness,
    then required documents. The first two short-circuit. Reasons and missing
    requirements are emitted in check order so identical inputs always produce
    identical verdicts.
    """

    def __init__(
        self,
        job_store: JobStore,
        profile_store: ProfileStore,
        document_store: DocumentStore,
        calculator: CompletenessCalculator,
        tracker: Optional[DocumentVerificationTracker] = None,
        required_threshold: int = 100,
        clock: Callable[[], datetime] = utc_now,
        timeout: Optional[float] = None
    ):
        if not 0 <= required_threshold <= 100:
            raise ValueError("required_threshold must be between 0 and 100")
        self.job_store = job_store
        self.profile_store = profile_store
        self.document_store = document_store
        self.calculator = calculator
        self.tracker = tracker or DocumentVerificationTracker()
        self.required_threshold = required_threshold
        self.clock = clock
        self.timeout = timeout
        self.logger = logger.bind(component="eligibility_evaluator")

    async def evaluate(self, job_seeker_id: str, job_id: str) -> EligibilityVerdict:
        """
        Evaluate eligibility.

        The job is read first. A job that is not accepting applications or has
        expired yields its verdict without reading the profile or documents.

        Raises:
            NotFoundError: the job does not exist, or the job is open and the
                job seeker's profile does not exist
            UpstreamUnavailableError: a store timed out or failed
        """
        job = await bounded(self.job_store.get_job(job_id), self.timeout, "job_store.get_job")
        now = self.clock()

        verdict = self._job_state_verdict(job, job_seeker_id, now)
        if verdict is None:
            profile, documents = await asyncio.gather(
                bounded(self.profile_store.get_profile(job_seeker_id), self.timeout, "profile_store.get_profile"),
                bounded(
                    self.document_store.list_documents(job_seeker_id), self.timeout, "document_store.list_documents"
                ),
            )
            verdict = self.evaluate_snapshot(job, profile, documents, now)

        self.logger.info(
            "Eligibility evaluated",
            job_id=job_id,
            job_seeker_id=job_seeker_id,
            eligible=verdict.eligible,
            missing_requirements=verdict.missing_requirements
        )
        return verdict

    def _job_state_verdict(self, job: JobPosting, job_seeker_id: str, now: datetime) -> Optional[EligibilityVerdict]:
        """Verdict for a job that cannot take applications, or None when it can."""
        if job.status != JobStatus.ACTIVE:
            reason = REASON_JOB_NOT_ACCEPTING
        elif now >= job.expires_at:
            reason = REASON_JOB_EXPIRED
        else:
            return None
        return EligibilityVerdict(job_id=job.id, job_seeker_id=job_seeker_id, eligible=False, reasons=[reason])

    def evaluate_snapshot(
        self,
        job: JobPosting,
        profile: Profile,
        documents: List[Document],
        now: datetime
    ) -> EligibilityVerdict:
        """Pure evaluation over already-fetched data."""
        job_state = self._job_state_verdict(job, profile.job_seeker_id, now)
        if job_state is not None:
            return job_state
        base = {"job_id": job.id, "job_seeker_id": profile.job_seeker_id}

        reasons = []
        missing_fields = []
        report = self.calculator.compute(profile)
        if report.completion_percentage < self.required_threshold:
            reasons.append(REASON_INCOMPLETE_PROFILE)
            missing_fields = list(report.missing_fields)

        required = self.tracker.required_documents(job)
        missing_documents = self.tracker.evaluate(documents, required, now)
        if missing_documents:
            reasons.append(REASON_MISSING_DOCUMENTS)

        warnings = []
        skills = {s.strip().lower() for s in profile.skills}
        if any(s.strip().lower() not in skills for s in job.required_skills):
            warnings.append(WARNING_MISSING_SKILLS)

        missing_requirements = _ordered_union(missing_fields, missing_documents)
        return EligibilityVerdict(
            eligible=not missing_requirements and job.is_open(now),
            missing_requirements=missing_requirements,
            reasons=reasons,
            missing_fields=missing_fields,
            missing_documents=missing_documents,
            warnings=warnings,
            **base
        )

"""Shared builders for engine tests."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from thiqax_engine.config import Settings
from thiqax_engine.core.engine import ApplicationEngine
from thiqax_engine.core.models import (
    Application,
    Document,
    Education,
    JobPosting,
    JobStatus,
    Profile,
    VerificationStatus,
)
from thiqax_engine.lifecycle.state_machine import start_history
from thiqax_engine.notifications.dispatcher import InMemoryNotificationDispatcher
from thiqax_engine.stores.memory import Fixtures, create_in_memory_stores

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


def fast_settings(**overrides) -> Settings:
    values = dict(
        store_timeout_seconds=0.5,
        max_retries=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )
    values.update(overrides)
    return Settings(**values)


def make_job(job_id: str = "J1", **overrides) -> JobPosting:
    values = dict(
        id=job_id,
        title="Housekeeper",
        required_documents=["PASSPORT", "RESUME"],
        required_skills=["cleaning"],
        status=JobStatus.ACTIVE,
        expires_at=NOW + timedelta(days=60),
    )
    values.update(overrides)
    return JobPosting(**values)


def complete_profile(job_seeker_id: str = "S1", **overrides) -> Profile:
    values = dict(
        job_seeker_id=job_seeker_id,
        full_name="Amina Yusuf",
        date_of_birth=date(1995, 4, 2),
        gender="female",
        nationality="KE",
        phone_number="+254700000000",
        address="Nairobi",
        education=[Education(institution="Nairobi Polytechnic")],
        skills=["cleaning", "cooking"],
        languages=["English", "Swahili"],
        preferred_locations=["Dubai"],
    )
    values.update(overrides)
    return Profile(**values)


def make_document(
    doc_id: str,
    owner_id: str = "S1",
    doc_type: str = "PASSPORT",
    status: VerificationStatus = VerificationStatus.VERIFIED,
    expiry_date: Optional[datetime] = None,
    **overrides
) -> Document:
    return Document(
        id=doc_id,
        owner_id=owner_id,
        type=doc_type,
        verification_status=status,
        expiry_date=expiry_date,
        uploaded_at=NOW - timedelta(days=10),
        **overrides
    )


def eligible_fixtures() -> Fixtures:
    """One active job and one job seeker who satisfies it."""
    return Fixtures(
        jobs=[make_job("J1")],
        profiles=[complete_profile("S1")],
        documents=[
            make_document("D1", doc_type="PASSPORT", expiry_date=NOW + timedelta(days=400)),
            make_document("D2", doc_type="RESUME"),
        ],
    )


def build_engine(
    fixtures: Optional[Fixtures] = None,
    dispatcher=None,
    clock: Optional[FixedClock] = None,
    config: Optional[Settings] = None,
    stores=None,
):
    """Return ``(engine, stores, dispatcher)`` over in-memory collaborators."""
    stores = stores or create_in_memory_stores(fixtures if fixtures is not None else eligible_fixtures())
    dispatcher = dispatcher or InMemoryNotificationDispatcher()
    engine = ApplicationEngine(
        stores.jobs,
        stores.profiles,
        stores.documents,
        stores.applications,
        dispatcher,
        config=config or fast_settings(),
        clock=clock or FixedClock(),
    )
    return engine, stores, dispatcher


def new_application(application_id: str = "A1") -> Application:
    """An APPLIED application with its opening history entry."""
    return Application(
        id=application_id,
        job_id="J1",
        job_seeker_id="S1",
        history=start_history(NOW, "Application submitted"),
        created_at=NOW,
        updated_at=NOW,
    )

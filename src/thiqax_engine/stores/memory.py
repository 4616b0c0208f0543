"""In-memory collaborator stores for development, the CLI and tests."""

import asyncio
import json
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from thiqax_engine.core.errors import (
    ConflictError,
    IneligibleError,
    InvalidTransitionError,
    NotFoundError,
    VersionConflictError,
)
from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    Document,
    JobPosting,
    Profile,
)
from thiqax_engine.lifecycle.state_machine import apply_transition, is_terminal
from thiqax_engine.stores.base import EligibilityCheck
from thiqax_engine.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryJobStore:
    """Job postings keyed by id."""

    def __init__(self, jobs: Iterable[JobPosting] = ()):
        self._jobs: Dict[str, JobPosting] = {}
        for job in jobs:
            self.save_job(job)

    def save_job(self, job: JobPosting) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> JobPosting:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job.model_copy(deep=True)


class InMemoryProfileStore:
    """Profiles keyed by job seeker id."""

    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles: Dict[str, Profile] = {}
        for profile in profiles:
            self.save_profile(profile)

    def save_profile(self, profile: Profile) -> None:
        self._profiles[profile.job_seeker_id] = profile.model_copy(deep=True)

    async def get_profile(self, job_seeker_id: str) -> Profile:
        profile = self._profiles.get(job_seeker_id)
        if profile is None:
            raise NotFoundError("profile", job_seeker_id)
        return profile.model_copy(deep=True)


class InMemoryDocumentStore:
    """Documents in upload order, with a conditional write for the expiry flag."""

    def __init__(self, documents: Iterable[Document] = ()):
        self._documents: Dict[str, Document] = {}
        self._lock = asyncio.Lock()
        for document in documents:
            self.save_document(document)

    def save_document(self, document: Document) -> None:
        self._documents[document.id] = document.model_copy(deep=True)

    async def get_document(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError("document", document_id)
        return document.model_copy(deep=True)

    async def list_documents(self, job_seeker_id: str) -> List[Document]:
        return [d.model_copy(deep=True) for d in self._documents.values() if d.owner_id == job_seeker_id]

    async def list_all_documents(self) -> List[Document]:
        return [d.model_copy(deep=True) for d in self._documents.values()]

    async def update_notification_flag(self, document_id: str, value: bool, expected: bool) -> Document:
        async with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise NotFoundError("document", document_id)
            if current.notification_sent != expected:
                raise ConflictError(
                    f"Notification flag for document {document_id} already changed",
                    details={"document_id": document_id}
                )
            updated = current.model_copy(update={"notification_sent": value, "version": current.version + 1})
            self._documents[document_id] = updated
            return updated.model_copy(deep=True)

    async def replace_document(self, document: Document, expected_version: int) -> Document:
        async with self._lock:
            current = self._documents.get(document.id)
            if current is None:
                raise NotFoundError("document", document.id)
            if current.version != expected_version:
                raise ConflictError(
                    f"Document {document.id} changed concurrently",
                    details={
                        "document_id": document.id,
                        "expected_version": expected_version,
                        "actual_version": current.version,
                    }
                )
            updated = document.model_copy(update={"version": current.version + 1}, deep=True)
            self._documents[document.id] = updated
            return updated.model_copy(deep=True)


class InMemoryApplicationStore:
    """
    Applications with per-entity serialisation.

    Writes to one application are serialised by a lock keyed on its id and
    guarded by a version counter; creation is serialised per (job, job seeker)
    pair so the duplicate check, the eligibility re-check and the insert happen
    as one step. Locks are held weakly and disappear once no caller uses them.
    """

    def __init__(self, applications: Iterable[Application] = ()):
        self._applications: Dict[str, Application] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}
        self._entity_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._key_locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()
        self.logger = logger.bind(component="application_store")
        for application in applications:
            self._insert(application)

    def _insert(self, application: Application) -> None:
        key = (application.job_id, application.job_seeker_id)
        if key in self._by_key:
            raise ConflictError("Already applied", details={"job_id": key[0], "job_seeker_id": key[1]})
        self._applications[application.id] = application.model_copy(deep=True)
        self._by_key[key] = application.id

    @staticmethod
    def _lock_for(locks: weakref.WeakValueDictionary, key) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    def _entity_lock(self, application_id: str) -> asyncio.Lock:
        return self._lock_for(self._entity_locks, application_id)

    def _key_lock(self, key: Tuple[str, str]) -> asyncio.Lock:
        return self._lock_for(self._key_locks, key)

    def _current(self, application_id: str) -> Application:
        application = self._applications.get(application_id)
        if application is None:
            raise NotFoundError("application", application_id)
        return application

    def count(self) -> int:
        return len(self._applications)

    async def get(self, application_id: str) -> Application:
        return self._current(application_id).model_copy(deep=True)

    async def get_by_key(self, job_id: str, job_seeker_id: str) -> Optional[Application]:
        application_id = self._by_key.get((job_id, job_seeker_id))
        if application_id is None:
            return None
        return self._applications[application_id].model_copy(deep=True)

    async def create_atomic(self, application: Application, eligibility_check: EligibilityCheck) -> Application:
        key = (application.job_id, application.job_seeker_id)
        async with self._key_lock(key):
            if key in self._by_key:
                raise ConflictError(
                    "Already applied",
                    details={"job_id": application.job_id, "job_seeker_id": application.job_seeker_id}
                )

            verdict = await eligibility_check()
            if not verdict.eligible:
                raise IneligibleError(verdict)

            self._insert(application)
            self.logger.info(
                "Application stored",
                application_id=application.id,
                job_id=application.job_id,
                job_seeker_id=application.job_seeker_id
            )
            return application.model_copy(deep=True)

    async def transition_atomic(
        self,
        application_id: str,
        expected_version: int,
        new_status: ApplicationStatus,
        note: Optional[str],
        changed_at: datetime
    ) -> Application:
        async with self._entity_lock(application_id):
            current = self._current(application_id)
            if current.version != expected_version:
                raise VersionConflictError(application_id, expected_version, current.version)

            updated = apply_transition(current, new_status, note, changed_at)
            self._applications[application_id] = updated
            return updated.model_copy(deep=True)

    async def attach_documents(
        self,
        application_id: str,
        expected_version: int,
        document_ids: Sequence[str],
        changed_at: datetime
    ) -> Application:
        async with self._entity_lock(application_id):
            current = self._current(application_id)
            if current.version != expected_version:
                raise VersionConflictError(application_id, expected_version, current.version)
            if is_terminal(current.status):
                raise InvalidTransitionError(
                    f"Cannot attach documents to a {current.status.value} application",
                    current=current.status.value
                )

            updated = current.model_copy(
                update={
                    "documents": list(dict.fromkeys([*current.documents, *document_ids])),
                    "version": current.version + 1,
                    "updated_at": changed_at,
                },
                deep=True
            )
            self._applications[application_id] = updated
            return updated.model_copy(deep=True)


class Fixtures(BaseModel):
    """Seed data for the in-memory stores."""
    jobs: List[JobPosting] = Field(default_factory=list)
    profiles: List[Profile] = Field(default_factory=list)
    documents: List[Document] = Field(default_factory=list)
    applications: List[Application] = Field(default_factory=list)


@dataclass
class InMemoryStores:
    """Bundle of in-memory collaborators sharing one data set."""
    jobs: InMemoryJobStore = field(default_factory=InMemoryJobStore)
    profiles: InMemoryProfileStore = field(default_factory=InMemoryProfileStore)
    documents: InMemoryDocumentStore = field(default_factory=InMemoryDocumentStore)
    applications: InMemoryApplicationStore = field(default_factory=InMemoryApplicationStore)


def create_in_memory_stores(fixtures: Optional[Fixtures] = None) -> InMemoryStores:
    """Create in-memory stores, optionally seeded with fixtures."""
    fixtures = fixtures or Fixtures()
    return InMemoryStores(
        jobs=InMemoryJobStore(fixtures.jobs),
        profiles=InMemoryProfileStore(fixtures.profiles),
        documents=InMemoryDocumentStore(fixtures.documents),
        applications=InMemoryApplicationStore(fixtures.applications),
    )


def load_fixtures(path: Union[str, Path]) -> Fixtures:
    """Read a JSON fixtures file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Fixtures.model_validate(data)

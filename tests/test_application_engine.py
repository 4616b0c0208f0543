"""Integration tests for the application engine over in-memory stores."""

import asyncio
import gc
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from thiqax_engine.core.engine import ApplicationEngine
from thiqax_engine.core.errors import (
    ConflictError,
    EngineError,
    IneligibleError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamUnavailableError,
    VersionConflictError,
)
from thiqax_engine.core.models import ApplicationStatus, JobStatus, NotificationType, VerificationStatus
from thiqax_engine.notifications.dispatcher import InMemoryNotificationDispatcher

from factories import (
    NOW,
    FixedClock,
    build_engine,
    complete_profile,
    eligible_fixtures,
    fast_settings,
    make_document,
    make_job,
)


class FlakyDispatcher(InMemoryNotificationDispatcher):
    """Dispatcher whose transport is down until ``healthy`` is set."""

    def __init__(self):
        super().__init__()
        self.healthy = False
        self.attempts = 0

    async def send(self, intent):
        self.attempts += 1
        if not self.healthy:
            raise ConnectionError("dispatcher unreachable")
        await super().send(intent)


def _fixtures_with_expiring_document():
    fixtures = eligible_fixtures()
    fixtures.documents.append(
        make_document("D3", doc_type="MEDICAL", expiry_date=NOW + timedelta(days=15), name="Medical certificate")
    )
    return fixtures


class TestSubmitApplication:
    """Application creation."""

    @pytest.mark.asyncio
    async def test_submit_creates_applied_application(self):
        engine, stores, _ = build_engine()
        application = await engine.submit_application("S1", "J1", cover_letter="Hello", document_ids=["D1", "D2", "D1"])

        assert application.status == ApplicationStatus.APPLIED
        assert application.documents == ["D1", "D2"]
        assert application.created_at == NOW
        assert [h.status for h in application.history] == [ApplicationStatus.APPLIED]
        assert stores.applications.count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_application_conflicts(self):
        engine, stores, _ = build_engine()
        await engine.submit_application("S1", "J1")

        with pytest.raises(ConflictError, match="Already applied"):
            await engine.submit_application("S1", "J1")
        assert stores.applications.count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_store_one_record(self):
        engine, stores, _ = build_engine()
        results = await asyncio.gather(
            engine.submit_application("S1", "J1"),
            engine.submit_application("S1", "J1"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert stores.applications.count() == 1

    @pytest.mark.asyncio
    async def test_ineligible_application_carries_verdict(self):
        fixtures = eligible_fixtures()
        fixtures.profiles = [complete_profile("S1", nationality=None)]
        engine, stores, _ = build_engine(fixtures)

        with pytest.raises(IneligibleError) as exc_info:
            await engine.submit_application("S1", "J1")

        assert exc_info.value.verdict.missing_requirements == ["nationality"]
        assert exc_info.value.to_dict()["error_code"] == "INELIGIBLE"
        assert stores.applications.count() == 0

    @pytest.mark.asyncio
    async def test_foreign_document_is_not_found(self):
        fixtures = eligible_fixtures()
        fixtures.documents.append(make_document("X1", owner_id="S2"))
        engine, stores, _ = build_engine(fixtures)

        with pytest.raises(NotFoundError):
            await engine.submit_application("S1", "J1", document_ids=["X1"])
        assert stores.applications.count() == 0

    @pytest.mark.asyncio
    async def test_store_timeout_leaves_nothing_behind(self):
        engine, stores, _ = build_engine(config=fast_settings(store_timeout_seconds=0.05, max_retries=1))

        async def slow_job(job_id):
            await asyncio.sleep(1)

        stores.jobs.get_job = AsyncMock(side_effect=slow_job)
        with pytest.raises(UpstreamUnavailableError):
            await engine.submit_application("S1", "J1")
        assert stores.applications.count() == 0


class TestAdvanceApplication:
    """Status changes and their notifications."""

    @pytest.mark.asyncio
    async def test_transition_notifies_job_seeker(self):
        engine, _, dispatcher = build_engine()
        application = await engine.submit_application("S1", "J1")
        await engine.advance_application(application.id, ApplicationStatus.REVIEWING, "under review")

        assert len(dispatcher.delivered) == 1
        intent = dispatcher.delivered[0]
        assert intent.recipient == "S1"
        assert intent.type == NotificationType.APPLICATION_STATUS_CHANGE
        assert intent.dedupe_key == f"{application.id}:REVIEWING"
        assert intent.payload["previous_status"] == "APPLIED"

    @pytest.mark.asyncio
    async def test_concurrent_transitions_have_one_winner(self):
        engine, _, dispatcher = build_engine()
        application = await engine.submit_application("S1", "J1")

        results = await asyncio.gather(
            engine.advance_application(application.id, ApplicationStatus.REVIEWING),
            engine.advance_application(application.id, ApplicationStatus.REVIEWING),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], InvalidTransitionError)

        stored = await engine.get_application(application.id)
        assert [h.status for h in stored.history] == [ApplicationStatus.APPLIED, ApplicationStatus.REVIEWING]
        assert len(dispatcher.delivered) == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_retried_against_fresh_state(self):
        engine, stores, _ = build_engine()
        application = await engine.submit_application("S1", "J1")
        original = stores.applications.transition_atomic
        calls = []

        async def interleaved(application_id, expected_version, new_status, note, changed_at):
            calls.append(new_status)
            if len(calls) == 1:
                await original(application_id, expected_version, ApplicationStatus.REVIEWING, "by recruiter", changed_at)
                raise VersionConflictError(application_id, expected_version, expected_version + 1)
            return await original(application_id, expected_version, new_status, note, changed_at)

        stores.applications.transition_atomic = interleaved
        updated = await engine.withdraw_application(application.id, "found another job")

        assert updated.status == ApplicationStatus.WITHDRAWN
        assert [h.status for h in updated.history] == [
            ApplicationStatus.APPLIED,
            ApplicationStatus.REVIEWING,
            ApplicationStatus.WITHDRAWN,
        ]
        assert updated.history[-1].note == "found another job"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_persistent_version_conflict_gives_up(self):
        engine, stores, _ = build_engine(config=fast_settings(max_retries=3))
        application = await engine.submit_application("S1", "J1")
        stores.applications.transition_atomic = AsyncMock(side_effect=VersionConflictError(application.id, 0, 1))

        with pytest.raises(VersionConflictError):
            await engine.advance_application(application.id, ApplicationStatus.REVIEWING)
        assert stores.applications.transition_atomic.await_count == 3

    @pytest.mark.asyncio
    async def test_slow_write_times_out_without_partial_state(self):
        engine, stores, dispatcher = build_engine(config=fast_settings(store_timeout_seconds=0.05))
        application = await engine.submit_application("S1", "J1")
        original = stores.applications.transition_atomic

        async def slow_transition(*args):
            await asyncio.sleep(1)
            return await original(*args)

        stores.applications.transition_atomic = slow_transition
        with pytest.raises(UpstreamUnavailableError):
            await engine.advance_application(application.id, ApplicationStatus.REVIEWING)

        stored = await engine.get_application(application.id)
        assert stored.status == ApplicationStatus.APPLIED
        assert len(stored.history) == 1
        assert dispatcher.delivered == []

    @pytest.mark.asyncio
    async def test_rejection_without_note_is_refused(self):
        engine, _, _ = build_engine()
        application = await engine.submit_application("S1", "J1")

        with pytest.raises(InvalidTransitionError):
            await engine.advance_application(application.id, ApplicationStatus.REJECTED)

        rejected = await engine.advance_application(application.id, ApplicationStatus.REJECTED, "Position filled")
        assert rejected.status == ApplicationStatus.REJECTED

    @pytest.mark.asyncio
    async def test_undeliverable_notification_is_kept_in_outbox(self):
        dispatcher = FlakyDispatcher()
        engine, _, _ = build_engine(dispatcher=dispatcher)
        application = await engine.submit_application("S1", "J1")

        updated = await engine.advance_application(application.id, ApplicationStatus.REVIEWING)
        assert updated.status == ApplicationStatus.REVIEWING
        assert dispatcher.attempts == 3
        assert len(engine.outbox) == 1

        dispatcher.healthy = True
        assert await engine.flush_notifications() == 1
        assert len(engine.outbox) == 0
        assert [i.dedupe_key for i in dispatcher.delivered] == [f"{application.id}:REVIEWING"]
        assert await engine.flush_notifications() == 0


class TestApplicationDocuments:
    """Attaching documents after submission."""

    @pytest.mark.asyncio
    async def test_attach_merges_documents(self):
        engine, _, _ = build_engine()
        application = await engine.submit_application("S1", "J1", document_ids=["D2"])

        updated = await engine.attach_documents(application.id, ["D1", "D2"])
        assert updated.documents == ["D2", "D1"]
        assert updated.version == application.version + 1
        assert updated.status == ApplicationStatus.APPLIED

    @pytest.mark.asyncio
    async def test_attach_unknown_document(self):
        engine, _, _ = build_engine()
        application = await engine.submit_application("S1", "J1")

        with pytest.raises(NotFoundError):
            await engine.attach_documents(application.id, ["nope"])

    @pytest.mark.asyncio
    async def test_attach_to_closed_application(self):
        engine, _, _ = build_engine()
        application = await engine.submit_application("S1", "J1")
        await engine.withdraw_application(application.id)

        with pytest.raises(InvalidTransitionError):
            await engine.attach_documents(application.id, ["D1"])


class TestDocumentExpirySweep:
    """Expiry notifications through the engine."""

    @pytest.mark.asyncio
    async def test_scenario_one_notice_then_none(self):
        engine, stores, dispatcher = build_engine(_fixtures_with_expiring_document())

        first = await engine.sweep_document_expirations(30)
        second = await engine.sweep_document_expirations(30)

        assert len(first) == 1
        assert first[0].recipient == "S1"
        assert first[0].type == NotificationType.DOCUMENT_EXPIRING
        assert first[0].payload["days_until_expiry"] == 15
        assert first[0].dedupe_key == f"D3:expiry:{(NOW + timedelta(days=15)).isoformat()}"
        assert second == []
        assert len(dispatcher.delivered) == 1
        assert (await stores.documents.get_document("D3")).notification_sent is True

    @pytest.mark.asyncio
    async def test_default_horizon_comes_from_settings(self):
        engine, _, _ = build_engine(_fixtures_with_expiring_document(), config=fast_settings(expiry_horizon_days=10))
        assert await engine.sweep_document_expirations() == []

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_notify_once(self):
        engine, stores, dispatcher = build_engine(_fixtures_with_expiring_document())
        other = ApplicationEngine(
            stores.jobs,
            stores.profiles,
            stores.documents,
            stores.applications,
            dispatcher,
            config=fast_settings(),
            clock=FixedClock(),
        )

        results = await asyncio.gather(
            engine.sweep_document_expirations(30),
            other.sweep_document_expirations(30),
        )

        assert sum(len(r) for r in results) == 1
        assert len(dispatcher.delivered) == 1

    @pytest.mark.asyncio
    async def test_failed_claim_is_retried_on_next_sweep(self):
        engine, stores, dispatcher = build_engine(_fixtures_with_expiring_document())
        original = stores.documents.update_notification_flag
        stores.documents.update_notification_flag = AsyncMock(side_effect=ConnectionError("store down"))

        assert await engine.sweep_document_expirations(30) == []
        assert (await stores.documents.get_document("D3")).notification_sent is False

        stores.documents.update_notification_flag = original
        assert len(await engine.sweep_document_expirations(30)) == 1
        assert len(dispatcher.delivered) == 1

    @pytest.mark.asyncio
    async def test_renewed_document_gets_new_notice(self):
        clock = FixedClock()
        engine, stores, dispatcher = build_engine(_fixtures_with_expiring_document(), clock=clock)
        await engine.sweep_document_expirations(30)

        document = await engine.renew_document("D3", NOW + timedelta(days=25))
        assert document.notification_sent is False

        renewed = await engine.sweep_document_expirations(30)
        assert len(renewed) == 1
        assert len(dispatcher.delivered) == 2


    @pytest.mark.asyncio
    async def test_negative_horizon_is_an_engine_error(self):
        engine, _, dispatcher = build_engine(_fixtures_with_expiring_document())

        with pytest.raises(InvalidArgumentError) as exc_info:
            await engine.sweep_document_expirations(-1)

        assert isinstance(exc_info.value, EngineError)
        assert exc_info.value.error_code == "INVALID_ARGUMENT"
        assert exc_info.value.details["argument"] == "horizon_days"
        assert dispatcher.delivered == []

    @pytest.mark.asyncio
    async def test_naive_expiry_dates_are_swept_as_utc(self):
        fixtures = eligible_fixtures()
        naive = (NOW + timedelta(days=15)).replace(tzinfo=None)
        fixtures.documents.append(make_document("D3", doc_type="MEDICAL", expiry_date=naive))
        engine, _, _ = build_engine(fixtures)

        intents = await engine.sweep_document_expirations(30)

        assert len(intents) == 1
        assert intents[0].dedupe_key == f"D3:expiry:{(NOW + timedelta(days=15)).isoformat()}"


class TestDocumentDecisions:
    """Verification decisions and renewals recorded through the engine."""

    @pytest.mark.asyncio
    async def test_verifying_pending_passport_notifies_and_unblocks(self):
        fixtures = eligible_fixtures()
        fixtures.documents[0] = make_document(
            "D1", status=VerificationStatus.PENDING, expiry_date=NOW + timedelta(days=400)
        )
        engine, stores, dispatcher = build_engine(fixtures)
        assert (await engine.check_eligibility("S1", "J1")).missing_documents == ["PASSPORT"]

        document = await engine.record_document_verification("D1", "verified")

        stored = await stores.documents.get_document("D1")
        assert stored.verification_status == VerificationStatus.VERIFIED
        assert stored.verified_at == NOW
        assert document.version == stored.version == 1
        assert len(dispatcher.delivered) == 1
        intent = dispatcher.delivered[0]
        assert intent.recipient == "S1"
        assert intent.type == NotificationType.DOCUMENT_STATUS_CHANGE
        assert intent.dedupe_key == "D1:status:verified:1"
        assert (await engine.check_eligibility("S1", "J1")).eligible

    @pytest.mark.asyncio
    async def test_rejection_note_reaches_owner(self):
        engine, stores, dispatcher = build_engine()

        await engine.record_document_verification("D2", VerificationStatus.REJECTED, note="Unreadable scan")

        assert (await stores.documents.get_document("D2")).verification_status == VerificationStatus.REJECTED
        assert dispatcher.delivered[0].payload["message"] == "Your RESUME document was rejected: Unreadable scan"

    @pytest.mark.asyncio
    async def test_unchanged_status_sends_nothing(self):
        engine, _, dispatcher = build_engine()

        document = await engine.record_document_verification("D1", VerificationStatus.VERIFIED)

        assert document.verification_status == VerificationStatus.VERIFIED
        assert dispatcher.delivered == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [VerificationStatus.EXPIRED, "archived"])
    async def test_unrecordable_status_is_refused(self, status):
        engine, stores, dispatcher = build_engine()

        with pytest.raises(InvalidTransitionError):
            await engine.record_document_verification("D1", status)

        stored = await stores.documents.get_document("D1")
        assert stored.verification_status == VerificationStatus.VERIFIED
        assert stored.version == 0
        assert dispatcher.delivered == []

    @pytest.mark.asyncio
    async def test_unknown_document(self):
        engine, _, _ = build_engine()
        with pytest.raises(NotFoundError):
            await engine.record_document_verification("missing", VerificationStatus.VERIFIED)
        with pytest.raises(NotFoundError):
            await engine.renew_document("missing", NOW + timedelta(days=30))

    @pytest.mark.asyncio
    async def test_concurrent_document_write_is_retried(self):
        engine, stores, dispatcher = build_engine()
        original = stores.documents.replace_document
        raced = []

        async def replace_after_rival(document, expected_version):
            if not raced:
                raced.append(expected_version)
                rival = await stores.documents.get_document(document.id)
                await original(rival.model_copy(update={"name": "Rival edit"}), rival.version)
            return await original(document, expected_version)

        stores.documents.replace_document = replace_after_rival
        document = await engine.record_document_verification("D1", VerificationStatus.REJECTED, note="Expired visa page")

        assert raced == [0]
        assert document.version == 2
        assert document.name == "Rival edit"
        assert document.verification_status == VerificationStatus.REJECTED
        assert [i.dedupe_key for i in dispatcher.delivered] == ["D1:status:rejected:2"]

    @pytest.mark.asyncio
    async def test_persistent_document_conflict_gives_up(self):
        engine, stores, _ = build_engine()
        stores.documents.replace_document = AsyncMock(side_effect=ConflictError("changed"))

        with pytest.raises(ConflictError):
            await engine.renew_document("D1", NOW + timedelta(days=30))
        assert stores.documents.replace_document.await_count == 3

    @pytest.mark.asyncio
    async def test_renewal_normalises_naive_date(self):
        engine, stores, _ = build_engine()

        document = await engine.renew_document("D1", datetime(2027, 6, 1, 12, 0))

        assert document.expiry_date == datetime(2027, 6, 1, 12, 0, tzinfo=NOW.tzinfo)
        assert (await stores.documents.get_document("D1")).expiry_date == document.expiry_date

    @pytest.mark.asyncio
    async def test_renewal_racing_a_sweep_keeps_both_writes(self):
        engine, stores, dispatcher = build_engine(_fixtures_with_expiring_document())

        await asyncio.gather(
            engine.sweep_document_expirations(30),
            engine.renew_document("D3", NOW + timedelta(days=25)),
        )

        stored = await stores.documents.get_document("D3")
        assert stored.expiry_date == NOW + timedelta(days=25)
        assert stored.version == 2

class TestReads:
    """Read-only engine operations."""

    @pytest.mark.asyncio
    async def test_check_eligibility_retries_transient_failures(self):
        engine, stores, _ = build_engine()
        stores.profiles.get_profile = AsyncMock(side_effect=[ConnectionError("reset"), complete_profile("S1")])

        verdict = await engine.check_eligibility("S1", "J1")
        assert verdict.eligible
        assert stores.profiles.get_profile.await_count == 2

    @pytest.mark.asyncio
    async def test_check_eligibility_does_not_retry_not_found(self):
        engine, _, _ = build_engine()
        with pytest.raises(NotFoundError):
            await engine.check_eligibility("S1", "missing")

    @pytest.mark.asyncio
    async def test_profile_completeness(self):
        fixtures = eligible_fixtures()
        fixtures.profiles = [complete_profile("S1", languages=[])]
        engine, _, _ = build_engine(fixtures)

        report = await engine.profile_completeness("S1")
        assert report.completion_percentage == 90
        assert report.missing_fields == ["languages"]

    @pytest.mark.asyncio
    async def test_naive_job_expiry_does_not_break_eligibility(self):
        fixtures = eligible_fixtures()
        fixtures.jobs = [make_job("J1", expires_at=datetime(2027, 1, 1))]
        engine, _, _ = build_engine(fixtures)

        assert (await engine.check_eligibility("S1", "J1")).eligible

    @pytest.mark.asyncio
    async def test_closed_job_answered_for_unknown_job_seeker(self):
        fixtures = eligible_fixtures()
        fixtures.jobs = [make_job("J1", status=JobStatus.CLOSED)]
        engine, _, _ = build_engine(fixtures)

        verdict = await engine.check_eligibility("ghost", "J1")
        assert verdict.reasons == ["Job is not accepting applications"]

    @pytest.mark.asyncio
    async def test_timeline_for_unknown_application(self):
        engine, _, _ = build_engine()
        with pytest.raises(NotFoundError):
            await engine.get_timeline("missing")


class TestApplicationStoreLocks:
    """Lock bookkeeping in the in-memory application store."""

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self):
        fixtures = eligible_fixtures()
        fixtures.jobs.append(make_job("J2"))
        engine, stores, _ = build_engine(fixtures)

        for job_id in ("J1", "J2"):
            application = await engine.submit_application("S1", job_id)
            await engine.advance_application(application.id, ApplicationStatus.REVIEWING)
        gc.collect()

        assert len(stores.applications._entity_locks) == 0
        assert len(stores.applications._key_locks) == 0

    @pytest.mark.asyncio
    async def test_held_lock_is_shared(self):
        _, stores, _ = build_engine()
        lock = stores.applications._entity_lock("A1")

        async with lock:
            assert stores.applications._entity_lock("A1") is lock
            assert len(stores.applications._entity_locks) == 1

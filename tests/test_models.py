"""Tests for data model validation."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st, settings

from thiqax_engine.core.models import (
    Application,
    ApplicationStatus,
    Document,
    JobPosting,
    StatusChange,
    ensure_utc,
)

NAIVE = datetime(2027, 1, 1, 9, 30)
UTC_EQUIVALENT = datetime(2027, 1, 1, 9, 30, tzinfo=timezone.utc)
GULF = timezone(timedelta(hours=4))


@st.composite
def fixed_offset_strategy(draw):
    """Generate fixed UTC offsets between -12:00 and +14:00."""
    minutes = draw(st.integers(min_value=-12 * 60, max_value=14 * 60))
    return timezone(timedelta(minutes=minutes))


class TestTimestampNormalisation:
    """Every stored timestamp is timezone-aware UTC."""

    def test_job_expiry(self):
        assert JobPosting(expires_at=NAIVE).expires_at == UTC_EQUIVALENT
        assert JobPosting(expires_at=NAIVE).expires_at.tzinfo == timezone.utc

    @pytest.mark.parametrize("field", ["expiry_date", "verified_at", "uploaded_at"])
    def test_document_timestamps(self, field):
        document = Document(owner_id="S1", type="PASSPORT", **{field: NAIVE})
        assert getattr(document, field) == UTC_EQUIVALENT
        assert getattr(document, field).tzinfo == timezone.utc

    def test_document_without_expiry_stays_none(self):
        assert Document(owner_id="S1", type="PASSPORT").expiry_date is None

    def test_status_change(self):
        entry = StatusChange(status=ApplicationStatus.APPLIED, changed_at=NAIVE)
        assert entry.changed_at.tzinfo == timezone.utc

    @pytest.mark.parametrize("field", ["created_at", "updated_at"])
    def test_application_timestamps(self, field):
        application = Application(job_id="J1", job_seeker_id="S1", **{field: NAIVE})
        assert getattr(application, field) == UTC_EQUIVALENT
        assert getattr(application, field).tzinfo == timezone.utc

    def test_iso_string_without_offset(self):
        job = JobPosting.model_validate({"expires_at": "2027-01-01T09:30:00"})
        assert job.expires_at == UTC_EQUIVALENT

    def test_other_offsets_are_converted(self):
        job = JobPosting(expires_at=datetime(2027, 1, 1, 13, 30, tzinfo=GULF))
        assert job.expires_at == UTC_EQUIVALENT
        assert job.expires_at.tzinfo == timezone.utc

    @given(st.datetimes(
        min_value=datetime(1970, 1, 1),
        max_value=datetime(2100, 1, 1),
        timezones=st.one_of(st.none(), fixed_offset_strategy()),
    ))
    @settings(max_examples=100)
    def test_ensure_utc_preserves_the_instant(self, value):
        """Property 10: naive values are read as UTC and aware values keep their instant."""
        normalised = ensure_utc(value)
        assert normalised.tzinfo == timezone.utc
        if value.tzinfo is None:
            assert normalised.replace(tzinfo=None) == value
        else:
            assert normalised == value

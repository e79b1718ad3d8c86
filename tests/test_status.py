"""
Tests for canonical delivery status derivation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from relay.records import RawMessageRecord, from_domain_epoch, to_domain_epoch
from relay.status import CanonicalStatus, derive_status

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
TEN_MINUTES = timedelta(minutes=10)


def outbound(age: timedelta, **fields) -> RawMessageRecord:
    values = dict(rowid=1, is_from_me=True, date=to_domain_epoch(NOW - age))
    values.update(fields)
    return RawMessageRecord(**values)


class TestDeriveStatus:
    """Rule order and timeout escalation."""

    def test_sent_recently(self):
        record = outbound(timedelta(minutes=2), is_sent=True)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.SENT

    def test_sent_but_stale_is_failed(self):
        record = outbound(timedelta(minutes=15), is_sent=True)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.FAILED

    def test_escalation_is_monotonic(self):
        record = outbound(timedelta(minutes=2), is_sent=True)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.SENT
        assert derive_status(record, NOW + timedelta(minutes=20), TEN_MINUTES) is CanonicalStatus.FAILED
        assert derive_status(record, NOW + timedelta(hours=5), TEN_MINUTES) is CanonicalStatus.FAILED

    def test_error_wins_over_delivered(self):
        record = outbound(timedelta(seconds=5), is_sent=True, is_delivered=True, error=22)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.FAILED

    @pytest.mark.parametrize("fields", [
        {"is_delivered": True},
        {"date_delivered": 700000000000000000},
    ])
    def test_delivered(self, fields):
        record = outbound(timedelta(hours=3), **fields)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.DELIVERED

    def test_finished_without_sent_is_failed(self):
        record = outbound(timedelta(seconds=5), is_finished=True, is_sent=False)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.FAILED

    def test_fresh_unsent_is_queued(self):
        record = outbound(timedelta(seconds=5))
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.QUEUED

    def test_inbound_never_times_out(self):
        record = RawMessageRecord(rowid=2, is_from_me=False, is_sent=True, date=to_domain_epoch(NOW - timedelta(days=2)))
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.SENT

    def test_missing_record(self):
        assert derive_status(None, NOW) is CanonicalStatus.QUEUED

    def test_readable_date_used_when_raw_date_missing(self):
        readable = (NOW - timedelta(minutes=30)).astimezone().strftime("%Y-%m-%d %H:%M:%S")
        record = RawMessageRecord(rowid=3, is_from_me=True, is_sent=True, date=None, readable_date=readable)
        assert derive_status(record, NOW, TEN_MINUTES) is CanonicalStatus.FAILED

    def test_deterministic(self):
        record = outbound(timedelta(minutes=9), is_sent=True)
        assert {derive_status(record, NOW, TEN_MINUTES) for _ in range(5)} == {CanonicalStatus.SENT}


class TestDomainEpoch:
    """Timestamp conversion."""

    def test_nanoseconds_round_trip(self):
        assert from_domain_epoch(to_domain_epoch(NOW)) == NOW

    def test_seconds_resolution(self):
        assert from_domain_epoch(86_400) == datetime(2001, 1, 2, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, 0, -5, "abc"])
    def test_invalid(self, value):
        assert from_domain_epoch(value) is None

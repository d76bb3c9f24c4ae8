"""
Unit tests for historization planning.

Includes property-based testing with hypothesis for the version partition.
"""

from datetime import timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from historize.core.config import EntityConfigBuilder
from historize.core.models import SourceRecord, VersionedRecord
from historize.core.timeutil import FAR_FUTURE, parse_timestamp
from historize.incremental import Historizer, check_partition, content_checksum, encode_key

T1 = parse_timestamp("2024-01-01T00:00:00Z")
T2 = parse_timestamp("2024-02-01T00:00:00Z")
T3 = parse_timestamp("2024-03-01T00:00:00Z")

TRACKED = ["HOST_NAME", "IS_SUPERHOST"]


def host(changed_at, name="Ana", superhost=False, key="H1", position=0) -> SourceRecord:
    return SourceRecord(
        business_key=encode_key([key]),
        change_timestamp=changed_at,
        payload={"HOST_ID": key, "HOST_NAME": name, "IS_SUPERHOST": superhost, "CREATED_AT": changed_at},
        position=position,
    )


def apply(historizer: Historizer, records, versions_by_key):
    """Plan a batch and fold the plan into a copy of the stored versions."""
    plan = historizer.plan(records, versions_by_key)
    stored = {key: list(versions) for key, versions in versions_by_key.items()}
    for closed in plan.closures:
        versions = stored[closed.business_key]
        idx = next(i for i, v in enumerate(versions) if v.valid_from == closed.valid_from)
        versions[idx] = closed
    for opened in plan.openings:
        stored.setdefault(opened.business_key, []).append(opened)
    return plan, stored


@pytest.fixture
def historizer(hosts_dim_config):
    return Historizer(hosts_dim_config)


class TestHistorizer:
    """Tests for Historizer.plan"""

    def test_first_record_opens_current_version(self, historizer):
        """Test a key without versions gets one open-ended current version"""
        plan = historizer.plan([host(T1)], {})

        assert not plan.closures
        (opened,) = plan.openings
        assert opened.valid_from == T1
        assert opened.valid_to == FAR_FUTURE
        assert opened.is_current
        assert opened.checksum == content_checksum(opened.payload, TRACKED)

    def test_changed_record_closes_and_opens(self, historizer):
        """Test a tracked change closes the current version at the change timestamp"""
        _, stored = apply(historizer, [host(T1, name="Ana")], {})

        plan, stored = apply(historizer, [host(T3, name="Ana Maria")], stored)

        (closed,) = plan.closures
        (opened,) = plan.openings
        assert closed.valid_from == T1 and closed.valid_to == T3 and not closed.is_current
        assert opened.valid_from == T3 and opened.valid_to == FAR_FUTURE and opened.is_current
        assert check_partition(stored[opened.business_key], FAR_FUTURE) == []

    def test_unchanged_tracked_attributes_are_noop(self, historizer):
        """Test the check strategy ignores records equal on tracked attributes"""
        _, stored = apply(historizer, [host(T1)], {})

        plan = historizer.plan([host(T2)], stored)

        assert plan.is_empty
        assert plan.unchanged == 1

    def test_out_of_order_record_rejected(self, historizer):
        """Test a record older than the current version is an ordering violation"""
        _, stored = apply(historizer, [host(T3, name="Ana")], {})

        plan = historizer.plan([host(T2, name="Ann")], stored)

        assert not plan.openings and not plan.closures
        (rejected,) = plan.rejections
        assert rejected.kind == "ordering_violation"
        assert rejected.failed_rules == ["version_ordering"]
        assert rejected.change_timestamp == T2

    def test_equal_timestamp_with_different_content_rejected(self, historizer):
        """Test a zero-width interval is never opened"""
        _, stored = apply(historizer, [host(T1, name="Ana")], {})

        plan = historizer.plan([host(T1, name="Ann")], stored)

        assert [r.kind for r in plan.rejections] == ["ordering_violation"]

    def test_reapplying_same_record_is_noop(self, historizer):
        """Test re-running identical input creates no duplicate version"""
        _, stored = apply(historizer, [host(T1, name="Ana"), host(T3, name="Ana Maria", position=1)], {})

        plan = historizer.plan([host(T1, name="Ana"), host(T3, name="Ana Maria", position=1)], stored)

        assert plan.is_empty
        assert plan.reapplied == 2

    def test_several_changes_in_one_batch(self, historizer):
        """Test versions opened within a batch are closed before they are written"""
        batch = [host(T3, name="C", position=0), host(T1, name="A", position=1), host(T2, name="B", position=2)]

        plan, stored = apply(historizer, batch, {})

        assert not plan.closures
        assert [(v.valid_from, v.valid_to, v.is_current) for v in plan.openings] == [
            (T1, T2, False),
            (T2, T3, False),
            (T3, FAR_FUTURE, True),
        ]
        assert check_partition(stored[encode_key(["H1"])], FAR_FUTURE) == []

    def test_late_records_matching_history_are_already_applied(self, historizer):
        """Test late records reflected by stored versions change nothing"""
        _, stored = apply(historizer, [host(T1, name="Ana"), host(T3, name="Ana Maria", position=1)], {})

        plan = historizer.plan([], stored, late=[host(T1, name="Ana"), host(T2, name="Ana")], watermark=T3)

        assert plan.is_empty
        assert plan.already_applied == 2

    def test_late_record_before_current_version_rejected(self, historizer):
        """Test a late record older than the current version is an ordering violation"""
        _, stored = apply(historizer, [host(T1, name="Ann"), host(T3, name="Anna", position=1)], {})

        plan = historizer.plan([], stored, late=[host(T2, name="Annie")], watermark=T3)

        assert not plan.openings and not plan.closures
        (rejected,) = plan.rejections
        assert rejected.kind == "ordering_violation"
        assert rejected.failed_rules == ["version_ordering"]
        assert T3.isoformat() in rejected.error_messages[0]

    def test_late_record_for_unknown_key_rejected(self, historizer):
        """Test a late record never opens a version below the watermark"""
        plan = historizer.plan([], {}, late=[host(T1, key="H9")], watermark=T2)

        assert not plan.openings
        (rejected,) = plan.rejections
        assert rejected.failed_rules == ["watermark_ordering"]
        assert f"watermark {T2.isoformat()}" in rejected.error_messages[0]

    def test_far_future_timestamp_rejected(self, historizer):
        """Test a change at the sentinel cannot open a version"""
        plan = historizer.plan([host(FAR_FUTURE)], {})

        (rejected,) = plan.rejections
        assert rejected.kind == "validation"
        assert rejected.failed_rules == ["far_future"]

    def test_timestamp_strategy_versions_every_newer_record(self):
        """Test the timestamp strategy opens a version without comparing content"""
        config = (
            EntityConfigBuilder("dim_bookings")
            .keyed_by("BOOKING_ID")
            .changed_at("CREATED_AT")
            .historized("timestamp")
            .build()
        )
        historizer = Historizer(config)
        row = {"BOOKING_ID": "B1", "BOOKING_STATUS": "confirmed"}
        first = SourceRecord(business_key=encode_key(["B1"]), change_timestamp=T1, payload=row)
        second = SourceRecord(business_key=encode_key(["B1"]), change_timestamp=T2, payload=row)

        plan = historizer.plan([first, second], {})

        assert len(plan.openings) == 2
        assert plan.unchanged == 0

    def test_current_state_entity_rejected(self, bookings_config):
        """Test only historized entities can be planned"""
        with pytest.raises(ValueError):
            Historizer(bookings_config)

    @given(
        st.lists(
            st.tuples(st.integers(min_value=0, max_value=50), st.sampled_from(["A", "B", "C"])),
            min_size=1,
            max_size=20,
        ),
        st.integers(min_value=1, max_value=4),
    )
    def test_property_versions_partition_time(self, changes, batches):
        """Property test: any sequence of batches leaves a gap-free partition"""
        config = (
            EntityConfigBuilder("dim_hosts")
            .keyed_by("HOST_ID")
            .changed_at("CREATED_AT")
            .historized(strategy="check", tracked=TRACKED)
            .build()
        )
        historizer = Historizer(config)
        records = [
            host(T1 + timedelta(days=day), name=name, position=position)
            for position, (day, name) in enumerate(changes)
        ]

        stored: dict[str, list[VersionedRecord]] = {}
        size = max(1, len(records) // batches)
        for start in range(0, len(records), size):
            _, stored = apply(historizer, records[start:start + size], stored)

        for versions in stored.values():
            assert check_partition(versions, FAR_FUTURE) == []


class TestCheckPartition:
    """Tests for check_partition"""

    def version(self, start, end, current, key="H1"):
        return VersionedRecord(
            business_key=encode_key([key]), payload={}, checksum="x",
            valid_from=start, valid_to=end, is_current=current,
        )

    def test_valid_partition(self):
        """Test contiguous versions with one open current version pass"""
        versions = [self.version(T1, T2, False), self.version(T2, FAR_FUTURE, True)]
        assert check_partition(versions, FAR_FUTURE) == []

    def test_gap_overlap_and_current_count_reported(self):
        """Test each violated property is described"""
        gap = [self.version(T1, T2, False), self.version(T3, FAR_FUTURE, True)]
        overlap = [self.version(T1, T3, False), self.version(T2, FAR_FUTURE, True)]
        two_current = [self.version(T1, T2, True), self.version(T2, FAR_FUTURE, True)]

        assert any("gap" in problem for problem in check_partition(gap, FAR_FUTURE))
        assert any("overlap" in problem for problem in check_partition(overlap, FAR_FUTURE))
        assert any("exactly one current" in problem for problem in check_partition(two_current, FAR_FUTURE))

    def test_closed_latest_version_reported(self):
        """Test the latest version must stay open"""
        problems = check_partition([self.version(T1, T2, False)], FAR_FUTURE)
        assert any("far-future" in problem for problem in problems)

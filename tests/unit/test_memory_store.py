"""
Unit tests for the in-memory table store.
"""

import pytest

from historize.core.errors import StoreError
from historize.core.models import CurrentRecord, RejectedRecord, VersionedRecord
from historize.core.timeutil import FAR_FUTURE, parse_timestamp
from historize.incremental import encode_key

T1 = parse_timestamp("2024-01-01")
T2 = parse_timestamp("2024-02-01")
T3 = parse_timestamp("2024-03-01")

KEY = encode_key(["H1"])


def version(start, end=FAR_FUTURE, current=True) -> VersionedRecord:
    return VersionedRecord(
        business_key=KEY, payload={"HOST_ID": "H1"}, checksum="c",
        valid_from=start, valid_to=end, is_current=current,
    )


class TestInMemoryTableStore:
    """Tests for InMemoryTableStore"""

    def test_commit_applies_all_writes(self, memory_store, bookings_config):
        """Test a committed transaction publishes rows and watermark together"""
        row = CurrentRecord(business_key=encode_key(["B1"]), payload={"BOOKING_ID": "B1"},
                            checksum="c", change_timestamp=T1)

        with memory_store.transaction(bookings_config) as tx:
            tx.upsert_current([row])
            tx.save_watermark(T1)

        assert memory_store.load_watermark(bookings_config) == T1
        assert list(memory_store.current_rows(bookings_config)) == [row.business_key]
        assert memory_store.commits == 1

    def test_exception_rolls_back_everything(self, memory_store, bookings_config):
        """Test a failure inside the transaction leaves committed state untouched"""
        with pytest.raises(RuntimeError):
            with memory_store.transaction(bookings_config) as tx:
                tx.save_watermark(T1)
                raise RuntimeError("boom")

        assert memory_store.load_watermark(bookings_config) is None
        assert memory_store.rollbacks == 1

    def test_rollback_only_discards_writes(self, memory_store, bookings_config):
        """Test dry-run transactions commit nothing"""
        with memory_store.transaction(bookings_config) as tx:
            tx.save_watermark(T1)
            tx.set_rollback_only()

        assert memory_store.load_watermark(bookings_config) is None
        assert memory_store.commits == 0

    def test_watermark_never_moves_back(self, memory_store, bookings_config):
        """Test saving an older watermark keeps the newer one"""
        with memory_store.transaction(bookings_config) as tx:
            tx.save_watermark(T2)
        with memory_store.transaction(bookings_config) as tx:
            tx.save_watermark(T1)

        assert memory_store.load_watermark(bookings_config) == T2

    def test_close_and_insert_versions(self, memory_store, hosts_dim_config):
        """Test closing then opening keeps one current version"""
        with memory_store.transaction(hosts_dim_config) as tx:
            tx.insert_versions([version(T1)])
        with memory_store.transaction(hosts_dim_config) as tx:
            tx.close_versions([version(T1).closed_at(T2)])
            tx.insert_versions([version(T2)])

        versions = memory_store.versions(hosts_dim_config)[KEY]
        assert [(v.valid_from, v.is_current) for v in versions] == [(T1, False), (T2, True)]
        assert [v.version_id for v in versions] == [1, 2]

    def test_two_current_versions_refused_at_commit(self, memory_store, hosts_dim_config):
        """Test the one-current-version constraint is enforced on commit"""
        with memory_store.transaction(hosts_dim_config) as tx:
            tx.insert_versions([version(T1)])

        with pytest.raises(StoreError, match="exactly one current"):
            with memory_store.transaction(hosts_dim_config) as tx:
                tx.insert_versions([version(T2)])

        assert len(memory_store.versions(hosts_dim_config)[KEY]) == 1

    def test_gap_in_history_refused_at_commit(self, memory_store, hosts_dim_config):
        """Test committed versions must partition time without gaps"""
        with pytest.raises(StoreError, match="gap between"):
            with memory_store.transaction(hosts_dim_config) as tx:
                tx.insert_versions([version(T1, T2, False), version(T3)])

        assert memory_store.versions(hosts_dim_config) == {}

    def test_duplicate_version_start_refused(self, memory_store, hosts_dim_config):
        """Test a second version with the same start is refused"""
        with pytest.raises(StoreError, match="duplicate version"):
            with memory_store.transaction(hosts_dim_config) as tx:
                tx.insert_versions([version(T1, T2, False), version(T1)])

    def test_closing_unknown_version_refused(self, memory_store, hosts_dim_config):
        """Test closing a version that does not exist fails"""
        with pytest.raises(StoreError, match="to close"):
            with memory_store.transaction(hosts_dim_config) as tx:
                tx.close_versions([version(T1).closed_at(T2)])

    def test_injected_failures(self, memory_store, bookings_config):
        """Test fail_next makes exactly the requested calls fail"""
        memory_store.fail_next("load_watermark", times=2)

        for _ in range(2):
            with pytest.raises(StoreError):
                memory_store.load_watermark(bookings_config)
        assert memory_store.load_watermark(bookings_config) is None

        memory_store.fail_next("commit")
        with pytest.raises(StoreError):
            with memory_store.transaction(bookings_config) as tx:
                tx.save_watermark(T1)
        assert memory_store.load_watermark(bookings_config) is None
        assert memory_store.rollbacks == 1

    def test_rejections_are_numbered(self, memory_store, bookings_config):
        """Test stored rejections get identifiers"""
        rejected = RejectedRecord(
            entity="silver_bookings", raw_payload={"BOOKING_ID": ""}, kind="validation",
            failed_rules=["required_field:BOOKING_ID"], error_messages=["Field value is empty string"],
        )
        with memory_store.transaction(bookings_config) as tx:
            tx.save_rejections([rejected, rejected])

        assert [r.rejection_id for r in memory_store.load_rejections(bookings_config)] == [1, 2]

    def test_entities_are_isolated(self, memory_store, bookings_config, hosts_dim_config):
        """Test entities do not share state"""
        with memory_store.transaction(bookings_config) as tx:
            tx.save_watermark(T1)

        assert memory_store.load_watermark(hosts_dim_config) is None

    def test_watermark_state(self, memory_store, bookings_config):
        """Test the watermark state carries the entity and its update time"""
        assert memory_store.load_watermark_state(bookings_config) is None

        with memory_store.transaction(bookings_config) as tx:
            tx.save_watermark(T1)

        state = memory_store.load_watermark_state(bookings_config)
        assert state.entity == "silver_bookings"
        assert state.watermark == T1
        assert state.updated_at is not None

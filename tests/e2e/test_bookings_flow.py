"""
End-to-end test for the bookings flow.

Two daily CSV drops are read with Spark and applied to the current-state
bookings table and the historized bookings dimension declared in
config/entities.yaml.
"""

import os
from decimal import Decimal

import pytest

from historize.batch import SparkCSVReader, run_entities
from historize.core.config import EntityConfigLoader
from historize.core.timeutil import FAR_FUTURE, parse_timestamp
from historize.incremental import check_partition, encode_key
from historize.warehouse import InMemoryTableStore


def sources_for(reader, entities, path):
    return {
        entity.name: (lambda entity=entity: reader.iter_rows(path, entity.source, entity.columns))
        for entity in entities
    }


@pytest.mark.e2e
@pytest.mark.integration
def test_two_daily_drops(spark_session, test_data_dir, entities_yaml):
    """
    Test incremental runs over two daily drops.

    Steps:
    1. Day 1 loads every booking into both entities
    2. Day 2 skips the already-applied row, updates the changed booking,
       adds new bookings and rejects malformed rows
    3. The dimension keeps one current version per booking
    4. Replaying day 2 changes nothing
    """
    loader = EntityConfigLoader(entities_yaml)
    silver = loader.load_entity("silver_bookings")
    dim = loader.load_entity("dim_bookings")
    store = InMemoryTableStore()
    reader = SparkCSVReader(spark_session)

    day1 = os.path.join(test_data_dir, "bookings_day1.csv")
    day2 = os.path.join(test_data_dir, "bookings_day2.csv")

    # Day 1
    report = run_entities([silver, dim], store, sources_for(reader, [silver, dim], day1), max_workers=2)

    assert not report.failed
    assert report.summary_for("silver_bookings").inserted == 3
    assert report.summary_for("dim_bookings").versions_opened == 3
    assert store.load_watermark(silver) == parse_timestamp("2024-03-01T12:30:00")

    rows = store.current_rows(silver)
    assert rows[encode_key(["B1001"])].payload["TOTAL_BOOKING_AMOUNT"] == Decimal("361.50")
    assert rows[encode_key(["B1001"])].payload["TOTAL_AMOUNT"] == Decimal("399.25")

    # Day 2
    report = run_entities([silver, dim], store, sources_for(reader, [silver, dim], day2), max_workers=2)

    silver_summary = report.summary_for("silver_bookings")
    assert silver_summary.records_read == 5
    assert silver_summary.stale_records == 1
    assert silver_summary.updated == 1
    assert silver_summary.inserted == 1
    assert silver_summary.rejected == 2
    assert store.load_watermark(silver) == parse_timestamp("2024-03-02T09:30:00")
    assert store.current_rows(silver)[encode_key(["B1003"])].payload["BOOKING_STATUS"] == "confirmed"

    dim_summary = report.summary_for("dim_bookings")
    assert dim_summary.stale_records == 1
    assert dim_summary.versions_opened == 3
    assert dim_summary.versions_closed == 1
    assert dim_summary.rejected == 1

    versions = store.versions(dim)
    b1003 = versions[encode_key(["B1003"])]
    assert [v.payload["BOOKING_STATUS"] for v in b1003] == ["pending", "confirmed"]
    assert b1003[0].valid_to == b1003[1].valid_from
    assert set(b1003[1].payload) == {"BOOKING_ID", "BOOKING_DATE", "BOOKING_STATUS", "BOOKING_CREATED_AT"}
    for key_versions in versions.values():
        assert check_partition(key_versions, FAR_FUTURE) == []

    # Replay of day 2
    report = run_entities([silver, dim], store, sources_for(reader, [silver, dim], day2))

    assert report.summary_for("silver_bookings").written == 0
    replayed = report.summary_for("dim_bookings")
    assert replayed.written == 0
    assert replayed.stale_records == 4
    assert "ordering_violation" not in replayed.rejected_by_kind
    assert len(store.versions(dim)[encode_key(["B1003"])]) == 2

    # A late change to a booking whose history moved on
    late = os.path.join(test_data_dir, "bookings_late.csv")
    report = run_entities([dim], store, sources_for(reader, [dim], late))

    late_summary = report.summary_for("dim_bookings")
    assert late_summary.rejected_by_kind == {"ordering_violation": 1}
    assert late_summary.written == 0
    assert store.load_watermark(dim) == parse_timestamp("2024-03-02T10:00:00")
    (violation,) = [r for r in store.load_rejections(dim) if r.kind == "ordering_violation"]
    assert violation.business_key == encode_key(["B1003"])

"""
Unit tests for resource compensation attribution.

Tests the splitting formula, daily roll-up and the aggregation job.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from creator_payout.config.loader import AttributionConfig, PayoutConfig
from creator_payout.core.attribution import (
    aggregate_compensation,
    aggregation_window,
    split_job,
    start_of_day,
    update_creator_resource_compensation,
)
from creator_payout.storage.models import UsageEvent
from creator_payout.storage.relational import ResourceRepository
from creator_payout.storage.repository import AnalyticsRepository

CONFIG = AttributionConfig(excluded_resource_ids=frozenset({900}))

TYPES = {
    1: "Checkpoint",
    2: "LORA",
    3: "LORA",
    4: "TextualInversion",
    5: "LORA",
    900: "Checkpoint",
}


def make_event(resources, cost=1000.0, tip=0.0, job_id="job-1",
               created_at=datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)) -> UsageEvent:
    """Create a test usage event."""
    return UsageEvent(
        job_id=job_id,
        created_at=created_at,
        job_cost=cost,
        creator_tip=tip,
        resources_used=tuple(resources),
    )


def shares_by_resource(event, types=TYPES, config=CONFIG):
    return {rid: (comp, tip) for rid, comp, tip in split_job(event, types, config)}


class TestAggregationWindow:
    """Test the trailing day window."""

    def test_window_is_previous_utc_day(self):
        start, end = aggregation_window(datetime(2024, 3, 6, 15, 30, tzinfo=timezone.utc))
        assert start == datetime(2024, 3, 5, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 6, tzinfo=timezone.utc)

    def test_window_at_midnight(self):
        start, end = aggregation_window(datetime(2024, 3, 6, tzinfo=timezone.utc))
        assert start == datetime(2024, 3, 5, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 6, tzinfo=timezone.utc)

    def test_start_of_day_converts_to_utc(self):
        tz = timezone(timedelta(hours=-5))
        value = datetime(2024, 3, 5, 22, 0, tzinfo=tz)  # 03:00 UTC on the 6th
        assert start_of_day(value) == datetime(2024, 3, 6, tzinfo=timezone.utc)


class TestSplitJob:
    """Test the per-job splitting formula."""

    def test_single_base_model_takes_whole_pool(self):
        shares = shares_by_resource(make_event([1], cost=1000.0))
        assert shares[1][0] == pytest.approx(1000.0 * 0.25)

    def test_four_resources_without_base_model_split_evenly(self):
        shares = shares_by_resource(make_event([2, 3, 4, 5], cost=1000.0))
        assert len(shares) == 4
        for comp, _ in shares.values():
            assert comp == pytest.approx(1000.0 * 0.25 * 0.75 / 4)

    def test_base_model_earns_bonus_and_even_share(self):
        shares = shares_by_resource(make_event([1, 2, 3], cost=1200.0))
        creator_comp = 1200.0 * 0.25
        even_share = creator_comp * 0.75 / 3
        assert shares[1][0] == pytest.approx(creator_comp * 0.25 + even_share)
        assert shares[2][0] == pytest.approx(even_share)
        assert shares[3][0] == pytest.approx(even_share)

    def test_pool_fully_distributed_with_one_base_model(self):
        shares = shares_by_resource(make_event([1, 2, 3, 4, 5], cost=777.0))
        total = sum(comp for comp, _ in shares.values())
        assert total == pytest.approx(777.0 * 0.25)

    def test_tip_split_evenly_regardless_of_base_model(self):
        shares = shares_by_resource(make_event([1, 2, 3, 5], tip=100.0))
        for _, tip in shares.values():
            assert tip == pytest.approx(25.0)

    def test_excluded_resources_are_not_counted(self):
        shares = shares_by_resource(make_event([900, 2, 3], cost=1000.0, tip=10.0))
        assert 900 not in shares
        assert shares[2] == (pytest.approx(1000.0 * 0.25 * 0.75 / 2), pytest.approx(5.0))

    def test_only_excluded_resources_produce_nothing(self):
        assert split_job(make_event([900], cost=1000.0), TYPES, CONFIG) == []

    def test_no_resources_produce_nothing(self):
        assert split_job(make_event([], cost=1000.0), TYPES, CONFIG) == []

    def test_unknown_resource_counted_but_not_paid(self):
        shares = shares_by_resource(make_event([2, 12345], cost=1000.0))
        assert set(shares) == {2}
        assert shares[2][0] == pytest.approx(1000.0 * 0.25 * 0.75 / 2)

    def test_repeated_resource_paid_once(self):
        shares = split_job(make_event([2, 2, 3], cost=1200.0), TYPES, CONFIG)
        resource_ids = [rid for rid, _, _ in shares]
        assert resource_ids == [2, 3]
        assert shares[0][1] == pytest.approx(1200.0 * 0.25 * 0.75 / 3)

    def test_custom_shares(self):
        config = AttributionConfig(creator_share=0.5, base_model_share=0.0,
                                   excluded_resource_ids=frozenset())
        shares = shares_by_resource(make_event([1, 2], cost=100.0), config=config)
        assert shares[1][0] == pytest.approx(25.0)
        assert shares[2][0] == pytest.approx(25.0)


class TestAggregateCompensation:
    """Test the per-day roll-up."""

    def test_sums_across_jobs_and_floors(self):
        events = [
            make_event([2, 3], cost=10.0, tip=3.0, job_id="a"),
            make_event([2], cost=10.0, tip=0.0, job_id="b"),
        ]
        rows = aggregate_compensation(events, TYPES, CONFIG)
        by_resource = {row.resource_id: row for row in rows}

        # resource 2: comp 0.9375 + 1.875 = 2.8125, tip 1.5
        assert by_resource[2].comp == 2
        assert by_resource[2].tip == 1
        assert by_resource[2].total == 3
        # resource 3: comp 0.9375, tip 1.5
        assert by_resource[3].comp == 0
        assert by_resource[3].tip == 1
        assert by_resource[3].total == 1

    def test_rows_below_one_unit_are_dropped(self):
        rows = aggregate_compensation([make_event([2, 3, 4, 5], cost=5.0)], TYPES, CONFIG)
        assert rows == []

    def test_excluded_resources_never_appear(self):
        rows = aggregate_compensation([make_event([900, 1, 2], cost=10000.0)], TYPES, CONFIG)
        assert 900 not in {row.resource_id for row in rows}

    def test_rows_sorted_by_total_descending(self):
        events = [
            make_event([1, 2, 3], cost=4000.0, job_id="a"),
            make_event([3], cost=4000.0, job_id="b"),
        ]
        rows = aggregate_compensation(events, TYPES, CONFIG)
        totals = [row.total for row in rows]
        assert totals == sorted(totals, reverse=True)

    def test_rows_dated_by_event_day(self):
        events = [
            make_event([2], cost=100.0, job_id="a",
                       created_at=datetime(2024, 3, 5, 23, 59, tzinfo=timezone.utc)),
            make_event([2], cost=100.0, job_id="b",
                       created_at=datetime(2024, 3, 6, 0, 1, tzinfo=timezone.utc)),
        ]
        rows = aggregate_compensation(events, TYPES, CONFIG)
        assert sorted(row.date for row in rows) == [date(2024, 3, 5), date(2024, 3, 6)]

    def test_total_equals_comp_plus_tip(self):
        events = [make_event([1, 2, 3], cost=999.0, tip=77.0, job_id=str(i)) for i in range(5)]
        for row in aggregate_compensation(events, TYPES, CONFIG):
            assert row.total == row.comp + row.tip
            assert row.total >= 1


class TestUpdateCreatorResourceCompensation:
    """Test the hourly aggregation job against SQLite stores."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.analytics = AnalyticsRepository(self.db_path)
        self.resources = ResourceRepository(self.db_path)
        self.analytics.initialize_schema()
        self.resources.initialize_schema()
        self.resources.upsert_resources([
            (1, 10, "Checkpoint"),
            (2, 20, "LORA"),
            (250708, 30, "Checkpoint"),
        ])
        self.config = PayoutConfig()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_aggregates_previous_day_only(self):
        self.analytics.insert_usage_events([
            make_event([1, 2], cost=400.0, tip=20.0, job_id="in-window",
                       created_at=datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)),
            make_event([1, 2], cost=400.0, tip=20.0, job_id="today",
                       created_at=datetime(2024, 3, 6, 1, 0, tzinfo=timezone.utc)),
            make_event([1, 2], cost=400.0, tip=20.0, job_id="too-old",
                       created_at=datetime(2024, 3, 4, 23, 0, tzinfo=timezone.utc)),
        ])

        written = update_creator_resource_compensation(
            self.analytics, self.resources, self.config,
            now=datetime(2024, 3, 6, 3, 0, tzinfo=timezone.utc),
        )

        rows = self.analytics.fetch_compensation_rows(date(2024, 3, 5))
        assert written == 2
        by_resource = {row.resource_id: row for row in rows}
        # creator pool 100: base bonus 25, even share 37.5 each
        assert by_resource[1].comp == 62
        assert by_resource[2].comp == 37
        assert by_resource[1].tip == 10
        assert by_resource[2].tip == 10

    def test_default_denylist_applies(self):
        self.analytics.insert_usage_events([
            make_event([250708, 2], cost=400.0, job_id="a",
                       created_at=datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)),
        ])
        update_creator_resource_compensation(
            self.analytics, self.resources, self.config,
            now=datetime(2024, 3, 6, 3, 0, tzinfo=timezone.utc),
        )
        rows = self.analytics.fetch_compensation_rows(date(2024, 3, 5))
        assert [row.resource_id for row in rows] == [2]
        assert rows[0].comp == 75

    def test_rerun_replaces_rows(self):
        now = datetime(2024, 3, 6, 3, 0, tzinfo=timezone.utc)
        self.analytics.insert_usage_events([
            make_event([2], cost=400.0, job_id="a",
                       created_at=datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)),
        ])
        update_creator_resource_compensation(self.analytics, self.resources, self.config, now=now)

        self.analytics.insert_usage_events([
            make_event([2], cost=400.0, job_id="b",
                       created_at=datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)),
        ])
        update_creator_resource_compensation(self.analytics, self.resources, self.config, now=now)
        update_creator_resource_compensation(self.analytics, self.resources, self.config, now=now)

        rows = self.analytics.fetch_compensation_rows(date(2024, 3, 5))
        assert len(rows) == 1
        assert rows[0].comp == 150

    def test_empty_window_writes_nothing(self):
        written = update_creator_resource_compensation(
            self.analytics, self.resources, self.config,
            now=datetime(2024, 3, 6, 3, 0, tzinfo=timezone.utc),
        )
        assert written == 0

    def test_compaction_failure_keeps_written_rows(self):
        self.analytics.insert_usage_events([
            make_event([2], cost=400.0, job_id="a",
                       created_at=datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)),
        ])

        with patch.object(AnalyticsRepository, 'compact',
                          side_effect=sqlite3.OperationalError("database is locked")) as mock_compact:
            written = update_creator_resource_compensation(
                self.analytics, self.resources, self.config,
                now=datetime(2024, 3, 6, 3, 0, tzinfo=timezone.utc),
            )

        mock_compact.assert_called_once()
        assert written == 1
        assert [row.resource_id for row in self.analytics.fetch_compensation_rows(date(2024, 3, 5))] == [2]

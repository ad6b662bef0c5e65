"""
Tests for the scheduled job registry.
"""
import os
import tempfile

import pytest

from creator_payout.config.loader import PayoutConfig, StorageConfig
from creator_payout.core.jobs import JOBS, JobContext, get_job
from creator_payout.core.payout import PayoutResult


class TestJobRegistry:
    """Test job lookup and schedules."""

    def test_registered_jobs_and_crons(self):
        assert {job.name: job.cron for job in JOBS} == {
            "update-creator-resource-compensation": "0 * * * *",
            "run-daily-compensation-payout": "0 0 * * *",
        }

    def test_get_job(self):
        assert get_job("run-daily-compensation-payout").cron == "0 0 * * *"

    def test_unknown_job(self):
        with pytest.raises(KeyError, match="Unknown job"):
            get_job("deliver-everything")


class TestJobContext:
    """Test running jobs against configured stores."""

    def test_jobs_run_against_configured_stores(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config = PayoutConfig(storage=StorageConfig(
                analytics_db=os.path.join(temp_dir, "analytics.db"),
                relational_db=os.path.join(temp_dir, "relational.db"),
                ledger_db=os.path.join(temp_dir, "ledger.db"),
                jobs_db=os.path.join(temp_dir, "jobs.db"),
            ))
            context = JobContext.from_config(config)
            context.initialize_schema()

            assert get_job("update-creator-resource-compensation").run(context) == 0

            result = get_job("run-daily-compensation-payout").run(context)
            assert isinstance(result, PayoutResult)
            assert result.count == 0
            assert "run-daily-compensation-payout" in context.watermarks.list_watermarks()

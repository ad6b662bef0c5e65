"""
Scheduled job registry.

The external scheduler runs each job on its cron expression and guarantees
a single in-flight invocation per job name.
"""

from dataclasses import dataclass
from typing import Any, Callable, Tuple

from creator_payout.config.loader import PayoutConfig
from creator_payout.storage.ledger import LedgerRepository
from creator_payout.storage.relational import ResourceRepository
from creator_payout.storage.repository import AnalyticsRepository
from creator_payout.storage.watermark import WatermarkStore

from . import attribution, payout


@dataclass(frozen=True)
class JobContext:
    """Configuration plus the stores a job runs against."""
    config: PayoutConfig
    analytics: AnalyticsRepository
    resources: ResourceRepository
    ledger: LedgerRepository
    watermarks: WatermarkStore

    @classmethod
    def from_config(cls, config: PayoutConfig) -> "JobContext":
        """Build repositories from the configured store locations."""
        return cls(
            config=config,
            analytics=AnalyticsRepository(config.storage.analytics_db),
            resources=ResourceRepository(config.storage.relational_db),
            ledger=LedgerRepository(config.storage.ledger_db),
            watermarks=WatermarkStore(config.storage.jobs_db),
        )

    def initialize_schema(self) -> None:
        """Create every table the jobs read or write."""
        self.analytics.initialize_schema()
        self.resources.initialize_schema()
        self.ledger.initialize_schema()
        self.watermarks.initialize_schema()


@dataclass(frozen=True)
class Job:
    """A named job with its cron schedule."""
    name: str
    cron: str
    run: Callable[[JobContext], Any]


def _run_aggregation(context: JobContext) -> int:
    return attribution.update_creator_resource_compensation(
        context.analytics,
        context.resources,
        context.config,
    )


def _run_payout(context: JobContext) -> payout.PayoutResult:
    return payout.run_daily_compensation_payout(
        context.analytics,
        context.resources,
        context.ledger,
        context.watermarks,
        context.config,
    )


JOBS: Tuple[Job, ...] = (
    Job(name=attribution.JOB_NAME, cron=attribution.JOB_CRON, run=_run_aggregation),
    Job(name=payout.JOB_NAME, cron=payout.JOB_CRON, run=_run_payout),
)


def get_job(name: str) -> Job:
    """Look up a registered job by name.

    Raises:
        KeyError: If no job has that name
    """
    for job in JOBS:
        if job.name == name:
            return job
    known = ", ".join(job.name for job in JOBS)
    raise KeyError(f"Unknown job '{name}'. Registered jobs: {known}")

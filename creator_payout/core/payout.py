"""
Daily creator payout.

Turns the previous day's compensation rows into ledger transactions, one
compensation and one tip transaction per creator.

Run order:
1. Read the day's aggregated rows
2. Resolve resource ownership
3. Accumulate totals per creator
4. Emit compensation batches, then tip batches
5. Advance the watermark

Any failure before step 5 leaves the watermark untouched, so the whole day
is retried on the next run. Batches already written are recognized as
duplicates by the ledger on that retry.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Mapping, Optional

from creator_payout.config.loader import PayoutConfig
from creator_payout.observability.logging import get_logger
from creator_payout.storage.ledger import LedgerRepository
from creator_payout.storage.models import CreatorTotals, LedgerTransaction, TransactionKind
from creator_payout.storage.relational import ResourceRepository
from creator_payout.storage.repository import AnalyticsRepository
from creator_payout.storage.watermark import WatermarkStore

from .attribution import start_of_day
from .batching import chunked, with_retries
from .ownership import resolve_ownership
from .transactions import accumulate_creator_totals, build_transactions

logger = get_logger(__name__)

JOB_NAME = "run-daily-compensation-payout"
JOB_CRON = "0 0 * * *"


class LedgerBatchError(RuntimeError):
    """Raised when a ledger batch still fails after its retries."""

    def __init__(self, kind: TransactionKind, batch_index: int, batch: List[LedgerTransaction],
                 original_exception: Exception):
        message = (
            f"Ledger batch {batch_index} of {kind.value} transactions failed: "
            f"{original_exception}"
        )
        super().__init__(message)
        self.kind = kind
        self.batch_index = batch_index
        self.batch = batch
        self.original_exception = original_exception


@dataclass(frozen=True)
class PayoutResult:
    """Outcome of one payout run."""
    date: date
    count: int
    compensation_transactions: int = 0
    tip_transactions: int = 0


@dataclass(frozen=True)
class PayoutPlan:
    """Transactions a payout run would emit for one day."""
    date: date
    totals: Mapping[int, CreatorTotals]
    compensation: List[LedgerTransaction]
    tips: List[LedgerTransaction]


def payout_date(last_run: datetime) -> date:
    """Return the day to pay for: the day before the last successful run, in UTC."""
    return start_of_day(last_run - timedelta(days=1)).date()


def plan_payout(
    day: date,
    analytics: AnalyticsRepository,
    resources: ResourceRepository,
    config: PayoutConfig
) -> PayoutPlan:
    """Read, resolve and accumulate one day's payout without writing anything."""
    rows = analytics.fetch_compensation_rows(day)
    if not rows:
        return PayoutPlan(date=day, totals={}, compensation=[], tips=[])

    ownership = resolve_ownership(
        (row.resource_id for row in rows),
        resources,
        batch_size=config.payout.ownership_batch_size,
    )
    totals = accumulate_creator_totals(rows, ownership)

    system_account = config.payout.system_account_id
    return PayoutPlan(
        date=day,
        totals=totals,
        compensation=build_transactions(totals, day, TransactionKind.COMPENSATION, system_account),
        tips=build_transactions(totals, day, TransactionKind.TIP, system_account),
    )


def preview_payout(
    analytics: AnalyticsRepository,
    resources: ResourceRepository,
    watermarks: WatermarkStore,
    config: PayoutConfig,
    day: Optional[date] = None
) -> PayoutPlan:
    """Dry run: the plan the next payout would execute.

    Defaults to the date derived from the payout watermark. Neither the
    ledger nor the watermark is touched.
    """
    if day is None:
        last_run, _ = watermarks.get_job_date(JOB_NAME, watermarks.clock())
        day = payout_date(last_run)
    return plan_payout(day, analytics, resources, config)


def _emit_batches(
    ledger: LedgerRepository,
    transactions: List[LedgerTransaction],
    kind: TransactionKind,
    config: PayoutConfig
) -> int:
    """Submit transactions one batch at a time, in order."""
    written = 0
    for index, batch in enumerate(chunked(transactions, config.payout.batch_size)):
        try:
            written += with_retries(
                lambda: ledger.create_transactions(batch),
                config.payout.ledger_retries,
            )
        except Exception as e:
            raise LedgerBatchError(kind, index, batch, e) from e
    return written


def run_daily_compensation_payout(
    analytics: AnalyticsRepository,
    resources: ResourceRepository,
    ledger: LedgerRepository,
    watermarks: WatermarkStore,
    config: PayoutConfig
) -> PayoutResult:
    """Pay creators for the day before the last successful run.

    Returns:
        PayoutResult whose count is the number of creators paid

    Raises:
        LedgerBatchError: If a ledger batch fails after retrying
    """
    last_run, set_last_run = watermarks.get_job_date(JOB_NAME, watermarks.clock())
    day = payout_date(last_run)
    log = logger.bind(job=JOB_NAME, date=day.isoformat())
    log.info("Starting creator payout", last_run=last_run.isoformat())

    plan = plan_payout(day, analytics, resources, config)
    if not plan.totals:
        set_last_run()
        log.info("No compensation to pay")
        return PayoutResult(date=day, count=0)

    try:
        comp_written = _emit_batches(ledger, plan.compensation, TransactionKind.COMPENSATION, config)
        tip_written = _emit_batches(ledger, plan.tips, TransactionKind.TIP, config)
    except LedgerBatchError as e:
        log.error(
            "Creator payout failed, watermark not advanced",
            kind=e.kind.value,
            batch_index=e.batch_index,
            batch_size=len(e.batch),
            error=str(e.original_exception),
        )
        raise

    completed_at = set_last_run()
    log.info(
        "Creator payout complete",
        creators=len(plan.totals),
        compensation_transactions=len(plan.compensation),
        tip_transactions=len(plan.tips),
        compensation_written=comp_written,
        tip_written=tip_written,
        watermark=completed_at.isoformat(),
    )
    return PayoutResult(
        date=day,
        count=len(plan.totals),
        compensation_transactions=len(plan.compensation),
        tip_transactions=len(plan.tips),
    )

"""
Resource compensation attribution.

Splits each job's creator pool across the resources it used and rolls the
shares up into one row per (day, resource).

Splitting rules, per job:
1. Excluded resources are dropped before counting resources
2. A quarter of the job cost is the creator pool
3. Base models take a fixed quarter of the pool on top of their even share
4. The rest of the pool, and the whole tip, is split evenly across resources
"""

import math
import sqlite3
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from creator_payout.config.loader import AttributionConfig, PayoutConfig
from creator_payout.observability.logging import get_logger
from creator_payout.storage.models import CompensationRow, ResourceUsage, UsageEvent
from creator_payout.storage.relational import ResourceRepository
from creator_payout.storage.repository import AnalyticsRepository

logger = get_logger(__name__)

JOB_NAME = "update-creator-resource-compensation"
JOB_CRON = "0 * * * *"


def start_of_day(value: datetime) -> datetime:
    """Floor a datetime to midnight UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return datetime.combine(value.date(), time.min, tzinfo=timezone.utc)


def aggregation_window(now: datetime) -> Tuple[datetime, datetime]:
    """Return [start of yesterday, start of today) relative to `now`, in UTC."""
    end = start_of_day(now)
    return end - timedelta(days=1), end


def attributed_resources(
    event: UsageEvent,
    resource_types: Mapping[int, str],
    config: AttributionConfig
) -> Tuple[List[ResourceUsage], int]:
    """Resolve which resources of a job earn a share.

    Returns:
        (resources, resource_count). Resources are unique and in first-use
        order; resource_count counts every non-excluded entry, including
        repeats and resources missing from the catalog.
    """
    counted = [rid for rid in event.resources_used if rid not in config.excluded_resource_ids]

    resources = []
    seen = set()
    for rid in counted:
        if rid in seen or rid not in resource_types:
            continue
        seen.add(rid)
        resources.append(ResourceUsage(
            resource_id=rid,
            is_base_model=resource_types[rid] == config.base_model_type,
        ))
    return resources, len(counted)


def split_job(
    event: UsageEvent,
    resource_types: Mapping[int, str],
    config: AttributionConfig
) -> List[Tuple[int, float, float]]:
    """Compute unrounded (resource_id, comp, tip) shares for one job.

    Args:
        event: The job to split
        resource_types: Catalog type per known resource id
        config: Attribution ratios and exclusions

    Returns:
        One entry per attributed resource
    """
    resources, resource_count = attributed_resources(event, resource_types, config)
    if resource_count == 0:
        return []

    creator_comp = event.job_cost * config.creator_share
    resource_comp = creator_comp * (1 - config.base_model_share) / resource_count
    tip = event.creator_tip / resource_count

    shares = []
    for resource in resources:
        base_model_comp = creator_comp * config.base_model_share if resource.is_base_model else 0.0
        shares.append((resource.resource_id, base_model_comp + resource_comp, tip))
    return shares


def aggregate_compensation(
    events: Iterable[UsageEvent],
    resource_types: Mapping[int, str],
    config: AttributionConfig
) -> List[CompensationRow]:
    """Roll job shares up into per-day, per-resource rows.

    Comp and tip are summed across the day's jobs and floored separately.
    Rows that total less than one unit are dropped, not carried forward.

    Returns:
        Rows sorted by total descending
    """
    sums: Dict[Tuple[date, int], List[float]] = defaultdict(lambda: [0.0, 0.0])
    for event in events:
        day = start_of_day(event.created_at).date()
        for resource_id, comp, tip in split_job(event, resource_types, config):
            entry = sums[(day, resource_id)]
            entry[0] += comp
            entry[1] += tip

    rows = []
    for (day, resource_id), (comp_sum, tip_sum) in sums.items():
        comp = math.floor(comp_sum)
        tip = math.floor(tip_sum)
        if comp + tip < 1:
            continue
        rows.append(CompensationRow(
            date=day,
            resource_id=resource_id,
            comp=comp,
            tip=tip,
            total=comp + tip,
        ))

    rows.sort(key=lambda row: (-row.total, row.date, row.resource_id))
    return rows


def update_creator_resource_compensation(
    analytics: AnalyticsRepository,
    resources: ResourceRepository,
    config: PayoutConfig,
    now: Optional[datetime] = None
) -> int:
    """Recompute yesterday's compensation rows and compact the table.

    The window is replaced as a whole, so running this hourly or rerunning
    it after a failure is safe. Failures propagate; the scheduler reruns
    the job wholesale. A failed compaction is only logged, since the rows
    are already committed.

    Returns:
        Number of rows written
    """
    now = now or datetime.now(timezone.utc)
    start, end = aggregation_window(now)
    log = logger.bind(job=JOB_NAME, window_start=start.isoformat(), window_end=end.isoformat())
    log.info("Aggregating resource compensation")

    events = analytics.fetch_usage_events(start, end)
    referenced = {rid for event in events for rid in event.resources_used}
    resource_types = resources.fetch_resource_types(referenced)

    rows = aggregate_compensation(events, resource_types, config.attribution)
    written = analytics.replace_compensation_rows(start.date(), end.date(), rows)
    try:
        analytics.compact()
    except sqlite3.Error as e:
        log.warning("Compaction failed", error=str(e))

    log.info(
        "Resource compensation aggregated",
        events=len(events),
        resources=len(referenced),
        rows=written,
    )
    return written

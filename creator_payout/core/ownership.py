"""
Ownership resolution for compensated resources.
"""

from typing import Dict, Iterable, List

from creator_payout.observability.logging import get_logger
from creator_payout.storage.relational import ResourceRepository

from .batching import chunked

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000


def resolve_ownership(
    resource_ids: Iterable[int],
    repository: ResourceRepository,
    batch_size: int = DEFAULT_BATCH_SIZE
) -> Dict[int, List[int]]:
    """Map owning creator id to the resources they own.

    Ids are deduplicated and looked up one chunk at a time so no single
    query carries more than `batch_size` parameters. Resources without an
    owner are left out of the result.

    Args:
        resource_ids: Resource ids to resolve
        repository: Relational store to query
        batch_size: Maximum ids per query

    Returns:
        Dict of creator_id -> resource ids, merged across chunks
    """
    distinct = list(dict.fromkeys(resource_ids))
    owners: Dict[int, List[int]] = {}

    queries = 0
    for chunk in chunked(distinct, batch_size):
        queries += 1
        for creator_id, owned in repository.fetch_owned_resources(chunk):
            if not owned:
                continue
            owners.setdefault(creator_id, []).extend(owned)

    resolved = sum(len(owned) for owned in owners.values())
    logger.debug(
        "Resolved resource ownership",
        resources=len(distinct),
        resolved=resolved,
        creators=len(owners),
        queries=queries,
    )
    return owners

"""
Ledger transaction construction.

External transaction ids are a pure function of (date, kind); the ledger
scopes them by destination account, so one creator can be paid at most
once per day and kind no matter how often the payout is rerun.
"""

from datetime import date
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

from creator_payout.config.loader import PayoutSettings
from creator_payout.storage.models import (
    CompensationRow,
    CreatorTotals,
    LedgerTransaction,
    TransactionKind,
    TransactionType,
)

_DESCRIPTIONS = {
    TransactionKind.COMPENSATION: "Creator compensation incentive",
    TransactionKind.TIP: "Creator tip incentive",
}


def external_transaction_id(day: date, kind: TransactionKind) -> str:
    """Return the idempotency key for a day's payout of one kind.

    >>> external_transaction_id(date(2024, 3, 5), TransactionKind.TIP)
    'creator-tip-2024-03-05'
    """
    return f"creator-{kind.value}-{day.isoformat()}"


def format_display_date(day: date) -> str:
    """Format a date as 'Mar 5, 2024'."""
    return f"{day:%b} {day.day}, {day.year}"


def transaction_description(day: date, kind: TransactionKind) -> str:
    """Human-readable ledger description embedding the payout date."""
    return f"({format_display_date(day)}) {_DESCRIPTIONS[kind]}"


def pair_rows_with_creators(
    rows: Iterable[CompensationRow],
    ownership: Mapping[int, List[int]]
) -> List[Tuple[int, CompensationRow]]:
    """Pair each row with the creator owning its resource.

    Rows for unowned resources are dropped.
    """
    owner_of = {
        resource_id: creator_id
        for creator_id, resource_ids in ownership.items()
        for resource_id in resource_ids
    }
    return [(owner_of[row.resource_id], row) for row in rows if row.resource_id in owner_of]


def accumulate_creator_totals(
    rows: Iterable[CompensationRow],
    ownership: Mapping[int, List[int]]
) -> Mapping[int, CreatorTotals]:
    """Sum comp and tip per creator.

    Returns:
        Read-only mapping of creator_id -> CreatorTotals. Creators with
        resolved ownership but no rows are not included.
    """
    sums: Dict[int, Tuple[int, int]] = {}
    for creator_id, row in pair_rows_with_creators(rows, ownership):
        comp, tip = sums.get(creator_id, (0, 0))
        sums[creator_id] = (comp + row.comp, tip + row.tip)

    return MappingProxyType({
        creator_id: CreatorTotals(creator_id=creator_id, comp=comp, tip=tip)
        for creator_id, (comp, tip) in sums.items()
    })


def build_transactions(
    totals: Mapping[int, CreatorTotals],
    day: date,
    kind: TransactionKind,
    system_account_id: int = PayoutSettings.system_account_id
) -> List[LedgerTransaction]:
    """Build one transaction per creator with a positive amount of `kind`.

    Args:
        totals: Per-creator totals from accumulate_creator_totals
        day: Payout date
        kind: Compensation or tip
        system_account_id: Account the payout is drawn from

    Returns:
        Transactions ordered by creator id
    """
    external_id = external_transaction_id(day, kind)
    description = transaction_description(day, kind)

    transactions = []
    for creator_id in sorted(totals):
        creator = totals[creator_id]
        amount = creator.comp if kind is TransactionKind.COMPENSATION else creator.tip
        if amount <= 0:
            continue
        transactions.append(LedgerTransaction(
            from_account_id=system_account_id,
            to_account_id=creator_id,
            amount=amount,
            description=description,
            type=TransactionType.INCENTIVE,
            external_transaction_id=external_id,
        ))
    return transactions

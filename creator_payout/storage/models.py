"""
Data models for storage layer.

Defines the records read and written by the payout pipeline.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Tuple


class TransactionType(Enum):
    """Ledger transaction type tags."""
    INCENTIVE = "Incentive"


class TransactionKind(Enum):
    """Kinds of creator payout emitted per day."""
    COMPENSATION = "comp"
    TIP = "tip"


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one generation job.

    Produced by the generation service and never modified once written.
    `resources_used` keeps the order reported by the job and may repeat ids.
    """
    job_id: str
    created_at: datetime
    job_cost: float
    creator_tip: float
    resources_used: Tuple[int, ...]


@dataclass(frozen=True)
class ResourceUsage:
    """One attributed resource within a single job."""
    resource_id: int
    is_base_model: bool


@dataclass(frozen=True)
class CompensationRow:
    """Aggregated compensation for one resource on one day.

    Amounts are whole currency units. Rows totalling less than one
    unit are never persisted.
    """
    date: date
    resource_id: int
    comp: int
    tip: int
    total: int

    def __post_init__(self):
        """Validate amounts and the total."""
        if self.comp < 0:
            raise ValueError("comp cannot be negative")
        if self.tip < 0:
            raise ValueError("tip cannot be negative")
        if self.total != self.comp + self.tip:
            raise ValueError("total must equal comp + tip")
        if self.total < 1:
            raise ValueError("total must be at least 1")


@dataclass(frozen=True)
class CreatorTotals:
    """Accumulated payout amounts for one creator on one day."""
    creator_id: int
    comp: int
    tip: int


@dataclass(frozen=True)
class LedgerTransaction:
    """Transaction record submitted to the ledger.

    The ledger treats (external_transaction_id, to_account_id) as unique,
    so resubmitting the same record is a no-op.
    """
    from_account_id: int
    to_account_id: int
    amount: int
    description: str
    type: TransactionType
    external_transaction_id: str

    def __post_init__(self):
        """Validate the amount is payable."""
        if self.amount <= 0:
            raise ValueError("amount must be > 0")

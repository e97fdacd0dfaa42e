"""
Result types returned by the ledger engine.

Plain frozen dataclasses: the engine reports counts and amounts, the API
layer turns them into response schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from backend.app.models.ledger_enums import EntryDirection

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any) -> Decimal:
    """Coerce a stored or client value to a 2-place Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RecalculationResult:
    """Outcome of one full balance replay for a (user, party)."""
    party_name: str
    updated: int = 0
    unchanged: int = 0
    failed: int = 0

    @property
    def entries_processed(self) -> int:
        return self.updated + self.unchanged + self.failed

    @property
    def is_partial_failure(self) -> bool:
        return self.failed > 0


@dataclass(frozen=True)
class BulkRecalculationResult:
    parties_processed: int
    entries_updated: int
    entries_unchanged: int
    entries_failed: int
    parties: Tuple[RecalculationResult, ...] = ()


@dataclass(frozen=True)
class PartySettlement:
    """One party closed by a settle call. marker_id is None when nothing was open."""
    party_name: str
    settled_count: int
    marker_id: Optional[int] = None
    absorbed_markers: int = 0
    net_amount: Decimal = ZERO
    direction: Optional[EntryDirection] = None
    recalculation: Optional[RecalculationResult] = None


@dataclass(frozen=True)
class SettlementFailure:
    party_name: str
    reason: str


@dataclass(frozen=True)
class SettlementResult:
    parties: Tuple[PartySettlement, ...] = ()
    failed_parties: Tuple[SettlementFailure, ...] = ()

    @property
    def settled_count(self) -> int:
        return sum(item.settled_count for item in self.parties)


@dataclass(frozen=True)
class UnsettlementResult:
    marker_id: int
    party_name: str
    unsettled_count: int
    reopened_markers: int = 0
    orphans_repaired: int = 0
    recalculation: Optional[RecalculationResult] = None


@dataclass(frozen=True)
class ReclassificationResult:
    examined: int
    changed: int
    parties_recalculated: int


@dataclass(frozen=True)
class CommissionPeriod:
    """Active commission transactions of one calendar month (YYYY-MM)."""
    month: str
    transactions: int
    business_volume: Decimal
    commission_collected: Decimal
    commission_paid: Decimal

    @property
    def net_profit(self) -> Decimal:
        return self.commission_collected - self.commission_paid


@dataclass(frozen=True)
class CommissionSummary:
    total_transactions: int
    cancelled_transactions: int
    business_volume: Decimal
    commission_collected: Decimal
    commission_paid: Decimal
    house_balance: Decimal
    months: Tuple[CommissionPeriod, ...] = ()

    @property
    def net_profit(self) -> Decimal:
        return self.commission_collected - self.commission_paid


@dataclass(frozen=True)
class TrialBalanceRow:
    name: str
    amount: Decimal
    credit_total: Decimal
    debit_total: Decimal
    entry_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "amount": str(self.amount),
            "credit_total": str(self.credit_total),
            "debit_total": str(self.debit_total),
            "entry_count": self.entry_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrialBalanceRow":
        return cls(
            name=data["name"],
            amount=Decimal(data["amount"]),
            credit_total=Decimal(data["credit_total"]),
            debit_total=Decimal(data["debit_total"]),
            entry_count=int(data["entry_count"]),
        )


@dataclass(frozen=True)
class TrialBalance:
    credit_entries: Tuple[TrialBalanceRow, ...]
    debit_entries: Tuple[TrialBalanceRow, ...]
    total_credit: Decimal
    total_debit: Decimal
    orphaned_entries: int = 0
    generated_at: Optional[datetime] = None
    from_cache: bool = field(default=False, compare=False)

    @property
    def difference(self) -> Decimal:
        return self.total_credit - self.total_debit

    @property
    def is_balanced(self) -> bool:
        return self.difference == 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe form stored in the report cache."""
        return {
            "credit_entries": [row.to_dict() for row in self.credit_entries],
            "debit_entries": [row.to_dict() for row in self.debit_entries],
            "total_credit": str(self.total_credit),
            "total_debit": str(self.total_debit),
            "orphaned_entries": self.orphaned_entries,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], from_cache: bool = False) -> "TrialBalance":
        generated_at = data.get("generated_at")
        return cls(
            credit_entries=tuple(TrialBalanceRow.from_dict(row) for row in data["credit_entries"]),
            debit_entries=tuple(TrialBalanceRow.from_dict(row) for row in data["debit_entries"]),
            total_credit=Decimal(data["total_credit"]),
            total_debit=Decimal(data["total_debit"]),
            orphaned_entries=int(data.get("orphaned_entries", 0)),
            generated_at=datetime.fromisoformat(generated_at) if generated_at else None,
            from_cache=from_cache,
        )

"""
Ledger enumerations.
"""

import enum


class EntryDirection(str, enum.Enum):
    """Transaction direction (tns_type)."""
    CR = "CR"  # Credit: increases the party's running balance
    DR = "DR"  # Debit: decreases the party's running balance


class EntryKind(str, enum.Enum):
    """
    Explicit classification of a ledger line, fixed when the row is written.

    VIRTUAL_CATEGORY rows carry the category name (company name, Commission,
    Comp) in LedgerEntry.category.
    """
    ORDINARY = "ORDINARY"
    SETTLEMENT_MARKER = "SETTLEMENT_MARKER"
    VIRTUAL_CATEGORY = "VIRTUAL_CATEGORY"


class PartyStatus(str, enum.Enum):
    """Party status codes kept from the paper ledger."""
    ACTIVE = "A"
    RESIGNED = "R"


class MondayFinalFlag(str, enum.Enum):
    """Whether a party has been closed by at least one Monday Final settlement."""
    NO = "No"
    YES = "Yes"


class CommissionStatus(str, enum.Enum):
    """Lifecycle of a commission transaction."""
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"  # Reversing entries have been written

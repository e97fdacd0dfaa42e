"""
Entry classification.

New rows get their EntryKind when they are written: settlement markers are
only ever created by the settlement engine, and a party name is a virtual
category only on an exact (case-insensitive) match with the company name,
Commission or Comp. A name that merely contains one of those words stays
ORDINARY.

classify_legacy() reproduces the old remarks/substring rules. It is used
only by the one-time reclassification of rows written before `kind`
existed.
"""

from typing import Iterable, Optional, Tuple

from backend.app.core.config import settings
from backend.app.models.ledger_enums import EntryKind

SETTLEMENT_MARKER_TEXT = "Monday Final Settlement"
LEGACY_AUTO_COMMISSION_TEXT = "auto-calculated"

Classification = Tuple[EntryKind, Optional[str]]


def normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").split())


def _same_name(left: Optional[str], right: Optional[str]) -> bool:
    return normalize_name(left).casefold() == normalize_name(right).casefold()


def virtual_category_for(party_name: str, company_name: Optional[str] = None) -> Optional[str]:
    """
    Category name for a virtual party, or None for a real counterparty.

    >>> virtual_category_for("commission")
    'Commission'
    >>> virtual_category_for("Compton Traders") is None
    True
    """
    if company_name and normalize_name(company_name) and _same_name(party_name, company_name):
        return normalize_name(company_name)
    for category in (settings.commission_category, settings.comp_category):
        if _same_name(party_name, category):
            return category
    return None


def classify_new_entry(party_name: str, company_name: Optional[str] = None) -> Classification:
    category = virtual_category_for(party_name, company_name)
    if category is not None:
        return EntryKind.VIRTUAL_CATEGORY, category
    return EntryKind.ORDINARY, None


def settlement_remarks(settled_count: int, absorbed_markers: int) -> str:
    remarks = f"{SETTLEMENT_MARKER_TEXT} - {settled_count} transactions settled"
    if absorbed_markers:
        remarks += f" (including {absorbed_markers} previous Monday Final entries)"
    return remarks


def classify_legacy(
    party_name: str,
    remarks: Optional[str],
    company_name: Optional[str] = None,
    registered_names: Iterable[str] = (),
) -> Classification:
    """
    Classify a pre-existing row with the old substring rules.

    Rules, first match wins:
    1. remarks contain "Monday Final Settlement" -> settlement marker
    2. party name equals the company name -> company category
    3. party name or remarks contain "commission", or remarks contain
       "auto-calculated" -> Commission
    4. party name contains "comp" -> Comp

    Rules 3 and 4 never apply to a party that is registered in the party
    registry: a real counterparty called "Compton Traders" keeps its name.
    """
    name = normalize_name(party_name)
    lowered_name = name.casefold()
    lowered_remarks = (remarks or "").casefold()

    if SETTLEMENT_MARKER_TEXT.casefold() in lowered_remarks:
        return EntryKind.SETTLEMENT_MARKER, virtual_category_for(name, company_name)

    if company_name and _same_name(name, company_name):
        return EntryKind.VIRTUAL_CATEGORY, normalize_name(company_name)

    registered = {normalize_name(item).casefold() for item in registered_names}
    if lowered_name in registered:
        return classify_new_entry(name, company_name)

    commission = settings.commission_category
    if (
        commission.casefold() in lowered_name
        or commission.casefold() in lowered_remarks
        or LEGACY_AUTO_COMMISSION_TEXT in lowered_remarks
    ):
        return EntryKind.VIRTUAL_CATEGORY, commission

    if settings.comp_category.casefold() in lowered_name:
        return EntryKind.VIRTUAL_CATEGORY, settings.comp_category

    return EntryKind.ORDINARY, None

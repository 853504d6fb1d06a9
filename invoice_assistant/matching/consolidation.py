"""
Match Consolidator - folds invoice lines that matched the same PO line
into one line so each PO line is invoiced once.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from invoice_assistant.models.state import LineMatchStatus

logger = logging.getLogger(__name__)

CONSOLIDATED_SUFFIX = " (Consolidated)"


@dataclass
class ConsolidationOutcome:
    groups_consolidated: int = 0
    deleted: List[Any] = field(default_factory=list)

    @property
    def lines_deleted(self) -> int:
        return len(self.deleted)


def _add(a, b):
    if a is None and b is None:
        return None
    return (a or 0.0) + (b or 0.0)


def consolidate_lines(lines: Sequence[Any]) -> ConsolidationOutcome:
    """
    Group MATCHED lines by matched PO line. In each group with more than one
    member the lowest-numbered line survives and absorbs the quantity, net
    amount and tax amount of the others; the others are returned for deletion.
    """
    groups = OrderedDict()
    ordered = sorted(lines, key=lambda l: (l.line_number is None, l.line_number or 0))
    for line in ordered:
        if line.match_status == LineMatchStatus.MATCHED.value and line.matched_po_line_id:
            groups.setdefault(line.matched_po_line_id, []).append(line)

    outcome = ConsolidationOutcome()
    for po_line_id, members in groups.items():
        if len(members) < 2:
            continue
        survivor, others = members[0], members[1:]
        for other in others:
            survivor.quantity = _add(survivor.quantity, other.quantity)
            survivor.net_amount = _add(survivor.net_amount, other.net_amount)
            survivor.tax_amount = _add(survivor.tax_amount, other.tax_amount)
        description = survivor.description or ""
        if not description.endswith(CONSOLIDATED_SUFFIX):
            survivor.description = description + CONSOLIDATED_SUFFIX
        outcome.groups_consolidated += 1
        outcome.deleted.extend(others)
        logger.info(
            f"Consolidated {len(members)} lines onto PO line {po_line_id}: "
            f"qty={survivor.quantity}, amount={survivor.net_amount}"
        )
    return outcome

"""
Helpers for PO line matching: query texts, match-rate confidence and the
overall PO match status.
"""
from typing import Any

from invoice_assistant.models.state import MatchConfidence, POMatchStatus


def _join(*parts) -> str:
    return " ".join(str(p).strip() for p in parts if p and str(p).strip())


def invoice_line_text(line: Any) -> str:
    """Material number + description; empty when the line carries neither"""
    return _join(getattr(line, "material_number", None), getattr(line, "description", None))


def po_line_text(po_line: Any) -> str:
    return _join(getattr(po_line, "material", None), getattr(po_line, "material_name", None))


def po_item_text(item: dict) -> str:
    """Same text as po_line_text, for a mapped ERP item that is not stored yet"""
    return _join(item.get("material"), item.get("material_name"))


def match_rate_confidence(rate: float) -> MatchConfidence:
    if rate >= 0.9:
        return MatchConfidence.HIGH
    if rate >= 0.7:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


def po_match_status(matched: int, total: int) -> POMatchStatus:
    if total > 0 and matched == total:
        return POMatchStatus.MATCHED
    if matched > 0:
        return POMatchStatus.PARTIAL
    return POMatchStatus.NO_MATCH

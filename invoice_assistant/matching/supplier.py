"""
Supplier scoring: geographic boosting on top of name similarity, and the
confidence bands used to decide between auto-match, review and no-match.
"""
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from invoice_assistant.models.state import MatchConfidence, SupplierMatchStatus

CITY_BOOST = 0.05
STATE_BOOST = 0.03
ZIP_BOOST = 0.02

# (lower bound inclusive, confidence, status), highest first
CONFIDENCE_BANDS = [
    (0.95, MatchConfidence.HIGH, SupplierMatchStatus.MATCHED),
    (0.85, MatchConfidence.MEDIUM, SupplierMatchStatus.MATCHED),
    (0.70, MatchConfidence.LOW, SupplierMatchStatus.MANUAL_REVIEW),
]


@dataclass
class InvoiceLocation:
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass
class ScoredSupplier:
    supplier_number: str
    supplier_name: str
    original_score: float
    score: float
    boost_factors: List[str] = field(default_factory=list)
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    @property
    def boost_label(self) -> str:
        return "+".join(self.boost_factors) if self.boost_factors else "NONE"

    def to_dict(self) -> dict:
        return {
            "supplier_number": self.supplier_number,
            "supplier_name": self.supplier_name,
            "score": self.score,
            "original_score": self.original_score,
            "boost_factors": self.boost_label,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
        }


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    return bool(a) and a == b


def _zip5(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")[:5]


def geographic_boost(location: InvoiceLocation, supplier: Any) -> Tuple[float, List[str]]:
    """Cumulative boost and the factors that contributed"""
    boost = 0.0
    factors = []
    if _same_text(location.city, getattr(supplier, "city", None)):
        boost += CITY_BOOST
        factors.append("CITY")
    if _same_text(location.state, getattr(supplier, "state", None)):
        boost += STATE_BOOST
        factors.append("STATE")
    invoice_zip = _zip5(location.postal_code)
    if invoice_zip and invoice_zip == _zip5(getattr(supplier, "postal_code", None)):
        boost += ZIP_BOOST
        factors.append("ZIP")
    return boost, factors


def apply_boosts(location: InvoiceLocation, ranked: Sequence[Tuple[Any, float]]) -> List[ScoredSupplier]:
    """
    Boost each (supplier, raw score) pair and re-rank by the boosted score.

    The sort is stable so equal boosted scores keep the similarity order.
    Final scores are capped at 1.0.
    """
    scored = []
    for supplier, raw in ranked:
        boost, factors = geographic_boost(location, supplier)
        scored.append(ScoredSupplier(
            supplier_number=supplier.supplier_number,
            supplier_name=supplier.supplier_name,
            original_score=raw,
            score=min(1.0, raw + boost),
            boost_factors=factors,
            city=getattr(supplier, "city", None),
            state=getattr(supplier, "state", None),
            postal_code=getattr(supplier, "postal_code", None),
        ))
    return sorted(scored, key=lambda s: s.score, reverse=True)


def classify(score: float) -> Tuple[MatchConfidence, SupplierMatchStatus]:
    for lower, confidence, status in CONFIDENCE_BANDS:
        if score >= lower:
            return confidence, status
    return MatchConfidence.VERY_LOW, SupplierMatchStatus.NO_MATCH


def pad_supplier_number(value: str) -> str:
    return str(value).strip().zfill(10)

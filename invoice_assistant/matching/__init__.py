# Matching core: pure scoring, consolidation, validation and payload logic
from .supplier import InvoiceLocation, ScoredSupplier, apply_boosts, classify, geographic_boost
from .consolidation import consolidate_lines, ConsolidationOutcome
from .three_way import ThreeWayMatchEvaluator
from .validation import validate_invoice
from .payload import build_posting_payload

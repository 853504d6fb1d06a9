# Models package
from .state import (
    InvoiceStep, InvoiceStatus, ProcessResult, MatchConfidence,
    SupplierMatchStatus, SelectionType, LineMatchStatus, POMatchStatus,
    ThreeWayMatchStatus, Severity, ValidationStatus, ApprovalStatus, PostingStatus
)

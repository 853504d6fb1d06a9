"""
Lifecycle and match-status enumerations for invoice processing
"""
from enum import Enum


class InvoiceStep(str, Enum):
    RECEIVED = "RECEIVED"
    DOX_EXTRACTED = "DOX_EXTRACTED"
    SUPPLIER_MATCHED = "SUPPLIER_MATCHED"
    SUPPLIER_MATCH_FAILED = "SUPPLIER_MATCH_FAILED"
    SUPPLIER_ACCEPTED = "SUPPLIER_ACCEPTED"
    SUPPLIER_MANUAL = "SUPPLIER_MANUAL"
    SUPPLIER_NAME_UPDATED = "SUPPLIER_NAME_UPDATED"
    PO_MATCHED = "PO_MATCHED"
    PO_MATCH_SKIPPED = "PO_MATCH_SKIPPED"
    VALIDATED = "VALIDATED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    BPA_STARTED = "BPA_STARTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    POSTED = "POSTED"
    POST_FAILED = "POST_FAILED"


# POST_FAILED stays open so a failed posting can be retried
CLOSED_STEPS = {InvoiceStep.POSTED.value, InvoiceStep.REJECTED.value}


class InvoiceStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class ProcessResult(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILURE = "FAILURE"


class MatchConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    VERY_LOW = "VERY_LOW"
    NONE = "NONE"


class SupplierMatchStatus(str, Enum):
    MATCHED = "MATCHED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    NO_MATCH = "NO_MATCH"
    ACCEPTED = "ACCEPTED"
    MANUAL = "MANUAL"


class SelectionType(str, Enum):
    ACCEPT = "ACCEPT"
    MANUAL = "MANUAL"
    UPDATE_NAME = "UPDATE_NAME"


class LineMatchStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    NO_MATCH = "NO_MATCH"


class POMatchStatus(str, Enum):
    MATCHED = "MATCHED"
    PARTIAL = "PARTIAL"
    NO_MATCH = "NO_MATCH"
    NO_PO = "NO_PO"
    NO_ITEMS = "NO_ITEMS"


class ThreeWayMatchStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    NOT_REQUIRED = "NOT_REQUIRED"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class ValidationStatus(str, Enum):
    VALID = "VALID"
    VALID_WITH_WARNINGS = "VALID_WITH_WARNINGS"
    INVALID = "INVALID"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PostingStatus(str, Enum):
    POSTED = "POSTED"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"

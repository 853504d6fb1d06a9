"""
Pydantic schemas for API requests/responses
"""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any


# ============================================================================
# Extraction intake
# ============================================================================

class ExtractedLineItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    line_number: Optional[int] = None
    description: Optional[str] = None
    material_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("material_number", "materialNumber", "material")
    )
    quantity: Optional[float] = None
    unit_of_measure: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("unit_of_measure", "unitOfMeasure", "unit", "uom")
    )
    unit_price: Optional[float] = None
    net_amount: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("net_amount", "netAmount", "amount")
    )
    tax_amount: Optional[float] = None
    tax_code: Optional[str] = None


class ExtractionRecord(BaseModel):
    """Header fields and line items produced by document extraction (snake_case or camelCase keys)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    file_name: Optional[str] = None
    dox_job_id: Optional[str] = None
    confidence: Optional[float] = None
    correlation_id: Optional[str] = None
    source_system: Optional[str] = None
    document_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("document_number", "documentNumber", "invoiceNumber")
    )
    document_date: Optional[str] = None
    due_date: Optional[str] = None
    currency_code: Optional[str] = None
    gross_amount: Optional[float] = None
    net_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    tax_rate: Optional[float] = None
    payment_terms: Optional[str] = None
    sender_name: Optional[str] = None
    sender_address: Optional[str] = None
    sender_city: Optional[str] = None
    sender_state: Optional[str] = None
    sender_postal_code: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_address: Optional[str] = None
    receiver_city: Optional[str] = None
    receiver_state: Optional[str] = None
    receiver_postal_code: Optional[str] = None
    purchase_order_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("purchase_order_number", "purchaseOrderNumber", "poNumber"),
    )
    company_code: Optional[str] = None
    line_items: List[ExtractedLineItem] = Field(
        default_factory=list, validation_alias=AliasChoices("line_items", "lineItems", "items")
    )


class CreateInvoiceRequest(BaseModel):
    # Either a JSON string or an already-parsed object
    extraction: Any
    file_name: Optional[str] = None
    dox_job_id: Optional[str] = None
    extraction_confidence: Optional[float] = None
    correlation_id: Optional[str] = None
    source_system: str = "DOX"


class CreateInvoiceResponse(BaseModel):
    invoice_id: str
    line_count: int
    step: str
    status: str
    message: str


# ============================================================================
# Supplier resolution
# ============================================================================

class SupplierAlternative(BaseModel):
    supplier_number: str
    supplier_name: str
    score: float
    original_score: float
    boost_factors: str
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


class SupplierResolution(BaseModel):
    supplier_number: Optional[str] = None
    supplier_name: Optional[str] = None
    score: float = 0.0
    original_score: float = 0.0
    confidence: str
    status: str
    boost_factors: str = "NONE"
    alternatives: List[SupplierAlternative] = []
    requires_review: bool = False
    message: str


class SupplierSelectionRequest(BaseModel):
    selection_type: str
    supplier_number: Optional[str] = None
    updated_name: Optional[str] = None
    user: str = "SYSTEM"


class ValidateSupplierNumberRequest(BaseModel):
    supplier_number: Optional[str] = None


class SupplierNumberCheck(BaseModel):
    valid: bool
    supplier_exists: bool
    supplier_number: Optional[str] = None
    supplier_name: Optional[str] = None
    is_active: bool = False
    message: str


class SupplierSyncRequest(BaseModel):
    mode: str = "delta"
    since: Optional[str] = None


class SupplierSyncResult(BaseModel):
    total_synced: int
    failed: int
    embeddings_refreshed: int
    duration_ms: int


class EmbeddingRefreshResult(BaseModel):
    refreshed: bool
    count: int
    message: str


# ============================================================================
# PO matching
# ============================================================================

class MatchPOLinesRequest(BaseModel):
    po_number: Optional[str] = None
    fetch_from_source: bool = True


class LineMatchDetail(BaseModel):
    invoice_line_id: str
    line_number: Optional[int] = None
    description: Optional[str] = None
    po_line_id: Optional[str] = None
    purchase_order_item: Optional[str] = None
    score: float = 0.0
    status: str


class POMatchResult(BaseModel):
    total_lines: int
    matched_items: int
    unmatched_items: int
    three_way_match_required: bool = False
    three_way_match_passed: bool = True
    confidence: str
    status: str
    message: str
    matches: List[LineMatchDetail] = []


class ConsolidationResult(BaseModel):
    groups_consolidated: int
    lines_deleted: int


class SyncPORequest(BaseModel):
    po_number: Optional[str] = None


class POSyncResult(BaseModel):
    items_synced: int
    gr_records_synced: int


class POItemsRequest(BaseModel):
    """Raw ERP purchase order item records, mapped with the adapter for system_kind"""
    items: List[Dict[str, Any]]
    system_kind: Optional[str] = None


class POItemsUpsertResult(BaseModel):
    upserted: int
    skipped: int


class GoodsReceiptRecord(BaseModel):
    purchase_order: str
    purchase_order_item: str
    quantity: float
    material_document: Optional[str] = None
    posting_date: Optional[str] = None


class GoodsReceiptsRequest(BaseModel):
    receipts: List[GoodsReceiptRecord]


class GoodsReceiptResult(BaseModel):
    applied: int
    skipped: int


# ============================================================================
# Validation
# ============================================================================

class ValidationIssue(BaseModel):
    field: str
    message: str
    severity: str
    code: str


class CategoryResult(BaseModel):
    passed: bool = True
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []


class ValidationResponse(BaseModel):
    is_valid: bool
    status: str
    message: str
    error_count: int
    warning_count: int
    supplier: CategoryResult
    amount: CategoryResult
    po: CategoryResult
    three_way_match: CategoryResult
    all_errors: List[ValidationIssue] = []


# ============================================================================
# Approval and posting
# ============================================================================

class ApprovalRequest(BaseModel):
    approved: bool
    approver: str
    comments: Optional[str] = None


class ApprovalResponse(BaseModel):
    invoice_id: str
    step: str
    status: str
    message: str


class PostRequest(BaseModel):
    posting_type: str = "SUPPLIER_INVOICE"


class PostingResponse(BaseModel):
    success: bool
    status: str
    accounting_document: Optional[str] = None
    fiscal_year: Optional[str] = None
    message: str
    erp_response: Optional[str] = None


class PostingResultRecord(BaseModel):
    invoice_id: Optional[str] = None
    success: bool
    accounting_document: Optional[str] = None
    fiscal_year: Optional[str] = None
    message: Optional[str] = None
    return_type: Optional[str] = None


class PostingResultResponse(BaseModel):
    invoice_id: str
    step: str
    status: str


# ============================================================================
# Status
# ============================================================================

class InvoiceStatusResponse(BaseModel):
    invoice_id: str
    step: str
    status: str
    result: Optional[str] = None
    message: Optional[str] = None
    supplier_matched: bool
    po_matched: bool
    approved: bool
    posted: bool
    last_error: Optional[str] = None


class WorkflowContext(BaseModel):
    """Snapshot handed to the approval workflow when it starts"""
    invoice_id: str
    step: str
    status: str
    file_name: Optional[str] = None
    document_number: Optional[str] = None
    document_date: Optional[str] = None
    currency_code: Optional[str] = None
    gross_amount: Optional[float] = None
    net_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    sender_name: Optional[str] = None
    sender_address: Optional[str] = None
    sender_city: Optional[str] = None
    sender_state: Optional[str] = None
    sender_postal_code: Optional[str] = None
    purchase_order_number: Optional[str] = None
    matched_supplier_number: Optional[str] = None
    matched_supplier_name: Optional[str] = None
    line_count: int = 0


class ProcessLogItem(BaseModel):
    step: str
    status: Optional[str] = None
    result: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    modified_by: Optional[str] = None
    timestamp: str

"""
FastAPI Routes for the Invoice Assistant API

One endpoint per operation; the workflow orchestrator calls them in order
and keeps nothing but the invoice id.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from invoice_assistant.models.schemas import (
    ApprovalRequest, ApprovalResponse, ConsolidationResult, CreateInvoiceRequest,
    CreateInvoiceResponse, EmbeddingRefreshResult, GoodsReceiptResult, GoodsReceiptsRequest,
    InvoiceStatusResponse, MatchPOLinesRequest, POItemsRequest, POItemsUpsertResult, POMatchResult,
    POSyncResult, PostingResponse, PostingResultRecord, PostingResultResponse, PostRequest,
    ProcessLogItem, SupplierAlternative, SupplierNumberCheck, SupplierResolution,
    SupplierSelectionRequest, SupplierSyncRequest, SupplierSyncResult, SyncPORequest,
    ValidateSupplierNumberRequest, ValidationResponse, WorkflowContext
)
from invoice_assistant.service import InvoiceAssistant, get_assistant

logger = logging.getLogger(__name__)
router = APIRouter()


# ============================================================================
# Intake and status
# ============================================================================

@router.post("/invoices", response_model=CreateInvoiceResponse)
async def create_invoice(request: CreateInvoiceRequest, assistant: InvoiceAssistant = Depends(get_assistant)):
    """
    Create an invoice from a document extraction record

    The extraction may be sent as a JSON string or as an object.
    """
    return assistant.create_invoice(request)


@router.get("/invoices/{invoice_id}/status", response_model=InvoiceStatusResponse)
async def get_invoice_status(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    return assistant.get_invoice_status(invoice_id)


@router.get("/invoices/{invoice_id}/process-log", response_model=List[ProcessLogItem])
async def get_process_log(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    """Audit trail for one invoice, oldest first"""
    return assistant.get_process_log(invoice_id)


# ============================================================================
# Supplier
# ============================================================================

@router.post("/invoices/{invoice_id}/supplier/resolve", response_model=SupplierResolution)
async def resolve_supplier(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    """
    Resolve the invoice vendor against the supplier master

    Uses embedding similarity plus city/state/postal code boosts.
    """
    return await assistant.resolve_supplier(invoice_id)


@router.get("/invoices/{invoice_id}/supplier/candidates", response_model=List[SupplierAlternative])
async def supplier_candidates(
    invoice_id: str,
    limit: int = Query(5, ge=1, le=50),
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return await assistant.supplier_candidates(invoice_id, limit)


@router.post("/invoices/{invoice_id}/supplier/selection", response_model=SupplierResolution)
async def process_supplier_selection(
    invoice_id: str,
    request: SupplierSelectionRequest,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    """
    Manual override: ACCEPT the current match, choose a MANUAL supplier
    number, or UPDATE_NAME and re-run resolution
    """
    return await assistant.process_supplier_selection(invoice_id, request)


@router.post("/suppliers/validate", response_model=SupplierNumberCheck)
async def validate_supplier_number(
    request: ValidateSupplierNumberRequest,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return assistant.validate_supplier_number(request.supplier_number)


@router.post("/suppliers/sync", response_model=SupplierSyncResult)
async def sync_supplier_master(request: SupplierSyncRequest, assistant: InvoiceAssistant = Depends(get_assistant)):
    """Pull the supplier master from the ERP (delta or full) and refresh embeddings"""
    return await assistant.sync_supplier_master(request.mode, request.since)


@router.post("/suppliers/embeddings/refresh", response_model=EmbeddingRefreshResult)
async def refresh_supplier_embeddings(
    force: bool = Query(False),
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return await assistant.refresh_supplier_embeddings(force)


# ============================================================================
# Purchase order matching
# ============================================================================

@router.post("/invoices/{invoice_id}/po/match", response_model=POMatchResult)
async def match_po_lines(
    invoice_id: str,
    request: MatchPOLinesRequest = None,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    """
    Match invoice lines to PO lines, consolidate duplicates and evaluate
    the three-way match
    """
    request = request or MatchPOLinesRequest()
    return await assistant.match_po_lines(invoice_id, request.po_number, request.fetch_from_source)


@router.post("/invoices/{invoice_id}/po/consolidate", response_model=ConsolidationResult)
async def consolidate_matches(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    return assistant.consolidate_matches(invoice_id)


@router.post("/invoices/{invoice_id}/po/sync", response_model=POSyncResult)
async def sync_po_from_source(
    invoice_id: str,
    request: SyncPORequest = None,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    request = request or SyncPORequest()
    return await assistant.sync_po_from_source(invoice_id, request.po_number)


@router.post("/invoices/{invoice_id}/po/goods-receipts", response_model=GoodsReceiptResult)
async def upsert_goods_receipts(
    invoice_id: str,
    request: GoodsReceiptsRequest,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return assistant.upsert_goods_receipts(invoice_id, [r.model_dump() for r in request.receipts])


@router.post("/invoices/{invoice_id}/po/items", response_model=POItemsUpsertResult)
async def upsert_po_items(
    invoice_id: str,
    request: POItemsRequest,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    """Cache raw ERP purchase order items against the invoice"""
    return await assistant.upsert_po_items(invoice_id, request.items, request.system_kind)


@router.post("/po/embeddings/refresh", response_model=EmbeddingRefreshResult)
async def refresh_po_embeddings(
    invoice_id: Optional[str] = Query(None),
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return await assistant.refresh_po_embeddings(invoice_id)


# ============================================================================
# Validation, approval and posting
# ============================================================================

@router.post("/invoices/{invoice_id}/validate", response_model=ValidationResponse)
async def validate_invoice(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    return assistant.validate_invoice(invoice_id)


@router.post("/invoices/{invoice_id}/workflow/init", response_model=WorkflowContext)
async def initialize_workflow(invoice_id: str, assistant: InvoiceAssistant = Depends(get_assistant)):
    return assistant.initialize_workflow(invoice_id)


@router.post("/invoices/{invoice_id}/approval", response_model=ApprovalResponse)
async def record_approval(
    invoice_id: str,
    request: ApprovalRequest,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    return assistant.record_approval(invoice_id, request)


@router.post("/invoices/{invoice_id}/post", response_model=PostingResponse)
async def post_to_erp(
    invoice_id: str,
    request: PostRequest = None,
    assistant: InvoiceAssistant = Depends(get_assistant),
):
    """
    Post the reconciled invoice to the ERP

    Only MATCHED lines with a resolvable PO line are included.
    """
    request = request or PostRequest()
    return await assistant.post_to_erp(invoice_id, request.posting_type)


@router.post("/posting-results", response_model=PostingResultResponse)
async def record_posting_result(record: PostingResultRecord, assistant: InvoiceAssistant = Depends(get_assistant)):
    return assistant.record_posting_result(record)

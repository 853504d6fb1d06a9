"""
InvoiceAssistant - wires configuration, storage, the similarity oracle and
the ERP client into the invoice operations.
"""
import logging
from typing import Any, Dict, List, Optional

from invoice_assistant.config import Settings, get_settings
from invoice_assistant.database import Database
from invoice_assistant.erp import ErpClient
from invoice_assistant.models.schemas import (
    ApprovalRequest, CreateInvoiceRequest, PostingResultRecord, SupplierSelectionRequest
)
from invoice_assistant.similarity import SimilarityOracle, get_embedder
from invoice_assistant.steps import (
    ErpPoster, POLineMatcher, SupplierMasterSync, SupplierResolver,
    create_invoice_from_extraction, get_invoice_status, get_process_log, initialize_workflow,
    record_approval, record_posting_result, validate_invoice_step
)

logger = logging.getLogger(__name__)


class InvoiceAssistant:
    """One entry point per operation; components receive their dependencies here"""

    def __init__(
        self,
        settings: Settings = None,
        db: Database = None,
        oracle: SimilarityOracle = None,
        erp: ErpClient = None,
    ):
        self.settings = settings or get_settings()
        self.db = db or Database(self.settings.database_url)
        self.oracle = oracle or SimilarityOracle(get_embedder(self.settings))
        self.erp = erp or ErpClient(self.settings)

        self.suppliers = SupplierResolver(self.db, self.settings, self.oracle)
        self.supplier_sync = SupplierMasterSync(self.db, self.settings, self.oracle, self.erp)
        self.po_matcher = POLineMatcher(self.db, self.settings, self.oracle, self.erp)
        self.poster = ErpPoster(self.db, self.settings, self.erp)

    # Intake
    def create_invoice(self, request: CreateInvoiceRequest):
        return create_invoice_from_extraction(self.db, self.settings, request)

    # Supplier
    async def resolve_supplier(self, invoice_id: str):
        return await self.suppliers.resolve(invoice_id)

    async def supplier_candidates(self, invoice_id: str, limit: int = 5):
        return await self.suppliers.candidates(invoice_id, limit)

    async def process_supplier_selection(self, invoice_id: str, request: SupplierSelectionRequest):
        return await self.suppliers.process_selection(invoice_id, request)

    def validate_supplier_number(self, supplier_number: Optional[str]):
        return self.suppliers.validate_supplier_number(supplier_number)

    async def sync_supplier_master(self, mode: str = "delta", since: Optional[str] = None):
        return await self.supplier_sync.sync(mode, since)

    async def refresh_supplier_embeddings(self, force: bool = False):
        return await self.supplier_sync.refresh_embeddings(force)

    # PO
    async def match_po_lines(self, invoice_id: str, po_number: Optional[str] = None, fetch_from_source: bool = True):
        return await self.po_matcher.match_lines(invoice_id, po_number, fetch_from_source)

    def consolidate_matches(self, invoice_id: str):
        return self.po_matcher.consolidate(invoice_id)

    async def sync_po_from_source(self, invoice_id: str, po_number: Optional[str] = None):
        return await self.po_matcher.sync_from_source(invoice_id, po_number)

    def upsert_goods_receipts(self, invoice_id: str, receipts: List[Any]):
        return self.po_matcher.upsert_goods_receipts(invoice_id, receipts)

    async def upsert_po_items(self, invoice_id: str, items: List[Dict[str, Any]], system_kind: Optional[str] = None):
        return await self.po_matcher.upsert_po_items(invoice_id, items, system_kind)

    async def refresh_po_embeddings(self, invoice_id: Optional[str] = None):
        return await self.po_matcher.refresh_po_embeddings(invoice_id)

    # Validation, approval, posting
    def validate_invoice(self, invoice_id: str):
        return validate_invoice_step(self.db, invoice_id)

    def initialize_workflow(self, invoice_id: str):
        return initialize_workflow(self.db, invoice_id)

    def record_approval(self, invoice_id: str, request: ApprovalRequest):
        return record_approval(self.db, invoice_id, request)

    async def post_to_erp(self, invoice_id: str, posting_type: str = "SUPPLIER_INVOICE"):
        return await self.poster.post(invoice_id, posting_type)

    def record_posting_result(self, record: PostingResultRecord):
        return record_posting_result(self.db, record)

    # Status
    def get_invoice_status(self, invoice_id: str):
        return get_invoice_status(self.db, invoice_id)

    def get_process_log(self, invoice_id: str):
        return get_process_log(self.db, invoice_id)


# Global assistant instance
_assistant: Optional[InvoiceAssistant] = None


def get_assistant() -> InvoiceAssistant:
    """Get or create the assistant instance"""
    global _assistant
    if _assistant is None:
        from invoice_assistant.database import get_db
        _assistant = InvoiceAssistant(db=get_db())
    return _assistant

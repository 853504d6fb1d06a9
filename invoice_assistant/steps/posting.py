"""
ERP_POST - build the supplier invoice payload and post it to the ERP
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, InvoiceModel, log_process
from invoice_assistant.erp import ErpClient
from invoice_assistant.errors import DownstreamError, ErpError, InputError, NotFoundError
from invoice_assistant.matching.payload import build_posting_payload
from invoice_assistant.models.schemas import PostingResponse, PostingResultRecord, PostingResultResponse
from invoice_assistant.models.state import (
    CLOSED_STEPS, InvoiceStatus, InvoiceStep, PostingStatus, ProcessResult, ThreeWayMatchStatus
)
from .base import load_invoice

logger = logging.getLogger(__name__)

LOG_STEP = "ERP_POST"
POSTING_TYPES = ("SUPPLIER_INVOICE",)


def apply_posting_result(
    session: Session,
    invoice: InvoiceModel,
    success: bool,
    message: str,
    accounting_document: Optional[str] = None,
    fiscal_year: Optional[str] = None,
    doc_type: Optional[str] = None,
    return_type: Optional[str] = None,
    message_class: Optional[str] = None,
    modified_by: str = "SYSTEM",
) -> None:
    """POSTED or POST_FAILED transition shared by direct and externally reported postings"""
    invoice.erp_return_type = return_type or ("S" if success else "E")
    invoice.erp_return_message = message
    invoice.erp_message_class = message_class or ""

    if success:
        invoice.accounting_document = accounting_document
        invoice.fiscal_year = fiscal_year
        invoice.accounting_doc_type = doc_type
        invoice.step = InvoiceStep.POSTED.value
        invoice.status = InvoiceStatus.COMPLETED.value
        invoice.result = ProcessResult.SUCCESS.value
        invoice.message = f"Posted successfully: {accounting_document}"
        log_process(
            session, invoice.id, LOG_STEP, PostingStatus.POSTED, ProcessResult.SUCCESS,
            f"Document {accounting_document} posted successfully",
            {"accounting_document": accounting_document, "fiscal_year": fiscal_year},
            modified_by=modified_by,
        )
        logger.info(f"Invoice {invoice.id} posted: {accounting_document}/{fiscal_year}")
        return

    invoice.step = InvoiceStep.POST_FAILED.value
    invoice.status = InvoiceStatus.ERROR.value
    invoice.result = ProcessResult.FAILURE.value
    invoice.posting_retry_count = (invoice.posting_retry_count or 0) + 1
    invoice.last_error = message
    invoice.last_error_at = datetime.utcnow()
    invoice.message = f"Posting failed: {message}"
    log_process(
        session, invoice.id, LOG_STEP, PostingStatus.FAILED, ProcessResult.FAILURE,
        f"Posting failed: {message}",
        {"return_type": invoice.erp_return_type, "retry_count": invoice.posting_retry_count},
        modified_by=modified_by,
    )
    logger.error(f"Invoice {invoice.id} posting failed: {message}")


class ErpPoster:
    def __init__(self, db: Database, settings: Settings, erp: ErpClient):
        self.db = db
        self.settings = settings
        self.erp = erp

    def _prepare(self, invoice_id: str) -> Dict[str, Any]:
        """Checks preconditions and returns the payload, or None when the policy blocks posting"""
        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            if invoice.step in CLOSED_STEPS:
                raise InputError(f"Invoice is {invoice.step} and cannot be posted")
            if not invoice.matched_supplier_number:
                raise InputError("Invoice supplier not matched")
            if not invoice.net_amount or invoice.net_amount <= 0:
                raise InputError("Invalid invoice amount")

            if (self.settings.blocks_on_three_way_failure
                    and invoice.three_way_match_required
                    and invoice.three_way_match_status == ThreeWayMatchStatus.FAILED.value):
                message = "Posting blocked: 3-way match failed"
                invoice.status = InvoiceStatus.MANUAL_REVIEW.value
                invoice.message = message
                log_process(session, invoice.id, LOG_STEP, PostingStatus.BLOCKED, ProcessResult.FAILURE, message)
                logger.warning(f"Invoice {invoice_id}: {message}")
                return None

            logger.info(
                f"Posting invoice: supplier {invoice.matched_supplier_number}, "
                f"amount {invoice.net_amount} {invoice.currency_code}"
            )
            return build_posting_payload(
                invoice,
                invoice.lines,
                {p.id: p for p in invoice.po_lines},
                default_tax_code=self.settings.default_tax_code,
            )

    async def post(self, invoice_id: str, posting_type: str = "SUPPLIER_INVOICE") -> PostingResponse:
        logger.info("=" * 50)
        logger.info(f"STEP: ERP_POST - Posting invoice {invoice_id} ({posting_type})")
        logger.info("=" * 50)

        if posting_type not in POSTING_TYPES:
            raise InputError(f"Unsupported posting type: {posting_type}")

        payload = self._prepare(invoice_id)
        if payload is None:
            return PostingResponse(
                success=False,
                status=PostingStatus.BLOCKED.value,
                message="Posting blocked: 3-way match failed",
            )
        logger.info(f"Payload built with {len(payload['items'])} item(s)")

        try:
            response = await self.erp.post_supplier_invoice(payload)
        except ErpError as e:
            with self.db.get_session() as session:
                invoice = load_invoice(session, invoice_id)
                apply_posting_result(session, invoice, False, e.message)
            raise DownstreamError(f"Failed to post invoice: {e.message}") from e

        success = response.get("return_type") == "S"
        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            apply_posting_result(
                session, invoice, success, response.get("message") or "",
                accounting_document=response.get("accounting_document"),
                fiscal_year=response.get("fiscal_year"),
                doc_type=response.get("doc_type"),
                return_type=response.get("return_type"),
                message_class=response.get("message_class"),
            )

        if not success:
            raise DownstreamError(f"ERP posting failed: {response.get('message')}")

        return PostingResponse(
            success=True,
            status=PostingStatus.POSTED.value,
            accounting_document=response.get("accounting_document"),
            fiscal_year=response.get("fiscal_year"),
            message=response.get("message") or "",
            erp_response=json.dumps(response),
        )


def record_posting_result(db: Database, record: PostingResultRecord) -> PostingResultResponse:
    """Apply a posting outcome reported by an external caller"""
    logger.info(f"Recording posting result for invoice {record.invoice_id}: success={record.success}")
    if not record.invoice_id:
        raise InputError("invoice_id is required")

    with db.get_session() as session:
        try:
            invoice = load_invoice(session, record.invoice_id)
        except NotFoundError as e:
            raise InputError(e.message) from e
        apply_posting_result(
            session, invoice, record.success,
            record.message or ("Posted externally" if record.success else "Posting failed"),
            accounting_document=record.accounting_document,
            fiscal_year=record.fiscal_year,
            return_type=record.return_type,
        )
        return PostingResultResponse(invoice_id=invoice.id, step=invoice.step, status=invoice.status)

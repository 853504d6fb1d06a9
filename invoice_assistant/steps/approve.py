"""
APPROVAL - start the approval workflow and record the approver's decision
"""
import logging
from datetime import datetime

from invoice_assistant.database import Database, log_process
from invoice_assistant.errors import InputError
from invoice_assistant.models.schemas import ApprovalRequest, ApprovalResponse, WorkflowContext
from invoice_assistant.models.state import ApprovalStatus, InvoiceStatus, InvoiceStep, ProcessResult
from .base import load_invoice

logger = logging.getLogger(__name__)


def record_approval(db: Database, invoice_id: str, request: ApprovalRequest) -> ApprovalResponse:
    logger.info("=" * 50)
    logger.info(f"STEP: APPROVAL - Recording decision for invoice {invoice_id}")
    logger.info("=" * 50)

    if not request.approver or not request.approver.strip():
        raise InputError("approver is required")

    with db.get_session() as session:
        invoice = load_invoice(session, invoice_id)
        approver = request.approver.strip()

        invoice.approved_by = approver
        invoice.approved_at = datetime.utcnow()
        if request.approved:
            invoice.approval_status = ApprovalStatus.APPROVED.value
            invoice.step = InvoiceStep.APPROVED.value
            invoice.status = InvoiceStatus.COMPLETED.value
            invoice.result = ProcessResult.SUCCESS.value
            invoice.message = f"Approved by {approver}"
        else:
            reason = request.comments or "Rejected by approver"
            invoice.approval_status = ApprovalStatus.REJECTED.value
            invoice.step = InvoiceStep.REJECTED.value
            invoice.status = InvoiceStatus.ERROR.value
            invoice.result = ProcessResult.FAILURE.value
            invoice.rejection_reason = reason
            invoice.message = f"Rejected by {approver}: {reason}"

        log_process(
            session, invoice.id, "APPROVAL", invoice.approval_status, invoice.result,
            request.comments or invoice.message,
            {"approver": approver, "approved": request.approved},
            modified_by=approver,
        )
        logger.info(f"Invoice {invoice_id}: {invoice.message}")

        return ApprovalResponse(
            invoice_id=invoice.id,
            step=invoice.step,
            status=invoice.status,
            message=invoice.message,
        )


def initialize_workflow(db: Database, invoice_id: str) -> WorkflowContext:
    """Mark the invoice as handed to the approval workflow and return the context it starts from"""
    logger.info("=" * 50)
    logger.info(f"STEP: BPA_INIT - Starting approval workflow for invoice {invoice_id}")
    logger.info("=" * 50)

    with db.get_session() as session:
        invoice = load_invoice(session, invoice_id)
        invoice.step = InvoiceStep.BPA_STARTED.value
        invoice.status = InvoiceStatus.IN_PROGRESS.value
        invoice.message = "Approval workflow initiated"
        log_process(session, invoice.id, "BPA_INIT", "STARTED", ProcessResult.SUCCESS, invoice.message)

        return WorkflowContext(
            invoice_id=invoice.id,
            step=invoice.step,
            status=invoice.status,
            file_name=invoice.file_name,
            document_number=invoice.document_number,
            document_date=invoice.document_date.isoformat() if invoice.document_date else None,
            currency_code=invoice.currency_code,
            gross_amount=invoice.gross_amount,
            net_amount=invoice.net_amount,
            tax_amount=invoice.tax_amount,
            sender_name=invoice.sender_name,
            sender_address=invoice.sender_address,
            sender_city=invoice.sender_city,
            sender_state=invoice.sender_state,
            sender_postal_code=invoice.sender_postal_code,
            purchase_order_number=invoice.purchase_order_number,
            matched_supplier_number=invoice.matched_supplier_number,
            matched_supplier_name=invoice.matched_supplier_name,
            line_count=len(invoice.lines),
        )

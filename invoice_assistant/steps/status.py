"""
Read-only invoice snapshots
"""
from typing import List

from invoice_assistant.database import Database, ProcessLogModel
from invoice_assistant.models.schemas import InvoiceStatusResponse, ProcessLogItem
from invoice_assistant.models.state import ApprovalStatus, InvoiceStep, POMatchStatus
from .base import load_invoice


def get_invoice_status(db: Database, invoice_id: str) -> InvoiceStatusResponse:
    with db.get_session() as session:
        invoice = load_invoice(session, invoice_id)
        return InvoiceStatusResponse(
            invoice_id=invoice.id,
            step=invoice.step,
            status=invoice.status,
            result=invoice.result,
            message=invoice.message,
            supplier_matched=bool(invoice.matched_supplier_number),
            po_matched=invoice.po_match_status in (POMatchStatus.MATCHED.value, POMatchStatus.PARTIAL.value),
            approved=invoice.approval_status == ApprovalStatus.APPROVED.value,
            posted=invoice.step == InvoiceStep.POSTED.value,
            last_error=invoice.last_error,
        )


def get_process_log(db: Database, invoice_id: str) -> List[ProcessLogItem]:
    with db.get_session() as session:
        load_invoice(session, invoice_id)
        entries = session.query(ProcessLogModel).filter(
            ProcessLogModel.invoice_id == invoice_id
        ).order_by(ProcessLogModel.timestamp, ProcessLogModel.id).all()
        return [
            ProcessLogItem(
                step=e.step,
                status=e.status,
                result=e.result,
                message=e.message,
                details=e.details or {},
                modified_by=e.modified_by,
                timestamp=e.timestamp.isoformat() if e.timestamp else "",
            )
            for e in entries
        ]

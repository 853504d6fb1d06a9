"""
VALIDATE - run the invoice validator and record the verdict
"""
import logging

from invoice_assistant.database import Database, log_process
from invoice_assistant.matching.validation import validate_invoice
from invoice_assistant.models.schemas import ValidationResponse
from invoice_assistant.models.state import InvoiceStatus, InvoiceStep, ProcessResult
from .base import load_invoice

logger = logging.getLogger(__name__)


def validate_invoice_step(db: Database, invoice_id: str) -> ValidationResponse:
    """
    Validates supplier, amounts, PO matching and the three-way match.

    Only the invoice step, status and message are written, plus one audit
    entry, so repeating the call yields the same verdict.
    """
    logger.info("=" * 50)
    logger.info(f"STEP: VALIDATE - Validating invoice {invoice_id}")
    logger.info("=" * 50)

    with db.get_session() as session:
        invoice = load_invoice(session, invoice_id)
        result = validate_invoice(invoice, invoice.lines)

        invoice.step = (InvoiceStep.VALIDATED if result.is_valid else InvoiceStep.VALIDATION_FAILED).value
        invoice.status = (InvoiceStatus.IN_PROGRESS if result.is_valid else InvoiceStatus.ERROR).value
        invoice.message = result.message

        log_process(
            session, invoice.id, "VALIDATE",
            "PASSED" if result.is_valid else "FAILED",
            ProcessResult.SUCCESS if result.is_valid else ProcessResult.FAILURE,
            result.message,
            {
                "error_count": result.error_count,
                "warning_count": result.warning_count,
                "errors": [e.model_dump() for e in result.all_errors],
            },
        )

    logger.info(
        f"Validation for invoice {invoice_id}: {result.status} "
        f"({result.error_count} errors, {result.warning_count} warnings)"
    )
    return result

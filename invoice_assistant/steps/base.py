"""
Shared helpers for invoice operations
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from invoice_assistant.database import Database, InvoiceModel, mark_error
from invoice_assistant.errors import InputError, NotFoundError

logger = logging.getLogger(__name__)


def load_invoice(session: Session, invoice_id: str) -> InvoiceModel:
    if not invoice_id:
        raise InputError("invoice_id is required")
    invoice = session.get(InvoiceModel, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def record_failure(
    db: Database,
    invoice_id: str,
    step,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    **fields,
) -> None:
    """
    Persist a downstream failure in its own unit of work, after the failed
    operation's changes have been rolled back. Extra keyword fields are set
    on the invoice as-is.
    """
    logger.error(f"Invoice {invoice_id} [{getattr(step, 'value', step)}] failed: {message}")
    with db.get_session() as session:
        invoice = session.get(InvoiceModel, invoice_id)
        if invoice is None:
            return
        for key, value in fields.items():
            setattr(invoice, key, value)
        mark_error(session, invoice, step, message, details)

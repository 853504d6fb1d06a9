"""
Append-only process log (audit trail) helpers
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from .models import InvoiceModel, ProcessLogModel

logger = logging.getLogger(__name__)


def _value(v):
    return getattr(v, "value", v)


def log_process(
    session: Session,
    invoice_id: str,
    step,
    status=None,
    result=None,
    message: str = None,
    details: Optional[Dict[str, Any]] = None,
    modified_by: str = "SYSTEM",
) -> ProcessLogModel:
    entry = ProcessLogModel(
        invoice_id=invoice_id,
        step=_value(step),
        status=_value(status),
        result=_value(result),
        message=message,
        details=details or {},
        modified_by=modified_by,
        timestamp=datetime.utcnow(),
    )
    session.add(entry)
    logger.debug(f"Process log [{entry.step}] {invoice_id}: {message}")
    return entry


def mark_error(
    session: Session,
    invoice: InvoiceModel,
    step,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a downstream failure without moving the invoice step backward"""
    invoice.status = "ERROR"
    invoice.result = "FAILURE"
    invoice.last_error = message
    invoice.last_error_at = datetime.utcnow()
    invoice.message = message
    log_process(session, invoice.id, step, "ERROR", "FAILURE", message, details)

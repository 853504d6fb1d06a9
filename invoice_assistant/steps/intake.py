"""
Intake - create an invoice (header + lines) from a document extraction record
"""
import json
import logging
from typing import Any
from pydantic import ValidationError

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, InvoiceLineModel, InvoiceModel, log_process
from invoice_assistant.database.models import new_id
from invoice_assistant.erp.adapters import parse_date
from invoice_assistant.errors import InputError
from invoice_assistant.models.schemas import CreateInvoiceRequest, CreateInvoiceResponse, ExtractionRecord
from invoice_assistant.models.state import InvoiceStatus, InvoiceStep, LineMatchStatus, ProcessResult

logger = logging.getLogger(__name__)


def parse_extraction(raw: Any) -> ExtractionRecord:
    """Accept the extraction as a JSON string or an already-decoded object"""
    if raw is None or raw == "":
        raise InputError("extraction data is required")
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InputError(f"Invalid JSON data provided: {e.msg}") from e
    if not isinstance(raw, dict):
        raise InputError("Invalid JSON data provided: expected an object")
    try:
        return ExtractionRecord.model_validate(raw)
    except ValidationError as e:
        raise InputError(f"Invalid extraction record: {e.errors()[0]['msg']}") from e


def create_invoice_from_extraction(
    db: Database,
    settings: Settings,
    request: CreateInvoiceRequest,
) -> CreateInvoiceResponse:
    logger.info("=" * 50)
    logger.info("STEP: INTAKE - Creating invoice from extraction")
    logger.info("=" * 50)

    record = parse_extraction(request.extraction)

    document_date = parse_date(record.document_date)
    if record.document_date and document_date is None:
        logger.warning(f"Unparseable document date '{record.document_date}' ignored")

    invoice = InvoiceModel(
        id=new_id(),
        correlation_id=request.correlation_id or record.correlation_id or new_id(),
        source_system=record.source_system or request.source_system,
        file_name=request.file_name or record.file_name,
        dox_job_id=request.dox_job_id or record.dox_job_id,
        extraction_confidence=(
            request.extraction_confidence
            if request.extraction_confidence is not None else record.confidence
        ),
        step=InvoiceStep.DOX_EXTRACTED.value,
        status=InvoiceStatus.IN_PROGRESS.value,
        document_number=record.document_number,
        document_date=document_date,
        due_date=parse_date(record.due_date),
        currency_code=record.currency_code,
        gross_amount=record.gross_amount,
        net_amount=record.net_amount,
        tax_amount=record.tax_amount,
        tax_rate=record.tax_rate,
        payment_terms=record.payment_terms,
        sender_name=record.sender_name,
        sender_address=record.sender_address,
        sender_city=record.sender_city,
        sender_state=record.sender_state,
        sender_postal_code=record.sender_postal_code,
        receiver_name=record.receiver_name,
        receiver_address=record.receiver_address,
        receiver_city=record.receiver_city,
        receiver_state=record.receiver_state,
        receiver_postal_code=record.receiver_postal_code,
        purchase_order_number=record.purchase_order_number,
        company_code=record.company_code or settings.default_company_code,
    )

    for index, item in enumerate(record.line_items):
        invoice.lines.append(InvoiceLineModel(
            line_number=item.line_number or index + 1,
            description=item.description,
            material_number=item.material_number,
            quantity=item.quantity,
            unit_of_measure=item.unit_of_measure,
            unit_price=item.unit_price,
            net_amount=item.net_amount,
            tax_amount=item.tax_amount,
            tax_code=item.tax_code,
            match_status=LineMatchStatus.PENDING.value,
        ))

    line_count = len(record.line_items)
    message = f"Invoice created from extraction with {line_count} line(s)"
    invoice.message = message

    with db.get_session() as session:
        session.add(invoice)
        log_process(
            session, invoice.id, InvoiceStep.DOX_EXTRACTED, InvoiceStatus.COMPLETED,
            ProcessResult.SUCCESS, message,
            {"line_count": line_count, "document_number": record.document_number},
        )

    logger.info(f"Invoice {invoice.id} created: {record.document_number} ({line_count} lines)")

    return CreateInvoiceResponse(
        invoice_id=invoice.id,
        line_count=line_count,
        step=InvoiceStep.DOX_EXTRACTED.value,
        status=InvoiceStatus.IN_PROGRESS.value,
        message=message,
    )

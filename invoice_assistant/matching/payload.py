"""
Posting Payload Builder - the ERP supplier invoice request for a
reconciled invoice.
"""
import logging
from datetime import date
from typing import Any, Dict, Mapping, Sequence

from invoice_assistant.models.state import LineMatchStatus

logger = logging.getLogger(__name__)


def _iso(value) -> str:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def build_posting_payload(
    invoice: Any,
    lines: Sequence[Any],
    po_lines_by_id: Mapping[str, Any],
    default_tax_code: str = "V0",
    posting_date: date = None,
) -> Dict[str, Any]:
    """
    Header from the invoice plus one item per MATCHED line whose PO line
    reference still resolves. Item numbers run 000010, 000020, ...
    """
    header = {
        "company_code": invoice.company_code,
        "supplier": invoice.matched_supplier_number,
        "document_date": _iso(invoice.document_date),
        "posting_date": _iso(posting_date or date.today()),
        "invoice_reference": invoice.document_number,
        "currency": invoice.currency_code,
        "gross_amount": invoice.gross_amount,
        "tax_amount": invoice.tax_amount,
        "header_text": f"Invoice {invoice.document_number or ''}".strip(),
    }

    items = []
    for line in sorted(lines, key=lambda l: l.line_number or 0):
        if line.match_status != LineMatchStatus.MATCHED.value or not line.matched_po_line_id:
            continue
        po_line = po_lines_by_id.get(line.matched_po_line_id)
        if po_line is None:
            logger.warning(
                f"Line {line.line_number} references PO line {line.matched_po_line_id} "
                f"which no longer exists; excluded from posting"
            )
            continue
        items.append({
            "item_number": str((len(items) + 1) * 10).zfill(6),
            "purchase_order": po_line.purchase_order,
            "purchase_order_item": po_line.purchase_order_item,
            "amount": line.net_amount,
            "tax_code": line.tax_code or po_line.tax_code or default_tax_code,
            "quantity": line.quantity,
            "unit": line.unit_of_measure or po_line.order_unit,
            "text": line.description,
            "material": line.material_number or po_line.material,
        })

    return {"header": header, "items": items}

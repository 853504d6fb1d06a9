"""
Invoice Validator - aggregates supplier, amount, PO and three-way-match
checks into a single verdict. Pure: reads the invoice, writes nothing.
"""
from typing import Any, Sequence

from invoice_assistant.models.schemas import CategoryResult, ValidationIssue, ValidationResponse
from invoice_assistant.models.state import (
    LineMatchStatus, Severity, ThreeWayMatchStatus, ValidationStatus
)

LOW_SUPPLIER_SCORE = 0.7


def _issue(category: CategoryResult, field: str, message: str, severity: Severity, code: str) -> None:
    issue = ValidationIssue(field=field, message=message, severity=severity.value, code=code)
    if severity == Severity.WARNING:
        category.warnings.append(issue)
    else:
        category.errors.append(issue)
        category.passed = False


def _positive(value) -> bool:
    return value is not None and value > 0


def validate_invoice(invoice: Any, lines: Sequence[Any]) -> ValidationResponse:
    supplier = CategoryResult()
    amount = CategoryResult()
    po = CategoryResult()
    three_way = CategoryResult()

    # Supplier
    if not invoice.matched_supplier_number:
        _issue(supplier, "supplier", "Supplier not matched", Severity.ERROR, "SUP_001")
    elif (invoice.supplier_match_score or 0.0) < LOW_SUPPLIER_SCORE:
        _issue(
            supplier, "supplier",
            f"Supplier match confidence low: {(invoice.supplier_match_score or 0.0) * 100:.1f}%",
            Severity.WARNING, "SUP_002",
        )

    # Amounts and header
    if not _positive(invoice.net_amount):
        _issue(amount, "net_amount", "Net amount is missing or invalid", Severity.ERROR, "AMT_001")
    if not _positive(invoice.gross_amount):
        _issue(amount, "gross_amount", "Gross amount is missing or invalid", Severity.ERROR, "AMT_002")
    if not invoice.currency_code:
        _issue(amount, "currency_code", "Currency code is required", Severity.ERROR, "AMT_003")
    if not invoice.document_date:
        _issue(amount, "document_date", "Document date is required", Severity.ERROR, "AMT_004")
    if not invoice.company_code:
        _issue(amount, "company_code", "Company code is required", Severity.ERROR, "AMT_005")

    # PO
    if invoice.purchase_order_number:
        total = len(lines)
        matched = sum(1 for l in lines if l.match_status == LineMatchStatus.MATCHED.value)
        if total > 0 and matched == 0:
            _issue(po, "po_items", "No invoice lines matched to PO lines", Severity.ERROR, "PO_001")
        elif matched < total:
            _issue(po, "po_items", f"Only {matched} of {total} lines matched", Severity.WARNING, "PO_002")

    # Three-way match
    if invoice.three_way_match_required:
        if not invoice.gr_check_passed:
            _issue(
                three_way, "goods_receipt",
                "3-way match failed: goods receipt not posted for all lines",
                Severity.ERROR, "GR_001",
            )
        if invoice.three_way_match_status == ThreeWayMatchStatus.FAILED.value:
            _issue(three_way, "three_way_match", "3-way match validation failed", Severity.ERROR, "GR_002")

    categories = [supplier, amount, po, three_way]
    errors = [e for c in categories for e in c.errors]
    warnings = [w for c in categories for w in c.warnings]

    if errors:
        status = ValidationStatus.INVALID
        message = f"Validation failed with {len(errors)} error(s)"
    elif warnings:
        status = ValidationStatus.VALID_WITH_WARNINGS
        message = f"Validation passed with {len(warnings)} warning(s)"
    else:
        status = ValidationStatus.VALID
        message = "All validations passed successfully"

    return ValidationResponse(
        is_valid=not errors,
        status=status.value,
        message=message,
        error_count=len(errors),
        warning_count=len(warnings),
        supplier=supplier,
        amount=amount,
        po=po,
        three_way_match=three_way,
        all_errors=errors + warnings,
    )

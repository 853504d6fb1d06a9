"""
ERP adapters - translate raw ERP records to the field names the matching
core uses, and the posting payload back to the ERP body.

On-premise systems answer OData V2 (`d.results`, legacy field aliases,
"X" flags); cloud systems answer OData V4 (`value`, typed booleans).
"""
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_ODATA_V2_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")


def parse_odata_date(value) -> Optional[datetime]:
    """Parse '/Date(1700000000000)/' or an ISO string into a naive UTC datetime"""
    if not value or not isinstance(value, str):
        return None
    match = _ODATA_V2_DATE.search(value)
    if match:
        ms = int(match.group(1))
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_odata_date(value)
    return parsed.date() if parsed else None


def to_number(value, decimals: int = 2) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return round(float(value), decimals)
    except (TypeError, ValueError):
        return None


def to_boolean(value) -> bool:
    if isinstance(value, bool):
        return value
    return value in ("X", "x", 1, "1", "true", "True")


def pad_number(value, width: int = 10) -> str:
    return str(value or "").strip().zfill(width)


class ErpAdapter:
    """Base adapter: OData V4 shapes, overridden where on-premise differs"""

    kind = "base"
    supplier_path = "/API_BUSINESS_PARTNER/A_BusinessPartner"
    po_item_path = "/API_PURCHASEORDER_PROCESS_SRV/A_PurchaseOrderItem"
    goods_receipt_path: Optional[str] = "/API_MATERIAL_DOCUMENT_SRV/A_MaterialDocumentItem"
    posting_path = "/API_SUPPLIERINVOICE_PROCESS_SRV/A_SupplierInvoice"

    def results(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        d = data.get("d")
        if isinstance(d, dict) and isinstance(d.get("results"), list):
            return d["results"]
        return data.get("value") or []

    # ------------------------------------------------------------------
    # Supplier master
    # ------------------------------------------------------------------

    def supplier_filter(self, mode: str, since: Optional[datetime]) -> str:
        query = "Supplier ne ''"
        if mode == "delta" and since:
            query += f" and LastChangeDate ge {since.date().isoformat()}"
        return query

    def map_supplier(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """None for rows without a supplier number or for blocked partners"""
        if not row.get("Supplier") or to_boolean(row.get("BusinessPartnerIsBlocked")):
            return None

        addresses = row.get("to_BusinessPartnerAddress") or []
        if isinstance(addresses, dict):
            addresses = addresses.get("results") or []
        primary = next((a for a in addresses if a.get("AddressID") == "1"), None)
        if primary is None:
            primary = addresses[0] if addresses else {}

        alt_names = []
        for key in ("SearchTerm1", "SearchTerm2", "OrganizationBPName1", "OrganizationBPName2"):
            name = (row.get(key) or "").strip()
            if name and name not in alt_names:
                alt_names.append(name)

        return {
            "supplier_number": pad_number(row["Supplier"]),
            "supplier_name": row.get("BusinessPartnerFullName") or row.get("BusinessPartnerName") or "",
            "alt_names": alt_names,
            "street": primary.get("StreetName") or "",
            "city": primary.get("CityName") or "",
            "state": primary.get("Region") or "",
            "postal_code": primary.get("PostalCode") or "",
            "country": primary.get("Country") or "",
            "is_active": True,
            "last_changed_at": (
                parse_odata_date(row.get("LastChangeDate"))
                or parse_odata_date(row.get("CreationDate"))
                or datetime.utcnow()
            ),
        }

    # ------------------------------------------------------------------
    # Purchase orders and goods receipts
    # ------------------------------------------------------------------

    def map_po_item(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        quantity = to_number(raw.get("OrderQuantity"), 3) or 0.0
        return {
            "purchase_order": raw.get("PurchaseOrder"),
            "purchase_order_item": raw.get("PurchaseOrderItem"),
            "item_category": raw.get("PurchaseOrderItemCategory"),
            "material": raw.get("Material"),
            "material_name": raw.get("MaterialName") or raw.get("PurchaseOrderItemText"),
            "plant": raw.get("Plant"),
            "order_quantity": quantity,
            "order_unit": raw.get("OrderUnit") or raw.get("PurchaseOrderQuantityUnit"),
            "open_quantity": quantity,
            "net_price_amount": to_number(raw.get("NetPriceAmount"), 2),
            "price_unit": to_number(raw.get("NetPriceQuantity"), 3),
            "currency": raw.get("Currency") or raw.get("DocumentCurrency"),
            "tax_code": raw.get("TaxCode"),
            "gl_account": raw.get("GLAccount"),
            "cost_center": raw.get("CostCenter"),
            "goods_receipt_expected": to_boolean(raw.get("GoodsReceiptIsExpected")),
            "invoice_expected": to_boolean(raw.get("InvoiceIsExpected")),
            "is_goods_receipt_based": to_boolean(raw.get("InvoiceIsGoodsReceiptBased")),
        }

    def goods_receipt_filter(self, po_number: str) -> str:
        return f"PurchaseOrder eq '{po_number}' and GoodsMovementType eq '101'"

    def map_goods_receipt(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "purchase_order": raw.get("PurchaseOrder"),
            "purchase_order_item": raw.get("PurchaseOrderItem"),
            "quantity": to_number(raw.get("QuantityInEntryUnit"), 3) or 0.0,
            "material_document": raw.get("MaterialDocument"),
            "posting_date": parse_date(raw.get("PostingDate")),
        }

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def posting_body(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        header = payload["header"]
        return {
            "CompanyCode": header["company_code"],
            "Supplier": header["supplier"],
            "DocumentDate": header["document_date"],
            "PostingDate": header["posting_date"],
            "SupplierInvoiceIDByInvcgParty": header["invoice_reference"],
            "DocumentCurrency": header["currency"],
            "InvoiceGrossAmount": header["gross_amount"],
            "TaxAmount": header["tax_amount"],
            "DocumentHeaderText": header["header_text"],
            "to_SuplrInvcItemPurOrdRef": [
                {
                    "SupplierInvoiceItem": item["item_number"],
                    "PurchaseOrder": item["purchase_order"],
                    "PurchaseOrderItem": item["purchase_order_item"],
                    "SupplierInvoiceItemAmount": item["amount"],
                    "TaxCode": item["tax_code"],
                    "QuantityInPurchaseOrderUnit": item["quantity"],
                    "PurchaseOrderQuantityUnit": item["unit"],
                    "SupplierInvoiceItemText": item["text"],
                }
                for item in payload["items"]
            ],
        }

    def parse_posting_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        body = data.get("d", data) if isinstance(data, dict) else {}
        return {
            "return_type": "S",
            "accounting_document": body.get("AccountingDocument") or body.get("SupplierInvoice"),
            "fiscal_year": body.get("FiscalYear"),
            "doc_type": body.get("AccountingDocumentType") or "KR",
            "message": "Invoice posted successfully",
            "message_class": "",
        }

    def parse_error(self, data: Any, fallback: str) -> Dict[str, Any]:
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            details = (error.get("innererror") or {}).get("errordetails") or []
            if details:
                error = details[0]
        error = error if isinstance(error, dict) else {}
        message = error.get("message") or fallback
        if isinstance(message, dict):
            message = message.get("value") or fallback
        return {
            "return_type": "E",
            "accounting_document": None,
            "fiscal_year": None,
            "doc_type": None,
            "message": message,
            "message_class": error.get("code") or "",
        }


class CloudAdapter(ErpAdapter):
    kind = "cloud"


class OnPremAdapter(ErpAdapter):
    kind = "onprem"
    # On-premise systems expose no material document API for this scenario
    goods_receipt_path = None

    _PO_ALIASES = {
        "PurchaseOrder": "EBELN",
        "PurchaseOrderItem": "EBELP",
        "Material": "MATNR",
        "MaterialName": "TXZ01",
        "OrderQuantity": "MENGE",
        "OrderUnit": "MEINS",
        "NetPriceAmount": "NETPR",
        "Currency": "WAERS",
        "Plant": "WERKS",
    }

    def supplier_filter(self, mode: str, since: Optional[datetime]) -> str:
        query = "Supplier ne ''"
        if mode == "delta" and since:
            query += f" and LastChangeDate ge datetime'{since.date().isoformat()}T00:00:00'"
        return query

    def map_po_item(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        raw = dict(raw)
        for field, alias in self._PO_ALIASES.items():
            if not raw.get(field) and raw.get(alias):
                raw[field] = raw[alias]
        return super().map_po_item(raw)


ADAPTERS = {
    "onprem": OnPremAdapter,
    "cloud": CloudAdapter,
}


def get_adapter(kind: str) -> ErpAdapter:
    """Select the adapter for the configured ERP kind, defaulting to on-premise"""
    adapter_cls = ADAPTERS.get((kind or "").lower())
    if adapter_cls is None:
        logger.warning(f"Unknown ERP kind '{kind}', falling back to onprem")
        adapter_cls = OnPremAdapter
    return adapter_cls()

"""
Demo Script - Run an invoice through supplier resolution, PO matching,
validation and approval against a seeded local database
"""
import asyncio
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("DEMO")

DEMO_DATABASE_URL = "sqlite:///./invoice_assistant_demo.db"

SUPPLIERS = [
    {"supplier_number": "0000100001", "supplier_name": "Acme Corporation", "alt_names": ["ACME"],
     "city": "Springfield", "state": "IL", "postal_code": "62701"},
    {"supplier_number": "0000100002", "supplier_name": "Acme Corp Holdings", "alt_names": [],
     "city": "Springfield", "state": "MO", "postal_code": "65801"},
    {"supplier_number": "0000100003", "supplier_name": "Beta Industries", "alt_names": ["BETA IND"],
     "city": "Chicago", "state": "IL", "postal_code": "60601"},
]

PO_ITEMS = [
    {"purchase_order": "4500000001", "purchase_order_item": "00010", "material": "BOLT-M8",
     "material_name": "Steel bolts M8", "order_quantity": 10, "order_unit": "EA", "tax_code": "V1",
     "is_goods_receipt_based": True, "gr_quantity_posted": 10},
    {"purchase_order": "4500000001", "purchase_order_item": "00020", "material": "NUT-M8",
     "material_name": "Hex nuts M8", "order_quantity": 100, "order_unit": "EA", "tax_code": "V1"},
]

SAMPLE_EXTRACTION = {
    "documentNumber": "INV-2024-001",
    "documentDate": "2024-01-15",
    "currencyCode": "USD",
    "grossAmount": 352.0,
    "netAmount": 320.0,
    "taxAmount": 32.0,
    "senderName": "ACME Corp.",
    "senderCity": "Springfield",
    "senderState": "IL",
    "senderPostalCode": "62701",
    "purchaseOrderNumber": "4500000001",
    "items": [
        {"description": "Steel bolts M8", "materialNumber": "BOLT-M8", "quantity": 6, "netAmount": 120},
        {"description": "Steel bolts M8 (backorder)", "materialNumber": "BOLT-M8", "quantity": 4, "netAmount": 80},
        {"description": "Hex nuts M8", "materialNumber": "NUT-M8", "quantity": 100, "netAmount": 120},
    ],
}


def show(title, result):
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)
    print(json.dumps(result.model_dump() if hasattr(result, "model_dump") else result, indent=2, default=str))


async def seed(assistant):
    """Load the demo supplier master with fresh embeddings"""
    from invoice_assistant.database import SupplierModel

    db = assistant.db
    db.drop_tables()
    db.create_tables()

    with db.get_session() as session:
        for record in SUPPLIERS:
            session.add(SupplierModel(**record, is_active=True))
    await assistant.refresh_supplier_embeddings(force=True)


async def attach_po_lines(assistant, invoice_id):
    from invoice_assistant.database import POLineModel
    from invoice_assistant.matching.lines import po_line_text

    with assistant.db.get_session() as session:
        for item in PO_ITEMS:
            po_line = POLineModel(invoice_id=invoice_id, applied_gr_documents=[], **item)
            po_line.embedding = await assistant.oracle.embed(po_line_text(po_line))
            session.add(po_line)


async def run_demo(approve: bool = True):
    """Run the demo flow"""
    from dotenv import load_dotenv
    load_dotenv()

    from invoice_assistant.config import Settings
    from invoice_assistant.database import Database, InvoiceModel
    from invoice_assistant.matching.payload import build_posting_payload
    from invoice_assistant.models.schemas import ApprovalRequest, CreateInvoiceRequest
    from invoice_assistant.service import InvoiceAssistant

    settings = Settings.from_env()
    settings.database_url = DEMO_DATABASE_URL
    assistant = InvoiceAssistant(settings=settings, db=Database(DEMO_DATABASE_URL))

    print("\n" + "=" * 70)
    print("INVOICE ASSISTANT - DEMO")
    print("=" * 70)

    await seed(assistant)

    created = assistant.create_invoice(CreateInvoiceRequest(extraction=json.dumps(SAMPLE_EXTRACTION)))
    show("INTAKE", created)
    invoice_id = created.invoice_id
    await attach_po_lines(assistant, invoice_id)

    show("SUPPLIER RESOLUTION", await assistant.resolve_supplier(invoice_id))
    show("PO MATCH", await assistant.match_po_lines(invoice_id, fetch_from_source=False))
    show("VALIDATION", assistant.validate_invoice(invoice_id))

    decision = ApprovalRequest(
        approved=approve,
        approver="reviewer-001",
        comments=None if approve else "Rejected - vendor not verified",
    )
    show("APPROVAL", assistant.record_approval(invoice_id, decision))

    if approve:
        with assistant.db.get_session() as session:
            invoice = session.get(InvoiceModel, invoice_id)
            payload = build_posting_payload(
                invoice, invoice.lines, {p.id: p for p in invoice.po_lines},
                default_tax_code=settings.default_tax_code,
            )
        show("POSTING PAYLOAD (not sent)", payload)

    show("STATUS", assistant.get_invoice_status(invoice_id))
    print("\n" + "-" * 70)
    print("PROCESS LOG")
    print("-" * 70)
    for entry in assistant.get_process_log(invoice_id):
        print(f"  {entry.timestamp} [{entry.step}] {entry.status} {entry.message}")

    print("\n" + "=" * 70)
    print("DEMO COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "--reject":
        asyncio.run(run_demo(approve=False))
    else:
        asyncio.run(run_demo())

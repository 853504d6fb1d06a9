"""
PO line matching, match consolidation and the three-way match
"""
from types import SimpleNamespace

import pytest

from invoice_assistant.database import InvoiceLineModel, InvoiceModel, POLineModel
from invoice_assistant.errors import DownstreamError, InputError, NotFoundError
from invoice_assistant.matching.consolidation import consolidate_lines
from invoice_assistant.matching.lines import match_rate_confidence, po_match_status
from invoice_assistant.matching.three_way import ThreeWayMatchEvaluator
from invoice_assistant.models.state import MatchConfidence, POMatchStatus

from conftest import AXIS_X, AXIS_Y, AXIS_Z, vec_with_score


def line(number, po_line_id=None, status="MATCHED", quantity=1.0, net_amount=10.0, tax_amount=None, description="Item"):
    return SimpleNamespace(
        line_number=number, matched_po_line_id=po_line_id, match_status=status,
        quantity=quantity, net_amount=net_amount, tax_amount=tax_amount, description=description,
    )


def po_line(gr_based=False, received=0.0):
    return SimpleNamespace(is_goods_receipt_based=gr_based, gr_quantity_posted=received)


# ============================================================================
# Consolidator
# ============================================================================

class TestConsolidation:

    def test_two_lines_on_one_po_line(self):
        first = line(1, "po-1", quantity=5, net_amount=100, tax_amount=10, description="Steel bolts")
        second = line(2, "po-1", quantity=3, net_amount=60, tax_amount=6)

        outcome = consolidate_lines([second, first])

        assert outcome.groups_consolidated == 1
        assert outcome.deleted == [second]
        assert first.quantity == 8
        assert first.net_amount == 160
        assert first.tax_amount == 16
        assert first.description == "Steel bolts (Consolidated)"

    def test_totals_are_conserved(self):
        lines = [
            line(1, "a", quantity=2, net_amount=20),
            line(2, "b", quantity=1, net_amount=7),
            line(3, "a", quantity=4, net_amount=40),
            line(4, "a", quantity=1.5, net_amount=15),
            line(5, None, status="NO_MATCH", quantity=9, net_amount=90),
        ]
        before_qty = sum(l.quantity for l in lines)
        before_amount = sum(l.net_amount for l in lines)

        outcome = consolidate_lines(lines)
        survivors = [l for l in lines if l not in outcome.deleted]

        assert outcome.lines_deleted == 2
        assert sum(l.quantity for l in survivors) == pytest.approx(before_qty)
        assert sum(l.net_amount for l in survivors) == pytest.approx(before_amount)

    def test_single_member_groups_untouched(self):
        only = line(1, "a", description="Widget")
        unmatched = line(2, "a", status="NO_MATCH")
        outcome = consolidate_lines([only, unmatched])
        assert outcome.groups_consolidated == 0
        assert only.description == "Widget"

    def test_suffix_appended_once(self):
        first = line(1, "a", description="Bolts (Consolidated)")
        outcome = consolidate_lines([first, line(2, "a")])
        assert outcome.groups_consolidated == 1
        assert first.description == "Bolts (Consolidated)"


# ============================================================================
# Three-way evaluator and summaries
# ============================================================================

class TestThreeWayMatch:

    def test_not_required_without_gr_based_lines(self):
        evaluator = ThreeWayMatchEvaluator()
        evaluator.observe(po_line())
        assert not evaluator.required
        assert evaluator.passed
        assert evaluator.status.value == "NOT_REQUIRED"

    def test_passes_when_every_gr_line_received(self):
        evaluator = ThreeWayMatchEvaluator()
        evaluator.observe(po_line(gr_based=True, received=2))
        evaluator.observe(po_line(gr_based=True, received=0.5))
        evaluator.observe(po_line())
        assert evaluator.required
        assert evaluator.passed
        assert evaluator.status.value == "PASSED"

    def test_fails_when_any_gr_line_missing_receipt(self):
        evaluator = ThreeWayMatchEvaluator()
        evaluator.observe(po_line(gr_based=True, received=2))
        evaluator.observe(po_line(gr_based=True, received=0))
        assert evaluator.required
        assert not evaluator.passed
        assert evaluator.status.value == "FAILED"


@pytest.mark.parametrize("rate, expected", [
    (1.0, MatchConfidence.HIGH), (0.9, MatchConfidence.HIGH),
    (0.89, MatchConfidence.MEDIUM), (0.7, MatchConfidence.MEDIUM),
    (0.69, MatchConfidence.LOW), (0.0, MatchConfidence.LOW),
])
def test_match_rate_confidence(rate, expected):
    assert match_rate_confidence(rate) == expected


def test_po_match_status():
    assert po_match_status(3, 3) == POMatchStatus.MATCHED
    assert po_match_status(1, 3) == POMatchStatus.PARTIAL
    assert po_match_status(0, 3) == POMatchStatus.NO_MATCH


# ============================================================================
# Matcher
# ============================================================================

@pytest.mark.asyncio
async def test_duplicate_matches_are_consolidated(assistant, embedder, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    po_line_id = add_po_line(invoice_id, "00010", AXIS_X, material_name="Steel bolts")
    add_po_line(invoice_id, "00020", AXIS_Z, material_name="Paint")
    embedder.set("Steel bolts", AXIS_X)
    embedder.set("Steel bolts M8", vec_with_score(0.95))

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.total_lines == 1
    assert result.matched_items == 1
    assert result.status == "MATCHED"
    assert result.confidence == "HIGH"
    with db.get_session() as session:
        lines = session.query(InvoiceLineModel).filter_by(invoice_id=invoice_id).all()
        assert len(lines) == 1
        assert lines[0].quantity == 8
        assert lines[0].net_amount == 160
        assert lines[0].description.endswith("(Consolidated)")
        assert lines[0].matched_po_line_id == po_line_id
        invoice = session.get(InvoiceModel, invoice_id)
        assert invoice.step == "PO_MATCHED"
        assert invoice.po_match_status == "MATCHED"
        assert invoice.po_match_confidence == 100.0
        assert invoice.three_way_match_status == "NOT_REQUIRED"


@pytest.mark.asyncio
async def test_no_po_number_skips_matching(assistant, make_invoice, db):
    invoice_id = make_invoice(purchaseOrderNumber=None)

    result = await assistant.match_po_lines(invoice_id)

    assert result.status == "NO_PO"
    with db.get_session() as session:
        invoice = session.get(InvoiceModel, invoice_id)
        assert invoice.step == "PO_MATCH_SKIPPED"
        assert invoice.po_match_status == "NO_MATCH"


@pytest.mark.asyncio
async def test_invoice_without_lines(assistant, make_invoice):
    invoice_id = make_invoice(items=[])

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.status == "NO_ITEMS"
    assert result.matched_items == 0


@pytest.mark.asyncio
async def test_threshold_rejects_weak_matches(assistant, embedder, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    add_po_line(invoice_id, "00010", AXIS_X, material_name="Steel bolts")
    embedder.set("Steel bolts", AXIS_X)
    embedder.set("Steel bolts M8", vec_with_score(0.69))

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.total_lines == 2
    assert result.matched_items == 1
    assert result.status == "PARTIAL"
    assert result.confidence == "LOW"
    rejected = [m for m in result.matches if m.status == "NO_MATCH"]
    assert rejected[0].score == pytest.approx(0.69)
    assert rejected[0].po_line_id is None


@pytest.mark.asyncio
async def test_threshold_is_configurable(assistant, embedder, make_invoice, add_po_line):
    assistant.settings.po_match_threshold = 0.3
    invoice_id = make_invoice(items=[{"description": "Steel bolts M8", "quantity": 3, "netAmount": 60}])
    add_po_line(invoice_id, "00010", AXIS_X)
    embedder.set("Steel bolts M8", vec_with_score(0.4))

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.matched_items == 1


@pytest.mark.asyncio
async def test_three_way_match_failure_is_recorded(assistant, embedder, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    add_po_line(invoice_id, "00010", AXIS_X, is_goods_receipt_based=True, gr_quantity_posted=5)
    add_po_line(invoice_id, "00020", AXIS_Y, is_goods_receipt_based=True, gr_quantity_posted=0)
    embedder.set("Steel bolts", AXIS_X)
    embedder.set("Steel bolts M8", AXIS_Y)

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.matched_items == 2
    assert result.three_way_match_required
    assert not result.three_way_match_passed
    with db.get_session() as session:
        invoice = session.get(InvoiceModel, invoice_id)
        assert invoice.three_way_match_status == "FAILED"
        assert invoice.gr_check_passed is False


@pytest.mark.asyncio
async def test_lines_without_text_are_skipped(assistant, embedder, make_invoice, add_po_line):
    invoice_id = make_invoice(items=[
        {"description": "Steel bolts", "quantity": 5, "netAmount": 100},
        {"quantity": 1, "netAmount": 5},
    ])
    add_po_line(invoice_id, "00010", AXIS_X)
    embedder.set("Steel bolts", AXIS_X)

    result = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.matched_items == 1
    assert result.unmatched_items == 1


@pytest.mark.asyncio
async def test_match_syncs_po_lines_from_erp(assistant, embedder, fake_erp, make_invoice, db):
    fake_erp.po_items = [
        {"EBELN": "4500000001", "EBELP": "00010", "MATNR": "BOLT-1", "TXZ01": "Steel bolts",
         "MENGE": "8", "MEINS": "EA", "NETPR": "20.00", "WAERS": "USD", "TaxCode": "V1",
         "InvoiceIsGoodsReceiptBased": "X"},
    ]
    embedder.set("BOLT-1 Steel bolts", AXIS_X)
    embedder.set("Steel bolts", AXIS_X)
    embedder.set("Steel bolts M8", vec_with_score(0.9))
    invoice_id = make_invoice()

    result = await assistant.match_po_lines(invoice_id)

    assert result.matched_items == 1
    assert result.total_lines == 1
    # on-premise ERP exposes no goods receipts, so the GR-based line fails the 3-way check
    assert result.three_way_match_required
    assert not result.three_way_match_passed
    with db.get_session() as session:
        po_lines = session.query(POLineModel).filter_by(invoice_id=invoice_id).all()
        assert len(po_lines) == 1
        assert po_lines[0].material == "BOLT-1"
        assert po_lines[0].order_quantity == 8
        assert po_lines[0].embedding == AXIS_X


@pytest.mark.asyncio
async def test_erp_outage_falls_back_to_cache(assistant, embedder, fake_erp, make_invoice, add_po_line):
    fake_erp.fail_reads = True
    invoice_id = make_invoice()
    add_po_line(invoice_id, "00010", AXIS_X)
    embedder.set("Steel bolts", AXIS_X)
    embedder.set("Steel bolts M8", AXIS_X)

    result = await assistant.match_po_lines(invoice_id)

    assert result.matched_items == 1
    assert result.status == "MATCHED"


@pytest.mark.asyncio
async def test_oracle_failure_rolls_back(assistant, embedder, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    add_po_line(invoice_id, "00010", AXIS_X)
    embedder.fail = True

    with pytest.raises(DownstreamError):
        await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    with db.get_session() as session:
        invoice = session.get(InvoiceModel, invoice_id)
        assert invoice.status == "ERROR"
        assert invoice.step == "DOX_EXTRACTED"
        lines = session.query(InvoiceLineModel).filter_by(invoice_id=invoice_id).all()
        assert {l.match_status for l in lines} == {"PENDING"}


def test_consolidate_operation(assistant, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    po_line_id = add_po_line(invoice_id, "00010", AXIS_X)
    with db.get_session() as session:
        for l in session.query(InvoiceLineModel).filter_by(invoice_id=invoice_id):
            l.match_status = "MATCHED"
            l.matched_po_line_id = po_line_id

    result = assistant.consolidate_matches(invoice_id)

    assert result.groups_consolidated == 1
    assert result.lines_deleted == 1
    assert assistant.consolidate_matches(invoice_id).lines_deleted == 0


# ============================================================================
# Goods receipts
# ============================================================================

def test_goods_receipts_accumulate_once_per_document(assistant, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    po_line_id = add_po_line(invoice_id, "00010", AXIS_X, order_quantity=10)
    receipts = [
        {"purchase_order": "4500000001", "purchase_order_item": "10", "quantity": 4,
         "material_document": "5000000001", "posting_date": "2024-01-10"},
        {"purchase_order": "4500000001", "purchase_order_item": "00010", "quantity": 3,
         "material_document": "5000000002", "posting_date": "2024-01-12"},
        {"purchase_order": "4500000001", "purchase_order_item": "00099", "quantity": 1},
    ]

    first = assistant.upsert_goods_receipts(invoice_id, receipts)
    again = assistant.upsert_goods_receipts(invoice_id, receipts)

    assert first.applied == 2
    assert first.skipped == 1
    assert again.applied == 0
    with db.get_session() as session:
        po = session.get(POLineModel, po_line_id)
        assert po.gr_quantity_posted == 7
        assert po.open_quantity == 3
        assert po.last_gr_document == "5000000002"


@pytest.mark.asyncio
async def test_sync_from_source_with_cloud_goods_receipts(settings, db, oracle, embedder, fake_erp, make_invoice):
    import httpx
    from invoice_assistant.erp import CloudAdapter, ErpClient
    from invoice_assistant.service import InvoiceAssistant

    cloud = ErpClient(settings, adapter=CloudAdapter(), transport=httpx.MockTransport(fake_erp.handler))
    assistant = InvoiceAssistant(settings=settings, db=db, oracle=oracle, erp=cloud)
    fake_erp.po_items = [
        {"PurchaseOrder": "4500000001", "PurchaseOrderItem": "00010", "Material": "BOLT-1",
         "PurchaseOrderItemText": "Steel bolts", "OrderQuantity": 8, "InvoiceIsGoodsReceiptBased": True},
    ]
    fake_erp.goods_receipts = [
        {"PurchaseOrder": "4500000001", "PurchaseOrderItem": "00010", "QuantityInEntryUnit": "8",
         "MaterialDocument": "5000000001", "PostingDate": "/Date(1704844800000)/"},
    ]
    invoice_id = make_invoice()

    result = await assistant.sync_po_from_source(invoice_id)

    assert result.items_synced == 1
    assert result.gr_records_synced == 1
    with db.get_session() as session:
        po = session.query(POLineModel).filter_by(invoice_id=invoice_id).one()
        assert po.gr_quantity_posted == 8
        assert po.open_quantity == 0
        assert po.is_goods_receipt_based


@pytest.mark.asyncio
async def test_sync_from_source_erp_down(assistant, fake_erp, make_invoice, db):
    fake_erp.fail_reads = True
    invoice_id = make_invoice()

    with pytest.raises(DownstreamError):
        await assistant.sync_po_from_source(invoice_id)

    with db.get_session() as session:
        assert session.get(InvoiceModel, invoice_id).status == "ERROR"


@pytest.mark.asyncio
async def test_po_sync_keeps_database_writable_during_remote_calls(assistant, embedder, fake_erp, make_invoice, db):
    fake_erp.po_items = [
        {"EBELN": "4500000001", "EBELP": "00010", "MATNR": "BOLT-1", "TXZ01": "Steel bolts", "MENGE": "8"},
    ]
    embedder.set("BOLT-1 Steel bolts", AXIS_X)
    embedder.set("Steel bolts", AXIS_X)
    invoice_id = make_invoice()
    other_id = make_invoice(documentNumber="INV-2002")
    writes = []

    def concurrent_write():
        with db.get_session() as session:
            session.get(InvoiceModel, other_id).message = f"write {len(writes)}"
        writes.append(True)

    fake_erp.on_read = concurrent_write
    embedder.on_embed = concurrent_write

    synced = await assistant.sync_po_from_source(invoice_id)
    matched = await assistant.match_po_lines(invoice_id)

    assert synced.items_synced == 1
    assert matched.matched_items >= 1
    assert len(writes) >= 4
    with db.get_session() as session:
        assert session.query(POLineModel).filter_by(invoice_id=invoice_id).count() == 1
        assert session.get(InvoiceModel, other_id).message == f"write {len(writes) - 1}"


# ============================================================================
# PO item upsert and embedding refresh
# ============================================================================

CLOUD_ITEMS = [
    {"PurchaseOrder": "4500000001", "PurchaseOrderItem": "00010", "Material": "BOLT-1",
     "PurchaseOrderItemText": "Steel bolts", "OrderQuantity": "8", "NetPriceAmount": "20.00"},
    {"PurchaseOrder": "4500000001", "PurchaseOrderItem": "00020", "Material": "NUT-1",
     "PurchaseOrderItemText": "Hex nuts", "OrderQuantity": "100"},
]


@pytest.mark.asyncio
async def test_upsert_po_items(assistant, embedder, make_invoice, db):
    embedder.set("BOLT-1 Steel bolts", AXIS_X)
    embedder.set("NUT-1 Hex nuts", AXIS_Y)
    invoice_id = make_invoice()

    first = await assistant.upsert_po_items(invoice_id, CLOUD_ITEMS, "cloud")
    changed = dict(CLOUD_ITEMS[0], OrderQuantity="12")
    second = await assistant.upsert_po_items(invoice_id, [changed, {"Material": "ORPHAN"}], "cloud")

    assert first.upserted == 2
    assert second.upserted == 1
    assert second.skipped == 1
    with db.get_session() as session:
        po_lines = {p.purchase_order_item: p for p in session.query(POLineModel).filter_by(invoice_id=invoice_id)}
        assert set(po_lines) == {"00010", "00020"}
        assert po_lines["00010"].order_quantity == 12
        assert po_lines["00010"].open_quantity == 12
        assert po_lines["00010"].embedding == AXIS_X
        assert po_lines["00020"].embedding == AXIS_Y


@pytest.mark.asyncio
async def test_upsert_po_items_onprem_aliases_then_match(assistant, embedder, make_invoice):
    embedder.set("BOLT-1 Steel bolts", AXIS_X)
    embedder.set("Steel bolts", AXIS_X)
    invoice_id = make_invoice()
    onprem = [{"EBELN": "4500000001", "EBELP": "00010", "MATNR": "BOLT-1", "TXZ01": "Steel bolts", "MENGE": "8"}]

    result = await assistant.upsert_po_items(invoice_id, onprem)
    matched = await assistant.match_po_lines(invoice_id, fetch_from_source=False)

    assert result.upserted == 1
    assert matched.matched_items >= 1


@pytest.mark.asyncio
async def test_upsert_po_items_rejects_bad_requests(assistant, make_invoice):
    with pytest.raises(InputError):
        await assistant.upsert_po_items(make_invoice(), [])
    with pytest.raises(NotFoundError):
        await assistant.upsert_po_items("missing", CLOUD_ITEMS, "cloud")


@pytest.mark.asyncio
async def test_upsert_po_items_survives_oracle_outage(assistant, embedder, make_invoice, db):
    embedder.fail = True
    invoice_id = make_invoice()

    result = await assistant.upsert_po_items(invoice_id, CLOUD_ITEMS, "cloud")

    assert result.upserted == 2
    with db.get_session() as session:
        assert all(p.embedding is None for p in session.query(POLineModel).filter_by(invoice_id=invoice_id))


@pytest.mark.asyncio
async def test_refresh_po_embeddings(assistant, embedder, make_invoice, add_po_line, db):
    first_id = make_invoice()
    second_id = make_invoice(documentNumber="INV-2002")
    first_line = add_po_line(first_id, "00010", AXIS_Y, material="BOLT-1", material_name="Steel bolts")
    second_line = add_po_line(second_id, "00010", None, material="NUT-1", material_name="Hex nuts")
    embedder.set("BOLT-1 Steel bolts", AXIS_X)
    embedder.set("NUT-1 Hex nuts", AXIS_Z)

    one = await assistant.refresh_po_embeddings(first_id)
    with db.get_session() as session:
        assert session.get(POLineModel, first_line).embedding == AXIS_X
        assert session.get(POLineModel, second_line).embedding is None

    everything = await assistant.refresh_po_embeddings()

    assert one.refreshed and one.count == 1
    assert everything.refreshed and everything.count == 2
    with db.get_session() as session:
        assert session.get(POLineModel, second_line).embedding == AXIS_Z


@pytest.mark.asyncio
async def test_refresh_po_embeddings_reports_oracle_outage(assistant, embedder, make_invoice, add_po_line, db):
    invoice_id = make_invoice()
    po_line_id = add_po_line(invoice_id, "00010", AXIS_Y, material="BOLT-1")
    embedder.fail = True

    result = await assistant.refresh_po_embeddings(invoice_id)

    assert not result.refreshed
    assert result.count == 0
    with db.get_session() as session:
        assert session.get(POLineModel, po_line_id).embedding == AXIS_Y

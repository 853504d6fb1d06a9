"""
ERP adapters and client, supplier master sync, embedding providers and
the similarity oracle
"""
from datetime import datetime

import httpx
import numpy as np
import pytest

from invoice_assistant.config import Settings
from invoice_assistant.database import SupplierModel
from invoice_assistant.erp import ErpClient
from invoice_assistant.erp.adapters import (
    CloudAdapter, OnPremAdapter, get_adapter, pad_number, parse_odata_date, to_boolean
)
from invoice_assistant.errors import DownstreamError, InputError, OracleError
from invoice_assistant.similarity import SimilarityOracle
from invoice_assistant.similarity.embedders import (
    HttpEmbeddingClient, SentenceTransformerEmbedder, get_embedder
)
from invoice_assistant.similarity.oracle import cosine
from invoice_assistant.steps import SupplierMasterSync

from conftest import AXIS_X, AXIS_Y, vec_with_score


# ============================================================================
# Adapters
# ============================================================================

def test_parse_odata_date():
    assert parse_odata_date("/Date(1704067200000)/") == datetime(2024, 1, 1)
    assert parse_odata_date("/Date(1704067200000+0000)/") == datetime(2024, 1, 1)
    assert parse_odata_date("2024-01-01T06:00:00Z") == datetime(2024, 1, 1, 6, 0)
    assert parse_odata_date("2024-03-05") == datetime(2024, 3, 5)
    assert parse_odata_date("not a date") is None
    assert parse_odata_date(None) is None


def test_flags_and_padding():
    assert to_boolean("X")
    assert to_boolean(True)
    assert not to_boolean("")
    assert not to_boolean(None)
    assert pad_number("45001") == "0000045001"
    assert pad_number(" 4500000001 ") == "4500000001"


def test_get_adapter():
    assert isinstance(get_adapter("cloud"), CloudAdapter)
    assert isinstance(get_adapter("ONPREM"), OnPremAdapter)
    assert isinstance(get_adapter("mainframe"), OnPremAdapter)


def test_map_supplier_uses_primary_address_and_alt_names():
    row = {
        "Supplier": "100001",
        "BusinessPartnerFullName": "Acme Corp",
        "SearchTerm1": "ACME",
        "OrganizationBPName1": "Acme Corp",
        "OrganizationBPName2": "Acme Industrial",
        "LastChangeDate": "/Date(1704067200000)/",
        "to_BusinessPartnerAddress": {"results": [
            {"AddressID": "2", "CityName": "Chicago", "Region": "IL"},
            {"AddressID": "1", "CityName": "Springfield", "Region": "IL", "PostalCode": "62701"},
        ]},
    }

    mapped = OnPremAdapter().map_supplier(row)

    assert mapped["supplier_number"] == "0000100001"
    assert mapped["supplier_name"] == "Acme Corp"
    assert mapped["alt_names"] == ["ACME", "Acme Corp", "Acme Industrial"]
    assert mapped["city"] == "Springfield"
    assert mapped["postal_code"] == "62701"
    assert mapped["last_changed_at"] == datetime(2024, 1, 1)


def test_map_supplier_drops_blocked_and_numberless_rows():
    adapter = CloudAdapter()
    assert adapter.map_supplier({"Supplier": "1", "BusinessPartnerName": "X", "BusinessPartnerIsBlocked": True}) is None
    assert adapter.map_supplier({"BusinessPartnerName": "X"}) is None


def test_onprem_po_item_aliases():
    item = OnPremAdapter().map_po_item({
        "EBELN": "4500000001", "EBELP": "00010", "MATNR": "BOLT-1", "TXZ01": "Steel bolts",
        "MENGE": "10.000", "MEINS": "EA", "NETPR": "20.00", "WAERS": "USD", "WERKS": "1010",
        "GoodsReceiptIsExpected": "X",
    })

    assert item["purchase_order"] == "4500000001"
    assert item["purchase_order_item"] == "00010"
    assert item["material_name"] == "Steel bolts"
    assert item["order_quantity"] == 10.0
    assert item["open_quantity"] == 10.0
    assert item["net_price_amount"] == 20.0
    assert item["goods_receipt_expected"] is True


def test_results_accepts_both_envelopes():
    adapter = CloudAdapter()
    assert adapter.results({"d": {"results": [{"a": 1}]}}) == [{"a": 1}]
    assert adapter.results({"value": [{"b": 2}]}) == [{"b": 2}]
    assert adapter.results({}) == []


def test_parse_error_prefers_inner_details():
    data = {"error": {
        "code": "SY/530",
        "message": {"value": "An exception was raised"},
        "innererror": {"errordetails": [{"code": "M8/321", "message": "Tax code V9 not defined"}]},
    }}

    parsed = CloudAdapter().parse_error(data, "fallback")

    assert parsed["return_type"] == "E"
    assert parsed["message"] == "Tax code V9 not defined"
    assert parsed["message_class"] == "M8/321"
    assert CloudAdapter().parse_error("garbage", "fallback")["message"] == "fallback"


# ============================================================================
# Client
# ============================================================================

@pytest.mark.asyncio
async def test_fetch_po_items_pads_number(erp, fake_erp):
    fake_erp.po_items = [{"EBELN": "0000045001", "EBELP": "00010", "MENGE": "2"}]

    items = await erp.fetch_po_items("45001")

    assert items[0]["purchase_order"] == "0000045001"
    request = fake_erp.requests[0]
    assert request.url.params["$filter"] == "PurchaseOrder eq '0000045001'"
    assert request.url.params["sap-client"] == "100"


@pytest.mark.asyncio
async def test_onprem_has_no_goods_receipt_api(erp, fake_erp):
    assert await erp.fetch_goods_receipts("4500000001") == []
    assert fake_erp.requests == []


@pytest.mark.asyncio
async def test_cloud_fetches_goods_receipts(settings, fake_erp):
    settings.erp_kind = "cloud"
    client = ErpClient(settings, transport=httpx.MockTransport(fake_erp.handler))
    fake_erp.goods_receipts = [{
        "PurchaseOrder": "4500000001", "PurchaseOrderItem": "00010",
        "QuantityInEntryUnit": "4", "MaterialDocument": "5000000001", "PostingDate": "2024-01-10",
    }]

    receipts = await client.fetch_goods_receipts("4500000001")

    assert receipts[0]["quantity"] == 4.0
    assert receipts[0]["material_document"] == "5000000001"
    assert "GoodsMovementType eq '101'" in fake_erp.requests[0].url.params["$filter"]


# ============================================================================
# Supplier master sync
# ============================================================================

SUPPLIER_ROWS = [
    {
        "Supplier": "100001",
        "BusinessPartnerFullName": "Acme Corp",
        "LastChangeDate": "/Date(1704067200000)/",
        "to_BusinessPartnerAddress": {"results": [{"AddressID": "1", "CityName": "Springfield"}]},
    },
    {"Supplier": "100002", "BusinessPartnerFullName": "Blocked Ltd", "BusinessPartnerIsBlocked": "X"},
    {"Supplier": "100003"},
]


@pytest.fixture
def supplier_sync(settings, db, oracle, fake_erp):
    settings.erp_page_size = 2
    client = ErpClient(settings, transport=httpx.MockTransport(fake_erp.handler))
    return SupplierMasterSync(db, settings, oracle, client)


@pytest.mark.asyncio
async def test_sync_pages_and_counts_failures(supplier_sync, fake_erp, db):
    fake_erp.suppliers = list(SUPPLIER_ROWS)

    result = await supplier_sync.sync("full")

    assert result.total_synced == 1
    assert result.failed == 1
    assert result.embeddings_refreshed == 1
    assert [r.url.params["$skip"] for r in fake_erp.requests] == ["0", "2"]
    with db.get_session() as session:
        supplier = session.get(SupplierModel, "0000100001")
        assert supplier.city == "Springfield"
        assert supplier.embedding is not None
        assert session.get(SupplierModel, "0000100002") is None


@pytest.mark.asyncio
async def test_delta_sync_defaults_to_last_change(supplier_sync, fake_erp):
    fake_erp.suppliers = SUPPLIER_ROWS[:1]
    await supplier_sync.sync("full")
    fake_erp.requests.clear()

    await supplier_sync.sync("delta")

    assert "datetime'2024-01-01T00:00:00'" in fake_erp.requests[0].url.params["$filter"]


@pytest.mark.asyncio
async def test_sync_rejects_bad_input(supplier_sync):
    with pytest.raises(InputError):
        await supplier_sync.sync("sideways")
    with pytest.raises(InputError):
        await supplier_sync.sync("delta", since="yesterday-ish")


@pytest.mark.asyncio
async def test_sync_erp_down(supplier_sync, fake_erp):
    fake_erp.fail_reads = True
    with pytest.raises(DownstreamError):
        await supplier_sync.sync("full")


@pytest.mark.asyncio
async def test_refresh_only_touches_timestamps_when_oracle_down(assistant, add_supplier, embedder, db):
    add_supplier("0000100001", "Acme Corp", None)
    embedder.fail = True

    result = await assistant.refresh_supplier_embeddings()

    assert not result.refreshed
    assert result.count == 1
    with db.get_session() as session:
        supplier = session.get(SupplierModel, "0000100001")
        assert supplier.embedding is None
        assert supplier.last_refreshed_at is not None


@pytest.mark.asyncio
async def test_refresh_skips_current_embeddings_unless_forced(assistant, add_supplier, embedder):
    add_supplier("0000100001", "Acme Corp", AXIS_X, last_refreshed_at=datetime.utcnow())
    embedder.set("Acme Corp", AXIS_Y)

    assert (await assistant.refresh_supplier_embeddings()).count == 0
    forced = await assistant.refresh_supplier_embeddings(force=True)

    assert forced.refreshed
    assert forced.count == 1
    assert embedder.calls == [["Acme Corp"]]


# ============================================================================
# Embedders and oracle
# ============================================================================

class RecordingModel:
    """Stands in for a loaded SentenceTransformer and records encode calls"""

    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def encode(self, texts, **kwargs):
        self.calls.append((texts, kwargs))
        return np.array(self.rows[:len(texts)], dtype=np.float64)


@pytest.mark.asyncio
async def test_sentence_transformer_embedder():
    model = RecordingModel([[3.0, 4.0], [0.0, 2.0]])
    embedder = SentenceTransformerEmbedder("all-MiniLM-L6-v2", model=model)

    vecs = await embedder.embed_batch(["ACME Corp", "Globex Industries"])

    assert vecs.dtype == np.float32
    assert np.allclose(vecs, [[0.6, 0.8], [0.0, 1.0]])
    texts, kwargs = model.calls[0]
    assert texts == ["ACME Corp", "Globex Industries"]
    assert kwargs == {"normalize_embeddings": True, "show_progress_bar": False}

    empty = await embedder.embed_batch([])
    assert empty.size == 0
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_sentence_transformer_model_load_failure(monkeypatch):
    def broken(name):
        raise OSError(f"model {name} not found")

    monkeypatch.setattr("invoice_assistant.similarity.embedders.SentenceTransformer", broken)
    embedder = SentenceTransformerEmbedder("missing-model")

    with pytest.raises(OracleError):
        await embedder.embed_batch(["a"])


def embedding_settings() -> Settings:
    return Settings(embeddings_provider="http", embeddings_url="http://embed.test/v1/embeddings", embeddings_api_key="secret")


@pytest.mark.asyncio
async def test_http_embedding_client():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [{"embedding": [3.0, 4.0]}, {"embedding": [0.0, 2.0]}]})

    client = HttpEmbeddingClient(embedding_settings(), transport=httpx.MockTransport(handler))
    vecs = await client.embed_batch(["a", "b"])

    assert np.allclose(vecs, [[0.6, 0.8], [0.0, 1.0]])
    assert seen[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_http_embedding_client_failures():
    down = HttpEmbeddingClient(
        embedding_settings(), transport=httpx.MockTransport(lambda r: httpx.Response(503))
    )
    with pytest.raises(OracleError):
        await down.embed_batch(["a"])

    short = HttpEmbeddingClient(
        embedding_settings(),
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": []})),
    )
    with pytest.raises(OracleError):
        await short.embed_batch(["a"])


def test_get_embedder_defaults_to_sentence_transformers():
    assert Settings().embeddings_provider == "sentence-transformers"
    fallback = get_embedder(Settings(embeddings_provider="mystery", sentence_model="paraphrase-MiniLM-L3-v2"))
    assert isinstance(fallback, SentenceTransformerEmbedder)
    assert fallback.model_name == "paraphrase-MiniLM-L3-v2"
    with pytest.raises(ValueError):
        get_embedder(Settings(embeddings_provider="http"))


def test_cosine_is_clamped():
    assert cosine([1, 0], [-1, 0]) == 0.0
    assert cosine([1, 0], [0, 0]) == 0.0
    assert cosine([1, 0], [1, 0, 0]) == 0.0
    assert cosine(AXIS_X, vec_with_score(0.8)) == pytest.approx(0.8)


def test_rank_orders_and_skips_unusable(embedder):
    oracle = SimilarityOracle(embedder)
    candidates = [
        ("low", vec_with_score(0.5)),
        ("tie-a", vec_with_score(0.9)),
        ("missing", None),
        ("short", [1.0, 0.0]),
        ("tie-b", vec_with_score(0.9)),
        ("top", AXIS_X),
    ]

    ranked = oracle.rank(AXIS_X, candidates, top_k=3)

    assert [key for key, _ in ranked] == ["top", "tie-a", "tie-b"]
    assert ranked[0][1] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_oracle_wraps_provider_errors(embedder):
    embedder.fail = True
    with pytest.raises(OracleError):
        await SimilarityOracle(embedder).embed("anything")

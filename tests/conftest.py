"""
Shared fixtures: a fresh SQLite database per test, a table-driven embedder
with exact cosine scores, and a fake ERP behind httpx.MockTransport.
"""
import json
import math
import os
import sys
from typing import Any, Dict, List

import httpx
import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, POLineModel, SupplierModel
from invoice_assistant.erp import ErpClient
from invoice_assistant.models.schemas import CreateInvoiceRequest
from invoice_assistant.service import InvoiceAssistant
from invoice_assistant.similarity import SimilarityOracle


# ============================================================================
# Vectors
# ============================================================================

def vec_with_score(score: float) -> List[float]:
    """Unit vector whose cosine with [1, 0, 0] is exactly `score`"""
    return [score, math.sqrt(1.0 - score * score), 0.0]


AXIS_X = [1.0, 0.0, 0.0]
AXIS_Y = [0.0, 1.0, 0.0]
AXIS_Z = [0.0, 0.0, 1.0]


class TableEmbedder:
    """Looks texts up in a table; unknown texts embed to the zero vector"""

    name = "table"

    def __init__(self, dim: int = 3):
        self.dim = dim
        self.table: Dict[str, List[float]] = {}
        self.calls: List[List[str]] = []
        self.fail = False
        self.on_embed = None

    def set(self, text: str, vector: List[float]) -> None:
        self.table[text] = vector

    async def embed_batch(self, texts):
        self.calls.append(list(texts))
        if self.on_embed:
            self.on_embed()
        if self.fail:
            raise RuntimeError("embedding service down")
        return np.array([self.table.get(t, [0.0] * self.dim) for t in texts], dtype=np.float64)


# ============================================================================
# Fake ERP
# ============================================================================

class FakeErp:
    """Answers the OData paths the ErpClient calls, in on-premise (V2) shape"""

    def __init__(self):
        self.suppliers: List[Dict[str, Any]] = []
        self.po_items: List[Dict[str, Any]] = []
        self.goods_receipts: List[Dict[str, Any]] = []
        self.post_status = 201
        self.post_body: Dict[str, Any] = {"d": {"SupplierInvoice": "5105600001", "FiscalYear": "2024"}}
        self.fail_reads = False
        self.fail_posts = False
        self.on_read = None
        self.requests: List[httpx.Request] = []
        self.posted: List[Dict[str, Any]] = []

    def _page(self, rows, request):
        top = int(request.url.params.get("$top", len(rows) or 1))
        skip = int(request.url.params.get("$skip", 0))
        return {"d": {"results": rows[skip:skip + top]}}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST":
            if self.fail_posts:
                raise httpx.ConnectError("connection refused", request=request)
            self.posted.append(json.loads(request.content))
            return httpx.Response(self.post_status, json=self.post_body)

        if self.fail_reads:
            raise httpx.ConnectTimeout("timed out", request=request)
        if self.on_read:
            self.on_read()
        if path.endswith("/A_BusinessPartner"):
            return httpx.Response(200, json=self._page(self.suppliers, request))
        if path.endswith("/A_PurchaseOrderItem"):
            return httpx.Response(200, json={"d": {"results": self.po_items}})
        if path.endswith("/A_MaterialDocumentItem"):
            return httpx.Response(200, json={"d": {"results": self.goods_receipts}})
        return httpx.Response(404, json={"error": {"message": {"value": "not found"}}})


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path}/test.db", erp_base_url="http://erp.test/odata")


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def embedder():
    return TableEmbedder()


@pytest.fixture
def oracle(embedder):
    return SimilarityOracle(embedder)


@pytest.fixture
def fake_erp():
    return FakeErp()


@pytest.fixture
def erp(settings, fake_erp):
    return ErpClient(settings, transport=httpx.MockTransport(fake_erp.handler))


@pytest.fixture
def assistant(settings, db, oracle, erp):
    return InvoiceAssistant(settings=settings, db=db, oracle=oracle, erp=erp)


# ============================================================================
# Builders
# ============================================================================

def extraction(**overrides) -> Dict[str, Any]:
    data = {
        "documentNumber": "INV-1001",
        "documentDate": "2024-01-15",
        "currencyCode": "USD",
        "grossAmount": 176.0,
        "netAmount": 160.0,
        "taxAmount": 16.0,
        "senderName": "Acme Corp",
        "senderCity": "Springfield",
        "senderState": "IL",
        "senderPostalCode": "62701",
        "purchaseOrderNumber": "4500000001",
        "companyCode": "1000",
        "items": [
            {"description": "Steel bolts", "quantity": 5, "unitPrice": 20, "netAmount": 100, "unitOfMeasure": "EA"},
            {"description": "Steel bolts M8", "quantity": 3, "unitPrice": 20, "netAmount": 60, "unitOfMeasure": "EA"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_invoice(assistant):
    def _make(**overrides) -> str:
        response = assistant.create_invoice(CreateInvoiceRequest(extraction=extraction(**overrides)))
        return response.invoice_id
    return _make


@pytest.fixture
def add_supplier(db):
    def _add(number: str, name: str, embedding, **fields) -> None:
        with db.get_session() as session:
            session.add(SupplierModel(
                supplier_number=number,
                supplier_name=name,
                embedding=embedding,
                is_active=fields.pop("is_active", True),
                alt_names=fields.pop("alt_names", []),
                **fields,
            ))
    return _add


@pytest.fixture
def add_po_line(db):
    def _add(invoice_id: str, item: str, embedding, **fields) -> str:
        with db.get_session() as session:
            po_line = POLineModel(
                invoice_id=invoice_id,
                purchase_order=fields.pop("purchase_order", "4500000001"),
                purchase_order_item=item,
                embedding=embedding,
                order_quantity=fields.pop("order_quantity", 10.0),
                gr_quantity_posted=fields.pop("gr_quantity_posted", 0.0),
                applied_gr_documents=[],
                **fields,
            )
            session.add(po_line)
            session.flush()
            return po_line.id
    return _add

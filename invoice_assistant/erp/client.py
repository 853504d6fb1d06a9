"""
ERP HTTP client (OData APIs for business partners, purchase orders,
material documents and supplier invoices)
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
import httpx

from invoice_assistant.config import Settings
from invoice_assistant.errors import ErpError
from .adapters import ErpAdapter, get_adapter, pad_number

logger = logging.getLogger(__name__)

SUPPLIER_FIELDS = ",".join([
    "Supplier",
    "BusinessPartnerFullName",
    "BusinessPartnerName",
    "SearchTerm1",
    "SearchTerm2",
    "LastChangeDate",
    "CreationDate",
    "BusinessPartnerIsBlocked",
    "OrganizationBPName1",
    "OrganizationBPName2",
])


class ErpClient:
    """
    Thin async client; every method returns records already mapped by the
    configured adapter. Transport failures, timeouts and non-2xx replies on
    reads raise ErpError.
    """

    def __init__(
        self,
        settings: Settings,
        adapter: ErpAdapter = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.settings = settings
        self.adapter = adapter or get_adapter(settings.erp_kind)
        self.base_url = settings.erp_base_url.rstrip("/")
        self.page_size = settings.erp_page_size
        self.transport = transport
        self.auth = (
            (settings.erp_username, settings.erp_password)
            if settings.erp_username else None
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=self.auth,
            timeout=self.settings.erp_timeout_seconds,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    def _params(self, extra: Dict[str, Any] = None) -> Dict[str, Any]:
        params = {"sap-client": self.settings.erp_client, "$format": "json"}
        params.update({k: v for k, v in (extra or {}).items() if v is not None})
        return params

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(path, params=self._params(params))
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ErpError(
                f"ERP returned {e.response.status_code} for {path}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ErpError(f"ERP request to {path} failed: {e}") from e

    async def fetch_suppliers(self, mode: str = "delta", since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Page through the business partner API; blocked partners are dropped"""
        suppliers = []
        skip = 0
        while True:
            data = await self._get(self.adapter.supplier_path, {
                "$select": SUPPLIER_FIELDS,
                "$filter": self.adapter.supplier_filter(mode, since),
                "$expand": "to_BusinessPartnerAddress",
                "$top": self.page_size,
                "$skip": skip,
            })
            rows = self.adapter.results(data)
            for row in rows:
                mapped = self.adapter.map_supplier(row)
                if mapped:
                    suppliers.append(mapped)
            logger.info(f"Fetched supplier page at offset {skip}: {len(rows)} rows")
            if len(rows) < self.page_size:
                break
            skip += self.page_size
        return suppliers

    async def fetch_po_items(self, po_number: str) -> List[Dict[str, Any]]:
        padded = pad_number(po_number)
        logger.info(f"Fetching PO items for PO {padded}")
        data = await self._get(self.adapter.po_item_path, {
            "$filter": f"PurchaseOrder eq '{padded}'",
        })
        return [self.adapter.map_po_item(row) for row in self.adapter.results(data)]

    async def fetch_goods_receipts(self, po_number: str) -> List[Dict[str, Any]]:
        if not self.adapter.goods_receipt_path:
            logger.info(f"Goods receipt fetch not available for {self.adapter.kind} ERP")
            return []
        padded = pad_number(po_number)
        data = await self._get(self.adapter.goods_receipt_path, {
            "$filter": self.adapter.goods_receipt_filter(padded),
        })
        return [self.adapter.map_goods_receipt(row) for row in self.adapter.results(data)]

    async def post_supplier_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post a supplier invoice.

        Returns the parsed response with return_type "S" on success or "E"
        when the ERP rejected the document. Raises ErpError when the ERP
        could not be reached.
        """
        body = self.adapter.posting_body(payload)
        path = self.adapter.posting_path
        try:
            async with self._client() as client:
                response = await client.post(
                    path,
                    params=self._params(),
                    json=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"ERP posting call failed: {e}")
            raise ErpError(f"ERP posting call failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            return self.adapter.parse_posting_response(data)

        logger.error(f"ERP rejected posting with HTTP {response.status_code}")
        return self.adapter.parse_error(data, f"ERP returned HTTP {response.status_code}")

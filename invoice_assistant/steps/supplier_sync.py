"""
Supplier master sync - pull business partners from the ERP, upsert them in
chunks, then refresh stale embeddings.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, SupplierModel
from invoice_assistant.erp import ErpClient
from invoice_assistant.erp.adapters import parse_odata_date
from invoice_assistant.errors import DownstreamError, ErpError, InputError, OracleError
from invoice_assistant.models.schemas import EmbeddingRefreshResult, SupplierSyncResult
from invoice_assistant.similarity import SimilarityOracle

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 100
SYNC_MODES = ("delta", "full")


def supplier_text(record: SupplierModel) -> str:
    names = [record.supplier_name or ""] + list(record.alt_names or [])
    return " ".join(n for n in names if n).strip()


class SupplierMasterSync:
    def __init__(self, db: Database, settings: Settings, oracle: SimilarityOracle, erp: ErpClient):
        self.db = db
        self.settings = settings
        self.oracle = oracle
        self.erp = erp

    def _default_since(self) -> Optional[datetime]:
        with self.db.get_session() as session:
            return session.query(func.max(SupplierModel.last_changed_at)).scalar()

    def _upsert_chunk(self, session: Session, chunk: List[Dict[str, Any]]) -> Tuple[int, int]:
        synced = failed = 0
        for record in chunk:
            number = record.get("supplier_number")
            if not number or not record.get("supplier_name"):
                logger.warning(f"Skipping supplier record without number or name: {number}")
                failed += 1
                continue

            existing = session.get(SupplierModel, number)
            if existing is None:
                session.add(SupplierModel(**record))
            else:
                if (existing.supplier_name != record["supplier_name"]
                        or list(existing.alt_names or []) != record.get("alt_names", [])):
                    # name text changed, the stored vector no longer describes it
                    existing.embedding = None
                for key, value in record.items():
                    setattr(existing, key, value)
            synced += 1
        return synced, failed

    async def sync(self, mode: str = "delta", since: Optional[str] = None) -> SupplierSyncResult:
        logger.info("=" * 50)
        logger.info(f"STEP: SUPPLIER_SYNC - mode={mode}")
        logger.info("=" * 50)
        started = time.monotonic()

        mode = (mode or "delta").lower()
        if mode not in SYNC_MODES:
            raise InputError(f"Invalid sync mode: {mode}")
        since_dt = parse_odata_date(since) if since else None
        if since and since_dt is None:
            raise InputError(f"Invalid since date: {since}")
        if mode == "delta" and since_dt is None:
            since_dt = self._default_since()

        try:
            records = await self.erp.fetch_suppliers(mode, since_dt)
        except ErpError as e:
            logger.error(f"Supplier fetch failed: {e}")
            raise DownstreamError(f"Supplier master fetch failed: {e}") from e
        logger.info(f"Fetched {len(records)} supplier records (since={since_dt})")

        synced = failed = 0
        size = max(1, self.settings.supplier_sync_chunk_size)
        for offset in range(0, len(records), size):
            chunk = records[offset:offset + size]
            try:
                with self.db.get_session() as session:
                    ok, bad = self._upsert_chunk(session, chunk)
                synced += ok
                failed += bad
            except SQLAlchemyError as e:
                logger.error(f"Supplier chunk at offset {offset} failed: {e}")
                failed += len(chunk)

        refresh = await self.refresh_embeddings()
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Supplier sync complete: {synced} synced, {failed} failed, "
            f"{refresh.count} embeddings refreshed in {duration_ms}ms"
        )
        return SupplierSyncResult(
            total_synced=synced,
            failed=failed,
            embeddings_refreshed=refresh.count if refresh.refreshed else 0,
            duration_ms=duration_ms,
        )

    async def refresh_embeddings(self, force: bool = False) -> EmbeddingRefreshResult:
        """
        Recompute embeddings that are missing or older than the configured max
        age. When the oracle is down only last_refreshed_at is touched.
        """
        cutoff = datetime.utcnow() - timedelta(days=self.settings.supplier_embedding_max_age_days)
        with self.db.get_session() as session:
            suppliers = session.query(SupplierModel).all()
            stale = [
                s for s in suppliers
                if force or not s.embedding or s.last_refreshed_at is None or s.last_refreshed_at < cutoff
            ]
            if not stale:
                return EmbeddingRefreshResult(refreshed=True, count=0, message="All supplier embeddings are current")

            logger.info(f"Refreshing {len(stale)} supplier embeddings")
            now = datetime.utcnow()
            try:
                for offset in range(0, len(stale), EMBED_BATCH_SIZE):
                    batch = stale[offset:offset + EMBED_BATCH_SIZE]
                    vectors = await self.oracle.embed_many([supplier_text(s) for s in batch])
                    for record, vector in zip(batch, vectors):
                        record.embedding = vector
                        record.last_refreshed_at = now
            except OracleError as e:
                logger.warning(f"Embedding refresh degraded, timestamps only: {e}")
                for record in stale:
                    record.last_refreshed_at = now
                return EmbeddingRefreshResult(
                    refreshed=False, count=len(stale),
                    message=f"Embedding service unavailable; {len(stale)} timestamps updated",
                )

            return EmbeddingRefreshResult(
                refreshed=True, count=len(stale), message=f"Refreshed {len(stale)} supplier embeddings"
            )

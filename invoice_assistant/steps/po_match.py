"""
PO Line Matcher - match invoice lines to cached PO lines by text
similarity, consolidate duplicate matches and evaluate the three-way match.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, InvoiceModel, POLineModel, log_process, new_id
from invoice_assistant.erp import ErpClient
from invoice_assistant.erp.adapters import get_adapter, pad_number, parse_date
from invoice_assistant.errors import DownstreamError, ErpError, InputError, OracleError
from invoice_assistant.matching.consolidation import consolidate_lines
from invoice_assistant.matching.lines import (
    invoice_line_text, match_rate_confidence, po_item_text, po_line_text, po_match_status
)
from invoice_assistant.matching.three_way import ThreeWayMatchEvaluator
from invoice_assistant.models.schemas import (
    ConsolidationResult, EmbeddingRefreshResult, GoodsReceiptResult, LineMatchDetail,
    POItemsUpsertResult, POMatchResult, POSyncResult,
)
from invoice_assistant.models.state import (
    InvoiceStatus, InvoiceStep, LineMatchStatus, MatchConfidence, POMatchStatus, ProcessResult
)
from invoice_assistant.similarity import SimilarityOracle
from .base import load_invoice, record_failure

logger = logging.getLogger(__name__)

LOG_STEP = "PO_MATCH"


def _same_po(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and pad_number(a) == pad_number(b)


class POLineMatcher:
    def __init__(self, db: Database, settings: Settings, oracle: SimilarityOracle, erp: ErpClient):
        self.db = db
        self.settings = settings
        self.oracle = oracle
        self.erp = erp

    # ------------------------------------------------------------------
    # PO line cache
    # ------------------------------------------------------------------

    def _po_lines(self, invoice: InvoiceModel, po_number: str) -> List[POLineModel]:
        return [p for p in invoice.po_lines if _same_po(p.purchase_order, po_number)]

    async def _embed_missing(self, po_lines: List[POLineModel]) -> int:
        targets = [p for p in po_lines if po_line_text(p) and not p.embedding]
        if not targets:
            return 0
        vectors = await self.oracle.embed_many([po_line_text(p) for p in targets])
        for po_line, vector in zip(targets, vectors):
            po_line.embedding = vector
        return len(targets)

    def _apply_goods_receipts(self, invoice: InvoiceModel, receipts: List[Dict[str, Any]]) -> GoodsReceiptResult:
        applied = skipped = 0
        for receipt in receipts:
            po_line = next(
                (
                    p for p in invoice.po_lines
                    if _same_po(p.purchase_order, receipt.get("purchase_order"))
                    and str(p.purchase_order_item).lstrip("0") == str(receipt.get("purchase_order_item")).lstrip("0")
                ),
                None,
            )
            if po_line is None:
                logger.warning(
                    f"PO line not found for goods receipt: "
                    f"{receipt.get('purchase_order')}-{receipt.get('purchase_order_item')}"
                )
                skipped += 1
                continue

            quantity = receipt.get("quantity") or 0.0
            document = receipt.get("material_document")
            already = list(po_line.applied_gr_documents or [])
            if quantity <= 0 or (document and document in already):
                skipped += 1
                continue

            po_line.gr_quantity_posted = (po_line.gr_quantity_posted or 0.0) + quantity
            po_line.open_quantity = (po_line.order_quantity or 0.0) - po_line.gr_quantity_posted
            if document:
                po_line.applied_gr_documents = already + [document]
                po_line.last_gr_document = document
            po_line.last_gr_date = parse_date(receipt.get("posting_date")) or po_line.last_gr_date
            applied += 1
        return GoodsReceiptResult(applied=applied, skipped=skipped)

    def _upsert_items(
        self,
        invoice: InvoiceModel,
        items: List[Dict[str, Any]],
        po_number: Optional[str] = None,
        vectors: Optional[List[Optional[List[float]]]] = None,
    ) -> int:
        """Insert or update cached PO lines keyed by (PO, item); returns the number written"""
        existing = {(pad_number(p.purchase_order), p.purchase_order_item): p for p in invoice.po_lines}
        vectors = vectors or [None] * len(items)
        written = 0

        for item, vector in zip(items, vectors):
            po = item.get("purchase_order") or po_number
            if not po or not item.get("purchase_order_item"):
                logger.warning(f"PO item without purchase order or item number skipped: {item}")
                continue
            key = (pad_number(po), item["purchase_order_item"])
            po_line = existing.get(key)
            if po_line is None:
                # explicit id so matches can reference the line before the session flushes
                po_line = POLineModel(
                    id=new_id(), invoice_id=invoice.id, gr_quantity_posted=0.0, applied_gr_documents=[]
                )
                invoice.po_lines.append(po_line)
                existing[key] = po_line
                fields = item
            else:
                # received quantities are owned by goods receipt sync
                fields = {k: v for k, v in item.items() if k != "open_quantity"}
            text = po_line_text(po_line)
            for k, v in fields.items():
                setattr(po_line, k, v)
            po_line.purchase_order = key[0]
            po_line.open_quantity = (po_line.order_quantity or 0.0) - (po_line.gr_quantity_posted or 0.0)
            if vector is not None:
                po_line.embedding = vector
            elif po_line_text(po_line) != text:
                po_line.embedding = None
            written += 1
        return written

    async def _embed_items(self, items: List[Dict[str, Any]]) -> List[Optional[List[float]]]:
        texts = [po_item_text(item) for item in items]
        wanted = [t for t in texts if t]
        if not wanted:
            return [None] * len(items)
        try:
            vectors = iter(await self.oracle.embed_many(wanted))
        except OracleError as e:
            logger.warning(f"PO line embedding refresh skipped: {e}")
            return [None] * len(items)
        return [next(vectors) if t else None for t in texts]

    async def _fetch(self, po_number: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], List]:
        """ERP reads and embeddings for one PO; touches no database state"""
        items = await self.erp.fetch_po_items(po_number)
        receipts = await self.erp.fetch_goods_receipts(po_number)
        vectors = await self._embed_items(items)
        return items, receipts, vectors

    def _store(self, invoice: InvoiceModel, po_number: str, fetched) -> POSyncResult:
        items, receipts, vectors = fetched
        self._upsert_items(invoice, items, po_number, vectors)
        gr = self._apply_goods_receipts(invoice, receipts)
        logger.info(f"PO {po_number}: {len(items)} items synced, {gr.applied} goods receipts applied")
        return POSyncResult(items_synced=len(items), gr_records_synced=gr.applied)

    async def sync_from_source(self, invoice_id: str, po_number: Optional[str] = None) -> POSyncResult:
        """Refresh the invoice's PO line cache and goods receipts from the ERP"""
        logger.info("=" * 50)
        logger.info(f"STEP: PO_SYNC - Refreshing PO lines for invoice {invoice_id}")
        logger.info("=" * 50)
        with self.db.get_session() as session:
            po = po_number or load_invoice(session, invoice_id).purchase_order_number
        if not po:
            raise InputError("po_number is required when the invoice carries none")

        try:
            fetched = await self._fetch(po)
        except ErpError as e:
            record_failure(self.db, invoice_id, "PO_SYNC", f"PO sync failed: {e}")
            raise DownstreamError(f"PO sync failed: {e}") from e

        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            result = self._store(invoice, po, fetched)
            log_process(
                session, invoice.id, "PO_SYNC", "COMPLETED", ProcessResult.SUCCESS,
                f"Synced {result.items_synced} PO lines and {result.gr_records_synced} goods receipts",
                result.model_dump(),
            )
            return result

    async def upsert_po_items(
        self, invoice_id: str, items: List[Dict[str, Any]], system_kind: Optional[str] = None
    ) -> POItemsUpsertResult:
        """Cache raw ERP purchase order items against an invoice"""
        if not items:
            raise InputError("items are required")
        adapter = get_adapter(system_kind or self.settings.erp_kind)
        mapped = [adapter.map_po_item(raw) for raw in items]

        with self.db.get_session() as session:
            load_invoice(session, invoice_id)
        vectors = await self._embed_items(mapped)

        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            upserted = self._upsert_items(invoice, mapped, invoice.purchase_order_number, vectors)
            result = POItemsUpsertResult(upserted=upserted, skipped=len(mapped) - upserted)
            log_process(
                session, invoice.id, "PO_UPSERT", "COMPLETED", ProcessResult.SUCCESS,
                f"Upserted {upserted} PO lines", result.model_dump(),
            )
        logger.info(f"Invoice {invoice_id}: upserted {upserted} PO lines ({adapter.kind})")
        return result

    async def refresh_po_embeddings(self, invoice_id: Optional[str] = None) -> EmbeddingRefreshResult:
        """Re-embed cached PO lines for one invoice, or every cached line when no invoice is given"""
        with self.db.get_session() as session:
            if invoice_id:
                po_lines = load_invoice(session, invoice_id).po_lines
            else:
                po_lines = session.query(POLineModel).all()
            targets = [(p.id, po_line_text(p)) for p in po_lines if po_line_text(p)]
        if not targets:
            return EmbeddingRefreshResult(refreshed=True, count=0, message="No PO lines to embed")

        try:
            vectors = await self.oracle.embed_many([text for _, text in targets])
        except OracleError as e:
            logger.warning(f"PO line embedding refresh failed: {e}")
            return EmbeddingRefreshResult(
                refreshed=False, count=0, message=f"Embedding service unavailable: {e}"
            )

        with self.db.get_session() as session:
            for (po_line_id, _), vector in zip(targets, vectors):
                po_line = session.get(POLineModel, po_line_id)
                if po_line is not None:
                    po_line.embedding = vector
        logger.info(f"Refreshed {len(targets)} PO line embeddings")
        return EmbeddingRefreshResult(
            refreshed=True, count=len(targets), message=f"Refreshed {len(targets)} PO line embeddings"
        )

    def upsert_goods_receipts(self, invoice_id: str, receipts: List[Dict[str, Any]]) -> GoodsReceiptResult:
        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            result = self._apply_goods_receipts(invoice, receipts)
            log_process(
                session, invoice.id, "GR_SYNC", "COMPLETED", ProcessResult.SUCCESS,
                f"Applied {result.applied} goods receipts, skipped {result.skipped}",
                result.model_dump(),
            )
            return result

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _skip(self, session: Session, invoice: InvoiceModel, status: POMatchStatus, message: str) -> POMatchResult:
        invoice.step = InvoiceStep.PO_MATCH_SKIPPED.value
        invoice.po_match_status = POMatchStatus.NO_MATCH.value
        invoice.message = message
        log_process(session, invoice.id, LOG_STEP, status, ProcessResult.PARTIAL, message)
        logger.info(f"Invoice {invoice.id}: {message}")
        total = len(invoice.lines)
        return POMatchResult(
            total_lines=total,
            matched_items=0,
            unmatched_items=total,
            confidence=MatchConfidence.NONE.value,
            status=status.value,
            message=message,
        )

    async def _match_pass(self, invoice: InvoiceModel, po_lines: List[POLineModel]) -> ThreeWayMatchEvaluator:
        threshold = self.settings.po_match_threshold
        evaluator = ThreeWayMatchEvaluator()
        candidates = [(p, p.embedding) for p in po_lines if p.embedding]

        queryable = [line for line in invoice.lines if invoice_line_text(line)]
        for line in invoice.lines:
            if line not in queryable:
                logger.warning(f"Line {line.line_number} has no material or description, skipped")
                line.match_status = LineMatchStatus.NO_MATCH.value
                line.matched_po_line_id = None
                line.match_score = None

        vectors = await self.oracle.embed_many([invoice_line_text(l) for l in queryable])
        for line, vector in zip(queryable, vectors):
            ranked = self.oracle.rank(vector, candidates, self.settings.po_match_top_k)
            if not ranked:
                line.match_status = LineMatchStatus.NO_MATCH.value
                line.matched_po_line_id = None
                line.match_score = None
                continue

            best, score = ranked[0]
            line.match_score = score
            if score >= threshold:
                line.match_status = LineMatchStatus.MATCHED.value
                line.matched_po_line_id = best.id
                evaluator.observe(best)
                logger.info(f"Line {line.line_number} matched PO item {best.purchase_order_item} ({score:.4f})")
            else:
                line.match_status = LineMatchStatus.NO_MATCH.value
                line.matched_po_line_id = None
                logger.warning(
                    f"Line {line.line_number} best PO item {best.purchase_order_item} "
                    f"below threshold ({score:.4f} < {threshold})"
                )
        return evaluator

    async def match_lines(
        self,
        invoice_id: str,
        po_number: Optional[str] = None,
        fetch_from_source: bool = True,
    ) -> POMatchResult:
        logger.info("=" * 50)
        logger.info(f"STEP: PO_MATCH - Matching lines for invoice {invoice_id}")
        logger.info("=" * 50)
        try:
            with self.db.get_session() as session:
                invoice = load_invoice(session, invoice_id)
                return await self._match_in_session(session, invoice, po_number, fetch_from_source)
        except OracleError as e:
            record_failure(self.db, invoice_id, LOG_STEP, f"PO matching failed: {e}")
            raise DownstreamError(f"PO matching failed: {e}") from e

    async def _match_in_session(
        self,
        session: Session,
        invoice: InvoiceModel,
        po_number: Optional[str],
        fetch_from_source: bool,
    ) -> POMatchResult:
        po = po_number or invoice.purchase_order_number
        if not po:
            return self._skip(session, invoice, POMatchStatus.NO_PO, "No purchase order number; PO matching skipped")
        if not invoice.purchase_order_number:
            invoice.purchase_order_number = po

        if fetch_from_source:
            try:
                fetched = await self._fetch(po)
                self._store(invoice, po, fetched)
            except ErpError as e:
                logger.warning(f"PO refresh from ERP failed, matching against cached lines: {e}")

        if not invoice.lines:
            return self._skip(session, invoice, POMatchStatus.NO_ITEMS, f"Invoice has no lines to match against PO {po}")

        po_lines = self._po_lines(invoice, po)
        await self._embed_missing(po_lines)
        evaluator = await self._match_pass(invoice, po_lines)

        outcome = consolidate_lines(invoice.lines)
        for line in outcome.deleted:
            invoice.lines.remove(line)
        session.flush()

        lines = invoice.lines
        total = len(lines)
        matched = sum(1 for l in lines if l.match_status == LineMatchStatus.MATCHED.value)
        rate = matched / total if total else 0.0
        confidence = match_rate_confidence(rate)
        status = po_match_status(matched, total)
        by_id = {p.id: p for p in po_lines}

        invoice.po_match_status = status.value
        invoice.po_match_confidence = round(rate * 100, 2)
        invoice.three_way_match_required = evaluator.required
        invoice.three_way_match_status = evaluator.status.value
        invoice.gr_check_passed = evaluator.passed
        invoice.step = InvoiceStep.PO_MATCHED.value
        invoice.status = InvoiceStatus.IN_PROGRESS.value
        invoice.result = (ProcessResult.SUCCESS if status == POMatchStatus.MATCHED else ProcessResult.PARTIAL).value
        message = f"{matched} of {total} lines matched to PO {po} ({rate:.0%})"
        if outcome.groups_consolidated:
            message += f"; {outcome.lines_deleted} duplicate line(s) consolidated"
        if evaluator.required:
            message += f"; 3-way match {evaluator.status.value}"
        invoice.message = message

        matches = [
            LineMatchDetail(
                invoice_line_id=l.id,
                line_number=l.line_number,
                description=l.description,
                po_line_id=l.matched_po_line_id,
                purchase_order_item=by_id[l.matched_po_line_id].purchase_order_item
                if l.matched_po_line_id in by_id else None,
                score=l.match_score or 0.0,
                status=l.match_status,
            )
            for l in lines
        ]
        top = sorted(matches, key=lambda m: m.score, reverse=True)[:5]
        log_process(
            session, invoice.id, LOG_STEP, status, invoice.result, message,
            {
                "po_number": po,
                "match_rate": rate,
                "three_way_match": evaluator.status.value,
                "consolidated_groups": outcome.groups_consolidated,
                "top_matches": [m.model_dump() for m in top],
            },
        )
        logger.info(f"Invoice {invoice.id}: {message}")

        return POMatchResult(
            total_lines=total,
            matched_items=matched,
            unmatched_items=total - matched,
            three_way_match_required=evaluator.required,
            three_way_match_passed=evaluator.passed,
            confidence=confidence.value,
            status=status.value,
            message=message,
            matches=matches,
        )

    def consolidate(self, invoice_id: str) -> ConsolidationResult:
        """Fold lines matched to the same PO line; also run at the end of every matching pass"""
        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            outcome = consolidate_lines(invoice.lines)
            for line in outcome.deleted:
                invoice.lines.remove(line)
            if outcome.groups_consolidated:
                log_process(
                    session, invoice.id, "CONSOLIDATE", "COMPLETED", ProcessResult.SUCCESS,
                    f"Consolidated {outcome.groups_consolidated} group(s), removed {outcome.lines_deleted} line(s)",
                )
            return ConsolidationResult(
                groups_consolidated=outcome.groups_consolidated,
                lines_deleted=outcome.lines_deleted,
            )

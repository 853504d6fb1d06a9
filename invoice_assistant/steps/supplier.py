"""
Supplier Resolver - match the invoice's vendor name against the supplier
master using embedding similarity plus geographic boosts.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoice_assistant.config import Settings
from invoice_assistant.database import Database, InvoiceModel, SupplierModel, log_process
from invoice_assistant.errors import DownstreamError, InputError, OracleError
from invoice_assistant.matching.supplier import (
    InvoiceLocation, ScoredSupplier, apply_boosts, classify, pad_supplier_number
)
from invoice_assistant.models.schemas import (
    SupplierAlternative, SupplierNumberCheck, SupplierResolution, SupplierSelectionRequest
)
from invoice_assistant.models.state import (
    InvoiceStatus, InvoiceStep, MatchConfidence, ProcessResult, SelectionType, SupplierMatchStatus
)
from invoice_assistant.similarity import SimilarityOracle
from .base import load_invoice, record_failure

logger = logging.getLogger(__name__)

LOG_STEP = "SUPPLIER_MATCH"
REVIEW_CONFIDENCES = {MatchConfidence.LOW, MatchConfidence.VERY_LOW, MatchConfidence.NONE}


def _query_for(invoice: InvoiceModel) -> Tuple[Optional[str], InvoiceLocation]:
    """Vendor name falls back to the buyer name; the address follows the name used"""
    if invoice.sender_name and invoice.sender_name.strip():
        return invoice.sender_name.strip(), InvoiceLocation(
            invoice.sender_city, invoice.sender_state, invoice.sender_postal_code
        )
    if invoice.receiver_name and invoice.receiver_name.strip():
        return invoice.receiver_name.strip(), InvoiceLocation(
            invoice.receiver_city, invoice.receiver_state, invoice.receiver_postal_code
        )
    return None, InvoiceLocation()


class SupplierResolver:
    def __init__(self, db: Database, settings: Settings, oracle: SimilarityOracle):
        self.db = db
        self.settings = settings
        self.oracle = oracle

    async def _score(self, session: Session, name: str, location: InvoiceLocation) -> List[ScoredSupplier]:
        query = await self.oracle.embed(name)
        suppliers = session.query(SupplierModel).filter(SupplierModel.is_active.is_(True)).all()
        ranked = self.oracle.rank(
            query,
            [(s, s.embedding) for s in suppliers if s.embedding],
            self.settings.supplier_top_k,
        )
        scored = apply_boosts(location, ranked)
        for s in scored[:3]:
            logger.info(
                f"  {s.supplier_number} {s.supplier_name}: {s.original_score:.4f} -> "
                f"{s.score:.4f} ({s.boost_label})"
            )
        return scored

    def _no_match(self, session: Session, invoice: InvoiceModel, message: str) -> SupplierResolution:
        invoice.step = InvoiceStep.SUPPLIER_MATCH_FAILED.value
        invoice.status = InvoiceStatus.MANUAL_REVIEW.value
        invoice.result = ProcessResult.FAILURE.value
        invoice.matched_supplier_number = None
        invoice.matched_supplier_name = None
        invoice.supplier_match_score = None
        invoice.supplier_boost_factors = None
        invoice.supplier_match_status = SupplierMatchStatus.NO_MATCH.value
        invoice.message = message
        log_process(session, invoice.id, LOG_STEP, SupplierMatchStatus.NO_MATCH, ProcessResult.FAILURE, message)
        logger.warning(f"Invoice {invoice.id}: {message}")
        return SupplierResolution(
            confidence=MatchConfidence.NONE.value,
            status=SupplierMatchStatus.NO_MATCH.value,
            requires_review=True,
            message=message,
        )

    async def _resolve_in_session(self, session: Session, invoice: InvoiceModel) -> SupplierResolution:
        name, location = _query_for(invoice)
        if not name:
            return self._no_match(session, invoice, "No vendor or buyer name on the invoice to match")

        logger.info(f"Resolving supplier for '{name}' (city={location.city}, state={location.state})")
        scored = await self._score(session, name, location)
        if not scored:
            return self._no_match(session, invoice, f"No supplier candidates found for '{name}'")

        best = scored[0]
        confidence, status = classify(best.score)
        alternatives = [
            SupplierAlternative(**s.to_dict())
            for s in scored[1:1 + self.settings.supplier_alternatives]
        ]

        matched = status == SupplierMatchStatus.MATCHED
        invoice.matched_supplier_number = best.supplier_number
        invoice.matched_supplier_name = best.supplier_name
        invoice.supplier_match_score = best.score
        invoice.supplier_match_status = status.value
        invoice.supplier_boost_factors = best.boost_label
        if status == SupplierMatchStatus.NO_MATCH:
            invoice.step = InvoiceStep.SUPPLIER_MATCH_FAILED.value
        else:
            invoice.step = InvoiceStep.SUPPLIER_MATCHED.value
        invoice.status = (InvoiceStatus.IN_PROGRESS if matched else InvoiceStatus.MANUAL_REVIEW).value
        invoice.result = {
            SupplierMatchStatus.MATCHED: ProcessResult.SUCCESS,
            SupplierMatchStatus.MANUAL_REVIEW: ProcessResult.PARTIAL,
        }.get(status, ProcessResult.FAILURE).value

        message = (
            f"Supplier {best.supplier_name} ({best.supplier_number}) "
            f"score {best.score:.2%}, confidence {confidence.value}"
        )
        invoice.message = message

        record = session.get(SupplierModel, best.supplier_number)
        if record is not None:
            record.last_used_at = datetime.utcnow()

        log_process(
            session, invoice.id, LOG_STEP, status, invoice.result, message,
            {
                "query": name,
                "score": best.score,
                "original_score": best.original_score,
                "boost_factors": best.boost_label,
                "confidence": confidence.value,
                "alternatives": [a.supplier_number for a in alternatives],
            },
        )
        logger.info(f"Invoice {invoice.id}: {message} -> {status.value}")

        return SupplierResolution(
            supplier_number=best.supplier_number,
            supplier_name=best.supplier_name,
            score=best.score,
            original_score=best.original_score,
            confidence=confidence.value,
            status=status.value,
            boost_factors=best.boost_label,
            alternatives=alternatives,
            requires_review=confidence in REVIEW_CONFIDENCES,
            message=message,
        )

    async def resolve(self, invoice_id: str) -> SupplierResolution:
        """
        Resolve the invoice to one supplier and persist the winner.

        A missing name or an empty candidate set is a NO_MATCH outcome, not
        an error. An unavailable oracle marks the invoice ERROR and raises.
        """
        logger.info("=" * 50)
        logger.info(f"STEP: SUPPLIER_MATCH - Resolving supplier for invoice {invoice_id}")
        logger.info("=" * 50)
        try:
            with self.db.get_session() as session:
                invoice = load_invoice(session, invoice_id)
                return await self._resolve_in_session(session, invoice)
        except OracleError as e:
            record_failure(self.db, invoice_id, LOG_STEP, f"Supplier matching failed: {e}")
            raise DownstreamError(f"Supplier matching failed: {e}") from e

    async def candidates(self, invoice_id: str, limit: int = 5) -> List[SupplierAlternative]:
        """Scored candidates for review; nothing is persisted"""
        with self.db.get_session() as session:
            invoice = load_invoice(session, invoice_id)
            name, location = _query_for(invoice)
            if not name:
                return []
            try:
                scored = await self._score(session, name, location)
            except OracleError as e:
                raise DownstreamError(f"Supplier candidate search failed: {e}") from e
            return [SupplierAlternative(**s.to_dict()) for s in scored[:limit]]

    def _active_supplier(self, session: Session, supplier_number: str) -> SupplierModel:
        record = session.get(SupplierModel, supplier_number)
        if record is None:
            raise InputError(f"Supplier {supplier_number} not found")
        if not record.is_active:
            raise InputError(f"Supplier {supplier_number} is not active")
        return record

    async def process_selection(self, invoice_id: str, request: SupplierSelectionRequest) -> SupplierResolution:
        """Manual override path: ACCEPT the current match, pick a MANUAL supplier, or UPDATE_NAME and re-resolve"""
        try:
            selection = SelectionType(str(request.selection_type).upper())
        except ValueError:
            raise InputError(f"Invalid selection type: {request.selection_type}")

        logger.info("=" * 50)
        logger.info(f"STEP: SUPPLIER_SELECTION - {selection.value} for invoice {invoice_id}")
        logger.info("=" * 50)

        try:
            with self.db.get_session() as session:
                invoice = load_invoice(session, invoice_id)

                if selection == SelectionType.ACCEPT:
                    return self._accept(session, invoice, request.user)
                if selection == SelectionType.MANUAL:
                    return self._manual(session, invoice, request.supplier_number, request.user)

                if not request.updated_name or not request.updated_name.strip():
                    raise InputError("updated_name is required for UPDATE_NAME")
                previous = invoice.sender_name
                invoice.sender_name = request.updated_name.strip()
                invoice.step = InvoiceStep.SUPPLIER_NAME_UPDATED.value
                log_process(
                    session, invoice.id, "SUPPLIER_SELECTION", SelectionType.UPDATE_NAME, ProcessResult.SUCCESS,
                    f"Vendor name updated from '{previous}' to '{invoice.sender_name}'",
                    {"previous_name": previous, "updated_name": invoice.sender_name},
                    modified_by=request.user,
                )
                return await self._resolve_in_session(session, invoice)
        except OracleError as e:
            record_failure(self.db, invoice_id, LOG_STEP, f"Supplier matching failed: {e}")
            raise DownstreamError(f"Supplier matching failed: {e}") from e

    def _accept(self, session: Session, invoice: InvoiceModel, user: str) -> SupplierResolution:
        if not invoice.matched_supplier_number:
            raise InputError("No supplier match to accept")
        record = self._active_supplier(session, invoice.matched_supplier_number)

        invoice.supplier_match_status = SupplierMatchStatus.ACCEPTED.value
        invoice.step = InvoiceStep.SUPPLIER_ACCEPTED.value
        invoice.status = InvoiceStatus.IN_PROGRESS.value
        invoice.result = ProcessResult.SUCCESS.value
        message = f"Supplier {record.supplier_name} ({record.supplier_number}) accepted by {user}"
        invoice.message = message
        log_process(
            session, invoice.id, "SUPPLIER_SELECTION", SupplierMatchStatus.ACCEPTED, ProcessResult.SUCCESS,
            message, {"supplier_number": record.supplier_number}, modified_by=user,
        )
        confidence, _ = classify(invoice.supplier_match_score or 0.0)
        return SupplierResolution(
            supplier_number=record.supplier_number,
            supplier_name=record.supplier_name,
            score=invoice.supplier_match_score or 0.0,
            original_score=invoice.supplier_match_score or 0.0,
            confidence=confidence.value,
            status=SupplierMatchStatus.ACCEPTED.value,
            boost_factors=invoice.supplier_boost_factors or "NONE",
            message=message,
        )

    def _manual(self, session: Session, invoice: InvoiceModel, supplier_number: str, user: str) -> SupplierResolution:
        if not supplier_number or not str(supplier_number).strip():
            raise InputError("supplier_number is required for MANUAL selection")
        record = self._active_supplier(session, pad_supplier_number(supplier_number))

        invoice.matched_supplier_number = record.supplier_number
        invoice.matched_supplier_name = record.supplier_name
        invoice.supplier_match_score = 1.0
        invoice.supplier_match_status = SupplierMatchStatus.MANUAL.value
        invoice.supplier_boost_factors = "NONE"
        invoice.step = InvoiceStep.SUPPLIER_MANUAL.value
        invoice.status = InvoiceStatus.IN_PROGRESS.value
        invoice.result = ProcessResult.SUCCESS.value
        record.last_used_at = datetime.utcnow()
        message = f"Supplier {record.supplier_name} ({record.supplier_number}) selected manually by {user}"
        invoice.message = message
        log_process(
            session, invoice.id, "SUPPLIER_SELECTION", SupplierMatchStatus.MANUAL, ProcessResult.SUCCESS,
            message, {"supplier_number": record.supplier_number}, modified_by=user,
        )
        return SupplierResolution(
            supplier_number=record.supplier_number,
            supplier_name=record.supplier_name,
            score=1.0,
            original_score=1.0,
            confidence=MatchConfidence.HIGH.value,
            status=SupplierMatchStatus.MANUAL.value,
            message=message,
        )

    def validate_supplier_number(self, supplier_number: Optional[str]) -> SupplierNumberCheck:
        """Existence/active check that reports problems in the result instead of raising"""
        if not supplier_number or not str(supplier_number).strip():
            return SupplierNumberCheck(valid=False, supplier_exists=False, message="Supplier number is required")

        padded = pad_supplier_number(supplier_number)
        try:
            with self.db.get_session() as session:
                record = session.get(SupplierModel, padded)
                if record is None:
                    return SupplierNumberCheck(
                        valid=False, supplier_exists=False, supplier_number=padded,
                        message=f"Supplier {padded} not found",
                    )
                return SupplierNumberCheck(
                    valid=bool(record.is_active),
                    supplier_exists=True,
                    supplier_number=padded,
                    supplier_name=record.supplier_name,
                    is_active=bool(record.is_active),
                    message="Supplier is valid" if record.is_active else f"Supplier {padded} is not active",
                )
        except SQLAlchemyError as e:
            logger.error(f"Supplier lookup failed for {padded}: {e}")
            return SupplierNumberCheck(
                valid=False, supplier_exists=False, supplier_number=padded,
                message=f"Supplier lookup failed: {e}",
            )

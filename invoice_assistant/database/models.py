"""
SQLAlchemy ORM Models for persistence
"""
from sqlalchemy import (
    Column, String, Float, Integer, Date, DateTime, Text, Boolean, JSON,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import uuid

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class InvoiceModel(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=new_id)
    correlation_id = Column(String, index=True)
    source_system = Column(String, default="DOX")
    file_name = Column(String, nullable=True)
    dox_job_id = Column(String, nullable=True)
    extraction_confidence = Column(Float, nullable=True)

    # Lifecycle
    step = Column(String, default="RECEIVED")
    status = Column(String, default="NEW")
    result = Column(String, nullable=True)
    message = Column(Text, nullable=True)

    # Extracted header
    document_number = Column(String, index=True)
    document_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    currency_code = Column(String, nullable=True)
    gross_amount = Column(Float, nullable=True)
    net_amount = Column(Float, nullable=True)
    tax_amount = Column(Float, nullable=True)
    tax_rate = Column(Float, nullable=True)
    payment_terms = Column(String, nullable=True)
    sender_name = Column(String, nullable=True)
    sender_address = Column(String, nullable=True)
    sender_city = Column(String, nullable=True)
    sender_state = Column(String, nullable=True)
    sender_postal_code = Column(String, nullable=True)
    receiver_name = Column(String, nullable=True)
    receiver_address = Column(String, nullable=True)
    receiver_city = Column(String, nullable=True)
    receiver_state = Column(String, nullable=True)
    receiver_postal_code = Column(String, nullable=True)
    purchase_order_number = Column(String, nullable=True, index=True)
    company_code = Column(String, nullable=True)

    # Supplier resolution
    matched_supplier_number = Column(String, nullable=True)
    matched_supplier_name = Column(String, nullable=True)
    supplier_match_score = Column(Float, nullable=True)
    supplier_match_status = Column(String, nullable=True)
    supplier_boost_factors = Column(String, nullable=True)

    # PO matching
    po_match_status = Column(String, nullable=True)
    po_match_confidence = Column(Float, nullable=True)
    three_way_match_required = Column(Boolean, default=False)
    three_way_match_status = Column(String, nullable=True)
    gr_check_passed = Column(Boolean, nullable=True)

    # Approval
    approval_status = Column(String, default="PENDING")
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # ERP posting
    accounting_document = Column(String, nullable=True)
    fiscal_year = Column(String, nullable=True)
    accounting_doc_type = Column(String, nullable=True)
    erp_return_type = Column(String, nullable=True)
    erp_return_message = Column(Text, nullable=True)
    erp_message_class = Column(String, nullable=True)
    posting_retry_count = Column(Integer, default=0)

    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = relationship(
        "InvoiceLineModel", back_populates="invoice",
        cascade="all, delete-orphan", order_by="InvoiceLineModel.line_number"
    )
    po_lines = relationship(
        "POLineModel", back_populates="invoice", cascade="all, delete-orphan"
    )


class InvoiceLineModel(Base):
    __tablename__ = "invoice_lines"

    id = Column(String, primary_key=True, default=new_id)
    invoice_id = Column(String, ForeignKey("invoices.id"), index=True, nullable=False)
    line_number = Column(Integer)
    description = Column(Text, nullable=True)
    material_number = Column(String, nullable=True)
    quantity = Column(Float, nullable=True)
    unit_of_measure = Column(String, nullable=True)
    unit_price = Column(Float, nullable=True)
    net_amount = Column(Float, nullable=True)
    tax_amount = Column(Float, nullable=True)
    tax_code = Column(String, nullable=True)
    match_status = Column(String, default="PENDING")
    # Weak reference: the PO line may be refreshed or removed independently
    matched_po_line_id = Column(String, nullable=True)
    match_score = Column(Float, nullable=True)

    invoice = relationship("InvoiceModel", back_populates="lines")


class POLineModel(Base):
    __tablename__ = "po_lines"
    __table_args__ = (
        UniqueConstraint("purchase_order", "purchase_order_item", "invoice_id", name="uq_po_line_invoice"),
    )

    id = Column(String, primary_key=True, default=new_id)
    invoice_id = Column(String, ForeignKey("invoices.id"), index=True, nullable=False)
    purchase_order = Column(String, index=True)
    purchase_order_item = Column(String)
    item_category = Column(String, nullable=True)
    material = Column(String, nullable=True)
    material_name = Column(Text, nullable=True)
    plant = Column(String, nullable=True)
    order_quantity = Column(Float, default=0.0)
    order_unit = Column(String, nullable=True)
    open_quantity = Column(Float, default=0.0)
    gr_quantity_posted = Column(Float, default=0.0)
    net_price_amount = Column(Float, nullable=True)
    price_unit = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    tax_code = Column(String, nullable=True)
    gl_account = Column(String, nullable=True)
    cost_center = Column(String, nullable=True)
    goods_receipt_expected = Column(Boolean, default=False)
    invoice_expected = Column(Boolean, default=True)
    is_goods_receipt_based = Column(Boolean, default=False)
    last_gr_document = Column(String, nullable=True)
    last_gr_date = Column(Date, nullable=True)
    # material documents already counted into gr_quantity_posted
    applied_gr_documents = Column(JSON, default=list)
    embedding = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    invoice = relationship("InvoiceModel", back_populates="po_lines")


class SupplierModel(Base):
    __tablename__ = "suppliers"

    supplier_number = Column(String, primary_key=True)
    supplier_name = Column(String, nullable=False)
    alt_names = Column(JSON, default=list)
    street = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    embedding = Column(JSON, nullable=True)
    last_refreshed_at = Column(DateTime, nullable=True)
    last_changed_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)


class ProcessLogModel(Base):
    __tablename__ = "process_logs"

    # insertion order breaks timestamp ties
    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String, index=True)
    step = Column(String)
    status = Column(String, nullable=True)
    result = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    modified_by = Column(String, default="SYSTEM")
    timestamp = Column(DateTime, default=datetime.utcnow)

"""
SQLAlchemy ORM models for QuoteDesk RFQ.

JSON columns are not mutation-tracked: services always assign a new object
(usually a deep copy) instead of editing a loaded value in place.
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============

class RFQStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    QUOTES_RECEIVED = "quotes_received"
    EVALUATING = "evaluating"
    NEGOTIATING = "negotiating"
    AWARDED = "awarded"
    CLOSED = "closed"


class SupplierStatus(str, enum.Enum):
    PENDING = "pending"
    INVITED = "invited"
    RESPONDED = "responded"
    SUBMITTED = "submitted"
    SELECTED = "selected"
    REJECTED = "rejected"


class SQRStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVISED = "revised"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class QuoteSource(str, enum.Enum):
    WORKBOOK = "workbook"
    PORTAL = "portal"


# Stored as VARCHAR + CHECK so the same schema runs on Postgres and SQLite.
# values_callable style: persist enum values (lowercase), never names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


RFQStatusType = Enum(
    *enum_values(RFQStatus),
    name='rfqstatus',
    native_enum=False,
    create_constraint=True,
    length=32,
)
SupplierStatusType = Enum(
    *enum_values(SupplierStatus),
    name='supplierstatus',
    native_enum=False,
    create_constraint=True,
    length=32,
)
SQRStatusType = Enum(
    *enum_values(SQRStatus),
    name='sqrstatus',
    native_enum=False,
    create_constraint=True,
    length=32,
)
QuoteSourceType = Enum(
    *enum_values(QuoteSource),
    name='quotesource',
    native_enum=False,
    create_constraint=True,
    length=32,
)


# ============= AUDIT LOG =============

class AuditLog(Base):
    """Audit trail of buyer and supplier actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))
    user_agent = Column(Text)


# ============= RFQ =============

class RFQRequest(Base):
    """Request for Quotation."""
    __tablename__ = "rfq_requests"

    id = Column(Integer, primary_key=True, index=True)
    rfq_number = Column(String(50), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(RFQStatusType, default=RFQStatus.DRAFT.value, nullable=False)
    due_date = Column(DateTime(timezone=True))
    created_by = Column(Integer)

    # Template path: {"sections": [...]} authored by the buyer
    template_structure = Column(JSON)

    # No-template path: raw business objects turned into default sections
    general_details = Column(JSON)
    scope_of_work = Column(Text)
    questionnaire = Column(JSON)  # [{"id", "title", "questions": [...]}]
    items = Column(JSON)  # commercial line items
    terms_and_conditions = Column(JSON)  # [{"id", "term", "description", "target"}]

    negotiation = Column(JSON)  # last negotiation payload
    decision_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    awarded_at = Column(DateTime(timezone=True))

    # Relationships
    suppliers = relationship(
        "RFQSupplier", back_populates="rfq_request", cascade="all, delete-orphan"
    )
    supplier_quote_requests = relationship(
        "SupplierQuoteRequest", back_populates="rfq_request", cascade="all, delete-orphan"
    )
    quote_versions = relationship(
        "SupplierQuoteVersion", back_populates="rfq_request", cascade="all, delete-orphan"
    )


class RFQSupplier(Base):
    """Supplier invited to an RFQ, with its current verification token."""
    __tablename__ = "rfq_suppliers"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfq_requests.id"), nullable=False, index=True)
    supplier_id = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    address = Column(Text)
    contact_person = Column(String(255))
    status = Column(SupplierStatusType, default=SupplierStatus.PENDING.value, nullable=False)

    # Verification token of the most recently generated workbook
    excel_uuid = Column(String(36))
    excel_generated_at = Column(DateTime(timezone=True))

    invited_at = Column(DateTime(timezone=True))
    response_submitted_at = Column(DateTime(timezone=True))
    submission_date = Column(DateTime(timezone=True))
    response_data = Column(JSON)
    latest_quote_version = Column(Integer)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rfq_request = relationship("RFQRequest", back_populates="suppliers")

    __table_args__ = (
        UniqueConstraint('rfq_id', 'supplier_id', name='uq_rfq_supplier'),
    )


class SupplierQuoteRequest(Base):
    """Supplier-facing projection of an RFQ (the SQR) and the supplier's answers."""
    __tablename__ = "supplier_quote_requests"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfq_requests.id"), nullable=False, index=True)
    supplier_id = Column(String(100), nullable=False)
    status = Column(SQRStatusType, default=SQRStatus.DRAFT.value, nullable=False)
    sections = Column(JSON, nullable=False)
    attachments = Column(JSON)
    comments = Column(Text)
    total_quote_value = Column(Float)
    currency = Column(String(10))
    evaluation_response = Column(JSON)
    submission_date = Column(DateTime(timezone=True))
    last_updated = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rfq_request = relationship("RFQRequest", back_populates="supplier_quote_requests")

    __table_args__ = (
        UniqueConstraint('rfq_id', 'supplier_id', name='uq_sqr_rfq_supplier'),
    )


class SupplierQuoteVersion(Base):
    """Immutable snapshot of one reconciled supplier response."""
    __tablename__ = "supplier_quote_versions"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfq_requests.id"), nullable=False)
    supplier_id = Column(String(100), nullable=False)
    version = Column(Integer, nullable=False)
    source = Column(QuoteSourceType, default=QuoteSource.WORKBOOK.value, nullable=False)
    response_data = Column(JSON, nullable=False)
    diagnostics = Column(JSON)
    uploaded_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rfq_request = relationship("RFQRequest", back_populates="quote_versions")

    __table_args__ = (
        UniqueConstraint('rfq_id', 'supplier_id', 'version', name='uq_quote_version'),
        Index('ix_quote_versions_rfq_supplier', 'rfq_id', 'supplier_id'),
    )

"""
Supplier Quote Request (SQR) lifecycle.

An SQR is the supplier-facing projection of an RFQ, one per (RFQ, supplier).
It is created once, refreshed by each workbook upload while in draft, and
finalised on submit. Workbooks are always generated from, and reconciled
against, the SQR's stored sections so the file a supplier returns is matched
to exactly the document it was issued from.
"""
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    QuoteSource, RFQRequest, RFQStatus, RFQSupplier, SQRStatus, SupplierQuoteRequest,
    SupplierQuoteVersion, SupplierStatus,
)
from app.services.verification import issue_token, token_lock
from app.services.workbook import (
    Recipient, RFQInfo, ReconcileResult, dump_document, dump_sections, extract_quote_summary,
    load_document, load_sections, project_rfq, reconcile, serialize,
)

logger = get_logger(__name__)

# SQRs in these states no longer accept supplier changes
_CLOSED_STATES = {SQRStatus.ACCEPTED.value, SQRStatus.REJECTED.value}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_rfq(db: Session, rfq_id: int) -> RFQRequest:
    rfq = db.query(RFQRequest).filter(RFQRequest.id == rfq_id).first()
    if not rfq:
        raise NotFoundError(f"RFQ {rfq_id} not found")
    return rfq


def _get_supplier(db: Session, rfq_id: int, supplier_id: str) -> RFQSupplier:
    supplier = db.query(RFQSupplier).filter(
        RFQSupplier.rfq_id == rfq_id,
        RFQSupplier.supplier_id == str(supplier_id),
    ).first()
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} is not part of RFQ {rfq_id}")
    return supplier


def workbook_filename(rfq: RFQRequest, supplier_id: str) -> str:
    safe_supplier = re.sub(r"[^A-Za-z0-9_-]+", "_", str(supplier_id)).strip("_") or "supplier"
    return f"RFQ_{rfq.rfq_number}_{safe_supplier}.xlsx"


# ============= CRUD =============

def create_from_rfq(db: Session, rfq_id: int, supplier_id: str) -> SupplierQuoteRequest:
    """Project the RFQ for one supplier. Idempotent: returns the existing SQR if any."""
    existing = find_by_rfq_and_supplier(db, rfq_id, supplier_id)
    if existing:
        return existing

    rfq = _get_rfq(db, rfq_id)
    _get_supplier(db, rfq_id, supplier_id)

    document = project_rfq(rfq)
    sqr = SupplierQuoteRequest(
        rfq_id=rfq.id,
        supplier_id=str(supplier_id),
        status=SQRStatus.DRAFT.value,
        sections=dump_sections(document.sections),
        attachments=[],
        last_updated=_now(),
    )
    db.add(sqr)
    db.flush()
    logger.info(f"Created SQR {sqr.id} for RFQ {rfq.id} supplier {supplier_id}")
    return sqr


def get_sqr(db: Session, sqr_id: int) -> SupplierQuoteRequest:
    sqr = db.query(SupplierQuoteRequest).filter(SupplierQuoteRequest.id == sqr_id).first()
    if not sqr:
        raise NotFoundError(f"Supplier quote request {sqr_id} not found")
    return sqr


def find_by_rfq_and_supplier(db: Session, rfq_id: int, supplier_id: str) -> Optional[SupplierQuoteRequest]:
    return db.query(SupplierQuoteRequest).filter(
        SupplierQuoteRequest.rfq_id == rfq_id,
        SupplierQuoteRequest.supplier_id == str(supplier_id),
    ).first()


def list_by_rfq(db: Session, rfq_id: int) -> List[SupplierQuoteRequest]:
    return db.query(SupplierQuoteRequest).filter(
        SupplierQuoteRequest.rfq_id == rfq_id
    ).order_by(SupplierQuoteRequest.id).all()


def update_sqr(db: Session, sqr_id: int, changes: dict) -> SupplierQuoteRequest:
    """
    Apply portal edits. Editing a submitted SQR moves it to 'revised';
    accepted or rejected SQRs are read-only.
    """
    sqr = get_sqr(db, sqr_id)
    if sqr.status in _CLOSED_STATES:
        raise InvalidStateError(f"Supplier quote request {sqr_id} is {sqr.status} and cannot be changed")

    if changes.get("sections") is not None:
        sections = load_sections(changes["sections"])
        if not sections and changes["sections"]:
            raise ValidationError("sections could not be parsed")
        sqr.sections = dump_sections(sections)
    for name in ("comments", "attachments", "total_quote_value", "currency"):
        if name in changes and changes[name] is not None:
            setattr(sqr, name, changes[name])

    if sqr.status == SQRStatus.SUBMITTED.value:
        sqr.status = SQRStatus.REVISED.value
    sqr.last_updated = _now()
    db.flush()
    return sqr


def delete_sqr(db: Session, sqr_id: int) -> None:
    sqr = get_sqr(db, sqr_id)
    db.delete(sqr)
    db.flush()


# ============= WORKBOOK ROUND TRIP =============

def recipient_for(supplier: RFQSupplier) -> Recipient:
    return Recipient(
        supplier_id=supplier.supplier_id,
        name=supplier.name,
        email=supplier.email,
        phone=supplier.phone,
        address=supplier.address,
        contact_person=supplier.contact_person,
    )


def rfq_info_for(rfq: RFQRequest) -> RFQInfo:
    return RFQInfo(
        rfq_id=rfq.rfq_number,
        title=rfq.title,
        due_date=rfq.due_date.date().isoformat() if rfq.due_date else None,
    )


def generate_workbook(db: Session, sqr_id: int) -> Tuple[bytes, str]:
    """
    Issue a fresh workbook for an SQR.

    Stores a new verification token on the supplier record (invalidating
    earlier workbooks) and commits. Returns (xlsx bytes, filename).
    """
    sqr = get_sqr(db, sqr_id)
    rfq = _get_rfq(db, sqr.rfq_id)

    with token_lock(db, sqr.rfq_id, sqr.supplier_id) as supplier:
        token = issue_token(db, supplier)
        data = serialize(
            load_document(sqr.sections),
            recipient=recipient_for(supplier),
            rfq=rfq_info_for(rfq),
            token=token,
        )
        db.commit()

    audit_logger.log(
        action="sqr.workbook_generated",
        rfq_id=rfq.id,
        supplier_id=sqr.supplier_id,
        entity_type="supplier_quote_request",
        entity_id=sqr.id,
    )
    return data, workbook_filename(rfq, sqr.supplier_id)


def record_version(
    db: Session,
    rfq_id: int,
    supplier_id: str,
    response_data: dict,
    diagnostics: Optional[list] = None,
    source: QuoteSource = QuoteSource.WORKBOOK,
    user_id: Optional[int] = None,
) -> SupplierQuoteVersion:
    """Append an immutable snapshot; versions count up from 1 per (RFQ, supplier)."""
    latest = db.query(func.max(SupplierQuoteVersion.version)).filter(
        SupplierQuoteVersion.rfq_id == rfq_id,
        SupplierQuoteVersion.supplier_id == str(supplier_id),
    ).scalar()
    version = SupplierQuoteVersion(
        rfq_id=rfq_id,
        supplier_id=str(supplier_id),
        version=(latest or 0) + 1,
        source=source.value,
        response_data=response_data,
        diagnostics=diagnostics or [],
        uploaded_by=user_id,
    )
    db.add(version)
    db.flush()
    return version


def import_workbook(
    db: Session,
    sqr_id: int,
    data: bytes,
    user_id: Optional[int] = None,
) -> Tuple[SupplierQuoteRequest, ReconcileResult, SupplierQuoteVersion]:
    """
    Reconcile an uploaded workbook into the SQR.

    Token verification happens first and under the token lock; a rejected
    file raises before anything is stored. The SQR keeps its draft status
    (a submitted SQR becomes 'revised'), a new quote version is recorded
    and the supplier is marked as having responded.
    """
    sqr = get_sqr(db, sqr_id)
    if sqr.status in _CLOSED_STATES:
        raise InvalidStateError(f"Supplier quote request {sqr_id} is {sqr.status} and cannot be changed")

    with token_lock(db, sqr.rfq_id, sqr.supplier_id) as supplier:
        result = reconcile(
            data,
            load_document(sqr.sections),
            recipient_id=sqr.supplier_id,
            stored_token=supplier.excel_uuid,
            rfq_id=sqr.rfq_id,
        )
        document = result.document
        summary = extract_quote_summary(document)

        sqr.sections = dump_sections(document.sections)
        if summary["total_quote_value"] is not None:
            sqr.total_quote_value = summary["total_quote_value"]
        if summary["currency"]:
            sqr.currency = summary["currency"]
        if summary["comments"]:
            sqr.comments = summary["comments"]
        if sqr.status == SQRStatus.SUBMITTED.value:
            sqr.status = SQRStatus.REVISED.value
        sqr.last_updated = _now()

        response_data = dump_document(document)
        version = record_version(
            db,
            sqr.rfq_id,
            sqr.supplier_id,
            response_data,
            diagnostics=[d.to_dict() for d in result.diagnostics],
            user_id=user_id,
        )

        supplier.status = SupplierStatus.RESPONDED.value
        supplier.response_submitted_at = _now()
        supplier.response_data = response_data
        supplier.latest_quote_version = version.version

        rfq = supplier.rfq_request
        if rfq.status in (RFQStatus.DRAFT.value, RFQStatus.SENT.value):
            rfq.status = RFQStatus.QUOTES_RECEIVED.value
        db.commit()

    logger.info(
        f"Imported workbook for SQR {sqr.id} as version {version.version} "
        f"({len(result.diagnostics)} diagnostics)"
    )
    return sqr, result, version


def submit_sqr(db: Session, sqr_id: int) -> SupplierQuoteRequest:
    """Finalise the SQR and mark the supplier as having submitted."""
    sqr = get_sqr(db, sqr_id)
    if sqr.status in _CLOSED_STATES:
        raise InvalidStateError(f"Supplier quote request {sqr_id} is already {sqr.status}")

    now = _now()
    sqr.status = SQRStatus.SUBMITTED.value
    sqr.submission_date = now
    sqr.last_updated = now

    supplier = _get_supplier(db, sqr.rfq_id, sqr.supplier_id)
    supplier.status = SupplierStatus.SUBMITTED.value
    supplier.submission_date = now
    supplier.response_data = {
        "sqr_id": sqr.id,
        "sections": sqr.sections,
        "total_quote_value": sqr.total_quote_value,
        "currency": sqr.currency,
        "comments": sqr.comments,
    }
    db.flush()
    return sqr

"""
RFQ service: RFQ records, invited suppliers, invitation delivery, supplier
uploads, quote history, evaluation analysis, negotiation and award.

Functions take an open Session and flush; callers (routes, jobs) own the
commit, except where a verification token is involved, which commits under
``token_lock`` (see sqr_service).
"""
import copy
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    RFQRequest, RFQStatus, RFQSupplier, SQRStatus, SupplierQuoteVersion,
    SupplierStatus, enum_values,
)
from app.services import sqr_service
from app.services.aggregation import (
    build_rfq_analysis, build_supplier_quote_analysis, lowest_offer,
)
from app.services.notifications import NotificationService
from app.services.workbook import (
    SectionType, dump_sections, load_sections, project_rfq, temporary_workbook_file,
)
from app.services.workbook.document import containers

logger = get_logger(__name__)

RFQ_FIELDS = (
    "title", "description", "due_date", "template_structure", "general_details",
    "scope_of_work", "questionnaire", "items", "terms_and_conditions", "decision_notes",
)
SUPPLIER_FIELDS = ("name", "email", "phone", "address", "contact_person", "notes")

# RFQs past these states no longer change shape
_LOCKED_STATES = {RFQStatus.AWARDED.value, RFQStatus.CLOSED.value}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_rfq_number() -> str:
    """RFQ-YYYYMMDD-XXXXXX with a random uppercase/digit suffix."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"RFQ-{_now():%Y%m%d}-{suffix}"


def _normalise_template(template) -> Optional[dict]:
    if template is None:
        return None
    sections = load_sections(template)
    return {"sections": dump_sections(sections)}


# ============= RFQ CRUD =============

def create_rfq(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> RFQRequest:
    """Create an RFQ in draft, optionally with its initial suppliers."""
    if not str(data.get("title") or "").strip():
        raise ValidationError("title is required")

    rfq = RFQRequest(
        rfq_number=generate_rfq_number(),
        status=RFQStatus.DRAFT.value,
        created_by=user_id,
    )
    for name in RFQ_FIELDS:
        if name in data:
            setattr(rfq, name, copy.deepcopy(data[name]))
    rfq.template_structure = _normalise_template(data.get("template_structure"))
    db.add(rfq)
    db.flush()

    for supplier in data.get("suppliers") or []:
        add_supplier(db, rfq.id, supplier)

    logger.info(f"Created RFQ {rfq.rfq_number}", extra={"rfq_id": rfq.id, "user_id": user_id})
    return rfq


def list_rfqs(db: Session, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[RFQRequest]:
    query = db.query(RFQRequest)
    if status:
        query = query.filter(RFQRequest.status == status)
    return query.order_by(RFQRequest.created_at.desc(), RFQRequest.id.desc()).offset(offset).limit(limit).all()


def get_rfq(db: Session, rfq_id: int) -> RFQRequest:
    rfq = db.query(RFQRequest).filter(RFQRequest.id == rfq_id).first()
    if not rfq:
        raise NotFoundError(f"RFQ {rfq_id} not found")
    return rfq


def update_rfq(db: Session, rfq_id: int, changes: Dict[str, Any]) -> RFQRequest:
    """
    Update RFQ fields. Existing SQRs keep the sections they were issued with;
    only SQRs created afterwards see the change.
    """
    rfq = get_rfq(db, rfq_id)
    if rfq.status in _LOCKED_STATES:
        raise InvalidStateError(f"RFQ {rfq.rfq_number} is {rfq.status} and cannot be changed")

    for name in RFQ_FIELDS:
        if name not in changes:
            continue
        if name == "template_structure":
            rfq.template_structure = _normalise_template(changes[name])
        elif name == "title" and not str(changes[name] or "").strip():
            raise ValidationError("title cannot be empty")
        else:
            setattr(rfq, name, copy.deepcopy(changes[name]))

    if "status" in changes and changes["status"]:
        if changes["status"] not in enum_values(RFQStatus):
            raise ValidationError(f"Invalid RFQ status '{changes['status']}'")
        rfq.status = changes["status"]

    db.flush()
    return rfq


def delete_rfq(db: Session, rfq_id: int) -> None:
    rfq = get_rfq(db, rfq_id)
    db.delete(rfq)
    db.flush()
    logger.info(f"Deleted RFQ {rfq.rfq_number}", extra={"rfq_id": rfq_id})


# ============= SUPPLIERS =============

def list_suppliers(db: Session, rfq_id: int) -> List[RFQSupplier]:
    get_rfq(db, rfq_id)
    return db.query(RFQSupplier).filter(RFQSupplier.rfq_id == rfq_id).order_by(RFQSupplier.id).all()


def get_supplier(db: Session, rfq_id: int, supplier_id: str) -> RFQSupplier:
    supplier = db.query(RFQSupplier).filter(
        RFQSupplier.rfq_id == rfq_id,
        RFQSupplier.supplier_id == str(supplier_id),
    ).first()
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} is not part of RFQ {rfq_id}")
    return supplier


def add_supplier(db: Session, rfq_id: int, data: Dict[str, Any]) -> RFQSupplier:
    rfq = get_rfq(db, rfq_id)
    supplier_id = str(data.get("supplier_id") or "").strip()
    name = str(data.get("name") or "").strip()
    if not supplier_id or not name:
        raise ValidationError("supplier_id and name are required")

    exists = db.query(RFQSupplier).filter(
        RFQSupplier.rfq_id == rfq.id,
        RFQSupplier.supplier_id == supplier_id,
    ).first()
    if exists:
        raise ValidationError(f"Supplier {supplier_id} is already part of RFQ {rfq.rfq_number}")

    supplier = RFQSupplier(rfq_id=rfq.id, supplier_id=supplier_id, status=SupplierStatus.PENDING.value)
    for name_ in SUPPLIER_FIELDS:
        if data.get(name_) is not None:
            setattr(supplier, name_, data[name_])
    db.add(supplier)
    db.flush()
    return supplier


def update_supplier_status(db: Session, rfq_id: int, supplier_id: str, status: str) -> RFQSupplier:
    if status not in enum_values(SupplierStatus):
        raise ValidationError(
            f"Invalid supplier status '{status}'. Expected one of: {', '.join(enum_values(SupplierStatus))}"
        )
    supplier = get_supplier(db, rfq_id, supplier_id)
    supplier.status = status
    if status == SupplierStatus.RESPONDED.value:
        supplier.response_submitted_at = _now()
    elif status == SupplierStatus.INVITED.value and supplier.invited_at is None:
        supplier.invited_at = _now()
    db.flush()
    return supplier


def remove_supplier(db: Session, rfq_id: int, supplier_id: str) -> None:
    supplier = get_supplier(db, rfq_id, supplier_id)
    sqr = sqr_service.find_by_rfq_and_supplier(db, rfq_id, supplier_id)
    if sqr:
        db.delete(sqr)
    db.delete(supplier)
    db.flush()


# ============= WORKBOOKS & INVITATIONS =============

def generate_supplier_workbook(db: Session, rfq_id: int, supplier_id: str):
    """Fresh workbook for one supplier; creates the SQR on first use. Returns (bytes, filename)."""
    rfq = get_rfq(db, rfq_id)
    get_supplier(db, rfq.id, supplier_id)
    sqr = sqr_service.create_from_rfq(db, rfq.id, supplier_id)
    return sqr_service.generate_workbook(db, sqr.id)


def deliver_invitation(
    db: Session,
    rfq_id: int,
    supplier_id: str,
    notifier: NotificationService,
) -> str:
    """
    Generate the supplier's workbook and email it. Returns the transport name.

    The workbook lives in a temporary file only for the duration of the send.
    """
    rfq = get_rfq(db, rfq_id)
    supplier = get_supplier(db, rfq.id, supplier_id)
    if not supplier.email:
        raise ValidationError(f"Supplier {supplier_id} has no email address")

    data, filename = generate_supplier_workbook(db, rfq.id, supplier_id)
    with temporary_workbook_file(data, prefix=f"{rfq.rfq_number}-") as path:
        transport = notifier.send_rfq_invitation(
            to=supplier.email,
            supplier_name=supplier.name,
            rfq_title=rfq.title,
            rfq_number=rfq.rfq_number,
            due_date=rfq.due_date.date().isoformat() if rfq.due_date else None,
            workbook_path=path,
            filename=filename,
        )

    supplier.status = SupplierStatus.INVITED.value
    supplier.invited_at = _now()
    db.commit()
    audit_logger.log(
        action="rfq.invitation_sent",
        rfq_id=rfq.id,
        supplier_id=supplier.supplier_id,
        details={"transport": transport},
    )
    return transport


def send_rfq(db: Session, rfq_id: int, notifier: Optional[NotificationService] = None) -> List[dict]:
    """
    Invite every supplier on the RFQ.

    With USE_WORKER_QUEUE the invitations are queued as background jobs,
    otherwise they are delivered inline. Suppliers without an email address
    are skipped. Returns one result entry per supplier.
    """
    rfq = get_rfq(db, rfq_id)
    if rfq.status in _LOCKED_STATES:
        raise InvalidStateError(f"RFQ {rfq.rfq_number} is {rfq.status} and cannot be sent")
    suppliers = list_suppliers(db, rfq.id)
    if not suppliers:
        raise InvalidStateError(f"RFQ {rfq.rfq_number} has no suppliers to send to")

    results = []
    for supplier in suppliers:
        if not supplier.email:
            logger.warning(f"Skipping supplier {supplier.supplier_id}: no email address",
                           extra={"rfq_id": rfq.id})
            results.append({"supplier_id": supplier.supplier_id, "status": "skipped"})
            continue

        if settings.USE_WORKER_QUEUE:
            # imported here so the API process only needs redis when queueing is on
            from app.workers.jobs import enqueue_invitation
            job_id = enqueue_invitation(rfq.id, supplier.supplier_id)
            results.append({"supplier_id": supplier.supplier_id, "status": "queued", "job_id": job_id})
        else:
            if notifier is None:
                raise InvalidStateError("No notification service available for inline delivery")
            transport = deliver_invitation(db, rfq.id, supplier.supplier_id, notifier)
            results.append({"supplier_id": supplier.supplier_id, "status": "sent", "transport": transport})

    if rfq.status == RFQStatus.DRAFT.value:
        rfq.status = RFQStatus.SENT.value
    db.flush()
    return results


def process_supplier_workbook(
    db: Session,
    rfq_id: int,
    supplier_id: str,
    data: bytes,
    user_id: Optional[int] = None,
):
    """Buyer-side upload of a supplier's completed workbook. Returns (sqr, result, version)."""
    rfq = get_rfq(db, rfq_id)
    get_supplier(db, rfq.id, supplier_id)
    sqr = sqr_service.find_by_rfq_and_supplier(db, rfq.id, supplier_id)
    if sqr is None:
        raise NotFoundError(f"No workbook has been issued to supplier {supplier_id} for RFQ {rfq.rfq_number}")
    return sqr_service.import_workbook(db, sqr.id, data, user_id=user_id)


# ============= QUOTE HISTORY =============

def get_quote_history(db: Session, rfq_id: int, supplier_id: str) -> List[SupplierQuoteVersion]:
    """All stored versions for a supplier, newest first."""
    get_supplier(db, rfq_id, supplier_id)
    return db.query(SupplierQuoteVersion).filter(
        SupplierQuoteVersion.rfq_id == rfq_id,
        SupplierQuoteVersion.supplier_id == str(supplier_id),
    ).order_by(SupplierQuoteVersion.version.desc()).all()


def get_quote_version(db: Session, rfq_id: int, supplier_id: str, version: int) -> SupplierQuoteVersion:
    quote = db.query(SupplierQuoteVersion).filter(
        SupplierQuoteVersion.rfq_id == rfq_id,
        SupplierQuoteVersion.supplier_id == str(supplier_id),
        SupplierQuoteVersion.version == version,
    ).first()
    if not quote:
        raise NotFoundError(f"Quote version {version} for supplier {supplier_id} not found")
    return quote


def get_latest_quotes(db: Session, rfq_id: int) -> List[SupplierQuoteVersion]:
    """Latest stored version per supplier, in supplier order."""
    latest = []
    for supplier in list_suppliers(db, rfq_id):
        if not supplier.latest_quote_version:
            continue
        latest.append(get_quote_version(db, rfq_id, supplier.supplier_id, supplier.latest_quote_version))
    return latest


# ============= ANALYSIS =============

def get_analysis(db: Session, rfq_id: int) -> dict:
    """RFQ structure, each supplier's latest quote and the lowest offers across them."""
    rfq = get_rfq(db, rfq_id)
    quotes = get_latest_quotes(db, rfq.id)
    documents = [q.response_data for q in quotes]
    return {
        "rfq": build_rfq_analysis(rfq, project_rfq(rfq)),
        "supplier_quotes": [
            dict(build_supplier_quote_analysis(q.response_data, quote_id=q.id), version=q.version)
            for q in quotes
        ],
        "lowest_offers": lowest_offer(documents).to_dict(),
    }


# ============= NEGOTIATION =============

def _targets(entries: Optional[List[dict]], key: str = "id") -> Dict[str, Any]:
    targets = {}
    for entry in entries or []:
        entry_id = str(entry.get(key) or "").strip()
        if entry_id:
            targets[entry_id] = entry.get("negotiation")
    return targets


def _row_key(row: dict) -> str:
    return str(row.get("id") or row.get("productId") or "").strip()


def _apply_row_targets(rows: List[dict], targets: Dict[str, Any]) -> None:
    for row in rows:
        key = _row_key(row)
        if key in targets:
            row["target"] = targets[key]


def _reorder(rows: List[dict], order: List[str]) -> List[dict]:
    """Rows listed in ``order`` first (in that order), the rest after in their original order."""
    if not order:
        return rows
    position = {str(row_id): index for index, row_id in enumerate(order)}
    return sorted(rows, key=lambda row: position.get(_row_key(row), len(position)))


def _negotiate_template(sections, products, terms, questions, order) -> list:
    for section in sections:
        for container in containers(section):
            if section.type == SectionType.COMMERCIAL_TABLE:
                for table in container.tables:
                    _apply_row_targets(table.data, products)
            elif section.type == SectionType.COMMERCIAL_TERMS:
                for table in container.tables:
                    _apply_row_targets(table.data, terms)
                    table.data = _reorder(table.data, order)
            if container.type == SectionType.QUESTIONNAIRE and container.id in questions:
                for table in container.tables:
                    _apply_row_targets(table.data, questions[container.id])
    return sections


def negotiate_rfq(db: Session, rfq_id: int, payload: Dict[str, Any]) -> RFQRequest:
    """
    Record negotiation targets.

    ``payload`` carries ``products`` (id + negotiation), ``commercial_terms``
    (id + negotiation), ``questionnaires`` (id + questions with id +
    negotiation), an optional ``commercial_terms_order`` and free-form
    negotiation settings. Targets land on the RFQ's own structure, template
    or raw objects alike, so SQRs created afterwards carry them.
    """
    rfq = get_rfq(db, rfq_id)
    if rfq.status in _LOCKED_STATES:
        raise InvalidStateError(f"RFQ {rfq.rfq_number} is {rfq.status} and cannot be negotiated")

    products = _targets(payload.get("products"))
    terms = _targets(payload.get("commercial_terms"))
    questions = {
        str(group.get("id")): _targets(group.get("questions"))
        for group in payload.get("questionnaires") or []
        if group.get("id") is not None
    }
    order = [str(i) for i in payload.get("commercial_terms_order") or []]

    template_sections = load_sections(rfq.template_structure)
    if template_sections:
        _negotiate_template(template_sections, products, terms, questions, order)
        rfq.template_structure = {"sections": dump_sections(template_sections)}
    else:
        items = copy.deepcopy(rfq.items or [])
        _apply_row_targets(items, products)
        rfq.items = items

        term_rows = copy.deepcopy(rfq.terms_and_conditions or [])
        _apply_row_targets(term_rows, terms)
        rfq.terms_and_conditions = _reorder(term_rows, order)

        groups = copy.deepcopy(rfq.questionnaire or [])
        for group in groups:
            group_targets = questions.get(str(group.get("id")))
            if group_targets:
                _apply_row_targets(group.get("questions") or [], group_targets)
        rfq.questionnaire = groups

    rfq.negotiation = {
        "negotiation_type": payload.get("negotiation_type"),
        "number_of_rounds": payload.get("number_of_rounds"),
        "negotiation_style": payload.get("negotiation_style"),
        "commercial_terms_order": order,
        "products": payload.get("products") or [],
        "commercial_terms": payload.get("commercial_terms") or [],
        "questionnaires": payload.get("questionnaires") or [],
    }
    rfq.status = RFQStatus.NEGOTIATING.value
    db.flush()
    logger.info(
        f"Negotiation targets set on {len(products)} products and {len(terms)} terms",
        extra={"rfq_id": rfq.id},
    )
    return rfq


# ============= AWARD =============

def award_rfq(db: Session, rfq_id: int, awards: List[Dict[str, Any]], notes: Optional[str] = None) -> RFQRequest:
    """
    Allocate quantities to suppliers.

    Each award names an SQR and a list of ``{product_id, quantity}``; the
    quantity is written as ``allocatedQuantity`` on the matching commercial
    row of that SQR. Awarded SQRs are accepted and their suppliers selected.
    """
    rfq = get_rfq(db, rfq_id)
    if rfq.status in _LOCKED_STATES:
        raise InvalidStateError(f"RFQ {rfq.rfq_number} is already {rfq.status}")
    if not awards:
        raise ValidationError("At least one award is required")

    for award in awards:
        sqr = sqr_service.get_sqr(db, award.get("sqr_id"))
        if sqr.rfq_id != rfq.id:
            raise ValidationError(f"Supplier quote request {sqr.id} does not belong to RFQ {rfq.rfq_number}")

        allocations = {str(item.get("product_id")): item.get("quantity") for item in award.get("items") or []}
        sections = load_sections(sqr.sections)
        matched = set()
        for section in sections:
            if section.type != SectionType.COMMERCIAL_TABLE:
                continue
            for container in containers(section):
                for table in container.tables:
                    for row in table.data:
                        key = _row_key(row)
                        if key in allocations:
                            row["allocatedQuantity"] = allocations[key]
                            matched.add(key)
        missing = set(allocations) - matched
        if missing:
            raise ValidationError(
                f"Products not found in supplier quote request {sqr.id}: {', '.join(sorted(missing))}"
            )

        sqr.sections = dump_sections(sections)
        sqr.status = SQRStatus.ACCEPTED.value
        sqr.last_updated = _now()
        get_supplier(db, rfq.id, sqr.supplier_id).status = SupplierStatus.SELECTED.value

    rfq.status = RFQStatus.AWARDED.value
    rfq.awarded_at = _now()
    if notes:
        rfq.decision_notes = notes
    db.flush()
    audit_logger.log(action="rfq.awarded", rfq_id=rfq.id, details={"awards": len(awards)})
    return rfq

"""
RFQ API routes: RFQs, suppliers, invitations, supplier workbooks, quotes,
analysis, negotiation and award.
"""
from typing import Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request, Query, UploadFile, File, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field as PydanticField
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.core.rbac import require_buyer, require_supplier, check_supplier_access
from app.db.models import AuditLog
from app.db.session import get_db
from app.services import rfq_service
from app.services.notifications import NotificationService, get_notification_service
from app.services.workbook import XLSX_CONTENT_TYPE

logger = get_logger(__name__)

router = APIRouter(prefix="/api/rfq", tags=["RFQ"])


# ============= SCHEMAS =============

class SupplierCreate(BaseModel):
    supplier_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    notes: Optional[str] = None


class SupplierStatusUpdate(BaseModel):
    status: str


class SupplierResponse(BaseModel):
    id: int
    rfq_id: int
    supplier_id: str
    name: str
    email: Optional[str]
    phone: Optional[str]
    contact_person: Optional[str]
    status: str
    excel_generated_at: Optional[datetime]
    invited_at: Optional[datetime]
    response_submitted_at: Optional[datetime]
    submission_date: Optional[datetime]
    latest_quote_version: Optional[int]

    model_config = {"from_attributes": True}


class RFQCreate(BaseModel):
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    template_structure: Optional[Any] = None
    general_details: Optional[dict] = None
    scope_of_work: Optional[str] = None
    questionnaire: Optional[List[dict]] = None
    items: Optional[List[dict]] = None
    terms_and_conditions: Optional[List[dict]] = None
    suppliers: List[SupplierCreate] = []


class RFQUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    status: Optional[str] = None
    template_structure: Optional[Any] = None
    general_details: Optional[dict] = None
    scope_of_work: Optional[str] = None
    questionnaire: Optional[List[dict]] = None
    items: Optional[List[dict]] = None
    terms_and_conditions: Optional[List[dict]] = None
    decision_notes: Optional[str] = None


class RFQResponse(BaseModel):
    id: int
    rfq_number: str
    title: str
    description: Optional[str]
    status: str
    due_date: Optional[datetime]
    template_structure: Optional[dict]
    general_details: Optional[dict]
    scope_of_work: Optional[str]
    questionnaire: Optional[list]
    items: Optional[list]
    terms_and_conditions: Optional[list]
    negotiation: Optional[dict]
    decision_notes: Optional[str]
    created_at: Optional[datetime]
    awarded_at: Optional[datetime]
    suppliers: List[SupplierResponse] = []

    model_config = {"from_attributes": True}


class SendResult(BaseModel):
    supplier_id: str
    status: str
    transport: Optional[str] = None
    job_id: Optional[str] = None


class UploadResponse(BaseModel):
    sqr_id: int
    version: int
    verified: bool
    token_prefix: Optional[str]
    total_quote_value: Optional[float]
    currency: Optional[str]
    diagnostics: List[dict]


class QuoteVersionResponse(BaseModel):
    id: int
    rfq_id: int
    supplier_id: str
    version: int
    source: str
    response_data: dict
    diagnostics: Optional[list]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class NegotiationTarget(BaseModel):
    id: str
    negotiation: Any = None


class QuestionnaireTargets(BaseModel):
    id: str
    questions: List[NegotiationTarget] = []


class NegotiationRequest(BaseModel):
    negotiation_type: Optional[str] = None
    number_of_rounds: Optional[int] = None
    negotiation_style: Optional[str] = None
    products: List[NegotiationTarget] = []
    commercial_terms: List[NegotiationTarget] = []
    questionnaires: List[QuestionnaireTargets] = []
    commercial_terms_order: List[str] = []


class AwardItem(BaseModel):
    product_id: str
    quantity: float = PydanticField(ge=0)


class Award(BaseModel):
    sqr_id: int
    items: List[AwardItem]


class AwardRequest(BaseModel):
    awards: List[Award]
    notes: Optional[str] = None


# ============= HELPERS =============

def record_audit(db: Session, request: Request, user_context: dict, action: str,
                 entity_type: str, entity_id: Optional[int], details: Optional[dict] = None) -> None:
    db.add(AuditLog(
        user_id=user_context["user_id"],
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    ))


def xlsx_response(data: bytes, filename: str) -> Response:
    return Response(
        content=data,
        media_type=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def read_workbook_upload(file: UploadFile) -> bytes:
    """Upload bytes after name, emptiness and size checks."""
    filename = file.filename or ""
    if not filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="File type not allowed. Allowed: .xlsx")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE} bytes",
        )
    return content


# ============= RFQ ROUTES =============

@router.post("", response_model=RFQResponse, status_code=201)
async def create_rfq(
    request: Request,
    rfq_data: RFQCreate,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    """Create an RFQ in draft, optionally with suppliers."""
    rfq = rfq_service.create_rfq(db, rfq_data.model_dump(), user_id=user_context["user_id"])
    record_audit(db, request, user_context, "create_rfq", "rfq", rfq.id, {"rfq_number": rfq.rfq_number})
    db.commit()
    db.refresh(rfq)
    return rfq


@router.get("", response_model=List[RFQResponse])
async def list_rfqs(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    """List RFQs, newest first."""
    return rfq_service.list_rfqs(db, status=status, limit=limit, offset=offset)


@router.get("/{rfq_id}", response_model=RFQResponse)
async def get_rfq(
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    return rfq_service.get_rfq(db, rfq_id)


@router.put("/{rfq_id}", response_model=RFQResponse)
async def update_rfq(
    request: Request,
    rfq_id: int,
    rfq_data: RFQUpdate,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    changes = rfq_data.model_dump(exclude_unset=True)
    rfq = rfq_service.update_rfq(db, rfq_id, changes)
    record_audit(db, request, user_context, "update_rfq", "rfq", rfq_id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(rfq)
    return rfq


@router.delete("/{rfq_id}", status_code=204)
async def delete_rfq(
    request: Request,
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    rfq_service.delete_rfq(db, rfq_id)
    record_audit(db, request, user_context, "delete_rfq", "rfq", rfq_id)
    db.commit()
    return Response(status_code=204)


# ============= SUPPLIER ROUTES =============

@router.get("/{rfq_id}/suppliers", response_model=List[SupplierResponse])
async def list_suppliers(
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    return rfq_service.list_suppliers(db, rfq_id)


@router.post("/{rfq_id}/suppliers", response_model=SupplierResponse, status_code=201)
async def add_supplier(
    request: Request,
    rfq_id: int,
    supplier_data: SupplierCreate,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    supplier = rfq_service.add_supplier(db, rfq_id, supplier_data.model_dump())
    record_audit(db, request, user_context, "add_supplier", "rfq", rfq_id, {"supplier_id": supplier.supplier_id})
    db.commit()
    db.refresh(supplier)
    return supplier


@router.patch("/{rfq_id}/suppliers/{supplier_id}/status", response_model=SupplierResponse)
async def update_supplier_status(
    request: Request,
    rfq_id: int,
    supplier_id: str,
    status_update: SupplierStatusUpdate,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    supplier = rfq_service.update_supplier_status(db, rfq_id, supplier_id, status_update.status)
    record_audit(db, request, user_context, "update_supplier_status", "rfq", rfq_id,
                 {"supplier_id": supplier_id, "status": status_update.status})
    db.commit()
    db.refresh(supplier)
    return supplier


@router.delete("/{rfq_id}/suppliers/{supplier_id}", status_code=204)
async def remove_supplier(
    request: Request,
    rfq_id: int,
    supplier_id: str,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    rfq_service.remove_supplier(db, rfq_id, supplier_id)
    record_audit(db, request, user_context, "remove_supplier", "rfq", rfq_id, {"supplier_id": supplier_id})
    db.commit()
    return Response(status_code=204)


@router.post("/{rfq_id}/send", response_model=List[SendResult])
async def send_rfq(
    request: Request,
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Send the RFQ workbook to every supplier (inline or through the worker queue)."""
    results = await run_in_threadpool(rfq_service.send_rfq, db, rfq_id, notifier)
    record_audit(db, request, user_context, "send_rfq", "rfq", rfq_id, {"suppliers": len(results)})
    db.commit()
    return results


# ============= WORKBOOK ROUTES =============

@router.get("/{rfq_id}/suppliers/{supplier_id}/workbook")
async def download_supplier_workbook(
    rfq_id: int,
    supplier_id: str,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Generate a fresh workbook. Any earlier workbook for this supplier stops being accepted."""
    check_supplier_access(user_context, supplier_id)
    data, filename = await run_in_threadpool(
        rfq_service.generate_supplier_workbook, db, rfq_id, supplier_id
    )
    return xlsx_response(data, filename)


@router.post("/{rfq_id}/suppliers/{supplier_id}/workbook", response_model=UploadResponse)
async def upload_supplier_workbook(
    request: Request,
    rfq_id: int,
    supplier_id: str,
    file: UploadFile = File(...),
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Upload a completed supplier workbook and store it as a new quote version."""
    check_supplier_access(user_context, supplier_id)
    content = await read_workbook_upload(file)
    sqr, result, version = await run_in_threadpool(
        rfq_service.process_supplier_workbook, db, rfq_id, supplier_id, content, user_context["user_id"]
    )
    record_audit(db, request, user_context, "upload_supplier_workbook", "supplier_quote_request", sqr.id,
                 {"supplier_id": supplier_id, "version": version.version, "diagnostics": len(result.diagnostics)})
    db.commit()
    logger.info(f"Workbook upload for RFQ {rfq_id} supplier {supplier_id} stored as version {version.version}")
    return UploadResponse(
        sqr_id=sqr.id,
        version=version.version,
        verified=result.verification.verified,
        token_prefix=result.verification.token_prefix,
        total_quote_value=sqr.total_quote_value,
        currency=sqr.currency,
        diagnostics=[d.to_dict() for d in result.diagnostics],
    )


# ============= QUOTE ROUTES =============

@router.get("/{rfq_id}/quotes/latest", response_model=List[QuoteVersionResponse])
async def latest_quotes(
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    """Latest quote version of each supplier that has responded."""
    return rfq_service.get_latest_quotes(db, rfq_id)


@router.get("/{rfq_id}/suppliers/{supplier_id}/quotes", response_model=List[QuoteVersionResponse])
async def quote_history(
    rfq_id: int,
    supplier_id: str,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    check_supplier_access(user_context, supplier_id)
    return rfq_service.get_quote_history(db, rfq_id, supplier_id)


@router.get("/{rfq_id}/suppliers/{supplier_id}/quotes/{version}", response_model=QuoteVersionResponse)
async def quote_version(
    rfq_id: int,
    supplier_id: str,
    version: int,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    check_supplier_access(user_context, supplier_id)
    return rfq_service.get_quote_version(db, rfq_id, supplier_id, version)


# ============= EVALUATION ROUTES =============

@router.get("/{rfq_id}/analysis")
async def rfq_analysis(
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    """RFQ structure, latest supplier quotes and lowest offers per line item."""
    return await run_in_threadpool(rfq_service.get_analysis, db, rfq_id)


@router.post("/{rfq_id}/negotiate", response_model=RFQResponse)
async def negotiate_rfq(
    request: Request,
    rfq_id: int,
    negotiation: NegotiationRequest,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    rfq = rfq_service.negotiate_rfq(db, rfq_id, negotiation.model_dump())
    record_audit(db, request, user_context, "negotiate_rfq", "rfq", rfq_id,
                 {"products": len(negotiation.products), "commercial_terms": len(negotiation.commercial_terms)})
    db.commit()
    db.refresh(rfq)
    return rfq


@router.post("/{rfq_id}/award", response_model=RFQResponse)
async def award_rfq(
    request: Request,
    rfq_id: int,
    award: AwardRequest,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    rfq = rfq_service.award_rfq(db, rfq_id, [a.model_dump() for a in award.awards], notes=award.notes)
    record_audit(db, request, user_context, "award_rfq", "rfq", rfq_id,
                 {"sqr_ids": [a.sqr_id for a in award.awards]})
    db.commit()
    db.refresh(rfq)
    return rfq

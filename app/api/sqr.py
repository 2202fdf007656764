"""
Supplier Quote Request (SQR) API routes.
"""
from typing import Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Request, UploadFile, File, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.rfq import read_workbook_upload, record_audit, xlsx_response
from app.core.rbac import require_buyer, require_supplier, check_supplier_access
from app.db.session import get_db
from app.services import sqr_service

router = APIRouter(prefix="/api/sqr", tags=["Supplier Quote Requests"])


# ============= SCHEMAS =============

class SQRCreate(BaseModel):
    rfq_id: int
    supplier_id: str


class SQRUpdate(BaseModel):
    sections: Optional[List[Any]] = None
    comments: Optional[str] = None
    attachments: Optional[List[dict]] = None
    total_quote_value: Optional[float] = None
    currency: Optional[str] = None


class SQRResponse(BaseModel):
    id: int
    rfq_id: int
    supplier_id: str
    status: str
    sections: list
    attachments: Optional[list]
    comments: Optional[str]
    total_quote_value: Optional[float]
    currency: Optional[str]
    submission_date: Optional[datetime]
    last_updated: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class SQRImportResponse(BaseModel):
    sqr: SQRResponse
    version: int
    verified: bool
    diagnostics: List[dict]


# ============= ROUTES =============

@router.post("", response_model=SQRResponse, status_code=201)
async def create_sqr(
    request: Request,
    sqr_data: SQRCreate,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    """Project the RFQ for a supplier. Returns the existing SQR when there is one."""
    sqr = sqr_service.create_from_rfq(db, sqr_data.rfq_id, sqr_data.supplier_id)
    record_audit(db, request, user_context, "create_sqr", "supplier_quote_request", sqr.id,
                 {"rfq_id": sqr.rfq_id, "supplier_id": sqr.supplier_id})
    db.commit()
    db.refresh(sqr)
    return sqr


@router.get("/rfq/{rfq_id}", response_model=List[SQRResponse])
async def list_sqrs_for_rfq(
    rfq_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    return sqr_service.list_by_rfq(db, rfq_id)


@router.get("/{sqr_id}", response_model=SQRResponse)
async def get_sqr(
    sqr_id: int,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    sqr = sqr_service.get_sqr(db, sqr_id)
    check_supplier_access(user_context, sqr.supplier_id)
    return sqr


@router.put("/{sqr_id}", response_model=SQRResponse)
async def update_sqr(
    request: Request,
    sqr_id: int,
    sqr_data: SQRUpdate,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    check_supplier_access(user_context, sqr_service.get_sqr(db, sqr_id).supplier_id)
    changes = sqr_data.model_dump(exclude_unset=True)
    sqr = sqr_service.update_sqr(db, sqr_id, changes)
    record_audit(db, request, user_context, "update_sqr", "supplier_quote_request", sqr_id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(sqr)
    return sqr


@router.delete("/{sqr_id}", status_code=204)
async def delete_sqr(
    request: Request,
    sqr_id: int,
    user_context: dict = Depends(require_buyer),
    db: Session = Depends(get_db)
):
    sqr_service.delete_sqr(db, sqr_id)
    record_audit(db, request, user_context, "delete_sqr", "supplier_quote_request", sqr_id)
    db.commit()
    return Response(status_code=204)


@router.get("/{sqr_id}/excel")
async def download_sqr_workbook(
    sqr_id: int,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Generate a fresh workbook for this SQR. Earlier workbooks stop being accepted."""
    check_supplier_access(user_context, sqr_service.get_sqr(db, sqr_id).supplier_id)
    data, filename = await run_in_threadpool(sqr_service.generate_workbook, db, sqr_id)
    return xlsx_response(data, filename)


@router.post("/{sqr_id}/excel", response_model=SQRImportResponse)
async def upload_sqr_workbook(
    request: Request,
    sqr_id: int,
    file: UploadFile = File(...),
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Import a completed workbook. The SQR stays in draft until submitted."""
    check_supplier_access(user_context, sqr_service.get_sqr(db, sqr_id).supplier_id)
    content = await read_workbook_upload(file)
    sqr, result, version = await run_in_threadpool(
        sqr_service.import_workbook, db, sqr_id, content, user_context["user_id"]
    )
    record_audit(db, request, user_context, "import_sqr_workbook", "supplier_quote_request", sqr_id,
                 {"version": version.version, "diagnostics": len(result.diagnostics)})
    db.commit()
    db.refresh(sqr)
    return SQRImportResponse(
        sqr=SQRResponse.model_validate(sqr),
        version=version.version,
        verified=result.verification.verified,
        diagnostics=[d.to_dict() for d in result.diagnostics],
    )


@router.post("/{sqr_id}/submit", response_model=SQRResponse)
async def submit_sqr(
    request: Request,
    sqr_id: int,
    user_context: dict = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    check_supplier_access(user_context, sqr_service.get_sqr(db, sqr_id).supplier_id)
    sqr = sqr_service.submit_sqr(db, sqr_id)
    record_audit(db, request, user_context, "submit_sqr", "supplier_quote_request", sqr_id)
    db.commit()
    db.refresh(sqr)
    return sqr

"""
Supplier responses API routes.

Static paths (workspace, lines, line-status, manual-line, revisions) are
registered before the `/{response_id}` routes.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from partflow.core.errors import NotFound
from partflow.core.rbac import get_current_user_context, require_operator
from partflow.db.models import ResponseLine, ResponseRevision, SupplierResponse, model_to_dict
from partflow.db.session import get_db
from partflow.services import workspace
from partflow.services.line_status import rebuild_line_status, set_line_statuses
from partflow.services.request_status import commit_and_notify
from partflow.services.response_entry import (
    ManualLineRequest, add_revision_line, create_manual_line, create_response,
)
from partflow.services.response_ledger import (
    insert_next_revision, record_line_action, revise_line, update_response_status,
)
from partflow.services.rfq_records import get_rfq_supplier

router = APIRouter(prefix="/api/supplier-responses", tags=["Supplier Responses"])


# ============= SCHEMAS =============

class SupplierResponseCreate(BaseModel):
    rfq_supplier_id: int
    status: Optional[str] = None
    create_revision: bool = True
    note: Optional[str] = None


class SupplierResponseUpdate(BaseModel):
    status: str


class RevisionCreate(BaseModel):
    note: Optional[str] = None


class RevisionResponse(BaseModel):
    id: int
    rfq_supplier_response_id: int
    rev_number: int
    note: Optional[str]
    created_by_user_id: Optional[int]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class LineCommercialFields(BaseModel):
    offer_type: Optional[str] = None
    supplier_reply_status: Optional[str] = None
    offered_qty: Optional[float] = None
    moq: Optional[int] = Field(None, ge=0)
    packaging: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, ge=0)
    price: Optional[float] = None
    currency: Optional[str] = None
    validity_days: Optional[int] = Field(None, ge=0)
    payment_terms: Optional[str] = None
    incoterms: Optional[str] = None
    note: Optional[str] = None


class RevisionLineCreate(LineCommercialFields):
    rfq_item_id: Optional[int] = None
    selection_key: Optional[str] = None
    supplier_part_id: Optional[int] = None
    original_part_id: Optional[int] = None
    requested_original_part_id: Optional[int] = None
    bundle_id: Optional[int] = None
    rfq_item_component_id: Optional[int] = None
    based_on_response_line_id: Optional[int] = None
    entry_source: Optional[str] = None
    change_reason: Optional[str] = None
    reason: Optional[str] = None


class SupplierPartPayload(BaseModel):
    supplier_part_number: Optional[str] = None
    description_ru: Optional[str] = None
    description_en: Optional[str] = None
    part_type: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, ge=0)
    min_order_qty: Optional[int] = Field(None, ge=0)
    packaging: Optional[str] = None
    weight_kg: Optional[float] = None
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None
    is_overweight: Optional[bool] = None
    is_oversize: Optional[bool] = None


class ManualLineCreate(LineCommercialFields):
    rfq_id: Optional[int] = None
    supplier_id: Optional[int] = None
    rfq_item_id: Optional[int] = None
    line_number: Optional[int] = None
    selection_key: Optional[str] = None
    rfq_item_component_id: Optional[int] = None
    original_part_id: Optional[int] = None
    requested_original_part_id: Optional[int] = None
    bundle_id: Optional[int] = None
    supplier_part_id: Optional[int] = None
    supplier_part_number: Optional[str] = None
    supplier_part: Optional[SupplierPartPayload] = None
    create_supplier_part: bool = False
    link_supplier_part_to_original: bool = True
    change_reason: Optional[str] = None
    reason: Optional[str] = None
    new_revision: bool = False


class LineRevise(BaseModel):
    """Negotiated change; only the fields sent override the base line."""
    reason: Optional[str] = None
    change_reason: Optional[str] = None
    new_revision: bool = True
    note: Optional[str] = None
    selection_key: Optional[str] = None
    supplier_part_id: Optional[int] = None
    original_part_id: Optional[int] = None
    requested_original_part_id: Optional[int] = None
    bundle_id: Optional[int] = None
    rfq_item_component_id: Optional[int] = None
    offer_type: Optional[str] = None
    supplier_reply_status: Optional[str] = None
    offered_qty: Optional[float] = None
    moq: Optional[int] = Field(None, ge=0)
    packaging: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, ge=0)
    price: Optional[float] = None
    currency: Optional[str] = None
    validity_days: Optional[int] = Field(None, ge=0)
    payment_terms: Optional[str] = None
    incoterms: Optional[str] = None


_REVISE_CONTROL_FIELDS = {"reason", "change_reason", "new_revision"}


class LineActionCreate(BaseModel):
    action_type: str
    payload: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


class LineStatusEntry(BaseModel):
    rfq_item_id: int
    status: Optional[str] = None
    source_type: Optional[str] = None
    source_ref: Optional[str] = None
    note: Optional[str] = None


class LineStatusUpdate(BaseModel):
    rfq_id: int
    supplier_id: int
    lines: List[LineStatusEntry] = []


class LineStatusRebuild(BaseModel):
    rfq_id: int
    supplier_id: int


def _response_payload(db: Session, response: SupplierResponse) -> dict:
    db.refresh(response)
    return model_to_dict(response)


def _line_payload(line: ResponseLine, db: Session) -> dict:
    return workspace.get_line(db, line.id)


# ============= LISTING ROUTES =============

@router.get("", response_model=List[dict])
async def list_supplier_responses(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """List supplier responses with their RFQ and supplier."""
    return workspace.list_responses(db)


@router.get("/workspace", response_model=List[dict])
async def get_workspace(
    rfq_id: Optional[int] = Query(None, description="RFQ to project"),
    supplier_id: Optional[int] = Query(None, description="Restrict to one supplier"),
    include_archived: bool = Query(False, description="Include items of superseded request revisions"),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """Current state of every (supplier, RFQ line, selection) of an RFQ."""
    if not rfq_id:
        return []
    return workspace.build_workspace(db, rfq_id, supplier_id=supplier_id, include_archived=include_archived)


@router.get("/lines", response_model=List[dict])
async def list_response_lines(
    rfq_id: Optional[int] = Query(None),
    supplier_id: Optional[int] = Query(None),
    include_archived: bool = Query(False),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    if not rfq_id:
        return []
    return workspace.list_lines(db, rfq_id, supplier_id=supplier_id, include_archived=include_archived)


@router.get("/line-actions", response_model=List[dict])
async def list_line_actions(
    rfq_id: Optional[int] = Query(None),
    supplier_id: Optional[int] = Query(None),
    line_number: Optional[int] = Query(None),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """Audit trail of response lines, newest first."""
    if not rfq_id:
        return []
    return workspace.list_line_actions(db, rfq_id, supplier_id=supplier_id, line_number=line_number)


# ============= LINE STATUS ROUTES =============

@router.put("/line-status")
async def update_line_status(
    body: LineStatusUpdate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Set operator-chosen statuses for items of the active revision."""
    rfq_supplier = get_rfq_supplier(db, body.rfq_id, body.supplier_id)
    updated = set_line_statuses(db, rfq_supplier, [entry.model_dump() for entry in body.lines])
    db.commit()
    return {"updated": updated}


@router.post("/line-status/rebuild")
async def rebuild_line_status_route(
    body: LineStatusRebuild,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Recompute line statuses of one RFQ supplier from the ledger."""
    rfq_supplier = get_rfq_supplier(db, body.rfq_id, body.supplier_id)
    counts = rebuild_line_status(db, rfq_supplier.id)
    db.commit()
    return {"success": True, **counts}


# ============= LINE ROUTES =============

@router.post("/manual-line", status_code=status.HTTP_201_CREATED)
async def create_manual_response_line(
    body: ManualLineCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Record an offer typed in by an operator."""
    data = body.model_dump(exclude={"reason", "supplier_part"})
    data["change_reason"] = body.change_reason or body.reason
    data["supplier_part"] = body.supplier_part.model_dump(exclude_none=True) if body.supplier_part else {}
    result = create_manual_line(db, ManualLineRequest(**data), user_id=user_context["user_id"])
    commit_and_notify(db)

    payload = _line_payload(result.line, db)
    payload["rfq_line_number"] = result.rfq_line_number
    payload["supplier_part_created"] = result.supplier_part_created
    return payload


@router.post("/lines/{line_id}/revise", status_code=status.HTTP_201_CREATED)
async def revise_response_line(
    line_id: int,
    body: LineRevise,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Record a negotiated change as a new line based on `line_id`."""
    overrides = body.model_dump(exclude_unset=True, exclude=_REVISE_CONTROL_FIELDS)
    line = revise_line(
        db,
        line_id,
        overrides,
        reason=body.reason or body.change_reason,
        note=body.note,
        new_revision=body.new_revision,
        user_id=user_context["user_id"],
    )
    commit_and_notify(db)
    return _line_payload(line, db)


@router.post("/lines/{line_id}/actions", status_code=status.HTTP_201_CREATED)
async def create_line_action(
    line_id: int,
    body: LineActionCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    action = record_line_action(
        db, line_id, body.action_type, payload=body.payload, reason=body.reason, user_id=user_context["user_id"]
    )
    db.commit()
    db.refresh(action)
    return model_to_dict(action)


@router.get("/revisions/{revision_id}/lines", response_model=List[dict])
async def list_revision_lines(
    revision_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return workspace.list_revision_lines(db, revision_id)


@router.post("/revisions/{revision_id}/lines", status_code=status.HTTP_201_CREATED)
async def create_revision_line(
    revision_id: int,
    body: RevisionLineCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Append a line directly into an existing revision."""
    line = add_revision_line(db, revision_id, body.model_dump(), user_id=user_context["user_id"])
    commit_and_notify(db)
    return _line_payload(line, db)


# ============= RESPONSE ROUTES =============

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_supplier_response(
    body: SupplierResponseCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Open the response of an invited supplier, with revision 1 by default."""
    response = create_response(
        db,
        body.rfq_supplier_id,
        status=body.status,
        create_revision=body.create_revision,
        note=body.note,
        user_id=user_context["user_id"],
    )
    commit_and_notify(db)

    payload = _response_payload(db, response)
    revision = response.revisions[-1] if response.revisions else None
    payload["revision"] = RevisionResponse.model_validate(revision).model_dump() if revision else None
    return payload


@router.get("/{response_id}")
async def get_supplier_response(
    response_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    response = db.get(SupplierResponse, response_id)
    if response is None:
        raise NotFound(f"Supplier response {response_id} not found")
    return model_to_dict(response)


@router.put("/{response_id}")
async def update_supplier_response(
    response_id: int,
    body: SupplierResponseUpdate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Change the review status of a response (e.g. approval)."""
    response = update_response_status(db, response_id, body.status)
    commit_and_notify(db)
    return _response_payload(db, response)


@router.get("/{response_id}/revisions", response_model=List[RevisionResponse])
async def list_response_revisions(
    response_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    if db.get(SupplierResponse, response_id) is None:
        raise NotFound(f"Supplier response {response_id} not found")
    return (
        db.query(ResponseRevision)
        .filter(ResponseRevision.rfq_supplier_response_id == response_id)
        .order_by(ResponseRevision.rev_number.desc())
        .all()
    )


@router.post("/{response_id}/revisions", response_model=RevisionResponse, status_code=status.HTTP_201_CREATED)
async def create_response_revision(
    response_id: int,
    body: RevisionCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    response = db.get(SupplierResponse, response_id)
    if response is None:
        raise NotFound(f"Supplier response {response_id} not found")
    revision = insert_next_revision(db, response, note=body.note, user_id=user_context["user_id"])
    db.commit()
    db.refresh(revision)
    return revision

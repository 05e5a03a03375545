"""
Supplier catalog API routes: resolve-or-create and part-number aliases.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from partflow.core.rbac import get_current_user_context, require_operator
from partflow.db.models import SupplierPart, model_to_dict
from partflow.db.session import get_db
from partflow.services.part_catalog import (
    PartAttributes, add_alias, list_aliases, resolve_or_create_supplier_part,
)

router = APIRouter(prefix="/api/supplier-parts", tags=["Supplier Parts"])


# ============= SCHEMAS =============

class SupplierPartResolve(BaseModel):
    supplier_id: int
    supplier_part_id: Optional[int] = None
    supplier_part_number: Optional[str] = None
    original_part_id: Optional[int] = None
    create_if_missing: bool = False
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


_RESOLVE_KEYS = {"supplier_id", "supplier_part_id", "supplier_part_number", "original_part_id", "create_if_missing"}


class AliasCreate(BaseModel):
    alias_part_number: str
    note: Optional[str] = None


class AliasResponse(BaseModel):
    id: int
    supplier_id: int
    supplier_part_id: int
    alias_part_number: str
    alias_canonical_part_number: str
    is_active: bool
    note: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


# ============= ROUTES =============

@router.post("/resolve")
async def resolve_supplier_part(
    body: SupplierPartResolve,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """
    Find a supplier part by ID or part number, creating it only when
    `create_if_missing` is set. Existing attributes are never overwritten.
    """
    attributes = PartAttributes(**body.model_dump(exclude=_RESOLVE_KEYS))
    resolution = resolve_or_create_supplier_part(
        db,
        body.supplier_id,
        part_id=body.supplier_part_id,
        part_number=body.supplier_part_number,
        attributes=attributes,
        original_part_id=body.original_part_id,
        create_if_missing=body.create_if_missing,
    )
    db.commit()

    part = db.get(SupplierPart, resolution.supplier_part_id)
    return {
        "supplier_part_id": resolution.supplier_part_id,
        "created": resolution.created,
        "supplier_part": model_to_dict(part),
    }


@router.get("/{supplier_part_id}/aliases", response_model=List[AliasResponse])
async def list_supplier_part_aliases(
    supplier_part_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return list_aliases(db, supplier_part_id)


@router.post("/{supplier_part_id}/aliases", response_model=AliasResponse, status_code=status.HTTP_201_CREATED)
async def create_supplier_part_alias(
    supplier_part_id: int,
    body: AliasCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    alias = add_alias(db, supplier_part_id, body.alias_part_number, note=body.note)
    db.commit()
    db.refresh(alias)
    return alias

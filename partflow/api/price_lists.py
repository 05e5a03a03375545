"""
Supplier price lists API routes.
"""
from typing import List, Optional
from datetime import date

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from partflow.core.rbac import get_current_user_context, require_operator
from partflow.db.models import model_to_dict
from partflow.db.session import get_db
from partflow.services import price_lists
from partflow.services.price_list_activation import activate_price_list
from partflow.services.spreadsheet import read_first_sheet

router = APIRouter(prefix="/api/supplier-price-lists", tags=["Supplier Price Lists"])


# ============= SCHEMAS =============

class PriceListCreate(BaseModel):
    supplier_id: int
    list_code: Optional[str] = None
    list_name: Optional[str] = None
    currency_default: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    note: Optional[str] = None


class PriceListUpdate(BaseModel):
    list_code: Optional[str] = None
    list_name: Optional[str] = None
    currency_default: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    note: Optional[str] = None


class PriceListLineFields(BaseModel):
    supplier_part_number_raw: Optional[str] = None
    material_code_raw: Optional[str] = None
    description_raw: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    offer_type: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, ge=0)
    min_order_qty: Optional[int] = Field(None, ge=0)
    packaging: Optional[str] = None
    validity_days: Optional[int] = Field(None, ge=0)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    comment: Optional[str] = None


class FillFromCatalogRequest(BaseModel):
    only_without_actual_price: bool = False


def _price_list_payload(db: Session, price_list_id: int) -> dict:
    rows = [row for row in price_lists.list_price_lists(db) if row["id"] == price_list_id]
    if rows:
        return rows[0]
    return model_to_dict(price_lists.get_price_list(db, price_list_id))


def _line_payload(db: Session, price_list_id: int, line_id: int) -> dict:
    for row in price_lists.list_lines(db, price_list_id):
        if row["id"] == line_id:
            return row
    return {}


# ============= PRICE LIST ROUTES =============

@router.get("", response_model=List[dict])
async def list_supplier_price_lists(
    supplier_id: Optional[int] = Query(None),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """List price lists with line counters, newest first."""
    return price_lists.list_price_lists(db, supplier_id=supplier_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_supplier_price_list(
    body: PriceListCreate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    price_list = price_lists.create_price_list(db, body.model_dump(), user_id=user_context["user_id"])
    db.commit()
    return _price_list_payload(db, price_list.id)


@router.get("/{price_list_id}")
async def get_supplier_price_list(
    price_list_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return _price_list_payload(db, price_list_id)


@router.put("/{price_list_id}")
async def update_supplier_price_list(
    price_list_id: int,
    body: PriceListUpdate,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    price_lists.update_price_list(db, price_list_id, body.model_dump(exclude_unset=True))
    db.commit()
    return _price_list_payload(db, price_list_id)


@router.delete("/{price_list_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_supplier_price_list(
    price_list_id: int,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Delete a list that was never activated."""
    price_lists.delete_price_list(db, price_list_id, user_id=user_context["user_id"])
    db.commit()


# ============= LINE ROUTES =============

@router.get("/{price_list_id}/lines", response_model=List[dict])
async def list_price_list_lines(
    price_list_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return price_lists.list_lines(db, price_list_id)


@router.post("/{price_list_id}/lines", status_code=status.HTTP_201_CREATED)
async def add_price_list_line(
    price_list_id: int,
    body: PriceListLineFields,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Add a line by hand; the matcher classifies it like an imported row."""
    line = price_lists.add_line(db, price_list_id, body.model_dump(), user_id=user_context["user_id"])
    db.commit()
    return _line_payload(db, price_list_id, line.id)


@router.put("/lines/{line_id}")
async def update_price_list_line(
    line_id: int,
    body: PriceListLineFields,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    line = price_lists.update_line(db, line_id, body.model_dump(exclude_unset=True))
    db.commit()
    return _line_payload(db, line.supplier_price_list_id, line.id)


@router.delete("/lines/{line_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_price_list_line(
    line_id: int,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    price_lists.delete_line(db, line_id)
    db.commit()


# ============= IMPORT & ACTIVATION ROUTES =============

@router.post("/{price_list_id}/import")
async def import_price_list(
    price_list_id: int,
    file: UploadFile = File(...),
    replace: bool = Form(True),
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """
    Import the first sheet of an uploaded workbook.

    Each row is classified as matched, new part, ambiguous, error or ignored.
    With `replace` (default) existing lines are removed first.
    """
    price_lists.get_price_list(db, price_list_id)
    content = await file.read()
    rows = read_first_sheet(content, file.filename)

    result = price_lists.import_rows(
        db,
        price_list_id,
        rows,
        replace=replace,
        source_file_name=file.filename,
        user_id=user_context["user_id"],
    )
    db.commit()
    return result


@router.post("/{price_list_id}/fill-from-catalog")
async def fill_price_list_from_catalog(
    price_list_id: int,
    body: Optional[FillFromCatalogRequest] = None,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Seed lines for catalog parts not yet on the list."""
    options = body or FillFromCatalogRequest()
    result = price_lists.fill_from_catalog(
        db,
        price_list_id,
        only_without_actual_price=options.only_without_actual_price,
        user_id=user_context["user_id"],
    )
    db.commit()
    return result


@router.post("/{price_list_id}/activate")
async def activate_supplier_price_list(
    price_list_id: int,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Make this the supplier's active list and write its prices to history."""
    result = activate_price_list(db, price_list_id, user_id=user_context["user_id"])
    db.commit()
    return result

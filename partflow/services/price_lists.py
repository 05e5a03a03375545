"""
Supplier price lists: lifecycle records, their lines and spreadsheet import.

Lines are matched against the supplier catalog whenever they are written.
A list only accepts line changes while it is a draft; activation lives in
price_list_activation.
"""
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from partflow.core.errors import Conflict, NotFound, ValidationFailed
from partflow.core.logging import audit, get_logger
from partflow.db.models import (
    PRICE_LIST_ISSUE_STATUSES, Material, PartSupplier, PriceListLineStatus, PriceListStatus,
    SupplierPart, SupplierPartPrice, SupplierPriceList, SupplierPriceListLine, model_to_dict,
)
from partflow.services.canonical import (
    canonicalize, int_or_null, norm_currency, norm_offer_type, num_or_null, nz, parse_date_only,
)
from partflow.services.price_list_matcher import (
    MATCH_CONFIDENCE, MatchIndex, classify_row, match_fields,
)
from partflow.services.spreadsheet import FIRST_DATA_ROW

logger = get_logger(__name__)

CATALOG_SEED_METHOD = "catalog_seed"

# Free-text line columns and the normalizer applied to each
_LINE_NORMALIZERS = {
    "source_row_no": int_or_null,
    "description_raw": nz,
    "price": num_or_null,
    "currency": norm_currency,
    "offer_type": norm_offer_type,
    "lead_time_days": int_or_null,
    "min_order_qty": int_or_null,
    "packaging": nz,
    "validity_days": int_or_null,
    "valid_from": parse_date_only,
    "valid_to": parse_date_only,
    "comment": nz,
}


# ============= LISTS =============

def _counters():
    return (
        func.count(SupplierPriceListLine.id).label("lines_count"),
        func.coalesce(
            func.sum(case((SupplierPriceListLine.line_status == PriceListLineStatus.MATCHED.value, 1), else_=0)), 0
        ).label("matched_count"),
        func.coalesce(
            func.sum(case((SupplierPriceListLine.line_status.in_(PRICE_LIST_ISSUE_STATUSES), 1), else_=0)), 0
        ).label("issues_count"),
    )


def list_price_lists(db: Session, supplier_id: Optional[int] = None) -> List[dict]:
    """Price lists with supplier name and line counters, newest first."""
    query = (
        db.query(SupplierPriceList, PartSupplier.name.label("supplier_name"), *_counters())
        .join(PartSupplier, PartSupplier.id == SupplierPriceList.supplier_id)
        .outerjoin(SupplierPriceListLine, SupplierPriceListLine.supplier_price_list_id == SupplierPriceList.id)
        .group_by(SupplierPriceList.id, PartSupplier.name)
        .order_by(SupplierPriceList.created_at.desc(), SupplierPriceList.id.desc())
    )
    if supplier_id:
        query = query.filter(SupplierPriceList.supplier_id == supplier_id)

    rows = []
    for row in query.all():
        data = row._asdict()
        rows.append({**model_to_dict(data.pop("SupplierPriceList")), **data})
    return rows


def get_price_list(db: Session, price_list_id: int) -> SupplierPriceList:
    price_list = db.get(SupplierPriceList, price_list_id)
    if price_list is None:
        raise NotFound(f"Price list {price_list_id} not found", reason="PRICE_LIST_NOT_FOUND")
    return price_list


def _require_draft(price_list: SupplierPriceList):
    if price_list.status != PriceListStatus.DRAFT.value:
        raise Conflict(
            f"Price list {price_list.id} is {price_list.status}; only draft lists can be edited",
            reason="PRICE_LIST_NOT_DRAFT",
        )


def create_price_list(db: Session, values: dict, user_id: Optional[int] = None) -> SupplierPriceList:
    supplier_id = int_or_null(values.get("supplier_id"))
    if not supplier_id:
        raise ValidationFailed("Supplier is required", reason="SUPPLIER_REQUIRED")
    if db.get(PartSupplier, supplier_id) is None:
        raise NotFound(f"Supplier {supplier_id} not found", reason="SUPPLIER_NOT_FOUND")

    price_list = SupplierPriceList(
        supplier_id=supplier_id,
        list_code=nz(values.get("list_code")),
        list_name=nz(values.get("list_name")),
        status=PriceListStatus.DRAFT.value,
        currency_default=norm_currency(values.get("currency_default")),
        valid_from=parse_date_only(values.get("valid_from")),
        valid_to=parse_date_only(values.get("valid_to")),
        note=nz(values.get("note")),
        uploaded_by_user_id=user_id,
    )
    db.add(price_list)
    db.flush()
    logger.info(f"Created price list {price_list.id} for supplier {supplier_id}")
    return price_list


_LIST_NORMALIZERS = {
    "list_code": nz,
    "list_name": nz,
    "currency_default": norm_currency,
    "valid_from": parse_date_only,
    "valid_to": parse_date_only,
    "note": nz,
}


def update_price_list(db: Session, price_list_id: int, values: dict) -> SupplierPriceList:
    """Partial update: blank values leave the stored value in place."""
    price_list = get_price_list(db, price_list_id)
    for key, normalize in _LIST_NORMALIZERS.items():
        if key in values:
            value = normalize(values[key])
            if value is not None:
                setattr(price_list, key, value)
    db.flush()
    return price_list


def delete_price_list(db: Session, price_list_id: int, user_id: Optional[int] = None):
    """Delete a list that never reached the price history."""
    price_list = (
        db.query(SupplierPriceList).filter(SupplierPriceList.id == price_list_id).with_for_update().first()
    )
    if price_list is None:
        raise NotFound(f"Price list {price_list_id} not found", reason="PRICE_LIST_NOT_FOUND")
    if price_list.status == PriceListStatus.ACTIVE.value:
        raise Conflict("Cannot delete the active price list; activate another one first", reason="PRICE_LIST_ACTIVE")
    if price_list.activated_at is not None:
        raise Conflict(
            f"Price list {price_list_id} has been activated; its price history is permanent",
            reason="PRICE_LIST_HAS_HISTORY",
        )
    db.delete(price_list)
    db.flush()
    audit("price_list.deleted", "supplier_price_list", price_list_id, user_id=user_id)


# ============= LINES =============

def list_lines(db: Session, price_list_id: int) -> List[dict]:
    get_price_list(db, price_list_id)
    query = (
        db.query(
            SupplierPriceListLine,
            SupplierPart.supplier_part_number.label("supplier_part_number"),
            Material.code.label("material_code"),
            Material.name.label("material_name"),
        )
        .outerjoin(SupplierPart, SupplierPart.id == SupplierPriceListLine.matched_supplier_part_id)
        .outerjoin(Material, Material.id == SupplierPriceListLine.matched_material_id)
        .filter(SupplierPriceListLine.supplier_price_list_id == price_list_id)
        .order_by(func.coalesce(SupplierPriceListLine.source_row_no, 999999), SupplierPriceListLine.id)
    )
    rows = []
    for row in query.all():
        data = row._asdict()
        rows.append({**model_to_dict(data.pop("SupplierPriceListLine")), **data})
    return rows


def add_line(db: Session, price_list_id: int, values: dict, user_id: Optional[int] = None) -> SupplierPriceListLine:
    price_list = get_price_list(db, price_list_id)
    _require_draft(price_list)

    part_number = nz(values.get("supplier_part_number_raw"))
    material_code = nz(values.get("material_code_raw"))
    fields = {key: normalize(values.get(key)) for key, normalize in _LINE_NORMALIZERS.items()}

    index = MatchIndex.build(db, price_list.supplier_id)
    line = SupplierPriceListLine(
        supplier_price_list_id=price_list.id,
        supplier_part_number_raw=part_number,
        material_code_raw=material_code,
        imported_by_user_id=user_id,
        **fields,
        **match_fields(index, part_number, material_code),
    )
    db.add(line)
    db.flush()
    return line


def update_line(db: Session, line_id: int, values: dict) -> SupplierPriceListLine:
    """
    Edit a line and re-run the matcher.

    Part number and material code are replaced when supplied; other fields
    keep their stored value unless a non-blank replacement is given.
    """
    line = db.get(SupplierPriceListLine, line_id)
    if line is None:
        raise NotFound(f"Price list line {line_id} not found", reason="PRICE_LIST_LINE_NOT_FOUND")
    _require_draft(line.price_list)

    if "supplier_part_number_raw" in values:
        line.supplier_part_number_raw = nz(values["supplier_part_number_raw"])
    if "material_code_raw" in values:
        line.material_code_raw = nz(values["material_code_raw"])
    for key, normalize in _LINE_NORMALIZERS.items():
        if key in values:
            value = normalize(values[key])
            if value is not None:
                setattr(line, key, value)

    index = MatchIndex.build(db, line.price_list.supplier_id)
    for key, value in match_fields(index, line.supplier_part_number_raw, line.material_code_raw).items():
        setattr(line, key, value)
    db.flush()
    return line


def delete_line(db: Session, line_id: int):
    line = db.get(SupplierPriceListLine, line_id)
    if line is None:
        raise NotFound(f"Price list line {line_id} not found", reason="PRICE_LIST_LINE_NOT_FOUND")
    _require_draft(line.price_list)
    db.delete(line)
    db.flush()


# ============= IMPORT =============

def import_rows(
    db: Session,
    price_list_id: int,
    rows: List[dict],
    replace: bool = True,
    source_file_name: Optional[str] = None,
    user_id: Optional[int] = None,
) -> dict:
    """
    Insert decoded spreadsheet rows as lines, classifying each one.

    With `replace` the existing lines are removed first. Returns the
    inserted/matched/issues counts.
    """
    price_list = get_price_list(db, price_list_id)
    _require_draft(price_list)
    if not rows:
        raise ValidationFailed("The file contains no rows", reason="EMPTY_FILE")

    index = MatchIndex.build(db, price_list.supplier_id)
    if replace:
        db.query(SupplierPriceListLine).filter(
            SupplierPriceListLine.supplier_price_list_id == price_list.id
        ).delete(synchronize_session=False)
        db.expire(price_list, ["lines"])

    inserted = matched = issues = 0
    for offset, row in enumerate(rows):
        values = classify_row(row, index)
        db.add(SupplierPriceListLine(
            supplier_price_list_id=price_list.id,
            source_row_no=offset + FIRST_DATA_ROW,
            imported_by_user_id=user_id,
            **values,
        ))
        inserted += 1
        if values["line_status"] == PriceListLineStatus.MATCHED.value:
            matched += 1
        elif values["line_status"] in PRICE_LIST_ISSUE_STATUSES:
            issues += 1

    if source_file_name:
        price_list.source_file_name = source_file_name
    price_list.uploaded_by_user_id = user_id
    db.flush()

    audit(
        "price_list.imported",
        "supplier_price_list",
        price_list.id,
        user_id=user_id,
        file=source_file_name,
        replace=replace,
        inserted=inserted,
        matched=matched,
        issues=issues,
    )
    return {"success": True, "inserted": inserted, "matched": matched, "issues": issues}


def _has_current_price(latest: Optional[SupplierPartPrice], today: date) -> bool:
    if latest is None:
        return False
    if latest.validity_days and latest.validity_days > 0:
        return latest.date + timedelta(days=latest.validity_days) >= today
    return True


def fill_from_catalog(
    db: Session, price_list_id: int, only_without_actual_price: bool = False, user_id: Optional[int] = None
) -> dict:
    """
    Seed matched lines for catalog parts the list does not cover yet.

    Seeded lines carry no price; the operator fills it in before activation.
    """
    price_list = get_price_list(db, price_list_id)
    _require_draft(price_list)

    covered = {
        part_id
        for (part_id,) in db.query(SupplierPriceListLine.matched_supplier_part_id).filter(
            SupplierPriceListLine.supplier_price_list_id == price_list.id,
            SupplierPriceListLine.matched_supplier_part_id.isnot(None),
        )
    }

    latest_prices = {}
    if only_without_actual_price:
        latest_ids = (
            db.query(func.max(SupplierPartPrice.id))
            .join(SupplierPart, SupplierPart.id == SupplierPartPrice.supplier_part_id)
            .filter(SupplierPart.supplier_id == price_list.supplier_id)
            .group_by(SupplierPartPrice.supplier_part_id)
        )
        for price in db.query(SupplierPartPrice).filter(SupplierPartPrice.id.in_(latest_ids)):
            latest_prices[price.supplier_part_id] = price

    today = date.today()
    inserted = 0
    parts = (
        db.query(SupplierPart, Material.code)
        .outerjoin(Material, Material.id == SupplierPart.default_material_id)
        .filter(SupplierPart.supplier_id == price_list.supplier_id)
        .order_by(SupplierPart.id)
    )
    for part, material_code in parts:
        if part.id in covered:
            continue
        if only_without_actual_price and _has_current_price(latest_prices.get(part.id), today):
            continue
        db.add(SupplierPriceListLine(
            supplier_price_list_id=price_list.id,
            line_status=PriceListLineStatus.MATCHED.value,
            supplier_part_number_raw=part.supplier_part_number,
            supplier_part_number_canonical=part.canonical_part_number or canonicalize(part.supplier_part_number),
            description_raw=nz(part.description_ru) or nz(part.description_en),
            material_code_raw=material_code,
            currency=price_list.currency_default,
            offer_type=nz(part.part_type) or norm_offer_type(None),
            lead_time_days=part.lead_time_days,
            min_order_qty=part.min_order_qty,
            packaging=part.packaging,
            valid_from=price_list.valid_from,
            valid_to=price_list.valid_to,
            matched_supplier_part_id=part.id,
            matched_material_id=part.default_material_id,
            match_confidence=MATCH_CONFIDENCE,
            match_method=CATALOG_SEED_METHOD,
            match_note="Added from supplier catalog",
            imported_by_user_id=user_id,
        ))
        inserted += 1

    db.flush()
    logger.info(f"Seeded {inserted} lines into price list {price_list.id} from the supplier catalog")
    return {"success": True, "inserted": inserted}

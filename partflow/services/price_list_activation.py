"""
Price-list activation pipeline.

Promotes a fully matched list to the supplier's single active list and
copies its priced lines into the append-only price history. Reactivating a
list never duplicates history: a line that already produced a PRICE_LIST row
is skipped.
"""
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from partflow.core.errors import Conflict, NotFound
from partflow.core.logging import audit
from partflow.db.models import (
    PRICE_LIST_ISSUE_STATUSES, OfferType, PriceListLineStatus, PriceListStatus, PriceSourceType,
    SupplierPartPrice, SupplierPriceList, SupplierPriceListLine,
)


def _line_counts(db: Session, price_list_id: int):
    def count(*criteria):
        return (
            db.query(func.count(SupplierPriceListLine.id))
            .filter(SupplierPriceListLine.supplier_price_list_id == price_list_id, *criteria)
            .scalar()
        )

    matched = count(SupplierPriceListLine.line_status == PriceListLineStatus.MATCHED.value)
    issues = count(SupplierPriceListLine.line_status.in_(PRICE_LIST_ISSUE_STATUSES))
    return matched, issues


def activate_price_list(db: Session, price_list_id: int, user_id: Optional[int] = None) -> dict:
    """
    Activate a price list.

    Requires at least one matched line and no error/ambiguous/new-part lines;
    otherwise raises Conflict before anything is written. The caller commits.
    """
    price_list = (
        db.query(SupplierPriceList)
        .filter(SupplierPriceList.id == price_list_id)
        .with_for_update()
        .first()
    )
    if price_list is None:
        raise NotFound(f"Price list {price_list_id} not found", reason="PRICE_LIST_NOT_FOUND")

    matched_count, issues_count = _line_counts(db, price_list.id)
    if not matched_count:
        raise Conflict("No matched lines to activate", reason="NO_MATCHED_LINES")
    if issues_count:
        raise Conflict(
            f"Resolve {issues_count} problem lines before activation", reason="UNRESOLVED_LINES"
        )

    superseded = (
        db.query(SupplierPriceList)
        .filter(
            SupplierPriceList.supplier_id == price_list.supplier_id,
            SupplierPriceList.status == PriceListStatus.ACTIVE.value,
            SupplierPriceList.id != price_list.id,
        )
        .update({SupplierPriceList.status: PriceListStatus.SUPERSEDED.value}, synchronize_session="fetch")
    )

    price_list.status = PriceListStatus.ACTIVE.value
    price_list.activated_by_user_id = user_id
    price_list.activated_at = datetime.now(timezone.utc)

    lines = (
        db.query(SupplierPriceListLine)
        .filter(
            SupplierPriceListLine.supplier_price_list_id == price_list.id,
            SupplierPriceListLine.line_status == PriceListLineStatus.MATCHED.value,
            SupplierPriceListLine.matched_supplier_part_id.isnot(None),
            SupplierPriceListLine.price.isnot(None),
            SupplierPriceListLine.currency.isnot(None),
        )
        .order_by(SupplierPriceListLine.id)
        .all()
    )

    written = set()
    if lines:
        written = {
            source_id
            for (source_id,) in db.query(SupplierPartPrice.source_id).filter(
                SupplierPartPrice.source_type == PriceSourceType.PRICE_LIST.value,
                SupplierPartPrice.source_id.in_([line.id for line in lines]),
            )
        }

    inserted = 0
    for line in lines:
        if line.id in written:
            continue
        db.add(SupplierPartPrice(
            supplier_part_id=line.matched_supplier_part_id,
            material_id=line.matched_material_id,
            price=line.price,
            currency=line.currency,
            date=line.valid_from or price_list.valid_from or date.today(),
            comment=line.comment or price_list.list_name or price_list.list_code,
            offer_type=line.offer_type or OfferType.UNKNOWN.value,
            lead_time_days=line.lead_time_days,
            min_order_qty=line.min_order_qty,
            packaging=line.packaging,
            validity_days=line.validity_days,
            source_type=PriceSourceType.PRICE_LIST.value,
            source_id=line.id,
            created_by_user_id=user_id,
        ))
        inserted += 1
    db.flush()

    audit(
        "price_list.activated",
        "supplier_price_list",
        price_list.id,
        user_id=user_id,
        supplier_id=price_list.supplier_id,
        superseded=superseded,
        inserted_prices=inserted,
        matched_lines=len(lines),
    )
    return {"success": True, "inserted_prices": inserted, "matched_lines": len(lines)}

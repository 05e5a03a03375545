"""
Line status tracker: one row per (RFQ supplier, RFQ item).

The row is a projection of the response ledger and of active-revision
membership. ARCHIVED is sticky for automatic updates; only an explicit
operator change or a rebuild can bring a row back.
"""
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from partflow.core.errors import NotFound, ValidationFailed
from partflow.core.logging import get_logger
from partflow.db.models import (
    LineStatus, LineStatusValue, ResponseLine, ResponseRevision, RfqItem, RfqSupplier,
    SupplierResponse, enum_values,
)
from partflow.db.session import add_in_savepoint
from partflow.services.canonical import nz
from partflow.services.rfq_records import active_item_ids

logger = get_logger(__name__)

RFQ_RESPONSE_SOURCE = "RFQ_RESPONSE"


def normalize_line_status(value) -> str:
    status = (nz(value) or LineStatusValue.NONE.value).upper()
    if status not in enum_values(LineStatusValue):
        raise ValidationFailed(f"Unknown line status '{value}'", reason="INVALID_LINE_STATUS")
    return status


def _apply(
    row: LineStatus,
    status: str,
    source_type: Optional[str],
    source_ref: Optional[str],
    note: Optional[str],
    last_request_rfq_revision_id: Optional[int],
    last_response_revision_id: Optional[int],
    unarchive: bool,
):
    keep_archived = (
        row.status == LineStatusValue.ARCHIVED.value
        and status != LineStatusValue.ARCHIVED.value
        and not unarchive
    )
    if not keep_archived:
        row.status = status
    row.source_type = source_type
    row.source_ref = source_ref
    # Pointers and note never regress to null
    if last_request_rfq_revision_id is not None:
        row.last_request_rfq_revision_id = last_request_rfq_revision_id
    if last_response_revision_id is not None:
        row.last_response_revision_id = last_response_revision_id
    if note is not None:
        row.note = note
    row.updated_at = func.now()


def upsert_status(
    db: Session,
    rfq_supplier_id: int,
    rfq_item_id: int,
    status: str = LineStatusValue.NONE.value,
    source_type: Optional[str] = None,
    source_ref: Optional[str] = None,
    note: Optional[str] = None,
    last_request_rfq_revision_id: Optional[int] = None,
    last_response_revision_id: Optional[int] = None,
    unarchive: bool = False,
) -> LineStatus:
    """Idempotent upsert keyed by (rfq_supplier_id, rfq_item_id)."""
    args = (
        status, source_type, source_ref, note,
        last_request_rfq_revision_id, last_response_revision_id, unarchive,
    )

    def existing():
        return db.query(LineStatus).filter(
            LineStatus.rfq_supplier_id == rfq_supplier_id,
            LineStatus.rfq_item_id == rfq_item_id,
        ).first()

    row = existing()
    if row is None:
        row = LineStatus(
            rfq_supplier_id=rfq_supplier_id,
            rfq_item_id=rfq_item_id,
            status=status,
            source_type=source_type,
            source_ref=source_ref,
            note=note,
            last_request_rfq_revision_id=last_request_rfq_revision_id,
            last_response_revision_id=last_response_revision_id,
        )
        if add_in_savepoint(db, row):
            return row
        row = existing()
    _apply(row, *args)
    db.flush()
    return row


def set_line_statuses(db: Session, rfq_supplier: RfqSupplier, lines: list) -> int:
    """Apply operator-chosen statuses; items outside the active revision are skipped."""
    active = active_item_ids(db, rfq_supplier.rfq_id)
    updated = 0
    for entry in lines:
        rfq_item_id = entry.get("rfq_item_id")
        if not rfq_item_id or rfq_item_id not in active:
            continue
        upsert_status(
            db,
            rfq_supplier.id,
            rfq_item_id,
            status=normalize_line_status(entry.get("status")),
            source_type=nz(entry.get("source_type")),
            source_ref=nz(entry.get("source_ref")),
            note=nz(entry.get("note")),
            unarchive=True,
        )
        updated += 1
    return updated


def _latest_lines_by_item(db: Session, rfq_supplier_id: int) -> dict:
    rows = (
        db.query(ResponseLine.rfq_item_id, ResponseLine.id, ResponseRevision.id)
        .join(ResponseRevision, ResponseRevision.id == ResponseLine.rfq_response_revision_id)
        .join(SupplierResponse, SupplierResponse.id == ResponseRevision.rfq_supplier_response_id)
        .filter(SupplierResponse.rfq_supplier_id == rfq_supplier_id)
        .order_by(ResponseRevision.rev_number, ResponseLine.id)
        .all()
    )
    latest = {}
    for item_id, line_id, revision_id in rows:
        latest[item_id] = (line_id, revision_id)
    return latest


def rebuild_line_status(db: Session, rfq_supplier_id: int) -> dict:
    """
    Recompute the projection for one RFQ supplier.

    Active items with response lines point at their latest line; active items
    without one become REQUEST unless an operator already set a status;
    every other item of the RFQ is ARCHIVED.
    """
    rfq_supplier = db.get(RfqSupplier, rfq_supplier_id)
    if rfq_supplier is None:
        raise NotFound(f"RFQ supplier {rfq_supplier_id} not found", reason="RFQ_SUPPLIER_NOT_FOUND")

    active = active_item_ids(db, rfq_supplier.rfq_id)
    latest = _latest_lines_by_item(db, rfq_supplier_id)
    existing = {
        row.rfq_item_id: row
        for row in db.query(LineStatus).filter(LineStatus.rfq_supplier_id == rfq_supplier_id).all()
    }
    all_items = [item_id for (item_id,) in db.query(RfqItem.id).filter(RfqItem.rfq_id == rfq_supplier.rfq_id)]

    counts = {"active": 0, "archived": 0}
    for item_id in all_items:
        row = existing.get(item_id)
        if item_id not in active:
            if row is not None or item_id in latest:
                upsert_status(
                    db, rfq_supplier_id, item_id,
                    status=LineStatusValue.ARCHIVED.value,
                    source_type=row.source_type if row else None,
                    source_ref=row.source_ref if row else None,
                )
                counts["archived"] += 1
            continue

        if item_id in latest:
            line_id, revision_id = latest[item_id]
            upsert_status(
                db, rfq_supplier_id, item_id,
                status=LineStatusValue.NONE.value,
                source_type=RFQ_RESPONSE_SOURCE,
                source_ref=str(line_id),
                last_response_revision_id=revision_id,
                unarchive=True,
            )
        elif row is None or row.status == LineStatusValue.ARCHIVED.value:
            upsert_status(
                db, rfq_supplier_id, item_id,
                status=LineStatusValue.REQUEST.value,
                source_type=row.source_type if row else None,
                source_ref=row.source_ref if row else None,
                unarchive=True,
            )
        counts["active"] += 1

    logger.info(
        f"Rebuilt line status for RFQ supplier {rfq_supplier_id}: "
        f"{counts['active']} active, {counts['archived']} archived"
    )
    return counts

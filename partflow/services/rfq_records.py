"""
Read accessors over the client request / RFQ record stores.

An RFQ item is "active" while the client request revision it was created from
is the revision the RFQ currently points at; items of older revisions are
archived.
"""
from dataclasses import dataclass
from typing import Optional, Set

from sqlalchemy.orm import Session

from partflow.core.errors import NotFound
from partflow.db.models import (
    ClientRequestRevision, ClientRequestRevisionItem, Rfq, RfqItem, RfqSupplier,
    ResponseRevision, SupplierResponse,
)


@dataclass(frozen=True)
class ActiveRfqItem:
    id: int
    rfq_id: int
    line_number: int
    requested_original_part_id: Optional[int]
    client_description: Optional[str]


def _active_items_query(db: Session, rfq_id: int):
    return (
        db.query(RfqItem, ClientRequestRevisionItem)
        .join(Rfq, Rfq.id == RfqItem.rfq_id)
        .join(ClientRequestRevisionItem, ClientRequestRevisionItem.id == RfqItem.client_request_revision_item_id)
        .filter(
            RfqItem.rfq_id == rfq_id,
            ClientRequestRevisionItem.client_request_revision_id == Rfq.client_request_revision_id,
        )
    )


def resolve_active_rfq_item(
    db: Session,
    rfq_id: int,
    rfq_item_id: Optional[int] = None,
    line_number: Optional[int] = None,
) -> Optional[ActiveRfqItem]:
    """Find an item of the RFQ's active revision by ID, falling back to line number."""
    row = None
    if rfq_item_id:
        row = _active_items_query(db, rfq_id).filter(RfqItem.id == rfq_item_id).first()
    if row is None and line_number:
        row = (
            _active_items_query(db, rfq_id)
            .filter(RfqItem.line_number == line_number)
            .order_by(RfqItem.id)
            .first()
        )
    if row is None:
        return None
    item, request_item = row
    return ActiveRfqItem(
        id=item.id,
        rfq_id=item.rfq_id,
        line_number=item.line_number,
        requested_original_part_id=request_item.original_part_id,
        client_description=request_item.client_description,
    )


def active_item_ids(db: Session, rfq_id: int) -> Set[int]:
    return {item.id for item, _ in _active_items_query(db, rfq_id).all()}


def requested_original_part_id(db: Session, rfq_item_id: int) -> Optional[int]:
    row = (
        db.query(ClientRequestRevisionItem.original_part_id)
        .join(RfqItem, RfqItem.client_request_revision_item_id == ClientRequestRevisionItem.id)
        .filter(RfqItem.id == rfq_item_id)
        .first()
    )
    return row[0] if row else None


def get_rfq_supplier(db: Session, rfq_id: int, supplier_id: int) -> RfqSupplier:
    rfq_supplier = db.query(RfqSupplier).filter(
        RfqSupplier.rfq_id == rfq_id,
        RfqSupplier.supplier_id == supplier_id,
    ).first()
    if rfq_supplier is None:
        raise NotFound(
            f"Supplier {supplier_id} is not invited to RFQ {rfq_id}", reason="RFQ_SUPPLIER_NOT_FOUND"
        )
    return rfq_supplier


def request_id_for_rfq_supplier(db: Session, rfq_supplier_id: int) -> Optional[int]:
    """Client request that owns the RFQ a supplier was invited to."""
    row = (
        db.query(ClientRequestRevision.client_request_id)
        .join(Rfq, Rfq.client_request_revision_id == ClientRequestRevision.id)
        .join(RfqSupplier, RfqSupplier.rfq_id == Rfq.id)
        .filter(RfqSupplier.id == rfq_supplier_id)
        .first()
    )
    return row[0] if row else None


def rfq_supplier_for_revision(db: Session, revision_id: int) -> Optional[RfqSupplier]:
    return (
        db.query(RfqSupplier)
        .join(SupplierResponse, SupplierResponse.rfq_supplier_id == RfqSupplier.id)
        .join(ResponseRevision, ResponseRevision.rfq_supplier_response_id == SupplierResponse.id)
        .filter(ResponseRevision.id == revision_id)
        .first()
    )

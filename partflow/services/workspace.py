"""
Workspace aggregator: read-only projections over the response ledger.

Nothing here writes. Every listing is filtered by RFQ and optionally by
supplier; archived items (from a superseded client request revision) are
hidden unless asked for.
"""
from typing import List, Optional

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.orm import Session, aliased

from partflow.core.errors import NotFound
from partflow.db.models import (
    ClientRequestRevisionItem, LineAction, LineStatus, LineStatusValue, OriginalPart, PartSupplier,
    ResponseLine, ResponseRevision, Rfq, RfqItem, RfqItemComponent, RfqRevision, RfqSupplier,
    RfqSupplierLineSelection, SupplierPart, SupplierResponse, model_to_dict,
)


class WorkspaceStatus:
    ARCHIVED = "ARCHIVED"
    NOT_SENT = "NOT_SENT"
    RESPONDED = "RESPONDED"
    WAITING_RESPONSE = "WAITING_RESPONSE"


def workspace_status(
    line_status_raw: Optional[str],
    is_archived: bool,
    last_request_rfq_revision_id: Optional[int],
    latest_response_line_id: Optional[int],
) -> str:
    if line_status_raw == LineStatusValue.ARCHIVED.value or is_archived:
        return WorkspaceStatus.ARCHIVED
    if last_request_rfq_revision_id is None:
        return WorkspaceStatus.NOT_SENT
    if latest_response_line_id is not None or line_status_raw in (
        LineStatusValue.NONE.value, LineStatusValue.ACCEPTED_EXISTING.value
    ):
        return WorkspaceStatus.RESPONDED
    return WorkspaceStatus.WAITING_RESPONSE


def _selection_key_expr(column):
    return func.coalesce(func.nullif(func.trim(column), ""), "")


def _latest_lines_subquery(db: Session, rfq_id: int):
    """Latest line per (RFQ supplier, item, selection key), ranked by revision then id."""
    key = _selection_key_expr(ResponseLine.selection_key)
    rank = func.row_number().over(
        partition_by=(SupplierResponse.rfq_supplier_id, ResponseLine.rfq_item_id, key),
        order_by=(ResponseRevision.rev_number.desc(), ResponseLine.id.desc()),
    )
    ranked = (
        db.query(
            SupplierResponse.rfq_supplier_id.label("rfq_supplier_id"),
            ResponseLine.rfq_item_id.label("rfq_item_id"),
            key.label("selection_key"),
            ResponseLine.id.label("response_line_id"),
            ResponseRevision.id.label("response_revision_id"),
            ResponseRevision.rev_number.label("response_rev_number"),
            rank.label("rn"),
        )
        .join(ResponseRevision, ResponseRevision.id == ResponseLine.rfq_response_revision_id)
        .join(SupplierResponse, SupplierResponse.id == ResponseRevision.rfq_supplier_response_id)
        .join(RfqSupplier, RfqSupplier.id == SupplierResponse.rfq_supplier_id)
        .filter(RfqSupplier.rfq_id == rfq_id)
        .subquery("ranked")
    )
    return db.query(ranked).filter(ranked.c.rn == 1).subquery("latest")


_LATEST_FIELDS = (
    "price", "currency", "offered_qty", "offer_type", "supplier_reply_status", "lead_time_days",
    "moq", "packaging", "validity_days", "payment_terms", "incoterms", "note", "change_reason",
    "entry_source",
)


def build_workspace(
    db: Session, rfq_id: int, supplier_id: Optional[int] = None, include_archived: bool = False
) -> List[dict]:
    """
    One row per (RFQ supplier, RFQ item, selection), or one row with no
    selection when the item has none, carrying the line status and the latest
    response line for that selection.
    """
    sel = aliased(RfqSupplierLineSelection)
    req_op = aliased(OriginalPart)
    sel_op = aliased(OriginalPart)
    alt_op = aliased(OriginalPart)
    resp_op = aliased(OriginalPart)
    latest_line = aliased(ResponseLine)
    latest_part = aliased(SupplierPart)
    response_revision = aliased(ResponseRevision)
    latest = _latest_lines_subquery(db, rfq_id)

    query = (
        db.query(
            RfqSupplier.id.label("rfq_supplier_id"),
            RfqSupplier.rfq_id.label("rfq_id"),
            RfqSupplier.supplier_id.label("supplier_id"),
            PartSupplier.name.label("supplier_name"),
            RfqItem.id.label("rfq_item_id"),
            RfqItem.line_number.label("rfq_line_number"),
            RfqItem.uom.label("uom"),
            ClientRequestRevisionItem.client_description.label("client_description"),
            ClientRequestRevisionItem.requested_qty.label("requested_qty"),
            ClientRequestRevisionItem.original_part_id.label("requested_original_part_id"),
            ClientRequestRevisionItem.client_request_revision_id.label("item_request_revision_id"),
            Rfq.client_request_revision_id.label("active_request_revision_id"),
            req_op.cat_number.label("requested_original_cat_number"),
            req_op.description_ru.label("requested_original_description_ru"),
            req_op.description_en.label("requested_original_description_en"),
            sel.id.label("selection_id"),
            sel.selection_key.label("selected_selection_key"),
            sel.line_type.label("selected_line_type"),
            sel.line_label.label("selected_line_label"),
            sel.line_description.label("selected_line_description"),
            sel.original_part_id.label("selected_original_part_id"),
            sel.alt_original_part_id.label("selected_alt_original_part_id"),
            sel.bundle_id.label("selected_bundle_id"),
            sel.bundle_item_id.label("selected_bundle_item_id"),
            sel_op.cat_number.label("selected_original_cat_number"),
            alt_op.cat_number.label("selected_alt_cat_number"),
            LineStatus.status.label("line_status_raw"),
            LineStatus.source_type.label("line_source_type"),
            LineStatus.source_ref.label("line_source_ref"),
            LineStatus.note.label("line_status_note"),
            LineStatus.last_request_rfq_revision_id.label("last_request_rfq_revision_id"),
            RfqRevision.rev_number.label("last_request_rfq_revision_number"),
            LineStatus.last_response_revision_id.label("last_response_revision_id"),
            response_revision.rev_number.label("last_response_revision_number"),
            LineStatus.updated_at.label("line_status_updated_at"),
            latest.c.response_line_id.label("latest_response_line_id"),
            latest.c.response_revision_id.label("latest_response_revision_id"),
            latest.c.response_rev_number.label("latest_response_rev_number"),
            latest_line.created_at.label("latest_response_created_at"),
            *[getattr(latest_line, name).label(f"latest_{name}") for name in _LATEST_FIELDS],
            latest_part.supplier_part_number.label("latest_supplier_part_number"),
            func.coalesce(
                func.nullif(latest_part.description_ru, ""), func.nullif(latest_part.description_en, "")
            ).label("latest_supplier_part_description"),
            resp_op.cat_number.label("response_original_cat_number"),
            resp_op.description_ru.label("response_original_description_ru"),
            resp_op.description_en.label("response_original_description_en"),
        )
        .join(PartSupplier, PartSupplier.id == RfqSupplier.supplier_id)
        .join(RfqItem, RfqItem.rfq_id == RfqSupplier.rfq_id)
        .join(Rfq, Rfq.id == RfqItem.rfq_id)
        .join(ClientRequestRevisionItem, ClientRequestRevisionItem.id == RfqItem.client_request_revision_item_id)
        .outerjoin(req_op, req_op.id == ClientRequestRevisionItem.original_part_id)
        .outerjoin(sel, and_(sel.rfq_supplier_id == RfqSupplier.id, sel.rfq_item_id == RfqItem.id))
        .outerjoin(sel_op, sel_op.id == sel.original_part_id)
        .outerjoin(alt_op, alt_op.id == sel.alt_original_part_id)
        .outerjoin(
            LineStatus,
            and_(LineStatus.rfq_supplier_id == RfqSupplier.id, LineStatus.rfq_item_id == RfqItem.id),
        )
        .outerjoin(RfqRevision, RfqRevision.id == LineStatus.last_request_rfq_revision_id)
        .outerjoin(response_revision, response_revision.id == LineStatus.last_response_revision_id)
        .outerjoin(
            latest,
            and_(
                latest.c.rfq_supplier_id == RfqSupplier.id,
                latest.c.rfq_item_id == RfqItem.id,
                latest.c.selection_key == _selection_key_expr(sel.selection_key),
            ),
        )
        .outerjoin(latest_line, latest_line.id == latest.c.response_line_id)
        .outerjoin(latest_part, latest_part.id == latest_line.supplier_part_id)
        .outerjoin(resp_op, resp_op.id == latest_line.original_part_id)
        .filter(RfqSupplier.rfq_id == rfq_id)
    )
    if supplier_id:
        query = query.filter(RfqSupplier.supplier_id == supplier_id)
    if not include_archived:
        query = query.filter(ClientRequestRevisionItem.client_request_revision_id == Rfq.client_request_revision_id)

    query = query.order_by(
        PartSupplier.name,
        RfqSupplier.supplier_id,
        RfqItem.line_number,
        RfqItem.id,
        func.coalesce(sel.selection_key, ""),
    )

    rows = []
    for row in query.all():
        data = row._asdict()
        is_archived = data.pop("item_request_revision_id") != data.pop("active_request_revision_id")
        data["is_archived"] = is_archived
        data["selection_count"] = 0 if data["selection_id"] is None else 1
        data["line_status"] = data["line_status_raw"] or LineStatusValue.REQUEST.value
        data["workspace_status"] = workspace_status(
            data["line_status_raw"],
            is_archived,
            data["last_request_rfq_revision_id"],
            data["latest_response_line_id"],
        )
        rows.append(data)
    return rows


def _accepted_from_existing_price():
    existing = aliased(RfqSupplierLineSelection)
    return exists().where(
        existing.rfq_supplier_id == RfqSupplier.id,
        existing.rfq_item_id == ResponseLine.rfq_item_id,
        existing.use_existing_price.is_(True),
        existing.bundle_id.is_not_distinct_from(ResponseLine.bundle_id),
        or_(
            and_(
                existing.alt_original_part_id.isnot(None),
                existing.alt_original_part_id == ResponseLine.original_part_id,
            ),
            and_(
                existing.alt_original_part_id.is_(None),
                existing.original_part_id.is_not_distinct_from(ResponseLine.original_part_id),
            ),
        ),
    )


def _lines_query(db: Session):
    """Response lines joined with their RFQ, supplier, selection, component and status."""
    sel = aliased(RfqSupplierLineSelection)
    req_op = aliased(OriginalPart)
    comp_op = aliased(OriginalPart)
    resp_op = aliased(OriginalPart)
    requested_id = func.coalesce(
        ResponseLine.requested_original_part_id,
        sel.original_part_id,
        ClientRequestRevisionItem.original_part_id,
    )
    component_original_id = func.coalesce(RfqItemComponent.original_part_id, sel.original_part_id)

    query = (
        db.query(
            ResponseLine,
            RfqItem.rfq_id.label("rfq_id"),
            RfqItem.line_number.label("rfq_line_number"),
            RfqSupplier.supplier_id.label("supplier_id"),
            RfqSupplier.id.label("rfq_supplier_id"),
            PartSupplier.name.label("supplier_name"),
            ResponseRevision.rev_number.label("response_rev_number"),
            ResponseRevision.created_at.label("response_rev_created_at"),
            SupplierResponse.status.label("response_status"),
            requested_id.label("requested_original_part_id_resolved"),
            ClientRequestRevisionItem.client_description.label("client_description"),
            ClientRequestRevisionItem.client_request_revision_id.label("item_request_revision_id"),
            Rfq.client_request_revision_id.label("active_request_revision_id"),
            req_op.cat_number.label("requested_original_cat_number"),
            req_op.description_ru.label("requested_original_description_ru"),
            req_op.description_en.label("requested_original_description_en"),
            SupplierPart.supplier_part_number.label("supplier_part_number"),
            sel.line_type.label("selected_line_type"),
            sel.line_label.label("selected_line_label"),
            sel.line_description.label("selected_line_description"),
            sel.bundle_id.label("selected_bundle_id"),
            sel.bundle_item_id.label("selected_bundle_item_id"),
            sel.original_part_id.label("selected_original_part_id"),
            sel.alt_original_part_id.label("selected_alt_original_part_id"),
            component_original_id.label("component_original_part_id"),
            comp_op.cat_number.label("component_cat_number"),
            comp_op.description_ru.label("component_description_ru"),
            comp_op.description_en.label("component_description_en"),
            resp_op.cat_number.label("response_original_cat_number"),
            resp_op.description_ru.label("response_original_description_ru"),
            resp_op.description_en.label("response_original_description_en"),
            LineStatus.status.label("line_status"),
            LineStatus.source_type.label("line_source_type"),
            LineStatus.source_ref.label("line_source_ref"),
            _accepted_from_existing_price().label("accepted_from_existing_price"),
        )
        .join(ResponseRevision, ResponseRevision.id == ResponseLine.rfq_response_revision_id)
        .join(SupplierResponse, SupplierResponse.id == ResponseRevision.rfq_supplier_response_id)
        .join(RfqSupplier, RfqSupplier.id == SupplierResponse.rfq_supplier_id)
        .join(PartSupplier, PartSupplier.id == RfqSupplier.supplier_id)
        .join(RfqItem, RfqItem.id == ResponseLine.rfq_item_id)
        .join(Rfq, Rfq.id == RfqItem.rfq_id)
        .join(ClientRequestRevisionItem, ClientRequestRevisionItem.id == RfqItem.client_request_revision_item_id)
        .outerjoin(SupplierPart, SupplierPart.id == ResponseLine.supplier_part_id)
        .outerjoin(
            sel,
            and_(
                sel.rfq_supplier_id == RfqSupplier.id,
                sel.rfq_item_id == ResponseLine.rfq_item_id,
                sel.selection_key == ResponseLine.selection_key,
            ),
        )
        .outerjoin(req_op, req_op.id == requested_id)
        .outerjoin(RfqItemComponent, RfqItemComponent.id == ResponseLine.rfq_item_component_id)
        .outerjoin(comp_op, comp_op.id == component_original_id)
        .outerjoin(resp_op, resp_op.id == ResponseLine.original_part_id)
        .outerjoin(
            LineStatus,
            and_(LineStatus.rfq_supplier_id == RfqSupplier.id, LineStatus.rfq_item_id == ResponseLine.rfq_item_id),
        )
    )
    return query


def _line_row(row) -> dict:
    data = row._asdict()
    line = data.pop("ResponseLine")
    data["is_archived"] = data.pop("item_request_revision_id") != data.pop("active_request_revision_id")
    data["accepted_from_existing_price"] = bool(data["accepted_from_existing_price"])
    return {**model_to_dict(line), **data}


def list_lines(
    db: Session, rfq_id: int, supplier_id: Optional[int] = None, include_archived: bool = False
) -> List[dict]:
    """Every response line of an RFQ, newest revision first per supplier and line."""
    query = _lines_query(db).filter(RfqItem.rfq_id == rfq_id)
    if supplier_id:
        query = query.filter(RfqSupplier.supplier_id == supplier_id)
    if not include_archived:
        query = query.filter(ClientRequestRevisionItem.client_request_revision_id == Rfq.client_request_revision_id)

    query = query.order_by(
        RfqSupplier.supplier_id, RfqItem.line_number, ResponseRevision.rev_number.desc(), ResponseLine.id.desc()
    )

    return [_line_row(row) for row in query.all()]


def get_line(db: Session, line_id: int) -> dict:
    """One response line in the same joined shape as `list_lines`."""
    row = _lines_query(db).filter(ResponseLine.id == line_id).first()
    if row is None:
        raise NotFound(f"Response line {line_id} not found")
    return _line_row(row)


def list_line_actions(
    db: Session, rfq_id: int, supplier_id: Optional[int] = None, line_number: Optional[int] = None
) -> List[dict]:
    query = (
        db.query(
            LineAction,
            ResponseLine.rfq_item_id.label("rfq_item_id"),
            ResponseLine.price.label("price"),
            ResponseLine.currency.label("currency"),
            ResponseLine.offer_type.label("offer_type"),
            ResponseLine.lead_time_days.label("lead_time_days"),
            ResponseLine.moq.label("moq"),
            ResponseLine.packaging.label("packaging"),
            ResponseLine.validity_days.label("validity_days"),
            ResponseLine.note.label("note"),
            ResponseLine.entry_source.label("entry_source"),
            ResponseLine.change_reason.label("change_reason"),
            RfqItem.line_number.label("rfq_line_number"),
            RfqSupplier.supplier_id.label("supplier_id"),
            PartSupplier.name.label("supplier_name"),
            ResponseRevision.rev_number.label("response_rev_number"),
        )
        .join(ResponseLine, ResponseLine.id == LineAction.rfq_response_line_id)
        .join(ResponseRevision, ResponseRevision.id == ResponseLine.rfq_response_revision_id)
        .join(SupplierResponse, SupplierResponse.id == ResponseRevision.rfq_supplier_response_id)
        .join(RfqSupplier, RfqSupplier.id == SupplierResponse.rfq_supplier_id)
        .join(PartSupplier, PartSupplier.id == RfqSupplier.supplier_id)
        .join(RfqItem, RfqItem.id == ResponseLine.rfq_item_id)
        .filter(RfqItem.rfq_id == rfq_id)
    )
    if supplier_id:
        query = query.filter(RfqSupplier.supplier_id == supplier_id)
    if line_number:
        query = query.filter(RfqItem.line_number == line_number)

    rows = []
    for row in query.order_by(LineAction.created_at.desc(), LineAction.id.desc()).all():
        data = row._asdict()
        rows.append({**model_to_dict(data.pop("LineAction")), **data})
    return rows


def list_revision_lines(db: Session, revision_id: int) -> List[dict]:
    comp_op = aliased(OriginalPart)
    query = (
        db.query(
            ResponseLine,
            SupplierPart.supplier_part_number.label("supplier_part_number"),
            RfqItemComponent.original_part_id.label("component_original_part_id"),
            comp_op.cat_number.label("component_cat_number"),
            comp_op.description_ru.label("component_description_ru"),
            comp_op.description_en.label("component_description_en"),
        )
        .outerjoin(SupplierPart, SupplierPart.id == ResponseLine.supplier_part_id)
        .outerjoin(RfqItemComponent, RfqItemComponent.id == ResponseLine.rfq_item_component_id)
        .outerjoin(comp_op, comp_op.id == RfqItemComponent.original_part_id)
        .filter(ResponseLine.rfq_response_revision_id == revision_id)
        .order_by(ResponseLine.id.desc())
    )
    rows = []
    for row in query.all():
        data = row._asdict()
        rows.append({**model_to_dict(data.pop("ResponseLine")), **data})
    return rows


def list_responses(db: Session) -> List[dict]:
    query = (
        db.query(
            SupplierResponse,
            RfqSupplier.rfq_id.label("rfq_id"),
            RfqSupplier.supplier_id.label("supplier_id"),
            PartSupplier.name.label("supplier_name"),
        )
        .join(RfqSupplier, RfqSupplier.id == SupplierResponse.rfq_supplier_id)
        .join(PartSupplier, PartSupplier.id == RfqSupplier.supplier_id)
        .order_by(SupplierResponse.id.desc())
    )
    rows = []
    for row in query.all():
        data = row._asdict()
        rows.append({**model_to_dict(data.pop("SupplierResponse")), **data})
    return rows

"""
Operator entry points into the response ledger.

Each function here is one request's worth of work: it resolves every
reference first and only then appends, so a rejected input leaves nothing
behind once the caller rolls back.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from partflow.core.errors import Conflict, NotFound, ValidationFailed
from partflow.core.logging import get_logger
from partflow.db.models import (
    EntrySource, LineActionType, ResponseRevision, ResponseStatus, RfqItem, RfqSupplier, SupplierResponse,
    enum_values,
)
from partflow.db.session import add_in_savepoint
from partflow.services.canonical import (
    int_or_null, norm_currency, norm_offer_type, normalize_incoterms, normalize_reply_status,
    num_or_null, nz,
)
from partflow.services.part_catalog import (
    PartAttributes, check_part_owner, link_part_to_bundle_item, resolve_or_create_supplier_part,
)
from partflow.services.request_status import mark_request_dirty
from partflow.services.response_ledger import (
    LineFields, append_line, create_new_revision, ensure_revision, insert_next_revision,
    mark_supplier_responded, record_line_action, validate_reply_invariant,
)
from partflow.services.rfq_records import (
    get_rfq_supplier, requested_original_part_id, resolve_active_rfq_item, rfq_supplier_for_revision,
)
from partflow.services.selection import check_component, find_selection, resolve_selection

logger = get_logger(__name__)

BUNDLE_LINK_NOTE = "Linked from RFQ response"


@dataclass
class ManualLineRequest:
    """Operator-entered offer for one RFQ line."""
    rfq_id: int
    supplier_id: int
    rfq_item_id: Optional[int] = None
    line_number: Optional[int] = None
    selection_key: Optional[str] = None
    rfq_item_component_id: Optional[int] = None
    original_part_id: Optional[int] = None
    requested_original_part_id: Optional[int] = None
    bundle_id: Optional[int] = None
    supplier_part_id: Optional[int] = None
    supplier_part_number: Optional[str] = None
    supplier_part: dict = field(default_factory=dict)
    create_supplier_part: bool = False
    link_supplier_part_to_original: bool = True
    offer_type: Optional[str] = None
    supplier_reply_status: Optional[str] = None
    offered_qty: Optional[float] = None
    moq: Optional[int] = None
    packaging: Optional[str] = None
    lead_time_days: Optional[int] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    validity_days: Optional[int] = None
    payment_terms: Optional[str] = None
    incoterms: Optional[str] = None
    note: Optional[str] = None
    change_reason: Optional[str] = None
    new_revision: bool = False


@dataclass(frozen=True)
class ManualLineResult:
    line: object
    rfq_line_number: int
    supplier_part_created: bool


def _part_attributes(body: ManualLineRequest, offer_type: str, lead_time: Optional[int], moq: Optional[int],
                     packaging: Optional[str]) -> PartAttributes:
    payload = body.supplier_part or {}

    def first(*values):
        for value in values:
            if value is not None:
                return value
        return None

    return PartAttributes(
        description_ru=nz(payload.get("description_ru")),
        description_en=nz(payload.get("description_en")),
        part_type=norm_offer_type(payload.get("part_type") or offer_type),
        lead_time_days=int_or_null(first(payload.get("lead_time_days"), lead_time)),
        min_order_qty=int_or_null(first(payload.get("min_order_qty"), moq)),
        packaging=nz(first(payload.get("packaging"), packaging)),
        weight_kg=num_or_null(payload.get("weight_kg")),
        length_cm=num_or_null(payload.get("length_cm")),
        width_cm=num_or_null(payload.get("width_cm")),
        height_cm=num_or_null(payload.get("height_cm")),
        is_overweight=payload.get("is_overweight"),
        is_oversize=payload.get("is_oversize"),
    )


def create_manual_line(db: Session, body: ManualLineRequest, user_id: Optional[int] = None) -> ManualLineResult:
    """
    Record an operator-entered offer against the active revision of an RFQ.

    Resolves the RFQ supplier, the active item, the structural selection and
    the supplier part (creating it only when asked), then appends a
    SUPPLIER_MANUAL line with its audit actions.
    """
    if not body.rfq_id or not body.supplier_id or not (body.rfq_item_id or body.line_number):
        raise ValidationFailed("RFQ, supplier and RFQ line are required", reason="LINE_REFERENCE_REQUIRED")

    offer_type = norm_offer_type(body.offer_type)
    reply_status = normalize_reply_status(body.supplier_reply_status)
    price = num_or_null(body.price)
    currency = norm_currency(body.currency)
    lead_time = int_or_null(body.lead_time_days)
    moq = int_or_null(body.moq)
    packaging = nz(body.packaging)
    note = nz(body.note)
    validate_reply_invariant(reply_status, price, currency)

    rfq_supplier = get_rfq_supplier(db, body.rfq_id, body.supplier_id)
    item = resolve_active_rfq_item(db, body.rfq_id, body.rfq_item_id, body.line_number)
    if item is None:
        raise ValidationFailed("RFQ line not found in the active revision", reason="RFQ_ITEM_NOT_ACTIVE")

    selection = resolve_selection(
        db,
        rfq_supplier.id,
        item,
        selection_key=body.selection_key,
        bundle_id=body.bundle_id,
        rfq_item_component_id=body.rfq_item_component_id,
        original_part_id=body.original_part_id,
        requested_original_part_id=body.requested_original_part_id,
    )

    payload = body.supplier_part or {}
    part_number = nz(payload.get("supplier_part_number")) or nz(body.supplier_part_number)
    allow_create = bool(body.create_supplier_part) or bool(nz(payload.get("supplier_part_number")))
    if not body.link_supplier_part_to_original:
        link_original = None
    elif selection.is_kit_role:
        link_original = selection.original_part_id
    else:
        link_original = selection.original_part_id or selection.requested_original_part_id

    part = None
    if body.supplier_part_id or part_number:
        part = resolve_or_create_supplier_part(
            db,
            body.supplier_id,
            part_id=body.supplier_part_id,
            part_number=part_number,
            attributes=_part_attributes(body, offer_type, lead_time, moq, packaging),
            original_part_id=link_original,
            create_if_missing=allow_create,
        )
    supplier_part_id = part.supplier_part_id if part else None
    part_created = bool(part and part.created)

    bundle_linked = False
    if (
        selection.is_kit_role
        and selection.bundle_item_id
        and supplier_part_id
        and (body.create_supplier_part or part_created)
    ):
        bundle_linked = link_part_to_bundle_item(db, selection.bundle_item_id, supplier_part_id, BUNDLE_LINK_NOTE)

    if body.new_revision:
        revision = create_new_revision(db, rfq_supplier.id, note=note, user_id=user_id)
    else:
        revision = ensure_revision(db, rfq_supplier.id, note=note, user_id=user_id)

    validity_days = int_or_null(body.validity_days)
    incoterms = normalize_incoterms(body.incoterms)
    values = LineFields(
        rfq_item_id=item.id,
        selection_key=selection.selection_key,
        supplier_part_id=supplier_part_id,
        original_part_id=selection.original_part_id,
        requested_original_part_id=selection.requested_original_part_id,
        bundle_id=selection.bundle_id,
        rfq_item_component_id=selection.rfq_item_component_id,
        offer_type=offer_type,
        supplier_reply_status=reply_status,
        offered_qty=num_or_null(body.offered_qty),
        moq=moq,
        packaging=packaging,
        lead_time_days=lead_time,
        price=price,
        currency=currency,
        validity_days=validity_days,
        payment_terms=nz(body.payment_terms),
        incoterms=incoterms,
        note=note,
        entry_source=EntrySource.SUPPLIER_MANUAL.value,
        change_reason=nz(body.change_reason),
    )
    line = append_line(
        db,
        revision,
        values,
        user_id=user_id,
        action_payload={
            "source": EntrySource.SUPPLIER_MANUAL.value,
            "line_number": item.line_number,
            "price": price,
            "currency": currency,
            "offer_type": offer_type,
            "supplier_reply_status": reply_status,
            "lead_time_days": lead_time,
            "moq": moq,
            "packaging": packaging,
            "validity_days": validity_days,
            "incoterms": incoterms,
            "supplier_part_id": supplier_part_id,
        },
    )

    if part_created:
        record_line_action(
            db,
            line.id,
            LineActionType.LINK_SUPPLIER_PART.value,
            payload={
                "supplier_part_id": supplier_part_id,
                "supplier_part_number": part_number,
                "original_part_id": selection.original_part_id or selection.requested_original_part_id,
            },
            reason="Created and linked a new supplier part",
            user_id=user_id,
        )
    if bundle_linked:
        record_line_action(
            db,
            line.id,
            LineActionType.LINK_SUPPLIER_PART.value,
            payload={
                "supplier_part_id": supplier_part_id,
                "bundle_item_id": selection.bundle_item_id,
                "selection_key": selection.selection_key,
                "line_type": selection.line_type,
            },
            reason="Linked supplier part to kit role",
            user_id=user_id,
        )

    logger.info(
        f"Manual response line {line.id} for RFQ {body.rfq_id} line {item.line_number}",
        extra={"user_id": user_id, "supplier_id": body.supplier_id, "rfq_supplier_id": rfq_supplier.id},
    )
    return ManualLineResult(line=line, rfq_line_number=item.line_number, supplier_part_created=part_created)


def add_revision_line(db: Session, revision_id: int, body: dict, user_id: Optional[int] = None):
    """Append a line straight into an existing revision."""
    revision = db.get(ResponseRevision, revision_id)
    if revision is None:
        raise NotFound(f"Response revision {revision_id} not found")

    rfq_item_id = int_or_null(body.get("rfq_item_id"))
    if not rfq_item_id:
        raise ValidationFailed("RFQ line is required", reason="LINE_REFERENCE_REQUIRED")
    rfq_supplier = rfq_supplier_for_revision(db, revision.id)
    item = db.get(RfqItem, rfq_item_id)
    if item is None or item.rfq_id != rfq_supplier.rfq_id:
        raise ValidationFailed(f"RFQ item {rfq_item_id} does not belong to this RFQ", reason="RFQ_ITEM_NOT_FOUND")

    reply_status = normalize_reply_status(body.get("supplier_reply_status"))
    price = num_or_null(body.get("price"))
    currency = norm_currency(body.get("currency"))
    validate_reply_invariant(reply_status, price, currency)

    original_part_id = int_or_null(body.get("original_part_id"))
    requested = int_or_null(body.get("requested_original_part_id"))
    component_id = int_or_null(body.get("rfq_item_component_id"))
    if component_id:
        component = check_component(db, component_id, rfq_item_id)
        original_part_id = component.original_part_id or original_part_id
    if not original_part_id or not requested:
        item_original = requested_original_part_id(db, rfq_item_id)
        requested = requested or item_original
        original_part_id = original_part_id or item_original

    entry_source = (nz(body.get("entry_source")) or EntrySource.SUPPLIER_MANUAL.value).upper()
    if entry_source not in enum_values(EntrySource):
        raise ValidationFailed(f"Unknown entry source '{entry_source}'", reason="INVALID_ENTRY_SOURCE")

    selection_key = nz(body.get("selection_key"))
    if selection_key:
        find_selection(db, rfq_supplier.id, rfq_item_id, selection_key)
    supplier_part_id = int_or_null(body.get("supplier_part_id"))
    if supplier_part_id:
        check_part_owner(db, supplier_part_id, rfq_supplier.supplier_id)

    values = LineFields(
        rfq_item_id=rfq_item_id,
        selection_key=selection_key,
        supplier_part_id=supplier_part_id,
        original_part_id=original_part_id,
        requested_original_part_id=requested,
        bundle_id=int_or_null(body.get("bundle_id")),
        rfq_item_component_id=component_id,
        based_on_response_line_id=int_or_null(body.get("based_on_response_line_id")),
        offer_type=norm_offer_type(body.get("offer_type")),
        supplier_reply_status=reply_status,
        offered_qty=num_or_null(body.get("offered_qty")),
        moq=int_or_null(body.get("moq")),
        packaging=nz(body.get("packaging")),
        lead_time_days=int_or_null(body.get("lead_time_days")),
        price=price,
        currency=currency,
        validity_days=int_or_null(body.get("validity_days")),
        payment_terms=nz(body.get("payment_terms")),
        incoterms=normalize_incoterms(body.get("incoterms")),
        note=nz(body.get("note")),
        entry_source=entry_source,
        change_reason=nz(body.get("change_reason")) or nz(body.get("reason")),
    )
    return append_line(db, revision, values, user_id=user_id)


def create_response(
    db: Session,
    rfq_supplier_id: int,
    status: Optional[str] = None,
    create_revision: bool = True,
    note: Optional[str] = None,
    user_id: Optional[int] = None,
) -> SupplierResponse:
    """Open the response container of an RFQ supplier (one per supplier)."""
    rfq_supplier = db.get(RfqSupplier, rfq_supplier_id)
    if rfq_supplier is None:
        raise NotFound(f"RFQ supplier {rfq_supplier_id} not found", reason="RFQ_SUPPLIER_NOT_FOUND")
    value = (nz(status) or ResponseStatus.RECEIVED.value).lower()
    if value not in enum_values(ResponseStatus):
        raise ValidationFailed(f"Unknown response status '{status}'", reason="INVALID_RESPONSE_STATUS")

    response = SupplierResponse(rfq_supplier_id=rfq_supplier_id, status=value, created_by_user_id=user_id)
    if not add_in_savepoint(db, response):
        raise Conflict(
            f"RFQ supplier {rfq_supplier_id} already has a response", reason="RESPONSE_EXISTS"
        )
    if create_revision:
        insert_next_revision(db, response, note=note, user_id=user_id)

    mark_supplier_responded(db, rfq_supplier_id)
    mark_request_dirty(db, rfq_supplier_id)
    db.flush()
    return response

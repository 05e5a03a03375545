"""
Response revision ledger.

Supplier response -> revision -> line is an append-only chain. Lines are never
updated: a negotiated change inserts a successor line that points at its base
via ``based_on_response_line_id``, and every insert leaves a line action behind.
"""
from dataclasses import asdict, dataclass, fields, replace
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from partflow.core.errors import Conflict, NotFound, ValidationFailed
from partflow.core.logging import audit, get_logger
from partflow.db.models import (
    EntrySource, LineAction, LineActionType, LineStatusValue, OfferType, PriceSourceType,
    ResponseLine, ResponseRevision, ResponseStatus, RfqSupplier, RfqSupplierStatus,
    SupplierPartPrice, SupplierReplyStatus, SupplierResponse, enum_values,
)
from partflow.db.session import add_in_savepoint
from partflow.services.canonical import (
    int_or_null, norm_currency, norm_offer_type, normalize_incoterms, normalize_reply_status,
    normalize_source_subtype, num_or_null, nz, reply_status_requires_price,
)
from partflow.services.line_status import RFQ_RESPONSE_SOURCE, upsert_status
from partflow.services.part_catalog import check_part_owner
from partflow.services.request_status import mark_request_dirty
from partflow.services.rfq_records import rfq_supplier_for_revision
from partflow.services.selection import check_component, find_selection

logger = get_logger(__name__)

REVISION_INSERT_ATTEMPTS = 3


@dataclass(frozen=True)
class LineFields:
    """Everything a response line carries besides its revision and audit columns."""
    rfq_item_id: int
    selection_key: Optional[str] = None
    supplier_part_id: Optional[int] = None
    original_part_id: Optional[int] = None
    requested_original_part_id: Optional[int] = None
    bundle_id: Optional[int] = None
    rfq_item_component_id: Optional[int] = None
    based_on_response_line_id: Optional[int] = None
    offer_type: str = OfferType.UNKNOWN.value
    supplier_reply_status: str = SupplierReplyStatus.QUOTED.value
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
    entry_source: str = EntrySource.SUPPLIER_FILE.value
    change_reason: Optional[str] = None

    @classmethod
    def from_line(cls, line: ResponseLine) -> "LineFields":
        return cls(**{f.name: getattr(line, f.name) for f in fields(cls)})


_NORMALIZERS = {
    "selection_key": nz,
    "supplier_part_id": int_or_null,
    "original_part_id": int_or_null,
    "requested_original_part_id": int_or_null,
    "bundle_id": int_or_null,
    "rfq_item_component_id": int_or_null,
    "offer_type": norm_offer_type,
    "supplier_reply_status": normalize_reply_status,
    "offered_qty": num_or_null,
    "moq": int_or_null,
    "packaging": nz,
    "lead_time_days": int_or_null,
    "price": num_or_null,
    "currency": norm_currency,
    "validity_days": int_or_null,
    "payment_terms": nz,
    "incoterms": normalize_incoterms,
    "note": nz,
}

# Fields a negotiation may override on its base line
REVISABLE_FIELDS = frozenset(_NORMALIZERS)


def normalize_line_input(values: dict) -> dict:
    """Normalize the supplied line fields; absent keys stay absent."""
    return {key: _NORMALIZERS[key](value) for key, value in values.items() if key in _NORMALIZERS}


def validate_reply_invariant(reply_status: str, price: Optional[float], currency: Optional[str]):
    """Price and currency are present exactly when the supplier quoted."""
    if reply_status_requires_price(reply_status):
        if price is None or not currency:
            raise ValidationFailed(
                f"Reply status {reply_status} requires both price and currency", reason="PRICE_REQUIRED"
            )
    elif price is not None or currency:
        raise ValidationFailed(
            f"Reply status {reply_status} must not carry a price or currency", reason="PRICE_NOT_ALLOWED"
        )


def line_snapshot(line: ResponseLine) -> dict:
    snapshot = asdict(LineFields.from_line(line))
    snapshot["id"] = line.id
    snapshot["rfq_response_revision_id"] = line.rfq_response_revision_id
    return snapshot


# ============= RESPONSES & REVISIONS =============

def get_or_create_response(
    db: Session,
    rfq_supplier_id: int,
    status: str = ResponseStatus.RECEIVED.value,
    user_id: Optional[int] = None,
) -> SupplierResponse:
    def existing():
        return db.query(SupplierResponse).filter(SupplierResponse.rfq_supplier_id == rfq_supplier_id).first()

    response = existing()
    if response is not None:
        return response
    response = SupplierResponse(rfq_supplier_id=rfq_supplier_id, status=status, created_by_user_id=user_id)
    if add_in_savepoint(db, response):
        return response
    return existing()


def latest_revision(db: Session, response_id: int) -> Optional[ResponseRevision]:
    return (
        db.query(ResponseRevision)
        .filter(ResponseRevision.rfq_supplier_response_id == response_id)
        .order_by(ResponseRevision.rev_number.desc(), ResponseRevision.id.desc())
        .first()
    )


def insert_next_revision(
    db: Session, response: SupplierResponse, note: Optional[str] = None, user_id: Optional[int] = None
) -> ResponseRevision:
    """Insert revision max+1 (1 for an empty response)."""
    for _ in range(REVISION_INSERT_ATTEMPTS):
        current = (
            db.query(func.max(ResponseRevision.rev_number))
            .filter(ResponseRevision.rfq_supplier_response_id == response.id)
            .scalar()
        )
        revision = ResponseRevision(
            rfq_supplier_response_id=response.id,
            rev_number=(current or 0) + 1,
            note=nz(note),
            created_by_user_id=user_id,
        )
        if add_in_savepoint(db, revision):
            logger.info(f"Created revision {revision.rev_number} of supplier response {response.id}")
            return revision
    raise Conflict(
        f"Could not allocate a revision number for supplier response {response.id}",
        reason="REVISION_CONFLICT",
    )


def ensure_revision(
    db: Session, rfq_supplier_id: int, note: Optional[str] = None, user_id: Optional[int] = None
) -> ResponseRevision:
    """Latest revision of the supplier's response, creating response and revision 1 as needed."""
    response = get_or_create_response(db, rfq_supplier_id, user_id=user_id)
    revision = latest_revision(db, response.id)
    if revision is not None:
        return revision
    revision = ResponseRevision(
        rfq_supplier_response_id=response.id, rev_number=1, note=nz(note), created_by_user_id=user_id
    )
    if add_in_savepoint(db, revision):
        return revision
    return latest_revision(db, response.id)


def create_new_revision(
    db: Session, rfq_supplier_id: int, note: Optional[str] = None, user_id: Optional[int] = None
) -> ResponseRevision:
    response = get_or_create_response(db, rfq_supplier_id, user_id=user_id)
    return insert_next_revision(db, response, note=note, user_id=user_id)


def ratchet_to_review(response: SupplierResponse):
    if response.status == ResponseStatus.RECEIVED.value:
        response.status = ResponseStatus.REVIEW.value


def update_response_status(db: Session, response_id: int, status: str) -> SupplierResponse:
    """Explicit status change (review/approval); triggers a request-status recompute."""
    value = (nz(status) or "").lower()
    if value not in enum_values(ResponseStatus):
        raise ValidationFailed(f"Unknown response status '{status}'", reason="INVALID_RESPONSE_STATUS")
    response = db.get(SupplierResponse, response_id)
    if response is None:
        raise NotFound(f"Supplier response {response_id} not found")
    response.status = value
    db.flush()
    mark_request_dirty(db, response.rfq_supplier_id)
    return response


def mark_supplier_responded(db: Session, rfq_supplier_id: int):
    rfq_supplier = db.get(RfqSupplier, rfq_supplier_id)
    if rfq_supplier is None:
        return
    rfq_supplier.status = RfqSupplierStatus.RESPONDED.value
    if rfq_supplier.responded_at is None:
        rfq_supplier.responded_at = datetime.now(timezone.utc)


# ============= LINES =============

def record_line_action(
    db: Session,
    line_id: int,
    action_type: str,
    payload: Optional[dict] = None,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
) -> LineAction:
    action_value = (nz(action_type) or "").upper()
    if action_value not in enum_values(LineActionType):
        raise ValidationFailed(f"Unknown action type '{action_type}'", reason="INVALID_ACTION_TYPE")
    if db.get(ResponseLine, line_id) is None:
        raise NotFound(f"Response line {line_id} not found")
    action = LineAction(
        rfq_response_line_id=line_id,
        action_type=action_value,
        payload_json=payload,
        reason=nz(reason),
        created_by_user_id=user_id,
    )
    db.add(action)
    db.flush()
    return action


def record_response_price(
    db: Session, line: ResponseLine, note: Optional[str], subtype: str, user_id: Optional[int] = None
) -> Optional[SupplierPartPrice]:
    """Append a price-history row for a priced line with a supplier part."""
    if not line.supplier_part_id or line.price is None or not line.currency:
        return None
    price = SupplierPartPrice(
        supplier_part_id=line.supplier_part_id,
        price=line.price,
        currency=line.currency,
        date=date.today(),
        comment=note,
        offer_type=line.offer_type,
        lead_time_days=line.lead_time_days,
        min_order_qty=line.moq,
        packaging=line.packaging,
        validity_days=line.validity_days,
        source_type=PriceSourceType.RFQ_RESPONSE.value,
        source_subtype=normalize_source_subtype(subtype),
        source_id=line.id,
        created_by_user_id=user_id,
    )
    db.add(price)
    return price


def _insert_line(db: Session, revision: ResponseRevision, values: LineFields, user_id: Optional[int]) -> ResponseLine:
    validate_reply_invariant(values.supplier_reply_status, values.price, values.currency)
    line = ResponseLine(rfq_response_revision_id=revision.id, created_by_user_id=user_id, **asdict(values))
    db.add(line)
    db.flush()
    return line


def _after_append(
    db: Session,
    rfq_supplier_id: int,
    revision: ResponseRevision,
    line: ResponseLine,
    status_note: Optional[str],
):
    upsert_status(
        db,
        rfq_supplier_id,
        line.rfq_item_id,
        status=LineStatusValue.NONE.value,
        source_type=RFQ_RESPONSE_SOURCE,
        source_ref=str(line.id),
        note=status_note,
        last_response_revision_id=revision.id,
    )
    ratchet_to_review(revision.response)
    mark_supplier_responded(db, rfq_supplier_id)
    mark_request_dirty(db, rfq_supplier_id)
    db.flush()


def append_line(
    db: Session,
    revision: ResponseRevision,
    values: LineFields,
    user_id: Optional[int] = None,
    action_payload: Optional[dict] = None,
) -> ResponseLine:
    """
    Insert one line into a revision with its CREATE action.

    The reply-status invariant is checked before anything is written. The
    line status, response status and supplier responded flag follow.
    """
    rfq_supplier = rfq_supplier_for_revision(db, revision.id)
    line = _insert_line(db, revision, values, user_id)
    record_response_price(db, line, values.note, values.entry_source, user_id)
    record_line_action(
        db,
        line.id,
        LineActionType.CREATE.value,
        payload=action_payload if action_payload is not None else line_snapshot(line),
        reason=values.change_reason,
        user_id=user_id,
    )
    _after_append(db, rfq_supplier.id, revision, line, values.note)
    return line


def revise_line(
    db: Session,
    base_line_id: int,
    overrides: dict,
    reason: Optional[str],
    note: Optional[str] = None,
    new_revision: bool = True,
    user_id: Optional[int] = None,
) -> ResponseLine:
    """
    Record a negotiated change as a successor of `base_line_id`.

    Only keys present in `overrides` replace base values; an explicit None
    clears the field. The base line is never touched.
    """
    reason = nz(reason)
    if not reason:
        raise ValidationFailed("A reason is required for a negotiated change", reason="REASON_REQUIRED")

    unknown = set(overrides) - REVISABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Fields cannot be revised: {sorted(unknown)}", reason="UNKNOWN_FIELDS")

    base = db.get(ResponseLine, base_line_id)
    if base is None:
        raise NotFound(f"Response line {base_line_id} not found")
    rfq_supplier = rfq_supplier_for_revision(db, base.rfq_response_revision_id)

    changes = normalize_line_input(overrides)
    if changes.get("supplier_part_id"):
        check_part_owner(db, changes["supplier_part_id"], rfq_supplier.supplier_id)
    if changes.get("selection_key"):
        find_selection(db, rfq_supplier.id, base.rfq_item_id, changes["selection_key"])
    if changes.get("rfq_item_component_id"):
        check_component(db, changes["rfq_item_component_id"], base.rfq_item_id)

    values = replace(
        LineFields.from_line(base),
        **changes,
        based_on_response_line_id=base.id,
        entry_source=EntrySource.NEGOTIATION.value,
        change_reason=reason,
    )
    validate_reply_invariant(values.supplier_reply_status, values.price, values.currency)

    revision_note = nz(note) or reason
    if new_revision:
        revision = create_new_revision(db, rfq_supplier.id, note=revision_note, user_id=user_id)
    else:
        revision = ensure_revision(db, rfq_supplier.id, note=revision_note, user_id=user_id)

    line = _insert_line(db, revision, values, user_id)
    record_response_price(db, line, values.note or reason, EntrySource.NEGOTIATION.value, user_id)
    record_line_action(
        db,
        line.id,
        LineActionType.NEGOTIATION.value,
        payload={
            "based_on_response_line_id": base.id,
            "previous_price": base.price,
            "previous_currency": base.currency,
            "next_price": line.price,
            "next_currency": line.currency,
            "next_supplier_reply_status": line.supplier_reply_status,
            "next_lead_time_days": line.lead_time_days,
            "next_moq": line.moq,
            "next_incoterms": line.incoterms,
        },
        reason=reason,
        user_id=user_id,
    )
    _after_append(db, rfq_supplier.id, revision, line, reason)

    audit(
        "response_line.negotiated",
        "rfq_response_line",
        line.id,
        user_id=user_id,
        based_on=base.id,
        revision_id=revision.id,
        reason=reason,
    )
    return line

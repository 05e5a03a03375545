"""
Supplier part catalog resolution.

Finds a supplier's catalog entry by ID or by part number (canonical key or raw
spelling), optionally creating it. Supplementary attributes are only ever
back-filled into empty columns; a value that is already set is never replaced.
"""
from dataclasses import dataclass, fields
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from partflow.core.errors import Conflict, NotFound, ResolutionFailed, ValidationFailed
from partflow.core.logging import get_logger
from partflow.db.models import (
    SupplierBundleItemLink, SupplierPart, SupplierPartAlias, SupplierPartOriginal,
)
from partflow.db.session import add_in_savepoint
from partflow.services.canonical import canonicalize, nz

logger = get_logger(__name__)


@dataclass(frozen=True)
class PartAttributes:
    """Supplementary catalog attributes; None means "not supplied"."""
    description_ru: Optional[str] = None
    description_en: Optional[str] = None
    part_type: Optional[str] = None
    lead_time_days: Optional[int] = None
    min_order_qty: Optional[int] = None
    packaging: Optional[str] = None
    weight_kg: Optional[float] = None
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None
    is_overweight: Optional[bool] = None
    is_oversize: Optional[bool] = None


@dataclass(frozen=True)
class PartResolution:
    supplier_part_id: int
    created: bool = False


def find_supplier_part(db: Session, supplier_id: int, part_number: str) -> Optional[SupplierPart]:
    """Look up a supplier's part by canonical key or raw number."""
    canonical = canonicalize(part_number)
    if canonical is None:
        return None
    return (
        db.query(SupplierPart)
        .filter(
            SupplierPart.supplier_id == supplier_id,
            or_(
                SupplierPart.canonical_part_number == canonical,
                SupplierPart.supplier_part_number == part_number,
            ),
        )
        .order_by(SupplierPart.id)
        .first()
    )


def check_part_owner(db: Session, supplier_part_id: int, supplier_id: int) -> SupplierPart:
    """The supplier part must exist and belong to `supplier_id`."""
    part = db.get(SupplierPart, supplier_part_id)
    if part is None:
        raise ResolutionFailed(f"Supplier part {supplier_part_id} not found", reason="PART_ID_NOT_FOUND")
    if part.supplier_id != supplier_id:
        raise ResolutionFailed(
            f"Supplier part {supplier_part_id} belongs to another supplier", reason="PART_WRONG_SUPPLIER"
        )
    return part


def _backfill(part: SupplierPart, attributes: PartAttributes) -> List[str]:
    filled = []
    for field in fields(attributes):
        value = getattr(attributes, field.name)
        if value is not None and getattr(part, field.name) is None:
            setattr(part, field.name, value)
            filled.append(field.name)
    return filled


def _new_part(supplier_id: int, part_number: str, attributes: PartAttributes) -> SupplierPart:
    values = {f.name: getattr(attributes, f.name) for f in fields(attributes)}
    values["is_overweight"] = bool(values["is_overweight"])
    values["is_oversize"] = bool(values["is_oversize"])
    return SupplierPart(
        supplier_id=supplier_id,
        supplier_part_number=part_number,
        canonical_part_number=canonicalize(part_number),
        active=True,
        **values,
    )


def link_original_part(db: Session, supplier_part_id: int, original_part_id: int) -> bool:
    """Associate a supplier part with an OEM part. Returns True if a link was added."""
    exists = db.query(SupplierPartOriginal.id).filter(
        SupplierPartOriginal.supplier_part_id == supplier_part_id,
        SupplierPartOriginal.original_part_id == original_part_id,
    ).first()
    if exists:
        return False
    return add_in_savepoint(
        db,
        SupplierPartOriginal(supplier_part_id=supplier_part_id, original_part_id=original_part_id),
    )


def resolve_or_create_supplier_part(
    db: Session,
    supplier_id: int,
    part_id: Optional[int] = None,
    part_number: Optional[str] = None,
    attributes: Optional[PartAttributes] = None,
    original_part_id: Optional[int] = None,
    create_if_missing: bool = False,
) -> PartResolution:
    """
    Resolve a supplier catalog entry, creating it when allowed.

    Raises ResolutionFailed with PART_ID_NOT_FOUND, PART_WRONG_SUPPLIER or
    PART_NUMBER_NOT_FOUND; ValidationFailed when neither an ID nor a number
    with a canonical key was given.
    """
    attributes = attributes or PartAttributes()

    if part_id:
        part = check_part_owner(db, part_id, supplier_id)
        resolution = PartResolution(supplier_part_id=part.id)
    else:
        number = nz(part_number)
        if number is None or canonicalize(number) is None:
            raise ValidationFailed(
                "A supplier part ID or a part number with letters or digits is required",
                reason="PART_NUMBER_REQUIRED",
            )

        part = find_supplier_part(db, supplier_id, number)
        created = False
        if part is None:
            if not create_if_missing:
                raise ResolutionFailed(
                    f"Part number '{number}' is not in the supplier catalog; "
                    f"request creation explicitly to add it",
                    reason="PART_NUMBER_NOT_FOUND",
                )
            candidate = _new_part(supplier_id, number, attributes)
            if add_in_savepoint(db, candidate):
                part, created = candidate, True
                logger.info(f"Created supplier part {part.id} '{number}' for supplier {supplier_id}")
            else:
                # Lost an insert race on (supplier, canonical key)
                part = find_supplier_part(db, supplier_id, number)
                if part is None:
                    raise Conflict(
                        f"Could not create supplier part '{number}'", reason="SUPPLIER_PART_CONFLICT"
                    )
        else:
            filled = _backfill(part, attributes)
            if filled:
                logger.debug(f"Back-filled {filled} on supplier part {part.id}")
        resolution = PartResolution(supplier_part_id=part.id, created=created)

    if original_part_id:
        link_original_part(db, part.id, original_part_id)

    db.flush()
    return resolution


def link_part_to_bundle_item(db: Session, bundle_item_id: int, supplier_part_id: int, note: str) -> bool:
    """Attach a supplier part to a kit role. Returns True if a link was added."""
    exists = db.query(SupplierBundleItemLink.id).filter(
        SupplierBundleItemLink.item_id == bundle_item_id,
        SupplierBundleItemLink.supplier_part_id == supplier_part_id,
    ).first()
    if exists:
        return False
    return add_in_savepoint(
        db,
        SupplierBundleItemLink(
            item_id=bundle_item_id, supplier_part_id=supplier_part_id, is_default=False, note=note
        ),
    )


# ============= ALIASES =============

def list_aliases(db: Session, supplier_part_id: int) -> List[SupplierPartAlias]:
    if db.get(SupplierPart, supplier_part_id) is None:
        raise NotFound(f"Supplier part {supplier_part_id} not found")
    return (
        db.query(SupplierPartAlias)
        .filter(SupplierPartAlias.supplier_part_id == supplier_part_id)
        .order_by(SupplierPartAlias.id)
        .all()
    )


def add_alias(
    db: Session, supplier_part_id: int, alias_part_number: str, note: Optional[str] = None
) -> SupplierPartAlias:
    """Register an alternative spelling for a supplier part."""
    part = db.get(SupplierPart, supplier_part_id)
    if part is None:
        raise NotFound(f"Supplier part {supplier_part_id} not found")

    alias_number = nz(alias_part_number)
    alias_key = canonicalize(alias_number)
    if alias_key is None:
        raise ValidationFailed("Alias part number is required", reason="ALIAS_REQUIRED")
    if alias_key == part.canonical_part_number:
        raise ValidationFailed(
            "Alias is identical to the part number after normalization", reason="ALIAS_SAME_AS_PART"
        )

    alias = SupplierPartAlias(
        supplier_id=part.supplier_id,
        supplier_part_id=part.id,
        alias_part_number=alias_number,
        alias_canonical_part_number=alias_key,
        is_active=True,
        note=nz(note),
    )
    if not add_in_savepoint(db, alias):
        raise Conflict(f"Alias '{alias_number}' already exists for this part", reason="ALIAS_EXISTS")
    return alias

"""
Selection resolver.

An RFQ item sent to a supplier may carry several structural roles (plain line,
BOM component, kit role, alternate part). Decides which one an incoming offer
answers and which original part it should be recorded against.
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from partflow.core.errors import ResolutionFailed, ValidationFailed
from partflow.db.models import RfqItemComponent, RfqSupplierLineSelection, SelectionLineType
from partflow.services.canonical import nz
from partflow.services.rfq_records import ActiveRfqItem


@dataclass(frozen=True)
class ResolvedSelection:
    selection_key: Optional[str]
    line_type: Optional[str]
    rfq_item_component_id: Optional[int]
    original_part_id: Optional[int]
    requested_original_part_id: Optional[int]
    bundle_id: Optional[int]
    bundle_item_id: Optional[int]
    selection_original_part_id: Optional[int] = None
    selection_alt_original_part_id: Optional[int] = None

    @property
    def is_kit_role(self) -> bool:
        return self.line_type == SelectionLineType.KIT_ROLE.value


def _line_type(selection: Optional[RfqSupplierLineSelection]) -> Optional[str]:
    if selection is None:
        return None
    return (nz(selection.line_type) or "").upper() or None


def _narrow(
    candidates: List[RfqSupplierLineSelection],
    bundle_id: Optional[int],
    has_component: bool,
    original_part_id: Optional[int],
) -> List[RfqSupplierLineSelection]:
    if bundle_id:
        candidates = [c for c in candidates if bundle_id in (c.bundle_id, c.bundle_item_id)]
    if has_component:
        candidates = [c for c in candidates if _line_type(c) == SelectionLineType.BOM_COMPONENT.value]
    if original_part_id:
        by_original = [
            c for c in candidates if original_part_id in (c.original_part_id, c.alt_original_part_id)
        ]
        # Only narrow by part when that settles it
        if len(by_original) == 1:
            candidates = by_original
    return candidates


def check_component(db: Session, component_id: int, rfq_item_id: int) -> RfqItemComponent:
    """The component must exist and belong to the RFQ item."""
    component = db.get(RfqItemComponent, component_id)
    if component is None:
        raise ValidationFailed(f"RFQ item component {component_id} not found", reason="COMPONENT_NOT_FOUND")
    if component.rfq_item_id != rfq_item_id:
        raise ValidationFailed(
            f"Component {component_id} does not belong to RFQ item {rfq_item_id}",
            reason="COMPONENT_ITEM_MISMATCH",
        )
    return component


def _selections(db: Session, rfq_supplier_id: int, rfq_item_id: int):
    return db.query(RfqSupplierLineSelection).filter(
        RfqSupplierLineSelection.rfq_supplier_id == rfq_supplier_id,
        RfqSupplierLineSelection.rfq_item_id == rfq_item_id,
    )


def find_selection(
    db: Session, rfq_supplier_id: int, rfq_item_id: int, selection_key: str
) -> RfqSupplierLineSelection:
    """An explicit selection key must be defined for the (supplier, item) pair."""
    selection = (
        _selections(db, rfq_supplier_id, rfq_item_id)
        .filter(RfqSupplierLineSelection.selection_key == selection_key)
        .first()
    )
    if selection is None:
        raise ValidationFailed(
            f"Selection '{selection_key}' is not defined for RFQ item {rfq_item_id}", reason="SELECTION_NOT_FOUND"
        )
    return selection


def resolve_selection(
    db: Session,
    rfq_supplier_id: int,
    item: ActiveRfqItem,
    selection_key: Optional[str] = None,
    bundle_id: Optional[int] = None,
    rfq_item_component_id: Optional[int] = None,
    original_part_id: Optional[int] = None,
    requested_original_part_id: Optional[int] = None,
) -> ResolvedSelection:
    """
    Work out the structural role of an offer line.

    Raises ValidationFailed for an unknown component, a component of another
    item or an unknown explicit selection key, and ResolutionFailed when
    several roles remain and none was chosen.
    """
    explicit_original = original_part_id
    component_id = rfq_item_component_id
    if component_id:
        component = check_component(db, component_id, item.id)
        explicit_original = component.original_part_id or explicit_original

    key = nz(selection_key)
    selection = None
    if key:
        selection = find_selection(db, rfq_supplier_id, item.id, key)
    else:
        rows = _selections(db, rfq_supplier_id, item.id).order_by(RfqSupplierLineSelection.id).all()
        if len(rows) == 1:
            selection = rows[0]
        elif len(rows) > 1:
            candidates = _narrow(rows, bundle_id, bool(component_id), explicit_original)
            if len(candidates) != 1:
                raise ResolutionFailed(
                    f"RFQ item {item.id} has {len(rows)} selected components or roles; "
                    f"choose one explicitly",
                    reason="SELECTION_AMBIGUOUS",
                )
            selection = candidates[0]
        if selection is not None:
            key = nz(selection.selection_key)

    line_type = _line_type(selection)
    sel_original = selection.original_part_id if selection else None
    sel_alt = selection.alt_original_part_id if selection else None

    if not component_id and sel_original and line_type == SelectionLineType.BOM_COMPONENT.value:
        component = (
            db.query(RfqItemComponent)
            .filter(
                RfqItemComponent.rfq_item_id == item.id,
                RfqItemComponent.original_part_id == sel_original,
            )
            .order_by(RfqItemComponent.id)
            .first()
        )
        component_id = component.id if component else None

    requested = (
        requested_original_part_id
        or item.requested_original_part_id
        or sel_original
        or explicit_original
    )
    resolved = explicit_original or sel_alt or sel_original or requested
    if line_type == SelectionLineType.KIT_ROLE.value and not (explicit_original or sel_alt or sel_original):
        resolved = None

    return ResolvedSelection(
        selection_key=key,
        line_type=line_type,
        rfq_item_component_id=component_id,
        original_part_id=resolved,
        requested_original_part_id=requested,
        bundle_id=bundle_id or (selection.bundle_id if selection else None),
        bundle_item_id=selection.bundle_item_id if selection else None,
        selection_original_part_id=sel_original,
        selection_alt_original_part_id=sel_alt,
    )

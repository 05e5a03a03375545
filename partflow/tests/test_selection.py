"""
Tests for resolving which structural role of an RFQ item an offer answers.
"""
import pytest
from sqlalchemy.orm import Session

from partflow.core.errors import ResolutionFailed, ValidationFailed
from partflow.db.models import (
    RfqItemComponent, RfqSupplierLineSelection, SupplierBundle, SupplierBundleItem,
)
from partflow.services.rfq_records import resolve_active_rfq_item
from partflow.services.selection import resolve_selection


def _selection(db: Session, graph, key: str, line_type: str, **kwargs) -> RfqSupplierLineSelection:
    selection = RfqSupplierLineSelection(
        rfq_supplier_id=graph.acme_rfq.id,
        rfq_item_id=graph.pump_item.id,
        selection_key=key,
        line_type=line_type,
        **kwargs,
    )
    db.add(selection)
    db.flush()
    return selection


@pytest.fixture
def pump(db_session, rfq_graph):
    return resolve_active_rfq_item(db_session, rfq_graph.rfq.id, rfq_graph.pump_item.id)


@pytest.fixture
def seal_component(db_session, rfq_graph):
    component = RfqItemComponent(rfq_item_id=rfq_graph.pump_item.id, original_part_id=rfq_graph.seal.id, qty=2)
    db_session.add(component)
    db_session.flush()
    return component


class TestActiveItemLookup:

    def test_line_number_resolves_within_active_revision(self, db_session, rfq_graph):
        """Line 1 exists in both revisions; only the active one is returned."""
        item = resolve_active_rfq_item(db_session, rfq_graph.rfq.id, line_number=1)
        assert item.id == rfq_graph.pump_item.id
        assert item.requested_original_part_id == rfq_graph.pump.id

    def test_archived_item_is_not_active(self, db_session, rfq_graph):
        assert resolve_active_rfq_item(db_session, rfq_graph.rfq.id, rfq_graph.archived_item.id) is None


class TestResolveSelection:

    def test_no_selections_falls_back_to_requested_part(self, db_session, rfq_graph, pump):
        resolved = resolve_selection(db_session, rfq_graph.acme_rfq.id, pump)
        assert resolved.selection_key is None
        assert resolved.original_part_id == rfq_graph.pump.id
        assert resolved.requested_original_part_id == rfq_graph.pump.id

    def test_single_selection_is_implied(self, db_session, rfq_graph, pump):
        _selection(db_session, rfq_graph, "main", "LINE", original_part_id=rfq_graph.pump.id)
        resolved = resolve_selection(db_session, rfq_graph.acme_rfq.id, pump)
        assert resolved.selection_key == "main"
        assert resolved.line_type == "LINE"

    def test_several_selections_need_a_choice(self, db_session, rfq_graph, pump, seal_component):
        _selection(db_session, rfq_graph, "main", "LINE", original_part_id=rfq_graph.pump.id)
        _selection(db_session, rfq_graph, "seal", "BOM_COMPONENT", original_part_id=rfq_graph.seal.id)
        with pytest.raises(ResolutionFailed) as exc:
            resolve_selection(db_session, rfq_graph.acme_rfq.id, pump)
        assert exc.value.reason == "SELECTION_AMBIGUOUS"

    def test_unknown_explicit_key(self, db_session, rfq_graph, pump):
        _selection(db_session, rfq_graph, "main", "LINE")
        with pytest.raises(ValidationFailed) as exc:
            resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, selection_key="other")
        assert exc.value.reason == "SELECTION_NOT_FOUND"

    def test_component_narrows_to_bom_selection(self, db_session, rfq_graph, pump, seal_component):
        _selection(db_session, rfq_graph, "main", "LINE", original_part_id=rfq_graph.pump.id)
        _selection(db_session, rfq_graph, "seal", "BOM_COMPONENT", original_part_id=rfq_graph.seal.id)
        resolved = resolve_selection(
            db_session, rfq_graph.acme_rfq.id, pump, rfq_item_component_id=seal_component.id
        )
        assert resolved.selection_key == "seal"
        assert resolved.original_part_id == rfq_graph.seal.id
        assert resolved.rfq_item_component_id == seal_component.id

    def test_bom_selection_finds_its_component(self, db_session, rfq_graph, pump, seal_component):
        _selection(db_session, rfq_graph, "seal", "bom_component", original_part_id=rfq_graph.seal.id)
        resolved = resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, selection_key="seal")
        assert resolved.line_type == "BOM_COMPONENT"
        assert resolved.rfq_item_component_id == seal_component.id

    def test_component_of_another_item(self, db_session, rfq_graph, pump):
        foreign = RfqItemComponent(rfq_item_id=rfq_graph.seal_item.id, original_part_id=rfq_graph.valve.id)
        db_session.add(foreign)
        db_session.flush()
        with pytest.raises(ValidationFailed) as exc:
            resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, rfq_item_component_id=foreign.id)
        assert exc.value.reason == "COMPONENT_ITEM_MISMATCH"

    def test_unknown_component(self, db_session, rfq_graph, pump):
        with pytest.raises(ValidationFailed) as exc:
            resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, rfq_item_component_id=404)
        assert exc.value.reason == "COMPONENT_NOT_FOUND"

    def test_original_part_picks_the_alternate(self, db_session, rfq_graph, pump):
        _selection(db_session, rfq_graph, "main", "LINE", original_part_id=rfq_graph.pump.id)
        _selection(
            db_session, rfq_graph, "alt", "ALTERNATE",
            original_part_id=rfq_graph.pump.id, alt_original_part_id=rfq_graph.valve.id,
        )
        resolved = resolve_selection(
            db_session, rfq_graph.acme_rfq.id, pump, original_part_id=rfq_graph.valve.id
        )
        assert resolved.selection_key == "alt"
        assert resolved.original_part_id == rfq_graph.valve.id
        assert resolved.requested_original_part_id == rfq_graph.pump.id


class TestKitRoles:

    @pytest.fixture
    def kits(self, db_session, rfq_graph):
        first = SupplierBundle(original_part_id=rfq_graph.pump.id, name="Pump kit A")
        second = SupplierBundle(original_part_id=rfq_graph.pump.id, name="Pump kit B")
        db_session.add_all([first, second])
        db_session.flush()
        first_role = SupplierBundleItem(bundle_id=first.id, role_label="Housing")
        second_role = SupplierBundleItem(bundle_id=second.id, role_label="Housing")
        db_session.add_all([first_role, second_role])
        db_session.flush()
        _selection(db_session, rfq_graph, "kit-a", "KIT_ROLE", bundle_id=first.id, bundle_item_id=first_role.id)
        _selection(db_session, rfq_graph, "kit-b", "KIT_ROLE", bundle_id=second.id, bundle_item_id=second_role.id)
        return first, first_role

    def test_bundle_narrows_the_choice(self, db_session, rfq_graph, pump, kits):
        bundle, role = kits
        resolved = resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, bundle_id=bundle.id)
        assert resolved.selection_key == "kit-a"
        assert resolved.is_kit_role
        assert resolved.bundle_item_id == role.id
        assert resolved.bundle_id == bundle.id

    def test_kit_role_without_parts_has_no_original(self, db_session, rfq_graph, pump, kits):
        """The requested part is recorded, but the offer is not for that part itself."""
        resolved = resolve_selection(db_session, rfq_graph.acme_rfq.id, pump, selection_key="kit-b")
        assert resolved.original_part_id is None
        assert resolved.requested_original_part_id == rfq_graph.pump.id

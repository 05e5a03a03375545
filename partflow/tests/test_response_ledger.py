"""
Tests for the append-only response ledger: revisions, lines, negotiations.
"""
import logging
from unittest.mock import patch

import pytest

from partflow.core.errors import Conflict, NotFound, ResolutionFailed, ValidationFailed
from partflow.core.logging import AUDIT_LOGGER
from partflow.db.models import (
    LineAction, LineStatus, ResponseLine, ResponseRevision, RfqItemComponent, RfqSupplierLineSelection,
    SupplierPart, SupplierPartPrice, SupplierResponse,
)
from partflow.db.session import add_in_savepoint
from partflow.services.request_status import pending_request_ids
from partflow.services.response_ledger import (
    LineFields,
    append_line,
    create_new_revision,
    ensure_revision,
    get_or_create_response,
    record_line_action,
    revise_line,
    update_response_status,
    validate_reply_invariant,
)


@pytest.fixture
def acme_part(db_session, rfq_graph):
    part = SupplierPart(
        supplier_id=rfq_graph.acme.id, supplier_part_number="AC-100", canonical_part_number="AC100"
    )
    db_session.add(part)
    db_session.flush()
    return part


@pytest.fixture
def quoted_line(db_session, rfq_graph, acme_part):
    revision = ensure_revision(db_session, rfq_graph.acme_rfq.id)
    return append_line(
        db_session,
        revision,
        LineFields(
            rfq_item_id=rfq_graph.pump_item.id,
            supplier_part_id=acme_part.id,
            original_part_id=rfq_graph.pump.id,
            requested_original_part_id=rfq_graph.pump.id,
            offer_type="OEM",
            price=120.0,
            currency="USD",
            lead_time_days=21,
            moq=1,
            note="first offer",
        ),
    )


class TestReplyInvariant:

    def test_quote_needs_price_and_currency(self):
        with pytest.raises(ValidationFailed) as exc:
            validate_reply_invariant("QUOTED", 10.0, None)
        assert exc.value.reason == "PRICE_REQUIRED"

    def test_non_quote_must_be_unpriced(self):
        with pytest.raises(ValidationFailed) as exc:
            validate_reply_invariant("NO_STOCK", None, "USD")
        assert exc.value.reason == "PRICE_NOT_ALLOWED"

    def test_valid_combinations(self):
        validate_reply_invariant("QUOTED", 0.0, "EUR")
        validate_reply_invariant("DISCONTINUED", None, None)


class TestRevisions:

    def test_ensure_revision_is_idempotent(self, db_session, rfq_graph):
        first = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        second = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        assert first.id == second.id
        assert first.rev_number == 1
        assert db_session.query(SupplierResponse).count() == 1

    def test_new_revisions_are_gapless(self, db_session, rfq_graph):
        numbers = [create_new_revision(db_session, rfq_graph.acme_rfq.id).rev_number for _ in range(3)]
        assert numbers == [1, 2, 3]

    def test_ensure_returns_latest(self, db_session, rfq_graph):
        create_new_revision(db_session, rfq_graph.acme_rfq.id)
        latest = create_new_revision(db_session, rfq_graph.acme_rfq.id, note="  second round ")
        assert latest.note == "second round"
        assert ensure_revision(db_session, rfq_graph.acme_rfq.id).id == latest.id


class TestAppendLine:

    def test_side_effects(self, db_session, rfq_graph, acme_part, quoted_line):
        actions = db_session.query(LineAction).filter_by(rfq_response_line_id=quoted_line.id).all()
        assert [a.action_type for a in actions] == ["CREATE"]
        assert actions[0].payload_json["price"] == 120.0

        status = db_session.query(LineStatus).filter_by(
            rfq_supplier_id=rfq_graph.acme_rfq.id, rfq_item_id=rfq_graph.pump_item.id
        ).one()
        assert status.status == "NONE"
        assert status.source_type == "RFQ_RESPONSE"
        assert status.source_ref == str(quoted_line.id)
        assert status.last_response_revision_id == quoted_line.rfq_response_revision_id

        response = db_session.query(SupplierResponse).one()
        assert response.status == "review"
        db_session.refresh(rfq_graph.acme_rfq)
        assert rfq_graph.acme_rfq.status == "responded"
        assert rfq_graph.acme_rfq.responded_at is not None

        price = db_session.query(SupplierPartPrice).one()
        assert price.supplier_part_id == acme_part.id
        assert price.source_type == "RFQ_RESPONSE"
        assert price.source_subtype == "SUPPLIER_FILE"
        assert price.source_id == quoted_line.id

        assert pending_request_ids(db_session) == {rfq_graph.request.id}

    def test_invariant_is_checked_before_writing(self, db_session, rfq_graph):
        revision = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        with pytest.raises(ValidationFailed):
            append_line(
                db_session,
                revision,
                LineFields(rfq_item_id=rfq_graph.pump_item.id, supplier_reply_status="NO_STOCK", price=5.0),
            )
        assert db_session.query(ResponseLine).count() == 0

    def test_unpriced_line_leaves_no_price_history(self, db_session, rfq_graph, acme_part):
        revision = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        append_line(
            db_session,
            revision,
            LineFields(
                rfq_item_id=rfq_graph.seal_item.id,
                supplier_part_id=acme_part.id,
                supplier_reply_status="NO_STOCK",
            ),
        )
        assert db_session.query(SupplierPartPrice).count() == 0


class TestReviseLine:

    def test_reason_is_required(self, db_session, quoted_line):
        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"price": 100.0}, reason="  ")
        assert exc.value.reason == "REASON_REQUIRED"

    def test_unknown_fields_are_rejected(self, db_session, quoted_line):
        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"rfq_item_id": 99}, reason="discount")
        assert exc.value.reason == "UNKNOWN_FIELDS"

    def test_unknown_base_line(self, db_session, rfq_graph):
        with pytest.raises(NotFound):
            revise_line(db_session, 404, {"price": 1.0}, reason="discount")

    def test_successor_line_in_new_revision(self, db_session, quoted_line):
        successor = revise_line(db_session, quoted_line.id, {"price": 99.5}, reason="Volume discount")

        db_session.refresh(quoted_line)
        assert quoted_line.price == 120.0
        assert successor.id != quoted_line.id
        assert successor.price == 99.5
        assert successor.currency == "USD"
        assert successor.lead_time_days == 21
        assert successor.based_on_response_line_id == quoted_line.id
        assert successor.entry_source == "NEGOTIATION"
        assert successor.change_reason == "Volume discount"

        revision = db_session.get(ResponseRevision, successor.rfq_response_revision_id)
        assert revision.rev_number == 2
        assert revision.note == "Volume discount"

        action = db_session.query(LineAction).filter_by(rfq_response_line_id=successor.id).one()
        assert action.action_type == "NEGOTIATION"
        assert action.payload_json["previous_price"] == 120.0
        assert action.payload_json["next_price"] == 99.5

        prices = db_session.query(SupplierPartPrice).order_by(SupplierPartPrice.id).all()
        assert [p.price for p in prices] == [120.0, 99.5]
        assert prices[1].source_subtype == "NEGOTIATION"

    def test_same_revision_when_asked(self, db_session, quoted_line):
        successor = revise_line(
            db_session, quoted_line.id, {"lead_time_days": 14}, reason="Faster", new_revision=False
        )
        assert successor.rfq_response_revision_id == quoted_line.rfq_response_revision_id
        assert db_session.query(ResponseRevision).count() == 1

    def test_explicit_none_clears_a_field(self, db_session, quoted_line):
        successor = revise_line(db_session, quoted_line.id, {"lead_time_days": None}, reason="Unknown lead time")
        assert successor.lead_time_days is None
        assert successor.moq == 1

    def test_negotiation_is_audited(self, db_session, quoted_line, caplog):
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER):
            successor = revise_line(db_session, quoted_line.id, {"price": 99.5}, reason="Volume discount", user_id=7)
        record = next(r for r in caplog.records if r.name == AUDIT_LOGGER)
        assert record.action == "response_line.negotiated"
        assert record.entity_id == successor.id
        assert record.user_id == 7
        assert record.details["based_on"] == quoted_line.id
        assert record.details["reason"] == "Volume discount"

    def test_switch_to_no_stock_must_drop_price(self, db_session, quoted_line):
        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"supplier_reply_status": "NO_STOCK"}, reason="Sold out")
        assert exc.value.reason == "PRICE_NOT_ALLOWED"

        successor = revise_line(
            db_session,
            quoted_line.id,
            {"supplier_reply_status": "NO_STOCK", "price": None, "currency": None},
            reason="Sold out",
        )
        assert successor.supplier_reply_status == "NO_STOCK"

    def test_part_of_another_supplier(self, db_session, rfq_graph, quoted_line):
        foreign = SupplierPart(supplier_id=rfq_graph.borg.id, supplier_part_number="B-1")
        db_session.add(foreign)
        db_session.flush()
        with pytest.raises(ResolutionFailed) as exc:
            revise_line(db_session, quoted_line.id, {"supplier_part_id": foreign.id}, reason="Swap part")
        assert exc.value.reason == "PART_WRONG_SUPPLIER"

    def test_unknown_selection_key(self, db_session, quoted_line):
        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"selection_key": "NO-SUCH-KEY"}, reason="Re-target")
        assert exc.value.reason == "SELECTION_NOT_FOUND"
        assert db_session.query(ResponseLine).count() == 1

    def test_known_selection_key(self, db_session, rfq_graph, quoted_line):
        db_session.add(RfqSupplierLineSelection(
            rfq_supplier_id=rfq_graph.acme_rfq.id, rfq_item_id=rfq_graph.pump_item.id,
            selection_key="impeller", line_type="BOM_COMPONENT",
        ))
        db_session.flush()
        successor = revise_line(db_session, quoted_line.id, {"selection_key": "impeller"}, reason="Re-target")
        assert successor.selection_key == "impeller"

    def test_component_of_another_item(self, db_session, rfq_graph, quoted_line):
        component = RfqItemComponent(rfq_item_id=rfq_graph.seal_item.id, original_part_id=rfq_graph.seal.id)
        db_session.add(component)
        db_session.flush()
        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"rfq_item_component_id": component.id}, reason="Re-target")
        assert exc.value.reason == "COMPONENT_ITEM_MISMATCH"

        with pytest.raises(ValidationFailed) as exc:
            revise_line(db_session, quoted_line.id, {"rfq_item_component_id": 999}, reason="Re-target")
        assert exc.value.reason == "COMPONENT_NOT_FOUND"
        assert db_session.query(ResponseLine).count() == 1


class TestResponseStatus:

    def test_explicit_change(self, db_session, quoted_line):
        response = db_session.query(SupplierResponse).one()
        update_response_status(db_session, response.id, "Approved")
        assert response.status == "approved"

    def test_approved_is_not_ratcheted_back(self, db_session, rfq_graph, quoted_line):
        response = db_session.query(SupplierResponse).one()
        update_response_status(db_session, response.id, "approved")
        revise_line(db_session, quoted_line.id, {"price": 110.0}, reason="Counter offer")
        assert response.status == "approved"

    def test_unknown_status(self, db_session, quoted_line):
        response = db_session.query(SupplierResponse).one()
        with pytest.raises(ValidationFailed) as exc:
            update_response_status(db_session, response.id, "rejected")
        assert exc.value.reason == "INVALID_RESPONSE_STATUS"


class TestLineActions:

    def test_invalid_action_type(self, db_session, quoted_line):
        with pytest.raises(ValidationFailed) as exc:
            record_line_action(db_session, quoted_line.id, "DELETE")
        assert exc.value.reason == "INVALID_ACTION_TYPE"

    def test_action_type_is_normalized(self, db_session, quoted_line):
        action = record_line_action(db_session, quoted_line.id, "link_supplier_part", payload={"x": 1})
        assert action.action_type == "LINK_SUPPLIER_PART"


class TestUniqueRaces:
    """A lost unique-key race re-selects the row the other writer inserted."""

    SAVEPOINT = "partflow.services.response_ledger.add_in_savepoint"

    def test_response_created_concurrently(self, db_session, rfq_graph):
        def competing_insert(db, obj):
            db.add(SupplierResponse(rfq_supplier_id=obj.rfq_supplier_id, status="received"))
            db.flush()
            return False

        with patch(self.SAVEPOINT, side_effect=competing_insert):
            response = get_or_create_response(db_session, rfq_graph.acme_rfq.id)
        assert response.id == db_session.query(SupplierResponse).one().id

    def test_first_revision_created_concurrently(self, db_session, rfq_graph):
        response = get_or_create_response(db_session, rfq_graph.acme_rfq.id)
        winner = ResponseRevision(rfq_supplier_response_id=response.id, rev_number=1, note="other writer")

        def competing_insert(db, obj):
            db.add(winner)
            db.flush()
            return False

        with patch(self.SAVEPOINT, side_effect=competing_insert):
            revision = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        assert revision.id == winner.id
        assert db_session.query(ResponseRevision).count() == 1

    def test_next_revision_retries_after_collision(self, db_session, rfq_graph):
        first = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        attempts = []

        def collide_once(db, obj):
            attempts.append(obj.rev_number)
            if len(attempts) == 1:
                db.add(ResponseRevision(rfq_supplier_response_id=first.rfq_supplier_response_id, rev_number=2))
                db.flush()
                return False
            return add_in_savepoint(db, obj)

        with patch(self.SAVEPOINT, side_effect=collide_once):
            revision = create_new_revision(db_session, rfq_graph.acme_rfq.id)
        assert attempts == [2, 3]
        assert revision.rev_number == 3
        numbers = [r.rev_number for r in db_session.query(ResponseRevision).order_by(ResponseRevision.rev_number)]
        assert numbers == [1, 2, 3]

    def test_revision_number_conflict_after_retries(self, db_session, rfq_graph):
        ensure_revision(db_session, rfq_graph.acme_rfq.id)
        with patch(self.SAVEPOINT, return_value=False) as savepoint:
            with pytest.raises(Conflict) as exc:
                create_new_revision(db_session, rfq_graph.acme_rfq.id)
        assert exc.value.reason == "REVISION_CONFLICT"
        assert savepoint.call_count == 3
        assert db_session.query(ResponseRevision).count() == 1

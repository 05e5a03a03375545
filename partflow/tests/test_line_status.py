"""
Tests for the per-(supplier, item) line status projection.
"""
from unittest.mock import patch

import pytest

from partflow.core.errors import NotFound, ValidationFailed
from partflow.db.models import LineStatus
from partflow.services.line_status import rebuild_line_status, set_line_statuses, upsert_status
from partflow.services.response_ledger import LineFields, append_line, ensure_revision


def _status(db, graph, item):
    return db.query(LineStatus).filter_by(rfq_supplier_id=graph.acme_rfq.id, rfq_item_id=item.id).one()


class TestUpsert:

    def test_one_row_per_pair(self, db_session, rfq_graph):
        first = upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="REQUEST")
        second = upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="NONE")
        assert first.id == second.id
        assert second.status == "NONE"
        assert db_session.query(LineStatus).count() == 1

    def test_pointers_never_regress(self, db_session, rfq_graph):
        upsert_status(
            db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id,
            note="sent", last_request_rfq_revision_id=rfq_graph.rfq_revision.id,
        )
        row = upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="REQUEST")
        assert row.last_request_rfq_revision_id == rfq_graph.rfq_revision.id
        assert row.note == "sent"

    def test_archived_is_sticky(self, db_session, rfq_graph):
        upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="ARCHIVED")
        row = upsert_status(
            db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id,
            status="NONE", source_type="RFQ_RESPONSE", source_ref="5",
        )
        assert row.status == "ARCHIVED"
        assert row.source_ref == "5"

        row = upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="NONE", unarchive=True)
        assert row.status == "NONE"

    def test_row_created_concurrently(self, db_session, rfq_graph):
        """Losing the insert race updates the row the other writer created."""
        winner = LineStatus(
            rfq_supplier_id=rfq_graph.acme_rfq.id, rfq_item_id=rfq_graph.pump_item.id, status="REQUEST", note="sent"
        )

        def competing_insert(db, obj):
            db.add(winner)
            db.flush()
            return False

        with patch("partflow.services.line_status.add_in_savepoint", side_effect=competing_insert):
            row = upsert_status(
                db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id,
                status="NONE", source_type="RFQ_RESPONSE", source_ref="9",
            )
        assert row.id == winner.id
        assert (row.status, row.source_ref, row.note) == ("NONE", "9", "sent")
        assert db_session.query(LineStatus).count() == 1


class TestOperatorStatuses:

    def test_items_outside_active_revision_are_skipped(self, db_session, rfq_graph):
        updated = set_line_statuses(db_session, rfq_graph.acme_rfq, [
            {"rfq_item_id": rfq_graph.pump_item.id, "status": "accepted_existing", "note": "reuse last price"},
            {"rfq_item_id": rfq_graph.archived_item.id, "status": "REQUEST"},
            {"status": "REQUEST"},
        ])
        assert updated == 1
        row = _status(db_session, rfq_graph, rfq_graph.pump_item)
        assert row.status == "ACCEPTED_EXISTING"
        assert row.note == "reuse last price"
        assert db_session.query(LineStatus).count() == 1

    def test_operator_can_unarchive(self, db_session, rfq_graph):
        upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.pump_item.id, status="ARCHIVED")
        set_line_statuses(db_session, rfq_graph.acme_rfq, [{"rfq_item_id": rfq_graph.pump_item.id, "status": "REQUEST"}])
        assert _status(db_session, rfq_graph, rfq_graph.pump_item).status == "REQUEST"

    def test_unknown_status(self, db_session, rfq_graph):
        with pytest.raises(ValidationFailed) as exc:
            set_line_statuses(db_session, rfq_graph.acme_rfq, [{"rfq_item_id": rfq_graph.pump_item.id, "status": "DONE"}])
        assert exc.value.reason == "INVALID_LINE_STATUS"


class TestRebuild:

    def test_rebuild_projects_ledger_and_membership(self, db_session, rfq_graph):
        # Stale row for the item dropped from the active revision
        upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.archived_item.id, status="REQUEST")
        revision = ensure_revision(db_session, rfq_graph.acme_rfq.id)
        line = append_line(
            db_session, revision,
            LineFields(rfq_item_id=rfq_graph.pump_item.id, price=10.0, currency="USD"),
        )
        # Drift the projection, then rebuild it
        db_session.query(LineStatus).filter_by(rfq_item_id=rfq_graph.pump_item.id).delete()
        db_session.flush()

        counts = rebuild_line_status(db_session, rfq_graph.acme_rfq.id)
        assert counts == {"active": 2, "archived": 1}

        pump = _status(db_session, rfq_graph, rfq_graph.pump_item)
        assert pump.status == "NONE"
        assert pump.source_type == "RFQ_RESPONSE"
        assert pump.source_ref == str(line.id)
        assert pump.last_response_revision_id == revision.id
        assert _status(db_session, rfq_graph, rfq_graph.seal_item).status == "REQUEST"
        assert _status(db_session, rfq_graph, rfq_graph.archived_item).status == "ARCHIVED"

    def test_operator_status_survives_rebuild(self, db_session, rfq_graph):
        upsert_status(db_session, rfq_graph.acme_rfq.id, rfq_graph.seal_item.id, status="ACCEPTED_EXISTING")
        rebuild_line_status(db_session, rfq_graph.acme_rfq.id)
        assert _status(db_session, rfq_graph, rfq_graph.seal_item).status == "ACCEPTED_EXISTING"

    def test_unknown_rfq_supplier(self, db_session, rfq_graph):
        with pytest.raises(NotFound):
            rebuild_line_status(db_session, 999)
